from __future__ import annotations

import datetime as dt
import itertools
from typing import Callable, Sequence

import pytest

from task_canvas.models import Category, Relationship, RelationshipType, Task, TaskNotFoundError
from task_canvas.repository import CategoryQuery, RelationshipQuery, TaskQuery
from task_canvas.service import CategoryService, RelationshipService, TaskService


class InMemoryTaskRepository:
    def __init__(self) -> None:
        self.items: dict[str, Task] = {}
        self.saved: list[str] = []
        self.deleted: list[str] = []

    async def save(self, task: Task) -> None:
        self.items[task.id] = task.copy()
        self.saved.append(task.id)

    async def find_by_id(self, task_id: str) -> Task | None:
        task = self.items.get(task_id)
        return task.copy() if task is not None else None

    async def list(self, query: TaskQuery | None = None) -> list[Task]:
        query = query or TaskQuery()
        statuses = (query.status,) if isinstance(query.status, str) else tuple(query.status or ())
        tasks = sorted(self.items.values(), key=lambda task: (task.created_at, task.id))
        if statuses:
            tasks = [task for task in tasks if task.status in statuses]
        if query.viewport is not None:
            tasks = [task for task in tasks if query.viewport.contains(task.position.x, task.position.y)]
        start = query.offset or 0
        limit = 500 if query.limit is None else query.limit
        return [task.copy() for task in tasks[start : start + limit]]

    async def delete(self, task_id: str) -> None:
        self.items.pop(task_id, None)
        self.deleted.append(task_id)

    async def delete_many(self, task_ids: Sequence[str]) -> None:
        missing = [task_id for task_id in task_ids if task_id not in self.items]
        if missing:
            raise TaskNotFoundError(missing)
        for task_id in task_ids:
            await self.delete(task_id)


class InMemoryRelationshipRepository:
    def __init__(self) -> None:
        self.items: dict[str, Relationship] = {}
        self.saved: list[str] = []
        self.deleted: list[str] = []
        self.last_query: RelationshipQuery | None = None

    async def save(self, relationship: Relationship) -> None:
        self.items[relationship.id] = relationship.copy()
        self.saved.append(relationship.id)

    async def find_by_id(self, relationship_id: str) -> Relationship | None:
        relationship = self.items.get(relationship_id)
        return relationship.copy() if relationship is not None else None

    async def find_between(
        self,
        from_id: str,
        to_id: str,
        type: RelationshipType | None = None,
    ) -> Relationship | None:
        for relationship in self.items.values():
            if (relationship.from_id, relationship.to_id) != (from_id, to_id):
                continue
            if type is None or relationship.type is type:
                return relationship.copy()
        return None

    async def list(self, query: RelationshipQuery | None = None) -> list[Relationship]:
        query = query or RelationshipQuery()
        self.last_query = query
        types = query.type
        if types is None:
            allowed = None
        elif isinstance(types, RelationshipType):
            allowed = {types}
        else:
            allowed = set(types)
        matches = [
            relationship
            for relationship in self.items.values()
            if (query.from_id is None or relationship.from_id == query.from_id)
            and (query.to_id is None or relationship.to_id == query.to_id)
            and (query.involving is None or relationship.connects(query.involving))
            and (allowed is None or relationship.type in allowed)
        ]
        start = query.offset or 0
        limit = 500 if query.limit is None else query.limit
        return [relationship.copy() for relationship in matches[start : start + limit]]

    async def delete(self, relationship_id: str) -> None:
        self.items.pop(relationship_id, None)
        self.deleted.append(relationship_id)

    async def delete_by_task_id(self, task_id: str) -> None:
        for relationship in list(self.items.values()):
            if relationship.connects(task_id):
                await self.delete(relationship.id)


class InMemoryCategoryRepository:
    def __init__(self) -> None:
        self.items: dict[str, Category] = {}
        self.saved: list[str] = []
        self.last_query: CategoryQuery | None = None

    async def save(self, category: Category) -> None:
        self.items[category.id] = category.copy()
        self.saved.append(category.id)

    async def find_by_id(self, category_id: str) -> Category | None:
        category = self.items.get(category_id)
        return category.copy() if category is not None else None

    async def find_by_name(self, name: str) -> Category | None:
        for category in self.items.values():
            if category.name.lower() == name.strip().lower():
                return category.copy()
        return None

    async def list(self, query: CategoryQuery | None = None) -> list[Category]:
        query = query or CategoryQuery()
        self.last_query = query
        ordered = sorted(self.items.values(), key=lambda category: category.name.lower())
        start = query.offset or 0
        limit = 500 if query.limit is None else query.limit
        return [category.copy() for category in ordered[start : start + limit]]

    async def delete(self, category_id: str) -> None:
        self.items.pop(category_id, None)


class FixedClock:
    def __init__(self, start: dt.datetime | None = None) -> None:
        self.current = start or dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        self.current = self.current + dt.timedelta(seconds=1)
        return self.current


def sequential_ids(prefix: str):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def build_task(task_id: str, title: str | None = None, **kwargs) -> Task:
    return Task.create(
        task_id,
        title or task_id.title(),
        created_at=kwargs.pop("created_at", dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)),
        **kwargs,
    )


@pytest.fixture
def make_task() -> Callable[..., Task]:
    return build_task


@pytest.fixture
def task_repo() -> InMemoryTaskRepository:
    return InMemoryTaskRepository()


@pytest.fixture
def relationship_repo() -> InMemoryRelationshipRepository:
    return InMemoryRelationshipRepository()


@pytest.fixture
def links(
    relationship_repo: InMemoryRelationshipRepository,
    task_repo: InMemoryTaskRepository,
) -> RelationshipService:
    return RelationshipService(
        relationship_repo,
        task_repo,
        id_factory=sequential_ids("rel"),
        clock=FixedClock(),
    )


@pytest.fixture
def tasks(task_repo: InMemoryTaskRepository, links: RelationshipService) -> TaskService:
    return TaskService(task_repo, links, id_factory=sequential_ids("todo"), clock=FixedClock())


@pytest.fixture
def category_repo() -> InMemoryCategoryRepository:
    return InMemoryCategoryRepository()


@pytest.fixture
def categories(category_repo: InMemoryCategoryRepository) -> CategoryService:
    return CategoryService(category_repo, id_factory=sequential_ids("cat"), clock=FixedClock())
