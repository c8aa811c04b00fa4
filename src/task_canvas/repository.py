"""Persistence contracts consumed by the board services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

from .models import Category, Relationship, RelationshipType, Task

TASK_SORT_FIELDS = ("priority", "created_at", "updated_at")
SORT_DIRECTIONS = ("asc", "desc")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class AxisRange:
    min: float
    max: float


@dataclass(frozen=True, slots=True)
class ViewportRange:
    x: AxisRange
    y: AxisRange

    def contains(self, x: float, y: float) -> bool:
        return self.x.min <= x <= self.x.max and self.y.min <= y <= self.y.max


@dataclass(frozen=True, slots=True)
class PriorityRange:
    min: int | None = None
    max: int | None = None


@dataclass(frozen=True, slots=True)
class SortSpec:
    field: str
    direction: str | None = None


@dataclass(frozen=True, slots=True)
class TaskQuery:
    status: str | Sequence[str] | None = None
    category: str | None = None
    search: str | None = None
    priority_range: PriorityRange | None = None
    viewport: ViewportRange | None = None
    limit: int | None = None
    offset: int | None = None
    sort: SortSpec | None = None


@dataclass(frozen=True, slots=True)
class RelationshipQuery:
    from_id: str | None = None
    to_id: str | None = None
    involving: str | None = None
    type: RelationshipType | Sequence[RelationshipType] | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True, slots=True)
class CategoryQuery:
    search: str | None = None
    limit: int | None = None
    offset: int | None = None


class TaskRepository(Protocol):
    async def save(self, task: Task) -> None: ...

    async def find_by_id(self, task_id: str) -> Task | None: ...

    async def list(self, query: TaskQuery | None = None) -> list[Task]: ...

    async def delete(self, task_id: str) -> None: ...

    async def delete_many(self, task_ids: Sequence[str]) -> None: ...


class RelationshipRepository(Protocol):
    async def save(self, relationship: Relationship) -> None: ...

    async def find_by_id(self, relationship_id: str) -> Relationship | None: ...

    async def find_between(
        self,
        from_id: str,
        to_id: str,
        type: RelationshipType | None = None,
    ) -> Relationship | None: ...

    async def list(self, query: RelationshipQuery | None = None) -> list[Relationship]: ...

    async def delete(self, relationship_id: str) -> None: ...

    async def delete_by_task_id(self, task_id: str) -> None: ...


class CategoryRepository(Protocol):
    async def save(self, category: Category) -> None: ...

    async def find_by_id(self, category_id: str) -> Category | None: ...

    async def find_by_name(self, name: str) -> Category | None: ...

    async def list(self, query: CategoryQuery | None = None) -> list[Category]: ...

    async def delete(self, category_id: str) -> None: ...


async def collect_pages(fetch: Callable[[int, int], Awaitable[list[T]]], page_size: int = 250) -> list[T]:
    """Drain a paginated ``fetch(limit, offset)`` call into one list."""
    items: list[T] = []
    offset = 0
    while True:
        page = await fetch(page_size, offset)
        items.extend(page)
        if len(page) < page_size:
            return items
        offset += len(page)
