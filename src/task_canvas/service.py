"""Business logic for board tasks and relationship integrity."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import math
from typing import Any, Callable, Iterable
import uuid

from .graph import StrictAcyclicPolicy
from .models import (
    CANVAS_RANGE,
    DEFAULT_COLOR,
    DEFAULT_PRIORITY,
    VALID_PRIORITIES,
    VALID_STATUSES,
    Category,
    Position,
    Relationship,
    RelationshipNotFoundError,
    RelationshipType,
    Task,
    TaskNotFoundError,
    ValidationError,
    utcnow,
)
from .placement import plan_spiral_position
from .repository import (
    SORT_DIRECTIONS,
    TASK_SORT_FIELDS,
    AxisRange,
    CategoryQuery,
    CategoryRepository,
    PriorityRange,
    RelationshipQuery,
    RelationshipRepository,
    SortSpec,
    TaskQuery,
    TaskRepository,
    ViewportRange,
    collect_pages,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
MAX_SEARCH_LENGTH = 240
SCAN_PAGE_SIZE = 250


def _new_id() -> str:
    return uuid.uuid4().hex


def normalize_ids(ids: str | Iterable[str]) -> list[str]:
    values = [ids] if isinstance(ids, str) else list(ids)
    return list(dict.fromkeys(value.strip() for value in values if value and value.strip()))


def _require_identifier(value: str | None, field: str) -> str:
    token = (value or "").strip()
    if not token:
        raise ValidationError(f"{field} is required", reason="blank_identifier", context={"field": field})
    return token


def _optional_identifier(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    token = value.strip()
    if not token:
        raise ValidationError(f"{field} cannot be empty", reason="blank_identifier", context={"field": field})
    return token


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _normalize_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    if not _is_int(limit) or limit < 1:
        raise ValidationError(
            "Limit must be a positive integer",
            reason="invalid_limit",
            context={"limit": limit},
        )
    return min(limit, MAX_LIMIT)


def _normalize_offset(offset: int | None) -> int:
    if offset is None:
        return 0
    if not _is_int(offset) or offset < 0:
        raise ValidationError(
            "Offset must be zero or a positive integer",
            reason="invalid_offset",
            context={"offset": offset},
        )
    return offset


def _collapse(values: list[Any]) -> Any:
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return tuple(values)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class RelationshipService:
    """Create, retype, delete, and query relationships.

    Every invariant check (endpoints exist, no self loop, no duplicate triple,
    no cycle for acyclic types) runs before the single repository write.
    These check-then-act sequences are not atomic against concurrent writers
    using the same repository.
    """

    def __init__(
        self,
        relationships: RelationshipRepository,
        tasks: TaskRepository,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.relationships = relationships
        self.tasks = tasks
        self.id_factory = id_factory or _new_id
        self.clock = clock or utcnow
        self.acyclic = StrictAcyclicPolicy(relationships)

    async def create_relationship(
        self,
        from_id: str,
        to_id: str,
        type: RelationshipType | str = RelationshipType.DEPENDS_ON,
        description: str | None = None,
    ) -> Relationship:
        source = _require_identifier(from_id, "from_id")
        target = _require_identifier(to_id, "to_id")
        if source == target:
            raise ValidationError(
                "Cannot create self-referencing relationship",
                reason="self_loop",
                context={"from_id": source, "to_id": target},
            )
        rel_type = RelationshipType.parse(type)

        await self._ensure_tasks_exist(source, target)
        await self._ensure_not_duplicate(source, target, rel_type)
        await self.acyclic.ensure_acyclic(source, target, rel_type)

        relationship = Relationship.create(
            id=self.id_factory(),
            from_id=source,
            to_id=target,
            type=rel_type,
            description=description,
            created_at=self.clock(),
        )
        await self.relationships.save(relationship)
        logger.info(
            "relationship.created id=%s from=%s to=%s type=%s",
            relationship.id,
            source,
            target,
            rel_type.value,
        )
        return relationship

    async def update_relationship(
        self,
        relationship_id: str,
        *,
        type: RelationshipType | str | None = None,
        description: str | None = None,
    ) -> Relationship:
        """Retype and/or redescribe a relationship; ``description=""`` clears it."""
        rel_id = _require_identifier(relationship_id, "id")
        if type is None and description is None:
            raise ValidationError(
                "At least one relationship property must change",
                reason="empty_update",
                context={"id": rel_id},
            )

        relationship = await self.relationships.find_by_id(rel_id)
        if relationship is None:
            raise RelationshipNotFoundError(rel_id)

        now = self.clock()
        changed = False
        if type is not None:
            new_type = RelationshipType.parse(type)
            if new_type is not relationship.type:
                await self._ensure_not_duplicate(
                    relationship.from_id,
                    relationship.to_id,
                    new_type,
                    ignore_id=relationship.id,
                )
                await self.acyclic.ensure_acyclic(relationship.from_id, relationship.to_id, new_type)
                changed = relationship.change_type(new_type, now) or changed
        if description is not None:
            changed = relationship.attach_description(description, now) or changed

        if not changed:
            raise ValidationError(
                "Relationship already satisfies requested values",
                reason="no_change",
                context={"id": rel_id},
            )

        await self.relationships.save(relationship)
        logger.info("relationship.updated id=%s type=%s", relationship.id, relationship.type.value)
        return relationship

    async def delete_relationships(self, ids: str | Iterable[str]) -> list[str]:
        """Delete one or many relationships; any missing id aborts the whole batch."""
        identifiers = normalize_ids(ids)
        if not identifiers:
            raise ValidationError(
                "At least one relationship id must be provided",
                reason="empty_ids",
                context={"ids": _as_list(ids)},
            )

        found = await asyncio.gather(*(self.relationships.find_by_id(rel_id) for rel_id in identifiers))
        missing = [rel_id for rel_id, relationship in zip(identifiers, found) if relationship is None]
        if missing:
            raise RelationshipNotFoundError(missing)

        for rel_id in identifiers:
            await self.relationships.delete(rel_id)
        logger.info("relationships.deleted count=%d ids=%s", len(identifiers), ",".join(identifiers))
        return identifiers

    async def delete_for_task(self, task_id: str) -> None:
        """Cascade path used when an endpoint task is removed."""
        await self.relationships.delete_by_task_id(_require_identifier(task_id, "task_id"))

    async def list_relationships(self, query: RelationshipQuery | None = None) -> list[Relationship]:
        normalized = self.normalize_query(query or RelationshipQuery())
        logger.debug("relationships.list query=%s", normalized)
        return await self.relationships.list(normalized)

    @staticmethod
    def normalize_query(query: RelationshipQuery) -> RelationshipQuery:
        types = list(dict.fromkeys(RelationshipType.parse(value) for value in _as_list(query.type)))
        return RelationshipQuery(
            from_id=_optional_identifier(query.from_id, "from_id"),
            to_id=_optional_identifier(query.to_id, "to_id"),
            involving=_optional_identifier(query.involving, "involving"),
            type=_collapse(types),
            limit=_normalize_limit(query.limit),
            offset=_normalize_offset(query.offset),
        )

    async def _ensure_tasks_exist(self, *task_ids: str) -> None:
        found = await asyncio.gather(*(self.tasks.find_by_id(task_id) for task_id in task_ids))
        missing = [task_id for task_id, task in zip(task_ids, found) if task is None]
        if missing:
            raise TaskNotFoundError(missing)

    async def _ensure_not_duplicate(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        *,
        ignore_id: str | None = None,
    ) -> None:
        existing = await self.relationships.find_between(from_id, to_id, rel_type)
        if existing is not None and existing.id != ignore_id:
            raise ValidationError(
                "Relationship already exists",
                reason="duplicate",
                context={
                    "relationship_id": existing.id,
                    "from_id": from_id,
                    "to_id": to_id,
                    "type": rel_type.value,
                },
            )


class TaskService:
    def __init__(
        self,
        tasks: TaskRepository,
        links: RelationshipService,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], dt.datetime] | None = None,
        default_color: str = DEFAULT_COLOR,
    ) -> None:
        self.tasks = tasks
        self.links = links
        self.id_factory = id_factory or _new_id
        self.clock = clock or utcnow
        self.default_color = default_color

    async def get_task(self, task_id: str) -> Task:
        token = _require_identifier(task_id, "id")
        task = await self.tasks.find_by_id(token)
        if task is None:
            raise TaskNotFoundError(token)
        return task

    async def all_tasks(self) -> list[Task]:
        return await collect_pages(
            lambda limit, offset: self.tasks.list(TaskQuery(limit=limit, offset=offset)),
            SCAN_PAGE_SIZE,
        )

    async def create_task(
        self,
        title: str,
        *,
        description: str | None = None,
        status: str = "pending",
        priority: int = DEFAULT_PRIORITY,
        category: str | None = None,
        color: str | None = None,
        icon: str | None = None,
        position: Position | None = None,
    ) -> Task:
        if not title or not title.strip():
            raise ValidationError("Title is required", reason="blank_title", context={"field": "title"})
        if position is None:
            existing = await self.all_tasks()
            position = plan_spiral_position(len(existing))

        task = Task.create(
            self.id_factory(),
            title,
            description=description,
            status=status,
            priority=priority,
            category=category,
            color=color or self.default_color,
            icon=icon,
            position=position,
            created_at=self.clock(),
        )
        await self.tasks.save(task)
        logger.info(
            "task.created id=%s status=%s priority=%d category=%s",
            task.id,
            task.status,
            task.priority,
            task.category or "uncategorized",
        )
        return task

    async def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        status: str | None = None,
        priority: int | None = None,
        category: str | None = None,
        color: str | None = None,
        icon: str | None = None,
        x: float | None = None,
        y: float | None = None,
    ) -> Task:
        """Apply field changes; empty strings clear description, category, and icon."""
        task = await self.get_task(task_id)
        now = self.clock()

        changed = False
        if title is not None:
            changed = task.rename(title, now) or changed
        if description is not None:
            changed = task.describe(description, now) or changed
        if category is not None:
            changed = task.set_category(category, now) or changed
        if priority is not None:
            changed = task.set_priority(priority, now) or changed
        if color is not None:
            changed = task.recolor(color, now) or changed
        if icon is not None:
            changed = task.set_icon(icon, now) or changed
        if x is not None or y is not None:
            target = Position(
                task.position.x if x is None else x,
                task.position.y if y is None else y,
            )
            changed = task.move(target, now) or changed
        if status is not None:
            changed = self._transition(task, status, now) or changed

        if not changed:
            raise ValidationError(
                "At least one property must change",
                reason="no_change",
                context={"id": task.id},
            )

        await self.tasks.save(task)
        logger.info("task.updated id=%s", task.id)
        return task

    @staticmethod
    def _transition(task: Task, status: str, now: dt.datetime) -> bool:
        if status == "pending":
            return task.reopen(now)
        if status == "in_progress":
            return task.mark_in_progress(now)
        if status == "completed":
            return task.mark_completed(now)
        raise ValidationError(
            f"Invalid status: {status}",
            reason="invalid_status",
            context={"status": status, "allowed": list(VALID_STATUSES)},
        )

    async def list_tasks(self, query: TaskQuery | None = None) -> list[Task]:
        normalized = self.normalize_query(query or TaskQuery())
        logger.debug("tasks.list query=%s", normalized)
        return await self.tasks.list(normalized)

    async def delete_tasks(self, ids: str | Iterable[str]) -> list[str]:
        """Delete tasks and every relationship touching them; all-or-nothing on missing ids."""
        identifiers = normalize_ids(ids)
        if not identifiers:
            raise ValidationError(
                "At least one todo id must be provided",
                reason="empty_ids",
                context={"ids": _as_list(ids)},
            )

        found = await asyncio.gather(*(self.tasks.find_by_id(task_id) for task_id in identifiers))
        missing = [task_id for task_id, task in zip(identifiers, found) if task is None]
        if missing:
            raise TaskNotFoundError(missing)

        for task_id in identifiers:
            await self.links.delete_for_task(task_id)
        if len(identifiers) == 1:
            await self.tasks.delete(identifiers[0])
        else:
            await self.tasks.delete_many(identifiers)
        logger.info("tasks.deleted count=%d ids=%s", len(identifiers), ",".join(identifiers))
        return identifiers

    @staticmethod
    def normalize_query(query: TaskQuery) -> TaskQuery:
        statuses = list(dict.fromkeys(value.strip() for value in _as_list(query.status)))
        invalid = [value for value in statuses if value not in VALID_STATUSES]
        if invalid:
            raise ValidationError(
                "Status filter includes unknown values",
                reason="invalid_status",
                context={"invalid": invalid, "allowed": list(VALID_STATUSES)},
            )

        category = (query.category or "").strip() or None
        search = (query.search or "").strip() or None
        if search and len(search) > MAX_SEARCH_LENGTH:
            raise ValidationError(
                "Search term exceeds allowed length",
                reason="search_too_long",
                context={"max": MAX_SEARCH_LENGTH},
            )

        return TaskQuery(
            status=_collapse(statuses),
            category=category,
            search=search,
            priority_range=_validate_priority_range(query.priority_range),
            viewport=_validate_viewport(query.viewport),
            limit=_normalize_limit(query.limit),
            offset=_normalize_offset(query.offset),
            sort=_validate_sort(query.sort),
        )


def _validate_priority_range(priority_range: PriorityRange | None) -> PriorityRange | None:
    if priority_range is None:
        return None
    for bound, value in (("min", priority_range.min), ("max", priority_range.max)):
        if value is not None and (not _is_int(value) or value not in VALID_PRIORITIES):
            raise ValidationError(
                "Priority bounds must be between 1 and 5",
                reason="invalid_priority_range",
                context={"bound": bound, "value": value},
            )
    if priority_range.min is None and priority_range.max is None:
        return None
    if (
        priority_range.min is not None
        and priority_range.max is not None
        and priority_range.min > priority_range.max
    ):
        raise ValidationError(
            "Priority range min must be <= max",
            reason="invalid_priority_range",
            context={"min": priority_range.min, "max": priority_range.max},
        )
    return priority_range


def _validate_axis(axis: str, axis_range: AxisRange) -> None:
    if not (math.isfinite(axis_range.min) and math.isfinite(axis_range.max)):
        raise ValidationError(
            "Viewport bounds must be finite numbers",
            reason="invalid_viewport",
            context={"axis": axis},
        )
    if axis_range.min > axis_range.max:
        raise ValidationError(
            "Viewport min must be <= max",
            reason="invalid_viewport",
            context={"axis": axis, "min": axis_range.min, "max": axis_range.max},
        )
    for value in (axis_range.min, axis_range.max):
        if abs(value) > CANVAS_RANGE:
            raise ValidationError(
                "Viewport exceeds canvas bounds",
                reason="invalid_viewport",
                context={"axis": axis, "value": value, "range": CANVAS_RANGE},
            )


def _validate_viewport(viewport: ViewportRange | None) -> ViewportRange | None:
    if viewport is None:
        return None
    _validate_axis("x", viewport.x)
    _validate_axis("y", viewport.y)
    return viewport


def _validate_sort(sort: SortSpec | None) -> SortSpec | None:
    if sort is None:
        return None
    if sort.field not in TASK_SORT_FIELDS:
        raise ValidationError(
            "Unknown sort field requested",
            reason="invalid_sort",
            context={"field": sort.field, "allowed": list(TASK_SORT_FIELDS)},
        )
    direction = sort.direction or "asc"
    if direction not in SORT_DIRECTIONS:
        raise ValidationError(
            "Sort direction must be asc or desc",
            reason="invalid_sort",
            context={"direction": sort.direction},
        )
    return SortSpec(field=sort.field, direction=direction)


class CategoryService:
    """Catalogue of named task categories; names are unique case-insensitively."""

    def __init__(
        self,
        categories: CategoryRepository,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.categories = categories
        self.id_factory = id_factory or _new_id
        self.clock = clock or utcnow

    async def create_category(
        self,
        name: str,
        *,
        color: str | None = None,
        icon: str | None = None,
        description: str | None = None,
    ) -> Category:
        if not name or not name.strip():
            raise ValidationError("Category name is required", reason="blank_name", context={"field": "name"})
        existing = await self.categories.find_by_name(name.strip())
        if existing is not None:
            raise ValidationError(
                "Category name already exists",
                reason="duplicate_name",
                context={"name": name.strip(), "existing_id": existing.id},
            )

        category = Category.create(
            self.id_factory(),
            name,
            color=color,
            icon=icon,
            description=description,
            created_at=self.clock(),
        )
        await self.categories.save(category)
        logger.info("category.created id=%s name=%s color=%s", category.id, category.name, category.color)
        return category

    async def list_categories(self, query: CategoryQuery | None = None) -> list[Category]:
        query = query or CategoryQuery()
        search = (query.search or "").strip() or None
        if search and len(search) > MAX_SEARCH_LENGTH:
            raise ValidationError(
                "Search term exceeds allowed length",
                reason="search_too_long",
                context={"max": MAX_SEARCH_LENGTH},
            )
        normalized = CategoryQuery(
            search=search,
            limit=_normalize_limit(query.limit),
            offset=_normalize_offset(query.offset),
        )
        logger.debug("categories.list query=%s", normalized)
        return await self.categories.list(normalized)
