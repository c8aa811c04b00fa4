"""Board snapshot and status aggregation."""

from __future__ import annotations

from dataclasses import dataclass, field
import datetime as dt
from typing import Any, Iterable, Protocol, Sequence

from .models import (
    VALID_PRIORITIES,
    VALID_STATUSES,
    Position,
    Relationship,
    RelationshipType,
    Task,
)
from .repository import (
    AxisRange,
    RelationshipQuery,
    RelationshipRepository,
    TaskQuery,
    TaskRepository,
    collect_pages,
)

DEFAULT_VIEWPORT_PADDING = 240
MIN_VIEWPORT_SIZE = 480
SCAN_PAGE_SIZE = 250


@dataclass(frozen=True, slots=True)
class SnapshotTotals:
    count: int
    statuses: dict[str, int]
    priorities: dict[int, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "statuses": dict(self.statuses),
            "priorities": {str(key): value for key, value in self.priorities.items()},
        }


@dataclass(frozen=True, slots=True)
class CanvasBounds:
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    width: float
    height: float
    center: Position

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_x": self.min_x,
            "max_x": self.max_x,
            "min_y": self.min_y,
            "max_y": self.max_y,
            "width": self.width,
            "height": self.height,
            "center": self.center.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class SnapshotViewport:
    width: float
    height: float
    padding: float
    x: AxisRange
    y: AxisRange

    def to_dict(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "padding": self.padding,
            "x": {"min": self.x.min, "max": self.x.max},
            "y": {"min": self.y.min, "max": self.y.max},
        }


@dataclass(frozen=True, slots=True)
class BoardSnapshot:
    tasks: list[Task]
    relationships: list[Relationship]
    totals: SnapshotTotals
    bounds: CanvasBounds
    viewport: SnapshotViewport

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "bounds": self.bounds.to_dict(),
            "viewport": self.viewport.to_dict(),
            "tasks": [task.to_dict() for task in self.tasks],
            "relationships": [relationship.to_dict() for relationship in self.relationships],
        }


def aggregate_totals(tasks: Sequence[Task]) -> SnapshotTotals:
    statuses = {status: 0 for status in VALID_STATUSES}
    priorities = {priority: 0 for priority in VALID_PRIORITIES}
    for task in tasks:
        statuses[task.status] += 1
        priorities[task.priority] += 1
    return SnapshotTotals(count=len(tasks), statuses=statuses, priorities=priorities)


def calculate_bounds(tasks: Sequence[Task]) -> CanvasBounds:
    if not tasks:
        return CanvasBounds(0, 0, 0, 0, 0, 0, Position(0, 0))
    xs = [task.position.x for task in tasks]
    ys = [task.position.y for task in tasks]
    min_x, max_x = min(xs), max(xs)
    min_y, max_y = min(ys), max(ys)
    width = max_x - min_x
    height = max_y - min_y
    return CanvasBounds(
        min_x=min_x,
        max_x=max_x,
        min_y=min_y,
        max_y=max_y,
        width=width,
        height=height,
        center=Position(min_x + width / 2, min_y + height / 2),
    )


def build_viewport(
    bounds: CanvasBounds,
    *,
    padding: float = DEFAULT_VIEWPORT_PADDING,
    min_viewport_size: float = MIN_VIEWPORT_SIZE,
) -> SnapshotViewport:
    width = max(bounds.width + padding * 2, min_viewport_size)
    height = max(bounds.height + padding * 2, min_viewport_size)
    center = bounds.center
    return SnapshotViewport(
        width=width,
        height=height,
        padding=padding,
        x=AxisRange(center.x - width / 2, center.x + width / 2),
        y=AxisRange(center.y - height / 2, center.y + height / 2),
    )


def scope_relationships(tasks: Sequence[Task], relationships: Iterable[Relationship]) -> list[Relationship]:
    """Keep edges with at least one endpoint on the board."""
    task_ids = {task.id for task in tasks}
    return [
        relationship
        for relationship in relationships
        if relationship.from_id in task_ids or relationship.to_id in task_ids
    ]


def build_snapshot(
    tasks: Sequence[Task],
    relationships: Iterable[Relationship] | None = None,
    *,
    padding: float = DEFAULT_VIEWPORT_PADDING,
    min_viewport_size: float = MIN_VIEWPORT_SIZE,
) -> BoardSnapshot:
    task_list = list(tasks)
    bounds = calculate_bounds(task_list)
    return BoardSnapshot(
        tasks=task_list,
        relationships=scope_relationships(task_list, relationships or ()),
        totals=aggregate_totals(task_list),
        bounds=bounds,
        viewport=build_viewport(bounds, padding=padding, min_viewport_size=min_viewport_size),
    )


async def all_relationships(relationships: RelationshipRepository) -> list[Relationship]:
    return await collect_pages(
        lambda limit, offset: relationships.list(RelationshipQuery(limit=limit, offset=offset)),
        SCAN_PAGE_SIZE,
    )


class TaskLister(Protocol):
    async def list_tasks(self, query: TaskQuery | None = None) -> list[Task]: ...


async def load_board_snapshot(
    task_service: TaskLister,
    relationships: RelationshipRepository,
    query: TaskQuery | None = None,
    *,
    padding: float = DEFAULT_VIEWPORT_PADDING,
    min_viewport_size: float = MIN_VIEWPORT_SIZE,
) -> BoardSnapshot:
    """Fetch the filtered task list through ``task_service`` and aggregate it."""
    tasks = await task_service.list_tasks(query)
    edges = await all_relationships(relationships)
    return build_snapshot(tasks, edges, padding=padding, min_viewport_size=min_viewport_size)


@dataclass(frozen=True, slots=True)
class StatusCategory:
    label: str
    value: str
    color: str | None
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "value": self.value, "color": self.color, "count": self.count}


@dataclass(frozen=True, slots=True)
class BrokenRelationship:
    id: str
    missing_endpoint: str
    missing_task_id: str
    type: RelationshipType

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "missing_endpoint": self.missing_endpoint,
            "missing_task_id": self.missing_task_id,
            "type": self.type.value,
        }


@dataclass(frozen=True, slots=True)
class DependencyHealth:
    total: int
    by_type: dict[str, int]
    dependent_tasks: int
    blocking_tasks: int
    blocked_tasks: int
    broken_relationships: list[BrokenRelationship] = field(default_factory=list)

    @property
    def broken_count(self) -> int:
        return len(self.broken_relationships)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "dependent_tasks": self.dependent_tasks,
            "blocking_tasks": self.blocking_tasks,
            "blocked_tasks": self.blocked_tasks,
            "broken_count": self.broken_count,
            "broken_relationships": [item.to_dict() for item in self.broken_relationships],
        }


@dataclass(frozen=True, slots=True)
class BoardStatus:
    total: int
    active: int
    completed: int
    completion_rate: float
    statuses: dict[str, int]
    priorities: dict[int, int]
    categories: list[StatusCategory]
    dependencies: DependencyHealth
    last_updated_at: dt.datetime | None = None
    last_created_at: dt.datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": {
                "total": self.total,
                "active": self.active,
                "completed": self.completed,
                "completion_rate": round(self.completion_rate, 4),
                "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
                "last_created_at": self.last_created_at.isoformat() if self.last_created_at else None,
            },
            "statuses": dict(self.statuses),
            "priorities": {str(key): value for key, value in self.priorities.items()},
            "categories": [category.to_dict() for category in self.categories],
            "dependencies": self.dependencies.to_dict(),
        }


def _categories(tasks: Sequence[Task]) -> list[StatusCategory]:
    counts: dict[str, int] = {}
    firsts: dict[str, tuple[str, str]] = {}
    for task in tasks:
        label = (task.category or "").strip() or "Uncategorized"
        value = label.lower()
        counts[value] = counts.get(value, 0) + 1
        firsts.setdefault(value, (label, task.color))
    rows = [
        StatusCategory(label=firsts[value][0], value=value, color=firsts[value][1], count=count)
        for value, count in counts.items()
    ]
    return sorted(rows, key=lambda row: (-row.count, row.label))


def _dependency_health(tasks: Sequence[Task], relationships: Sequence[Relationship]) -> DependencyHealth:
    by_id = {task.id: task for task in tasks}
    by_type = {rel_type.value: 0 for rel_type in RelationshipType}
    dependent: set[str] = set()
    blocking: set[str] = set()
    blocked: set[str] = set()
    broken: list[BrokenRelationship] = []

    for relationship in relationships:
        by_type[relationship.type.value] += 1
        if relationship.from_id not in by_id:
            broken.append(
                BrokenRelationship(relationship.id, "source", relationship.from_id, relationship.type)
            )
            continue
        if relationship.to_id not in by_id:
            broken.append(
                BrokenRelationship(relationship.id, "target", relationship.to_id, relationship.type)
            )
            continue
        if relationship.type is RelationshipType.DEPENDS_ON:
            dependent.add(relationship.from_id)
            if by_id[relationship.to_id].status != "completed":
                blocked.add(relationship.from_id)
        elif relationship.type is RelationshipType.BLOCKS:
            blocking.add(relationship.from_id)
            blocked.add(relationship.to_id)

    return DependencyHealth(
        total=len(relationships),
        by_type=by_type,
        dependent_tasks=len(dependent),
        blocking_tasks=len(blocking),
        blocked_tasks=len(blocked),
        broken_relationships=broken,
    )


def build_board_status(tasks: Sequence[Task], relationships: Sequence[Relationship] = ()) -> BoardStatus:
    totals = aggregate_totals(tasks)
    total = totals.count
    completed = totals.statuses["completed"]
    return BoardStatus(
        total=total,
        active=totals.statuses["pending"] + totals.statuses["in_progress"],
        completed=completed,
        completion_rate=0.0 if total == 0 else completed / total,
        statuses=totals.statuses,
        priorities=totals.priorities,
        categories=_categories(tasks),
        dependencies=_dependency_health(tasks, list(relationships)),
        last_updated_at=max((task.updated_at for task in tasks), default=None),
        last_created_at=max((task.created_at for task in tasks), default=None),
    )


async def load_board_status(tasks: TaskRepository, relationships: RelationshipRepository) -> BoardStatus:
    all_tasks = await collect_pages(
        lambda limit, offset: tasks.list(TaskQuery(limit=limit, offset=offset)),
        SCAN_PAGE_SIZE,
    )
    return build_board_status(all_tasks, await all_relationships(relationships))
