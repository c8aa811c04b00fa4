"""Renderers for command output."""

from __future__ import annotations

import json
from typing import Any, Iterable

from .hierarchy import HierarchyNode, format_outline
from .models import BoardError, Category, Relationship, Task
from .snapshot import BoardSnapshot, BoardStatus

STATUS_ORDER = ("pending", "in_progress", "completed")
STATUS_LABELS = {
    "pending": "PENDING",
    "in_progress": "IN PROGRESS",
    "completed": "DONE",
}

TASK_COLUMNS = (("id", 12), ("title", 32), ("status", 11), ("priority", 8), ("position", 16))
RELATIONSHIP_COLUMNS = (("id", 12), ("from_id", 12), ("type", 10), ("to_id", 12), ("description", 28))
CATEGORY_COLUMNS = (("id", 12), ("name", 24), ("color", 8), ("icon", 12), ("description", 32))


def _priority_style(priority: int) -> str:
    return {
        5: "bold red",
        4: "bold yellow",
        3: "cyan",
        2: "white",
        1: "dim",
    }.get(priority, "white")


def _status_style(status: str) -> str:
    return {
        "pending": "magenta",
        "in_progress": "cyan",
        "completed": "green",
    }.get(status, "white")


def _type_style(rel_type: str) -> str:
    return {
        "depends_on": "yellow",
        "blocks": "red",
        "related_to": "blue",
        "parent_of": "green",
    }.get(rel_type, "white")


def _truncate(value: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(value) <= width:
        return value
    if width == 1:
        return "…"
    return f"{value[: width - 1]}…"


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.1f}"


def _task_row(task: Task) -> dict[str, str]:
    return {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "priority": f"P{task.priority}",
        "position": f"({_format_number(task.position.x)}, {_format_number(task.position.y)})",
    }


def _relationship_row(relationship: Relationship) -> dict[str, str]:
    return {
        "id": relationship.id,
        "from_id": relationship.from_id,
        "to_id": relationship.to_id,
        "type": relationship.type.value,
        "description": relationship.description or "",
    }


def _category_row(category: Category) -> dict[str, str]:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon or "",
        "description": category.description or "",
    }


def _plain_table(rows: list[dict[str, str]], columns: tuple[tuple[str, int], ...]) -> list[str]:
    lines = ["  ".join(name.ljust(width) for name, width in columns).rstrip()]
    lines.append("  ".join("-" * width for _, width in columns))
    for row in rows:
        lines.append("  ".join(_truncate(row[name], width).ljust(width) for name, width in columns).rstrip())
    return lines


def dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def render_json_success(data: Any) -> str:
    return dumps({"success": True, "data": data})


def render_json_error(error: BoardError) -> str:
    return dumps({"success": False, "error": error.to_dict()})


def render_task_list_plain(tasks: Iterable[Task]) -> str:
    rows = [_task_row(task) for task in tasks]
    if not rows:
        return "No tasks found."
    return "\n".join(_plain_table(rows, TASK_COLUMNS))


def render_task_list_rich(tasks: Iterable[Task]):
    from rich import box
    from rich.console import Group
    from rich.table import Table
    from rich.text import Text

    task_list = list(tasks)
    if not task_list:
        return "No tasks found."

    by_status: dict[str, list[Task]] = {status: [] for status in STATUS_ORDER}
    for task in task_list:
        by_status.setdefault(task.status, []).append(task)

    renderables = []
    for status in STATUS_ORDER:
        bucket = by_status.get(status) or []
        if not bucket:
            continue
        renderables.append(
            Text(f"{STATUS_LABELS[status]} ({len(bucket)})", style=f"bold {_status_style(status)}")
        )
        table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold white", pad_edge=False)
        for name, width in TASK_COLUMNS:
            if name == "status":
                continue
            table.add_column(name, min_width=width, max_width=width, overflow="ellipsis", no_wrap=True)
        for task in bucket:
            row = _task_row(task)
            table.add_row(
                Text(row["id"], style="dim"),
                Text(row["title"], style="bold"),
                Text(row["priority"], style=_priority_style(task.priority)),
                row["position"],
            )
        renderables.append(table)
    return Group(*renderables)


def render_relationship_list_plain(relationships: Iterable[Relationship]) -> str:
    rows = [_relationship_row(relationship) for relationship in relationships]
    if not rows:
        return "No relationships found."
    return "\n".join(_plain_table(rows, RELATIONSHIP_COLUMNS))


def render_relationship_list_rich(relationships: Iterable[Relationship]):
    from rich import box
    from rich.table import Table
    from rich.text import Text

    items = list(relationships)
    if not items:
        return "No relationships found."
    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold white", pad_edge=False)
    for name, width in RELATIONSHIP_COLUMNS:
        table.add_column(name, min_width=width, max_width=width, overflow="ellipsis", no_wrap=True)
    for relationship in items:
        row = _relationship_row(relationship)
        table.add_row(
            Text(row["id"], style="dim"),
            row["from_id"],
            Text(row["type"], style=_type_style(row["type"])),
            row["to_id"],
            row["description"],
        )
    return table


def render_relationship_plain(relationship: Relationship) -> str:
    text = f"{relationship.from_id} -[{relationship.type.value}]-> {relationship.to_id} ({relationship.id})"
    if relationship.description:
        text += f": {relationship.description}"
    return text


def render_category_list_plain(categories: Iterable[Category]) -> str:
    rows = [_category_row(category) for category in categories]
    if not rows:
        return "No categories found."
    return "\n".join(_plain_table(rows, CATEGORY_COLUMNS))


def render_category_list_rich(categories: Iterable[Category]):
    from rich import box
    from rich.table import Table
    from rich.text import Text

    items = list(categories)
    if not items:
        return "No categories found."
    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold white", pad_edge=False)
    for name, width in CATEGORY_COLUMNS:
        table.add_column(name, min_width=width, max_width=width, overflow="ellipsis", no_wrap=True)
    for category in items:
        row = _category_row(category)
        table.add_row(
            Text(row["id"], style="dim"),
            Text(row["name"], style="bold"),
            Text(row["color"], style=category.color),
            row["icon"],
            row["description"],
        )
    return table


def render_hierarchy_plain(forest: list[HierarchyNode]) -> str:
    lines = format_outline(forest)
    if not lines:
        return "No tasks found."
    return "\n".join(lines)


def render_hierarchy_rich(forest: list[HierarchyNode]):
    from rich.text import Text
    from rich.tree import Tree

    if not forest:
        return "No tasks found."

    def label(node: HierarchyNode) -> Text:
        task = node.task
        text = Text()
        if task.icon:
            text.append(f"{task.icon} ")
        text.append(task.title, style="bold")
        text.append(f" ({task.status} · P{task.priority})", style=_status_style(task.status))
        if task.category:
            text.append(f" [{task.category}]", style="dim")
        return text

    root = Tree("board", guide_style="bright_black", hide_root=True)

    stack = [(root, node) for node in reversed(forest)]
    while stack:
        parent, node = stack.pop()
        branch = parent.add(label(node))
        stack.extend((branch, child) for child in reversed(node.children))
    return root


def hierarchy_payload(forest: list[HierarchyNode], tasks: int, relationships: int) -> dict[str, Any]:
    return {
        "totals": {"roots": len(forest), "tasks": tasks, "relationships": relationships},
        "hierarchy": [node.to_dict() for node in forest],
        "outline": format_outline(forest),
    }


def render_snapshot_plain(snapshot: BoardSnapshot) -> str:
    totals = snapshot.totals
    bounds = snapshot.bounds
    viewport = snapshot.viewport
    statuses = ", ".join(f"{status}={count}" for status, count in totals.statuses.items())
    priorities = ", ".join(f"P{priority}={count}" for priority, count in totals.priorities.items())
    return "\n".join(
        [
            f"tasks: {totals.count} ({statuses})",
            f"priorities: {priorities}",
            (
                f"bounds: x[{_format_number(bounds.min_x)}, {_format_number(bounds.max_x)}] "
                f"y[{_format_number(bounds.min_y)}, {_format_number(bounds.max_y)}] "
                f"{_format_number(bounds.width)}x{_format_number(bounds.height)}"
            ),
            (
                f"viewport: x[{_format_number(viewport.x.min)}, {_format_number(viewport.x.max)}] "
                f"y[{_format_number(viewport.y.min)}, {_format_number(viewport.y.max)}] "
                f"{_format_number(viewport.width)}x{_format_number(viewport.height)}"
            ),
            f"relationships: {len(snapshot.relationships)}",
        ]
    )


def render_status_plain(status: BoardStatus) -> str:
    lines = [
        f"total: {status.total}  active: {status.active}  completed: {status.completed}",
        f"completion: {status.completion_rate * 100:.1f}%",
        "statuses: " + ", ".join(f"{key}={value}" for key, value in status.statuses.items()),
        "priorities: " + ", ".join(f"P{key}={value}" for key, value in status.priorities.items()),
    ]
    if status.categories:
        lines.append("categories: " + ", ".join(f"{item.label}={item.count}" for item in status.categories))
    deps = status.dependencies
    lines.append(
        f"relationships: {deps.total}  dependent: {deps.dependent_tasks}  "
        f"blocking: {deps.blocking_tasks}  blocked: {deps.blocked_tasks}  broken: {deps.broken_count}"
    )
    for broken in deps.broken_relationships:
        lines.append(f"  broken {broken.id}: missing {broken.missing_endpoint} {broken.missing_task_id}")
    return "\n".join(lines)
