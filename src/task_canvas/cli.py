"""CLI entrypoint for task-canvas."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import sys
from typing import Annotated, Any, Awaitable, Callable

import click
import typer

from . import render, storage
from .hierarchy import build_hierarchy
from .models import BoardError, Position, RelationshipType, ValidationError
from .repository import (
    SORT_DIRECTIONS,
    TASK_SORT_FIELDS,
    AxisRange,
    CategoryQuery,
    PriorityRange,
    RelationshipQuery,
    SortSpec,
    TaskQuery,
    ViewportRange,
)
from .service import CategoryService, RelationshipService, TaskService
from .snapshot import all_relationships, load_board_snapshot, load_board_status

BoardRootOption = Annotated[Path | None, typer.Option("--board-root", help="Explicit .board path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit machine-readable JSON")]
StatusFilterOption = Annotated[
    list[str],
    typer.Option("--status", help="pending, in_progress, or completed. Can be repeated"),
]
CategoryOption = Annotated[str | None, typer.Option("--category")]
SearchOption = Annotated[str | None, typer.Option("--search", help="Match title, description, category")]
PriorityMinOption = Annotated[int | None, typer.Option("--priority-min")]
PriorityMaxOption = Annotated[int | None, typer.Option("--priority-max")]
XMinOption = Annotated[float | None, typer.Option("--x-min")]
XMaxOption = Annotated[float | None, typer.Option("--x-max")]
YMinOption = Annotated[float | None, typer.Option("--y-min")]
YMaxOption = Annotated[float | None, typer.Option("--y-max")]
SortOption = Annotated[
    str | None,
    typer.Option("--sort", click_type=click.Choice(TASK_SORT_FIELDS), help="Sort field"),
]
DirectionOption = Annotated[
    str | None,
    typer.Option("--direction", click_type=click.Choice(SORT_DIRECTIONS), help="Sort direction"),
]
LimitOption = Annotated[int | None, typer.Option("--limit")]
OffsetOption = Annotated[int | None, typer.Option("--offset")]

app = typer.Typer(
    help="Spatial task board with typed task relationships",
    no_args_is_help=True,
)


@dataclass(slots=True)
class Board:
    root: Path
    settings: dict[str, Any]
    tasks: TaskService
    links: RelationshipService
    categories: CategoryService


def _can_render_rich_output() -> bool:
    return sys.stdout.isatty()


def _print_rich(renderable) -> None:
    from rich.console import Console

    Console().print(renderable)


def _configure_logging(verbose: bool, debug: bool) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    package_logger = logging.getLogger("task_canvas")
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)
    package_logger.addHandler(
        RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    )
    package_logger.setLevel(level)


def _echo_root_notice(root: Path, multiple_found: bool) -> None:
    typer.echo(f"Using board root: {root}", err=True)
    if multiple_found:
        typer.echo("Warning: multiple .board roots found; using nearest ancestor.", err=True)


def _warn_config(message: str) -> None:
    typer.echo(f"Warning: {message}", err=True)


def _resolve_existing_root(board_root: Path | None) -> Path:
    if board_root is not None:
        root = board_root.resolve()
        if not root.exists():
            raise typer.BadParameter(f"board root not found: {root}")
        return root

    root, multiple = storage.choose_board_root(Path.cwd())
    if root is None:
        raise ValidationError(
            "No .board root found from current directory upward. Run 'task-canvas init' first.",
            reason="missing_board",
        )
    _echo_root_notice(root, multiple)
    return root


def _resolve_init_root(board_root: Path | None) -> Path:
    if board_root is not None:
        return board_root.resolve()

    root, multiple = storage.choose_board_root(Path.cwd())
    if root is not None:
        _echo_root_notice(root, multiple)
        return root

    default_root = storage.default_init_root(Path.cwd())
    typer.echo(f"No .board found. Initializing at: {default_root}", err=True)
    return default_root


def _open_board(board_root: Path | None) -> Board:
    root = _resolve_existing_root(board_root)
    storage.ensure_layout(root)
    settings = storage.resolve_settings(root, warn=_warn_config)
    task_repo = storage.YamlTaskRepository(root)
    links = RelationshipService(storage.YamlRelationshipRepository(root), task_repo)
    tasks = TaskService(task_repo, links, default_color=settings["default_color"])
    categories = CategoryService(storage.YamlCategoryRepository(root))
    return Board(root=root, settings=settings, tasks=tasks, links=links, categories=categories)


def _run_and_handle(fn: Callable[[], Awaitable[None]], *, as_json: bool = False) -> None:
    try:
        asyncio.run(fn())
    except BoardError as exc:
        if as_json:
            typer.echo(render.render_json_error(exc), err=True)
        else:
            typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _position(x: float | None, y: float | None) -> Position | None:
    if x is None and y is None:
        return None
    if x is None or y is None:
        raise typer.BadParameter("--x and --y must be given together")
    return Position(x, y)


def _task_query(
    *,
    status: list[str],
    category: str | None,
    search: str | None,
    priority_min: int | None,
    priority_max: int | None,
    x_min: float | None,
    x_max: float | None,
    y_min: float | None,
    y_max: float | None,
    sort: str | None,
    direction: str | None,
    limit: int | None,
    offset: int | None,
) -> TaskQuery:
    bounds = (x_min, x_max, y_min, y_max)
    viewport = None
    if any(value is not None for value in bounds):
        if any(value is None for value in bounds):
            raise typer.BadParameter("--x-min, --x-max, --y-min and --y-max must be given together")
        viewport = ViewportRange(x=AxisRange(x_min, x_max), y=AxisRange(y_min, y_max))

    priority_range = None
    if priority_min is not None or priority_max is not None:
        priority_range = PriorityRange(min=priority_min, max=priority_max)

    sort_spec = None
    if sort is not None or direction is not None:
        sort_spec = SortSpec(field=sort or "created_at", direction=direction)

    return TaskQuery(
        status=status or None,
        category=category,
        search=search,
        priority_range=priority_range,
        viewport=viewport,
        limit=limit,
        offset=offset,
        sort=sort_spec,
    )


@app.callback()
def root_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log mutations to stderr")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Log queries and graph traversal")] = False,
) -> None:
    """Manage tasks on a canvas and the relationships between them."""
    _configure_logging(verbose, debug)


@app.command("init")
def init_cmd(board_root: BoardRootOption = None) -> None:
    """Initialize .board directory layout."""

    async def _inner() -> None:
        root = _resolve_init_root(board_root)
        storage.ensure_layout(root)
        cfg_path = storage.config_path(root)
        typer.echo(f"Initialized board root: {root}")
        if storage.write_default_config_if_missing(root):
            typer.echo(f"Created config: {cfg_path}")
        else:
            typer.echo(f"Using existing config: {cfg_path}")

    _run_and_handle(_inner)


@app.command("add")
def add_cmd(
    title: Annotated[str, typer.Argument(help="Task title")],
    description: Annotated[str | None, typer.Option("--description")] = None,
    status: Annotated[str, typer.Option("--status")] = "pending",
    priority: Annotated[int, typer.Option("--priority", help="1 (lowest) to 5 (highest)")] = 3,
    category: CategoryOption = None,
    color: Annotated[str | None, typer.Option("--color", help="Hex color like #60a5fa")] = None,
    icon: Annotated[str | None, typer.Option("--icon")] = None,
    x: Annotated[float | None, typer.Option("--x")] = None,
    y: Annotated[float | None, typer.Option("--y")] = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Create a task; placed on a spiral when no position is given."""
    position = _position(x, y)

    async def _inner() -> None:
        board = _open_board(board_root)
        task = await board.tasks.create_task(
            title,
            description=description,
            status=status,
            priority=priority,
            category=category,
            color=color,
            icon=icon,
            position=position,
        )
        if as_json:
            typer.echo(render.render_json_success(task.to_dict()))
        else:
            typer.echo(f"Created: {task.title} ({task.id})")

    _run_and_handle(_inner, as_json=as_json)


@app.command("list")
def list_cmd(
    status: StatusFilterOption = [],
    category: CategoryOption = None,
    search: SearchOption = None,
    priority_min: PriorityMinOption = None,
    priority_max: PriorityMaxOption = None,
    x_min: XMinOption = None,
    x_max: XMaxOption = None,
    y_min: YMinOption = None,
    y_max: YMaxOption = None,
    sort: SortOption = None,
    direction: DirectionOption = None,
    limit: LimitOption = None,
    offset: OffsetOption = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """List tasks matching filters."""
    query = _task_query(
        status=status,
        category=category,
        search=search,
        priority_min=priority_min,
        priority_max=priority_max,
        x_min=x_min,
        x_max=x_max,
        y_min=y_min,
        y_max=y_max,
        sort=sort,
        direction=direction,
        limit=limit,
        offset=offset,
    )

    async def _inner() -> None:
        board = _open_board(board_root)
        tasks = await board.tasks.list_tasks(query)
        if as_json:
            typer.echo(render.render_json_success([task.to_dict() for task in tasks]))
        elif _can_render_rich_output():
            _print_rich(render.render_task_list_rich(tasks))
        else:
            typer.echo(render.render_task_list_plain(tasks))

    _run_and_handle(_inner, as_json=as_json)


@app.command("update")
def update_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id")],
    title: Annotated[str | None, typer.Option("--title")] = None,
    description: Annotated[str | None, typer.Option("--description", help="Empty string clears")] = None,
    status: Annotated[str | None, typer.Option("--status")] = None,
    priority: Annotated[int | None, typer.Option("--priority")] = None,
    category: Annotated[str | None, typer.Option("--category", help="Empty string clears")] = None,
    color: Annotated[str | None, typer.Option("--color")] = None,
    icon: Annotated[str | None, typer.Option("--icon", help="Empty string clears")] = None,
    x: Annotated[float | None, typer.Option("--x")] = None,
    y: Annotated[float | None, typer.Option("--y")] = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Update task fields, status, or position."""

    async def _inner() -> None:
        board = _open_board(board_root)
        task = await board.tasks.update_task(
            task_id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            category=category,
            color=color,
            icon=icon,
            x=x,
            y=y,
        )
        if as_json:
            typer.echo(render.render_json_success(task.to_dict()))
        else:
            typer.echo(f"Updated: {task.title} ({task.id})")

    _run_and_handle(_inner, as_json=as_json)


@app.command("delete")
def delete_cmd(
    task_ids: Annotated[list[str], typer.Argument(help="One or more task ids")],
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Delete tasks and every relationship that touches them."""

    async def _inner() -> None:
        board = _open_board(board_root)
        deleted = await board.tasks.delete_tasks(task_ids)
        if as_json:
            typer.echo(render.render_json_success({"deleted": deleted}))
        else:
            typer.echo(f"Deleted: {', '.join(deleted)}")

    _run_and_handle(_inner, as_json=as_json)


@app.command("link")
def link_cmd(
    from_id: Annotated[str, typer.Argument(help="Source task id")],
    to_id: Annotated[str, typer.Argument(help="Target task id")],
    rel_type: Annotated[
        str,
        typer.Option("--type", help="depends_on, blocks, related_to, or parent_of"),
    ] = RelationshipType.DEPENDS_ON.value,
    description: Annotated[str | None, typer.Option("--description")] = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Create a typed relationship between two tasks."""

    async def _inner() -> None:
        board = _open_board(board_root)
        relationship = await board.links.create_relationship(from_id, to_id, rel_type, description)
        if as_json:
            typer.echo(render.render_json_success(relationship.to_dict()))
        else:
            typer.echo(f"Linked: {render.render_relationship_plain(relationship)}")

    _run_and_handle(_inner, as_json=as_json)


@app.command("links")
def links_cmd(
    from_id: Annotated[str | None, typer.Option("--from", help="Source task id")] = None,
    to_id: Annotated[str | None, typer.Option("--to", help="Target task id")] = None,
    involving: Annotated[str | None, typer.Option("--involving", help="Either endpoint")] = None,
    rel_type: Annotated[list[str], typer.Option("--type", help="Can be repeated")] = [],
    limit: LimitOption = None,
    offset: OffsetOption = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """List relationships, newest first."""

    async def _inner() -> None:
        board = _open_board(board_root)
        query = RelationshipQuery(
            from_id=from_id,
            to_id=to_id,
            involving=involving,
            type=rel_type or None,
            limit=limit,
            offset=offset,
        )
        relationships = await board.links.list_relationships(query)
        if as_json:
            typer.echo(render.render_json_success([item.to_dict() for item in relationships]))
        elif _can_render_rich_output():
            _print_rich(render.render_relationship_list_rich(relationships))
        else:
            typer.echo(render.render_relationship_list_plain(relationships))

    _run_and_handle(_inner, as_json=as_json)


@app.command("relink")
def relink_cmd(
    relationship_id: Annotated[str, typer.Argument(help="Relationship id")],
    rel_type: Annotated[str | None, typer.Option("--type")] = None,
    description: Annotated[str | None, typer.Option("--description", help="Empty string clears")] = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Change a relationship's type or description."""

    async def _inner() -> None:
        board = _open_board(board_root)
        relationship = await board.links.update_relationship(
            relationship_id,
            type=rel_type,
            description=description,
        )
        if as_json:
            typer.echo(render.render_json_success(relationship.to_dict()))
        else:
            typer.echo(f"Updated: {render.render_relationship_plain(relationship)}")

    _run_and_handle(_inner, as_json=as_json)


@app.command("unlink")
def unlink_cmd(
    relationship_ids: Annotated[list[str], typer.Argument(help="One or more relationship ids")],
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Delete relationships; nothing is removed if any id is unknown."""

    async def _inner() -> None:
        board = _open_board(board_root)
        deleted = await board.links.delete_relationships(relationship_ids)
        if as_json:
            typer.echo(render.render_json_success({"deleted": deleted}))
        else:
            typer.echo(f"Unlinked: {', '.join(deleted)}")

    _run_and_handle(_inner, as_json=as_json)


@app.command("category-add")
def category_add_cmd(
    name: Annotated[str, typer.Argument(help="Category label")],
    color: Annotated[str | None, typer.Option("--color", help="Hex color like #f97316")] = None,
    icon: Annotated[str | None, typer.Option("--icon", help="Icon token, at most 40 characters")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Create a named category."""

    async def _inner() -> None:
        board = _open_board(board_root)
        category = await board.categories.create_category(
            name,
            color=color,
            icon=icon,
            description=description,
        )
        if as_json:
            typer.echo(render.render_json_success(category.to_dict()))
        else:
            typer.echo(f"Created category: {category.name} ({category.id})")

    _run_and_handle(_inner, as_json=as_json)


@app.command("categories")
def categories_cmd(
    search: Annotated[str | None, typer.Option("--search", help="Match name or description")] = None,
    limit: LimitOption = None,
    offset: OffsetOption = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """List categories by name."""

    async def _inner() -> None:
        board = _open_board(board_root)
        categories = await board.categories.list_categories(
            CategoryQuery(search=search, limit=limit, offset=offset)
        )
        if as_json:
            typer.echo(render.render_json_success([category.to_dict() for category in categories]))
        elif _can_render_rich_output():
            _print_rich(render.render_category_list_rich(categories))
        else:
            typer.echo(render.render_category_list_plain(categories))

    _run_and_handle(_inner, as_json=as_json)


@app.command("snapshot")
def snapshot_cmd(
    status: StatusFilterOption = [],
    category: CategoryOption = None,
    search: SearchOption = None,
    priority_min: PriorityMinOption = None,
    priority_max: PriorityMaxOption = None,
    x_min: XMinOption = None,
    x_max: XMaxOption = None,
    y_min: YMinOption = None,
    y_max: YMaxOption = None,
    sort: SortOption = None,
    direction: DirectionOption = None,
    limit: LimitOption = None,
    offset: OffsetOption = None,
    padding: Annotated[float | None, typer.Option("--padding", min=0)] = None,
    min_viewport: Annotated[float | None, typer.Option("--min-viewport", min=0)] = None,
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Summarize the filtered board: totals, bounds, viewport, relationships."""
    query = _task_query(
        status=status,
        category=category,
        search=search,
        priority_min=priority_min,
        priority_max=priority_max,
        x_min=x_min,
        x_max=x_max,
        y_min=y_min,
        y_max=y_max,
        sort=sort,
        direction=direction,
        limit=limit,
        offset=offset,
    )

    async def _inner() -> None:
        board = _open_board(board_root)
        snapshot = await load_board_snapshot(
            board.tasks,
            board.links.relationships,
            query,
            padding=board.settings["viewport_padding"] if padding is None else padding,
            min_viewport_size=board.settings["min_viewport_size"] if min_viewport is None else min_viewport,
        )
        if as_json:
            typer.echo(render.render_json_success(snapshot.to_dict()))
        else:
            typer.echo(render.render_snapshot_plain(snapshot))

    _run_and_handle(_inner, as_json=as_json)


@app.command("hierarchy")
def hierarchy_cmd(
    edge_type: Annotated[str, typer.Option("--type", help="Relationship type forming the tree")] = (
        RelationshipType.PARENT_OF.value
    ),
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Show tasks as a parent/child outline."""

    async def _inner() -> None:
        board = _open_board(board_root)
        target_type = RelationshipType.parse(edge_type)
        tasks = await board.tasks.all_tasks()
        relationships = await all_relationships(board.links.relationships)
        forest = build_hierarchy(tasks, relationships, target_type)
        if as_json:
            payload = render.hierarchy_payload(forest, len(tasks), len(relationships))
            typer.echo(render.render_json_success(payload))
        elif _can_render_rich_output():
            _print_rich(render.render_hierarchy_rich(forest))
        else:
            typer.echo(render.render_hierarchy_plain(forest))

    _run_and_handle(_inner, as_json=as_json)


@app.command("status")
def status_cmd(
    as_json: JsonOption = False,
    board_root: BoardRootOption = None,
) -> None:
    """Show completion, category, and dependency health totals."""

    async def _inner() -> None:
        board = _open_board(board_root)
        status = await load_board_status(board.tasks.tasks, board.links.relationships)
        if as_json:
            typer.echo(render.render_json_success(status.to_dict()))
        else:
            typer.echo(render.render_status_plain(status))

    _run_and_handle(_inner, as_json=as_json)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
