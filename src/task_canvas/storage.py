"""Filesystem layout, config, and YAML-backed repositories for a board."""

from __future__ import annotations

import datetime as dt
import math
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

import yaml

from .models import (
    DEFAULT_COLOR,
    HEX_COLOR_RE,
    Category,
    Position,
    Relationship,
    RelationshipType,
    StorageError,
    Task,
    TaskNotFoundError,
    ValidationError,
)
from .repository import CategoryQuery, RelationshipQuery, TaskQuery

BOARD_DIR_NAME = ".board"
TASKS_DIR = "tasks"
RELATIONSHIPS_DIR = "relationships"
CATEGORIES_DIR = "categories"
REPOSITORY_DEFAULT_LIMIT = 500

DEFAULT_SETTINGS: dict[str, Any] = {
    "viewport_padding": 240,
    "min_viewport_size": 480,
    "default_color": DEFAULT_COLOR,
}

Warn = Callable[[str], None]
T = TypeVar("T")


def discover_board_roots(start: Path) -> list[Path]:
    start = start.resolve()
    roots: list[Path] = []
    for candidate in [start, *start.parents]:
        board_dir = candidate / BOARD_DIR_NAME
        if board_dir.is_dir():
            roots.append(board_dir)
    return roots


def choose_board_root(start: Path) -> tuple[Path | None, bool]:
    roots = discover_board_roots(start)
    if not roots:
        return None, False
    return roots[0], len(roots) > 1


def default_init_root(start: Path) -> Path:
    return start.resolve() / BOARD_DIR_NAME


def ensure_layout(board_root: Path) -> None:
    for name in (TASKS_DIR, RELATIONSHIPS_DIR, CATEGORIES_DIR):
        (board_root / name).mkdir(parents=True, exist_ok=True)


def config_path(board_root: Path) -> Path:
    return board_root / "config.yaml"


def default_config() -> dict[str, Any]:
    return {"settings": dict(DEFAULT_SETTINGS)}


def write_default_config_if_missing(board_root: Path) -> bool:
    path = config_path(board_root)
    if path.exists():
        return False
    payload = yaml.safe_dump(default_config(), sort_keys=False, default_flow_style=False)
    path.write_text(payload, encoding="utf-8")
    return True


def read_config(board_root: Path, warn: Warn | None = None) -> dict[str, Any]:
    path = config_path(board_root)
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        if warn is not None:
            warn(f"Unable to parse config at {path}. Falling back to defaults.")
        return {}
    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Invalid config format at {path}. Falling back to defaults.")
        return {}
    return payload


def _valid_setting(key: str, value: Any) -> bool:
    if key == "default_color":
        return isinstance(value, str) and bool(HEX_COLOR_RE.fullmatch(value))
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return False
    if key == "viewport_padding":
        return value >= 0
    return value > 0


def resolve_settings(board_root: Path, warn: Warn | None = None) -> dict[str, Any]:
    """Merge ``settings`` from config.yaml over defaults, warning on anything unusable."""
    resolved = dict(DEFAULT_SETTINGS)
    data = read_config(board_root, warn=warn)
    path = config_path(board_root)
    for key in data.keys():
        if key != "settings" and warn is not None:
            warn(f"Unsupported config key '{key}' in {path}. Ignoring.")

    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        if warn is not None:
            warn(f"Invalid settings section in {path}. Using defaults.")
        return resolved

    for key, value in settings.items():
        if key not in DEFAULT_SETTINGS:
            if warn is not None:
                warn(f"Unsupported settings key '{key}' in {path}. Ignoring.")
            continue
        if not _valid_setting(key, value):
            if warn is not None:
                warn(f"Invalid settings.{key} in {path}. Using default '{DEFAULT_SETTINGS[key]}'.")
            continue
        resolved[key] = value
    return resolved


def _stamp(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_stamp(value: Any) -> dt.datetime | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value
    return dt.datetime.fromisoformat(str(value))


def task_to_record(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "category": task.category,
        "color": task.color,
        "icon": task.icon,
        "position": {"x": task.position.x, "y": task.position.y},
        "created_at": _stamp(task.created_at),
        "updated_at": _stamp(task.updated_at),
        "completed_at": _stamp(task.completed_at),
    }


def task_from_record(data: dict[str, Any]) -> Task:
    position = data.get("position") or {}
    return Task(
        id=str(data["id"]),
        title=str(data["title"]),
        description=data.get("description"),
        status=data["status"],
        priority=data["priority"],
        category=data.get("category"),
        color=data["color"],
        icon=data.get("icon"),
        position=Position(position.get("x", 0), position.get("y", 0)),
        created_at=_parse_stamp(data["created_at"]),
        updated_at=_parse_stamp(data["updated_at"]),
        completed_at=_parse_stamp(data.get("completed_at")),
    )


def relationship_to_record(relationship: Relationship) -> dict[str, Any]:
    return {
        "id": relationship.id,
        "from_id": relationship.from_id,
        "to_id": relationship.to_id,
        "type": relationship.type.value,
        "description": relationship.description,
        "created_at": _stamp(relationship.created_at),
        "updated_at": _stamp(relationship.updated_at),
    }


def relationship_from_record(data: dict[str, Any]) -> Relationship:
    return Relationship(
        id=str(data["id"]),
        from_id=str(data["from_id"]),
        to_id=str(data["to_id"]),
        type=data["type"],
        description=data.get("description"),
        created_at=_parse_stamp(data["created_at"]),
        updated_at=_parse_stamp(data["updated_at"]),
    )


def category_to_record(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
        "description": category.description,
        "created_at": _stamp(category.created_at),
        "updated_at": _stamp(category.updated_at),
    }


def category_from_record(data: dict[str, Any]) -> Category:
    return Category(
        id=str(data["id"]),
        name=str(data["name"]),
        color=data["color"],
        icon=data.get("icon"),
        description=data.get("description"),
        created_at=_parse_stamp(data["created_at"]),
        updated_at=_parse_stamp(data["updated_at"]),
    )


def _record_path(directory: Path, record_id: str) -> Path:
    if "/" in record_id or "\\" in record_id or record_id in {".", ".."}:
        raise ValidationError(
            f"Invalid identifier: {record_id}",
            reason="invalid_identifier",
            context={"id": record_id},
        )
    return directory / f"{record_id}.yaml"


def _write_record(path: Path, record: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".yaml.tmp")
    tmp_path.write_text(yaml.safe_dump(record, sort_keys=False, allow_unicode=True), encoding="utf-8")
    tmp_path.replace(path)


def _read_record(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise StorageError(f"Unable to read {path}: {exc}", context={"path": str(path)}) from exc
    if not isinstance(data, dict):
        raise StorageError(f"Invalid record format in {path}", context={"path": str(path)})
    return data


def _load(path: Path, decode: Callable[[dict[str, Any]], T]) -> T:
    data = _read_record(path)
    try:
        return decode(data)
    except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as exc:
        raise StorageError(
            f"Invalid record in {path}: {exc}",
            reason="invalid_record",
            context={"path": str(path)},
        ) from exc


def _load_all(directory: Path, decode: Callable[[dict[str, Any]], T]) -> list[T]:
    if not directory.exists():
        return []
    return [_load(path, decode) for path in sorted(directory.glob("*.yaml"))]


def _page(items: list[Any], limit: int | None, offset: int | None) -> list[Any]:
    start = offset or 0
    size = REPOSITORY_DEFAULT_LIMIT if limit is None else limit
    return items[start : start + size]


def _as_tuple(value: Any) -> tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


class YamlTaskRepository:
    """One YAML document per task under ``<board>/tasks``."""

    def __init__(self, board_root: Path) -> None:
        self.directory = board_root / TASKS_DIR

    async def save(self, task: Task) -> None:
        _write_record(_record_path(self.directory, task.id), task_to_record(task))

    async def find_by_id(self, task_id: str) -> Task | None:
        path = _record_path(self.directory, task_id)
        if not path.exists():
            return None
        return _load(path, task_from_record)

    async def list(self, query: TaskQuery | None = None) -> list[Task]:
        query = query or TaskQuery()
        tasks = _load_all(self.directory, task_from_record)
        tasks = [task for task in tasks if _task_matches(task, query)]
        return _page(_sort_tasks(tasks, query), query.limit, query.offset)

    async def delete(self, task_id: str) -> None:
        _record_path(self.directory, task_id).unlink(missing_ok=True)

    async def delete_many(self, task_ids: Sequence[str]) -> None:
        paths = [_record_path(self.directory, task_id) for task_id in task_ids]
        missing = [task_id for task_id, path in zip(task_ids, paths) if not path.exists()]
        if missing:
            raise TaskNotFoundError(missing)
        for path in paths:
            path.unlink()


def _task_matches(task: Task, query: TaskQuery) -> bool:
    statuses = _as_tuple(query.status)
    if statuses and task.status not in statuses:
        return False
    if query.category and (task.category or "").lower() != query.category.lower():
        return False
    if query.search:
        needle = query.search.lower()
        haystack = [task.title, task.description or "", task.category or ""]
        if not any(needle in value.lower() for value in haystack):
            return False
    if query.priority_range is not None:
        if query.priority_range.min is not None and task.priority < query.priority_range.min:
            return False
        if query.priority_range.max is not None and task.priority > query.priority_range.max:
            return False
    if query.viewport is not None and not query.viewport.contains(task.position.x, task.position.y):
        return False
    return True


def _sort_tasks(tasks: list[Task], query: TaskQuery) -> list[Task]:
    field = query.sort.field if query.sort else "created_at"
    descending = bool(query.sort and query.sort.direction == "desc")
    ordered = sorted(tasks, key=lambda task: (task.created_at, task.id))
    if field != "created_at":
        ordered = sorted(ordered, key=lambda task: getattr(task, field), reverse=descending)
    elif descending:
        ordered.reverse()
    return ordered


class YamlRelationshipRepository:
    """One YAML document per relationship under ``<board>/relationships``."""

    def __init__(self, board_root: Path) -> None:
        self.directory = board_root / RELATIONSHIPS_DIR

    def _all(self) -> list[Relationship]:
        return _load_all(self.directory, relationship_from_record)

    async def save(self, relationship: Relationship) -> None:
        _write_record(
            _record_path(self.directory, relationship.id),
            relationship_to_record(relationship),
        )

    async def find_by_id(self, relationship_id: str) -> Relationship | None:
        path = _record_path(self.directory, relationship_id)
        if not path.exists():
            return None
        return _load(path, relationship_from_record)

    async def find_between(
        self,
        from_id: str,
        to_id: str,
        type: RelationshipType | None = None,
    ) -> Relationship | None:
        for relationship in self._all():
            if relationship.from_id != from_id or relationship.to_id != to_id:
                continue
            if type is not None and relationship.type is not RelationshipType.parse(type):
                continue
            return relationship
        return None

    async def list(self, query: RelationshipQuery | None = None) -> list[Relationship]:
        query = query or RelationshipQuery()
        types = {RelationshipType.parse(value) for value in _as_tuple(query.type)}
        matches = [
            relationship
            for relationship in self._all()
            if (query.from_id is None or relationship.from_id == query.from_id)
            and (query.to_id is None or relationship.to_id == query.to_id)
            and (query.involving is None or relationship.connects(query.involving))
            and (not types or relationship.type in types)
        ]
        matches.sort(key=lambda relationship: (relationship.created_at, relationship.id), reverse=True)
        return _page(matches, query.limit, query.offset)

    async def delete(self, relationship_id: str) -> None:
        _record_path(self.directory, relationship_id).unlink(missing_ok=True)

    async def delete_by_task_id(self, task_id: str) -> None:
        for relationship in self._all():
            if relationship.connects(task_id):
                _record_path(self.directory, relationship.id).unlink(missing_ok=True)


class YamlCategoryRepository:
    """One YAML document per category under ``<board>/categories``."""

    def __init__(self, board_root: Path) -> None:
        self.directory = board_root / CATEGORIES_DIR

    def _all(self) -> list[Category]:
        return _load_all(self.directory, category_from_record)

    async def save(self, category: Category) -> None:
        _write_record(_record_path(self.directory, category.id), category_to_record(category))

    async def find_by_id(self, category_id: str) -> Category | None:
        path = _record_path(self.directory, category_id)
        if not path.exists():
            return None
        return _load(path, category_from_record)

    async def find_by_name(self, name: str) -> Category | None:
        needle = name.strip().lower()
        for category in self._all():
            if category.name.lower() == needle:
                return category
        return None

    async def list(self, query: CategoryQuery | None = None) -> list[Category]:
        query = query or CategoryQuery()
        categories = self._all()
        if query.search:
            needle = query.search.lower()
            categories = [
                category
                for category in categories
                if needle in category.name.lower() or needle in (category.description or "").lower()
            ]
        categories.sort(key=lambda category: (category.name.lower(), category.id))
        return _page(categories, query.limit, query.offset)

    async def delete(self, category_id: str) -> None:
        _record_path(self.directory, category_id).unlink(missing_ok=True)
