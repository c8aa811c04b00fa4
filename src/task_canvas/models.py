"""Core board entities, constants, and errors."""

from __future__ import annotations

from dataclasses import dataclass, replace
import datetime as dt
from enum import Enum
import math
import re
from typing import Any, Iterable

VALID_STATUSES = ("pending", "in_progress", "completed")
VALID_PRIORITIES = (1, 2, 3, 4, 5)
DEFAULT_PRIORITY = 3
DEFAULT_COLOR = "#60a5fa"
HEX_COLOR_RE = re.compile(r"^#[0-9a-f]{6}$", re.IGNORECASE)

MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 2000
MAX_CATEGORY_LENGTH = 40
MAX_RELATIONSHIP_DESCRIPTION_LENGTH = 500
MAX_CATEGORY_NAME_LENGTH = 60
MAX_CATEGORY_DESCRIPTION_LENGTH = 400
MAX_ICON_LENGTH = 40
DEFAULT_CATEGORY_COLOR = "#475569"
CANVAS_RANGE = 100_000


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


class BoardError(Exception):
    """Base error for board operations."""

    code = "BOARD_ERROR"

    def __init__(
        self,
        message: str,
        *,
        reason: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.context = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.reason:
            payload["reason"] = self.reason
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(BoardError):
    """Raised when input or an entity invariant is invalid."""

    code = "VALIDATION_ERROR"


class StorageError(BoardError):
    """Raised when board files cannot be read or written."""

    code = "STORAGE_ERROR"


class NotFoundError(BoardError):
    """Raised when referenced ids do not exist."""

    code = "NOT_FOUND"
    label = "Entity"

    def __init__(self, ids: str | Iterable[str]) -> None:
        values = [ids] if isinstance(ids, str) else list(ids)
        unique = list(dict.fromkeys(value.strip() for value in values))
        if len(unique) == 1:
            message = f"{self.label} not found: {unique[0]}"
        else:
            message = f"{self.label}s not found: {', '.join(unique)}"
        super().__init__(message, reason="missing", context={"ids": unique})
        self.ids = unique


class TaskNotFoundError(NotFoundError):
    code = "TODO_NOT_FOUND"
    label = "Todo"


class RelationshipNotFoundError(NotFoundError):
    code = "RELATIONSHIP_NOT_FOUND"
    label = "Relationship"


class RelationshipType(str, Enum):
    DEPENDS_ON = "depends_on"
    BLOCKS = "blocks"
    RELATED_TO = "related_to"
    PARENT_OF = "parent_of"

    @classmethod
    def parse(cls, value: RelationshipType | str) -> RelationshipType:
        if isinstance(value, cls):
            return value
        token = str(value).strip()
        try:
            return cls(token)
        except ValueError:
            allowed = "|".join(member.value for member in cls)
            raise ValidationError(
                f"Relationship type must be {allowed}",
                reason="invalid_type",
                context={"type": token},
            ) from None

    @property
    def is_acyclic(self) -> bool:
        return self in ACYCLIC_TYPES


ACYCLIC_TYPES = frozenset({RelationshipType.DEPENDS_ON, RelationshipType.BLOCKS})


@dataclass(frozen=True, slots=True)
class Position:
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(slots=True)
class Task:
    """A positioned unit of work on the canvas.

    Every mutator validates the full entity after applying its change and
    returns whether anything actually changed.
    """

    id: str
    title: str
    status: str
    priority: int
    color: str
    position: Position
    created_at: dt.datetime
    updated_at: dt.datetime
    description: str | None = None
    category: str | None = None
    icon: str | None = None
    completed_at: dt.datetime | None = None

    def __post_init__(self) -> None:
        self.title = self.title.strip() if isinstance(self.title, str) else self.title
        self.description = _clean(self.description)
        self.category = _clean(self.category)
        self.validate()

    @classmethod
    def create(
        cls,
        id: str,
        title: str,
        *,
        description: str | None = None,
        status: str = "pending",
        priority: int = DEFAULT_PRIORITY,
        category: str | None = None,
        color: str = DEFAULT_COLOR,
        icon: str | None = None,
        position: Position | None = None,
        created_at: dt.datetime | None = None,
    ) -> Task:
        timestamp = created_at or utcnow()
        return cls(
            id=id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            category=category,
            color=color,
            icon=icon,
            position=position or Position(),
            created_at=timestamp,
            updated_at=timestamp,
            completed_at=timestamp if status == "completed" else None,
        )

    @property
    def visual_size(self) -> str:
        if self.priority >= 5:
            return "large"
        if self.priority >= 3:
            return "medium"
        return "small"

    def rename(self, title: str, now: dt.datetime | None = None) -> bool:
        trimmed = title.strip()
        if trimmed == self.title:
            return False
        _assert_title(trimmed)
        self.title = trimmed
        self._touch(now)
        return True

    def describe(self, description: str | None, now: dt.datetime | None = None) -> bool:
        normalized = _clean(description)
        if normalized == self.description:
            return False
        self.description = normalized
        self._touch(now)
        return True

    def set_category(self, category: str | None, now: dt.datetime | None = None) -> bool:
        normalized = _clean(category)
        if normalized == self.category:
            return False
        self.category = normalized
        self._touch(now)
        return True

    def set_icon(self, icon: str | None, now: dt.datetime | None = None) -> bool:
        normalized = _clean(icon)
        if normalized == self.icon:
            return False
        self.icon = normalized
        self._touch(now)
        return True

    def recolor(self, color: str, now: dt.datetime | None = None) -> bool:
        _assert_color(color)
        if color == self.color:
            return False
        self.color = color
        self._touch(now)
        return True

    def set_priority(self, priority: int, now: dt.datetime | None = None) -> bool:
        _assert_priority(priority)
        if priority == self.priority:
            return False
        self.priority = priority
        self._touch(now)
        return True

    def move(self, position: Position, now: dt.datetime | None = None) -> bool:
        _assert_position(position)
        if position == self.position:
            return False
        self.position = position
        self._touch(now)
        return True

    def mark_in_progress(self, now: dt.datetime | None = None) -> bool:
        if self.status == "in_progress":
            return False
        self.status = "in_progress"
        self.completed_at = None
        self._touch(now)
        return True

    def mark_completed(self, now: dt.datetime | None = None) -> bool:
        if self.status == "completed":
            return False
        self.status = "completed"
        self.completed_at = now or utcnow()
        self._touch(now)
        return True

    def reopen(self, now: dt.datetime | None = None) -> bool:
        if self.status == "pending":
            return False
        self.status = "pending"
        self.completed_at = None
        self._touch(now)
        return True

    def copy(self) -> Task:
        return replace(self)

    def validate(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValidationError("Todo id is required", reason="blank_identifier")
        _assert_title(self.title)
        if self.description and len(self.description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                "Description exceeds maximum length",
                reason="description_too_long",
                context={"max": MAX_DESCRIPTION_LENGTH},
            )
        if self.category and len(self.category) > MAX_CATEGORY_LENGTH:
            raise ValidationError(
                f"Category cannot exceed {MAX_CATEGORY_LENGTH} characters",
                reason="category_too_long",
                context={"category": self.category},
            )
        _assert_priority(self.priority)
        _assert_color(self.color)
        _assert_position(self.position)
        if self.status not in VALID_STATUSES:
            raise ValidationError(
                f"Invalid status: {self.status}",
                reason="invalid_status",
                context={"status": self.status},
            )
        if self.status == "completed" and self.completed_at is None:
            raise ValidationError(
                "Completed todos must set completed_at timestamp",
                reason="missing_completed_at",
            )
        if self.status != "completed" and self.completed_at is not None:
            raise ValidationError(
                "Only completed todos can have a completed_at timestamp",
                reason="unexpected_completed_at",
                context={"status": self.status},
            )

    def _touch(self, now: dt.datetime | None) -> None:
        self.updated_at = now or utcnow()
        self.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "category": self.category,
            "color": self.color,
            "icon": self.icon,
            "position": self.position.to_dict(),
            "visual_size": self.visual_size,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def _assert_title(title: str) -> None:
    if not title:
        raise ValidationError("Title is required", reason="blank_title", context={"field": "title"})
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            "Title exceeds maximum length",
            reason="title_too_long",
            context={"max": MAX_TITLE_LENGTH, "value": title},
        )


def _assert_priority(priority: Any) -> None:
    if isinstance(priority, bool) or not isinstance(priority, int) or priority not in VALID_PRIORITIES:
        raise ValidationError(
            "Priority must be between 1 and 5",
            reason="invalid_priority",
            context={"priority": priority},
        )


def _assert_color(color: Any) -> None:
    if not isinstance(color, str) or not HEX_COLOR_RE.fullmatch(color):
        raise ValidationError(
            "Color must be a valid hex code",
            reason="invalid_color",
            context={"color": color},
        )


def _assert_position(position: Position) -> None:
    if not (math.isfinite(position.x) and math.isfinite(position.y)):
        raise ValidationError(
            "Position must be finite numbers",
            reason="invalid_position",
            context={"position": position.to_dict()},
        )
    if abs(position.x) > CANVAS_RANGE or abs(position.y) > CANVAS_RANGE:
        raise ValidationError(
            "Position is out of bounds",
            reason="position_out_of_bounds",
            context={"range": CANVAS_RANGE, "position": position.to_dict()},
        )


def _identifier(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required", reason="blank_identifier")
    return value.strip()


@dataclass(slots=True)
class Relationship:
    """A typed, directed edge between two task ids."""

    id: str
    from_id: str
    to_id: str
    type: RelationshipType
    created_at: dt.datetime
    updated_at: dt.datetime
    description: str | None = None

    def __post_init__(self) -> None:
        self.id = _identifier(self.id, "Relationship id")
        self.from_id = _identifier(self.from_id, "Source todo id")
        self.to_id = _identifier(self.to_id, "Target todo id")
        self.type = RelationshipType.parse(self.type)
        self.description = _clean(self.description)
        self.validate()

    @classmethod
    def create(
        cls,
        id: str,
        from_id: str,
        to_id: str,
        type: RelationshipType | str,
        description: str | None = None,
        created_at: dt.datetime | None = None,
    ) -> Relationship:
        timestamp = created_at or utcnow()
        return cls(
            id=id,
            from_id=from_id,
            to_id=to_id,
            type=type,
            description=description,
            created_at=timestamp,
            updated_at=timestamp,
        )

    def change_type(self, new_type: RelationshipType | str, now: dt.datetime | None = None) -> bool:
        parsed = RelationshipType.parse(new_type)
        if parsed is self.type:
            return False
        self.type = parsed
        self._touch(now)
        return True

    def attach_description(self, text: str | None, now: dt.datetime | None = None) -> bool:
        normalized = _clean(text)
        if normalized == self.description:
            return False
        self.description = normalized
        self._touch(now)
        return True

    def connects(self, task_id: str) -> bool:
        token = task_id.strip()
        return token in (self.from_id, self.to_id)

    def copy(self) -> Relationship:
        return replace(self)

    def validate(self) -> None:
        for value, label in (
            (self.id, "Relationship id"),
            (self.from_id, "Source todo id"),
            (self.to_id, "Target todo id"),
        ):
            if not value:
                raise ValidationError(f"{label} is required", reason="blank_identifier")
        if self.from_id == self.to_id:
            raise ValidationError(
                "Relationship endpoints must be different",
                reason="self_loop",
                context={"id": self.id, "from_id": self.from_id, "to_id": self.to_id},
            )
        if self.description and len(self.description) > MAX_RELATIONSHIP_DESCRIPTION_LENGTH:
            raise ValidationError(
                "Description exceeds allowed length",
                reason="description_too_long",
                context={"max": MAX_RELATIONSHIP_DESCRIPTION_LENGTH},
            )

    def _touch(self, now: dt.datetime | None) -> None:
        self.updated_at = now or utcnow()
        self.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "type": self.type.value,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class Category:
    """A named visual style (color, icon) that tasks can be grouped under."""

    id: str
    name: str
    color: str
    created_at: dt.datetime
    updated_at: dt.datetime
    icon: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        self.id = _identifier(self.id, "Category id")
        self.name = self.name.strip() if isinstance(self.name, str) else self.name
        self.color = self.color.lower() if isinstance(self.color, str) else self.color
        self.icon = _clean(self.icon)
        self.description = _clean(self.description)
        self.validate()

    @classmethod
    def create(
        cls,
        id: str,
        name: str,
        *,
        color: str | None = None,
        icon: str | None = None,
        description: str | None = None,
        created_at: dt.datetime | None = None,
    ) -> Category:
        timestamp = created_at or utcnow()
        return cls(
            id=id,
            name=name,
            color=color or DEFAULT_CATEGORY_COLOR,
            icon=icon,
            description=description,
            created_at=timestamp,
            updated_at=timestamp,
        )

    def copy(self) -> Category:
        return replace(self)

    def validate(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValidationError("Category name is required", reason="blank_name", context={"field": "name"})
        if len(self.name) > MAX_CATEGORY_NAME_LENGTH:
            raise ValidationError(
                "Category name exceeds maximum length",
                reason="name_too_long",
                context={"max": MAX_CATEGORY_NAME_LENGTH},
            )
        if not isinstance(self.color, str) or not HEX_COLOR_RE.fullmatch(self.color):
            raise ValidationError(
                "Category color must be a hex code",
                reason="invalid_color",
                context={"color": self.color},
            )
        if self.icon and len(self.icon) > MAX_ICON_LENGTH:
            raise ValidationError(
                "Category icon label exceeds maximum length",
                reason="icon_too_long",
                context={"max": MAX_ICON_LENGTH},
            )
        if self.description and len(self.description) > MAX_CATEGORY_DESCRIPTION_LENGTH:
            raise ValidationError(
                "Category description exceeds maximum length",
                reason="description_too_long",
                context={"max": MAX_CATEGORY_DESCRIPTION_LENGTH},
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
