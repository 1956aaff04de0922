"""Domain model for the task lifecycle engine.

Projects own tasks; engineers are referenced by id from a task's
``assignee``.  Every record is a plain dataclass that round-trips through
``to_dict()`` / ``from_dict()`` so the store can persist it as YAML.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskPriority(str, Enum):
    """Manager-assigned urgency."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def sort_key(self) -> int:
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class TaskStatus(str, Enum):
    """Board column a task sits in."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class Availability(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str) -> str:
    """Short human-friendly id: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _coerce_enum(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _plain(data: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of work tracked through the ``open/in_progress/done`` machine."""

    id: str = field(default_factory=lambda: _generate_id("task"))
    project_id: str = ""
    title: str = ""
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.OPEN
    assignee: Optional[str] = None  # engineer id
    archived: bool = False

    created_by: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        return cls(
            id=str(data.get("id") or _generate_id("task")),
            project_id=str(data.get("project_id") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            priority=_coerce_enum(TaskPriority, data.get("priority"), TaskPriority.MEDIUM),
            status=_coerce_enum(TaskStatus, data.get("status"), TaskStatus.OPEN),
            assignee=data.get("assignee") or None,
            archived=bool(data.get("archived", False)),
            created_by=data.get("created_by"),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
            completed_at=data.get("completed_at"),
        )

    @classmethod
    def validate_dict(cls, data: dict[str, Any]) -> list[str]:
        """Check the constraints a freshly created task must satisfy.

        Returns a list of error strings (empty = valid).
        """
        errors: list[str] = []
        if not isinstance(data, dict):
            return ["Expected a dict"]
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            errors.append("'title' is required and must be non-empty")
        elif len(title) > 500:
            errors.append("'title' must be at most 500 characters")
        if not data.get("project_id"):
            errors.append("'project_id' is required")
        priority = data.get("priority")
        if priority is not None:
            valid = {e.value for e in TaskPriority}
            if getattr(priority, "value", priority) not in valid:
                errors.append(f"'priority' must be one of {sorted(valid)}, got '{priority}'")
        return errors

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def transition(self, new_status: TaskStatus) -> None:
        """Move to *new_status* with timestamp bookkeeping."""
        self.status = new_status
        if new_status == TaskStatus.DONE:
            self.completed_at = _now_iso()
        self.touch()

    @property
    def is_active(self) -> bool:
        return self.status == TaskStatus.IN_PROGRESS

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority.sort_key, self.created_at)


# ---------------------------------------------------------------------------
# Project / Engineer
# ---------------------------------------------------------------------------

@dataclass
class Project:
    id: str = field(default_factory=lambda: _generate_id("proj"))
    name: str = ""
    description: str = ""
    archived: bool = False
    archived_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id") or _generate_id("proj")),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            archived=bool(data.get("archived", False)),
            archived_at=data.get("archived_at"),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )

    def touch(self) -> None:
        self.updated_at = _now_iso()


@dataclass
class Engineer:
    """A team member tasks can be assigned to.

    ``availability`` is derived by the store from the task list and is only
    written inside a store transaction.
    """

    id: str = field(default_factory=lambda: _generate_id("eng"))
    name: str = ""
    email: str = ""
    availability: Availability = Availability.AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Engineer":
        return cls(
            id=str(data.get("id") or _generate_id("eng")),
            name=str(data.get("name") or ""),
            email=str(data.get("email") or ""),
            availability=_coerce_enum(Availability, data.get("availability"), Availability.AVAILABLE),
        )


# ---------------------------------------------------------------------------
# Recommendation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Recommendation:
    """Advisory engineer-to-task fit; carries no reservation."""

    engineer_id: str
    score: float
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def sort_key(self) -> tuple[float, int, int, str]:
        # Numeric ids order numerically ("9" before "10") and ahead of other ids.
        if self.engineer_id.isdecimal():
            return (-self.score, 0, int(self.engineer_id), "")
        return (-self.score, 1, 0, self.engineer_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
