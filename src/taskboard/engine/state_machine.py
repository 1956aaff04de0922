"""Task lifecycle state machine.

Pure functions only: given a task and a requested patch, decide what the
task looks like afterwards or raise.  The store calls :func:`plan_mutation`
inside its transaction; the board calls :func:`check_drag` before it
applies an optimistic write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import InvalidPatch, InvalidTransition
from .model import Task, TaskPriority, TaskStatus

MUTABLE_FIELDS = frozenset({"status", "assignee", "priority", "title", "description"})

_VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.DONE, TaskStatus.OPEN}),
    TaskStatus.DONE: frozenset(),
}

# Moves a drag can express without naming an engineer.
_DRAG_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset(),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.DONE, TaskStatus.OPEN}),
    TaskStatus.DONE: frozenset(),
}


@dataclass(frozen=True)
class PlannedMutation:
    """Outcome of validating a patch against a task."""

    status: TaskStatus
    assignee: Optional[str]
    fields: dict[str, Any] = field(default_factory=dict)
    status_changed: bool = False
    acquiring: Optional[str] = None  # engineer taking the task on
    releasing: Optional[str] = None  # engineer whose active task ends

    @property
    def lifecycle_changed(self) -> bool:
        return self.acquiring is not None or self.releasing is not None or self.status_changed


def valid_targets(status: TaskStatus) -> list[TaskStatus]:
    return sorted(_VALID_TRANSITIONS[status], key=lambda s: s.value)


def describe() -> dict[str, Any]:
    """Machine-readable summary used by the API's state-machine endpoint."""
    return {
        "states": [s.value for s in TaskStatus],
        "transitions": {s.value: [t.value for t in valid_targets(s)] for s in TaskStatus},
        "drag_transitions": {
            s.value: sorted(t.value for t in _DRAG_TRANSITIONS[s]) for s in TaskStatus
        },
        "guards": {
            "in_progress": "Requires an engineer with no other in_progress task.",
            "done": "Only reachable from in_progress; the assignee is kept.",
            "open": "Leaving in_progress clears the assignee.",
        },
    }


def normalize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate field names and value types, coercing enums.

    Raises :class:`InvalidPatch` for unknown fields or malformed values.
    """
    if not isinstance(patch, dict):
        raise InvalidPatch("Patch must be a mapping")
    unknown = sorted(set(patch) - MUTABLE_FIELDS)
    if unknown:
        raise InvalidPatch(
            f"Patch may only touch {sorted(MUTABLE_FIELDS)}; got {unknown}",
            fields=unknown,
        )
    out: dict[str, Any] = {}
    if "status" in patch:
        try:
            out["status"] = TaskStatus(getattr(patch["status"], "value", patch["status"]))
        except ValueError:
            raise InvalidPatch(
                f"'status' must be one of {[s.value for s in TaskStatus]}, got '{patch['status']}'"
            ) from None
    if "priority" in patch:
        try:
            out["priority"] = TaskPriority(getattr(patch["priority"], "value", patch["priority"]))
        except ValueError:
            raise InvalidPatch(
                f"'priority' must be one of {[p.value for p in TaskPriority]}, got '{patch['priority']}'"
            ) from None
    if "title" in patch:
        title = patch["title"]
        if not isinstance(title, str) or not title.strip():
            raise InvalidPatch("'title' must be a non-empty string")
        out["title"] = title
    if "description" in patch:
        description = patch["description"]
        if not isinstance(description, str):
            raise InvalidPatch("'description' must be a string")
        out["description"] = description
    if "assignee" in patch:
        assignee = patch["assignee"]
        if assignee is not None and (not isinstance(assignee, str) or not assignee):
            raise InvalidPatch("'assignee' must be an engineer id or null")
        out["assignee"] = assignee
    return out


def plan_mutation(task: Task, patch: dict[str, Any]) -> PlannedMutation:
    """Decide the post-mutation status/assignee of *task* or raise.

    Raises :class:`InvalidPatch` or :class:`InvalidTransition`.  Engineer
    availability is not checked here; that needs the whole task list and
    belongs to the store.
    """
    changes = normalize_patch(patch)
    detail_fields = {k: v for k, v in changes.items() if k not in {"status", "assignee"}}
    current = task.status
    target = changes.get("status", current)
    assignee_given = "assignee" in changes
    requested = changes.get("assignee") if assignee_given else task.assignee

    if target == current:
        if assignee_given and requested != task.assignee:
            if current == TaskStatus.OPEN:
                raise InvalidTransition(
                    f"Task {task.id} is open; assigning an engineer must also move it to in_progress",
                    task_id=task.id,
                )
            if current == TaskStatus.DONE:
                raise InvalidTransition(
                    f"Task {task.id} is done; its assignee is history and cannot change",
                    task_id=task.id,
                )
            if requested is None:
                raise InvalidTransition(
                    f"Task {task.id} is in_progress; clearing the assignee must also move it to open",
                    task_id=task.id,
                )
            raise InvalidTransition(
                f"Task {task.id} is already in progress for {task.assignee}; unassign it before "
                f"assigning {requested}",
                task_id=task.id,
            )
        return PlannedMutation(status=current, assignee=task.assignee, fields=detail_fields)

    if target not in _VALID_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot transition {task.id} from {current.value} to {target.value}. "
            f"Valid targets: {[s.value for s in valid_targets(current)]}",
            task_id=task.id,
            source=current.value,
            target=target.value,
        )

    if target == TaskStatus.IN_PROGRESS:
        if not requested:
            raise InvalidTransition(
                f"Moving {task.id} to in_progress requires an engineer",
                task_id=task.id,
            )
        return PlannedMutation(
            status=target,
            assignee=requested,
            fields=detail_fields,
            status_changed=True,
            acquiring=requested,
        )

    if target == TaskStatus.DONE:
        if assignee_given and requested != task.assignee:
            raise InvalidTransition(
                f"Completing {task.id} keeps its assignee; it cannot change in the same step",
                task_id=task.id,
            )
        return PlannedMutation(
            status=target,
            assignee=task.assignee,
            fields=detail_fields,
            status_changed=True,
            releasing=task.assignee,
        )

    # in_progress -> open
    if assignee_given and requested is not None:
        raise InvalidTransition(
            f"Returning {task.id} to open clears its assignee; cannot set {requested}",
            task_id=task.id,
        )
    return PlannedMutation(
        status=target,
        assignee=None,
        fields=detail_fields,
        status_changed=True,
        releasing=task.assignee,
    )


def check_drag(task: Task, source: TaskStatus, destination: TaskStatus) -> None:
    """Reject a board drag that cannot be applied optimistically.

    A drag never names an engineer, so any move into ``in_progress`` is
    refused here and must go through explicit assignment.
    """
    if task.status != source:
        raise InvalidTransition(
            f"Task {task.id} is in {task.status.value}, not {source.value}; the board is stale",
            task_id=task.id,
        )
    if destination == TaskStatus.IN_PROGRESS:
        raise InvalidTransition(
            f"Dragging {task.id} into in_progress needs an engineer; assign it instead",
            task_id=task.id,
        )
    if destination not in _DRAG_TRANSITIONS[source]:
        raise InvalidTransition(
            f"Cannot move {task.id} from {source.value} to {destination.value}",
            task_id=task.id,
            source=source.value,
            target=destination.value,
        )
