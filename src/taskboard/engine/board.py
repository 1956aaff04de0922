"""Drag-and-drop board reconciliation.

A drag is handled in three steps: capture an immutable
:class:`BoardSnapshot`, build the optimistic task list with the pure
:func:`apply_drag`, then :func:`reconcile` against the resolver's answer,
restoring the snapshot on failure.  :class:`BoardSession` wires the steps
together for a client-side view and never retries a refused drag.
"""

from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from loguru import logger

from ..errors import EngineError, InvalidTransition
from .model import Task, TaskStatus
from .state_machine import check_drag

COLUMNS = tuple(s.value for s in TaskStatus)

# Receives (task_id, destination) and returns the confirmed task, if any.
SubmitFn = Callable[[str, TaskStatus], Optional[Task]]


def _column(raw: str | TaskStatus) -> TaskStatus:
    try:
        return TaskStatus(getattr(raw, "value", raw))
    except ValueError:
        raise InvalidTransition(f"Unknown board column '{raw}'; expected one of {list(COLUMNS)}") from None


@dataclass(frozen=True)
class DragEvent:
    task_id: str
    source: TaskStatus
    destination: TaskStatus

    @classmethod
    def from_columns(cls, task_id: str, source: str | TaskStatus, destination: str | TaskStatus) -> "DragEvent":
        return cls(task_id=task_id, source=_column(source), destination=_column(destination))

    @property
    def is_noop(self) -> bool:
        return self.source == self.destination


@dataclass(frozen=True)
class BoardSnapshot:
    """Frozen copy of the full task list taken before an optimistic write."""

    tasks: tuple[Task, ...]

    @classmethod
    def capture(cls, tasks: Iterable[Task]) -> "BoardSnapshot":
        return cls(tasks=tuple(copy.deepcopy(t) for t in tasks))

    def restore(self) -> list[Task]:
        """Fresh copies, so callers can never reach into the snapshot."""
        return [copy.deepcopy(t) for t in self.tasks]


class DragState(str, Enum):
    NOOP = "noop"
    REJECTED = "rejected"  # refused before any optimistic write
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


@dataclass
class DragOutcome:
    state: DragState
    tasks: list[Task]
    error: Optional[EngineError] = None

    @property
    def ok(self) -> bool:
        return self.state in (DragState.NOOP, DragState.APPLIED)


def apply_drag(tasks: Iterable[Task], event: DragEvent) -> list[Task]:
    """Return a new list with the dragged card moved to its destination.

    Input cards are never mutated.  Moving back to ``open`` clears the
    assignee, mirroring what the store will do.
    """
    out: list[Task] = []
    for task in tasks:
        if task.id != event.task_id:
            out.append(task)
            continue
        assignee = None if event.destination == TaskStatus.OPEN else task.assignee
        out.append(dataclasses.replace(task, status=event.destination, assignee=assignee))
    return out


def reconcile(
    snapshot: BoardSnapshot,
    optimistic: list[Task],
    *,
    confirmed: Optional[Task] = None,
    error: Optional[BaseException] = None,
) -> list[Task]:
    """Pick the view to keep once the resolver has answered.

    Failure restores the snapshot exactly; success keeps the optimistic
    list, swapping in the store's record of the moved card when given.
    """
    if error is not None:
        return snapshot.restore()
    if confirmed is None:
        return list(optimistic)
    return [confirmed if t.id == confirmed.id else t for t in optimistic]


def group_columns(tasks: Iterable[Task]) -> dict[str, list[Task]]:
    """Tasks grouped per status column, sorted by priority then creation time."""
    columns: dict[str, list[Task]] = {name: [] for name in COLUMNS}
    for task in tasks:
        columns[task.status.value].append(task)
    for cards in columns.values():
        cards.sort(key=lambda t: t.sort_key)
    return columns


class BoardSession:
    """Client-side board view kept consistent with the store."""

    def __init__(self, tasks: Iterable[Task], submit: SubmitFn) -> None:
        self._tasks: list[Task] = list(tasks)
        self._submit = submit

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def refresh(self, tasks: Iterable[Task]) -> None:
        """Replace the view with a fresh read from the store."""
        self._tasks = list(tasks)

    def columns(self) -> dict[str, list[Task]]:
        return group_columns(self._tasks)

    def _find(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def drag(self, event: DragEvent) -> DragOutcome:
        if event.is_noop:
            return DragOutcome(DragState.NOOP, self.tasks)

        card = self._find(event.task_id)
        if card is None:
            err = InvalidTransition(f"Task {event.task_id} is not on this board", task_id=event.task_id)
            return DragOutcome(DragState.REJECTED, self.tasks, err)
        try:
            check_drag(card, event.source, event.destination)
        except InvalidTransition as exc:
            logger.info("Drag of {} refused: {}", event.task_id, exc)
            return DragOutcome(DragState.REJECTED, self.tasks, exc)

        snapshot = BoardSnapshot.capture(self._tasks)
        optimistic = apply_drag(self._tasks, event)
        self._tasks = optimistic
        try:
            confirmed = self._submit(event.task_id, event.destination)
        except EngineError as exc:
            self._tasks = reconcile(snapshot, optimistic, error=exc)
            logger.info("Drag of {} rolled back: {}", event.task_id, exc)
            return DragOutcome(DragState.ROLLED_BACK, self.tasks, exc)
        except Exception as exc:
            self._tasks = reconcile(snapshot, optimistic, error=exc)
            raise
        self._tasks = reconcile(snapshot, optimistic, confirmed=confirmed)
        return DragOutcome(DragState.APPLIED, self.tasks)
