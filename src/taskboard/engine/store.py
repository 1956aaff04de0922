"""File-based board store with per-task mutation exclusivity.

Projects, tasks and engineers live in a single YAML document
(``board.yaml``) inside the ``.taskboard/`` state directory.  All reads and
writes go through :meth:`TaskStore.transaction`, which holds an exclusive
file lock, loads the document, yields an in-memory transaction and saves it
only if the block exits cleanly.  An exception raised inside the block
leaves the file untouched, which is what makes every mutation atomic.

On top of the file lock, :class:`MutationRegistry` tracks which task ids
have a mutation in flight.  A second mutation for the same id is refused
with :class:`MutationInProgress` instead of queueing behind the first, and
archival uses the same registry to take exclusive ownership of a whole
project.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from filelock import FileLock
from loguru import logger

from ..constants import (
    ARTIFACTS_DIR,
    EVENTS_FILE,
    LOCK_TIMEOUT,
    STORE_FILE,
    STORE_LOCK_FILE,
    STORE_VERSION,
)
from ..errors import (
    AlreadyExists,
    EngineerNotFound,
    EngineerUnavailable,
    MutationInProgress,
    ProjectArchived,
    ProjectNotFound,
    TaskNotFound,
)
from ..io_utils import _append_event, _atomic_write_yaml, _load_data_with_error, _read_events
from ..logging_utils import summarize_patch
from .model import Availability, Engineer, Project, Task, TaskStatus
from .state_machine import plan_mutation


class StoreCorrupted(RuntimeError):
    """The board file exists but cannot be parsed; refusing to overwrite it."""


# ---------------------------------------------------------------------------
# In-flight mutation registry
# ---------------------------------------------------------------------------

class MutationRegistry:
    """Tracks in-flight task mutations and projects under exclusive ownership.

    The condition lock guards only the bookkeeping sets; it is never held
    while the store does I/O.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._inflight: dict[str, str] = {}  # task id -> project id
        self._exclusive: set[str] = set()

    def is_exclusive(self, project_id: str) -> bool:
        with self._cond:
            return project_id in self._exclusive

    def inflight_ids(self) -> set[str]:
        with self._cond:
            return set(self._inflight)

    @contextmanager
    def claim(self, task_id: str, project_id: str) -> Iterator[None]:
        """Own *task_id* for the duration of the block or fail fast."""
        with self._cond:
            if project_id in self._exclusive:
                raise MutationInProgress(
                    f"Project {project_id} is being archived; task {task_id} is locked",
                    task_id=task_id,
                    project_id=project_id,
                )
            if task_id in self._inflight:
                raise MutationInProgress(
                    f"Another mutation of task {task_id} is still in flight",
                    task_id=task_id,
                )
            self._inflight[task_id] = project_id
        try:
            yield
        finally:
            with self._cond:
                self._inflight.pop(task_id, None)
                self._cond.notify_all()

    @contextmanager
    def exclusive_project(self, project_id: str, timeout: float) -> Iterator[None]:
        """Own every task of *project_id*.

        New claims against the project are refused immediately; claims that
        were already in flight get *timeout* seconds to finish.
        """
        with self._cond:
            if project_id in self._exclusive:
                raise MutationInProgress(
                    f"Project {project_id} is already being archived",
                    project_id=project_id,
                )
            self._exclusive.add(project_id)
            drained = self._cond.wait_for(
                lambda: project_id not in self._inflight.values(),
                timeout=timeout,
            )
            if not drained:
                self._exclusive.discard(project_id)
                self._cond.notify_all()
                raise MutationInProgress(
                    f"Task mutations in project {project_id} did not finish within {timeout}s",
                    project_id=project_id,
                )
        try:
            yield
        finally:
            with self._cond:
                self._exclusive.discard(project_id)
                self._cond.notify_all()


# ---------------------------------------------------------------------------
# Derived availability
# ---------------------------------------------------------------------------

def derive_availability(tasks: Iterable[Task], engineer_id: str) -> Availability:
    """Busy iff *engineer_id* is the assignee of an in_progress task."""
    for task in tasks:
        if task.status == TaskStatus.IN_PROGRESS and task.assignee == engineer_id:
            return Availability.BUSY
    return Availability.AVAILABLE


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------

class _BoardTx:
    """In-memory transaction over the whole board document.

    Mutations are collected and flushed back to disk when the
    ``transaction`` context-manager exits without an exception.
    """

    def __init__(self, projects: list[Project], tasks: list[Task], engineers: list[Engineer]) -> None:
        self.projects: dict[str, Project] = {p.id: p for p in projects}
        self.tasks = tasks
        self.engineers: dict[str, Engineer] = {e.id: e for e in engineers}
        self.dirty = False
        self._index: dict[str, int] = {t.id: i for i, t in enumerate(tasks)}

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        idx = self._index.get(task_id)
        return self.tasks[idx] if idx is not None else None

    def require_task(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found", task_id=task_id)
        return task

    def require_project(self, project_id: str) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise ProjectNotFound(f"Project {project_id} not found", project_id=project_id)
        return project

    def require_engineer(self, engineer_id: str) -> Engineer:
        engineer = self.engineers.get(engineer_id)
        if engineer is None:
            raise EngineerNotFound(f"Engineer {engineer_id} not found", engineer_id=engineer_id)
        return engineer

    def list_all(self) -> list[Task]:
        return list(self.tasks)

    def find(
        self,
        *,
        project_id: Optional[str] = None,
        status: Optional[str] = None,
        assignee: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        out: list[Task] = []
        for t in self.tasks:
            if project_id is not None and t.project_id != project_id:
                continue
            if status and t.status.value != status:
                continue
            if assignee and t.assignee != assignee:
                continue
            if search:
                q = search.lower()
                if q not in t.title.lower() and q not in t.description.lower() and q not in t.id.lower():
                    continue
            out.append(t)
        return out

    def active_task_for(self, engineer_id: str, exclude: Optional[str] = None) -> Optional[Task]:
        for t in self.tasks:
            if t.id == exclude:
                continue
            if t.status == TaskStatus.IN_PROGRESS and t.assignee == engineer_id:
                return t
        return None

    # -- mutations ----------------------------------------------------------

    def add(self, task: Task) -> Task:
        if task.id in self._index:
            raise AlreadyExists(f"Task {task.id} already exists", task_id=task.id)
        self._index[task.id] = len(self.tasks)
        self.tasks.append(task)
        self.dirty = True
        return task

    def add_project(self, project: Project) -> Project:
        if project.id in self.projects:
            raise AlreadyExists(f"Project {project.id} already exists", project_id=project.id)
        self.projects[project.id] = project
        self.dirty = True
        return project

    def add_engineer(self, engineer: Engineer) -> Engineer:
        if engineer.id in self.engineers:
            raise AlreadyExists(f"Engineer {engineer.id} already exists", engineer_id=engineer.id)
        engineer.availability = derive_availability(self.tasks, engineer.id)
        self.engineers[engineer.id] = engineer
        self.dirty = True
        return engineer

    def refresh_availability(self, engineer_ids: Iterable[str]) -> None:
        for eid in engineer_ids:
            engineer = self.engineers.get(eid)
            if engineer is None:
                continue
            engineer.availability = derive_availability(self.tasks, eid)
        self.dirty = True


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """Thread-safe, file-backed store for projects, tasks and engineers.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory.
    lock_timeout:
        Seconds to wait for the file lock before :class:`filelock.Timeout`.
    """

    def __init__(self, state_dir: Path, lock_timeout: float = LOCK_TIMEOUT) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILE
        self._events_path = state_dir / ARTIFACTS_DIR / EVENTS_FILE
        state_dir.mkdir(parents=True, exist_ok=True)
        self._file_lock = FileLock(str(state_dir / STORE_LOCK_FILE), timeout=lock_timeout)
        self._thread_lock = threading.RLock()
        self.inflight = MutationRegistry()

    # -- internal helpers ---------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock, self._file_lock:
            yield

    def _load(self) -> _BoardTx:
        data, err = _load_data_with_error(self._store_path, {})
        if err:
            raise StoreCorrupted(err)
        projects = [Project.from_dict(d) for d in data.get("projects") or [] if isinstance(d, dict)]
        tasks = [Task.from_dict(d) for d in data.get("tasks") or [] if isinstance(d, dict)]
        engineers = [Engineer.from_dict(d) for d in data.get("engineers") or [] if isinstance(d, dict)]
        return _BoardTx(projects, tasks, engineers)

    def _save(self, tx: _BoardTx) -> None:
        payload = {
            "version": STORE_VERSION,
            "projects": [p.to_dict() for p in tx.projects.values()],
            "engineers": [e.to_dict() for e in tx.engineers.values()],
            "tasks": [t.to_dict() for t in tx.tasks],
        }
        _atomic_write_yaml(self._store_path, payload)

    def emit_event(self, event_type: str, **details: Any) -> None:
        """Append a task runtime event; failures are logged, never raised."""
        payload: dict[str, Any] = {"type": event_type}
        payload.update({k: v for k, v in details.items() if v is not None})
        try:
            _append_event(self._events_path, payload)
        except OSError:
            logger.exception("Failed to append event {}", event_type)

    # -- transactions -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[_BoardTx]:
        """Acquire the lock, load the board, yield a transaction, and save on exit.

        Usage::

            with store.transaction() as tx:
                task = tx.require_task("task-abc123")
                task.title = "Renamed"
                tx.dirty = True
                # automatically saved on exit
        """
        with self._locked():
            tx = self._load()
            yield tx
            if tx.dirty:
                self._save(tx)

    def read_snapshot(self) -> list[Task]:
        """Return a read-only snapshot (no lock held after return)."""
        with self._locked():
            return self._load().list_all()

    def read_board(self) -> _BoardTx:
        """Consistent view of projects, tasks and engineers; never saved."""
        with self._locked():
            return self._load()

    # -- reads --------------------------------------------------------------

    def get_one(self, task_id: str) -> Optional[Task]:
        with self._locked():
            return self._load().get(task_id)

    def get_task(self, task_id: str) -> Task:
        with self._locked():
            return self._load().require_task(task_id)

    def list_tasks(self, project_id: str) -> list[Task]:
        with self._locked():
            tx = self._load()
            tx.require_project(project_id)
            return tx.find(project_id=project_id)

    def get_project(self, project_id: str) -> Project:
        with self._locked():
            return self._load().require_project(project_id)

    def list_projects(self) -> list[Project]:
        with self._locked():
            return list(self._load().projects.values())

    def get_engineer(self, engineer_id: str) -> Engineer:
        with self._locked():
            return self._load().require_engineer(engineer_id)

    def list_engineers(self) -> list[Engineer]:
        with self._locked():
            return list(self._load().engineers.values())

    def engineer_availability(self, engineer_id: str) -> Availability:
        """Availability as derived from the current task list."""
        with self._locked():
            tx = self._load()
            tx.require_engineer(engineer_id)
            return derive_availability(tx.tasks, engineer_id)

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        return _read_events(self._events_path, limit)

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        if limit < 1:
            return []
        events = _read_events(self._events_path, None)
        filtered = [e for e in events if str(e.get("task_id")) == task_id]
        return filtered[-limit:]

    # -- writes -------------------------------------------------------------

    def add_project(self, project: Project) -> Project:
        with self.transaction() as tx:
            tx.add_project(project)
        self.emit_event("project.created", project_id=project.id, name=project.name)
        return project

    def add_engineer(self, engineer: Engineer) -> Engineer:
        with self.transaction() as tx:
            tx.add_engineer(engineer)
        self.emit_event("engineer.added", engineer_id=engineer.id)
        return engineer

    def add_task(self, task: Task) -> Task:
        """Persist a new task under its project.

        The new id is claimed in the mutation registry so an archival that
        starts concurrently either waits for it or refuses it.
        """
        with self.inflight.claim(task.id, task.project_id):
            with self.transaction() as tx:
                project = tx.require_project(task.project_id)
                if project.archived:
                    raise ProjectArchived(
                        f"Project {project.id} is archived; no new tasks may be added",
                        project_id=project.id,
                    )
                tx.add(task)
        self.emit_event(
            "task.created",
            task_id=task.id,
            project_id=task.project_id,
            status=task.status.value,
            priority=task.priority.value,
        )
        return task

    def apply_mutation(self, task_id: str, patch: dict[str, Any], *, actor: Optional[str] = None) -> Task:
        """Validate and apply *patch* to a task atomically.

        Raises
        ------
        TaskNotFound, ProjectArchived, InvalidPatch, InvalidTransition,
        EngineerNotFound, EngineerUnavailable, MutationInProgress
        """
        current = self.get_task(task_id)
        with self.inflight.claim(task_id, current.project_id):
            with self.transaction() as tx:
                task = tx.require_task(task_id)
                project = tx.require_project(task.project_id)
                if project.archived or task.archived:
                    raise ProjectArchived(
                        f"Task {task_id} belongs to archived project {project.id}",
                        task_id=task_id,
                        project_id=project.id,
                    )
                plan = plan_mutation(task, patch)
                if plan.acquiring:
                    tx.require_engineer(plan.acquiring)
                    holder = tx.active_task_for(plan.acquiring, exclude=task.id)
                    if holder is not None:
                        raise EngineerUnavailable(
                            f"Engineer {plan.acquiring} is already working on {holder.id}",
                            engineer_id=plan.acquiring,
                            task_id=task_id,
                            active_task_id=holder.id,
                        )
                previous = task.status
                for key, value in plan.fields.items():
                    setattr(task, key, value)
                task.assignee = plan.assignee
                if plan.status_changed:
                    task.transition(plan.status)
                else:
                    task.touch()
                tx.refresh_availability(e for e in (plan.acquiring, plan.releasing) if e)
                tx.dirty = True

        logger.debug("Applied {} to {} ({})", summarize_patch(patch), task_id, actor or "anonymous")
        if plan.acquiring:
            self.emit_event(
                "task.assigned",
                task_id=task_id,
                project_id=task.project_id,
                engineer_id=plan.acquiring,
                actor=actor,
            )
        if plan.status_changed:
            self.emit_event(
                "task.transitioned",
                task_id=task_id,
                project_id=task.project_id,
                source=previous.value,
                target=task.status.value,
                actor=actor,
            )
        if plan.fields:
            self.emit_event(
                "task.updated",
                task_id=task_id,
                project_id=task.project_id,
                fields=sorted(plan.fields),
                actor=actor,
            )
        return task
