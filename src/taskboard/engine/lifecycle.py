"""Project lifecycle: creation, detail edits and the terminal archival cascade."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from ..constants import DEFAULT_ARCHIVE_DRAIN_TIMEOUT
from ..errors import AlreadyArchived, InvalidPatch, ProjectArchived
from .model import Project, _now_iso
from .store import TaskStore


@dataclass(frozen=True)
class ArchiveResult:
    project_id: str
    archived_task_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"project_id": self.project_id, "archived_task_count": self.archived_task_count}


class ProjectLifecycleManager:
    """Owns project creation and archival.

    Archival takes exclusive ownership of every task of the project through
    the store's mutation registry before it flips the flag, so no per-task
    mutation can land once the project is archived.
    """

    def __init__(self, store: TaskStore, *, drain_timeout: float = DEFAULT_ARCHIVE_DRAIN_TIMEOUT) -> None:
        self.store = store
        self.drain_timeout = drain_timeout

    def create_project(self, name: str, description: str = "") -> Project:
        if not isinstance(name, str) or not name.strip():
            raise InvalidPatch("'name' is required and must be non-empty")
        project = self.store.add_project(Project(name=name.strip(), description=description or ""))
        logger.info("Created project {}: {}", project.id, project.name)
        return project

    def update_project(
        self,
        project_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        if name is None and description is None:
            raise InvalidPatch("At least one of 'name' or 'description' must be provided")
        if name is not None and not name.strip():
            raise InvalidPatch("'name' must be non-empty")
        with self.store.transaction() as tx:
            project = tx.require_project(project_id)
            if project.archived:
                raise ProjectArchived(f"Project {project_id} is archived", project_id=project_id)
            if name is not None:
                project.name = name.strip()
            if description is not None:
                project.description = description
            project.touch()
            tx.dirty = True
        self.store.emit_event("project.updated", project_id=project_id)
        return project

    def archive(self, project_id: str) -> ArchiveResult:
        """Freeze *project_id* and all of its tasks in one transaction.

        Raises
        ------
        ProjectNotFound
        AlreadyArchived
            The project was archived before; nothing was done.
        MutationInProgress
            Another archival is running, or in-flight task mutations did not
            drain within ``drain_timeout``.
        """
        if self.store.get_project(project_id).archived:
            raise AlreadyArchived(f"Project {project_id} is already archived", project_id=project_id)

        with self.store.inflight.exclusive_project(project_id, self.drain_timeout):
            with self.store.transaction() as tx:
                project = tx.require_project(project_id)
                if project.archived:
                    raise AlreadyArchived(f"Project {project_id} is already archived", project_id=project_id)
                children = tx.find(project_id=project_id)
                for task in children:
                    task.archived = True
                    task.touch()
                project.archived = True
                project.archived_at = _now_iso()
                project.touch()
                tx.dirty = True

        result = ArchiveResult(project_id=project_id, archived_task_count=len(children))
        self.store.emit_event(
            "project.archived",
            project_id=project_id,
            archived_task_count=result.archived_task_count,
        )
        logger.info("Archived project {} with {} task(s)", project_id, result.archived_task_count)
        return result
