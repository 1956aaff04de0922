"""Task engine: the outward-facing operations of the lifecycle engine.

This is the primary entry-point for callers (HTTP router, CLI, tests).  It
wires the store, resolver, recommendation gateway and lifecycle manager
together and adds the convenience of the unified ``update_task`` patch.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..config import (
    get_archive_drain_timeout,
    get_max_page_size,
    get_max_project_page_size,
    get_recommendations_config,
    load_config,
)
from ..constants import DEFAULT_PAGE_SIZE, STATE_DIR_NAME
from ..errors import InvalidPatch
from .board import BoardSession, DragEvent, group_columns
from .lifecycle import ArchiveResult, ProjectLifecycleManager
from .model import Engineer, Project, Recommendation, Task, TaskPriority, TaskStatus
from .queries import (
    Page,
    dashboard_stats,
    list_projects,
    project_tasks,
    task_history,
    team_members,
)
from .recommendations import HttpRecommender, RecommendationGateway, Recommender
from .resolver import AssignmentResolver
from .state_machine import check_drag, describe
from .store import TaskStore


class TaskEngine:
    """Manage projects, tasks and assignments on the board.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory.
    recommender:
        Scoring oracle used by :meth:`get_recommendations`.
    config:
        Parsed ``config.yaml`` contents (see :mod:`taskboard.config`).
    """

    def __init__(
        self,
        state_dir: Path,
        recommender: Optional[Recommender] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> None:
        self.config = dict(config or {})
        self.store = TaskStore(state_dir)
        self.resolver = AssignmentResolver(self.store)
        rec_cfg = get_recommendations_config(self.config)
        if recommender is None and rec_cfg["base_url"]:
            recommender = HttpRecommender(rec_cfg["base_url"], timeout=rec_cfg["timeout"])
        self.gateway = RecommendationGateway(
            self.store,
            recommender,
            default_limit=rec_cfg["default_limit"],
            max_limit=rec_cfg["max_limit"],
        )
        self.lifecycle = ProjectLifecycleManager(self.store, drain_timeout=get_archive_drain_timeout(self.config))
        self.max_page_size = get_max_page_size(self.config)
        self.max_project_page_size = get_max_project_page_size(self.config)

    @classmethod
    def for_project_dir(cls, project_dir: Path, recommender: Optional[Recommender] = None) -> "TaskEngine":
        """Build an engine for ``<project_dir>/.taskboard`` honouring its config file."""
        config, err = load_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        return cls(project_dir / STATE_DIR_NAME, recommender=recommender, config=config)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, name: str, description: str = "") -> Project:
        return self.lifecycle.create_project(name, description)

    def get_project(self, project_id: str) -> Project:
        return self.store.get_project(project_id)

    def update_project(
        self,
        project_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        return self.lifecycle.update_project(project_id, name=name, description=description)

    def archive_project(self, project_id: str) -> ArchiveResult:
        return self.lifecycle.archive(project_id)

    def list_projects(self, *, archived: bool = False, page_id: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Page:
        return list_projects(
            self.store,
            archived=archived,
            page_id=page_id,
            page_size=page_size,
            max_page_size=self.max_project_page_size,
        )

    # ------------------------------------------------------------------
    # Engineers
    # ------------------------------------------------------------------

    def add_engineer(self, name: str, email: str = "", engineer_id: Optional[str] = None) -> Engineer:
        if not isinstance(name, str) or not name.strip():
            raise InvalidPatch("'name' is required and must be non-empty")
        engineer = Engineer(name=name.strip(), email=email or "")
        if engineer_id:
            engineer.id = engineer_id
        return self.store.add_engineer(engineer)

    def get_engineer(self, engineer_id: str) -> Engineer:
        return self.store.get_engineer(engineer_id)

    def team_members(self) -> list[dict[str, Any]]:
        return team_members(self.store)

    def dashboard_stats(self) -> dict[str, int]:
        return dashboard_stats(self.store)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        project_id: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        created_by: Optional[str] = None,
    ) -> Task:
        """Create and persist a new open, unassigned task, returning it."""
        errors = Task.validate_dict({"project_id": project_id, "title": title, "priority": priority})
        if errors:
            raise InvalidPatch("; ".join(errors))
        task = Task(
            project_id=project_id,
            title=title,
            description=description or "",
            priority=TaskPriority(priority) if priority else TaskPriority.MEDIUM,
            created_by=created_by,
        )
        self.store.add_task(task)
        logger.info("Created task {}: {}", task.id, title)
        return task

    def get_task(self, task_id: str) -> Task:
        return self.store.get_task(task_id)

    def list_tasks(self, project_id: str) -> list[Task]:
        return self.store.list_tasks(project_id)

    def project_tasks(
        self,
        project_id: str,
        *,
        status: Optional[str] = None,
        page_id: int = 1,
        page_size: int = 100,
    ) -> Page:
        return project_tasks(
            self.store,
            project_id,
            status=status,
            page_id=page_id,
            page_size=page_size,
            max_page_size=self.max_page_size,
        )

    def update_task(self, task_id: str, changes: dict[str, Any], *, actor: Optional[str] = None) -> Task:
        """Apply a partial update.

        Setting an assignee on an open task implies moving it to
        in_progress, and clearing the assignee of an in_progress task
        implies moving it back to open.  Everything else is passed to the
        store unchanged.
        """
        patch = dict(changes)
        if "assignee" in patch and "status" not in patch:
            current = self.store.get_task(task_id)
            if current.status == TaskStatus.OPEN and isinstance(patch["assignee"], str) and patch["assignee"]:
                self.resolver.check_available(patch["assignee"], task_id)
                patch["status"] = TaskStatus.IN_PROGRESS
            elif current.status == TaskStatus.IN_PROGRESS and patch["assignee"] is None:
                patch["status"] = TaskStatus.OPEN
        return self.store.apply_mutation(task_id, patch, actor=actor)

    # ------------------------------------------------------------------
    # Assignment & transitions
    # ------------------------------------------------------------------

    def assign_task(self, task_id: str, engineer_id: str, *, actor: Optional[str] = None) -> Task:
        return self.resolver.assign(task_id, engineer_id, actor=actor)

    def unassign_task(self, task_id: str, *, actor: Optional[str] = None) -> Task:
        return self.resolver.unassign(task_id, actor=actor)

    def complete_task(self, task_id: str, *, actor: Optional[str] = None) -> Task:
        return self.resolver.complete(task_id, actor=actor)

    def move_task(
        self,
        task_id: str,
        source: str,
        destination: str,
        *,
        actor: Optional[str] = None,
    ) -> Optional[Task]:
        """Server side of a board drag.  Returns ``None`` for same-column drops."""
        event = DragEvent.from_columns(task_id, source, destination)
        if event.is_noop:
            return None
        check_drag(self.store.get_task(task_id), event.source, event.destination)
        return self.resolver.transition(task_id, event.destination, actor=actor)

    def get_recommendations(self, task_id: str, limit: Optional[int] = None) -> list[Recommendation]:
        return self.gateway.recommend(task_id, limit)

    def accept_recommendation(
        self,
        task_id: str,
        engineer_id: str,
        score: float = 0.0,
        *,
        actor: Optional[str] = None,
    ) -> Task:
        rec = Recommendation(engineer_id=engineer_id, score=score)
        return self.resolver.accept_recommendation(task_id, rec, actor=actor)

    # ------------------------------------------------------------------
    # Engineer workspace
    # ------------------------------------------------------------------

    def current_task(self, engineer_id: str) -> Optional[Task]:
        return self.resolver.current_task(engineer_id)

    def complete_own_task(self, engineer_id: str, task_id: str) -> Task:
        return self.resolver.complete_own(engineer_id, task_id)

    def task_history(
        self,
        engineer_id: str,
        *,
        search: str = "",
        page_id: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        return task_history(
            self.store,
            engineer_id,
            search=search,
            page_id=page_id,
            page_size=page_size,
            max_page_size=self.max_page_size,
        )

    # ------------------------------------------------------------------
    # Board view
    # ------------------------------------------------------------------

    def get_board(self, project_id: str) -> dict[str, list[dict[str, Any]]]:
        """Return a project's tasks grouped by status column."""
        columns = group_columns(self.store.list_tasks(project_id))
        return {name: [t.to_dict() for t in cards] for name, cards in columns.items()}

    def board_session(self, project_id: str, *, actor: Optional[str] = None) -> BoardSession:
        """An in-process board view whose drags go through the resolver."""

        def submit(task_id: str, destination: TaskStatus) -> Task:
            return self.resolver.transition(task_id, destination, actor=actor)

        return BoardSession(self.store.list_tasks(project_id), submit)

    def state_machine(self) -> dict[str, Any]:
        return describe()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        return self.store.get_recent_events(limit)

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        return self.store.get_task_events(task_id, limit)
