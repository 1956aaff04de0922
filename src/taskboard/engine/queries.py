"""Read-only query helpers: pagination, listings, history and dashboard stats."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Sequence, TypeVar

from ..constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_PROJECT_PAGE_SIZE
from ..errors import InvalidPatch
from .model import Availability, TaskStatus
from .store import TaskStore

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    total_count: int
    page_id: int
    page_size: int
    data: list[T] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return (self.total_count + self.page_size - 1) // self.page_size if self.total_count else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_count": self.total_count,
            "page_id": self.page_id,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "data": list(self.data),
        }


def paginate(
    items: Sequence[T],
    page_id: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Page[T]:
    """Slice *items* into 1-based pages; *page_size* is clamped to *max_page_size*."""
    if page_id < 1:
        raise InvalidPatch(f"'page_id' must be >= 1, got {page_id}")
    if page_size < 1:
        raise InvalidPatch(f"'page_size' must be >= 1, got {page_size}")
    size = min(page_size, max_page_size)
    start = (page_id - 1) * size
    return Page(total_count=len(items), page_id=page_id, page_size=size, data=list(items[start:start + size]))


def list_projects(
    store: TaskStore,
    *,
    archived: bool = False,
    page_id: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PROJECT_PAGE_SIZE,
) -> Page[dict[str, Any]]:
    """Projects filtered by archive state, with task counts attached."""
    board = store.read_board()
    rows: list[dict[str, Any]] = []
    for project in sorted(board.projects.values(), key=lambda p: p.created_at, reverse=True):
        if project.archived != archived:
            continue
        tasks = board.find(project_id=project.id)
        row = project.to_dict()
        row["total_tasks"] = len(tasks)
        row["completed_tasks"] = sum(1 for t in tasks if t.status == TaskStatus.DONE)
        rows.append(row)
    return paginate(rows, page_id, page_size, max_page_size=max_page_size)


def project_tasks(
    store: TaskStore,
    project_id: str,
    *,
    status: Optional[str] = None,
    page_id: int = 1,
    page_size: int = MAX_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Page[dict[str, Any]]:
    """Tasks of a project with the assignee's display name resolved."""
    board = store.read_board()
    board.require_project(project_id)
    rows: list[dict[str, Any]] = []
    for task in board.find(project_id=project_id, status=status):
        row = task.to_dict()
        engineer = board.engineers.get(task.assignee) if task.assignee else None
        row["assignee_name"] = engineer.name if engineer else None
        rows.append(row)
    return paginate(rows, page_id, page_size, max_page_size=max_page_size)


def task_history(
    store: TaskStore,
    engineer_id: str,
    *,
    search: str = "",
    page_id: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Page[dict[str, Any]]:
    """Done tasks the engineer completed, most recent first."""
    board = store.read_board()
    board.require_engineer(engineer_id)
    done = board.find(status=TaskStatus.DONE.value, assignee=engineer_id, search=search.strip() or None)
    done.sort(key=lambda t: t.completed_at or t.updated_at, reverse=True)
    rows = []
    for task in done:
        row = task.to_dict()
        project = board.projects.get(task.project_id)
        row["project_name"] = project.name if project else None
        rows.append(row)
    return paginate(rows, page_id, page_size, max_page_size=max_page_size)


def team_members(store: TaskStore) -> list[dict[str, Any]]:
    return [e.to_dict() for e in sorted(store.list_engineers(), key=lambda e: (e.name, e.id))]


def dashboard_stats(store: TaskStore) -> dict[str, int]:
    board = store.read_board()
    active = {p.id for p in board.projects.values() if not p.archived}
    engineers = list(board.engineers.values())
    return {
        "active_projects": len(active),
        "open_tasks": sum(1 for t in board.tasks if t.project_id in active and t.status == TaskStatus.OPEN),
        "available_engineers": sum(1 for e in engineers if e.availability == Availability.AVAILABLE),
        "total_engineers": len(engineers),
    }
