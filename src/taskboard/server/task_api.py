"""Task board API endpoints.

This module provides a FastAPI router for projects, tasks, assignment,
board moves, recommendations and the engineer workspace.  It is mounted
under ``/api/v1`` by the ``create_app`` factory.  Engine errors propagate
out of the handlers and are rendered by the app-level exception handler.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Query
from loguru import logger
from pydantic import BaseModel, Field

from ..engine.engine import TaskEngine


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateProjectRequest(BaseModel):
    name: str
    description: str = ""


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class CreateEngineerRequest(BaseModel):
    name: str
    email: str = ""
    id: Optional[str] = None


class CreateTaskRequest(BaseModel):
    project_id: str
    title: str
    description: str = ""
    priority: str = "medium"
    created_by: Optional[str] = None


class AssignRequest(BaseModel):
    engineer_id: str


class MoveRequest(BaseModel):
    source: str
    destination: str


class RecommendationRequest(BaseModel):
    limit: Optional[int] = None


class AcceptRecommendationRequest(BaseModel):
    engineer_id: str
    score: float = Field(default=0.0, ge=0.0, le=1.0)


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class ProjectResponse(BaseModel):
    project: dict[str, Any]


class PageResponse(BaseModel):
    total_count: int
    page_id: int
    page_size: int
    total_pages: int
    data: list[dict[str, Any]]


class BoardResponse(BaseModel):
    columns: dict[str, list[dict[str, Any]]]


class RecommendationListResponse(BaseModel):
    recommendations: list[dict[str, Any]]


class ArchiveResponse(BaseModel):
    project_id: str
    archived_task_count: int


class StateMachineResponse(BaseModel):
    states: list[str]
    transitions: dict[str, list[str]]
    drag_transitions: dict[str, list[str]]
    guards: dict[str, str]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_engine: Callable[[Optional[str]], TaskEngine]) -> APIRouter:
    """Create the task board API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> TaskEngine`` that
        resolves the engine for the current request's project directory.
    """
    router = APIRouter(prefix="/api/v1", tags=["taskboard"])

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @router.get("/projects", response_model=PageResponse)
    async def list_projects(
        project_dir: Optional[str] = Query(None),
        archived: bool = Query(False),
        page_id: int = Query(1),
        page_size: int = Query(10),
    ) -> PageResponse:
        engine = get_engine(project_dir)
        page = engine.list_projects(archived=archived, page_id=page_id, page_size=page_size)
        return PageResponse(**page.to_dict())

    @router.post("/projects", response_model=ProjectResponse, status_code=201)
    async def create_project(
        body: CreateProjectRequest,
        project_dir: Optional[str] = Query(None),
    ) -> ProjectResponse:
        engine = get_engine(project_dir)
        project = engine.create_project(body.name, body.description)
        return ProjectResponse(project=project.to_dict())

    @router.get("/projects/{project_id}", response_model=ProjectResponse)
    async def get_project(
        project_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> ProjectResponse:
        engine = get_engine(project_dir)
        return ProjectResponse(project=engine.get_project(project_id).to_dict())

    @router.put("/projects/{project_id}", response_model=ProjectResponse)
    async def update_project(
        project_id: str,
        body: UpdateProjectRequest,
        project_dir: Optional[str] = Query(None),
    ) -> ProjectResponse:
        engine = get_engine(project_dir)
        project = engine.update_project(project_id, name=body.name, description=body.description)
        return ProjectResponse(project=project.to_dict())

    @router.post("/projects/{project_id}/archive", response_model=ArchiveResponse)
    async def archive_project(
        project_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> ArchiveResponse:
        engine = get_engine(project_dir)
        result = engine.archive_project(project_id)
        return ArchiveResponse(**result.to_dict())

    @router.get("/projects/{project_id}/tasks", response_model=PageResponse)
    async def project_tasks(
        project_id: str,
        project_dir: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        page_id: int = Query(1),
        page_size: int = Query(100),
    ) -> PageResponse:
        engine = get_engine(project_dir)
        page = engine.project_tasks(project_id, status=status, page_id=page_id, page_size=page_size)
        return PageResponse(**page.to_dict())

    @router.get("/projects/{project_id}/board", response_model=BoardResponse)
    async def get_board(
        project_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> BoardResponse:
        engine = get_engine(project_dir)
        return BoardResponse(columns=engine.get_board(project_id))

    # ------------------------------------------------------------------
    # Team
    # ------------------------------------------------------------------

    @router.get("/engineers")
    async def team_members(
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, list[dict[str, Any]]]:
        engine = get_engine(project_dir)
        return {"engineers": engine.team_members()}

    @router.post("/engineers", status_code=201)
    async def add_engineer(
        body: CreateEngineerRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, dict[str, Any]]:
        engine = get_engine(project_dir)
        engineer = engine.add_engineer(body.name, body.email, engineer_id=body.id)
        return {"engineer": engineer.to_dict()}

    @router.get("/dashboard/stats")
    async def dashboard_stats(
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, int]:
        engine = get_engine(project_dir)
        return engine.dashboard_stats()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @router.get("/meta/state-machine", response_model=StateMachineResponse)
    async def get_state_machine(
        project_dir: Optional[str] = Query(None),
    ) -> StateMachineResponse:
        engine = get_engine(project_dir)
        return StateMachineResponse(**engine.state_machine())

    @router.post("/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.create_task(**body.model_dump())
        return TaskResponse(task=task.to_dict())

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.get_task(task_id).to_dict())

    @router.patch("/tasks/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        body: dict[str, Any],
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Query(None),
    ) -> TaskResponse:
        # A raw dict keeps the difference between "assignee": null and an absent key.
        engine = get_engine(project_dir)
        task = engine.update_task(task_id, body, actor=actor)
        return TaskResponse(task=task.to_dict())

    @router.get("/tasks/{task_id}/events")
    async def task_events(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        limit: int = Query(100),
    ) -> dict[str, list[dict[str, Any]]]:
        engine = get_engine(project_dir)
        engine.get_task(task_id)
        return {"events": engine.get_task_events(task_id, limit)}

    # ------------------------------------------------------------------
    # Assignment & transitions
    # ------------------------------------------------------------------

    @router.post("/tasks/{task_id}/assign", response_model=TaskResponse)
    async def assign_task(
        task_id: str,
        body: AssignRequest,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.assign_task(task_id, body.engineer_id, actor=actor)
        return TaskResponse(task=task.to_dict())

    @router.post("/tasks/{task_id}/unassign", response_model=TaskResponse)
    async def unassign_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.unassign_task(task_id, actor=actor)
        return TaskResponse(task=task.to_dict())

    @router.post("/tasks/{task_id}/complete", response_model=TaskResponse)
    async def complete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.complete_task(task_id, actor=actor)
        return TaskResponse(task=task.to_dict())

    @router.post("/tasks/{task_id}/move")
    async def move_task(
        task_id: str,
        body: MoveRequest,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.move_task(task_id, body.source, body.destination, actor=actor)
        if task is None:
            return {"status": "noop", "task": None}
        return {"status": "moved", "task": task.to_dict()}

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    # Plain def: the oracle call blocks, so FastAPI runs these in its threadpool.
    @router.post("/tasks/{task_id}/recommendations", response_model=RecommendationListResponse)
    def get_recommendations(
        task_id: str,
        body: RecommendationRequest,
        project_dir: Optional[str] = Query(None),
    ) -> RecommendationListResponse:
        engine = get_engine(project_dir)
        recs = engine.get_recommendations(task_id, body.limit)
        return RecommendationListResponse(recommendations=[r.to_dict() for r in recs])

    @router.post("/tasks/{task_id}/recommendations/accept", response_model=TaskResponse)
    def accept_recommendation(
        task_id: str,
        body: AcceptRecommendationRequest,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.accept_recommendation(task_id, body.engineer_id, body.score, actor=actor)
        return TaskResponse(task=task.to_dict())

    # ------------------------------------------------------------------
    # Engineer workspace
    # ------------------------------------------------------------------

    @router.get("/engineers/{engineer_id}/current-task")
    async def current_task(
        engineer_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.current_task(engineer_id)
        return {"task": task.to_dict() if task else None}

    @router.post("/engineers/{engineer_id}/tasks/{task_id}/complete", response_model=TaskResponse)
    async def complete_own_task(
        engineer_id: str,
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.complete_own_task(engineer_id, task_id)
        logger.debug("Engineer {} closed {} from the workspace", engineer_id, task_id)
        return TaskResponse(task=task.to_dict())

    @router.get("/engineers/{engineer_id}/history", response_model=PageResponse)
    async def task_history(
        engineer_id: str,
        project_dir: Optional[str] = Query(None),
        search: str = Query(""),
        page_id: int = Query(1),
        page_size: int = Query(10),
    ) -> PageResponse:
        engine = get_engine(project_dir)
        page = engine.task_history(engineer_id, search=search, page_id=page_id, page_size=page_size)
        return PageResponse(**page.to_dict())

    return router
