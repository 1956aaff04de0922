"""FastAPI web server for the task board engine."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..engine.engine import TaskEngine
from ..engine.recommendations import Recommender
from ..errors import EngineError
from .task_api import create_task_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    recommender: Optional[Recommender] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.
        recommender: Scoring oracle override; defaults to the configured HTTP service.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Taskboard",
        description="Task lifecycle and assignment engine",
        version="1.0.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    app.state.engines = {}

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def get_engine(project_dir_param: Optional[str] = None) -> TaskEngine:
        # One engine per directory so every request shares its mutation registry.
        key = str(_get_project_dir(project_dir_param).resolve())
        engine = app.state.engines.get(key)
        if engine is None:
            engine = TaskEngine.for_project_dir(Path(key), recommender=recommender)
            app.state.engines[key] = engine
        return engine

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        logger.info("{} {} refused: {} ({})", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Taskboard",
            "version": "1.0.0",
            "status": "running",
        }

    app.include_router(create_task_router(get_engine))
    return app
