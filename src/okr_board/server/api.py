"""FastAPI application factory for the execution board."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..config import STATE_DIR_NAME, BoardSettings
from ..task_engine.engine import TaskEngine
from .task_api import create_task_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    settings: Optional[BoardSettings] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.
        settings: Board settings; loaded from each project's config when omitted.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="OKR Board",
        description="Task board with fractional ordering, evidence-gated completion and dependency tracking",
        version="1.0.0",
    )

    # Enable CORS for development
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],  # Configure for production
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Store default project directory
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
        proj = _get_project_dir(project_dir_param).resolve()
        engine = app.state.engines.get(proj)
        if engine is None:
            board_settings = settings or BoardSettings.for_project(proj)
            engine = TaskEngine(proj / STATE_DIR_NAME, settings=board_settings)
            app.state.engines[proj] = engine
            logger.info("Opened task board for {}", proj)
        return engine

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(create_task_router(get_engine))
    return app
