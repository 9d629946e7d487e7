"""Task API endpoints for the execution board.

This module provides a FastAPI router with the task store operations the board
controller drives (priority, status, waiting flag, dependencies) plus board
views and a server-side drag-end endpoint.  It is mounted under ``/api/tasks``
by the main ``create_app`` factory.
"""

from __future__ import annotations

from typing import Any, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from ..task_engine.errors import (
    BoardError,
    GuardViolation,
    TaskNotFoundError,
    VersionConflictError,
)
from ..task_engine.model import DependencyKind
from ..task_engine.status import describe_machine


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    status: str = "backlog"
    priority_score: Optional[float] = None
    project_id: Optional[str] = None
    objective_id: Optional[str] = None
    complexity: Optional[str] = None
    evidence_url: Optional[str] = None


class UpdatePriorityRequest(BaseModel):
    new_priority_score: float
    reason: str = ""
    expected_version: Optional[int] = None


class UpdateStatusRequest(BaseModel):
    status: str
    evidence_url: Optional[str] = None
    attachment: Optional[str] = None
    expected_version: Optional[int] = None


class WaitingRequest(BaseModel):
    is_waiting_third_party: bool
    blocking_reason: Optional[str] = None
    expected_version: Optional[int] = None


class MoveRequest(BaseModel):
    status: str
    index: int = Field(ge=0)
    reason: str = "manual reorder"
    evidence_url: Optional[str] = None
    attachment: Optional[str] = None
    expected_version: Optional[int] = None


class DeliverableRequest(BaseModel):
    url: str = Field(min_length=1)
    title: Optional[str] = None
    kind: Optional[str] = None


class UpdateDependenciesRequest(BaseModel):
    depends_on: list[str] = Field(default_factory=list)
    enables: list[str] = Field(default_factory=list)
    expected_version: Optional[int] = None


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class BoardResponse(BaseModel):
    columns: dict[str, list[dict[str, Any]]]


class MoveResponse(BaseModel):
    task: dict[str, Any]
    rebalanced: bool = False
    changes: dict[str, float] = Field(default_factory=dict)
    order: list[str] = Field(default_factory=list)


class RebalanceResponse(BaseModel):
    status: str
    changes: dict[str, float]


class DependenciesResponse(BaseModel):
    task_id: str
    depends_on: list[dict[str, Any]]
    enables: list[dict[str, Any]]


class EdgeSetResponse(BaseModel):
    task_id: str
    depends_on: list[str]
    enables: list[str]


class EventsResponse(BaseModel):
    events: list[dict[str, Any]]


class StateMachineResponse(BaseModel):
    states: list[str]
    transitions: dict[str, list[str]]
    guards: dict[str, str]
    side_effects: dict[str, str]
    settings: dict[str, Any]


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def _raise_http(exc: BoardError) -> NoReturn:
    """Translate an engine error into a structured HTTP error."""
    if isinstance(exc, TaskNotFoundError):
        status = 404
    elif isinstance(exc, VersionConflictError):
        status = 409
    elif isinstance(exc, GuardViolation):
        status = 400
    else:
        status = 500
    if status >= 500:
        logger.error("Board error: {}", exc)
    else:
        logger.info("Rejected request ({}): {}", exc.code, exc)
    raise HTTPException(status_code=status, detail=exc.to_dict()) from exc


def _not_found(task_id: str) -> NoReturn:
    raise HTTPException(status_code=404, detail=TaskNotFoundError(task_id).to_dict())


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_engine: Any) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> TaskEngine`` that
        resolves the engine for the current request's project directory.
    """
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    # ------------------------------------------------------------------
    # Collection & board views
    # ------------------------------------------------------------------

    @router.get("", response_model=TaskListResponse)
    async def list_tasks(
        project_dir: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        project_id: Optional[str] = Query(None),
        objective_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        try:
            tasks = engine.list_tasks(
                status=status,
                project_id=project_id,
                objective_id=objective_id,
                search=search,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("", response_model=TaskResponse, status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        try:
            task = engine.create_task(**body.model_dump())
        except BoardError as e:
            _raise_http(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return TaskResponse(task=task.to_dict())

    @router.get("/board", response_model=BoardResponse)
    async def get_board(
        project_dir: Optional[str] = Query(None),
    ) -> BoardResponse:
        engine = get_engine(project_dir)
        return BoardResponse(columns=engine.get_board())

    @router.get("/meta/state-machine", response_model=StateMachineResponse)
    async def get_state_machine(
        project_dir: Optional[str] = Query(None),
    ) -> StateMachineResponse:
        engine = get_engine(project_dir)
        return StateMachineResponse(**describe_machine(), settings=engine.settings.to_dict())

    @router.get("/events", response_model=EventsResponse)
    async def get_events(
        project_dir: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ) -> EventsResponse:
        engine = get_engine(project_dir)
        return EventsResponse(events=engine.get_recent_events(limit=limit))

    @router.post("/columns/{status}/rebalance", response_model=RebalanceResponse)
    async def rebalance_column(
        status: str,
        project_dir: Optional[str] = Query(None),
        force: bool = Query(False),
    ) -> RebalanceResponse:
        engine = get_engine(project_dir)
        try:
            changes = engine.rebalance_column(status, force=force)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return RebalanceResponse(status=status.lower(), changes=changes)

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.get_task(task_id)
        if task is None:
            _not_found(task_id)
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}")
    async def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, str]:
        engine = get_engine(project_dir)
        if not engine.delete_task(task_id):
            _not_found(task_id)
        return {"status": "deleted"}

    @router.patch("/{task_id}/priority", response_model=TaskResponse)
    async def update_priority(
        task_id: str,
        body: UpdatePriorityRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        try:
            task = engine.update_task_priority(
                task_id, body.new_priority_score, body.reason, expected_version=body.expected_version
            )
        except BoardError as e:
            _raise_http(e)
        return TaskResponse(task=task.to_dict())

    @router.patch("/{task_id}/status", response_model=TaskResponse)
    async def update_status(
        task_id: str,
        body: UpdateStatusRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        try:
            task = engine.update_task_status(
                task_id,
                body.status,
                evidence_url=body.evidence_url,
                attachment=body.attachment,
                expected_version=body.expected_version,
            )
        except BoardError as e:
            _raise_http(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return TaskResponse(task=task.to_dict())

    @router.patch("/{task_id}/waiting", response_model=TaskResponse)
    async def update_waiting(
        task_id: str,
        body: WaitingRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        try:
            task = engine.set_waiting_third_party(
                task_id,
                body.is_waiting_third_party,
                reason=body.blocking_reason,
                expected_version=body.expected_version,
            )
        except BoardError as e:
            _raise_http(e)
        return TaskResponse(task=task.to_dict())

    @router.post("/{task_id}/move", response_model=MoveResponse)
    async def move_task(
        task_id: str,
        body: MoveRequest,
        project_dir: Optional[str] = Query(None),
    ) -> MoveResponse:
        engine = get_engine(project_dir)
        try:
            task, plan = engine.move_task(
                task_id,
                body.status,
                body.index,
                reason=body.reason,
                evidence_url=body.evidence_url,
                attachment=body.attachment,
                expected_version=body.expected_version,
            )
        except BoardError as e:
            _raise_http(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if plan is None:
            return MoveResponse(task=task.to_dict())
        return MoveResponse(
            task=task.to_dict(),
            rebalanced=plan.rebalanced,
            changes=plan.changes,
            order=plan.order,
        )

    @router.post("/{task_id}/deliverables", response_model=TaskResponse, status_code=201)
    async def add_deliverable(
        task_id: str,
        body: DeliverableRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        try:
            task = engine.add_deliverable(task_id, body.url, title=body.title, kind=body.kind)
        except BoardError as e:
            _raise_http(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return TaskResponse(task=task.to_dict())

    @router.get("/{task_id}/audit", response_model=EventsResponse)
    async def get_audit_log(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ) -> EventsResponse:
        engine = get_engine(project_dir)
        return EventsResponse(events=engine.get_audit_log(task_id, limit=limit))

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @router.get("/{task_id}/dependencies", response_model=DependenciesResponse)
    async def get_task_dependencies(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> DependenciesResponse:
        engine = get_engine(project_dir)
        try:
            deps = engine.get_task_dependencies(task_id)
        except BoardError as e:
            _raise_http(e)
        return DependenciesResponse(
            task_id=task_id,
            depends_on=[t.to_dict() for t in deps["depends_on"]],
            enables=[t.to_dict() for t in deps["enables"]],
        )

    @router.put("/{task_id}/dependencies", response_model=EdgeSetResponse)
    async def update_task_dependencies(
        task_id: str,
        body: UpdateDependenciesRequest,
        project_dir: Optional[str] = Query(None),
    ) -> EdgeSetResponse:
        engine = get_engine(project_dir)
        try:
            edge_set = engine.update_task_dependencies(
                task_id,
                body.depends_on,
                body.enables,
                expected_version=body.expected_version,
            )
        except BoardError as e:
            _raise_http(e)
        return EdgeSetResponse(task_id=task_id, **edge_set.to_dict())

    @router.get("/{task_id}/dependencies/candidates", response_model=TaskListResponse)
    async def get_dependency_candidates(
        task_id: str,
        kind: DependencyKind = Query(DependencyKind.DEPENDS_ON),
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        try:
            tasks = engine.dependency_candidates(task_id, kind)
        except BoardError as e:
            _raise_http(e)
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    return router
