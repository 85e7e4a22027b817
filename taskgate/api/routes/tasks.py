"""
TaskGate: Task API Routes
==========================
REST endpoints for task submission and queue status.

Usage:
    POST   /api/v1/tasks                    Submit task
    GET    /api/v1/tasks/status             Orchestrator status
    POST   /api/v1/tasks/dead-letter/retry  Retry dead-lettered tasks
    GET    /api/v1/tasks/{task_id}          Task detail
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from taskgate.api.deps import get_correlation_id, get_orchestrator
from taskgate.core.exceptions import ConfigurationError, TaskValidationError
from taskgate.core.logging import get_logger
from taskgate.core.task_types import TaskSubmission
from taskgate.orchestrator.engine import Orchestrator, SubmissionResult
from taskgate.orchestrator.state_machine import InvalidTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


# ── Request / Response Schemas ──────────────────────────────────────────


class SubmissionResponse(BaseModel):
    """Outcome of a task submission."""

    accepted: bool
    status: str | None
    task_id: str
    priority: float | None = None
    reason: str | None = None
    position: int | None = None
    error: str | None = None
    error_code: str | None = None


class TaskResponse(BaseModel):
    """Task snapshot returned by the API."""

    id: str
    module: str
    action: str
    category: str | None
    title: str | None
    status: str | None
    priority: float
    retry_count: int
    submitted_at: str | None
    timestamps: dict[str, str]
    result: Any = None
    error: str | None = None


def _to_response(result: SubmissionResult) -> SubmissionResponse:
    return SubmissionResponse(**result.to_dict())


# ── Endpoints ───────────────────────────────────────────────────────────


@router.post(
    "",
    response_model=SubmissionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a task",
)
async def submit_task(
    body: TaskSubmission,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    correlation_id: str | None = Depends(get_correlation_id),
) -> SubmissionResponse:
    """
    Gate and admit a task.

    Returns 202 with ``queued`` or ``pending_approval``; 409 if the task
    already awaits a decision or is already queued.
    """
    try:
        result = await orchestrator.submit_task(body.model_dump())
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except TaskValidationError as exc:
        raise HTTPException(
            status_code=422, detail={"error_code": exc.error_code, "message": str(exc)}
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    logger.info(
        "api.task.submitted",
        task_id=result.task_id,
        status=result.status.value if result.status else None,
        correlation_id=correlation_id,
    )
    if not result.accepted:
        raise HTTPException(
            status_code=409,
            detail={"error_code": result.error_code, "message": result.error},
        )
    return _to_response(result)


@router.get(
    "/status",
    summary="Orchestrator status",
)
async def get_status(
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Queue, running, dead-letter and approval counts plus today's summary."""
    return await orchestrator.get_status()


@router.post(
    "/dead-letter/retry",
    response_model=list[SubmissionResponse],
    summary="Retry dead-lettered tasks",
)
async def retry_dead_letter(
    orchestrator: Orchestrator = Depends(get_orchestrator),
    correlation_id: str | None = Depends(get_correlation_id),
) -> list[SubmissionResponse]:
    results = await orchestrator.retry_dead_letter_queue()
    logger.info(
        "api.task.dead_letter_retried",
        count=len(results),
        correlation_id=correlation_id,
    )
    return [_to_response(r) for r in results]


@router.get(
    "/{task_id}",
    response_model=TaskResponse,
    summary="Get task detail",
)
async def get_task(
    task_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    task = await orchestrator.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found.")
    snapshot = task.to_dict()
    return TaskResponse(
        id=snapshot["id"],
        module=snapshot["module"],
        action=snapshot["action"],
        category=snapshot["category"],
        title=snapshot["title"],
        status=snapshot["status"],
        priority=snapshot["priority"],
        retry_count=snapshot["retry_count"],
        submitted_at=snapshot["submitted_at"],
        timestamps=snapshot["timestamps"],
        result=snapshot["result"],
        error=snapshot["error"],
    )
