"""
TaskGate: Approval API Routes
==============================
REST endpoints for the human approval workflow.

A decision is recorded in the approval store first; the orchestrator then
picks it up immediately instead of waiting for its next poll.

Usage:
    GET    /api/v1/approvals                     List pending
    GET    /api/v1/approvals/{task_id}           Latest request for a task
    POST   /api/v1/approvals/{task_id}/respond   Approve or reject
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from taskgate.api.deps import (
    get_approval_store,
    get_correlation_id,
    get_current_user,
    get_orchestrator,
)
from taskgate.core.logging import get_logger
from taskgate.orchestrator.engine import Orchestrator
from taskgate.safety.approval_store import ApprovalRecord, ApprovalStore

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/approvals", tags=["approvals"])

_ERROR_STATUS = {
    "NOT_FOUND": 404,
    "ALREADY_DECIDED": 409,
}


# ── Request / Response Schemas ──────────────────────────────────────────


class ApprovalResponse(BaseModel):
    """Approval request returned by the API."""

    id: str
    task_id: str
    status: str
    recommendation: str
    approval_type: str
    title: str | None
    description: str | None
    category: str | None
    decided_by: str | None
    notes: str | None
    created_at: str | None
    decided_at: str | None


class ApprovalDecisionRequest(BaseModel):
    """Request body for a decision."""

    approved: bool
    notes: str = Field("", max_length=4000, description="Optional reason for the decision.")


class ApprovalDecisionResponse(BaseModel):
    """Outcome of a decision and the task's resulting status."""

    success: bool
    task_id: str
    approved: bool
    task_status: str | None = None


def _record_to_response(record: ApprovalRecord) -> ApprovalResponse:
    return ApprovalResponse(**record.to_dict())


# ── Endpoints ───────────────────────────────────────────────────────────


@router.get(
    "",
    response_model=list[ApprovalResponse],
    summary="List pending approvals",
)
async def list_pending_approvals(
    store: ApprovalStore = Depends(get_approval_store),
) -> list[ApprovalResponse]:
    """Return all pending approval requests, oldest first."""
    return [_record_to_response(r) for r in await store.get_pending()]


@router.get(
    "/{task_id}",
    response_model=ApprovalResponse,
    summary="Get approval for a task",
)
async def get_approval(
    task_id: str,
    store: ApprovalStore = Depends(get_approval_store),
) -> ApprovalResponse:
    record = await store.get_record(task_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Approval not found.")
    return _record_to_response(record)


@router.post(
    "/{task_id}/respond",
    response_model=ApprovalDecisionResponse,
    summary="Approve or reject a pending request",
)
async def respond(
    task_id: str,
    body: ApprovalDecisionRequest,
    store: ApprovalStore = Depends(get_approval_store),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    current_user: str = Depends(get_current_user),
    correlation_id: str | None = Depends(get_correlation_id),
) -> ApprovalDecisionResponse:
    """
    Decide the pending request for ``task_id``.

    404 if the task never had a request, 409 if it was already decided.
    """
    decision = await store.respond(
        task_id, body.approved, notes=body.notes, decided_by=current_user
    )
    if not decision.success:
        raise HTTPException(
            status_code=_ERROR_STATUS.get(decision.error_code, 422),
            detail={"error_code": decision.error_code, "message": decision.error},
        )

    logger.info(
        "api.approval.decided",
        task_id=task_id,
        approved=body.approved,
        decided_by=current_user,
        correlation_id=correlation_id,
    )

    await orchestrator.check_external_approvals()
    task = await orchestrator.get_task(task_id)
    return ApprovalDecisionResponse(
        success=True,
        task_id=task_id,
        approved=body.approved,
        task_status=task.status.value if task is not None and task.status else None,
    )
