"""
TaskGate: Health Endpoint
==========================
Reports database connectivity, audit trail readability and loop state.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from taskgate.api.deps import get_runtime
from taskgate.db.session import get_engine
from taskgate.runtime import Runtime

router = APIRouter(prefix="/api/v1", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    database: str
    audit_log: str
    execution_loop: str
    paused: bool


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="System health check",
    description="Returns component-level status for the database and audit log.",
)
async def health_check(runtime: Runtime = Depends(get_runtime)) -> HealthResponse:
    """
    Health endpoint.

    Overall status is 'healthy' only if every component is ok and the
    kill switch is off.
    """
    db_status = await _check_database()
    audit_status = await _check_audit_log(runtime)
    paused = runtime.monitor.is_paused

    overall = (
        "healthy"
        if db_status == "ok" and audit_status == "ok" and not paused
        else "degraded"
    )

    return HealthResponse(
        status=overall,
        database=db_status,
        audit_log=audit_status,
        execution_loop="running" if runtime.orchestrator.is_running else "stopped",
        paused=paused,
    )


async def _check_database() -> str:
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        return "error"


async def _check_audit_log(runtime: Runtime) -> str:
    try:
        await runtime.audit_log.list_days()
        return "ok"
    except Exception:
        return "error"
