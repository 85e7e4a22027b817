"""
TaskGate: System API Routes
============================
Anomaly checks and the kill switch.

Usage:
    POST   /api/v1/system/checks   Run anomaly checks now
    POST   /api/v1/system/pause    Stop dispatching new work
    POST   /api/v1/system/resume   Resume dispatch
    GET    /api/v1/system/status   Pause flag and last report
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from taskgate.api.deps import get_correlation_id, get_current_user, get_monitor
from taskgate.core.logging import get_logger
from taskgate.services.anomaly_monitor import AnomalyMonitor

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/system", tags=["system"])


class PauseRequest(BaseModel):
    reason: str = Field("Manual pause", min_length=1, max_length=1000)


@router.post("/checks", summary="Run anomaly checks")
async def run_checks(monitor: AnomalyMonitor = Depends(get_monitor)) -> dict[str, Any]:
    return (await monitor.run_all_checks()).to_dict()


@router.post("/pause", summary="Pause dispatch (kill switch)")
async def pause(
    body: PauseRequest | None = None,
    monitor: AnomalyMonitor = Depends(get_monitor),
    current_user: str = Depends(get_current_user),
    correlation_id: str | None = Depends(get_correlation_id),
) -> dict[str, Any]:
    reason = body.reason if body is not None else "Manual pause"
    logger.warning(
        "api.system.pause",
        reason=reason,
        requested_by=current_user,
        correlation_id=correlation_id,
    )
    return await monitor.pause(reason)


@router.post("/resume", summary="Resume dispatch")
async def resume(
    monitor: AnomalyMonitor = Depends(get_monitor),
    current_user: str = Depends(get_current_user),
    correlation_id: str | None = Depends(get_correlation_id),
) -> dict[str, Any]:
    logger.info(
        "api.system.resume",
        requested_by=current_user,
        correlation_id=correlation_id,
    )
    return await monitor.resume()


@router.get("/status", summary="Kill switch status")
async def status(monitor: AnomalyMonitor = Depends(get_monitor)) -> dict[str, Any]:
    return monitor.status()
