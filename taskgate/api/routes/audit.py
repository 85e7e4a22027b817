"""
TaskGate: Audit API Routes
===========================
Read-only views over the audit trail.

Usage:
    GET    /api/v1/audit/today     Today's entries
    GET    /api/v1/audit/summary   Daily summary (defaults to today)
    GET    /api/v1/audit/days      Days with entries
"""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query

from taskgate.api.deps import get_audit_log
from taskgate.services.audit_log import AuditLog

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])


@router.get("/today", summary="Today's audit entries")
async def get_today(
    limit: int | None = Query(default=None, ge=1, le=10_000),
    audit_log: AuditLog = Depends(get_audit_log),
) -> list[dict[str, Any]]:
    """Entries in append order. ``limit`` keeps the most recent ones."""
    entries = await audit_log.get_today_logs()
    if limit is not None:
        entries = entries[-limit:]
    return [e.to_dict() for e in entries]


@router.get("/summary", summary="Daily summary")
async def get_summary(
    day: date | None = Query(default=None, description="UTC date, YYYY-MM-DD"),
    audit_log: AuditLog = Depends(get_audit_log),
) -> dict[str, Any]:
    return (await audit_log.get_daily_summary(day)).to_dict()


@router.get("/days", summary="Days with audit entries")
async def list_days(audit_log: AuditLog = Depends(get_audit_log)) -> list[str]:
    return [d.isoformat() for d in await audit_log.list_days()]
