"""
TaskGate: API Dependencies
===========================
Shared FastAPI dependency injectors for the API layer.

All route handlers reach the runtime components through these, so tests
can hand ``create_app`` a pre-built runtime.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from taskgate.core.config import get_settings
from taskgate.core.middleware import correlation_id_ctx
from taskgate.orchestrator.engine import Orchestrator
from taskgate.runtime import Runtime
from taskgate.safety.approval_store import ApprovalStore
from taskgate.services.anomaly_monitor import AnomalyMonitor
from taskgate.services.audit_log import AuditLog

ANONYMOUS_USER = "anonymous"


def get_runtime(request: Request) -> Runtime:
    """Return the runtime attached to the application, or 503 before startup."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="TaskGate runtime not started.")
    return runtime


def get_orchestrator(runtime: Runtime = Depends(get_runtime)) -> Orchestrator:
    return runtime.orchestrator


def get_approval_store(runtime: Runtime = Depends(get_runtime)) -> ApprovalStore:
    return runtime.approval_store


def get_audit_log(runtime: Runtime = Depends(get_runtime)) -> AuditLog:
    return runtime.audit_log


def get_monitor(runtime: Runtime = Depends(get_runtime)) -> AnomalyMonitor:
    return runtime.monitor


def get_correlation_id() -> str | None:
    """
    Return the correlation ID for the current request.

    Populated by ``CorrelationMiddleware`` on every request.
    """
    return correlation_id_ctx.get(None)


def get_current_user(request: Request) -> str:
    """
    Return the identity of the caller.

    Read from the ``user_header`` request header (``X-User`` by default);
    ``"anonymous"`` when the header is missing or blank.
    """
    user = request.headers.get(get_settings().user_header, "").strip()
    return user or ANONYMOUS_USER
