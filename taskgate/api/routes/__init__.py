"""
TaskGate: API Routes Package
=============================
Aggregates all route modules under ``/api/v1``.
"""

from taskgate.api.routes.tasks import router as tasks_router
from taskgate.api.routes.approvals import router as approvals_router
from taskgate.api.routes.audit import router as audit_router
from taskgate.api.routes.system import router as system_router

__all__ = [
    "tasks_router",
    "approvals_router",
    "audit_router",
    "system_router",
]
