"""
TaskGate: FastAPI Application
==============================
Application factory with lifecycle management and middleware pipeline.

Usage:
    uvicorn taskgate.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from taskgate.api.health import router as health_router
from taskgate.api.routes import (
    approvals_router,
    audit_router,
    system_router,
    tasks_router,
)
from taskgate.core.config import get_settings
from taskgate.core.logging import configure_logging, get_logger
from taskgate.core.middleware import CorrelationMiddleware
from taskgate.db.session import close_db, init_db
from taskgate.runtime import Runtime, build_runtime, start_runtime, stop_runtime


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifecycle.

    Startup: configure logging, connect DB, build and start the runtime.
    Shutdown: stop the execution loop, close DB.

    A runtime handed to ``create_app`` is owned by the caller and is left
    untouched.
    """
    logger = get_logger("taskgate.main")

    # ── Startup ──────────────────────────────────────────────────────
    configure_logging()
    settings = get_settings()
    logger.info("app.starting", environment=settings.environment.value)

    owned = getattr(application.state, "runtime", None) is None
    if owned:
        await init_db()
        logger.info("db.connected")
        application.state.runtime = build_runtime(settings)
        await start_runtime(application.state.runtime)

    logger.info("app.started")
    yield

    # ── Shutdown ─────────────────────────────────────────────────────
    logger.info("app.stopping")
    if owned:
        await stop_runtime(application.state.runtime)
        application.state.runtime = None
        await close_db()
    logger.info("app.stopped")


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Application factory."""
    settings = get_settings()

    application = FastAPI(
        title="TaskGate",
        description="Task orchestration core with approval gating and audit trail",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    application.state.runtime = runtime

    # ── Middleware ───────────────────────────────────────────────────
    application.add_middleware(CorrelationMiddleware)

    # ── Routers ──────────────────────────────────────────────────────
    application.include_router(health_router)
    application.include_router(tasks_router)
    application.include_router(approvals_router)
    application.include_router(audit_router)
    application.include_router(system_router)

    return application


# Module-level instance for ``uvicorn taskgate.main:app``
app = create_app()
