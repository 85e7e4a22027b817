"""
TaskGate: Test Fixtures
========================
Shared pytest fixtures.

Every test gets its own settings. Tests that touch the audit, approval or
task tables use a SQLite file under ``tmp_path``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient


def _db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'taskgate.db'}"


# ── Override settings BEFORE any app import ──────────────────────────────
@pytest.fixture(autouse=True)
def _clear_settings_cache(tmp_path, monkeypatch):
    """Ensure a fresh Settings instance, pointed at a temporary database."""
    monkeypatch.setenv("TASKGATE_DATABASE_URL", _db_url(tmp_path))
    monkeypatch.setenv("TASKGATE_AUTOSTART_LOOP", "false")
    monkeypatch.setenv("TASKGATE_LOG_FORMAT", "console")
    from taskgate.core.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    """Return a settings instance with test defaults."""
    from taskgate.core.config import get_settings
    return get_settings()


# ── Clock ────────────────────────────────────────────────────────────────
class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Components ───────────────────────────────────────────────────────────
@pytest.fixture
async def db(tmp_path):
    """Fresh database with the schema created."""
    from taskgate.db.session import close_db, init_db
    engine = await init_db(_db_url(tmp_path))
    yield engine
    await close_db()


@pytest.fixture
def audit_log(db):
    from taskgate.services.audit_log import AuditLog
    return AuditLog()


@pytest.fixture
def policy_engine():
    from taskgate.safety.policy_engine import PolicyEngine
    return PolicyEngine()


@pytest.fixture
def approval_store(db, audit_log):
    from taskgate.safety.approval_store import ApprovalStore
    return ApprovalStore(audit_log)


@pytest.fixture
def monitor(audit_log):
    from taskgate.services.anomaly_monitor import AnomalyMonitor
    return AnomalyMonitor(audit_log)


@pytest.fixture
def notifier():
    from taskgate.services.notifications import NotificationService
    return NotificationService()


@pytest.fixture
def make_orchestrator(policy_engine, approval_store, audit_log, monitor, notifier):
    """Factory so tests can tune loop settings per case."""
    from taskgate.core.config import Settings
    from taskgate.orchestrator.engine import Orchestrator
    from taskgate.orchestrator.task_store import TaskStore

    def _make(**overrides):
        options = {
            "poll_interval_seconds": 0.01,
            "anomaly_check_interval_seconds": 3600,
            **overrides,
        }
        return Orchestrator(
            policy_engine=policy_engine,
            approval_store=approval_store,
            audit_log=audit_log,
            task_store=TaskStore(),
            monitor=monitor,
            notifier=notifier,
            settings=Settings(**options),
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


# ── Executors ────────────────────────────────────────────────────────────
class RecordingExecutor:
    """Async executor that records every task it runs."""

    def __init__(self, result=None) -> None:
        self.calls = []
        self._result = result

    async def execute(self, task):
        self.calls.append(task)
        return self._result if self._result is not None else {"ok": True, "action": task.action}


class FailingExecutor:
    """Executor that always raises."""

    def __init__(self, message: str = "executor exploded") -> None:
        self.message = message
        self.calls = 0

    async def execute(self, task):
        self.calls += 1
        raise RuntimeError(self.message)


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def failing_executor() -> FailingExecutor:
    return FailingExecutor()


# ── HTTP client ──────────────────────────────────────────────────────────
@pytest.fixture
async def runtime(db, settings):
    """Fully wired runtime on the test database, loop not started."""
    from taskgate.runtime import build_runtime, start_runtime, stop_runtime
    rt = build_runtime(settings)
    await start_runtime(rt)
    yield rt
    await stop_runtime(rt)


@pytest.fixture
async def client(runtime):
    """AsyncClient wired to the FastAPI app with a pre-built runtime."""
    from taskgate.main import create_app
    app = create_app(runtime)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
