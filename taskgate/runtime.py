"""
TaskGate: Runtime Wiring
=========================
Builds the component graph once per process and owns its lifecycle.

Usage:
    runtime = build_runtime()
    await start_runtime(runtime)
    ...
    await stop_runtime(runtime)
"""

from __future__ import annotations

from dataclasses import dataclass

from taskgate.core.config import Settings, get_settings
from taskgate.core.logging import get_logger
from taskgate.orchestrator.engine import Orchestrator
from taskgate.orchestrator.task_store import TaskStore
from taskgate.safety.approval_store import ApprovalStore
from taskgate.safety.policy_engine import PolicyEngine
from taskgate.services.anomaly_monitor import AnomalyMonitor
from taskgate.services.audit_log import AuditLog
from taskgate.services.notifications import NotificationService

logger = get_logger(__name__)

MONITOR_MODULE = "monitor"


@dataclass
class Runtime:
    """Every long-lived component, wired together."""

    settings: Settings
    audit_log: AuditLog
    policy_engine: PolicyEngine
    approval_store: ApprovalStore
    monitor: AnomalyMonitor
    notifier: NotificationService
    task_store: TaskStore
    orchestrator: Orchestrator


def build_runtime(settings: Settings | None = None) -> Runtime:
    """
    Construct the components. The database must be initialized before the
    runtime is started.

    Raises ``InvalidConfigurationError`` for an inconsistent policy table.
    """
    settings = settings or get_settings()
    audit_log = AuditLog(recent_actions=settings.audit_recent_actions)
    policy_engine = PolicyEngine.from_settings(settings)
    approval_store = ApprovalStore(audit_log)
    monitor = AnomalyMonitor(
        audit_log,
        max_failure_rate=settings.max_failure_rate,
        min_failure_sample=settings.min_failure_sample,
        max_executions_per_hour=settings.max_executions_per_hour,
        pause_on_anomaly=settings.pause_on_anomaly,
    )
    notifier = NotificationService()
    task_store = TaskStore()
    orchestrator = Orchestrator(
        policy_engine=policy_engine,
        approval_store=approval_store,
        audit_log=audit_log,
        task_store=task_store,
        monitor=monitor,
        notifier=notifier,
        settings=settings,
    )
    return Runtime(
        settings=settings,
        audit_log=audit_log,
        policy_engine=policy_engine,
        approval_store=approval_store,
        monitor=monitor,
        notifier=notifier,
        task_store=task_store,
        orchestrator=orchestrator,
    )


async def start_runtime(runtime: Runtime) -> None:
    """Restore state, register built-in modules and start the loop if configured."""
    await runtime.orchestrator.register_module(MONITOR_MODULE, runtime.monitor)
    await runtime.orchestrator.init()
    if runtime.settings.autostart_loop:
        await runtime.orchestrator.start()
    logger.info(
        "runtime.started",
        loop_running=runtime.orchestrator.is_running,
    )


async def stop_runtime(runtime: Runtime) -> None:
    await runtime.orchestrator.stop()
    logger.info("runtime.stopped")
