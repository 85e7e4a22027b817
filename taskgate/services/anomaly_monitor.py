"""
TaskGate: Anomaly Monitor
==========================
Samples audit log statistics and trips the system-wide kill switch.

Checks:
- failure_rate: failed / finished executions today, once at least
  ``min_failure_sample`` executions have finished
- execution_volume: executions started in the trailing hour

While paused, the orchestrator refuses to dequeue new work. Work already
running is allowed to finish. There is no automatic resume.

Usage:
    monitor = AnomalyMonitor(audit_log)
    monitor.on_alert(lambda alert: print(alert.type))
    report = await monitor.run_all_checks()
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Awaitable, Callable, Union

from taskgate.core.config import get_settings
from taskgate.core.logging import get_logger
from taskgate.services.audit_log import AuditLog, ExecutionStatus

logger = get_logger(__name__)


class AnomalyType(StrEnum):
    """Kinds of anomaly the monitor can report."""

    HIGH_FAILURE_RATE = "high_failure_rate"
    HIGH_VOLUME = "high_volume"


# ── Data Objects ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check."""

    name: str
    anomaly: bool
    message: str
    type: AnomalyType | None = None
    value: float | None = None
    threshold: float | None = None
    sample: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "anomaly": self.anomaly,
            "message": self.message,
            "type": self.type.value if self.type else None,
            "value": self.value,
            "threshold": self.threshold,
            "sample": self.sample,
        }


@dataclass
class CheckReport:
    """Result of ``run_all_checks``."""

    timestamp: datetime
    checks: list[CheckResult] = field(default_factory=list)
    anomalies_detected: int = 0
    system_healthy: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "checks": [c.to_dict() for c in self.checks],
            "anomalies_detected": self.anomalies_detected,
            "system_healthy": self.system_healthy,
        }


@dataclass(frozen=True)
class Alert:
    """Delivered to every registered alert handler."""

    type: AnomalyType
    timestamp: datetime
    details: dict[str, Any]
    system_paused: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
            "system_paused": self.system_paused,
        }


AlertHandler = Callable[[Alert], Union[None, Awaitable[None]]]


# ── Anomaly Monitor ─────────────────────────────────────────────────────


class AnomalyMonitor:
    """
    Failure-rate and volume checks plus the pause/resume kill switch.

    Thresholds default to the values in ``Settings``.
    """

    def __init__(
        self,
        audit_log: AuditLog,
        *,
        max_failure_rate: float | None = None,
        min_failure_sample: int | None = None,
        max_executions_per_hour: int | None = None,
        pause_on_anomaly: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._audit = audit_log
        self._max_failure_rate = (
            settings.max_failure_rate if max_failure_rate is None else max_failure_rate
        )
        self._min_failure_sample = (
            settings.min_failure_sample
            if min_failure_sample is None else min_failure_sample
        )
        self._max_executions_per_hour = (
            settings.max_executions_per_hour
            if max_executions_per_hour is None else max_executions_per_hour
        )
        self._pause_on_anomaly = (
            settings.pause_on_anomaly if pause_on_anomaly is None else pause_on_anomaly
        )
        self._handlers: list[AlertHandler] = []
        self._paused = False
        self._pause_reason: str | None = None
        self._last_report: CheckReport | None = None

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def pause_reason(self) -> str | None:
        return self._pause_reason

    @property
    def last_report(self) -> CheckReport | None:
        return self._last_report

    def on_alert(self, handler: AlertHandler) -> None:
        """Register a sync or async alert handler."""
        self._handlers.append(handler)

    # ── Checks ──────────────────────────────────────────────────────

    async def check_failure_rate(self) -> CheckResult:
        """Compare today's failed/finished ratio to ``max_failure_rate``."""
        counts = await self._audit.count_executions(day=self._audit.today())
        failures = counts[ExecutionStatus.FAILED]
        finished = counts[ExecutionStatus.COMPLETED] + failures
        if finished < self._min_failure_sample:
            return CheckResult(
                name="failure_rate",
                anomaly=False,
                message="Not enough data",
                threshold=self._max_failure_rate,
                sample=finished,
            )

        rate = failures / finished
        if rate > self._max_failure_rate:
            return CheckResult(
                name="failure_rate",
                anomaly=True,
                message=(
                    f"Failure rate {rate:.1%} exceeds {self._max_failure_rate:.1%}"
                ),
                type=AnomalyType.HIGH_FAILURE_RATE,
                value=rate,
                threshold=self._max_failure_rate,
                sample=finished,
            )
        return CheckResult(
            name="failure_rate",
            anomaly=False,
            message=f"Failure rate {rate:.1%}",
            value=rate,
            threshold=self._max_failure_rate,
            sample=finished,
        )

    async def check_execution_volume(self) -> CheckResult:
        """Compare executions started in the last hour to the hourly cap."""
        since = self._audit.now() - timedelta(hours=1)
        counts = await self._audit.count_executions(since=since)
        count = counts[ExecutionStatus.STARTED]
        if count > self._max_executions_per_hour:
            return CheckResult(
                name="execution_volume",
                anomaly=True,
                message=(
                    f"{count} executions in last hour exceeds "
                    f"{self._max_executions_per_hour}"
                ),
                type=AnomalyType.HIGH_VOLUME,
                value=count,
                threshold=self._max_executions_per_hour,
                sample=count,
            )
        return CheckResult(
            name="execution_volume",
            anomaly=False,
            message=f"{count} executions in last hour",
            value=count,
            threshold=self._max_executions_per_hour,
            sample=count,
        )

    async def run_all_checks(self) -> CheckReport:
        """
        Run every check, then pause and alert if anything tripped.

        Returns
        -------
        CheckReport
            ``system_healthy`` is ``False`` whenever any check is anomalous.
        """
        report = CheckReport(timestamp=self._audit.now())
        report.checks = [
            await self.check_failure_rate(),
            await self.check_execution_volume(),
        ]
        anomalies = [c for c in report.checks if c.anomaly]
        report.anomalies_detected = len(anomalies)
        report.system_healthy = not anomalies

        if anomalies and self._pause_on_anomaly and not self._paused:
            await self.pause("; ".join(c.message for c in anomalies))

        for check in anomalies:
            await self._trigger_alert(check)

        self._last_report = report
        logger.info(
            "anomaly_monitor.checks_completed",
            anomalies_detected=report.anomalies_detected,
            system_healthy=report.system_healthy,
        )
        return report

    async def _trigger_alert(self, check: CheckResult) -> Alert:
        alert = Alert(
            type=check.type or AnomalyType.HIGH_FAILURE_RATE,
            timestamp=self._audit.now(),
            details=check.to_dict(),
            system_paused=self._paused,
        )
        await self._audit.log_system("anomaly_detected", alert.to_dict())
        logger.warning(
            "anomaly_monitor.anomaly_detected",
            anomaly_type=alert.type.value,
            message=check.message,
        )

        for handler in list(self._handlers):
            try:
                outcome = handler(alert)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.error(
                    "anomaly_monitor.alert_handler_failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(exc),
                    exc_info=True,
                )
        return alert

    # ── Kill switch ─────────────────────────────────────────────────

    async def pause(self, reason: str = "Manual pause") -> dict[str, Any]:
        """Stop dispatch of new work until ``resume()`` is called."""
        self._paused = True
        self._pause_reason = reason
        await self._audit.log_system("system_paused", {"reason": reason})
        logger.warning("anomaly_monitor.system_paused", reason=reason)
        return {"paused": True, "reason": reason}

    async def resume(self) -> dict[str, Any]:
        self._paused = False
        self._pause_reason = None
        await self._audit.log_system("system_resumed", {})
        logger.info("anomaly_monitor.system_resumed")
        return {"paused": False}

    def status(self) -> dict[str, Any]:
        return {
            "is_paused": self._paused,
            "reason": self._pause_reason,
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }

    # ── Executor contract ───────────────────────────────────────────

    async def execute(self, task: Any) -> dict[str, Any]:
        """Run a monitor action submitted as a task."""
        action = task.action
        data = task.data or {}
        if action == "check_all":
            return (await self.run_all_checks()).to_dict()
        if action == "check_failures":
            return (await self.check_failure_rate()).to_dict()
        if action == "check_volume":
            return (await self.check_execution_volume()).to_dict()
        if action == "pause":
            return await self.pause(data.get("reason") or "Manual pause")
        if action == "resume":
            return await self.resume()
        if action == "status":
            return self.status()
        raise ValueError(f"Unknown action: {action}")
