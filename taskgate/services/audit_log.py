"""
TaskGate: Audit Log
====================
Append-only record of every proposal, approval decision, execution outcome,
and system event.

Storage:
    ``audit_events`` table, one row per entry, keyed for reads by the UTC
    calendar ``day`` it was written on.

Rows are only ever inserted. Once the date rolls over, the previous day's
partition receives no further entries. Appends are serialized, so the
autoincrement ``seq`` column reflects the order ``log()`` was called in.

Usage:
    audit = AuditLog()
    await audit.log_system("orchestrator_started", {"modules": ["docs"]})
    summary = await audit.get_daily_summary()
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Mapping

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.core.config import get_settings
from taskgate.core.logging import get_logger
from taskgate.db.models import AuditEvent
from taskgate.db.session import get_db_session

if TYPE_CHECKING:
    from taskgate.core.task_types import Task
    from taskgate.safety.policy_engine import PolicyEvaluation

logger = get_logger(__name__)

_RESERVED_KEYS = frozenset({"id", "timestamp", "type"})


class AuditEntryType(StrEnum):
    """Kinds of facts recorded in the audit trail."""

    PROPOSAL = "proposal"
    APPROVAL = "approval"
    EXECUTION = "execution"
    SYSTEM = "system"


class ExecutionStatus(StrEnum):
    """Execution phases recorded by ``log_execution``."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AuditEntry:
    """One immutable fact about the system's history."""

    id: str
    timestamp: datetime
    type: AuditEntryType
    payload: Mapping[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Flat JSON form: the envelope keys next to the payload keys."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            **self.payload,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> AuditEntry:
        payload = {k: v for k, v in raw.items() if k not in _RESERVED_KEYS}
        return cls(
            id=raw["id"],
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            type=AuditEntryType(raw["type"]),
            payload=MappingProxyType(payload),
        )


@dataclass
class DailySummary:
    """Aggregate view of one day's partition."""

    date: str
    total_actions: int = 0
    proposals: int = 0
    approvals: int = 0
    executions: int = 0
    completed: int = 0
    failed: int = 0
    pending_approvals: list[dict[str, Any]] = field(default_factory=list)
    recent_actions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total_actions": self.total_actions,
            "proposals": self.proposals,
            "approvals": self.approvals,
            "executions": self.executions,
            "completed": self.completed,
            "failed": self.failed,
            "pending_approvals": list(self.pending_approvals),
            "recent_actions": list(self.recent_actions),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(entry: AuditEntry) -> str | None:
    task = entry.get("task") or {}
    return (
        task.get("title")
        or (f"{task['module']}.{task['action']}" if task.get("module") else None)
        or entry.get("event")
        or entry.get("task_id")
    )


def summarize(
    day: date, entries: list[AuditEntry], recent_limit: int = 10
) -> DailySummary:
    """
    Fold a day's entries into a ``DailySummary``.

    A proposal stays pending until an approval entry (either decision) for
    the same task follows it.
    """
    summary = DailySummary(date=day.isoformat(), total_actions=len(entries))
    pending: dict[str, dict[str, Any]] = {}

    for entry in entries:
        if entry.type is AuditEntryType.PROPOSAL:
            summary.proposals += 1
            task = dict(entry.get("task") or {})
            evaluation = entry.get("evaluation") or {}
            # Re-admissions after a human decision were already decided
            if task.get("id") and evaluation.get("approval_type") != "human_decision":
                pending[task["id"]] = task
        elif entry.type is AuditEntryType.APPROVAL:
            summary.approvals += 1
            pending.pop(entry.get("task_id"), None)
        elif entry.type is AuditEntryType.EXECUTION:
            summary.executions += 1
            if entry.get("status") == ExecutionStatus.COMPLETED:
                summary.completed += 1
            elif entry.get("status") == ExecutionStatus.FAILED:
                summary.failed += 1

    summary.pending_approvals = list(pending.values())
    if recent_limit:
        summary.recent_actions = [
            {
                "type": e.type.value,
                "timestamp": e.timestamp.isoformat(),
                "description": _describe(e),
            }
            for e in entries[-recent_limit:]
        ]
    return summary


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _entry_from_row(row: AuditEvent) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        timestamp=_as_utc(row.created_at),
        type=AuditEntryType(row.event_type),
        payload=MappingProxyType(dict(row.payload or {})),
    )


class AuditLog:
    """
    Append-only audit trail partitioned by UTC calendar day.

    Appends are serialized with a lock, so entries land in the order
    ``log()`` was called. Reads always go back to the database; entries
    handed out are never shared with the store.
    """

    def __init__(
        self,
        session_factory: Callable[..., Any] | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        recent_actions: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory or get_db_session
        self._clock = clock or _utcnow
        self._recent_actions = (
            settings.audit_recent_actions if recent_actions is None else recent_actions
        )
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        """Current time on the log's clock, in UTC."""
        return _as_utc(self._clock())

    def today(self) -> date:
        return self.now().date()

    # ── Writing ─────────────────────────────────────────────────────

    async def log(
        self, entry_type: AuditEntryType | str, payload: Mapping[str, Any] | None = None
    ) -> AuditEntry:
        """
        Append one entry and return it enriched with id and timestamp.

        Raises ``ValueError`` if the payload uses an envelope key.
        """
        kind = AuditEntryType(entry_type)
        body = dict(payload or {})
        clash = _RESERVED_KEYS.intersection(body)
        if clash:
            raise ValueError(f"Audit payload may not set reserved keys: {sorted(clash)}")

        # Round-trip through JSON so the returned entry matches what is stored
        body = json.loads(json.dumps(body, default=str))
        task_id = body.get("task_id") or (body.get("task") or {}).get("id")
        status = body.get("status") if kind is AuditEntryType.EXECUTION else None

        async with self._lock:
            entry = AuditEntry(
                id=str(uuid.uuid4()),
                timestamp=self.now(),
                type=kind,
                payload=MappingProxyType(body),
            )
            async with self._session_factory() as session:
                session: AsyncSession
                session.add(AuditEvent(
                    id=entry.id,
                    day=entry.timestamp.date().isoformat(),
                    event_type=kind.value,
                    task_id=task_id,
                    status=status,
                    payload=body,
                    created_at=entry.timestamp,
                ))

        logger.debug(
            "audit.entry_appended",
            entry_id=entry.id,
            entry_type=entry.type.value,
        )
        return entry

    async def log_proposal(self, task: Task, evaluation: PolicyEvaluation) -> AuditEntry:
        return await self.log(AuditEntryType.PROPOSAL, {
            "task": {
                "id": task.id,
                "module": task.module,
                "action": task.action,
                "title": task.title,
                "category": task.category,
                "description": task.description,
            },
            "evaluation": {
                "requires_approval": evaluation.requires_approval,
                "reason": evaluation.reason,
                "approval_type": evaluation.approval_type.value,
            },
        })

    async def log_approval(
        self, task_id: str, approved: bool, approver: str, notes: str = ""
    ) -> AuditEntry:
        return await self.log(AuditEntryType.APPROVAL, {
            "task_id": task_id,
            "approved": approved,
            "approver": approver,
            "notes": notes,
        })

    async def log_execution(
        self,
        task_id: str,
        status: ExecutionStatus | str,
        result: Any = None,
    ) -> AuditEntry:
        return await self.log(AuditEntryType.EXECUTION, {
            "task_id": task_id,
            "status": ExecutionStatus(status).value,
            "result": result if result is not None else {},
        })

    async def log_system(
        self, event: str, details: Mapping[str, Any] | None = None
    ) -> AuditEntry:
        return await self.log(AuditEntryType.SYSTEM, {
            "event": event,
            "details": dict(details or {}),
        })

    # ── Reading ─────────────────────────────────────────────────────

    async def get_logs(self, day: date) -> list[AuditEntry]:
        """Return a day's entries in append order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditEvent)
                .where(AuditEvent.day == day.isoformat())
                .order_by(AuditEvent.seq)
            )
            return [_entry_from_row(row) for row in result.scalars().all()]

    async def get_today_logs(self) -> list[AuditEntry]:
        return await self.get_logs(self.today())

    async def get_logs_since(self, moment: datetime) -> list[AuditEntry]:
        """Return entries at or after ``moment``, spanning day partitions."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditEvent)
                .where(AuditEvent.created_at >= _as_utc(moment))
                .order_by(AuditEvent.seq)
            )
            return [_entry_from_row(row) for row in result.scalars().all()]

    async def count_executions(
        self, *, day: date | None = None, since: datetime | None = None
    ) -> dict[ExecutionStatus, int]:
        """
        Count execution entries per phase.

        ``day`` restricts to one partition, ``since`` to entries at or after
        that moment. Phases with no entries map to zero.
        """
        query = (
            select(AuditEvent.status, func.count())
            .where(AuditEvent.event_type == AuditEntryType.EXECUTION.value)
            .group_by(AuditEvent.status)
        )
        if day is not None:
            query = query.where(AuditEvent.day == day.isoformat())
        if since is not None:
            query = query.where(AuditEvent.created_at >= _as_utc(since))

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()

        counts = {status: 0 for status in ExecutionStatus}
        for status, count in rows:
            if status in counts:
                counts[ExecutionStatus(status)] = count
        return counts

    async def list_days(self) -> list[date]:
        """Return the days that have entries, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(distinct(AuditEvent.day)).order_by(AuditEvent.day)
            )
            return [date.fromisoformat(day) for day in result.scalars().all()]

    async def get_daily_summary(self, day: date | None = None) -> DailySummary:
        day = day or self.today()
        return summarize(day, await self.get_logs(day), self._recent_actions)
