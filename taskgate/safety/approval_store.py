"""
TaskGate: Approval Store
=========================
Durable table of approval requests for gated tasks.

Invariants:
- At most one PENDING request per task at any time
- A request is decided exactly once; a second response fails with
  ``ALREADY_DECIDED`` instead of overwriting the first decision
- Every submission and decision is written to the audit log

Store-level invariant violations are returned as explicit result objects
(``SubmitResult`` / ``DecisionResult`` with an ``error_code``); they never
raise into the caller.

Usage:
    store = ApprovalStore(audit_log)
    result = await store.submit(task, evaluation)
    decision = await store.respond(task.id, approved=True, notes="ok")
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, AsyncIterator, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from taskgate.core.exceptions import (
    AlreadyDecidedError,
    ApprovalNotFoundError,
    ApprovalStoreError,
    DuplicatePendingError,
)
from taskgate.core.logging import get_logger
from taskgate.core.task_types import Task
from taskgate.db.models import ApprovalRequest
from taskgate.db.session import get_db_session
from taskgate.safety.policy_engine import ApprovalType, PolicyEvaluation
from taskgate.services.audit_log import AuditLog

logger = get_logger(__name__)

SYSTEM_APPROVER = "system:policy"


class ApprovalStatus(StrEnum):
    """Approval lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ── Data Objects ────────────────────────────────────────────────────────

@dataclass
class ApprovalRecord:
    """Domain view of an ``approval_requests`` row."""

    id: str
    task_id: str
    status: ApprovalStatus
    recommendation: str
    approval_type: str
    title: str | None = None
    description: str | None = None
    category: str | None = None
    decided_by: str | None = None
    notes: str | None = None
    task_payload: dict[str, Any] | None = None
    created_at: datetime | None = None
    decided_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "status": self.status.value,
            "recommendation": self.recommendation,
            "approval_type": self.approval_type,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "decided_by": self.decided_by,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of ``ApprovalStore.submit``."""

    approved: bool
    pending: bool
    task_id: str
    reason: str
    approval_id: str | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class DecisionResult:
    """Outcome of ``ApprovalStore.respond``."""

    success: bool
    task_id: str
    approved: bool | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class ApprovalStatusView:
    """Latest approval state of a task."""

    found: bool
    status: ApprovalStatus | None = None
    submitted_at: datetime | None = None
    responded_at: datetime | None = None
    notes: str | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


# ── Approval Store ──────────────────────────────────────────────────────

class ApprovalStore:
    """
    Transport-agnostic approval table.

    Writes are serialized per task id; reads are concurrent.
    """

    def __init__(
        self,
        audit_log: AuditLog,
        session_factory: Callable[..., Any] | None = None,
    ) -> None:
        """
        Parameters
        ----------
        audit_log
            Destination for proposal and decision entries.
        session_factory
            Async context manager that yields an AsyncSession.
            Defaults to get_db_session.
        """
        self._audit = audit_log
        self._session_factory = session_factory or get_db_session
        self._locks: dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def _locked(self, task_id: str) -> AsyncIterator[None]:
        """Hold the write lock for ``task_id``; dropped once nobody needs it."""
        entry = self._locks.get(task_id)
        if entry is None:
            entry = self._locks[task_id] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[task_id]

    def _to_record(self, row: ApprovalRequest) -> ApprovalRecord:
        return ApprovalRecord(
            id=row.id,
            task_id=row.task_id,
            status=ApprovalStatus(row.status),
            recommendation=row.recommendation,
            approval_type=row.approval_type,
            title=row.title,
            description=row.description,
            category=row.category,
            decided_by=row.decided_by,
            notes=row.notes,
            task_payload=row.task_payload,
            created_at=_as_utc(row.created_at),
            decided_at=_as_utc(row.decided_at),
        )

    # ── Submission ──────────────────────────────────────────────────

    async def submit(self, task: Task, evaluation: PolicyEvaluation) -> SubmitResult:
        """
        Record a proposal and, if required, open a pending approval request.

        Returns ``approved=True`` for tasks that need no approval,
        ``pending=True`` for newly gated tasks, and an error result with
        ``DUPLICATE_PENDING`` if the task already awaits a decision.
        """
        await self._audit.log_proposal(task, evaluation)

        if not evaluation.requires_approval:
            # Human-approved re-admissions already have their decision logged
            if evaluation.approval_type is not ApprovalType.HUMAN_DECISION:
                await self._audit.log_approval(
                    task.id, True, SYSTEM_APPROVER, "Auto-approved by policy"
                )
            logger.info(
                "approval_store.auto_approved",
                task_id=task.id,
                approval_type=evaluation.approval_type.value,
            )
            return SubmitResult(
                approved=True, pending=False, task_id=task.id, reason=evaluation.reason
            )

        try:
            async with self._locked(task.id):
                record = await self._create_pending(task, evaluation)
        except DuplicatePendingError as exc:
            logger.warning("approval_store.duplicate_pending", task_id=task.id)
            return SubmitResult(
                approved=False,
                pending=True,
                task_id=task.id,
                reason=evaluation.reason,
                error=str(exc),
                error_code=exc.error_code,
            )

        logger.info(
            "approval_store.approval_requested",
            approval_id=record.id,
            task_id=task.id,
            approval_type=evaluation.approval_type.value,
        )
        return SubmitResult(
            approved=False,
            pending=True,
            task_id=task.id,
            reason=evaluation.reason,
            approval_id=record.id,
        )

    async def _create_pending(
        self, task: Task, evaluation: PolicyEvaluation
    ) -> ApprovalRecord:
        try:
            async with self._session_factory() as session:
                existing = await session.execute(
                    select(ApprovalRequest.id).where(
                        ApprovalRequest.task_id == task.id,
                        ApprovalRequest.status == ApprovalStatus.PENDING.value,
                    )
                )
                if existing.first() is not None:
                    raise DuplicatePendingError(task.id)

                row = ApprovalRequest(
                    task_id=task.id,
                    title=task.title or f"{task.module}.{task.action}",
                    description=task.description,
                    category=task.category,
                    recommendation=evaluation.reason,
                    approval_type=evaluation.approval_type.value,
                    status=ApprovalStatus.PENDING.value,
                    task_payload=task.to_dict(),
                    created_at=datetime.now(timezone.utc),
                )
                session.add(row)
                await session.flush()
                return self._to_record(row)
        except IntegrityError:
            # Partial unique index caught a concurrent writer
            raise DuplicatePendingError(task.id) from None

    # ── Decisions ───────────────────────────────────────────────────

    async def respond(
        self,
        task_id: str,
        approved: bool,
        notes: str = "",
        decided_by: str = "user",
    ) -> DecisionResult:
        """
        Decide the pending request for ``task_id``.

        Error codes: ``NOT_FOUND`` if the task never had a request,
        ``ALREADY_DECIDED`` if its request was already decided.
        """
        try:
            async with self._locked(task_id):
                await self._decide(task_id, approved, notes, decided_by)
        except ApprovalStoreError as exc:
            logger.warning(
                "approval_store.respond_failed",
                task_id=task_id,
                error_code=exc.error_code,
            )
            return DecisionResult(
                success=False,
                task_id=task_id,
                error=str(exc),
                error_code=exc.error_code,
            )

        await self._audit.log_approval(task_id, approved, decided_by, notes)
        logger.info(
            "approval_store.approved" if approved else "approval_store.rejected",
            task_id=task_id,
            decided_by=decided_by,
        )
        return DecisionResult(success=True, task_id=task_id, approved=approved)

    async def _decide(
        self, task_id: str, approved: bool, notes: str, decided_by: str
    ) -> None:
        status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        async with self._session_factory() as session:
            result = await session.execute(
                update(ApprovalRequest)
                .where(
                    ApprovalRequest.task_id == task_id,
                    ApprovalRequest.status == ApprovalStatus.PENDING.value,
                )
                .values(
                    status=status.value,
                    decided_by=decided_by,
                    notes=notes,
                    decided_at=datetime.now(timezone.utc),
                )
            )
            if result.rowcount:
                return

            latest = await self._latest_row(session, task_id)
            if latest is None:
                raise ApprovalNotFoundError(task_id)
            raise AlreadyDecidedError(task_id, latest.status)

    # ── Queries ─────────────────────────────────────────────────────

    @staticmethod
    async def _latest_row(session: Any, task_id: str) -> ApprovalRequest | None:
        result = await session.execute(
            select(ApprovalRequest)
            .where(ApprovalRequest.task_id == task_id)
            .order_by(ApprovalRequest.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_pending(self) -> list[ApprovalRecord]:
        """Return all pending requests, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApprovalRequest)
                .where(ApprovalRequest.status == ApprovalStatus.PENDING.value)
                .order_by(ApprovalRequest.created_at)
            )
            return [self._to_record(r) for r in result.scalars().all()]

    async def get_record(self, task_id: str) -> ApprovalRecord | None:
        """Return the most recent request for ``task_id``, if any."""
        async with self._session_factory() as session:
            row = await self._latest_row(session, task_id)
            return self._to_record(row) if row is not None else None

    async def get_status(self, task_id: str) -> ApprovalStatusView:
        record = await self.get_record(task_id)
        if record is None:
            return ApprovalStatusView(found=False)
        return ApprovalStatusView(
            found=True,
            status=record.status,
            submitted_at=record.created_at,
            responded_at=record.decided_at,
            notes=record.notes,
        )

    async def is_pending(self, task_id: str) -> bool:
        view = await self.get_status(task_id)
        return view.found and view.status is ApprovalStatus.PENDING
