"""
TaskGate: SQLAlchemy Models
============================
Durable tables for approval requests, task snapshots and the audit trail.

Design decisions:
- Portable ``JSON`` columns so the same schema runs on SQLite and PostgreSQL.
- All timestamps are UTC with timezone.
- At most one pending approval per task, backed by a partial unique index.
- Audit rows are insert-only; nothing in the package updates or deletes them.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Shared declarative base for all TaskGate models."""
    pass


# ── ApprovalRequest ─────────────────────────────────────────────────────

class ApprovalRequest(Base):
    """
    Human-in-the-loop decision point for a gated task.

    Mutated exactly once (pending → approved | rejected), immutable afterward.
    """

    __tablename__ = "approval_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    recommendation: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Reason reported by the policy engine"
    )
    approval_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending",
        comment="pending | approved | rejected",
    )
    decided_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    task_payload: Mapped[dict | None] = mapped_column(
        JSON, nullable=True, comment="Task snapshot for re-admission after restart"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_approvals_task_id", "task_id"),
        Index("ix_approvals_status", "status"),
        Index(
            "ux_approvals_task_pending",
            "task_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


# ── TaskRecord ──────────────────────────────────────────────────────────

class TaskRecord(Base):
    """
    Latest snapshot of a task, upserted on every status change.

    Used to restore the queue when the orchestrator restarts.
    """

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    module: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_tasks_status", "status"),
        Index("ix_tasks_priority", "priority"),
    )


# ── AuditEvent ──────────────────────────────────────────────────────────

class AuditEvent(Base):
    """
    One audit trail entry.

    Rows are only ever inserted. ``seq`` fixes append order; ``day`` is the
    UTC calendar day the entry belongs to.
    """

    __tablename__ = "audit_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, default=_new_id)
    day: Mapped[str] = mapped_column(String(10), nullable=False, comment="YYYY-MM-DD (UTC)")
    event_type: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="proposal | approval | execution | system"
    )
    task_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str | None] = mapped_column(
        String(32), nullable=True, comment="Execution phase for execution entries"
    )
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_audit_day", "day"),
        Index("ix_audit_event_type", "event_type"),
        Index("ix_audit_task_id", "task_id"),
        Index("ix_audit_created_at", "created_at"),
        Index("ix_audit_day_type_status", "day", "event_type", "status"),
    )
