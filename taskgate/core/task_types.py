"""
TaskGate: Task Types
=====================
The Task work unit, its lifecycle statuses, and the category tables used by
the default policy.

Task statuses:
- QUEUED: admitted, waiting in the priority queue
- PENDING_APPROVAL: gated behind a human decision
- RUNNING: dispatched to an executor
- COMPLETED / FAILED: execution outcome
- REJECTED: the human decision refused admission
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from taskgate.core.exceptions import TaskValidationError


def utcnow() -> datetime:
    """Return current UTC datetime with timezone."""
    return datetime.now(timezone.utc)


class TaskStatus(StrEnum):
    """Lifecycle status of a task."""

    QUEUED = "queued"
    PENDING_APPROVAL = "pending_approval"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class TaskCategory(StrEnum):
    """Task categories known to the default policy tables."""

    # Gated
    LEGAL = "legal"
    FINANCIAL = "financial"
    FUNDS_TRANSFER = "funds_transfer"
    CONTRACT_SIGNING = "contract_signing"
    COMPLIANCE_FILING = "compliance_filing"

    # Autonomous
    DOCUMENT_MANAGEMENT = "document_management"
    REPORT_GENERATION = "report_generation"
    DATA_BACKUP = "data_backup"
    NOTIFICATION = "notification"
    SEARCH = "search"
    SCHEDULING = "scheduling"
    REMINDER = "reminder"
    TEMPLATE_CREATION = "template_creation"
    STATUS_UPDATE = "status_update"


DEFAULT_APPROVAL_CATEGORIES: tuple[str, ...] = (
    TaskCategory.LEGAL,
    TaskCategory.FINANCIAL,
    TaskCategory.FUNDS_TRANSFER,
    TaskCategory.CONTRACT_SIGNING,
    TaskCategory.COMPLIANCE_FILING,
)

DEFAULT_AUTO_APPROVE_CATEGORIES: tuple[str, ...] = (
    TaskCategory.DOCUMENT_MANAGEMENT,
    TaskCategory.REPORT_GENERATION,
    TaskCategory.DATA_BACKUP,
    TaskCategory.NOTIFICATION,
    TaskCategory.SEARCH,
    TaskCategory.SCHEDULING,
    TaskCategory.REMINDER,
    TaskCategory.TEMPLATE_CREATION,
    TaskCategory.STATUS_UPDATE,
)

DEFAULT_FINANCIAL_KEYWORDS: tuple[str, ...] = (
    "money", "payment", "transfer", "bank", "funds", "invoice_pay", "wire",
)

DEFAULT_LEGAL_KEYWORDS: tuple[str, ...] = (
    "legal", "lawsuit", "court", "attorney", "settlement", "sue", "litigation",
)

SCORE_MIN = 1
SCORE_MAX = 10
DEFAULT_SCORE = 5


# ── Inbound Schema ──────────────────────────────────────────────────────


class TaskSubmission(BaseModel):
    """Validated shape of an inbound task payload."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, min_length=1, max_length=128)
    module: str = Field(..., min_length=1, max_length=128)
    action: str = Field(..., min_length=1, max_length=128)
    data: dict[str, Any] = Field(default_factory=dict)
    impact: int = Field(default=DEFAULT_SCORE, ge=SCORE_MIN, le=SCORE_MAX)
    urgency: int = Field(default=DEFAULT_SCORE, ge=SCORE_MIN, le=SCORE_MAX)
    effort: int = Field(default=DEFAULT_SCORE, ge=SCORE_MIN, le=SCORE_MAX)
    risk: int = Field(default=DEFAULT_SCORE, ge=SCORE_MIN, le=SCORE_MAX)
    category: str | None = None
    title: str | None = Field(default=None, max_length=512)
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retry_count: int = Field(default=0, ge=0)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "task"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


# ── Task ────────────────────────────────────────────────────────────────


@dataclass
class Task:
    """
    A unit of work routed to the executor registered for ``module``.

    Mutated only by the orchestrator and by approval responses. Terminal
    tasks are retained for history, never deleted.
    """

    module: str
    action: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    impact: int = DEFAULT_SCORE
    urgency: int = DEFAULT_SCORE
    effort: int = DEFAULT_SCORE
    risk: int = DEFAULT_SCORE
    category: str | None = None
    title: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    priority: float = 0.0
    status: TaskStatus | None = None
    submitted_at: datetime | None = None
    timestamps: dict[str, datetime] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    retry_count: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Task:
        """
        Build a task from an untrusted mapping.

        Raises ``TaskValidationError`` if required fields are missing or
        scores are outside 1..10.
        """
        try:
            parsed = TaskSubmission.model_validate(dict(payload))
        except PydanticValidationError as exc:
            raise TaskValidationError(
                f"Invalid task: {_describe(exc)}",
                task_id=payload.get("id") if isinstance(payload.get("id"), str) else None,
            ) from None
        return cls(**parsed.model_dump())

    def validate(self) -> None:
        """Re-check the inbound constraints on an already-built task."""
        Task.from_payload(self.submission_fields())

    def ensure_identity(self) -> None:
        """Assign an id and submission timestamp if absent."""
        if not self.id:
            self.id = str(uuid.uuid4())
        if self.submitted_at is None:
            self.submitted_at = utcnow()

    def mark(self, status: TaskStatus, at: datetime | None = None) -> None:
        """Set the status and stamp the transition time."""
        self.status = status
        self.timestamps[status.value] = at or utcnow()

    def submission_fields(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "module": self.module,
            "action": self.action,
            "data": self.data,
            "impact": self.impact,
            "urgency": self.urgency,
            "effort": self.effort,
            "risk": self.risk,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "metadata": self.metadata,
            "retry_count": self.retry_count,
        }

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible snapshot of the task."""
        return {
            **self.submission_fields(),
            "priority": self.priority,
            "status": self.status.value if self.status else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "timestamps": {k: v.isoformat() for k, v in self.timestamps.items()},
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Task:
        """Rebuild a task from a ``to_dict`` snapshot."""
        task = cls.from_payload(raw)
        task.priority = float(raw.get("priority") or 0.0)
        if raw.get("status"):
            task.status = TaskStatus(raw["status"])
        if raw.get("submitted_at"):
            task.submitted_at = datetime.fromisoformat(raw["submitted_at"])
        task.timestamps = {
            k: datetime.fromisoformat(v)
            for k, v in (raw.get("timestamps") or {}).items()
        }
        task.result = raw.get("result")
        task.error = raw.get("error")
        return task
