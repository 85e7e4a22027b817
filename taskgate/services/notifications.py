"""
TaskGate: Notification Service
===============================
Dispatches notifications for approval lifecycle events.

Delivery is best-effort: the orchestrator calls these hooks after a task is
gated and logs, but never propagates, a delivery failure.

Usage:
    service = NotificationService()
    service.on_approval_requested(task, evaluation)

Design: Default channel is LOG. Other channels are attached with
        ``register_handler``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Callable

from taskgate.core.logging import get_logger
from taskgate.core.task_types import Task
from taskgate.safety.policy_engine import PolicyEngine, PolicyEvaluation

logger = get_logger(__name__)

_HISTORY_MAX = 200


# ── Notification Types ──────────────────────────────────────────────────

class NotificationChannel(StrEnum):
    """Supported notification channels."""

    LOG = "LOG"
    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"


class NotificationEventType(StrEnum):
    """Types of notification events."""

    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_APPROVED = "approval.approved"
    APPROVAL_REJECTED = "approval.rejected"


# ── Data Objects ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NotificationEvent:
    """A notification to be dispatched."""

    event_type: NotificationEventType
    recipient: str
    subject: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)
    channel: NotificationChannel = NotificationChannel.LOG
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


# ── Notification Service ───────────────────────────────────────────────

class NotificationService:
    """
    Dispatches notifications for approval lifecycle events.

    Default: all notifications are logged (LOG channel).
    """

    def __init__(
        self,
        recipient: str = "operator",
        channel: NotificationChannel = NotificationChannel.LOG,
    ) -> None:
        self._recipient = recipient
        self._channel = channel
        self._history: list[NotificationEvent] = []
        self._handlers: dict[
            NotificationChannel, Callable[[NotificationEvent], None]
        ] = {
            NotificationChannel.LOG: self._handle_log,
        }

    @property
    def history(self) -> list[NotificationEvent]:
        """Return the most recent dispatched notifications."""
        return list(self._history)

    def register_handler(
        self,
        channel: NotificationChannel,
        handler: Callable[[NotificationEvent], None],
    ) -> None:
        """Attach a delivery function for ``channel``."""
        self._handlers[channel] = handler

    def notify(self, event: NotificationEvent) -> None:
        """
        Dispatch a notification event.

        Parameters
        ----------
        event
            The notification to dispatch. Channels without a registered
            handler fall back to LOG.
        """
        handler = self._handlers.get(event.channel, self._handle_log)
        handler(event)
        self._history.append(event)
        del self._history[:-_HISTORY_MAX]

    # ── Convenience hooks ───────────────────────────────────────────

    def on_approval_requested(self, task: Task, evaluation: PolicyEvaluation) -> None:
        """Notify that ``task`` awaits a human decision."""
        message = PolicyEngine.format_approval_request(task, evaluation)
        self.notify(NotificationEvent(
            event_type=NotificationEventType.APPROVAL_REQUESTED,
            recipient=self._recipient,
            subject=message["subject"],
            body=message["body"],
            metadata={
                "task_id": task.id,
                "approval_type": evaluation.approval_type.value,
                "category": task.category,
            },
            channel=self._channel,
        ))

    def on_decision(self, task_id: str, approved: bool, notes: str = "") -> None:
        """Notify that the approval for ``task_id`` was decided."""
        if approved:
            event_type = NotificationEventType.APPROVAL_APPROVED
            subject = f"Approved: task {task_id}"
        else:
            event_type = NotificationEventType.APPROVAL_REJECTED
            subject = f"REJECTED: task {task_id}"
        self.notify(NotificationEvent(
            event_type=event_type,
            recipient=self._recipient,
            subject=subject,
            body=f"Task {task_id} decision recorded. Notes: {notes or 'N/A'}.",
            metadata={"task_id": task_id, "approved": approved},
            channel=self._channel,
        ))

    # ── Channel handlers ────────────────────────────────────────────

    def _handle_log(self, event: NotificationEvent) -> None:
        """Log the notification (default channel)."""
        logger.info(
            "notification.dispatched",
            event_type=event.event_type.value,
            recipient=event.recipient,
            subject=event.subject,
            channel=NotificationChannel.LOG.value,
        )
