"""
TaskGate: Notification Service Tests
=====================================
Validates:
- Approval requests render subject and body from the policy evaluation
- Decisions produce approved / rejected events
- Custom channel handlers replace the LOG default
"""

from __future__ import annotations

import pytest

from taskgate.core.task_types import Task
from taskgate.safety.policy_engine import ApprovalType, PolicyEvaluation
from taskgate.services.notifications import (
    NotificationChannel,
    NotificationEventType,
    NotificationService,
)

GATED = PolicyEvaluation(
    requires_approval=True,
    reason='Category "legal" requires human approval',
    approval_type=ApprovalType.CATEGORY_RESTRICTION,
)


def _task(**kwargs) -> Task:
    return Task(module="contracts", action="review", id="task-9", **kwargs)


class TestApprovalRequested:

    def test_event_recorded(self, notifier):
        notifier.on_approval_requested(_task(title="Review NDA", category="legal"), GATED)

        event = notifier.history[-1]
        assert event.event_type is NotificationEventType.APPROVAL_REQUESTED
        assert event.subject == "Approval Required: Review NDA"
        assert GATED.reason in event.body
        assert "task-9" in event.body
        assert event.metadata["approval_type"] == "category_restriction"
        assert event.channel is NotificationChannel.LOG

    def test_untitled_task_uses_module_and_action(self, notifier):
        notifier.on_approval_requested(_task(), GATED)

        assert notifier.history[-1].subject == "Approval Required: contracts.review"


class TestDecisions:

    def test_approved(self, notifier):
        notifier.on_decision("task-9", True, "fine")

        event = notifier.history[-1]
        assert event.event_type is NotificationEventType.APPROVAL_APPROVED
        assert "fine" in event.body

    def test_rejected_without_notes(self, notifier):
        notifier.on_decision("task-9", False)

        event = notifier.history[-1]
        assert event.event_type is NotificationEventType.APPROVAL_REJECTED
        assert event.subject.startswith("REJECTED")
        assert "N/A" in event.body


class TestHandlers:

    def test_registered_handler_receives_events(self):
        delivered = []
        service = NotificationService(recipient="ops", channel=NotificationChannel.WEBHOOK)
        service.register_handler(NotificationChannel.WEBHOOK, delivered.append)

        service.on_decision("task-9", True)

        assert [e.recipient for e in delivered] == ["ops"]
        assert len(service.history) == 1

    def test_handler_error_propagates_and_is_not_recorded(self):
        service = NotificationService(channel=NotificationChannel.EMAIL)

        def broken(event):
            raise ConnectionError("smtp down")

        service.register_handler(NotificationChannel.EMAIL, broken)

        with pytest.raises(ConnectionError):
            service.on_decision("task-9", True)
        assert service.history == []
