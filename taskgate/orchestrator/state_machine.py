"""
TaskGate: Task State Machine
=============================
Authoritative transition whitelist for the task lifecycle.

    submit ──► queued ──► running ──► completed
      │          ▲           └──────► failed ──► queued (operator retry)
      └──► pending_approval ──► queued | rejected

Admission (``submit_task``) is allowed for new tasks and for tasks coming
back from the dead-letter queue; everything else goes through
``validate_transition``.
"""

from __future__ import annotations

from taskgate.core.exceptions import TaskGateError
from taskgate.core.task_types import TaskStatus

TERMINAL_STATES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.REJECTED}
)

# Statuses a task may hold when it is (re)submitted for admission.
# PENDING_APPROVAL is let through so the approval store can report a duplicate.
ADMISSIBLE_STATES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.QUEUED, TaskStatus.FAILED, TaskStatus.PENDING_APPROVAL}
)

VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING}),
    TaskStatus.PENDING_APPROVAL: frozenset(
        {TaskStatus.QUEUED, TaskStatus.REJECTED}
    ),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.FAILED: frozenset({TaskStatus.QUEUED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
}


class InvalidTransitionError(TaskGateError):
    """Raised when an undefined transition is attempted."""

    error_code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_state: TaskStatus | None,
        to_state: TaskStatus | None,
        *,
        task_id: str | None = None,
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        origin = from_state.value if from_state else "new"
        target = to_state.value if to_state else "admission"
        super().__init__(
            f"Invalid transition {origin} -> {target}.",
            task_id=task_id,
        )


class TaskStateMachine:
    """Validates task status changes against ``VALID_TRANSITIONS``."""

    @staticmethod
    def validate_admission(
        status: TaskStatus | None, *, task_id: str | None = None
    ) -> bool:
        """
        Return ``True`` if a task in ``status`` may be submitted.

        Raises ``InvalidTransitionError`` for running and terminal tasks.
        """
        if status is not None and status not in ADMISSIBLE_STATES:
            raise InvalidTransitionError(status, None, task_id=task_id)
        return True

    @staticmethod
    def validate_transition(
        from_state: TaskStatus,
        to_state: TaskStatus,
        *,
        task_id: str | None = None,
    ) -> bool:
        """
        Return ``True`` if the transition is valid.

        Raises ``InvalidTransitionError`` otherwise.
        """
        if to_state not in VALID_TRANSITIONS[from_state]:
            raise InvalidTransitionError(from_state, to_state, task_id=task_id)
        return True

    @staticmethod
    def is_terminal(state: TaskStatus) -> bool:
        return state in TERMINAL_STATES
