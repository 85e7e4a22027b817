"""
TaskGate: State Machine Tests
==============================
Validates:
- Valid transitions accepted
- Invalid transitions raise InvalidTransitionError
- Terminal states have no outgoing transitions
- Admission allowed only for new, queued, failed or gated tasks
"""

from __future__ import annotations

import pytest

from taskgate.core.task_types import TaskStatus
from taskgate.orchestrator.state_machine import (
    ADMISSIBLE_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    InvalidTransitionError,
    TaskStateMachine,
)


class TestStateCompleteness:

    def test_transition_map_covers_all_states(self):
        for state in TaskStatus:
            assert state in VALID_TRANSITIONS, (
                f"State {state.value} missing from VALID_TRANSITIONS"
            )

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert VALID_TRANSITIONS[state] == frozenset()


class TestTransitions:

    @pytest.mark.parametrize(
        ("source", "target"),
        [
            (TaskStatus.QUEUED, TaskStatus.RUNNING),
            (TaskStatus.RUNNING, TaskStatus.COMPLETED),
            (TaskStatus.RUNNING, TaskStatus.FAILED),
            (TaskStatus.PENDING_APPROVAL, TaskStatus.QUEUED),
            (TaskStatus.PENDING_APPROVAL, TaskStatus.REJECTED),
            (TaskStatus.FAILED, TaskStatus.QUEUED),
        ],
    )
    def test_valid_transition(self, source, target):
        assert TaskStateMachine.validate_transition(source, target) is True

    @pytest.mark.parametrize(
        ("source", "target"),
        [
            (TaskStatus.QUEUED, TaskStatus.COMPLETED),
            (TaskStatus.PENDING_APPROVAL, TaskStatus.RUNNING),
            (TaskStatus.COMPLETED, TaskStatus.QUEUED),
            (TaskStatus.REJECTED, TaskStatus.QUEUED),
            (TaskStatus.RUNNING, TaskStatus.QUEUED),
        ],
    )
    def test_invalid_transition(self, source, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            TaskStateMachine.validate_transition(source, target, task_id="t-1")
        assert exc_info.value.error_code == "INVALID_TRANSITION"
        assert exc_info.value.task_id == "t-1"
        assert source.value in str(exc_info.value)

    def test_is_terminal(self):
        assert TaskStateMachine.is_terminal(TaskStatus.COMPLETED)
        assert TaskStateMachine.is_terminal(TaskStatus.REJECTED)
        assert not TaskStateMachine.is_terminal(TaskStatus.FAILED)


class TestAdmission:

    def test_new_task_admissible(self):
        assert TaskStateMachine.validate_admission(None) is True

    @pytest.mark.parametrize("status", sorted(ADMISSIBLE_STATES))
    def test_admissible_states(self, status):
        assert TaskStateMachine.validate_admission(status) is True

    @pytest.mark.parametrize(
        "status", [TaskStatus.RUNNING, TaskStatus.COMPLETED, TaskStatus.REJECTED]
    )
    def test_running_and_terminal_not_admissible(self, status):
        with pytest.raises(InvalidTransitionError):
            TaskStateMachine.validate_admission(status)
