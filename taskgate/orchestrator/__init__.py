"""
TaskGate: Orchestration Engine
===============================
Task lifecycle, priority scheduling and the execution loop.

Public API:
    Orchestrator - admission, queue, execution loop, dead letter
    TaskScheduler - priority queue
    TaskStateMachine - transition whitelist
    ExecutorRegistry - module name to executor mapping
    TaskStore - durable task snapshots
"""

from taskgate.orchestrator.state_machine import (
    InvalidTransitionError,
    TaskStateMachine,
)
from taskgate.orchestrator.scheduler import TaskScheduler
from taskgate.orchestrator.registry import Executor, ExecutorRegistry
from taskgate.orchestrator.task_store import TaskStore
from taskgate.orchestrator.engine import (
    ExecutionResult,
    Orchestrator,
    SubmissionResult,
)

__all__ = [
    "InvalidTransitionError",
    "TaskStateMachine",
    "TaskScheduler",
    "Executor",
    "ExecutorRegistry",
    "TaskStore",
    "ExecutionResult",
    "Orchestrator",
    "SubmissionResult",
]
