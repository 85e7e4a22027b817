"""
TaskGate: Centralized Exception Taxonomy
=========================================
Category-based exception hierarchy with a severity property.

Propagation policy:
- Validation and configuration errors propagate to the caller of
  ``Orchestrator.submit_task``.
- Approval store invariant violations are converted to explicit result
  objects at the ``ApprovalStore`` boundary.
- Executor errors are converted to ``failed`` task status and never leave
  the execution loop.

Usage:
    from taskgate.core.exceptions import TaskValidationError

    raise TaskValidationError("module is required", task_id="abc-123")
"""

from __future__ import annotations

from enum import StrEnum


class ErrorSeverity(StrEnum):
    """Error severity levels: LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskGateError(Exception):
    """
    Base exception for all TaskGate-specific errors.

    Provides:
    - severity: Classification for error handling/routing
    - error_code: Unique identifier for programmatic handling
    - task_id: Tracing identifier when the error concerns one task
    """

    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    error_code: str = "TASKGATE_ERROR"

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        self.task_id = task_id
        super().__init__(message)

    def __repr__(self) -> str:
        parts = [
            f"{self.__class__.__name__}(",
            f"error_code={self.error_code!r}, ",
            f"severity={self.severity.value!r}",
        ]
        if self.task_id:
            parts.append(f", task_id={self.task_id!r}")
        parts.append(")")
        return "".join(parts)


# ── Admission Exceptions ──────────────────────────────────────────────────


class TaskValidationError(TaskGateError):
    """Raised when a submitted task is malformed. The task never enters the queue."""

    severity = ErrorSeverity.LOW
    error_code = "VALIDATION_ERROR"


class ConstraintViolationError(TaskValidationError):
    """Raised when a task breaks a hard policy constraint."""

    error_code = "CONSTRAINT_VIOLATION"

    def __init__(self, violations: list[str], *, task_id: str | None = None) -> None:
        self.violations = list(violations)
        super().__init__(
            "Constraint violations: " + "; ".join(self.violations),
            task_id=task_id,
        )


# ── Approval Store Exceptions ─────────────────────────────────────────────


class ApprovalStoreError(TaskGateError):
    """Invariant violations in the approval store."""

    error_code = "APPROVAL_STORE_ERROR"


class DuplicatePendingError(ApprovalStoreError):
    """A pending approval request already exists for the task."""

    error_code = "DUPLICATE_PENDING"

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task {task_id} already has a pending approval request.",
            task_id=task_id,
        )


class ApprovalNotFoundError(ApprovalStoreError):
    """No approval request exists for the task."""

    error_code = "NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task {task_id} not found in pending approvals.",
            task_id=task_id,
        )


class AlreadyDecidedError(ApprovalStoreError):
    """The approval request for the task has already been decided."""

    error_code = "ALREADY_DECIDED"

    def __init__(self, task_id: str, status: str) -> None:
        self.status = status
        super().__init__(
            f"Approval for task {task_id} was already decided ({status}).",
            task_id=task_id,
        )


# ── Execution Exceptions ──────────────────────────────────────────────────


class ExecutionError(TaskGateError):
    """Errors raised while dispatching a task to its executor."""

    severity = ErrorSeverity.HIGH
    error_code = "EXECUTION_ERROR"


class ExecutorNotFoundError(ExecutionError):
    """No executor is registered for the task's module."""

    error_code = "EXECUTOR_NOT_FOUND"

    def __init__(self, module: str, *, task_id: str | None = None) -> None:
        self.module = module
        super().__init__(f"Module not found: {module}", task_id=task_id)


class ExecutionFailureError(ExecutionError):
    """An executor failed or timed out."""

    error_code = "EXECUTION_FAILURE"


# ── Configuration Exceptions ──────────────────────────────────────────────


class ConfigurationError(TaskGateError):
    """Errors in configuration (missing settings, invalid values)."""

    severity = ErrorSeverity.HIGH
    error_code = "CONFIGURATION_ERROR"


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration value is invalid."""

    error_code = "INVALID_CONFIGURATION_ERROR"
