"""
TaskGate: Orchestrator
=======================
Admission, scheduling and execution of tasks.

Lifecycle:
    submit_task ──► PolicyEngine.evaluate ──► ApprovalStore.submit
        ├─ auto-approved ──► priority queue ──► executor ──► completed | failed
        └─ gated ──► awaiting decision ──► approved: re-admitted
                                        └► rejected: terminal

Failed tasks land in a bounded dead-letter queue. They are retried only when
an operator calls ``retry_dead_letter_queue``.

All mutable state lives in one ``OrchestratorState`` guarded by one
``asyncio.Lock``; dequeue and mark-running happen under that lock, so two
workers can never claim the same task.

Usage:
    orchestrator = Orchestrator(policy_engine=..., approval_store=..., audit_log=...)
    await orchestrator.register_module("docs", DocsExecutor())
    await orchestrator.init()
    await orchestrator.start()
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from taskgate.core.config import Settings, get_settings
from taskgate.core.exceptions import (
    ConstraintViolationError,
    DuplicatePendingError,
    ExecutionFailureError,
    TaskGateError,
    TaskValidationError,
)
from taskgate.core.logging import get_logger
from taskgate.core.task_types import Task, TaskStatus
from taskgate.orchestrator.registry import Executor, ExecutorRegistry
from taskgate.orchestrator.scheduler import TaskScheduler
from taskgate.orchestrator.state_machine import TaskStateMachine
from taskgate.orchestrator.task_store import TaskStore
from taskgate.safety.approval_store import ApprovalStatus, ApprovalStore
from taskgate.safety.policy_engine import ApprovalType, PolicyEngine, PolicyEvaluation
from taskgate.services.anomaly_monitor import AnomalyMonitor
from taskgate.services.audit_log import AuditLog, ExecutionStatus
from taskgate.services.notifications import NotificationService

logger = get_logger(__name__)

HUMAN_APPROVAL = PolicyEvaluation(
    requires_approval=False,
    reason="Approved by human decision",
    approval_type=ApprovalType.HUMAN_DECISION,
)


# ── Data Objects ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of ``Orchestrator.submit_task``."""

    accepted: bool
    status: TaskStatus | None
    task_id: str
    priority: float | None = None
    reason: str | None = None
    position: int | None = None
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "status": self.status.value if self.status else None,
            "task_id": self.task_id,
            "priority": self.priority,
            "reason": self.reason,
            "position": self.position,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one dispatch attempt."""

    status: str  # "empty" | "paused" | "completed" | "failed"
    task_id: str | None = None
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "task_id": self.task_id,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class OrchestratorState:
    """Everything the orchestrator mutates. Only touched under its lock."""

    queue: TaskScheduler = field(default_factory=TaskScheduler)
    running: dict[str, Task] = field(default_factory=dict)
    awaiting: dict[str, Task] = field(default_factory=dict)
    history: deque[Task] = field(default_factory=deque)
    dead_letter: deque[Task] = field(default_factory=deque)


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


# ── Orchestrator ────────────────────────────────────────────────────────


class Orchestrator:
    """
    Coordinates admission, the priority queue and the execution loop.

    Parameters
    ----------
    policy_engine
        Decides which tasks need human approval.
    approval_store
        Durable approval table; also records proposals in the audit log.
    audit_log
        Destination for execution and system entries.
    registry
        Module name to executor mapping. A fresh one is created if omitted.
    task_store
        Optional durable snapshots used by ``init`` to restore the queue.
    monitor
        Optional anomaly monitor. Its pause flag gates dispatch.
    notifier
        Optional best-effort notifier for gated tasks.
    settings
        Loop, weight and list-cap configuration.
    """

    def __init__(
        self,
        *,
        policy_engine: PolicyEngine,
        approval_store: ApprovalStore,
        audit_log: AuditLog,
        registry: ExecutorRegistry | None = None,
        task_store: TaskStore | None = None,
        monitor: AnomalyMonitor | None = None,
        notifier: NotificationService | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._policy = policy_engine
        self._approvals = approval_store
        self._audit = audit_log
        self._registry = registry or ExecutorRegistry()
        self._task_store = task_store
        self._monitor = monitor
        self._notifier = notifier

        self._weights = settings.priority_weights
        self._poll_interval = settings.poll_interval_seconds
        self._max_concurrent = settings.max_concurrent_tasks
        self._executor_timeout = settings.executor_timeout_seconds
        self._enforce_constraints = settings.enforce_constraints
        self._check_interval = settings.anomaly_check_interval_seconds

        self._state = OrchestratorState(
            history=deque(maxlen=settings.completed_history_max),
            dead_letter=deque(maxlen=settings.dead_letter_max),
        )
        self._lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._workers: set[asyncio.Task[ExecutionResult]] = set()
        self._next_check_at: float = 0.0

    # ── Properties ──────────────────────────────────────────────────

    @property
    def registry(self) -> ExecutorRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_paused(self) -> bool:
        return self._monitor is not None and self._monitor.is_paused

    @property
    def dead_letter(self) -> list[Task]:
        return list(self._state.dead_letter)

    @property
    def history(self) -> list[Task]:
        """Recently finished tasks (completed or rejected), oldest first."""
        return list(self._state.history)

    @property
    def queued(self) -> list[Task]:
        """Queued tasks in dispatch order."""
        return self._state.queue.snapshot()

    @property
    def awaiting_decision(self) -> list[str]:
        return list(self._state.awaiting)

    # ── Setup ───────────────────────────────────────────────────────

    async def init(self) -> Orchestrator:
        """Restore queued tasks and tasks still awaiting a decision."""
        restored_queued = 0
        if self._task_store is not None:
            for task in await self._task_store.load_queued():
                async with self._lock:
                    if self._state.queue.contains(task.id):
                        continue
                    self._state.queue.schedule(task)
                restored_queued += 1

        restored_awaiting = 0
        for record in await self._approvals.get_pending():
            if not record.task_payload or record.task_id in self._state.awaiting:
                continue
            try:
                task = Task.from_dict(record.task_payload)
            except (TaskValidationError, ValueError) as exc:
                logger.error(
                    "orchestrator.pending_snapshot_unreadable",
                    task_id=record.task_id,
                    error=str(exc),
                )
                continue
            task.status = TaskStatus.PENDING_APPROVAL
            async with self._lock:
                self._state.awaiting[task.id] = task
            restored_awaiting += 1

        logger.info(
            "orchestrator.initialized",
            restored_queued=restored_queued,
            restored_awaiting=restored_awaiting,
        )
        return self

    async def register_module(self, name: str, executor: Executor) -> None:
        """Register the executor for tasks whose ``module`` is ``name``."""
        self._registry.register(name, executor)
        await self._audit.log_system("module_registered", {"name": name})
        logger.info("orchestrator.module_registered", module=name)

    # ── Admission ───────────────────────────────────────────────────

    def calculate_priority(self, task: Task) -> float:
        """Weighted sum of the task's scores."""
        return sum(
            getattr(task, score) * weight for score, weight in self._weights.items()
        )

    async def submit_task(self, task: Task | Mapping[str, Any]) -> SubmissionResult:
        """
        Validate, gate and admit a task.

        A task whose id still awaits a decision is refused with
        ``DUPLICATE_PENDING``, whatever the new payload would evaluate to.

        Raises
        ------
        TaskValidationError
            The payload is malformed, breaks a hard constraint, or the task
            is already queued or running.
        InvalidTransitionError
            The task is running or in a terminal state.
        """
        if isinstance(task, Task):
            task.validate()
        else:
            task = Task.from_payload(task)
        return await self._admit(task)

    async def _admit(
        self, task: Task, evaluation: PolicyEvaluation | None = None
    ) -> SubmissionResult:
        TaskStateMachine.validate_admission(task.status, task_id=task.id)
        task.ensure_identity()

        async with self._lock:
            self._ensure_inactive(task)
            awaiting = task.id in self._state.awaiting

        # A fresh submission may not bypass a decision that is still open
        if evaluation is None and (
            awaiting or await self._approvals.is_pending(task.id)
        ):
            return self._refuse(task, DuplicatePendingError(task.id))

        task.priority = self.calculate_priority(task)

        if evaluation is None:
            if self._enforce_constraints:
                constraints = self._policy.validate_constraints(task)
                if not constraints.valid:
                    raise ConstraintViolationError(
                        constraints.violations, task_id=task.id
                    )
            evaluation = self._policy.evaluate(task)

        outcome = await self._approvals.submit(task, evaluation)

        if outcome.error_code:
            logger.warning(
                "orchestrator.submission_refused",
                task_id=task.id,
                error_code=outcome.error_code,
            )
            return SubmissionResult(
                accepted=False,
                status=task.status,
                task_id=task.id,
                priority=task.priority,
                reason=outcome.reason,
                error=outcome.error,
                error_code=outcome.error_code,
            )

        if outcome.approved:
            # Snapshot first: once scheduled, a worker may claim it at once
            task.mark(TaskStatus.QUEUED)
            await self._persist(task)
            async with self._lock:
                self._ensure_inactive(task)
                self._state.queue.schedule(task)
                position = self._state.queue.position(task.id)
            logger.info(
                "orchestrator.task_queued",
                task_id=task.id,
                module=task.module,
                priority=task.priority,
                position=position,
            )
            return SubmissionResult(
                accepted=True,
                status=TaskStatus.QUEUED,
                task_id=task.id,
                priority=task.priority,
                reason=outcome.reason,
                position=position,
            )

        async with self._lock:
            task.mark(TaskStatus.PENDING_APPROVAL)
            self._state.awaiting[task.id] = task
        await self._persist(task)
        self._notify_gated(task, evaluation)
        logger.info(
            "orchestrator.task_gated",
            task_id=task.id,
            approval_type=evaluation.approval_type.value,
        )
        return SubmissionResult(
            accepted=True,
            status=TaskStatus.PENDING_APPROVAL,
            task_id=task.id,
            priority=task.priority,
            reason=outcome.reason,
        )

    def _ensure_inactive(self, task: Task) -> None:
        if self._state.queue.contains(task.id) or task.id in self._state.running:
            raise TaskValidationError(
                f"Task {task.id} is already queued or running.", task_id=task.id
            )

    def _refuse(self, task: Task, exc: TaskGateError) -> SubmissionResult:
        logger.warning(
            "orchestrator.submission_refused",
            task_id=task.id,
            error_code=exc.error_code,
        )
        return SubmissionResult(
            accepted=False,
            status=task.status,
            task_id=task.id,
            error=str(exc),
            error_code=exc.error_code,
        )

    def _notify_gated(self, task: Task, evaluation: PolicyEvaluation) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.on_approval_requested(task, evaluation)
        except Exception as exc:
            logger.warning(
                "orchestrator.notification_failed",
                task_id=task.id,
                error=_error_message(exc),
            )

    # ── Approval polling ────────────────────────────────────────────

    async def check_external_approvals(self) -> list[SubmissionResult]:
        """
        Act on decisions recorded for tasks awaiting approval.

        Approved tasks are re-admitted with a freshly computed priority;
        rejected tasks become terminal.
        """
        async with self._lock:
            awaiting = list(self._state.awaiting.values())

        readmitted: list[SubmissionResult] = []
        for task in awaiting:
            view = await self._approvals.get_status(task.id)
            if not view.found or view.status is ApprovalStatus.PENDING:
                continue

            async with self._lock:
                if self._state.awaiting.pop(task.id, None) is None:
                    continue

            if self._notifier is not None:
                try:
                    self._notifier.on_decision(
                        task.id, view.status is ApprovalStatus.APPROVED, view.notes or ""
                    )
                except Exception as exc:
                    logger.warning(
                        "orchestrator.notification_failed",
                        task_id=task.id,
                        error=_error_message(exc),
                    )

            if view.status is ApprovalStatus.APPROVED:
                logger.info("orchestrator.approval_observed", task_id=task.id)
                try:
                    readmitted.append(await self._admit(task, HUMAN_APPROVAL))
                except Exception as exc:
                    readmitted.append(await self._dead_letter_approved(task, exc))
                continue

            async with self._lock:
                self._transition(task, TaskStatus.REJECTED)
                task.error = view.notes or "Rejected by human decision"
                self._state.history.append(task)
            await self._persist(task)
            logger.info("orchestrator.task_rejected", task_id=task.id)

        return readmitted

    async def _dead_letter_approved(
        self, task: Task, exc: Exception
    ) -> SubmissionResult:
        """Park an approved task that could not be re-admitted."""
        error = _error_message(exc)
        task.mark(TaskStatus.FAILED)
        task.error = error
        async with self._lock:
            self._state.dead_letter.append(task)
        logger.error("orchestrator.readmission_failed", task_id=task.id, error=error)
        await self._record(task)
        return SubmissionResult(
            accepted=False,
            status=TaskStatus.FAILED,
            task_id=task.id,
            error=error,
            error_code=getattr(exc, "error_code", None),
        )

    # ── Execution ───────────────────────────────────────────────────

    def _transition(self, task: Task, to_state: TaskStatus) -> None:
        TaskStateMachine.validate_transition(task.status, to_state, task_id=task.id)
        task.mark(to_state)

    async def _claim_next(self) -> Task | None:
        async with self._lock:
            task = self._state.queue.next()
            if task is None:
                return None
            self._transition(task, TaskStatus.RUNNING)
            self._state.running[task.id] = task
            return task

    async def execute_next(self) -> ExecutionResult:
        """
        Dispatch the highest-priority queued task and wait for it.

        Executor errors become a ``failed`` result; they never propagate.
        """
        if self.is_paused:
            return ExecutionResult(status="paused")
        task = await self._claim_next()
        if task is None:
            return ExecutionResult(status="empty")
        return await self._run(task)

    async def _run(self, task: Task) -> ExecutionResult:
        """Execute a claimed task. Every outcome releases its running slot."""
        try:
            await self._persist(task)
            await self._audit.log_execution(task.id, ExecutionStatus.STARTED)
            logger.info("orchestrator.task_started", task_id=task.id, module=task.module)
            executor = self._registry.get(task.module, task_id=task.id)
            result = await self._invoke(executor, task)
        except Exception as exc:
            return await self._fail(task, _error_message(exc))

        async with self._lock:
            self._state.running.pop(task.id, None)
            self._transition(task, TaskStatus.COMPLETED)
            task.result = result
            task.error = None
            self._state.history.append(task)
        await self._record(task, ExecutionStatus.COMPLETED, result)
        logger.info("orchestrator.task_completed", task_id=task.id)
        return ExecutionResult(status="completed", task_id=task.id, result=result)

    async def _invoke(self, executor: Executor, task: Task) -> Any:
        if inspect.iscoroutinefunction(executor.execute):
            call = executor.execute(task)
        else:
            call = asyncio.to_thread(executor.execute, task)

        if self._executor_timeout is None:
            result = await call
        else:
            try:
                result = await asyncio.wait_for(call, timeout=self._executor_timeout)
            except TimeoutError:
                raise ExecutionFailureError(
                    f"Executor for {task.module} timed out after "
                    f"{self._executor_timeout}s",
                    task_id=task.id,
                ) from None

        if inspect.isawaitable(result):
            result = await result
        return result

    async def _fail(self, task: Task, error: str) -> ExecutionResult:
        async with self._lock:
            self._state.running.pop(task.id, None)
            self._transition(task, TaskStatus.FAILED)
            task.error = error
            self._state.dead_letter.append(task)
        await self._record(task, ExecutionStatus.FAILED, {"error": error})
        logger.warning("orchestrator.task_failed", task_id=task.id, error=error)
        return ExecutionResult(status="failed", task_id=task.id, error=error)

    async def _record(
        self,
        task: Task,
        status: ExecutionStatus | None = None,
        result: Any = None,
    ) -> None:
        """Write the execution entry and snapshot for a finished task."""
        try:
            if status is not None:
                await self._audit.log_execution(task.id, status, result)
            await self._persist(task)
        except Exception as exc:
            logger.error(
                "orchestrator.record_failed",
                task_id=task.id,
                status=task.status.value if task.status else None,
                error=_error_message(exc),
                exc_info=True,
            )

    async def process_queue(self) -> list[ExecutionResult]:
        """Run queued tasks one after another until the queue is empty or paused."""
        results = []
        while True:
            outcome = await self.execute_next()
            if outcome.status in ("empty", "paused"):
                return results
            results.append(outcome)

    # ── Execution loop ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background execution loop."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._next_check_at = 0.0
        await self._audit.log_system("orchestrator_started", {
            "modules": self._registry.names(),
            "max_concurrent_tasks": self._max_concurrent,
            "poll_interval_seconds": self._poll_interval,
        })
        self._loop_task = asyncio.create_task(
            self.run_execution_loop(), name="taskgate-execution-loop"
        )
        logger.info("orchestrator.started", modules=self._registry.names())

    async def stop(self) -> None:
        """Stop the loop. In-flight executions are allowed to finish."""
        if not self.is_running:
            return
        self._stop_event.set()
        await self._loop_task
        self._loop_task = None
        await self._audit.log_system("orchestrator_stopped", {})
        logger.info("orchestrator.stopped")

    async def run_execution_loop(self) -> None:
        """Tick until ``stop()``: poll approvals, run checks, fill worker slots."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        while not self._stop_event.is_set():
            try:
                await self._tick()
            except Exception as exc:
                logger.error(
                    "orchestrator.tick_failed", error=_error_message(exc), exc_info=True
                )
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._poll_interval
                )
            except TimeoutError:
                continue

        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)

    async def _tick(self) -> None:
        await self.check_external_approvals()
        await self._run_checks_if_due()

        if self.is_paused:
            return

        while len(self._state.running) < self._max_concurrent:
            task = await self._claim_next()
            if task is None:
                break
            worker = asyncio.create_task(self._run(task), name=f"taskgate-run-{task.id}")
            self._workers.add(worker)
            worker.add_done_callback(self._on_worker_done)

    def _on_worker_done(self, worker: asyncio.Task[ExecutionResult]) -> None:
        self._workers.discard(worker)
        if worker.cancelled():
            return
        exc = worker.exception()
        if exc is not None:
            logger.error("orchestrator.worker_crashed", error=_error_message(exc))

    async def _run_checks_if_due(self) -> None:
        if self._monitor is None:
            return
        now = asyncio.get_running_loop().time()
        if now < self._next_check_at:
            return
        self._next_check_at = now + self._check_interval
        await self._monitor.run_all_checks()

    # ── Dead letter ─────────────────────────────────────────────────

    async def retry_dead_letter_queue(self) -> list[SubmissionResult]:
        """
        Resubmit every dead-lettered task through ``submit_task``.

        Each task's ``retry_count`` is incremented and its status reset to
        ``queued``. A task that is refused or raises at admission goes back
        to the dead letter with the refusal as its error; the others are
        still retried.
        """
        async with self._lock:
            tasks = list(self._state.dead_letter)
            self._state.dead_letter.clear()

        results = []
        for task in tasks:
            try:
                self._transition(task, TaskStatus.QUEUED)
                task.retry_count += 1
                task.error = None
                result = await self.submit_task(task)
            except Exception as exc:
                result = SubmissionResult(
                    accepted=False,
                    status=TaskStatus.FAILED,
                    task_id=task.id,
                    error=_error_message(exc),
                    error_code=getattr(exc, "error_code", None),
                )

            if not result.accepted:
                logger.warning(
                    "orchestrator.retry_refused",
                    task_id=task.id,
                    error_code=result.error_code,
                )
                task.status = TaskStatus.FAILED
                task.error = result.error or result.reason
                async with self._lock:
                    self._state.dead_letter.append(task)
                result = replace(result, status=TaskStatus.FAILED)
            results.append(result)

        logger.info("orchestrator.dead_letter_retried", count=len(tasks))
        return results

    # ── Reporting ───────────────────────────────────────────────────

    async def get_task(self, task_id: str) -> Task | None:
        """Find a task the orchestrator is still holding in memory."""
        async with self._lock:
            if task_id in self._state.running:
                return self._state.running[task_id]
            if task_id in self._state.awaiting:
                return self._state.awaiting[task_id]
            for task in self._state.queue.snapshot():
                if task.id == task_id:
                    return task
            for task in (*self._state.dead_letter, *reversed(self._state.history)):
                if task.id == task_id:
                    return task
        if self._task_store is not None:
            return await self._task_store.get(task_id)
        return None

    async def get_status(self) -> dict[str, Any]:
        async with self._lock:
            queued = self._state.queue.snapshot()
            running = list(self._state.running)
            dead_letter = len(self._state.dead_letter)
            awaiting = len(self._state.awaiting)
        pending = await self._approvals.get_pending()
        summary = await self._audit.get_daily_summary()
        return {
            "queued_tasks": len(queued),
            "running_tasks": len(running),
            "dead_letter_queue": dead_letter,
            "pending_approvals": len(pending),
            "awaiting_decision": awaiting,
            "registered_modules": self._registry.names(),
            "paused": self.is_paused,
            "loop_running": self.is_running,
            "queue": [
                {
                    "id": t.id,
                    "module": t.module,
                    "action": t.action,
                    "priority": t.priority,
                }
                for t in queued
            ],
            "todays_summary": summary.to_dict(),
        }

    async def _persist(self, task: Task) -> None:
        if self._task_store is not None:
            await self._task_store.save(task)
