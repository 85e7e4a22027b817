"""
TaskGate: Priority Scheduler Tests
===================================
Validates:
- Higher priority dequeued first
- Ties broken by earliest submission, then insertion order
- Remove task from queue
- Empty queue returns None
- Priority update works via lazy deletion
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from taskgate.core.task_types import Task
from taskgate.orchestrator.scheduler import TaskScheduler

T0 = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _task(task_id: str, priority: float, submitted_at: datetime = T0) -> Task:
    return Task(
        module="docs", action="list", id=task_id,
        priority=priority, submitted_at=submitted_at,
    )


class TestSchedulerPriority:
    """Verify priority ordering."""

    def test_higher_priority_first(self):
        """Priorities [3, 7, 5] come out as 7, 5, 3."""
        scheduler = TaskScheduler()
        for task_id, priority in (("three", 3), ("seven", 7), ("five", 5)):
            scheduler.schedule(_task(task_id, priority))

        assert [scheduler.next().id for _ in range(3)] == ["seven", "five", "three"]

    def test_earliest_submission_wins_tie(self):
        """Equal priority: the earlier submission goes first, whatever the insert order."""
        scheduler = TaskScheduler()
        scheduler.schedule(_task("late", 5, T0 + timedelta(seconds=5)))
        scheduler.schedule(_task("early", 5, T0))

        assert scheduler.next().id == "early"
        assert scheduler.next().id == "late"

    def test_fifo_on_full_tie(self):
        """Same priority and timestamp: insertion order."""
        scheduler = TaskScheduler()
        for task_id in ("first", "second", "third"):
            scheduler.schedule(_task(task_id, 5))

        assert [scheduler.next().id for _ in range(3)] == ["first", "second", "third"]

    def test_negative_priorities_ordered(self):
        scheduler = TaskScheduler()
        scheduler.schedule(_task("low", -2.5))
        scheduler.schedule(_task("lower", -3.0))

        assert scheduler.next().id == "low"


class TestSchedulerOperations:
    """Verify queue operations."""

    def test_empty_queue_returns_none(self):
        scheduler = TaskScheduler()
        assert scheduler.next() is None
        assert len(scheduler) == 0

    def test_reschedule_updates_priority(self):
        """Re-scheduling a queued task replaces its old entry."""
        scheduler = TaskScheduler()
        task = _task("a", 1)
        scheduler.schedule(task)
        scheduler.schedule(_task("b", 5))

        task.priority = 9
        scheduler.schedule(task)

        assert len(scheduler) == 2
        assert scheduler.next().id == "a"
        assert scheduler.next().id == "b"
        assert scheduler.next() is None

    def test_position_and_snapshot(self):
        scheduler = TaskScheduler()
        scheduler.schedule(_task("a", 1))
        scheduler.schedule(_task("b", 9))
        scheduler.schedule(_task("c", 5))

        assert scheduler.position("b") == 1
        assert scheduler.position("a") == 3
        assert scheduler.position("missing") is None
        assert [t.id for t in scheduler.snapshot()] == ["b", "c", "a"]

    def test_contains_until_dequeued(self):
        scheduler = TaskScheduler()
        scheduler.schedule(_task("a", 1))

        assert scheduler.contains("a")
        scheduler.next()
        assert not scheduler.contains("a")
        assert len(scheduler) == 0
