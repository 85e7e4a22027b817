"""
TaskGate: Priority-Based Task Scheduler
========================================
In-memory priority queue of admitted tasks.

Usage:
    scheduler = TaskScheduler()
    scheduler.schedule(task)
    task = scheduler.next()
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from datetime import datetime, timezone

from taskgate.core.task_types import Task

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(order=True, slots=True)
class _PriorityEntry:
    """
    Heap entry.  Higher numeric priority = execute first,
    so we negate the priority for min-heap ordering.
    """

    neg_priority: float
    submitted_at: datetime
    insertion_order: int
    task: Task = field(compare=False)
    removed: bool = field(default=False, compare=False)


class TaskScheduler:
    """
    Priority-based task scheduler using an in-memory min-heap.

    Higher ``priority`` values are dequeued first. Ties are broken by the
    earliest ``submitted_at``, then by insertion order.

    Thread safety: NOT thread-safe. The orchestrator guards every call
    with its own lock.
    """

    def __init__(self) -> None:
        self._heap: list[_PriorityEntry] = []
        self._entries: dict[str, _PriorityEntry] = {}
        self._counter: int = 0

    def schedule(self, task: Task) -> None:
        """
        Enqueue a task, or update it if already queued.

        An already-queued task is logically removed and re-inserted
        with its current priority (lazy deletion pattern).
        """
        if task.id in self._entries:
            self._entries[task.id].removed = True

        entry = _PriorityEntry(
            neg_priority=-task.priority,
            submitted_at=task.submitted_at or _EPOCH,
            insertion_order=self._counter,
            task=task,
        )
        self._counter += 1
        self._entries[task.id] = entry
        heapq.heappush(self._heap, entry)

    def next(self) -> Task | None:
        """
        Dequeue and return the highest-priority task.

        Returns ``None`` if the queue is empty.
        """
        while self._heap:
            entry = heapq.heappop(self._heap)
            if not entry.removed:
                del self._entries[entry.task.id]
                return entry.task
        return None

    def position(self, task_id: str) -> int | None:
        """1-based dispatch position of a queued task."""
        if task_id not in self._entries:
            return None
        live = sorted(e for e in self._entries.values())
        for index, entry in enumerate(live, start=1):
            if entry.task.id == task_id:
                return index
        return None

    def snapshot(self) -> list[Task]:
        """Queued tasks in dispatch order."""
        return [e.task for e in sorted(self._entries.values())]

    def contains(self, task_id: str) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
