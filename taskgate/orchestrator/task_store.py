"""
TaskGate: Task Store
=====================
Durable snapshots of tasks, written on every status change.

The orchestrator keeps its queue in memory; this table lets ``init()``
rebuild that queue after a restart.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.core.exceptions import TaskValidationError
from taskgate.core.logging import get_logger
from taskgate.core.task_types import Task, TaskStatus
from taskgate.db.models import TaskRecord
from taskgate.db.session import get_db_session

logger = get_logger(__name__)

_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


def _snapshot(task: Task) -> dict[str, Any]:
    # Executor results may hold arbitrary objects
    return json.loads(json.dumps(task.to_dict(), default=str))


class TaskStore:
    """Upsert-only task snapshot table."""

    def __init__(self, session_factory: Callable[..., Any] | None = None) -> None:
        self._session_factory = session_factory or get_db_session

    async def save(self, task: Task) -> None:
        """
        Insert or update the snapshot for ``task`` in one statement.

        Concurrent saves of the same task never collide on the primary key;
        the last writer wins.
        """
        if task.status is None:
            raise ValueError(f"Task {task.id} has no status to persist.")
        values = {
            "id": task.id,
            "module": task.module,
            "action": task.action,
            "status": task.status.value,
            "priority": task.priority,
            "retry_count": task.retry_count,
            "payload": _snapshot(task),
            "submitted_at": task.submitted_at,
            "updated_at": datetime.now(timezone.utc),
        }
        async with self._session_factory() as session:
            session: AsyncSession
            dialect = session.get_bind().dialect.name
            insert = _UPSERT_INSERTS.get(dialect)
            if insert is None:
                await session.merge(TaskRecord(**values))
                return
            stmt = insert(TaskRecord).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[TaskRecord.id],
                set_={key: stmt.excluded[key] for key in values if key != "id"},
            )
            await session.execute(stmt)

    async def get(self, task_id: str) -> Task | None:
        async with self._session_factory() as session:
            row = await session.get(TaskRecord, task_id)
            return Task.from_dict(row.payload) if row is not None else None

    async def load_by_status(self, statuses: Iterable[TaskStatus]) -> list[Task]:
        """Return tasks in any of ``statuses``, highest priority first."""
        values = [TaskStatus(s).value for s in statuses]
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskRecord)
                .where(TaskRecord.status.in_(values))
                .order_by(TaskRecord.priority.desc(), TaskRecord.submitted_at)
            )
            rows = result.scalars().all()

        tasks = []
        for row in rows:
            try:
                tasks.append(Task.from_dict(row.payload))
            except (TaskValidationError, ValueError, KeyError) as exc:
                logger.error(
                    "task_store.snapshot_unreadable",
                    task_id=row.id,
                    error=str(exc),
                )
        return tasks

    async def load_queued(self) -> list[Task]:
        return await self.load_by_status([TaskStatus.QUEUED])
