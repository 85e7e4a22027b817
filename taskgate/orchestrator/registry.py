"""
TaskGate: Executor Registry
============================
Maps module names to the executors that run their tasks.

An executor is any object with ``execute(task)``, either a plain method or
``async def``. It returns a result or raises on failure.

Usage:
    registry = ExecutorRegistry()
    registry.register("docs", DocsExecutor())
    executor = registry.get("docs")
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from taskgate.core.exceptions import ExecutorNotFoundError
from taskgate.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Executor(Protocol):
    """Executor contract: ``execute(task) -> result``, raising on failure."""

    def execute(self, task: Any) -> Any: ...


class ExecutorRegistry:
    """Name-keyed executor lookup. Later registrations replace earlier ones."""

    def __init__(self) -> None:
        self._executors: dict[str, Executor] = {}

    def register(self, name: str, executor: Executor) -> None:
        """
        Register ``executor`` under ``name``.

        Raises ``TypeError`` if the object has no ``execute`` method.
        """
        if not name:
            raise ValueError("Executor name must be non-empty.")
        if not isinstance(executor, Executor):
            raise TypeError(
                f"Executor for {name!r} must define execute(task); "
                f"got {type(executor).__name__}."
            )
        if name in self._executors:
            logger.warning("registry.executor_replaced", module=name)
        self._executors[name] = executor

    def get(self, name: str, *, task_id: str | None = None) -> Executor:
        """Return the executor for ``name`` or raise ``ExecutorNotFoundError``."""
        try:
            return self._executors[name]
        except KeyError:
            raise ExecutorNotFoundError(name, task_id=task_id) from None

    def unregister(self, name: str) -> bool:
        return self._executors.pop(name, None) is not None

    def names(self) -> list[str]:
        return list(self._executors)

    def __contains__(self, name: object) -> bool:
        return name in self._executors

    def __len__(self) -> int:
        return len(self._executors)
