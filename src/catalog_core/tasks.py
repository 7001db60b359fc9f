"""Explicit background work with its own error channel.

Side effects that must not block or fail a request (audit events, a
detached mirror) run as ``BackgroundTask`` objects instead of untracked
coroutines, so callers and tests can await them deterministically.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class BackgroundTask(Generic[T]):
    """An ``asyncio.Task`` whose failure is logged and kept, never lost."""

    def __init__(self, coro: Coroutine[Any, Any, T], *, label: str) -> None:
        self.label = label
        self._task: asyncio.Task[T] = asyncio.create_task(coro, name=label)
        self._task.add_done_callback(self._log_outcome)

    def _log_outcome(self, task: asyncio.Task[T]) -> None:
        if task.cancelled():
            logger.warning("task.cancelled", label=self.label)
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("task.failed", label=self.label, error=str(exc))

    def add_done_callback(self, fn: Callable[[BackgroundTask[T]], Any]) -> None:
        self._task.add_done_callback(lambda _: fn(self))

    @property
    def done(self) -> bool:
        return self._task.done()

    def error(self) -> BaseException | None:
        """The failure, once finished; ``None`` while running or on success."""
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    async def wait(self) -> T:
        """Await completion; re-raises the task's error."""
        return await self._task

    async def settle(self) -> BaseException | None:
        """Await completion and return the error instead of raising it."""
        try:
            await self._task
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return e
        return None
