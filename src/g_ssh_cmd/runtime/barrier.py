"""Completion barrier for spawn and stream-reader tasks.

The barrier wraps an anyio task group, which is the counting join primitive:
leaving the ``async with`` block waits until every task started through
``start_soon`` has finished. A fatal error reported through ``abort`` cancels
the remaining tasks and is re-raised when the block exits.

Example:
    async with CompletionBarrier() as barrier:
        for spec in specs:
            barrier.start_soon(launch, spec, barrier, name=f"launch:{spec.identifier}")
    # every process has exited and every stream has drained here
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import anyio
from anyio.abc import TaskGroup

__all__ = ["CompletionBarrier"]

logger = logging.getLogger(__name__)


class CompletionBarrier:
    """Tracks spawn and reader tasks until all of them have finished."""

    def __init__(self) -> None:
        self._task_group: TaskGroup | None = None
        self._pending = 0
        self._started = 0
        self._error: BaseException | None = None

    @property
    def pending(self) -> int:
        """Number of tracked tasks that have not finished yet."""
        return self._pending

    @property
    def started(self) -> int:
        """Total number of tasks started through this barrier."""
        return self._started

    @property
    def error(self) -> BaseException | None:
        return self._error

    async def __aenter__(self) -> "CompletionBarrier":
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        assert self._task_group is not None
        try:
            suppressed = await self._task_group.__aexit__(exc_type, exc, tb)
        finally:
            self._task_group = None

        if self._error is not None:
            raise self._error
        logger.debug(f"Completion barrier released after {self._started} task(s)")
        return suppressed

    def start_soon(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: str | None = None,
    ) -> None:
        """Start a tracked task.

        Raises:
            RuntimeError: If the barrier is not entered
        """
        if self._task_group is None:
            raise RuntimeError("CompletionBarrier is not active")

        self._pending += 1
        self._started += 1
        self._task_group.start_soon(self._tracked, func, args, name=name)

    def abort(self, error: BaseException) -> None:
        """Cancel all tracked tasks and re-raise error when the barrier exits.

        Only the first error is kept.
        """
        if self._error is None:
            self._error = error
            logger.debug(f"Completion barrier aborted: {error}")
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()

    async def _tracked(self, func: Callable[..., Awaitable[Any]], args: tuple[Any, ...]) -> None:
        try:
            await func(*args)
        finally:
            self._pending -= 1
