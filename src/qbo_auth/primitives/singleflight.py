"""Single-flight coordination for one shared async operation.

The first caller starts the operation; callers arriving while it is pending
await the same result instead of starting a second copy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Runs at most one instance of an operation at a time.

    The operation runs in its own task, so cancelling one waiting caller
    does not cancel it for the others. The in-flight slot is released exactly
    once, when that task finishes with any outcome.
    """

    def __init__(self, name: str = "operation") -> None:
        self.name = name
        self._task: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Start the operation, or join the one already in flight."""
        if self._task is None:
            self._task = asyncio.ensure_future(factory())
            self._task.add_done_callback(self._release)
            logger.debug(f"Started {self.name}")
        else:
            logger.debug(f"Joining {self.name} already in flight")

        return await asyncio.shield(self._task)

    def _release(self, task: asyncio.Task[T]) -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"{self.name} failed: {task.exception()}")
