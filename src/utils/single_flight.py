"""
Single-flight execution for asyncio.

Collapses concurrent calls for the same piece of work into one in-flight task.
Every caller that arrives while the task is pending awaits that same task; once
it settles (result or exception) the slot is cleared so the next caller starts
a fresh attempt.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Holds at most one in-flight task.

    Waiters are shielded: cancelling one caller does not cancel the shared
    task the other callers are waiting on.
    """

    def __init__(self, name: str = "single-flight"):
        self.name = name
        self._pending: Optional[asyncio.Task] = None
        self.launches = 0

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``factory()`` unless a previous call is still pending, in which case join it.

        Args:
            factory: Zero-argument callable returning the awaitable to execute.

        Returns:
            The shared result of the in-flight task.
        """
        if self._pending is None:
            self.launches += 1
            logger.debug(f"{self.name}: starting new attempt #{self.launches}")
            self._pending = asyncio.ensure_future(self._execute(factory))
            self._pending.add_done_callback(self._log_failure)
        else:
            logger.debug(f"{self.name}: joining in-flight attempt")
        return await asyncio.shield(self._pending)

    async def _execute(self, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            self._pending = None

    def _log_failure(self, task: asyncio.Task) -> None:
        # Retrieves the exception even when every waiter was cancelled
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"{self.name}: attempt failed: {task.exception()!r}")
