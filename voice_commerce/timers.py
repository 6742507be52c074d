"""
Coalescing (debounce) timer.

Each `schedule()` restarts the quiet period; the callback runs once, after the
period has elapsed with no further calls. Used for preference persistence and
for auto-processing of final transcripts.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from logging_setup import get_logger, Component, correlation_scope

logger = get_logger(Component.PIPELINE)

TimerCallback = Callable[[], Union[Awaitable[Any], Any]]


class CoalescingTimer:
    def __init__(
        self,
        delay_s: float,
        callback: TimerCallback,
        *,
        name: str = "timer",
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.delay_s = delay_s
        self.name = name
        self._callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> bool:
        """
        (Re)start the quiet period.

        Returns False when no event loop is running, in which case nothing is
        scheduled.
        """
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._task = loop.create_task(self._run())
        return True

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def flush(self) -> None:
        """Cancel the pending quiet period and run the callback now."""
        self.cancel()
        await self._invoke()

    async def _run(self) -> None:
        await self._sleep(self.delay_s)
        # Detach first so the callback may schedule the next round.
        self._task = None
        # A coalesced callback belongs to no single command
        with correlation_scope(None):
            await self._invoke()

    async def _invoke(self) -> None:
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "Timer callback failed",
                timer=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
