"""
Cancellable scheduled work on the asyncio loop.

`ScheduledCall` runs a coroutine function once after a delay;
`PeriodicTask` runs one repeatedly at a fixed interval. After `cancel()`
returns, neither fires its callback again.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from .logger import get_logger

logger = get_logger("scheduling")

AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledCall:
    """One-shot delayed callback with a cancellation token."""

    def __init__(self, delay: float, callback: AsyncCallback, name: str = "scheduled"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._cancelled = False
        self._task: Optional[asyncio.Task] = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        if self._cancelled:
            return
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled call '{self.name}' failed: {e}")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """Prevent the callback from firing; cancels it if already running."""
        self._cancelled = True
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None


class PeriodicTask:
    """
    Interval loop with a cancellation token.

    Errors raised by the callback are logged and the loop continues.
    """

    def __init__(
        self,
        interval: float,
        callback: AsyncCallback,
        name: str = "periodic",
        run_immediately: bool = False
    ):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "PeriodicTask":
        if self._task is None and not self._cancelled:
            self._task = asyncio.ensure_future(self._loop())
        return self

    async def _loop(self) -> None:
        if self.run_immediately:
            await self._tick()

        while not self._cancelled:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                break
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Periodic task '{self.name}' failed: {e}")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        self._cancelled = True
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None
