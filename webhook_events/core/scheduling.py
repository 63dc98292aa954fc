"""
Clock and periodic task primitives for background loops.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from loguru import logger


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, **kwargs) -> datetime:
        self._now += timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


class PeriodicTask:
    """
    Runs an async callback on a fixed interval.

    A tick never overlaps the previous one: while a tick is in progress
    further calls to ``run_once`` return immediately. ``run_once`` can be
    awaited directly to drive the task without waiting for the timer.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[object]],
        interval_seconds: float,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._in_progress = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def start(self) -> None:
        """Start the timer loop on the running event loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"Periodic task '{self.name}' started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the timer loop and wait for it to exit."""
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Periodic task '{self.name}' stopped")

    async def run_once(self) -> bool:
        """Run one tick. Returns ``False`` if a tick was already in progress."""
        if self._in_progress:
            logger.debug(f"Periodic task '{self.name}' skipped: previous tick still running")
            return False

        self._in_progress = True
        try:
            await self._callback()
        finally:
            self._in_progress = False
        return True

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in periodic task '{self.name}': {e}")
