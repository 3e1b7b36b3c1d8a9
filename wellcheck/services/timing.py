"""
Clock and timer abstractions.

The scheduler never reads the wall clock or touches the event loop directly.
Both are injected, so the arm/fire state machine can be driven step by step in
tests without waiting for real time to pass.
"""

import asyncio
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)

TimerCallback = Callable[[], Coroutine[Any, Any, None]]


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a timezone-aware datetime."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    """Schedules a coroutine function to run once after ``delay_seconds``."""

    def call_later(self, delay_seconds: float, callback: TimerCallback) -> TimerHandle: ...


class AsyncioTimer:
    """
    Timer backed by ``loop.call_later``.

    When the handle fires, the coroutine is started as a task. Tasks are kept
    referenced until they finish so the loop does not garbage-collect them.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay_seconds: float, callback: TimerCallback) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_seconds, self._spawn, callback)

    def _spawn(self, callback: TimerCallback) -> None:
        task = self.loop.create_task(callback())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("timer_callback_failed", error=str(error), exc_info=error)

    async def drain(self) -> None:
        """Cancel callbacks that are still running. Used on shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
