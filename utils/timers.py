"""
Timing Utilities — Shared Scheduling Helpers

THIS MODULE DEFINES NO COMMANDS.

Provides:
- A scheduler abstraction for one-shot timers and background coroutines
- The asyncio-backed implementation used at runtime

Enforcement code only talks to `Scheduler`, so tests can drive timers by hand.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Optional, Protocol, Set

logger = logging.getLogger(__name__)


def _now() -> float:
    """Return a monotonic timestamp in seconds."""
    return time.monotonic()


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Any:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        return self._get_loop().call_later(delay, callback)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = self._get_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("scheduled_task_failed", exc_info=exc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

