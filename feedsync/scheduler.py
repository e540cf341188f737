"""Timer scheduling for the debounce lanes.

Lanes never call asyncio directly; they ask a :class:`Scheduler` for a
one-shot timer. :class:`AsyncioScheduler` runs on the event loop,
:class:`ManualScheduler` runs on a virtual clock so tests and the replay CLI
can step time deterministically.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None: ...


class Scheduler(ABC):
    @abstractmethod
    def now(self) -> float: ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...

    @abstractmethod
    def spawn(self, aw: Awaitable[Any]) -> None: ...

    @abstractmethod
    async def drain(self) -> None:
        """Wait until no timer or background task is outstanding."""

    def _track(self, tasks: set[asyncio.Task], aw: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(aw)
        tasks.add(task)
        task.add_done_callback(lambda t: self._finished(tasks, t))

    @staticmethod
    def _finished(tasks: set[asyncio.Task], task: asyncio.Task) -> None:
        tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background feed task failed: %r", exc)


class _LoopTimer(TimerHandle):
    def __init__(self, owner: "AsyncioScheduler"):
        self._owner = owner
        self.handle: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
        self._owner._timers.discard(self)


class AsyncioScheduler(Scheduler):
    """Real-time scheduler backed by the running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._timers: set[_LoopTimer] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        timer = _LoopTimer(self)
        timer.handle = self.loop.call_later(delay, self._fire, timer, callback)
        self._timers.add(timer)
        return timer

    def _fire(self, timer: _LoopTimer, callback: Callback) -> None:
        self._timers.discard(timer)
        result = callback()
        if inspect.isawaitable(result):
            self.spawn(result)

    def spawn(self, aw: Awaitable[Any]) -> None:
        self._track(self._tasks, aw)

    async def drain(self) -> None:
        while self._timers or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0.01)


class _ManualTimer(TimerHandle):
    def __init__(self, due: float, callback: Callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Virtual-clock scheduler. Time only moves when :meth:`advance` is awaited.

    Timer callbacks run inline in due order; if a callback returns an
    awaitable (an async lane flush), it is awaited before the next timer runs.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._seq = itertools.count()
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        timer = _ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))
        return timer

    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if not t.cancelled)

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = due
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        self._now = target
        # let spawned work (animations) make progress
        await asyncio.sleep(0)

    def spawn(self, aw: Awaitable[Any]) -> None:
        self._track(self._tasks, aw)

    async def drain(self) -> None:
        while self._tasks or self.pending():
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await self.advance(max(self._queue[0][0] - self._now, 0.0))
