from __future__ import annotations

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerService(ABC):
    """Keyed one-shot delayed callbacks.

    At most one timer exists per key: scheduling an existing key replaces it.
    Callbacks must re-check live state when they fire, since a cancel can
    lose the race against a timer that is already due.
    """

    @abstractmethod
    def now(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None:
        raise NotImplementedError

    @abstractmethod
    def cancel(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def reschedule(self, key: str, delay: float) -> bool:
        raise NotImplementedError

    @abstractmethod
    def pending(self, key: str) -> bool:
        raise NotImplementedError


@dataclass
class _LoopTimer:
    callback: TimerCallback
    handle: asyncio.TimerHandle
    token: int


class AsyncioTimerService(TimerService):
    def __init__(self) -> None:
        self._timers: Dict[str, _LoopTimer] = {}
        self._tokens = itertools.count(1)
        self._running: Set[asyncio.Task] = set()

    def now(self) -> float:
        return time.time()

    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        token = next(self._tokens)
        handle = loop.call_later(max(0.0, delay), self._fire, key, token)
        self._timers[key] = _LoopTimer(callback=callback, handle=handle, token=token)

    def cancel(self, key: str) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.handle.cancel()
        return True

    def reschedule(self, key: str, delay: float) -> bool:
        timer = self._timers.get(key)
        if timer is None:
            return False
        self.schedule(key, delay, timer.callback)
        return True

    def pending(self, key: str) -> bool:
        return key in self._timers

    def _fire(self, key: str, token: int) -> None:
        timer = self._timers.get(key)
        if timer is None or timer.token != token:
            return
        self._timers.pop(key, None)
        task = asyncio.ensure_future(timer.callback())
        self._running.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("timer_callback_failed", extra={"error": repr(exc)})


@dataclass(order=True)
class _VirtualTimer:
    due: float
    seq: int
    key: str = field(compare=False)
    callback: TimerCallback = field(compare=False)


class ManualTimerService(TimerService):
    """Virtual-clock timers: nothing fires until ``advance`` moves the clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._timers: Dict[str, _VirtualTimer] = {}
        self._seq = itertools.count(1)

    def now(self) -> float:
        return self._now

    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None:
        self._timers[key] = _VirtualTimer(due=self._now + max(0.0, delay), seq=next(self._seq), key=key, callback=callback)

    def cancel(self, key: str) -> bool:
        return self._timers.pop(key, None) is not None

    def reschedule(self, key: str, delay: float) -> bool:
        timer = self._timers.get(key)
        if timer is None:
            return False
        self.schedule(key, delay, timer.callback)
        return True

    def pending(self, key: str) -> bool:
        return key in self._timers

    def due_at(self, key: str) -> float | None:
        timer = self._timers.get(key)
        return timer.due if timer else None

    async def advance(self, seconds: float) -> int:
        target = self._now + seconds
        fired = 0
        while True:
            due: List[_VirtualTimer] = sorted(t for t in self._timers.values() if t.due <= target)
            if not due:
                break
            timer = due[0]
            self._now = max(self._now, timer.due)
            if self._timers.get(timer.key) is timer:
                self._timers.pop(timer.key, None)
                await timer.callback()
                fired += 1
        self._now = target
        return fired
