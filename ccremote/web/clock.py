"""Timer abstraction shared by the gate sweep and permission deadlines.

Components never call ``asyncio`` timers directly: they receive a
:class:`Scheduler` and keep the returned :class:`TimerHandle` so the timer can
be cancelled. Tests swap in a scheduler with virtual time.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(ABC):
    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` once after ``delay`` seconds."""

    def call_every(self, interval: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback()`` every ``interval`` seconds until cancelled."""
        return _RepeatingTimer(self, interval, callback)


class _RepeatingTimer:
    def __init__(self, scheduler: Scheduler, interval: float, callback: Callable[[], Any]):
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle: TimerHandle = scheduler.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self._callback()
        finally:
            if not self._cancelled:
                self._handle = self._scheduler.call_later(self._interval, self._fire)

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, delay), callback, *args)
