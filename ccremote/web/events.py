"""In-memory event hub backing the operator event stream."""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from typing import Any


class EventHub:
    """Bounded event log + pub/sub for SSE streaming and polling."""

    def __init__(self, max_events: int = 2000):
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._ids = itertools.count(1)
        self._cond = asyncio.Condition()

    async def publish(self, type: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Append an event and wake waiting subscribers."""
        event = {
            "id": next(self._ids),
            "ts": time.time(),
            "type": str(type),
            "payload": payload or {},
        }
        self._events.append(event)
        async with self._cond:
            self._cond.notify_all()
        return event

    def get_since(self, last_event_id: int | None = None) -> list[dict[str, Any]]:
        """Events with an id greater than ``last_event_id`` (all when None)."""
        if not last_event_id:
            return list(self._events)
        return [e for e in self._events if e["id"] > last_event_id]

    @property
    def latest_id(self) -> int:
        return self._events[-1]["id"] if self._events else 0

    async def wait_for_new(self, timeout_s: float = 15.0) -> bool:
        try:
            async with self._cond:
                await asyncio.wait_for(self._cond.wait(), timeout=timeout_s)
            return True
        except asyncio.TimeoutError:
            return False
