from __future__ import annotations

import asyncio
import itertools
from typing import Any, Callable

import pytest

from ccremote.providers.base import (
    AssistantProvider,
    AssistantResponse,
    CancelToken,
    ProcessFailed,
    TurnCancelled,
)
from ccremote.web.clock import Scheduler
from ccremote.web.protocol import Decision
from ccremote.web.ui import UIChannel


class _ManualTimer:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple[Any, ...]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Virtual clock: timers fire only when the test calls ``advance``."""

    def __init__(self, start: float = 1000.0):
        self._now = start
        self._seq = itertools.count()
        self._timers: list[_ManualTimer] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(0.0, delay), next(self._seq), callback, args)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self._now = timer.when
            timer.callback(*timer.args)
        self._now = target

    @property
    def live_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)


class FakeProvider(AssistantProvider):
    """Stand-in for Claude Code. Prompts listed in ``hold`` block until released."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None, str]] = []
        self.running = 0
        self.max_running = 0
        self.hold: dict[str, asyncio.Event] = {}
        self.fail: set[str] = set()
        self.reply_session_id: str | None = None

    def block(self, prompt: str) -> asyncio.Event:
        ev = asyncio.Event()
        self.hold[prompt] = ev
        return ev

    async def run(
        self,
        prompt: str,
        *,
        session_id: str | None,
        cwd: str,
        token: CancelToken | None = None,
    ) -> AssistantResponse:
        token = token or CancelToken()
        self.calls.append((prompt, session_id, cwd))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            ev = self.hold.get(prompt)
            if ev is not None:
                released = asyncio.ensure_future(ev.wait())
                cancelled = asyncio.ensure_future(token.wait())
                _, pending = await asyncio.wait({released, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                for p in pending:
                    p.cancel()
                if token.cancelled:
                    raise TurnCancelled(token.reason or "cancelled")
            await asyncio.sleep(0)
            if prompt in self.fail:
                raise ProcessFailed(f"failed: {prompt}", returncode=1)
            return AssistantResponse(
                text=f"echo: {prompt}",
                session_id=self.reply_session_id or session_id,
            )
        finally:
            self.running -= 1


class RecordingUI(UIChannel):
    def __init__(self, fail_render: bool = False) -> None:
        self.fail_render = fail_render
        self.prompts: list[Any] = []
        self.resolved: list[tuple[Any, Decision]] = []
        self.expired: list[Any] = []
        self.messages: list[tuple[str, str, dict[str, Any]]] = []

    async def render_prompt(self, request: Any) -> Any:
        if self.fail_render:
            raise RuntimeError("send failed")
        self.prompts.append(request)
        return f"ui-{request.id}"

    async def mark_resolved(self, handle: Any, decision: Decision) -> None:
        self.resolved.append((handle, decision))

    async def mark_expired(self, handle: Any) -> None:
        self.expired.append(handle)

    async def send(self, kind: str, text: str, **payload: Any) -> None:
        self.messages.append((kind, text, payload))

    def kinds(self) -> list[str]:
        return [k for k, _, _ in self.messages]


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def ui() -> RecordingUI:
    return RecordingUI()
