"""Tool permission broker for Claude Code PreToolUse hooks.

Decision order for an incoming tool call:
- base-safe tool (read-only)           -> allow, no prompt
- tool remembered via "allow all"      -> allow, no prompt
- anything else                        -> pending request, rendered on the UI
  channel, resolved by the operator or denied when the deadline passes

A pending request is resolved exactly once: both the operator path and the
deadline path go through ``_take`` (pop from the pending map), so whichever
runs second finds nothing and does nothing.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections import defaultdict
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from ccremote.web.clock import Scheduler, TimerHandle
from ccremote.web.protocol import (
    Allow,
    AllowWithModifiedInput,
    ApprovalAction,
    Decision,
    Deny,
    decision_label,
)
from ccremote.web.settings import DEFAULT_SAFE_TOOLS
from ccremote.web.ui import UIChannel


@dataclass
class PermissionRequest:
    id: str
    tool_name: str
    tool_input: dict[str, Any]
    session_id: str
    created_at: float
    sink: Callable[[Decision], None]
    deadline: TimerHandle | None = None
    ui_handle: Any = None
    expired: bool = False

    def summary(self) -> dict[str, Any]:
        return {
            "request_id": self.id,
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "input": self.tool_input,
            "created_at": self.created_at,
        }


def new_request_id() -> str:
    return f"perm_{uuid.uuid4().hex[:12]}"


def _format_minutes(seconds: float) -> str:
    minutes = seconds / 60.0
    return f"{minutes:g} minute" if minutes == 1 else f"{minutes:g} minutes"


class PermissionBroker:
    def __init__(
        self,
        *,
        scheduler: Scheduler,
        ui: UIChannel | None = None,
        timeout_s: float = 600.0,
        safe_tools: Iterable[str] = DEFAULT_SAFE_TOOLS,
    ):
        self._scheduler = scheduler
        self._ui = ui
        self._timeout_s = timeout_s
        self._safe_tools = frozenset(safe_tools)
        self._pending: dict[str, PermissionRequest] = {}
        self._allowed: dict[str, set[str]] = defaultdict(set)
        self._background: set[asyncio.Task[None]] = set()

    @property
    def safe_tools(self) -> frozenset[str]:
        return self._safe_tools

    # ── Session allow-list ───────────────────────────────────────

    def is_tool_allowed(self, session_id: str, tool_name: str) -> bool:
        return tool_name in self._allowed.get(session_id, ())

    def allow_tool(self, session_id: str, tool_name: str) -> None:
        self._allowed[session_id].add(tool_name)
        logger.info(f"Tool {tool_name} allowed for session {session_id[:12]}")

    def get_allowed_tools(self, session_id: str) -> list[str]:
        return sorted(self._allowed.get(session_id, ()))

    def clear_session(self, session_id: str) -> None:
        self._allowed.pop(session_id, None)

    # ── Pending requests ─────────────────────────────────────────

    def fast_path(self, session_id: str, tool_name: str) -> Decision | None:
        if tool_name in self._safe_tools:
            return Allow(reason=f"{tool_name} is read-only")
        if self.is_tool_allowed(session_id, tool_name):
            return Allow(reason=f"{tool_name} allowed for this session")
        return None

    def create_request(
        self,
        request_id: str,
        sink: Callable[[Decision], None],
        *,
        tool_name: str,
        tool_input: dict[str, Any],
        session_id: str,
    ) -> str:
        req = PermissionRequest(
            id=request_id,
            tool_name=tool_name,
            tool_input=tool_input,
            session_id=session_id,
            created_at=self._scheduler.now(),
            sink=sink,
        )
        self._pending[request_id] = req
        req.deadline = self._scheduler.call_later(self._timeout_s, self._expire, request_id)
        logger.info(f"Permission request {request_id}: {tool_name} (session {session_id[:12]})")
        return request_id

    def get_request(self, request_id: str) -> PermissionRequest | None:
        return self._pending.get(request_id)

    def pending(self) -> list[PermissionRequest]:
        return sorted(self._pending.values(), key=lambda r: r.created_at)

    def attach_ui_handle(self, request_id: str, handle: Any) -> bool:
        req = self._pending.get(request_id)
        if req is None:
            return False
        req.ui_handle = handle
        return True

    def _take(self, request_id: str) -> PermissionRequest | None:
        return self._pending.pop(request_id, None)

    def resolve_request(self, request_id: str, decision: Decision) -> bool:
        req = self._take(request_id)
        if req is None:
            return False
        if req.deadline is not None:
            req.deadline.cancel()
        logger.info(f"Permission request {request_id} resolved: {decision_label(decision)}")
        self._deliver(req, decision)
        if req.ui_handle is not None and self._ui is not None:
            self._spawn(self._ui.mark_resolved(req.ui_handle, decision))
        return True

    def _expire(self, request_id: str) -> None:
        req = self._take(request_id)
        if req is None:
            return
        logger.warning(f"Permission request {request_id} expired; denying {req.tool_name}")
        req.expired = True
        self._deliver(req, Deny(reason=f"No operator response within {_format_minutes(self._timeout_s)}"))
        if req.ui_handle is not None and self._ui is not None:
            self._spawn(self._ui.mark_expired(req.ui_handle))

    def _deliver(self, req: PermissionRequest, decision: Decision) -> None:
        try:
            req.sink(decision)
        except Exception:
            logger.exception(f"Permission sink failed for {req.id}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        async def _guarded() -> None:
            try:
                await coro
            except Exception:
                logger.exception("UI channel update failed")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running loop; skipping UI update")
            return
        task = loop.create_task(_guarded())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── Hook flow ────────────────────────────────────────────────

    async def authorize(
        self,
        *,
        session_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        request_id: str | None = None,
    ) -> Decision:
        """Full decision flow for one PreToolUse callback."""
        fast = self.fast_path(session_id, tool_name)
        if fast is not None:
            return fast

        fut: asyncio.Future[Decision] = asyncio.get_running_loop().create_future()

        def _sink(decision: Decision) -> None:
            if not fut.done():
                fut.set_result(decision)

        request_id = self.create_request(
            request_id or new_request_id(),
            _sink,
            tool_name=tool_name,
            tool_input=tool_input,
            session_id=session_id,
        )
        req = self._pending[request_id]

        if self._ui is not None:
            try:
                handle = await self._ui.render_prompt(req)
            except Exception:
                logger.exception(f"Could not render approval prompt for {request_id}")
            else:
                if not self.attach_ui_handle(request_id, handle) and fut.done():
                    # Settled while the prompt was being rendered.
                    if req.expired:
                        self._spawn(self._ui.mark_expired(handle))
                    else:
                        self._spawn(self._ui.mark_resolved(handle, fut.result()))

        try:
            return await fut
        except asyncio.CancelledError:
            dropped = self._take(request_id)
            if dropped is not None:
                if dropped.deadline is not None:
                    dropped.deadline.cancel()
                if dropped.ui_handle is not None and self._ui is not None:
                    self._spawn(self._ui.mark_expired(dropped.ui_handle))
                logger.info(f"Permission request {request_id} abandoned by caller")
            raise

    async def handle_action(
        self,
        request_id: str,
        action: ApprovalAction,
        *,
        updated_input: Any = None,
        reason: str | None = None,
    ) -> bool:
        """Turn one operator action into a resolution. False if not pending."""
        req = self._pending.get(request_id)
        if req is None:
            return False

        decision: Decision
        if action == "allow":
            decision = Allow(reason=reason or "Approved by operator")
        elif action == "deny":
            decision = Deny(reason=reason or "Denied by operator")
        elif action == "allow_all":
            self.allow_tool(req.session_id, req.tool_name)
            decision = Allow(reason=reason or f"{req.tool_name} allowed for this session")
        elif action == "modify":
            decision = parse_modified_input(updated_input, reason)
        else:
            raise ValueError(f"unknown approval action: {action!r}")

        return self.resolve_request(request_id, decision)

    def close(self) -> None:
        """Deny everything still pending (shutdown)."""
        for request_id in list(self._pending):
            req = self._take(request_id)
            if req is None:
                continue
            if req.deadline is not None:
                req.deadline.cancel()
            self._deliver(req, Deny(reason="Bridge shutting down"))


def parse_modified_input(raw: Any, reason: str | None = None) -> Decision:
    """Validate a replacement tool input. Anything but a JSON object denies."""
    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            return Deny(reason=f"Modified input is not valid JSON: {e.msg}")
    if not isinstance(data, dict):
        return Deny(reason="Modified input must be a JSON object")
    return AllowWithModifiedInput(updated_input=data, reason=reason or "Approved with modified input")
