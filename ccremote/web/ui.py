"""Operator-facing UI channel.

The broker and the turn runner talk to the operator only through
:class:`UIChannel`. :class:`EventHubChannel` renders everything as events on
the bridge's own event stream; a chat-platform client can implement the same
interface and render buttons instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ccremote.web.events import EventHub
from ccremote.web.protocol import (
    APPROVAL_ACTIONS,
    AllowWithModifiedInput,
    Decision,
    EventType,
    decision_label,
)

if TYPE_CHECKING:
    from ccremote.web.permissions import PermissionRequest


class UIChannel(ABC):
    @abstractmethod
    async def render_prompt(self, request: PermissionRequest) -> Any:
        """Show an approval prompt. Returns a handle for later edits."""

    @abstractmethod
    async def mark_resolved(self, handle: Any, decision: Decision) -> None:
        """Update a rendered prompt once a decision was taken."""

    @abstractmethod
    async def mark_expired(self, handle: Any) -> None:
        """Update a rendered prompt whose deadline passed."""

    @abstractmethod
    async def send(self, kind: str, text: str, **payload: Any) -> None:
        """Post a plain notice (turn output, errors, queue updates)."""


class EventHubChannel(UIChannel):
    def __init__(self, hub: EventHub):
        self._hub = hub

    @property
    def hub(self) -> EventHub:
        return self._hub

    async def render_prompt(self, request: PermissionRequest) -> Any:
        evt = await self._hub.publish(
            EventType.PERMISSION_REQUEST.value,
            {
                "request_id": request.id,
                "session_id": request.session_id,
                "tool_name": request.tool_name,
                "input": request.tool_input,
                "actions": list(APPROVAL_ACTIONS),
            },
        )
        return {"event_id": evt["id"], "request_id": request.id}

    async def mark_resolved(self, handle: Any, decision: Decision) -> None:
        payload: dict[str, Any] = {
            "request_id": handle.get("request_id") if isinstance(handle, dict) else None,
            "prompt_event_id": handle.get("event_id") if isinstance(handle, dict) else None,
            "decision": decision_label(decision),
            "reason": decision.reason,
        }
        if isinstance(decision, AllowWithModifiedInput):
            payload["updated_input"] = decision.updated_input
        await self._hub.publish(EventType.PERMISSION_RESOLVED.value, payload)

    async def mark_expired(self, handle: Any) -> None:
        await self._hub.publish(
            EventType.PERMISSION_EXPIRED.value,
            {
                "request_id": handle.get("request_id") if isinstance(handle, dict) else None,
                "prompt_event_id": handle.get("event_id") if isinstance(handle, dict) else None,
            },
        )

    async def send(self, kind: str, text: str, **payload: Any) -> None:
        await self._hub.publish(kind, {"text": text, **payload})
