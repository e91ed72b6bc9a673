"""Wire shapes shared by the hook endpoints, the broker and the UI stream.

Permission decisions are a closed set of variants (:class:`Allow`,
:class:`Deny`, :class:`AllowWithModifiedInput`); :func:`encode_decision` is the
only place that turns one into the PreToolUse hook response Claude Code reads:

    {"hookSpecificOutput": {"hookEventName": "PreToolUse",
                            "permissionDecision": "allow" | "deny",
                            "updatedInput": {...},               # optional
                            "permissionDecisionReason": "..."}}  # optional
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field


# ── Decisions ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Allow:
    reason: str | None = None


@dataclass(frozen=True)
class Deny:
    reason: str | None = None


@dataclass(frozen=True)
class AllowWithModifiedInput:
    updated_input: dict[str, Any]
    reason: str | None = None


Decision = Union[Allow, Deny, AllowWithModifiedInput]

ApprovalAction = Literal["allow", "deny", "allow_all", "modify"]
APPROVAL_ACTIONS: tuple[str, ...] = get_args(ApprovalAction)


def decision_label(decision: Decision) -> Literal["allow", "deny"]:
    return "deny" if isinstance(decision, Deny) else "allow"


# ── PreToolUse hook ──────────────────────────────────────────────

class PreToolUseRequest(BaseModel):
    """Body Claude Code sends to the PreToolUse hook (extra keys ignored)."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    tool_input: dict[str, Any] = Field(default_factory=dict)
    cwd: str = ""


class HookSpecificOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hook_event_name: Literal["PreToolUse"] = Field(default="PreToolUse", alias="hookEventName")
    permission_decision: Literal["allow", "deny"] = Field(alias="permissionDecision")
    updated_input: dict[str, Any] | None = Field(default=None, alias="updatedInput")
    permission_decision_reason: str | None = Field(default=None, alias="permissionDecisionReason")


class HookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hook_specific_output: HookSpecificOutput = Field(alias="hookSpecificOutput")


def encode_decision(decision: Decision) -> dict[str, Any]:
    out = HookSpecificOutput(
        permission_decision=decision_label(decision),
        updated_input=decision.updated_input if isinstance(decision, AllowWithModifiedInput) else None,
        permission_decision_reason=decision.reason,
    )
    return HookResponse(hook_specific_output=out).model_dump(by_alias=True, exclude_none=True)


def deny_envelope(reason: str) -> dict[str, Any]:
    return encode_decision(Deny(reason=reason))


# ── Operator-facing event stream ─────────────────────────────────

class EventType(str, Enum):
    """Event kinds published to the operator stream."""
    PERMISSION_REQUEST = "permission_request"
    PERMISSION_RESOLVED = "permission_resolved"
    PERMISSION_EXPIRED = "permission_expired"
    TURN_QUEUED = "turn_queued"
    TURN_STARTED = "turn_started"
    TURN_RESULT = "turn_result"
    TURN_ERROR = "turn_error"
    SESSION_TRACKED = "session_tracked"
    NOTICE = "notice"
