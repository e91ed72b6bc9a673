"""Operator command surface.

One method per verb; each is a thin read or mutation on the core services.
While the gate is locked only ``lock`` and ``unlock`` go through.
"""

from __future__ import annotations

import time
from dataclasses import asdict
from typing import Any, Callable

from ccremote.web.permissions import PermissionBroker
from ccremote.web.queue import ExecutionQueue
from ccremote.web.runner import TurnRunner
from ccremote.web.security import SecurityGate
from ccremote.web.sessions import Session, SessionRegistry


ALLOWED_WHILE_LOCKED = frozenset({"lock", "unlock"})

COMMAND_HELP: dict[str, str] = {
    "help": "This help message",
    "status": "Current session, queue, and lock status",
    "sessions": "List all tracked sessions",
    "switch": "Switch active session by ID prefix",
    "clear": "Clear all tracked sessions and their allowed tools",
    "queue": "View pending jobs",
    "cancel": "Clear the job queue (optionally stop the running turn)",
    "lock": "Lock the bridge (requires passphrase to unlock)",
    "unlock": "Unlock with passphrase",
    "tools": "List tools allowed for the active session",
}


class GateLocked(Exception):
    """The command was refused because the gate is locked."""


def _session_view(session: Session, *, active_id: str | None, now: float) -> dict[str, Any]:
    data = asdict(session)
    data["short_id"] = session.short_id
    data["active"] = session.id == active_id
    data["age_minutes"] = max(0, round((now - session.last_seen_at) / 60))
    return data


class CommandSurface:
    def __init__(
        self,
        *,
        gate: SecurityGate,
        sessions: SessionRegistry,
        queue: ExecutionQueue,
        broker: PermissionBroker,
        runner: TurnRunner,
        clock: Callable[[], float] = time.time,
    ):
        self._gate = gate
        self._sessions = sessions
        self._queue = queue
        self._broker = broker
        self._runner = runner
        self._clock = clock

    def admit(self, verb: str) -> None:
        """Gate check for a command or prompt; touches the idle clock on success."""
        if verb not in ALLOWED_WHILE_LOCKED and not self._gate.is_unlocked():
            raise GateLocked("Bridge is locked. Unlock with the passphrase first.")
        if self._gate.is_unlocked():
            self._gate.touch()

    def help(self) -> dict[str, str]:
        return dict(COMMAND_HELP)

    def status(self) -> dict[str, Any]:
        active = self._sessions.get_active()
        now = self._clock()
        return {
            "active_session": (
                _session_view(active, active_id=active.id, now=now) if active else None
            ),
            "queue": self.view_queue(),
            "locked": not self._gate.is_unlocked(),
            "lock_enabled": self._gate.enabled,
            "pending_permissions": len(self._broker.pending()),
        }

    def list_sessions(self) -> list[dict[str, Any]]:
        now = self._clock()
        active_id = self._sessions.active_session_id
        return [_session_view(s, active_id=active_id, now=now) for s in self._sessions.list()]

    def switch_active_session(self, id_prefix: str) -> Session | None:
        match = self._sessions.find_by_prefix(id_prefix.strip())
        if match is None or not self._sessions.set_active(match.id):
            return None
        return match

    def clear_sessions(self) -> int:
        removed = self._sessions.clear()
        for session_id in removed:
            self._broker.clear_session(session_id)
        return len(removed)

    def view_queue(self) -> dict[str, Any]:
        st = self._queue.get_status()
        return {
            "pending": st.pending_count,
            "processing": st.is_processing,
            "current_prompt": st.current_prompt_preview,
            "pending_prompts": [p[:60] for p in self._queue.pending_prompts()],
            "max_size": self._queue.max_size,
        }

    def cancel_queue(self, include_running: bool = False) -> dict[str, Any]:
        dropped = self._queue.clear()
        stopped = self._runner.cancel_current() if include_running else False
        return {"dropped": dropped, "cancelled_running": stopped}

    def lock(self) -> bool:
        if not self._gate.enabled:
            return False
        self._gate.lock()
        return True

    def unlock(self, phrase: str) -> bool:
        return self._gate.try_unlock(phrase)

    def list_allowed_tools(self, session_id: str | None = None) -> dict[str, Any]:
        if session_id is None:
            session_id = self._sessions.active_session_id
        return {
            "session_id": session_id,
            "tools": self._broker.get_allowed_tools(session_id) if session_id else [],
            "safe_tools": sorted(self._broker.safe_tools),
        }
