"""Registry of Claude Code sessions reported by hooks.

A session id is minted by Claude Code itself; the registry only remembers
where each one lives (working directory) and which one new prompts go to.
"""

from __future__ import annotations

import dataclasses
import itertools
import time
from dataclasses import dataclass
from pathlib import PurePath
from typing import Callable

from loguru import logger


@dataclass
class Session:
    id: str
    working_directory: str
    project_label: str
    branch_label: str
    last_seen_at: float
    turn_count: int = 0

    @property
    def short_id(self) -> str:
        return self.id[:12]


class SessionRegistry:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._seen_order: dict[str, int] = {}
        self._seq = itertools.count(1)
        self._active_id: str | None = None

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    def track(
        self,
        session_id: str,
        cwd: str,
        *,
        branch: str | None = None,
        project: str | None = None,
    ) -> Session:
        """Upsert a session and make it the active one.

        The working directory of a known session never changes; a re-report
        only refreshes labels, the last-seen time and the turn count.
        """
        existing = self._sessions.get(session_id)
        if existing is None:
            session = Session(
                id=session_id,
                working_directory=cwd,
                project_label=project or PurePath(cwd).name or cwd,
                branch_label=branch or "unknown",
                last_seen_at=self._clock(),
                turn_count=1,
            )
            self._sessions[session_id] = session
            logger.info(f"Tracked new session {session.short_id} -> {cwd}")
        else:
            session = existing
            if cwd != session.working_directory:
                logger.debug(
                    f"Ignoring directory change for session {session.short_id}: "
                    f"{session.working_directory} -> {cwd}"
                )
            if branch:
                session.branch_label = branch
            if project:
                session.project_label = project
            session.last_seen_at = self._clock()
            session.turn_count += 1

        self._seen_order[session_id] = next(self._seq)
        self._active_id = session_id
        return dataclasses.replace(session)

    def get_active(self) -> Session | None:
        if self._active_id is None:
            return None
        session = self._sessions.get(self._active_id)
        return dataclasses.replace(session) if session else None

    def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return dataclasses.replace(session) if session else None

    def set_active(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        self._active_id = session_id
        return True

    def list(self) -> list[Session]:
        """All sessions, most recently seen first."""
        ordered = sorted(
            self._sessions.values(),
            key=lambda s: (s.last_seen_at, self._seen_order.get(s.id, 0)),
            reverse=True,
        )
        return [dataclasses.replace(s) for s in ordered]

    def find_by_prefix(self, prefix: str) -> Session | None:
        if not prefix:
            return None
        for session in self.list():
            if session.id.startswith(prefix):
                return session
        return None

    def clear(self) -> list[str]:
        """Forget every session. Returns the ids that were removed."""
        removed = list(self._sessions)
        self._sessions.clear()
        self._seen_order.clear()
        self._active_id = None
        logger.info(f"Cleared {len(removed)} session(s)")
        return removed

    def __len__(self) -> int:
        return len(self._sessions)
