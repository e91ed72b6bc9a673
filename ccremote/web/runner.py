"""Turn runner: turns operator prompts into queued Claude Code jobs.

Each job captures the active session at submit time, runs one turn through
the provider, re-tracks the session id Claude Code reports back, and posts
the reply (or the error) on the UI channel.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from ccremote.providers.base import AssistantProvider, AssistantResponse, CancelToken
from ccremote.web.protocol import EventType
from ccremote.web.queue import EnqueueResult, ExecutionQueue, Job, PREVIEW_CHARS
from ccremote.web.sessions import SessionRegistry
from ccremote.web.ui import UIChannel


class NoActiveSession(Exception):
    """No session has been reported yet and fresh sessions are disabled."""


class TurnRunner:
    def __init__(
        self,
        *,
        sessions: SessionRegistry,
        queue: ExecutionQueue,
        provider: AssistantProvider,
        ui: UIChannel,
        allow_fresh_sessions: bool = False,
        default_cwd: str | Path = "~",
    ):
        self._sessions = sessions
        self._queue = queue
        self._provider = provider
        self._ui = ui
        self._allow_fresh = allow_fresh_sessions
        self._default_cwd = str(Path(default_cwd).expanduser())
        self._current_token: CancelToken | None = None

    def submit(self, prompt: str) -> EnqueueResult:
        active = self._sessions.get_active()
        if active is not None:
            session_id: str | None = active.id
            cwd = active.working_directory
            branch: str | None = active.branch_label
        elif self._allow_fresh:
            session_id, cwd, branch = None, self._default_cwd, None
        else:
            raise NoActiveSession("No active session. Start Claude Code with hooks enabled first.")

        async def _execute() -> AssistantResponse:
            return await self._execute(prompt, session_id, cwd, branch)

        result = self._queue.enqueue(Job(prompt=prompt, execute=_execute, on_error=self._on_error))
        if result.accepted:
            logger.info(f"Prompt queued at position {result.position} for session {(session_id or 'new')[:12]}")
        return result

    async def _execute(
        self,
        prompt: str,
        session_id: str | None,
        cwd: str,
        branch: str | None,
    ) -> AssistantResponse:
        token = CancelToken()
        self._current_token = token
        try:
            await self._ui.send(
                EventType.TURN_STARTED.value,
                prompt[:PREVIEW_CHARS],
                session_id=session_id,
                cwd=cwd,
            )
            response = await self._provider.run(prompt, session_id=session_id, cwd=cwd, token=token)
        finally:
            if self._current_token is token:
                self._current_token = None

        if response.session_id:
            self._sessions.track(response.session_id, cwd, branch=branch)

        await self._ui.send(
            EventType.TURN_RESULT.value,
            response.text,
            session_id=response.session_id,
            remaining=self._queue.get_status().pending_count,
        )
        return response

    async def _on_error(self, exc: BaseException) -> None:
        await self._ui.send(
            EventType.TURN_ERROR.value,
            str(exc)[:1000] or type(exc).__name__,
            error=type(exc).__name__,
        )

    @property
    def has_running_turn(self) -> bool:
        return self._current_token is not None

    def cancel_current(self, reason: str = "cancelled by operator") -> bool:
        token = self._current_token
        if token is None or token.cancelled:
            return False
        token.cancel(reason)
        logger.info(f"Cancelling running turn: {reason}")
        return True
