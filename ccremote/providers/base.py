"""Base interface for the external assistant process."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class AssistantError(Exception):
    """A turn against the assistant process failed."""


class SpawnError(AssistantError):
    """The assistant process could not be started."""


class ProcessFailed(AssistantError):
    """The assistant process exited non-zero."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class TurnTimeout(AssistantError):
    """The turn ran past its time limit and the process was stopped."""


class TurnCancelled(AssistantError):
    """The operator cancelled the running turn."""


class CancelToken:
    """Cooperative cancellation handle for one turn.

    The provider watches the token; what happens to the process after
    ``cancel()`` (terminate, then kill after a grace period) is up to it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by operator") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class AssistantResponse:
    """Result of one completed turn."""
    text: str
    session_id: str | None
    raw: dict[str, Any] | None = None


class AssistantProvider(ABC):
    """
    Abstract base class for assistant backends.

    One call to :meth:`run` is one conversation turn. Implementations raise
    :class:`AssistantError` subclasses on failure.
    """

    @abstractmethod
    async def run(
        self,
        prompt: str,
        *,
        session_id: str | None,
        cwd: str,
        token: CancelToken | None = None,
    ) -> AssistantResponse:
        """
        Run one turn.

        Args:
            prompt: Operator text to send.
            session_id: Session to resume, or None for a fresh conversation.
            cwd: Working directory the session belongs to.
            token: Optional cancellation handle.

        Returns:
            AssistantResponse with the reply text and the (possibly new) session id.
        """
        pass
