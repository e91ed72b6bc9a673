"""Claude Code CLI provider (``claude -p ... --output-format json``)."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any

from loguru import logger

from ccremote.providers.base import (
    AssistantProvider,
    AssistantResponse,
    CancelToken,
    ProcessFailed,
    SpawnError,
    TurnCancelled,
    TurnTimeout,
)


def parse_claude_output(stdout: str, session_id: str | None) -> AssistantResponse:
    """Extract reply text and session id from ``--output-format json`` output.

    Falls back to the raw text when stdout is not JSON.
    """
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return AssistantResponse(text=stdout.strip() or "(empty response)", session_id=session_id)

    if not isinstance(data, dict):
        return AssistantResponse(text=stdout.strip() or "(empty response)", session_id=session_id)

    text = data.get("result") or ""
    if not text:
        blocks = data.get("content") or []
        text = "\n".join(
            str(b.get("text", ""))
            for b in blocks
            if isinstance(b, dict) and b.get("type") == "text"
        )
    return AssistantResponse(
        text=text or stdout,
        session_id=data.get("session_id") or session_id,
        raw=data,
    )


class ClaudeCliProvider(AssistantProvider):
    """Runs one Claude Code turn per subprocess."""

    def __init__(
        self,
        binary: str = "claude",
        timeout_s: float = 300.0,
        kill_grace_s: float = 5.0,
        extra_args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ):
        self.binary = binary
        self.timeout_s = timeout_s
        self.kill_grace_s = kill_grace_s
        self.extra_args = extra_args or []
        self.env = env

    def build_args(self, prompt: str, session_id: str | None) -> list[str]:
        args = ["-p", prompt, "--output-format", "json", *self.extra_args]
        if session_id:
            args += ["--resume", session_id]
        return args

    async def run(
        self,
        prompt: str,
        *,
        session_id: str | None,
        cwd: str,
        token: CancelToken | None = None,
    ) -> AssistantResponse:
        args = self.build_args(prompt, session_id)
        logger.info(f"Running {self.binary} (resume={session_id or '-'}) in {cwd}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env={**os.environ, **(self.env or {})},
            )
        except OSError as e:
            raise SpawnError(f"Failed to run Claude Code: {e}") from e

        token = token or CancelToken()
        comm = asyncio.ensure_future(process.communicate())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {comm, cancelled},
                timeout=self.timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if comm not in done:
                await self._stop(process, comm)
                if token.cancelled:
                    raise TurnCancelled(token.reason or "cancelled")
                raise TurnTimeout(f"Claude Code timed out after {self.timeout_s:g} seconds")
        except asyncio.CancelledError:
            await self._stop(process, comm)
            raise
        finally:
            cancelled.cancel()

        stdout_b, stderr_b = comm.result()
        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")

        if process.returncode != 0:
            raise ProcessFailed(
                stderr.strip() or f"Claude exited with code {process.returncode}",
                returncode=process.returncode,
            )
        return parse_claude_output(stdout, session_id)

    async def _stop(self, process: Any, comm: asyncio.Future[Any]) -> None:
        """SIGTERM first; SIGKILL if still alive after the grace period."""
        if process.returncode is None:
            try:
                process.terminate()
                logger.warning(f"Sent SIGTERM to Claude Code (pid {process.pid})")
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(asyncio.shield(comm), timeout=self.kill_grace_s)
            return
        except asyncio.TimeoutError:
            pass
        except Exception as e:
            logger.debug(f"Claude Code exited with error after SIGTERM: {e}")
            return
        if process.returncode is None:
            try:
                process.kill()
                logger.warning(f"Killed Claude Code (pid {process.pid}) after {self.kill_grace_s:g}s grace")
            except ProcessLookupError:
                pass
        await asyncio.gather(comm, return_exceptions=True)
