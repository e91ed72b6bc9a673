"""Single-flight FIFO of conversation turns.

Only one job touches Claude Code at a time. The bound counts the job in
flight plus everything waiting behind it, and positions are reported the same
way (the running job is position 1).
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger


@dataclass
class Job:
    prompt: str
    execute: Callable[[], Awaitable[Any]]
    on_error: Callable[[BaseException], Any] | None = None


@dataclass(frozen=True)
class EnqueueResult:
    accepted: bool
    position: int


@dataclass(frozen=True)
class QueueStatus:
    pending_count: int
    is_processing: bool
    current_prompt_preview: str | None


PREVIEW_CHARS = 60


class ExecutionQueue:
    def __init__(self, max_size: int):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._pending: deque[Job] = deque()
        self._processing = False
        self._current: Job | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def max_size(self) -> int:
        return self._max_size

    def enqueue(self, job: Job) -> EnqueueResult:
        occupancy = len(self._pending) + (1 if self._processing else 0)
        if self._closed or occupancy >= self._max_size:
            logger.warning(f"Queue full ({occupancy}/{self._max_size}); rejecting job")
            return EnqueueResult(accepted=False, position=-1)

        self._pending.append(job)
        position = occupancy + 1
        logger.debug(f"Job enqueued at position {position}")
        self._drain()
        return EnqueueResult(accepted=True, position=position)

    def _drain(self) -> None:
        if self._processing or self._closed or not self._pending:
            return
        self._processing = True
        self._current = self._pending.popleft()
        self._task = asyncio.get_running_loop().create_task(self._run(self._current))

    async def _run(self, job: Job) -> None:
        try:
            await job.execute()
        except Exception as exc:
            logger.exception(f"Job failed: {exc}")
            await self._report_error(job, exc)
        finally:
            self._current = None
            self._processing = False
            self._task = None
        # Next job starts whatever the outcome of this one.
        self._drain()

    async def _report_error(self, job: Job, exc: BaseException) -> None:
        if job.on_error is None:
            return
        try:
            res = job.on_error(exc)
            if inspect.isawaitable(res):
                await res
        except Exception:
            logger.exception("Job error callback failed")

    def get_status(self) -> QueueStatus:
        preview = self._current.prompt[:PREVIEW_CHARS] if self._current else None
        return QueueStatus(
            pending_count=len(self._pending),
            is_processing=self._processing,
            current_prompt_preview=preview,
        )

    def pending_prompts(self) -> list[str]:
        return [job.prompt for job in self._pending]

    def clear(self) -> int:
        """Drop jobs that have not started. The running job is untouched."""
        dropped = len(self._pending)
        self._pending.clear()
        if dropped:
            logger.info(f"Discarded {dropped} queued job(s)")
        return dropped

    async def close(self) -> None:
        """Stop draining and cancel the job in flight (shutdown only)."""
        self._closed = True
        self._pending.clear()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
