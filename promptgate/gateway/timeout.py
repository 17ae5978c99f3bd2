"""Timeout Guard: hard deadlines with cooperative cancellation.

``TimeoutGuard.with_timeout`` wraps a coroutine function so each call:
  1. runs the operation as its own task (the cancel handle),
  2. arms a deadline timer on the event loop,
  3. registers a tracking record under a generated call id,
  4. races the task against the deadline: the first to settle wins,
  5. cancels the loser and removes the tracking record on every exit path.

Cancellation is cooperative: the operation sees ``CancelledError`` at its
next await point and is expected to stop there.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from promptgate.core.exceptions import ExternalTimeoutError, RequestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_EXTERNAL_TIMEOUT_MS = 60_000

# Pre-configured timeouts per kind of operation
TIMEOUT_PRESETS: dict[str, int] = {
    "standard": 30_000,  # API operations, database queries
    "quick": 10_000,  # cache, validation
    "external": 60_000,  # LLM and other third-party calls
    "file": 45_000,  # file operations
}


@dataclass
class RequestTracking:
    """Bookkeeping for one in-flight guarded call."""

    call_id: str
    task: asyncio.Task
    timer: asyncio.TimerHandle
    started_at: float  # time.monotonic()
    timeout_ms: int

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


def _expire(deadline: asyncio.Future) -> None:
    if not deadline.done():
        deadline.set_result(None)


def _consume_result(task: asyncio.Task) -> None:
    """Retrieve the outcome of an abandoned task so it is never reported as unhandled."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Timed-out operation finished with %s after deadline", type(exc).__name__)


class TimeoutGuard:
    """Registry-backed deadline wrapper for async operations.

    Usage:
        guard = TimeoutGuard(default_timeout_ms=30_000)
        guarded = guard.with_timeout(handle_request, timeout_ms=5_000)
        result = await guarded(payload)  # raises RequestTimeoutError on deadline
    """

    def __init__(self, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        if default_timeout_ms <= 0:
            raise ValueError(f"default_timeout_ms must be positive, got {default_timeout_ms}")
        self.default_timeout_ms = default_timeout_ms
        self._active: dict[str, RequestTracking] = {}

    @property
    def active_count(self) -> int:
        """Number of guarded calls currently in flight."""
        return len(self._active)

    def active_requests(self) -> list[dict]:
        return [
            {"call_id": t.call_id, "elapsed_ms": t.elapsed_ms, "timeout_ms": t.timeout_ms}
            for t in self._active.values()
        ]

    def with_timeout(
        self,
        operation: Callable[..., Awaitable[T]],
        timeout_ms: int | None = None,
        operation_name: str = "operation",
    ) -> Callable[..., Awaitable[T]]:
        """Wrap ``operation`` with a deadline of ``timeout_ms`` milliseconds."""
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")

        @functools.wraps(operation)
        async def wrapped(*args: Any, **kwargs: Any) -> T:
            return await self._run(operation, args, kwargs, timeout_ms, operation_name)

        return wrapped

    async def _run(
        self,
        operation: Callable[..., Awaitable[T]],
        args: tuple,
        kwargs: dict,
        timeout_ms: int,
        operation_name: str,
    ) -> T:
        loop = asyncio.get_running_loop()
        call_id = uuid.uuid4().hex
        # Calling the operation may raise before any timer exists
        task = asyncio.ensure_future(operation(*args, **kwargs))
        deadline: asyncio.Future = loop.create_future()
        timer = loop.call_later(timeout_ms / 1000, _expire, deadline)
        tracking = RequestTracking(
            call_id=call_id,
            task=task,
            timer=timer,
            started_at=time.monotonic(),
            timeout_ms=timeout_ms,
        )
        self._active[call_id] = tracking

        try:
            done, _ = await asyncio.wait({task, deadline}, return_when=asyncio.FIRST_COMPLETED)
            if task in done:
                return task.result()

            task.cancel()
            logger.warning(
                "%s timed out after %dms (configured %dms)",
                operation_name,
                tracking.elapsed_ms,
                timeout_ms,
                extra={"call_id": call_id},
            )
            raise RequestTimeoutError(timeout_ms, operation_name)
        finally:
            timer.cancel()
            if not deadline.done():
                deadline.cancel()
            if not task.done():
                # Deadline hit or caller cancelled: signal the operation
                task.cancel()
                task.add_done_callback(_consume_result)
            self._active.pop(call_id, None)


async def with_external_timeout(
    awaitable: Awaitable[T],
    timeout_ms: int = DEFAULT_EXTERNAL_TIMEOUT_MS,
    error_message: str = "External API request timeout",
) -> T:
    """Race a single external call against a deadline, without tracking."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise ExternalTimeoutError(timeout_ms, error_message) from None
