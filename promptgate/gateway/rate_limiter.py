"""Per-tenant Rate Limiter over fixed minute/hour/day windows.

Each key (workspace id, or user id when workspace scoping is disabled) owns
three independent counters. A window always starts at ``floor(now / L) * L``;
when ``now`` passes the end of the stored window the counter is reset and the
window re-aligned before it is read or incremented.

The limiter only advises: it never raises and never blocks. Callers that
dispatch downstream work should charge the key *before* dispatching
(``check_and_increment``) so concurrent or cancelled calls are still counted.

Thread-safe via one ``threading.Lock`` per key.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from promptgate.gateway.types import (
    DEFAULT_RATE_LIMITS,
    AdmissionResult,
    RateLimitConfig,
    RateWindow,
)

logger = logging.getLogger(__name__)


def window_start_for(now: float, length: int) -> float:
    """Start of the fixed window of ``length`` seconds containing ``now``."""
    return math.floor(now / length) * length


@dataclass
class _Window:
    """Counter for one horizon of one key."""

    length: int
    count: int = 0
    window_start: float = 0.0

    def roll(self, now: float) -> None:
        """Reset the counter if ``now`` lies past the stored window."""
        if now >= self.window_start + self.length:
            self.count = 0
            self.window_start = window_start_for(now, self.length)

    @property
    def reset_at(self) -> float:
        return self.window_start + self.length


@dataclass
class _KeyState:
    """Window counters for a single rate-limit key."""

    windows: dict[RateWindow, _Window]
    lock: threading.Lock = field(default_factory=threading.Lock)

    @classmethod
    def create(cls, now: float) -> _KeyState:
        return cls(
            windows={
                w: _Window(length=w.seconds, window_start=window_start_for(now, w.seconds)) for w in RateWindow
            }
        )

    def roll(self, now: float) -> None:
        for window in self.windows.values():
            window.roll(now)

    def admission(self, limits: RateLimitConfig) -> AdmissionResult:
        remaining: dict[RateWindow, int] = {}
        allowed = True
        for w, window in self.windows.items():
            limit = limits.limit_for(w)
            if window.count >= limit:
                allowed = False
            remaining[w] = max(0, limit - window.count)
        return AdmissionResult(
            allowed=allowed,
            remaining=remaining,
            reset_at={w: window.reset_at for w, window in self.windows.items()},
            limits=limits,
        )

    def increment(self) -> None:
        for window in self.windows.values():
            window.count += 1


class RateLimiter:
    """In-process per-key rate limiter over minute, hour and day windows.

    Usage:
        limiter = RateLimiter(RateLimitConfig(minute_limit=10))

        result = limiter.check_and_increment(workspace_id)
        if not result.allowed:
            raise RateLimitExceededError(result)
    """

    def __init__(
        self,
        defaults: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.defaults = (defaults or RateLimitConfig()).merged_over(DEFAULT_RATE_LIMITS)
        self._clock = clock
        self._states: dict[str, _KeyState] = {}
        self._registry_lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def _get_state(self, key: str, now: float) -> _KeyState:
        """Get or lazily create counter state for a key."""
        state = self._states.get(key)
        if state is None:
            with self._registry_lock:
                state = self._states.get(key)
                if state is None:
                    state = _KeyState.create(now)
                    self._states[key] = state
        return state

    def _resolve_limits(self, limits: RateLimitConfig | None) -> RateLimitConfig:
        if limits is None:
            return self.defaults
        return limits.merged_over(self.defaults)

    def check_rate_limit(self, key: str, limits: RateLimitConfig | None = None) -> AdmissionResult:
        """Return the admission verdict for ``key`` without charging it."""
        limits = self._resolve_limits(limits)
        now = self._clock()
        state = self._get_state(key, now)
        with state.lock:
            state.roll(now)
            return state.admission(limits)

    def increment_counter(self, key: str) -> None:
        """Charge one request to every window of ``key`` (rolling stale windows first)."""
        now = self._clock()
        state = self._get_state(key, now)
        with state.lock:
            state.roll(now)
            state.increment()

    def check_and_increment(self, key: str, limits: RateLimitConfig | None = None) -> AdmissionResult:
        """Atomically check ``key`` and, if allowed, charge it.

        The returned ``remaining`` already accounts for this request.
        """
        limits = self._resolve_limits(limits)
        now = self._clock()
        state = self._get_state(key, now)
        with state.lock:
            state.roll(now)
            result = state.admission(limits)
            if not result.allowed:
                logger.info("Rate limit exceeded for key %s (windows: %s)", key, ", ".join(result.exceeded_windows()))
                return result
            state.increment()
            return replace(state.admission(limits), allowed=True)

    def reset(self, key: str) -> bool:
        """Forget all counters for ``key``. Returns True if the key was tracked."""
        with self._registry_lock:
            return self._states.pop(key, None) is not None

    def tracked_keys(self) -> int:
        return len(self._states)

    def get_stats(self, key: str, limits: RateLimitConfig | None = None) -> dict:
        """Current counters and limits for a key."""
        limits = self._resolve_limits(limits)
        now = self._clock()
        state = self._get_state(key, now)
        with state.lock:
            state.roll(now)
            return {
                "key": key,
                "windows": {
                    w.value: {
                        "count": window.count,
                        "limit": limits.limit_for(w),
                        "window_start": window.window_start,
                        "reset_at": window.reset_at,
                    }
                    for w, window in state.windows.items()
                },
            }
