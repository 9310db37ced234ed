"""Fixed-window rate limiting for endpoint calls."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check.

    ``reset_at`` is the window expiry in epoch milliseconds.
    """

    allowed: bool
    remaining: int
    reset_at: int


@dataclass
class _Window:
    count: int
    started_at: int


def rate_limit_key(agent_id: str, endpoint_id: str) -> str:
    """Build the limiter key for an agent endpoint."""
    return f"{agent_id}:{endpoint_id}"


class RateLimiter:
    """In-memory fixed-window counter keyed by ``agentId:endpointId``.

    A window opens on the first call for a key and lasts ``window_ms``. Calls
    in an expired window start a fresh one. Expired windows stay in memory
    until :meth:`cleanup` is called; scheduling that is the caller's job.

    Args:
        max_requests: Calls allowed per window
        window_ms: Window length in milliseconds
        clock: Returns the current time in milliseconds
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_ms: int = 60_000,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock or (lambda: time.time() * 1000)
        self._windows: dict[str, _Window] = {}

    def _now(self) -> int:
        return int(self._clock())

    def check(
        self,
        key: str,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> RateLimitResult:
        """Count a call against a key.

        Args:
            key: Rate limit key
            max_requests: Per-call override of the window capacity
            window_ms: Per-call override of the window length

        Returns:
            Whether the call is allowed, how many calls remain and when the
            window resets. Denied calls are not counted.
        """
        limit = self.max_requests if max_requests is None else max_requests
        length = self.window_ms if window_ms is None else window_ms
        now = self._now()

        window = self._windows.get(key)
        if window is None or now - window.started_at >= length:
            window = _Window(count=0, started_at=now)
            self._windows[key] = window

        reset_at = window.started_at + length
        if window.count >= limit:
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)

        window.count += 1
        return RateLimitResult(allowed=True, remaining=limit - window.count, reset_at=reset_at)

    def retry_after_s(self, result: RateLimitResult) -> int:
        """Whole seconds until a denied caller may try again."""
        return max(0, math.ceil((result.reset_at - self._now()) / 1000))

    def reset(self, key: str) -> None:
        """Forget the window for a key."""
        self._windows.pop(key, None)

    def clear_all(self) -> None:
        """Forget every window."""
        self._windows.clear()

    def cleanup(self) -> int:
        """Remove expired windows.

        Returns:
            Number of windows removed
        """
        now = self._now()
        expired = [k for k, w in self._windows.items() if now - w.started_at >= self.window_ms]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
