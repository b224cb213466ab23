"""
Fixed window admission control keyed by client address
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict

from fastapi import Request

from .exceptions import RateLimited

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass
class WindowState:
    count: int
    window_start: float


class FixedWindowRateLimiter:
    """
    Allows at most ``max_requests`` per ``window_seconds`` for each key.

    ``hit`` never suspends, so the read-check-increment for a key cannot be
    interleaved with another request on the event loop.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[str, WindowState] = {}
        self._last_prune = clock()

    def hit(self, key: str) -> bool:
        """Count one request for ``key``; False if it exceeds the limit"""
        now = self.clock()
        self._prune(now)

        state = self._windows.get(key)
        if state is None or now - state.window_start >= self.window_seconds:
            state = WindowState(count=0, window_start=now)
            self._windows[key] = state

        if state.count >= self.max_requests:
            return False
        state.count += 1
        return True

    def retry_after(self, key: str) -> int:
        """Seconds until the current window for ``key`` resets"""
        state = self._windows.get(key)
        if state is None:
            return 0
        remaining = state.window_start + self.window_seconds - self.clock()
        return max(0, math.ceil(remaining))

    def remaining(self, key: str) -> int:
        state = self._windows.get(key)
        if state is None or self.clock() - state.window_start >= self.window_seconds:
            return self.max_requests
        return max(0, self.max_requests - state.count)

    def _prune(self, now: float) -> None:
        # Drop expired windows at most once per window length
        if now - self._last_prune < self.window_seconds:
            return
        self._last_prune = now
        expired = [k for k, s in self._windows.items() if now - s.window_start >= self.window_seconds]
        for k in expired:
            del self._windows[k]


def client_key(request: Request, trust_proxy: bool = False) -> str:
    """Network identity used as the rate limit key"""
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def admit(request: Request) -> int:
    """
    Count the request against its client's quota and return what is left.

    Synchronous so the check and increment happen without a suspension point.
    Raises RateLimited once the quota for the current window is used up.
    """
    limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
    key = client_key(request, request.app.state.settings.trust_proxy)
    if not limiter.hit(key):
        logger.warning(f"Rate limit exceeded for {key} on {request.url.path}")
        raise RateLimited(RATE_LIMIT_MESSAGE, retry_after=limiter.retry_after(key))
    return limiter.remaining(key)
