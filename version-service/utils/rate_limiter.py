"""Rate limiter for API routes."""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, MutableMapping, Optional

logger = logging.getLogger(__name__)

MIN_WINDOW_MS = 1000
CLEANUP_EVERY = 100  # checks between sweeps of expired windows


@dataclass(frozen=True)
class RateLimitConfig:
    """Request quota for one route."""
    requests_per_window: int
    window_ms: int
    route: str = "default"
    include_headers: bool = True

    def __post_init__(self) -> None:
        if self.requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        if self.window_ms < MIN_WINDOW_MS:
            raise ValueError(f"window_ms must be at least {MIN_WINDOW_MS}")

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


@dataclass
class RateLimitWindow:
    count: int
    window_start: float
    window_end: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: Optional[int] = None

    def headers(self) -> dict[str, str]:
        """Response headers describing this outcome."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if not self.allowed and self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class RateLimiter:
    """
    In-memory fixed-window rate limiter.

    Features:
    - Separate quota per (client key, route)
    - Denied requests do not consume quota
    - Injectable clock and window storage for tests
    - Thread-safe counter updates

    State lives only in this process; it is a best-effort throttle.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        store: Optional[MutableMapping[tuple[str, str], RateLimitWindow]] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            clock: Returns the current wall-clock time in seconds
            store: Optional mapping used to hold windows, e.g. a shared dict
        """
        self._clock = clock
        self._windows: MutableMapping[tuple[str, str], RateLimitWindow] = store if store is not None else {}
        self._lock = threading.Lock()
        self._checks = 0

    def check_limit(self, client_key: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Count a request against the client's quota for a route.

        Args:
            client_key: Client identifier, usually the client IP
            config: Quota for the calling route

        Returns:
            RateLimitResult with allow/deny and header metadata
        """
        key = (client_key, config.route)
        limit = config.requests_per_window

        with self._lock:
            now = self._clock()
            self._checks += 1
            if self._checks % CLEANUP_EVERY == 0:
                self._remove_expired(now)

            window = self._windows.get(key)

            # New client or elapsed window: start fresh
            if window is None or now >= window.window_end:
                window = RateLimitWindow(count=1, window_start=now, window_end=now + config.window_seconds)
                self._windows[key] = window
                return RateLimitResult(True, limit, limit - 1, window.window_end)

            if window.count < limit:
                window.count += 1
                return RateLimitResult(True, limit, limit - window.count, window.window_end)

            retry_after = max(1, math.ceil(window.window_end - now))
            logger.debug(f"Rate limit hit for {client_key} on {config.route}: retry in {retry_after}s")
            return RateLimitResult(False, limit, 0, window.window_end, retry_after)

    def _remove_expired(self, now: float) -> int:
        expired = [k for k, w in self._windows.items() if w.window_end <= now]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def cleanup_expired(self) -> int:
        """Drop windows that have elapsed. Returns the number removed."""
        with self._lock:
            return self._remove_expired(self._clock())

    def reset(self) -> None:
        """Clear all rate limit state. Intended for tests."""
        with self._lock:
            self._windows.clear()
            self._checks = 0
