"""Simple in-memory rate limiter for the generate endpoint.

Uses a sliding-window counter keyed by client IP.
Not shared across workers -- sufficient for a single-process server.
"""

import time

from app.config import settings


class RateLimiter:
    """Sliding-window rate limiter.

    Args:
        max_requests: Maximum requests allowed in the window.
        window_seconds: Length of the sliding window in seconds.
    """

    _call_count: int = 0
    _PRUNE_INTERVAL: int = 500  # prune idle keys every N calls

    def __init__(self, max_requests: int = 60, window_seconds: float = 60) -> None:
        self._max = max_requests
        self._window = window_seconds
        self._hits: dict[str, list[float]] = {}

    def _prune_idle_keys(self, now: float) -> None:
        """Remove keys whose timestamps have all expired."""
        cutoff = now - self._window
        dead = [k for k, ts in self._hits.items() if not ts or ts[-1] <= cutoff]
        for k in dead:
            del self._hits[k]

    def is_allowed(self, key: str) -> bool:
        """Check whether *key* is within the rate limit.

        Returns True if the request is allowed, False if it should be rejected.
        """
        now = time.monotonic()
        cutoff = now - self._window

        # Periodically prune idle keys to prevent unbounded growth
        RateLimiter._call_count += 1
        if RateLimiter._call_count % self._PRUNE_INTERVAL == 0:
            self._prune_idle_keys(now)

        timestamps = [t for t in self._hits.get(key, []) if t > cutoff]

        if len(timestamps) >= self._max:
            self._hits[key] = timestamps
            return False

        timestamps.append(now)
        self._hits[key] = timestamps
        return True

    def reset(self) -> None:
        """Forget every recorded hit."""
        self._hits.clear()


# Module-level singleton -- plugin generations per client IP.
generate_limiter = RateLimiter(
    max_requests=settings.GENERATE_RATE_LIMIT,
    window_seconds=settings.GENERATE_RATE_WINDOW_SECONDS,
)
