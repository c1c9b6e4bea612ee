"""In-memory token-bucket rate limiter.

Each caller gets its own bucket keyed by an arbitrary string (the login
endpoint keys by client address).  ``acquire_rate_limit`` never waits: it
either consumes a token or raises :class:`RateLimitExceededError` with the
number of seconds until the next token is available.
"""

from __future__ import annotations

import asyncio
import logging
import time

from mentalspace.errors import RateLimitExceededError

logger = logging.getLogger("mentalspace.ratelimit")

_buckets: dict[str, "_Bucket"] = {}
# refilled buckets are dropped once the map grows past this many keys
_PRUNE_THRESHOLD = 1024
_creation_lock: asyncio.Lock | None = None  # created lazily (event-loop safe)


def _get_creation_lock() -> asyncio.Lock:
    global _creation_lock
    if _creation_lock is None:
        _creation_lock = asyncio.Lock()
    return _creation_lock


class _Bucket:
    """Asyncio token bucket refilled continuously at ``rate_per_minute``."""

    def __init__(self, rate_per_minute: int) -> None:
        self._rate: float = rate_per_minute / 60.0  # tokens per second
        self._capacity: float = float(rate_per_minute)
        self._tokens: float = float(rate_per_minute)
        self._last_refill: float = time.monotonic()
        self._lock = asyncio.Lock()

    def is_idle(self, now: float) -> bool:
        """True once the bucket would have refilled to capacity by *now*."""
        return self._tokens + (now - self._last_refill) * self._rate >= self._capacity

    async def try_acquire(self) -> float:
        """Consume a token.  Returns 0.0 on success, else seconds to wait."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._last_refill = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self._rate


async def acquire_rate_limit(key: str, max_per_minute: int) -> None:
    """Acquire a rate-limit token for *key*.

    Creates the bucket on first use.  Raises RateLimitExceededError when the
    bucket is empty.
    """
    if max_per_minute <= 0:
        return
    bucket = _buckets.get(key)
    if bucket is None:
        lock = _get_creation_lock()
        async with lock:
            bucket = _buckets.get(key)
            if bucket is None:
                if len(_buckets) >= _PRUNE_THRESHOLD:
                    _prune_idle_buckets()
                logger.debug(
                    "Creating token bucket: key=%r max_per_minute=%d",
                    key,
                    max_per_minute,
                )
                bucket = _buckets[key] = _Bucket(max_per_minute)

    retry_after = await bucket.try_acquire()
    if retry_after > 0:
        logger.warning("Rate limit exceeded for key=%r (retry in %.1fs)", key, retry_after)
        raise RateLimitExceededError(
            "Too many requests, please try again later",
            retry_after=retry_after,
        )


def _prune_idle_buckets() -> None:
    now = time.monotonic()
    idle = [key for key, bucket in _buckets.items() if bucket.is_idle(now)]
    for key in idle:
        del _buckets[key]
    if idle:
        logger.debug("Pruned %d idle token buckets (%d remaining)", len(idle), len(_buckets))


def reset_bucket(key: str | None = None) -> None:
    """Remove the bucket for *key*, or every bucket when *key* is None (tests)."""
    if key is None:
        _buckets.clear()
    else:
        _buckets.pop(key, None)
