"""
api/limiter.py -- Per-client token-bucket rate limiter for the /auth routes.

Each client (keyed by remote address via slowapi's get_remote_address) owns a
bucket holding up to `burst` tokens that refills at `rate` tokens per second.
A request takes one token; an empty bucket means 429 with Retry-After set to
the time until the next token. Defaults are 2/second sustained, burst of 5,
which caps OTP guessing and registration spraying per client.

The limiter runs as a router-level dependency in front of the flows, never
inside them. One instance lives on app.state.limiter so every route shares
the same buckets; separate instances would each allow a full burst.

Route handlers run in a thread pool, so bucket updates are guarded by a lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from slowapi.util import get_remote_address

logger = logging.getLogger("idgate.api.limiter")


class RateLimited(Exception):
    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded; retry in {retry_after:.2f}s")


@dataclass
class _Bucket:
    tokens: float
    updated: float


class TokenBucketLimiter:
    def __init__(
        self,
        rate: float = 2.0,
        burst: int = 5,
        key_func: Callable[[Request], str] = get_remote_address,
        clock: Callable[[], float] = time.monotonic,
        max_clients: int = 10_000,
    ) -> None:
        if rate <= 0 or burst < 1:
            raise ValueError("rate must be positive and burst at least 1")
        self.rate = rate
        self.burst = burst
        self._key_func = key_func
        self._clock = clock
        self._max_clients = max_clients
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def acquire(self, key: str) -> float:
        """Take a token for `key`.

        Returns 0.0 when the request may proceed, otherwise the number of
        seconds until a token becomes available.
        """
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                if len(self._buckets) >= self._max_clients:
                    self._prune(now)
                bucket = _Bucket(tokens=float(self.burst), updated=now)
                self._buckets[key] = bucket
            else:
                elapsed = max(0.0, now - bucket.updated)
                bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.rate)
                bucket.updated = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return 0.0
            return (1 - bucket.tokens) / self.rate

    def _prune(self, now: float) -> None:
        # A bucket idle long enough to refill completely is indistinguishable
        # from a fresh one.
        refill_time = self.burst / self.rate
        idle = [key for key, bucket in self._buckets.items() if now - bucket.updated >= refill_time]
        for key in idle:
            del self._buckets[key]
        if len(self._buckets) >= self._max_clients:
            # Every tracked client is active: drop the least recently seen.
            oldest = min(self._buckets, key=lambda k: self._buckets[k].updated)
            del self._buckets[oldest]

    def check(self, request: Request) -> None:
        key = self._key_func(request)
        wait = self.acquire(key)
        if wait > 0:
            logger.warning("Rate limit hit for %s on %s", key, request.url.path)
            raise RateLimited(wait)


def enforce_rate_limit(request: Request) -> None:
    """Router-level dependency: charge one token to the calling client."""
    request.app.state.limiter.check(request)
