"""
auth/rate_limiter.py -- Per-client token-bucket rate limiter.

Guards POST /auth/refresh. Each client IP gets its own bucket:
  capacity    = burst size (max requests allowed back-to-back)
  refill_rate = requests_per_window / window_seconds tokens per second,
                added continuously in proportion to elapsed time.

The login endpoint is limited separately by slowapi's fixed window
(api/limiter.py); the two limits do not share state.

Concurrency:
  The bucket map is split into shards, each with its own lock, so two IPs
  only contend when they hash to the same shard and only for the map lookup.
  Token arithmetic runs under the bucket's own lock. One client's exhaustion
  never touches another client's bucket.

Memory:
  Buckets are created lazily per IP. evict_idle() drops buckets that have not
  been used for a while; the sweeper calls it periodically. An idle bucket has
  refilled to capacity, so dropping it and recreating it later is invisible
  to the client.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable

Clock = Callable[[], float]

_DEFAULT_SHARDS = 16


class TokenBucket:
    """A single token bucket. Thread-safe."""

    def __init__(self, capacity: int, refill_rate: float, clock: Clock = time.monotonic) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._lock = threading.Lock()
        self.tokens: float = float(capacity)
        self.last_refill: float = clock()

    def _refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_rate)
            self.last_refill = now

    def consume(self) -> bool:
        """Take one token if available. Returns False (and takes nothing) otherwise."""
        with self._lock:
            self._refill(self._clock())
            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False

    def retry_after(self) -> int:
        """Whole seconds until one token will be available (at least 1)."""
        with self._lock:
            self._refill(self._clock())
            missing = 1 - self.tokens
            if missing <= 0:
                return 1
            return max(1, math.ceil(missing / self.refill_rate))


class _Shard:
    __slots__ = ("lock", "buckets", "last_seen")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.buckets: dict[str, TokenBucket] = {}
        self.last_seen: dict[str, float] = {}


class IPRateLimiter:
    """Token buckets keyed by client IP.

    Usage:
        limiter = IPRateLimiter(requests_per_window=10, window_seconds=60)
        if not limiter.allow(request.client.host):
            raise RateLimited(limiter.retry_after(request.client.host))
    """

    def __init__(
        self,
        requests_per_window: int,
        window_seconds: float = 60.0,
        burst: int = 0,
        clock: Clock = time.monotonic,
        shards: int = _DEFAULT_SHARDS,
    ) -> None:
        if requests_per_window <= 0:
            raise ValueError("requests_per_window must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.capacity = burst or requests_per_window
        self.refill_rate = requests_per_window / window_seconds
        self.window_seconds = window_seconds
        self._clock = clock
        self._shards = [_Shard() for _ in range(max(1, shards))]

    def _shard(self, ip: str) -> _Shard:
        return self._shards[hash(ip) % len(self._shards)]

    def get_bucket(self, ip: str) -> TokenBucket:
        """Return the bucket for ip, creating it on first sight."""
        shard = self._shard(ip)
        with shard.lock:
            bucket = shard.buckets.get(ip)
            if bucket is None:
                bucket = TokenBucket(self.capacity, self.refill_rate, clock=self._clock)
                shard.buckets[ip] = bucket
            shard.last_seen[ip] = self._clock()
        return bucket

    def allow(self, ip: str) -> bool:
        return self.get_bucket(ip).consume()

    def retry_after(self, ip: str) -> int:
        return self.get_bucket(ip).retry_after()

    def __len__(self) -> int:
        return sum(len(s.buckets) for s in self._shards)

    def evict_idle(self, max_idle_seconds: float) -> int:
        """Drop buckets unused for longer than max_idle_seconds. Returns how many."""
        cutoff = self._clock() - max_idle_seconds
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                stale = [ip for ip, seen in shard.last_seen.items() if seen < cutoff]
                for ip in stale:
                    del shard.buckets[ip]
                    del shard.last_seen[ip]
                evicted += len(stale)
        return evicted
