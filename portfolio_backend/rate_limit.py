"""
Sliding-window rate limiting keyed by client address and operation name.

Supports an in-memory table for the usual single-process deployment and a
Redis-backed implementation when several processes must share the counts.
"""

from __future__ import annotations

import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional, Protocol, Tuple

import redis

DEFAULT_WINDOW_SECONDS = 15 * 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter(Protocol):
    """Minimal interface shared by the global and per-operation limits."""

    def check(
        self,
        operation: str,
        client_address: str,
        max_requests: int,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> RateLimitDecision:
        ...


def _retry_after(window_seconds: float) -> int:
    return max(1, math.ceil(window_seconds))


@dataclass
class _Entry:
    window_seconds: float
    timestamps: Deque[float] = field(default_factory=deque)


class InMemoryRateLimiter:
    """
    Process-local limiter.

    Every check prunes its own key. Keys whose newest timestamp has left the
    window are evicted by ``sweep``, which also runs every ``sweep_every``
    checks so the table stays bounded by the set of recently active clients.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 1000,
    ):
        self._clock = clock
        self._sweep_every = sweep_every
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()
        self._checks = 0

    def check(
        self,
        operation: str,
        client_address: str,
        max_requests: int,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._checks += 1
            if self._sweep_every and self._checks % self._sweep_every == 0:
                self._sweep_locked(now)

            key = (client_address, operation)
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry(window_seconds=window_seconds)
                self._entries[key] = entry
            entry.window_seconds = window_seconds

            window_start = now - window_seconds
            while entry.timestamps and entry.timestamps[0] <= window_start:
                entry.timestamps.popleft()

            if len(entry.timestamps) >= max_requests:
                return RateLimitDecision(
                    allowed=False, retry_after=_retry_after(window_seconds)
                )
            entry.timestamps.append(now)
            return RateLimitDecision(allowed=True)

    def sweep(self) -> int:
        """Evict stale keys; returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        stale = [
            key
            for key, entry in self._entries.items()
            if not entry.timestamps
            or entry.timestamps[-1] <= now - entry.window_seconds
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def reset(self) -> None:
        """Clear all counters (useful in tests)."""
        with self._lock:
            self._entries.clear()
            self._checks = 0


# Prune, count and record in one server-side step so concurrent checks
# cannot both pass the count before either records.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) >= limit then
    return 0
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, ARGV[5])
return 1
"""


@dataclass
class RedisRateLimiter:
    """Redis-backed limiter using one sorted set of timestamps per key."""

    url: str
    key_prefix: str = "portfolio:ratelimit"
    clock: Callable[[], float] = time.time
    client: Optional[redis.Redis] = None

    def __post_init__(self):
        if self.client is None:
            self.client = redis.Redis.from_url(self.url)
        self._script = self.client.register_script(SLIDING_WINDOW_SCRIPT)

    def _key(self, operation: str, client_address: str) -> str:
        return f"{self.key_prefix}:{operation}:{client_address}"

    def check(
        self,
        operation: str,
        client_address: str,
        max_requests: int,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> RateLimitDecision:
        key = self._key(operation, client_address)
        now = self.clock()
        # Keys expire on their own once the client goes quiet.
        window_ms = int(window_seconds * 1000)
        member = f"{now}:{uuid.uuid4().hex}"

        recorded = self._script(
            keys=[key],
            args=[now, window_seconds, max_requests, member, window_ms],
        )
        if not int(recorded):
            return RateLimitDecision(
                allowed=False, retry_after=_retry_after(window_seconds)
            )
        return RateLimitDecision(allowed=True)
