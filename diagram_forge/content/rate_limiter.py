"""Rate limiting for content submission and moderation requests.

Fixed-window counters keyed by ``operation:scope:window:identifier`` live in
an injected :class:`CounterStore`.  Each check increments and compares in one
atomic step, so two concurrent requests can never both take the last slot.

Default limits:

- per user: 10 submissions per minute and 100 per day
- per IP (unauthenticated): 5 per minute
- per user moderation submissions: 5 per minute

Usage::

    limiter = RateLimiter(InMemoryCounterStore())
    if not limiter.check_content_creation(user_id).allowed:
        ...  # "try again later"
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import redis

from diagram_forge.config import RateLimitConfig, RateLimitRule


@dataclass
class RateLimitResult:
    """Outcome of a rate-limit gate.  Denial is not an error."""

    allowed: bool
    key: str = ""
    count: int = 0
    limit: int = 0

    @property
    def denied(self) -> bool:
        return not self.allowed


# ---------------------------------------------------------------------------
# Counter stores
# ---------------------------------------------------------------------------


class CounterStore(ABC):
    """Atomic per-key counters that reset when their fixed window ends."""

    @abstractmethod
    def hit(self, key: str, window_seconds: int) -> int:
        """Increment *key* in the current window and return the new count."""

    @abstractmethod
    def peek(self, key: str, window_seconds: int) -> int:
        """Return the count of *key* in the current window without changing it."""


class InMemoryCounterStore(CounterStore):
    """Process-local store guarded by a lock.

    *clock* returns seconds; tests inject a fake one to move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # bucket key -> (count, expires_at)
        self._counters: dict[str, tuple[int, float]] = {}
        self._next_expiry = float("inf")

    def _bucket(self, key: str, window_seconds: int, now: float) -> tuple[str, float]:
        window = int(now // window_seconds)
        return f"{key}:{window}", (window + 1) * window_seconds

    def _prune(self, now: float) -> None:
        """Drop expired buckets; scans only once the earliest one has expired."""
        if now < self._next_expiry:
            return
        expired = [k for k, (_, expires_at) in self._counters.items() if expires_at <= now]
        for k in expired:
            del self._counters[k]
        self._next_expiry = min((e for _, e in self._counters.values()), default=float("inf"))

    def hit(self, key: str, window_seconds: int) -> int:
        with self._lock:
            now = self._clock()
            self._prune(now)
            bucket, expires_at = self._bucket(key, window_seconds, now)
            count = self._counters.get(bucket, (0, expires_at))[0] + 1
            self._counters[bucket] = (count, expires_at)
            self._next_expiry = min(self._next_expiry, expires_at)
            return count

    def peek(self, key: str, window_seconds: int) -> int:
        with self._lock:
            now = self._clock()
            bucket, _ = self._bucket(key, window_seconds, now)
            entry = self._counters.get(bucket)
            return entry[0] if entry else 0


class RedisCounterStore(CounterStore):
    """Shared store for multi-process deployments.

    ``INCR`` and ``EXPIRE`` run in one MULTI/EXEC transaction; ``INCR`` is
    atomic on the server, so the returned count is exact under concurrency.
    """

    def __init__(self, client: "redis.Redis", prefix: str = "diagram_forge:rate") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCounterStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _bucket(self, key: str, window_seconds: int) -> str:
        window = int(time.time() // window_seconds)
        return f"{self._prefix}:{key}:{window}"

    def hit(self, key: str, window_seconds: int) -> int:
        bucket = self._bucket(key, window_seconds)
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(bucket)
        pipe.expire(bucket, window_seconds)
        count, _ = pipe.execute()
        return int(count)

    def peek(self, key: str, window_seconds: int) -> int:
        value = self._client.get(self._bucket(key, window_seconds))
        return int(value) if value is not None else 0


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


def _key(operation: str, scope: str, window: str, identifier: str) -> str:
    return f"{operation}:{scope}:{window}:{identifier}"


class RateLimiter:
    """Independent yes/no gates in front of the moderation pipeline."""

    def __init__(self, store: CounterStore, config: Optional[RateLimitConfig] = None) -> None:
        self.store = store
        self.config = config or RateLimitConfig()

    def _check(self, key: str, rule: RateLimitRule) -> RateLimitResult:
        count = self.store.hit(key, rule.window_seconds)
        return RateLimitResult(allowed=count <= rule.limit, key=key, count=count, limit=rule.limit)

    def check_content_creation(self, user_id: str) -> RateLimitResult:
        """Per-user minute and day windows; both must allow."""
        minute = self._check(
            _key("content_create", "user", "minute", user_id),
            self.config.content_create_minute,
        )
        if minute.denied:
            return minute
        return self._check(
            _key("content_create", "user", "day", user_id),
            self.config.content_create_day,
        )

    def check_ip_limit(self, ip_address: str) -> RateLimitResult:
        """Stricter gate for unauthenticated submitters."""
        return self._check(_key("content_create", "ip", "minute", ip_address), self.config.ip_minute)

    def check_moderation_submission(self, user_id: str) -> RateLimitResult:
        """Stops rapid edit-and-resubmit probing of the moderator."""
        return self._check(
            _key("moderation_submit", "user", "minute", user_id),
            self.config.moderation_submit_minute,
        )

    def get_remaining_quota(self, user_id: str) -> dict[str, int]:
        """Remaining content-creation slots, without consuming any."""
        minute_rule = self.config.content_create_minute
        day_rule = self.config.content_create_day
        minute_used = self.store.peek(
            _key("content_create", "user", "minute", user_id), minute_rule.window_seconds
        )
        day_used = self.store.peek(
            _key("content_create", "user", "day", user_id), day_rule.window_seconds
        )
        return {
            "minute": max(0, minute_rule.limit - minute_used),
            "day": max(0, day_rule.limit - day_used),
        }


def build_counter_store(config: RateLimitConfig) -> CounterStore:
    """Redis when ``redis_url`` is configured, otherwise in-memory."""
    if config.redis_url:
        return RedisCounterStore.from_url(config.redis_url)
    return InMemoryCounterStore()
