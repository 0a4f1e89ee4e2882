"""Tests for fixed-window rate limiting."""

import threading

from diagram_forge.config import RateLimitConfig, RateLimitRule
from diagram_forge.content.rate_limiter import (
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    build_counter_store,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _limiter(clock: FakeClock, **rules) -> RateLimiter:
    config = RateLimitConfig(**{k: RateLimitRule(*v) for k, v in rules.items()})
    return RateLimiter(InMemoryCounterStore(clock=clock), config)


def test_nth_allowed_next_denied_then_reset():
    clock = FakeClock(60_000.0)  # start of a minute window
    limiter = _limiter(clock, moderation_submit_minute=(5, 60))

    for i in range(5):
        result = limiter.check_moderation_submission("u1")
        assert result.allowed, i
        assert result.count == i + 1

    denied = limiter.check_moderation_submission("u1")
    assert denied.denied
    assert denied.limit == 5
    assert denied.key == "moderation_submit:user:minute:u1"

    clock.advance(60)
    assert limiter.check_moderation_submission("u1").allowed


def test_users_are_independent():
    limiter = _limiter(FakeClock(), moderation_submit_minute=(1, 60))
    assert limiter.check_moderation_submission("u1").allowed
    assert limiter.check_moderation_submission("u1").denied
    assert limiter.check_moderation_submission("u2").allowed


def test_content_creation_minute_window():
    clock = FakeClock(120_000.0)
    limiter = _limiter(clock)  # defaults: 10/min, 100/day

    for _ in range(10):
        assert limiter.check_content_creation("u1").allowed
    result = limiter.check_content_creation("u1")
    assert result.denied
    assert result.key == "content_create:user:minute:u1"


def test_content_creation_day_window():
    clock = FakeClock(86_400.0 * 10)
    limiter = _limiter(clock, content_create_minute=(100, 60), content_create_day=(3, 86_400))

    for _ in range(3):
        assert limiter.check_content_creation("u1").allowed
        clock.advance(61)
    result = limiter.check_content_creation("u1")
    assert result.denied
    assert result.key == "content_create:user:day:u1"


def test_ip_limit():
    limiter = _limiter(FakeClock())
    for _ in range(5):
        assert limiter.check_ip_limit("10.0.0.1").allowed
    assert limiter.check_ip_limit("10.0.0.1").denied
    assert limiter.check_ip_limit("10.0.0.2").allowed


def test_remaining_quota():
    clock = FakeClock(60_000.0)
    limiter = _limiter(clock)
    assert limiter.get_remaining_quota("u1") == {"minute": 10, "day": 100}

    for _ in range(3):
        limiter.check_content_creation("u1")
    assert limiter.get_remaining_quota("u1") == {"minute": 7, "day": 97}
    # peeking does not consume
    assert limiter.get_remaining_quota("u1") == {"minute": 7, "day": 97}

    clock.advance(60)
    assert limiter.get_remaining_quota("u1") == {"minute": 10, "day": 97}


def test_quota_never_negative():
    limiter = _limiter(FakeClock(), content_create_minute=(1, 60))
    for _ in range(3):
        limiter.check_content_creation("u1")
    assert limiter.get_remaining_quota("u1")["minute"] == 0


def test_concurrent_hits_never_exceed_limit():
    limiter = RateLimiter(
        InMemoryCounterStore(),
        RateLimitConfig(moderation_submit_minute=RateLimitRule(limit=20, window_seconds=3600)),
    )
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(10):
            r = limiter.check_moderation_submission("shared")
            with lock:
                results.append(r.allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 20
    assert results.count(False) == 60


def test_expired_buckets_are_pruned():
    clock = FakeClock(60_000.0)
    store = InMemoryCounterStore(clock=clock)
    store.hit("k", 60)
    clock.advance(120)
    store.hit("other", 60)
    assert store.peek("k", 60) == 0
    assert len(store._counters) == 1


def test_pruning_waits_for_earliest_expiry():
    clock = FakeClock(60_000.0)
    store = InMemoryCounterStore(clock=clock)
    store.hit("minute", 60)
    store.hit("day", 86_400)
    assert store._next_expiry == 60_060

    clock.advance(30)
    store.hit("minute", 60)
    assert len(store._counters) == 2

    clock.advance(60)
    store.hit("other", 60)
    assert sorted(k.split(":")[0] for k in store._counters) == ["day", "other"]
    assert store._next_expiry == 60_120


class FakePipeline:
    def __init__(self, data: dict):
        self.data = data
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        results = []
        for op in self.ops:
            if op[0] == "incr":
                self.data[op[1]] = self.data.get(op[1], 0) + 1
                results.append(self.data[op[1]])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self):
        self.data: dict = {}
        self.pipelines: list[FakePipeline] = []

    def pipeline(self, transaction=True):
        assert transaction
        pipe = FakePipeline(self.data)
        self.pipelines.append(pipe)
        return pipe

    def get(self, key):
        value = self.data.get(key)
        return None if value is None else str(value)


def test_redis_store_increments_with_ttl():
    client = FakeRedis()
    store = RedisCounterStore(client, prefix="test")

    assert store.hit("content_create:user:minute:u1", 60) == 1
    assert store.hit("content_create:user:minute:u1", 60) == 2
    assert store.peek("content_create:user:minute:u1", 60) == 2
    assert store.peek("content_create:user:minute:u2", 60) == 0

    ops = client.pipelines[0].ops
    assert ops[0][0] == "incr"
    assert ops[0][1].startswith("test:content_create:user:minute:u1:")
    assert ops[1] == ("expire", ops[0][1], 60)


def test_limiter_over_redis_store():
    limiter = RateLimiter(
        RedisCounterStore(FakeRedis()),
        RateLimitConfig(ip_minute=RateLimitRule(limit=2, window_seconds=3600)),
    )
    assert limiter.check_ip_limit("1.2.3.4").allowed
    assert limiter.check_ip_limit("1.2.3.4").allowed
    assert limiter.check_ip_limit("1.2.3.4").denied


def test_build_counter_store_defaults_to_memory():
    assert isinstance(build_counter_store(RateLimitConfig()), InMemoryCounterStore)


def test_build_counter_store_redis_url():
    store = build_counter_store(RateLimitConfig(redis_url="redis://localhost:6379/0"))
    assert isinstance(store, RedisCounterStore)
