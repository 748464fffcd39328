from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.core.errors import RateLimitExceeded
from storefront.core.metrics import InMemoryRequestMetrics
from storefront.core import rate_limiter as rate_limiter_module
from storefront.core.rate_limiter import (
    InMemorySlidingWindowBackend,
    RateLimitBackend,
    RateLimitBackendUnavailable,
    RateLimiter,
    RateLimitRule,
    RedisSlidingWindowBackend,
    parse_rule,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class DownBackend(RateLimitBackend):
    def hit(self, *, key, limit, window_seconds):
        raise RateLimitBackendUnavailable("connection refused")


@pytest.fixture(autouse=True)
def isolated_metrics(monkeypatch):
    metrics = InMemoryRequestMetrics()
    monkeypatch.setattr(rate_limiter_module, "request_metrics", metrics)
    return metrics


def test_parse_rule_reads_limit_and_window() -> None:
    assert parse_rule("10/60") == RateLimitRule(limit=10, window_seconds=60)
    assert parse_rule(" 20 / 30 ") == RateLimitRule(limit=20, window_seconds=30)


@pytest.mark.parametrize("raw", ["", "10", "ten/60", "0/60", "10/0"])
def test_parse_rule_rejects_malformed_budgets(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_rule(raw)


def test_eleventh_call_in_window_is_rejected() -> None:
    clock = FakeClock()
    limiter = RateLimiter(InMemorySlidingWindowBackend(clock=clock), {"checkout": RateLimitRule(10, 60)})

    remaining = []
    for _ in range(10):
        clock.now += 1
        decision = limiter.check("checkout", "203.0.113.9")
        assert decision.allowed is True
        remaining.append(decision.remaining)

    clock.now += 1
    rejected = limiter.check("checkout", "203.0.113.9")

    assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
    assert rejected.allowed is False
    assert rejected.remaining == 0
    assert rejected.limit == 10
    assert rejected.reset_at == 1_061


def test_window_slides_instead_of_resetting() -> None:
    clock = FakeClock()
    limiter = RateLimiter(InMemorySlidingWindowBackend(clock=clock), {"coupon": RateLimitRule(2, 60)})

    assert limiter.check("coupon", "ip").allowed
    clock.now += 30
    assert limiter.check("coupon", "ip").allowed
    clock.now += 20
    assert limiter.check("coupon", "ip").allowed is False

    # First call falls out of the trailing window at t=60.
    clock.now += 10
    assert limiter.check("coupon", "ip").allowed is True
    assert limiter.check("coupon", "ip").allowed is False


def test_rejected_calls_do_not_extend_the_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(InMemorySlidingWindowBackend(clock=clock), {"coupon": RateLimitRule(1, 60)})

    assert limiter.check("coupon", "ip").allowed
    for _ in range(5):
        clock.now += 10
        assert limiter.check("coupon", "ip").allowed is False

    clock.now += 10
    assert limiter.check("coupon", "ip").allowed is True


def test_counters_are_per_identity_and_per_route_class() -> None:
    limiter = RateLimiter(
        InMemorySlidingWindowBackend(clock=FakeClock()),
        {"checkout": RateLimitRule(1, 60), "order_lookup": RateLimitRule(1, 60)},
    )

    assert limiter.check("checkout", "1.1.1.1").allowed
    assert limiter.check("checkout", "2.2.2.2").allowed
    assert limiter.check("order_lookup", "1.1.1.1").allowed
    assert limiter.check("checkout", "1.1.1.1").allowed is False


def test_idle_callers_are_evicted_from_memory() -> None:
    clock = FakeClock()
    backend = InMemorySlidingWindowBackend(clock=clock)

    for octet in range(1, 6):
        backend.hit(key=f"checkout:10.0.0.{octet}", limit=10, window_seconds=60)
    clock.now += 30
    backend.hit(key="checkout:10.0.0.99", limit=10, window_seconds=60)
    assert len(backend._store) == 6

    clock.now += 40
    decision = backend.hit(key="checkout:10.0.0.200", limit=10, window_seconds=60)

    assert decision.allowed is True
    assert set(backend._store) == {"checkout:10.0.0.99", "checkout:10.0.0.200"}


def test_enforce_raises_with_retry_metadata() -> None:
    limiter = RateLimiter(InMemorySlidingWindowBackend(clock=FakeClock()), {"checkout": RateLimitRule(1, 60)})
    limiter.enforce("checkout", "ip")

    with pytest.raises(RateLimitExceeded) as exc_info:
        limiter.enforce("checkout", "ip")

    assert exc_info.value.status_code == 429
    assert exc_info.value.limit == 1
    assert exc_info.value.remaining == 0
    assert exc_info.value.reset_at == 1_060


def test_unknown_route_class_is_a_programming_error() -> None:
    limiter = RateLimiter(None, {"checkout": RateLimitRule(1, 60)})

    with pytest.raises(ValueError):
        limiter.check("admin", "ip")


def test_missing_backend_admits_without_counting() -> None:
    limiter = RateLimiter(None, {"checkout": RateLimitRule(1, 60)})

    for _ in range(5):
        decision = limiter.check("checkout", "ip")
        assert decision.allowed is True
        assert decision.remaining == 1


def test_unreachable_backend_fails_open_and_is_counted(isolated_metrics) -> None:
    limiter = RateLimiter(DownBackend(), {"checkout": RateLimitRule(1, 60)})

    assert limiter.enforce("checkout", "ip").allowed is True
    assert limiter.enforce("checkout", "ip").allowed is True
    assert isolated_metrics.snapshot_rate_limits()["checkout"]["fail_open"] == 2


def test_decisions_are_recorded_in_metrics(isolated_metrics) -> None:
    limiter = RateLimiter(InMemorySlidingWindowBackend(clock=FakeClock()), {"coupon": RateLimitRule(1, 60)})

    limiter.check("coupon", "ip")
    limiter.check("coupon", "ip")

    stats = isolated_metrics.snapshot_rate_limits()["coupon"]
    assert stats["admitted"] == 1
    assert stats["rejected"] == 1


def _redis_client(count: int, oldest_score: float) -> MagicMock:
    client = MagicMock()
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [0, 1, count, [(b"member", oldest_score)], True]
    return client


def test_redis_backend_admits_within_limit() -> None:
    client = _redis_client(count=3, oldest_score=990.0)
    backend = RedisSlidingWindowBackend(client, clock=FakeClock(1_000.0))

    decision = backend.hit(key="ratelimit:checkout:ip", limit=10, window_seconds=60)

    assert decision.allowed is True
    assert decision.remaining == 7
    assert decision.reset_at == 1_050
    client.pipeline.assert_called_once_with(transaction=True)
    pipe = client.pipeline.return_value
    pipe.zremrangebyscore.assert_called_once_with("ratelimit:checkout:ip", "-inf", 940.0)
    pipe.expire.assert_called_once_with("ratelimit:checkout:ip", 61)
    client.zrem.assert_not_called()


def test_redis_backend_removes_its_member_when_rejected() -> None:
    client = _redis_client(count=11, oldest_score=950.0)
    backend = RedisSlidingWindowBackend(client, clock=FakeClock(1_000.0))

    decision = backend.hit(key="ratelimit:checkout:ip", limit=10, window_seconds=60)

    assert decision.allowed is False
    assert decision.remaining == 0
    added_member = next(iter(client.pipeline.return_value.zadd.call_args.args[1]))
    client.zrem.assert_called_once_with("ratelimit:checkout:ip", added_member)


def test_redis_errors_surface_as_backend_unavailable() -> None:
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")
    backend = RedisSlidingWindowBackend(client, clock=FakeClock())

    with pytest.raises(RateLimitBackendUnavailable):
        backend.hit(key="k", limit=1, window_seconds=60)

    limiter = RateLimiter(backend, {"checkout": RateLimitRule(1, 60)})
    assert limiter.check("checkout", "ip").allowed is True
