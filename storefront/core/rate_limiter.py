from __future__ import annotations

import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Mapping

from redis import Redis
from redis.exceptions import RedisError

from storefront.core import config
from storefront.core.errors import RateLimitExceeded
from storefront.core.metrics import request_metrics

logger = logging.getLogger(__name__)

ROUTE_CHECKOUT = "checkout"
ROUTE_COUPON = "coupon"
ROUTE_ORDER_LOOKUP = "order_lookup"

Clock = Callable[[], float]


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int


def parse_rule(raw: str) -> RateLimitRule:
    """Parses a ``"<limit>/<seconds>"`` budget, e.g. ``"10/60"``."""
    try:
        limit_raw, window_raw = (raw or "").split("/", 1)
        limit = int(limit_raw.strip())
        window_seconds = int(window_raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid rate limit budget: {raw!r}") from exc
    if limit < 1 or window_seconds < 1:
        raise ValueError(f"Invalid rate limit budget: {raw!r}")
    return RateLimitRule(limit=limit, window_seconds=window_seconds)


class RateLimitBackendUnavailable(Exception):
    pass


class RateLimitBackend(ABC):
    @abstractmethod
    def hit(self, *, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        """Counts one call for ``key`` and decides if it fits the trailing window."""


class InMemorySlidingWindowBackend(RateLimitBackend):
    """Sliding-window log kept in process memory.

    Only suitable for a single worker (dev/test); production uses Redis.
    """

    SWEEP_INTERVAL_SECONDS = 60

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock
        self._store: dict[str, deque[float]] = {}
        self._windows: dict[str, int] = {}
        self._last_sweep = clock()
        self._lock = Lock()

    def _sweep(self, now: float) -> None:
        # Drops callers whose whole log has aged out of their window.
        stale = [
            key
            for key, bucket in self._store.items()
            if not bucket or bucket[-1] <= now - self._windows.get(key, 0)
        ]
        for key in stale:
            self._store.pop(key, None)
            self._windows.pop(key, None)
        self._last_sweep = now

    def hit(self, *, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()

        with self._lock:
            if now - self._last_sweep >= self.SWEEP_INTERVAL_SECONDS:
                self._sweep(now)
            self._windows[key] = window_seconds
            bucket = self._store.setdefault(key, deque())
            cutoff = now - window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            bucket.append(now)
            if len(bucket) > limit:
                bucket.pop()
                return RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    reset_at=math.ceil(bucket[0] + window_seconds),
                )

            return RateLimitDecision(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - len(bucket)),
                reset_at=math.ceil(bucket[0] + window_seconds),
            )


class RedisSlidingWindowBackend(RateLimitBackend):
    """Sliding-window log in a Redis sorted set, one member per call.

    The prune/add/count runs inside MULTI/EXEC so concurrent callers never
    observe a half-applied increment. A rejected call removes its own member
    afterwards; until then other callers may count it, which can only cause
    an extra rejection, never an extra admission.
    """

    def __init__(self, client: Redis, *, clock: Clock = time.time) -> None:
        self._client = client
        self._clock = clock

    @classmethod
    def from_url(cls, url: str) -> "RedisSlidingWindowBackend":
        client = Redis.from_url(url, socket_timeout=0.5, socket_connect_timeout=0.5)
        return cls(client)

    def hit(self, *, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", now - window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, window_seconds + 1)
            _, _, count, oldest, _ = pipe.execute()

            allowed = int(count) <= limit
            if not allowed:
                self._client.zrem(key, member)
        except (RedisError, OSError) as exc:
            raise RateLimitBackendUnavailable(str(exc)) from exc

        oldest_score = float(oldest[0][1]) if oldest else now
        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - int(count)) if allowed else 0,
            reset_at=math.ceil(oldest_score + window_seconds),
        )


class RateLimiter:
    """Per-route-class, per-caller gate in front of the business logic.

    With no backend (unconfigured) or an unreachable one, every call is
    admitted: the storefront stays up when the counter store does not.
    """

    def __init__(
        self,
        backend: RateLimitBackend | None,
        rules: Mapping[str, RateLimitRule],
        *,
        prefix: str = "ratelimit",
    ) -> None:
        self.backend = backend
        self.rules = dict(rules)
        self.prefix = prefix

    def _rule_for(self, route_class: str) -> RateLimitRule:
        try:
            return self.rules[route_class]
        except KeyError as exc:
            raise ValueError(f"Unknown rate limit route class: {route_class}") from exc

    def _admit_without_counting(self, rule: RateLimitRule) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=rule.limit,
            remaining=rule.limit,
            reset_at=math.ceil(time.time() + rule.window_seconds),
        )

    def check(self, route_class: str, identity: str) -> RateLimitDecision:
        rule = self._rule_for(route_class)
        if self.backend is None:
            return self._admit_without_counting(rule)

        key = f"{self.prefix}:{route_class}:{identity}"
        try:
            decision = self.backend.hit(key=key, limit=rule.limit, window_seconds=rule.window_seconds)
        except RateLimitBackendUnavailable:
            logger.warning(
                "Rate limit backend unavailable, admitting request",
                extra={"route_class": route_class},
                exc_info=True,
            )
            request_metrics.observe_rate_limit(route_class, allowed=True, fail_open=True)
            return self._admit_without_counting(rule)

        request_metrics.observe_rate_limit(route_class, allowed=decision.allowed)
        return decision

    def enforce(self, route_class: str, identity: str) -> RateLimitDecision:
        decision = self.check(route_class, identity)
        if not decision.allowed:
            logger.info(
                "Rate limit exceeded identity=%s",
                identity,
                extra={"route_class": route_class},
            )
            raise RateLimitExceeded(
                limit=decision.limit,
                remaining=decision.remaining,
                reset_at=decision.reset_at,
            )
        return decision


def build_rate_limiter() -> RateLimiter:
    rules = {route_class: parse_rule(raw) for route_class, raw in config.RATE_LIMIT_BUDGETS.items()}

    backend: RateLimitBackend | None = None
    if config.RATE_LIMIT_BACKEND == "memory":
        backend = InMemorySlidingWindowBackend()
    elif config.RATE_LIMIT_BACKEND == "redis" and config.REDIS_URL:
        backend = RedisSlidingWindowBackend.from_url(config.REDIS_URL)
    else:
        logger.warning("Rate limiting disabled: no counting backend configured")

    return RateLimiter(backend, rules)
