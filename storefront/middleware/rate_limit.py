from __future__ import annotations

import logging
import re
from typing import Iterable

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.errors import RateLimitExceeded
from storefront.core.http_errors import error_response, rate_limit_headers
from storefront.core.rate_limiter import ROUTE_CHECKOUT, ROUTE_COUPON, ROUTE_ORDER_LOOKUP, RateLimiter
from storefront.core.request_context import resolve_client_ip

logger = logging.getLogger(__name__)

RouteRule = tuple[str, re.Pattern, str]

DEFAULT_ROUTE_CLASSES: list[RouteRule] = [
    ("POST", re.compile(r"^/api/checkout/?$"), ROUTE_CHECKOUT),
    ("POST", re.compile(r"^/api/coupons/validate/?$"), ROUTE_COUPON),
    ("GET", re.compile(r"^/api/orders/[^/]+/?$"), ROUTE_ORDER_LOOKUP),
]


class RouteRateLimitMiddleware(BaseHTTPMiddleware):
    """Applies the per-route-class budget before the request reaches a router.

    The limiter is read from ``app.state.rate_limiter`` on every request so it
    can be swapped at runtime; when absent every request passes.
    """

    def __init__(self, app, *, route_classes: Iterable[RouteRule] | None = None) -> None:
        super().__init__(app)
        self._route_classes = list(route_classes or DEFAULT_ROUTE_CLASSES)

    def _route_class_for(self, method: str, path: str) -> str | None:
        for rule_method, pattern, route_class in self._route_classes:
            if rule_method == method and pattern.match(path):
                return route_class
        return None

    async def dispatch(self, request: Request, call_next):
        route_class = self._route_class_for(request.method, request.url.path)
        rate_limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if route_class is None or rate_limiter is None:
            return await call_next(request)

        identity = resolve_client_ip(request)
        try:
            decision = await run_in_threadpool(rate_limiter.enforce, route_class, identity)
        except RateLimitExceeded as exc:
            return error_response(exc)

        response = await call_next(request)
        response.headers.update(rate_limit_headers(limit=decision.limit, remaining=decision.remaining))
        return response
