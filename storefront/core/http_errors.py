from __future__ import annotations

import time

from fastapi.responses import JSONResponse

from storefront.core.errors import RateLimitExceeded, StorefrontError


def rate_limit_headers(*, limit: int, remaining: int, reset_at: int | None = None) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
    }
    if reset_at is not None:
        headers["X-RateLimit-Reset"] = str(reset_at)
    return headers


def error_response(exc: StorefrontError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitExceeded):
        headers = rate_limit_headers(limit=exc.limit, remaining=exc.remaining, reset_at=exc.reset_at)
        headers["Retry-After"] = str(max(1, int(exc.reset_at - time.time())))
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)
