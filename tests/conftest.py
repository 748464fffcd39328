from __future__ import annotations

import os

os.environ["ENV"] = "test"
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_URL"] = ""
os.environ["RATE_LIMIT_BACKEND"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec-test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from storefront.core import database
from storefront.core.database import Base, SessionLocal
from storefront.core.rate_limiter import InMemorySlidingWindowBackend, RateLimiter, RateLimitRule
import storefront.models  # noqa: F401
import storefront.services.event_handlers  # noqa: F401
from storefront.notifications.service import notification_service


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=test_engine)
    # Event handlers open their own sessions through SessionLocal.
    SessionLocal.configure(bind=test_engine)
    try:
        yield test_engine
    finally:
        SessionLocal.configure(bind=database.engine)
        test_engine.dispose()


@pytest.fixture
def db(engine):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def outbox():
    provider = notification_service.provider
    provider.outbox.clear()
    yield provider.outbox
    provider.outbox.clear()


@pytest.fixture
def rate_limiter():
    return RateLimiter(
        InMemorySlidingWindowBackend(),
        {
            "checkout": RateLimitRule(limit=10, window_seconds=60),
            "coupon": RateLimitRule(limit=20, window_seconds=60),
            "order_lookup": RateLimitRule(limit=30, window_seconds=60),
        },
    )


@pytest.fixture
def client(engine, rate_limiter, monkeypatch):
    from storefront import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)
    monkeypatch.setattr(main.app.state, "rate_limiter", rate_limiter)

    with TestClient(main.app) as test_client:
        yield test_client
