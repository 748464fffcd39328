from __future__ import annotations

import httpx
import pytest

from storefront.models.order_activity_log import OrderActivityLog
from storefront.notifications import resend_provider
from storefront.notifications.base import NotificationKind, NotificationResult, mask_email, sanitize_payload
from storefront.notifications.mock_provider import MockEmailProvider
from storefront.notifications.resend_provider import ResendEmailProvider
from storefront.notifications.service import NotificationService, notification_service
from storefront.notifications.templates import format_euro, render
from storefront.services.event_bus import EventBus
from storefront.services.order_events import build_order_payload, emit_transition
from storefront.services.order_lifecycle import TransitionResult
from tests.fixtures_data import make_order

ORDER_PAYLOAD = {
    "order_id": 1,
    "order_number": "SWL-LOYW3V28-K9QZ",
    "customer_name": "Giulia",
    "customer_email": "giulia@example.com",
    "total": "1234.50",
    "carrier": "DHL",
    "tracking_number": "ABC123",
    "tracking_url": "https://www.dhl.com/it-it/home/tracciabilita.html?tracking-id=ABC123",
}


def _patch_transport(monkeypatch, handler) -> list[httpx.Request]:
    seen: list[httpx.Request] = []
    real_client = httpx.Client

    def recording_handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(recording_handler), **kwargs)

    monkeypatch.setattr(resend_provider.httpx, "Client", client_factory)
    return seen


def test_format_euro_uses_italian_separators() -> None:
    assert format_euro("1234.5") == "€1.234,50"
    assert format_euro(None) == "€0,00"


def test_shipped_template_includes_tracking() -> None:
    email = render(NotificationKind.ORDER_SHIPPED, ORDER_PAYLOAD)

    assert "SWL-LOYW3V28-K9QZ" in email.subject
    assert "ABC123" in email.text
    assert "Segui la spedizione: https://www.dhl.com/" in email.text
    assert email.html.startswith("<p>")


def test_confirmation_template_formats_total() -> None:
    email = render(NotificationKind.ORDER_CONFIRMATION, ORDER_PAYLOAD)

    assert email.subject.startswith("Conferma ordine #SWL-LOYW3V28-K9QZ")
    assert "€1.234,50" in email.text


def test_sanitize_payload_masks_secrets() -> None:
    payload = {"access_token": "abcdef123456", "nested": {"Authorization": "Bearer xyz"}, "order_number": "SWL-1"}

    assert sanitize_payload(payload) == {
        "access_token": "****3456",
        "nested": {"Authorization": "**** xyz"},
        "order_number": "SWL-1",
    }


def test_mask_email() -> None:
    assert mask_email("giulia@example.com") == "g***@example.com"
    assert mask_email(None) == "****"


def test_service_skips_missing_recipient() -> None:
    provider = MockEmailProvider()
    service = NotificationService(provider)

    result = service.notify(NotificationKind.WELCOME, None, {})

    assert result.status == "skipped"
    assert provider.outbox == []


def test_service_tags_order_emails() -> None:
    provider = MockEmailProvider()
    service = NotificationService(provider)

    result = service.notify(NotificationKind.ORDER_REFUNDED, "giulia@example.com", ORDER_PAYLOAD)

    assert result.delivered is True
    assert provider.outbox[0]["tags"] == {"kind": "order-refunded", "order_number": "SWL-LOYW3V28-K9QZ"}


def test_resend_posts_message(monkeypatch) -> None:
    seen = _patch_transport(monkeypatch, lambda request: httpx.Response(200, json={"id": "re_123"}))
    provider = ResendEmailProvider(api_key="re_test", api_url="https://api.resend.test/emails", sender="shop@test.it")

    result = provider.send(to="giulia@example.com", email=render(NotificationKind.WELCOME, {}), tags={"kind": "welcome"})

    assert result == NotificationResult(status="sent", provider="resend", provider_message_id="re_123")
    [request] = seen
    assert request.headers["Authorization"] == "Bearer re_test"
    assert b'"to":["giulia@example.com"]' in request.content.replace(b" ", b"")


def test_resend_retries_server_errors_then_fails(monkeypatch) -> None:
    seen = _patch_transport(monkeypatch, lambda request: httpx.Response(503, text="unavailable"))
    provider = ResendEmailProvider(api_key="re_test")

    result = provider.send(to="giulia@example.com", email=render(NotificationKind.WELCOME, {}))

    assert result.delivered is False
    assert len(seen) == ResendEmailProvider.MAX_RETRIES
    assert "503" in (result.error or "")


def test_resend_does_not_retry_client_errors(monkeypatch) -> None:
    seen = _patch_transport(monkeypatch, lambda request: httpx.Response(422, json={"message": "invalid"}))
    provider = ResendEmailProvider(api_key="re_test")

    result = provider.send(to="giulia@example.com", email=render(NotificationKind.WELCOME, {}))

    assert result.status == "failed"
    assert len(seen) == 1


def test_resend_network_errors_become_failed_result(monkeypatch) -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    seen = _patch_transport(monkeypatch, boom)
    provider = ResendEmailProvider(api_key="re_test")

    result = provider.send(to="giulia@example.com", email=render(NotificationKind.WELCOME, {}))

    assert result.status == "failed"
    assert len(seen) == ResendEmailProvider.MAX_RETRIES


def test_resend_without_key_fails_fast() -> None:
    result = ResendEmailProvider(api_key="").send(to="a@b.it", email=render(NotificationKind.WELCOME, {}))

    assert result.delivered is False


def test_event_bus_isolates_failing_handlers() -> None:
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.subscribe("order.shipped", broken)
    bus.subscribe("order.shipped", received.append)
    bus.subscribe("order.shipped", received.append)

    bus.emit("order.shipped", {"order_id": 1})

    assert received == [{"order_id": 1}]

    bus.unsubscribe("order.shipped", received.append)
    bus.emit("order.shipped", {"order_id": 2})
    assert received == [{"order_id": 1}]


def test_unchanged_transition_emits_nothing(db, outbox) -> None:
    order = make_order(db, status="shipped")

    emit_transition(TransitionResult(order=order, previous_status="shipped", changed=False))

    assert outbox == []


def test_shipped_transition_sends_email_and_records_it(db, outbox) -> None:
    order = make_order(db, status="shipped", tracking_number="ABC123", carrier="DHL")

    emit_transition(TransitionResult(order=order, previous_status="paid", changed=True))

    assert [message["tags"]["kind"] for message in outbox] == ["order-shipped"]
    db.expire_all()
    entry = db.query(OrderActivityLog).filter(OrderActivityLog.order_id == order.id).one()
    assert entry.action_type == "email_sent"
    assert entry.new_value == {"kind": "order-shipped", "recipient": "c***@example.com"}
    assert entry.meta["provider"] == "mock"


def test_failed_delivery_is_not_recorded(db, monkeypatch) -> None:
    order = make_order(db, status="cancelled")

    class FailingProvider:
        name = "failing"

        def send(self, *, to, email, tags=None):
            return NotificationResult(status="failed", provider=self.name, error="down")

    monkeypatch.setattr(notification_service, "_provider", FailingProvider())

    emit_transition(TransitionResult(order=order, previous_status="pending", changed=True))

    assert db.query(OrderActivityLog).filter(OrderActivityLog.order_id == order.id).count() == 0


def test_order_payload_has_no_access_token(db) -> None:
    order = make_order(db, access_token="a" * 64)

    payload = build_order_payload(order, previous_status="pending")

    assert "access_token" not in payload
    assert payload["order_number"] == order.order_number
    assert payload["total"] == "44.99"


@pytest.mark.parametrize("kind", list(NotificationKind))
def test_every_kind_renders(kind: NotificationKind) -> None:
    email = render(kind, ORDER_PAYLOAD)

    assert email.subject
    assert email.text
