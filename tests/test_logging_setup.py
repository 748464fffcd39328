import io
import json
import logging

import pytest

from storefront.core.logging_setup import configure_logging
from storefront.core.request_context import clear_request_context, set_request_context


@pytest.fixture
def json_stream():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    configure_logging()
    stream = io.StringIO()
    root.handlers[0].setStream(stream)
    yield stream
    clear_request_context()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def _lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_records_are_written_as_one_json_line(json_stream) -> None:
    logging.getLogger("storefront.services.activity_log").warning(
        "Activity log append failed action=%s", "status_change", extra={"order_id": 7}
    )

    [line] = _lines(json_stream)
    assert line["message"] == "Activity log append failed action=status_change"
    assert line["level"] == "WARNING"
    assert line["module"] == "storefront.services.activity_log"
    assert line["order_id"] == 7


def test_request_context_and_exceptions_are_included(json_stream) -> None:
    set_request_context(request_id="req-123", client_ip="203.0.113.9")
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logging.getLogger("storefront.services.event_bus").exception("EventBus handler %s failed", "notify")

    [line] = _lines(json_stream)
    assert line["message"] == "EventBus handler notify failed"
    assert line["request_id"] == "req-123"
    assert line["client_ip"] == "203.0.113.9"
    assert "RuntimeError: boom" in line["exception"]


def test_secrets_are_masked_in_messages(json_stream) -> None:
    logging.getLogger("storefront").warning("Webhook rejected secret=whsec-live token=abc123")

    [line] = _lines(json_stream)
    assert "whsec-live" not in line["message"]
    assert "abc123" not in line["message"]
    assert line["message"] == "Webhook rejected secret=*** token=***"
