from __future__ import annotations

import logging
import uuid
from typing import Any

from storefront.notifications.base import EmailProvider, NotificationResult, RenderedEmail, mask_email, sanitize_payload

logger = logging.getLogger(__name__)


class MockEmailProvider(EmailProvider):
    name = "mock"

    def __init__(self) -> None:
        self.outbox: list[dict[str, Any]] = []

    def send(
        self,
        *,
        to: str,
        email: RenderedEmail,
        tags: dict[str, Any] | None = None,
    ) -> NotificationResult:
        message_id = f"mock-{uuid.uuid4().hex[:10]}"
        self.outbox.append({"id": message_id, "to": to, "subject": email.subject, "tags": dict(tags or {})})
        logger.info(
            "Email (mock) to=%s subject=%s tags=%s",
            mask_email(to),
            email.subject,
            sanitize_payload(dict(tags or {})),
        )
        return NotificationResult(status="sent", provider=self.name, provider_message_id=message_id)
