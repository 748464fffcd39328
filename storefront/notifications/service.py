from __future__ import annotations

import logging
from typing import Any, Mapping

from storefront.core.config import RESEND_API_KEY
from storefront.notifications.base import EmailProvider, NotificationKind, NotificationResult, mask_email
from storefront.notifications.mock_provider import MockEmailProvider
from storefront.notifications.resend_provider import ResendEmailProvider
from storefront.notifications.templates import render

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, provider: EmailProvider | None = None) -> None:
        self._mock_provider = MockEmailProvider()
        self._provider = provider or self._select_provider()

    @property
    def provider(self) -> EmailProvider:
        return self._provider

    def _select_provider(self) -> EmailProvider:
        if RESEND_API_KEY:
            return ResendEmailProvider()
        return self._mock_provider

    def notify(self, kind: NotificationKind, recipient: str | None, payload: Mapping[str, Any]) -> NotificationResult:
        """Best-effort delivery; provider failures come back as a failed result."""
        if not recipient:
            logger.info("Notification skipped (no recipient) kind=%s", kind.value)
            return NotificationResult(status="skipped", provider=self._provider.name, error="missing_recipient")

        email = render(kind, payload)
        tags = {"kind": kind.value}
        if payload.get("order_number"):
            tags["order_number"] = payload["order_number"]

        result = self._provider.send(to=recipient, email=email, tags=tags)
        if result.delivered:
            logger.info("Notification sent kind=%s to=%s provider=%s", kind.value, mask_email(recipient), result.provider)
        else:
            logger.warning(
                "Notification failed kind=%s to=%s provider=%s error=%s",
                kind.value,
                mask_email(recipient),
                result.provider,
                result.error,
            )
        return result


notification_service = NotificationService()
