from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from storefront.core.config import EMAIL_FROM, RESEND_API_KEY, RESEND_API_URL
from storefront.notifications.base import EmailProvider, NotificationResult, RenderedEmail, mask_email

logger = logging.getLogger(__name__)


class ResendEmailProvider(EmailProvider):
    name = "resend"
    MAX_RETRIES = 2

    def __init__(
        self,
        *,
        api_key: str = RESEND_API_KEY,
        api_url: str = RESEND_API_URL,
        sender: str = EMAIL_FROM,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._sender = sender
        self._timeout = timeout

    def send(
        self,
        *,
        to: str,
        email: RenderedEmail,
        tags: dict[str, Any] | None = None,
    ) -> NotificationResult:
        if not self._api_key:
            return NotificationResult(status="failed", provider=self.name, error="Chiave API Resend mancante")

        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        payload: dict[str, Any] = {
            "from": self._sender,
            "to": [to],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
        }
        if tags:
            payload["tags"] = [{"name": str(key), "value": str(value)} for key, value in tags.items()]

        last_error: str | None = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(self._api_url, headers=headers, json=payload)
            except httpx.HTTPError as exc:
                last_error = str(exc)
                logger.warning("Resend request failed attempt=%s to=%s error=%s", attempt, mask_email(to), exc)
                continue

            if 200 <= response.status_code < 300:
                provider_id = None
                try:
                    provider_id = (response.json() or {}).get("id")
                except json.JSONDecodeError:
                    provider_id = None
                return NotificationResult(status="sent", provider=self.name, provider_message_id=provider_id)

            last_error = f"Errore Resend {response.status_code}: {response.text[:200]}"
            # 4xx other than throttling will not improve on retry.
            if 400 <= response.status_code < 500 and response.status_code != 429:
                break

        logger.warning("Resend delivery failed to=%s error=%s", mask_email(to), last_error)
        return NotificationResult(status="failed", provider=self.name, error=last_error)
