from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class NotificationKind(str, Enum):
    ORDER_CONFIRMATION = "order-confirmation"
    ORDER_SHIPPED = "order-shipped"
    ORDER_CANCELLED = "order-cancelled"
    ORDER_REFUNDED = "order-refunded"
    WELCOME = "welcome"


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


@dataclass
class NotificationResult:
    status: str
    provider: str
    provider_message_id: str | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status == "sent"


class EmailProvider(Protocol):
    name: str

    def send(
        self,
        *,
        to: str,
        email: RenderedEmail,
        tags: dict[str, Any] | None = None,
    ) -> NotificationResult:
        ...


SENSITIVE_KEYS = {"access_token", "authorization", "token", "api_key", "secret"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)


def mask_email(address: str | None) -> str:
    local, _, domain = (address or "").partition("@")
    if not domain:
        return "****"
    return f"{local[:1]}***@{domain}"
