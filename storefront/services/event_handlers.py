from __future__ import annotations

from sqlalchemy.orm import Session

from storefront.core.database import SessionLocal
from storefront.notifications.base import NotificationKind, NotificationResult, mask_email
from storefront.notifications.service import notification_service
from storefront.services.activity_log import ACTION_EMAIL_SENT, append_activity
from storefront.services.event_bus import event_bus
from storefront.services.order_events import (
    EVENT_ORDER_CANCELLED,
    EVENT_ORDER_CONFIRMED,
    EVENT_ORDER_REFUNDED,
    EVENT_ORDER_SHIPPED,
    EVENT_USER_WELCOME,
)


def _with_session(handler):
    def wrapper(payload: dict) -> None:
        db: Session = SessionLocal()
        try:
            handler(db, payload)
        finally:
            db.close()

    wrapper.__name__ = handler.__name__
    return wrapper


def _record_email_sent(db: Session, payload: dict, kind: NotificationKind, result: NotificationResult) -> None:
    if not result.delivered or not payload.get("order_id"):
        return
    append_activity(
        db,
        order_id=payload["order_id"],
        action_type=ACTION_EMAIL_SENT,
        new_value={"kind": kind.value, "recipient": mask_email(payload.get("customer_email"))},
        metadata={"provider": result.provider, "provider_message_id": result.provider_message_id},
    )


def _send_order_email(db: Session, payload: dict, kind: NotificationKind) -> None:
    result = notification_service.notify(kind, payload.get("customer_email"), payload)
    _record_email_sent(db, payload, kind, result)


@_with_session
def handle_order_confirmed(db: Session, payload: dict) -> None:
    _send_order_email(db, payload, NotificationKind.ORDER_CONFIRMATION)


@_with_session
def handle_order_shipped(db: Session, payload: dict) -> None:
    _send_order_email(db, payload, NotificationKind.ORDER_SHIPPED)


@_with_session
def handle_order_cancelled(db: Session, payload: dict) -> None:
    _send_order_email(db, payload, NotificationKind.ORDER_CANCELLED)


@_with_session
def handle_order_refunded(db: Session, payload: dict) -> None:
    _send_order_email(db, payload, NotificationKind.ORDER_REFUNDED)


def handle_user_welcome(payload: dict) -> None:
    notification_service.notify(NotificationKind.WELCOME, payload.get("customer_email"), payload)


event_bus.subscribe(EVENT_ORDER_CONFIRMED, handle_order_confirmed)
event_bus.subscribe(EVENT_ORDER_SHIPPED, handle_order_shipped)
event_bus.subscribe(EVENT_ORDER_CANCELLED, handle_order_cancelled)
event_bus.subscribe(EVENT_ORDER_REFUNDED, handle_order_refunded)
event_bus.subscribe(EVENT_USER_WELCOME, handle_user_welcome)
