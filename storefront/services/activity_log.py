from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from storefront.models.order_activity_log import OrderActivityLog

logger = logging.getLogger(__name__)

ACTION_STATUS_CHANGE = "status_change"
ACTION_REFUND = "refund"
ACTION_CANCELLATION = "cancellation"
ACTION_SHIPMENT = "shipment"
ACTION_EMAIL_SENT = "email_sent"
ACTION_NOTE_ADDED = "note_added"
ACTION_PAYMENT_CAPTURED = "payment_captured"
ACTION_COUPON_CREATED = "coupon_created"
ACTION_COUPON_UPDATED = "coupon_updated"


def append_activity(
    db: Session,
    *,
    order_id: Optional[int],
    action_type: str,
    performed_by: Optional[int] = None,
    previous_value: Optional[Mapping[str, Any]] = None,
    new_value: Optional[Mapping[str, Any]] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> OrderActivityLog | None:
    """Appends one audit row in its own commit.

    Runs after the change it records has already been committed; a failure
    here is logged and swallowed so it never undoes or fails that change.
    """
    try:
        entry = OrderActivityLog(
            order_id=order_id,
            performed_by=performed_by,
            action_type=action_type,
            previous_value=dict(previous_value) if previous_value is not None else None,
            new_value=dict(new_value) if new_value is not None else None,
            meta=dict(metadata) if metadata is not None else None,
        )
        db.add(entry)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Activity log append failed action=%s",
            action_type,
            extra={"order_id": order_id},
        )
        return None
    return entry


def list_for_order(db: Session, order_id: int, *, limit: int = 200) -> list[OrderActivityLog]:
    return (
        db.query(OrderActivityLog)
        .filter(OrderActivityLog.order_id == order_id)
        .order_by(OrderActivityLog.created_at.desc(), OrderActivityLog.id.desc())
        .limit(limit)
        .all()
    )
