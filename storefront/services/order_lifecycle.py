"""Status changes for existing orders.

Every write is a conditional UPDATE keyed on the status read just before it
(``WHERE id = :id AND status = :expected``). If another request changed the
order in between, the UPDATE matches nothing and the caller gets a
``ConflictError`` instead of overwriting the other writer. Status equality is
a sufficient version check because the state machine has no backward edges.

The audit entry is appended after the status commit; see
:func:`storefront.services.activity_log.append_activity`. Notifications are
the router's job (``order_events.emit_transition``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from storefront.core.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.order import Order
from storefront.services.activity_log import (
    ACTION_CANCELLATION,
    ACTION_PAYMENT_CAPTURED,
    ACTION_REFUND,
    ACTION_SHIPMENT,
    ACTION_STATUS_CHANGE,
    append_activity,
)
from storefront.services.order_status import OrderStatus, ensure_transition, parse_status
from storefront.services.tracking import build_tracking_url

logger = logging.getLogger(__name__)

_ACTION_BY_STATUS = {
    OrderStatus.CANCELLED: ACTION_CANCELLATION,
    OrderStatus.REFUNDED: ACTION_REFUND,
}


@dataclass
class TransitionResult:
    order: Order
    previous_status: str
    changed: bool
    tracking_updated: bool = False

    @property
    def already_set(self) -> bool:
        return not self.changed and not self.tracking_updated


def _load_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError("Ordine non trovato")
    return order


def _load_order_by_number(db: Session, order_number: str) -> Order:
    order = db.query(Order).filter(Order.order_number == order_number).first()
    if order is None:
        raise NotFoundError("Ordine non trovato")
    return order


def _conditional_update(
    db: Session,
    order: Order,
    *,
    expected: OrderStatus,
    values: dict[str, Any],
) -> bool:
    """Applies ``values`` only if the order still has ``expected`` status.

    Returns False when a concurrent writer already moved the order to the
    same target status; raises ``ConflictError`` for any other outcome.
    """
    order_id = order.id
    rows = (
        db.query(Order)
        .filter(Order.id == order_id, Order.status == expected.value)
        .update(values, synchronize_session=False)
    )
    if rows == 1:
        db.commit()
        db.refresh(order)
        return True

    db.rollback()
    latest = db.query(Order).filter(Order.id == order_id).first()
    if latest is None:
        raise NotFoundError("Ordine non trovato")
    db.refresh(latest)

    target = values.get("status")
    if target is not None and latest.status == target and "tracking_number" not in values:
        logger.info(
            "Concurrent transition already applied status=%s",
            target,
            extra={"order_id": order_id},
        )
        return False

    logger.warning(
        "Order status changed concurrently expected=%s found=%s",
        expected.value,
        latest.status,
        extra={"order_id": order_id},
    )
    raise ConflictError()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def change_status(
    db: Session,
    *,
    order_id: int,
    requested_status: str,
    actor_id: Optional[int],
    reason: Optional[str] = None,
) -> TransitionResult:
    requested = parse_status(requested_status)
    order = _load_order(db, order_id)
    current = OrderStatus(order.status)

    if current == requested:
        return TransitionResult(order=order, previous_status=current.value, changed=False)

    ensure_transition(current, requested)

    now = _now()
    values: dict[str, Any] = {"status": requested.value, "updated_at": now}
    if requested == OrderStatus.PAID:
        values["paid_at"] = now

    if not _conditional_update(db, order, expected=current, values=values):
        return TransitionResult(order=order, previous_status=current.value, changed=False)

    metadata = {"reason": reason} if reason else None
    append_activity(
        db,
        order_id=order.id,
        performed_by=actor_id,
        action_type=_ACTION_BY_STATUS.get(requested, ACTION_STATUS_CHANGE),
        previous_value={"status": current.value},
        new_value={"status": requested.value},
        metadata=metadata,
    )
    logger.info("Order status changed %s -> %s", current.value, requested.value, extra={"order_id": order.id})
    return TransitionResult(order=order, previous_status=current.value, changed=True)


def mark_shipped(
    db: Session,
    *,
    order_id: int,
    tracking_number: Optional[str],
    carrier: Optional[str],
    actor_id: Optional[int],
    tracking_url: Optional[str] = None,
) -> TransitionResult:
    """Moves the order to ``shipped`` and stores tracking in one UPDATE.

    On an order that is already shipped the tracking details are corrected
    instead; that is audited but does not notify the customer again.
    """
    tracking_number = (tracking_number or "").strip()
    carrier = (carrier or "").strip()
    if not tracking_number or not carrier:
        raise ValidationError("Numero di tracking e corriere sono obbligatori")
    tracking_url = (tracking_url or "").strip() or build_tracking_url(carrier, tracking_number)

    order = _load_order(db, order_id)
    current = OrderStatus(order.status)
    tracking = {"tracking_number": tracking_number, "carrier": carrier, "tracking_url": tracking_url}

    if current == OrderStatus.SHIPPED:
        previous_tracking = {
            "tracking_number": order.tracking_number,
            "carrier": order.carrier,
            "tracking_url": order.tracking_url,
        }
        if previous_tracking == tracking:
            return TransitionResult(order=order, previous_status=current.value, changed=False)

        _conditional_update(db, order, expected=current, values={**tracking, "updated_at": _now()})
        append_activity(
            db,
            order_id=order.id,
            performed_by=actor_id,
            action_type=ACTION_SHIPMENT,
            previous_value={"status": current.value, **previous_tracking},
            new_value={"status": current.value, **tracking},
            metadata={"correction": True},
        )
        return TransitionResult(order=order, previous_status=current.value, changed=False, tracking_updated=True)

    ensure_transition(current, OrderStatus.SHIPPED)

    now = _now()
    _conditional_update(
        db,
        order,
        expected=current,
        values={"status": OrderStatus.SHIPPED.value, **tracking, "shipped_at": now, "updated_at": now},
    )
    append_activity(
        db,
        order_id=order.id,
        performed_by=actor_id,
        action_type=ACTION_SHIPMENT,
        previous_value={"status": current.value},
        new_value={"status": OrderStatus.SHIPPED.value, **tracking},
    )
    logger.info("Order shipped carrier=%s", carrier, extra={"order_id": order.id})
    return TransitionResult(order=order, previous_status=current.value, changed=True, tracking_updated=True)


def confirm_payment(
    db: Session,
    *,
    order_number: str,
    payment_reference: Optional[str] = None,
) -> TransitionResult:
    """Marks a pending order as paid after the processor captured the money.

    Redelivered confirmations for orders already past ``pending`` are
    acknowledged without changes.
    """
    order = _load_order_by_number(db, order_number)
    current = OrderStatus(order.status)

    if current != OrderStatus.PENDING:
        if current == OrderStatus.CANCELLED:
            ensure_transition(current, OrderStatus.PAID)
        logger.info("Payment confirmation for non-pending order status=%s", current.value, extra={"order_id": order.id})
        return TransitionResult(order=order, previous_status=current.value, changed=False)

    now = _now()
    values: dict[str, Any] = {"status": OrderStatus.PAID.value, "paid_at": now, "updated_at": now}
    if payment_reference:
        values["payment_reference"] = payment_reference

    if not _conditional_update(db, order, expected=current, values=values):
        return TransitionResult(order=order, previous_status=current.value, changed=False)

    append_activity(
        db,
        order_id=order.id,
        performed_by=None,
        action_type=ACTION_PAYMENT_CAPTURED,
        previous_value={"status": current.value},
        new_value={"status": OrderStatus.PAID.value},
        metadata={"payment_reference": payment_reference, "amount": str(order.total)},
    )
    return TransitionResult(order=order, previous_status=current.value, changed=True)
