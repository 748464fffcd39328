from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from fastapi import BackgroundTasks

from storefront.models.order import Order
from storefront.services.event_bus import event_bus
from storefront.services.order_status import OrderStatus

if TYPE_CHECKING:
    from storefront.services.order_lifecycle import TransitionResult

EVENT_STATUS_CHANGED = "order.status.changed"
EVENT_ORDER_CONFIRMED = "order.confirmed"
EVENT_ORDER_SHIPPED = "order.shipped"
EVENT_ORDER_CANCELLED = "order.cancelled"
EVENT_ORDER_REFUNDED = "order.refunded"
EVENT_USER_WELCOME = "user.welcome"

_STATUS_EVENTS = {
    OrderStatus.PAID.value: EVENT_ORDER_CONFIRMED,
    OrderStatus.SHIPPED.value: EVENT_ORDER_SHIPPED,
    OrderStatus.CANCELLED.value: EVENT_ORDER_CANCELLED,
    OrderStatus.REFUNDED.value: EVENT_ORDER_REFUNDED,
}


def build_order_payload(order: Order, previous_status: Optional[str] = None) -> dict[str, Any]:
    # Built eagerly: background tasks run after the request session is closed.
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "previous_status": previous_status,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "total": str(order.total),
        "tracking_number": order.tracking_number,
        "carrier": order.carrier,
        "tracking_url": order.tracking_url,
    }


def _dispatch(event_name: str, payload: dict[str, Any], background_tasks: Optional[BackgroundTasks]) -> None:
    if background_tasks is not None:
        background_tasks.add_task(event_bus.emit, event_name, payload)
    else:
        event_bus.emit(event_name, payload)


def emit_order_confirmed(order: Order, background_tasks: Optional[BackgroundTasks] = None) -> None:
    _dispatch(EVENT_ORDER_CONFIRMED, build_order_payload(order), background_tasks)


def emit_transition(result: "TransitionResult", background_tasks: Optional[BackgroundTasks] = None) -> None:
    if not result.changed:
        return
    payload = build_order_payload(result.order, previous_status=result.previous_status)
    _dispatch(EVENT_STATUS_CHANGED, payload, background_tasks)
    event_name = _STATUS_EVENTS.get(result.order.status)
    if event_name:
        _dispatch(event_name, payload, background_tasks)


def emit_user_welcome(
    *,
    user_id: int,
    email: str,
    full_name: Optional[str],
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    payload = {"user_id": user_id, "customer_email": email, "customer_name": full_name}
    _dispatch(EVENT_USER_WELCOME, payload, background_tasks)
