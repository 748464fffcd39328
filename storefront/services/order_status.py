"""Order status state machine.

    pending -> paid -> processing -> shipped -> delivered

``cancelled`` and ``refunded`` are side exits. ``delivered``, ``cancelled``
and ``refunded`` are terminal. There are no backward edges, so an order's
status never returns to a value it held before.
"""

from __future__ import annotations

from enum import Enum

from storefront.core.errors import InvalidTransitionError, ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)

STATUS_LABELS = {
    OrderStatus.PENDING: "In attesa di pagamento",
    OrderStatus.PAID: "Pagato",
    OrderStatus.PROCESSING: "In lavorazione",
    OrderStatus.SHIPPED: "Spedito",
    OrderStatus.DELIVERED: "Consegnato",
    OrderStatus.CANCELLED: "Annullato",
    OrderStatus.REFUNDED: "Rimborsato",
}


def parse_status(raw: str | None) -> OrderStatus:
    try:
        return OrderStatus((raw or "").strip().lower())
    except ValueError:
        raise ValidationError("Stato ordine non valido") from None


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: OrderStatus, requested: OrderStatus) -> None:
    if can_transition(current, requested):
        return
    if current in TERMINAL_STATUSES:
        message = f"L'ordine è {STATUS_LABELS[current].lower()} e non può più cambiare stato"
    else:
        message = (
            f"Impossibile passare da \"{STATUS_LABELS[current]}\" a \"{STATUS_LABELS[requested]}\""
        )
    raise InvalidTransitionError(current.value, requested.value, message)
