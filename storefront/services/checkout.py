from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core import config
from storefront.core.errors import ConflictError, ValidationError
from storefront.models.order import Order
from storefront.services.access_control import Principal, generate_access_token
from storefront.services.activity_log import ACTION_PAYMENT_CAPTURED, append_activity
from storefront.services.coupons import CENTS, CouponValidation, redeem_coupon, to_money, validate_coupon
from storefront.services.order_status import OrderStatus

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
ZERO = Decimal("0.00")


@dataclass
class CheckoutItem:
    name: str
    unit_price: Decimal
    quantity: int
    sku: Optional[str] = None


@dataclass
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal


@dataclass
class PlacedOrder:
    order: Order
    access_token: Optional[str]


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_order_number(prefix: Optional[str] = None, *, now_ms: Optional[int] = None) -> str:
    prefix = prefix or config.ORDER_NUMBER_PREFIX
    timestamp = _to_base36(now_ms if now_ms is not None else int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{timestamp}-{suffix}"


def compute_totals(subtotal: Decimal, discount_amount: Decimal = ZERO) -> OrderTotals:
    """total = subtotal + shipping + tax - discount, floored at zero.

    Free shipping is decided on the subtotal before discount; tax applies to
    the discounted goods.
    """
    subtotal = to_money(subtotal)
    discount_amount = min(to_money(discount_amount), subtotal)
    shipping_cost = ZERO if subtotal >= config.FREE_SHIPPING_THRESHOLD else to_money(config.SHIPPING_COST)
    taxable = max(ZERO, subtotal - discount_amount)
    tax_amount = (taxable * config.TAX_RATE_PERCENT / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)
    total = max(ZERO, subtotal + shipping_cost + tax_amount - discount_amount)
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total=total,
    )


def _subtotal(items: Iterable[CheckoutItem]) -> Decimal:
    subtotal = ZERO
    for item in items:
        if item.quantity < 1:
            raise ValidationError("Quantità non valida")
        price = to_money(item.unit_price)
        if price < 0:
            raise ValidationError("Prezzo non valido")
        subtotal += price * item.quantity
    return subtotal.quantize(CENTS)


def place_order(
    db: Session,
    *,
    items: list[CheckoutItem],
    email: str,
    shipping_address: dict[str, Any],
    principal: Optional[Principal] = None,
    coupon_code: Optional[str] = None,
    customer_note: Optional[str] = None,
) -> PlacedOrder:
    """Creates the order and, if a coupon is attached, redeems it atomically.

    Guest orders get a fresh capability token; it is returned to the caller
    once and is never part of a serialized order.
    """
    if not items:
        raise ValidationError("Il carrello è vuoto")
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email richiesta")

    subtotal = _subtotal(items)
    validation: Optional[CouponValidation] = None
    if coupon_code and coupon_code.strip():
        validation = validate_coupon(db, coupon_code, subtotal)

    totals = compute_totals(subtotal, validation.discount_amount if validation else ZERO)
    user_id = principal.user_id if principal is not None else None
    access_token = None if user_id is not None else generate_access_token()
    status = OrderStatus.PAID if totals.total == ZERO else OrderStatus.PENDING

    order = Order(
        order_number=generate_order_number(),
        status=status.value,
        user_id=user_id,
        access_token=access_token,
        customer_email=email,
        customer_name=(shipping_address.get("full_name") or "").strip(),
        shipping_address_json=dict(shipping_address),
        items_json=[
            {
                "name": item.name,
                "sku": item.sku,
                "unit_price": str(to_money(item.unit_price)),
                "quantity": item.quantity,
                "total_price": str(to_money(item.unit_price) * item.quantity),
            }
            for item in items
        ],
        subtotal=totals.subtotal,
        shipping_cost=totals.shipping_cost,
        tax_amount=totals.tax_amount,
        discount_amount=totals.discount_amount,
        total=totals.total,
        coupon_id=validation.coupon.id if validation else None,
        coupon_code=validation.coupon.code if validation else None,
        customer_note=(customer_note or "").strip() or None,
    )

    try:
        db.add(order)
        db.flush()
        if validation is not None:
            redeem_coupon(
                db,
                coupon_id=validation.coupon.id,
                order_id=order.id,
                discount_amount=totals.discount_amount,
                user_id=user_id,
            )
        db.commit()
    except ConflictError:
        db.rollback()
        raise
    except IntegrityError:
        db.rollback()
        logger.exception("Order insert failed")
        raise ConflictError("Impossibile creare l'ordine. Riprova.") from None

    db.refresh(order)
    logger.info(
        "Order placed status=%s total=%s coupon=%s",
        order.status,
        order.total,
        order.coupon_code,
        extra={"order_id": order.id},
    )

    if status == OrderStatus.PAID:
        append_activity(
            db,
            order_id=order.id,
            performed_by=user_id,
            action_type=ACTION_PAYMENT_CAPTURED,
            previous_value=None,
            new_value={"status": OrderStatus.PAID.value},
            metadata={"free_order": True, "coupon_code": order.coupon_code},
        )

    return PlacedOrder(order=order, access_token=access_token)
