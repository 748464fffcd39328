from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from storefront.models.order import Order
from storefront.models.order_activity_log import OrderActivityLog
from storefront.models.order_note import OrderNote


def _money(value: Any) -> float:
    return float(value if value is not None else Decimal("0"))


class ShippingAddress(BaseModel):
    full_name: str = Field(min_length=1, max_length=120)
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=120)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(default="IT", min_length=2, max_length=2)
    phone: Optional[str] = Field(default=None, max_length=30)
    province: Optional[str] = Field(default=None, max_length=40)


class CheckoutItemIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    sku: Optional[str] = Field(default=None, max_length=64)
    unit_price: Decimal = Field(ge=0, decimal_places=2)
    quantity: int = Field(ge=1, le=99)


class CheckoutRequest(BaseModel):
    items: list[CheckoutItemIn] = Field(min_length=1)
    email: str = Field(min_length=3, max_length=255)
    shipping_address: ShippingAddress
    coupon_code: Optional[str] = Field(default=None, max_length=64)
    note: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("Email non valida")
        return value


class OrderItemOut(BaseModel):
    name: str
    sku: Optional[str] = None
    unit_price: float
    quantity: int
    total_price: float


class OrderPublic(BaseModel):
    """Serialized order. Has no field for the guest access token."""

    id: int
    order_number: str
    status: str
    customer_name: str
    customer_email: str
    shipping_address: dict[str, Any]
    items: list[OrderItemOut]
    subtotal: float
    shipping_cost: float
    tax_amount: float
    discount_amount: float
    total: float
    coupon_code: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    tracking_url: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderPublic":
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            shipping_address=dict(order.shipping_address_json or {}),
            items=[
                OrderItemOut(
                    name=item.get("name", ""),
                    sku=item.get("sku"),
                    unit_price=_money(item.get("unit_price")),
                    quantity=int(item.get("quantity") or 0),
                    total_price=_money(item.get("total_price")),
                )
                for item in (order.items_json or [])
            ],
            subtotal=_money(order.subtotal),
            shipping_cost=_money(order.shipping_cost),
            tax_amount=_money(order.tax_amount),
            discount_amount=_money(order.discount_amount),
            total=_money(order.total),
            coupon_code=order.coupon_code,
            tracking_number=order.tracking_number,
            carrier=order.carrier,
            tracking_url=order.tracking_url,
            created_at=order.created_at,
            paid_at=order.paid_at,
            shipped_at=order.shipped_at,
        )


class AdminOrderOut(OrderPublic):
    user_id: Optional[int] = None
    payment_reference: Optional[str] = None
    customer_note: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "AdminOrderOut":
        base = OrderPublic.from_order(order).model_dump()
        return cls(
            **base,
            user_id=order.user_id,
            payment_reference=order.payment_reference,
            customer_note=order.customer_note,
        )


class StatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1, max_length=20)
    reason: Optional[str] = Field(default=None, max_length=500)


class ShipRequest(BaseModel):
    tracking_number: str = Field(default="", max_length=120)
    carrier: str = Field(default="", max_length=60)
    tracking_url: Optional[str] = Field(default=None, max_length=500)


class TransitionResponse(BaseModel):
    ok: bool = True
    order_id: int
    status: str
    previous_status: str
    changed: bool
    already_set: bool
    tracking_url: Optional[str] = None


class PaymentConfirmation(BaseModel):
    order_number: str = Field(min_length=1, max_length=40)
    payment_reference: Optional[str] = Field(default=None, max_length=120)


class ActivityEntryOut(BaseModel):
    id: int
    order_id: Optional[int] = None
    performed_by: Optional[int] = None
    action_type: str
    previous_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: OrderActivityLog) -> "ActivityEntryOut":
        return cls(
            id=entry.id,
            order_id=entry.order_id,
            performed_by=entry.performed_by,
            action_type=entry.action_type,
            previous_value=entry.previous_value,
            new_value=entry.new_value,
            metadata=entry.meta,
            created_at=entry.created_at,
        )


class NoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    note_type: Literal["internal", "customer"] = "internal"


class NoteOut(BaseModel):
    id: int
    order_id: int
    author_id: Optional[int] = None
    note_type: str
    content: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_note(cls, note: OrderNote) -> "NoteOut":
        return cls(
            id=note.id,
            order_id=note.order_id,
            author_id=note.author_id,
            note_type=note.note_type,
            content=note.content,
            created_at=note.created_at,
        )
