from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from storefront.models.coupon import Coupon


class ValidateCouponRequest(BaseModel):
    code: str = Field(default="", max_length=64)
    subtotal: Decimal = Field(ge=0)


class CouponSummary(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float


class ValidateCouponResponse(BaseModel):
    valid: bool = True
    coupon: CouponSummary
    discount_amount: float
    new_total: float


class CouponCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_type: Literal["percentage", "fixed_amount"]
    discount_value: Decimal = Field(ge=0)
    min_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_uses: Optional[int] = Field(default=None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_type: Optional[Literal["percentage", "fixed_amount"]] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_uses: Optional[int] = Field(default=None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class CouponOut(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    min_order_amount: float
    max_uses: Optional[int] = None
    current_uses: int
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool

    @classmethod
    def from_coupon(cls, coupon: Coupon) -> "CouponOut":
        return cls(
            id=coupon.id,
            code=coupon.code,
            description=coupon.description,
            discount_type=coupon.discount_type,
            discount_value=float(coupon.discount_value),
            min_order_amount=float(coupon.min_order_amount or 0),
            max_uses=coupon.max_uses,
            current_uses=int(coupon.current_uses or 0),
            valid_from=coupon.valid_from,
            valid_until=coupon.valid_until,
            is_active=bool(coupon.is_active),
        )
