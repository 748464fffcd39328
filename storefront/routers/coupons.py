from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.schemas.coupons import CouponSummary, ValidateCouponRequest, ValidateCouponResponse
from storefront.services.coupons import validate_coupon

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


@router.post("/validate", response_model=ValidateCouponResponse)
def validate(payload: ValidateCouponRequest, db: Session = Depends(get_db)):
    result = validate_coupon(db, payload.code, payload.subtotal)
    coupon = result.coupon
    return ValidateCouponResponse(
        coupon=CouponSummary(
            id=coupon.id,
            code=coupon.code,
            description=coupon.description,
            discount_type=coupon.discount_type,
            discount_value=float(coupon.discount_value),
        ),
        discount_amount=float(result.discount_amount),
        new_total=float(result.new_total),
    )
