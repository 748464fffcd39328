from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.deps import require_admin
from storefront.schemas.coupons import CouponCreate, CouponOut, CouponUpdate
from storefront.services import coupons as coupon_service
from storefront.services.access_control import Principal

router = APIRouter(prefix="/api/admin/coupons", tags=["admin-coupons"])


@router.get("", response_model=List[CouponOut])
def list_coupons(_admin: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return [CouponOut.from_coupon(coupon) for coupon in coupon_service.list_coupons(db)]


@router.post("", response_model=CouponOut, status_code=201)
def create_coupon(body: CouponCreate, admin: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    coupon = coupon_service.create_coupon(db, actor_id=admin.user_id, **body.model_dump())
    return CouponOut.from_coupon(coupon)


@router.patch("/{coupon_id}", response_model=CouponOut)
def update_coupon(
    coupon_id: int,
    body: CouponUpdate,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    coupon = coupon_service.update_coupon(db, coupon_id, changes, actor_id=admin.user_id)
    return CouponOut.from_coupon(coupon)
