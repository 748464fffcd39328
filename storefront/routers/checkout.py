from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.deps import get_optional_principal
from storefront.schemas.orders import CheckoutRequest, OrderPublic
from storefront.services.access_control import Principal
from storefront.services.checkout import CheckoutItem, place_order
from storefront.services.order_events import emit_order_confirmed
from storefront.services.order_status import OrderStatus

router = APIRouter(prefix="/api", tags=["checkout"])

ACCESS_TOKEN_HEADER = "X-Order-Access-Token"


@router.post("/checkout", response_model=OrderPublic, status_code=status.HTTP_201_CREATED)
def checkout(
    payload: CheckoutRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: Session = Depends(get_db),
):
    placed = place_order(
        db,
        items=[
            CheckoutItem(name=item.name, sku=item.sku, unit_price=item.unit_price, quantity=item.quantity)
            for item in payload.items
        ],
        email=payload.email,
        shipping_address=payload.shipping_address.model_dump(),
        principal=principal,
        coupon_code=payload.coupon_code,
        customer_note=payload.note,
    )

    if placed.access_token:
        # Only copy of the guest capability token the caller ever receives.
        response.headers[ACCESS_TOKEN_HEADER] = placed.access_token
        response.headers["Cache-Control"] = "no-store"

    if placed.order.status == OrderStatus.PAID.value:
        emit_order_confirmed(placed.order, background_tasks)

    return OrderPublic.from_order(placed.order)
