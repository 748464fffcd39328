from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.errors import NotFoundError
from storefront.deps import get_optional_principal, get_order_access_token
from storefront.models.order import Order
from storefront.schemas.orders import OrderPublic
from storefront.services.access_control import Principal, authorize_order_read

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("/{order_number}", response_model=OrderPublic)
def get_order(
    order_number: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    access_token: Optional[str] = Depends(get_order_access_token),
    db: Session = Depends(get_db),
):
    order = db.query(Order).filter(Order.order_number == order_number.strip().upper()).first()
    if order is None:
        raise NotFoundError("Ordine non trovato")

    authorize_order_read(order, principal, access_token)
    return OrderPublic.from_order(order)
