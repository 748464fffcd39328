from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header
from sqlalchemy.orm import Session

from storefront.core import config
from storefront.core.database import get_db
from storefront.core.errors import ForbiddenError, UpstreamError
from storefront.schemas.orders import PaymentConfirmation, TransitionResponse
from storefront.services.order_events import emit_transition
from storefront.services.order_lifecycle import confirm_payment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _verify_webhook_secret(presented: Optional[str]) -> None:
    if not config.PAYMENT_WEBHOOK_SECRET:
        logger.error("Payment webhook called but PAYMENT_WEBHOOK_SECRET is not configured")
        raise UpstreamError("Webhook non configurato")
    if not presented or not hmac.compare_digest(presented.encode("utf-8"), config.PAYMENT_WEBHOOK_SECRET.encode("utf-8")):
        logger.warning("Payment webhook rejected: invalid secret")
        raise ForbiddenError("Firma webhook non valida")


@router.post("/payment", response_model=TransitionResponse)
def payment_webhook(
    payload: PaymentConfirmation,
    background_tasks: BackgroundTasks,
    x_webhook_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    _verify_webhook_secret(x_webhook_secret)
    result = confirm_payment(
        db,
        order_number=payload.order_number.strip().upper(),
        payment_reference=payload.payment_reference,
    )
    emit_transition(result, background_tasks)
    return TransitionResponse(
        order_id=result.order.id,
        status=result.order.status,
        previous_status=result.previous_status,
        changed=result.changed,
        already_set=result.already_set,
    )
