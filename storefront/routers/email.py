from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.errors import NotFoundError
from storefront.deps import get_current_principal
from storefront.models.user import User
from storefront.services.access_control import Principal
from storefront.services.order_events import emit_user_welcome

router = APIRouter(prefix="/api/email", tags=["email"])


@router.post("/welcome", status_code=status.HTTP_202_ACCEPTED)
def send_welcome(
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.id == principal.user_id).first()
    if user is None:
        raise NotFoundError("Utente non trovato")
    emit_user_welcome(
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        background_tasks=background_tasks,
    )
    return {"ok": True}
