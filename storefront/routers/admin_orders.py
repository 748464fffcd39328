from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.errors import ForbiddenError, NotFoundError
from storefront.deps import get_current_principal, require_admin
from storefront.models.order import Order
from storefront.schemas.orders import (
    ActivityEntryOut,
    AdminOrderOut,
    NoteCreate,
    NoteOut,
    ShipRequest,
    StatusUpdateRequest,
    TransitionResponse,
)
from storefront.services import activity_log, notes
from storefront.services.access_control import Principal, authorize_order_mutation, can_view_order_history
from storefront.services.order_events import emit_transition
from storefront.services.order_lifecycle import TransitionResult, change_status, mark_shipped
from storefront.services.order_status import parse_status

router = APIRouter(prefix="/api/admin/orders", tags=["admin-orders"])


def _load_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError("Ordine non trovato")
    return order


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        order_id=result.order.id,
        status=result.order.status,
        previous_status=result.previous_status,
        changed=result.changed,
        already_set=result.already_set,
        tracking_url=result.order.tracking_url,
    )


@router.get("", response_model=List[AdminOrderOut])
def list_orders(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    _admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == parse_status(status).value)
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    return [AdminOrderOut.from_order(order) for order in orders]


@router.patch("/{order_id}/status", response_model=TransitionResponse)
def update_status(
    order_id: int,
    body: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    authorize_order_mutation(admin)
    result = change_status(
        db,
        order_id=order_id,
        requested_status=body.status,
        actor_id=admin.user_id,
        reason=body.reason,
    )
    emit_transition(result, background_tasks)
    return _transition_response(result)


@router.post("/{order_id}/ship", response_model=TransitionResponse)
def ship_order(
    order_id: int,
    body: ShipRequest,
    background_tasks: BackgroundTasks,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    authorize_order_mutation(admin)
    result = mark_shipped(
        db,
        order_id=order_id,
        tracking_number=body.tracking_number,
        carrier=body.carrier,
        tracking_url=body.tracking_url,
        actor_id=admin.user_id,
    )
    emit_transition(result, background_tasks)
    return _transition_response(result)


@router.get("/{order_id}/activity", response_model=List[ActivityEntryOut])
def order_activity(
    order_id: int,
    limit: int = Query(200, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    order = _load_order(db, order_id)
    if not can_view_order_history(order, principal):
        raise ForbiddenError()
    entries = activity_log.list_for_order(db, order.id, limit=limit)
    return [ActivityEntryOut.from_entry(entry) for entry in entries]


@router.get("/{order_id}/notes", response_model=List[NoteOut])
def list_order_notes(
    order_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    order = _load_order(db, order_id)
    if not can_view_order_history(order, principal):
        raise ForbiddenError()
    items = notes.list_notes(db, order.id, include_internal=principal.is_admin)
    return [NoteOut.from_note(note) for note in items]


@router.post("/{order_id}/notes", response_model=NoteOut, status_code=201)
def create_order_note(
    order_id: int,
    body: NoteCreate,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = _load_order(db, order_id)
    note = notes.add_note(db, order=order, content=body.content, note_type=body.note_type, author_id=admin.user_id)
    return NoteOut.from_note(note)
