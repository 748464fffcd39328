from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from storefront.core.errors import ValidationError
from storefront.models.order import Order
from storefront.models.order_note import NOTE_CUSTOMER, NOTE_INTERNAL, OrderNote
from storefront.services.activity_log import ACTION_NOTE_ADDED, append_activity

NOTE_TYPES = {NOTE_INTERNAL, NOTE_CUSTOMER}
PREVIEW_LENGTH = 100


def list_notes(db: Session, order_id: int, *, include_internal: bool) -> list[OrderNote]:
    query = db.query(OrderNote).filter(OrderNote.order_id == order_id)
    if not include_internal:
        query = query.filter(OrderNote.note_type == NOTE_CUSTOMER)
    return query.order_by(OrderNote.created_at.desc(), OrderNote.id.desc()).all()


def add_note(
    db: Session,
    *,
    order: Order,
    content: str,
    note_type: str,
    author_id: Optional[int],
) -> OrderNote:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Il contenuto della nota è obbligatorio")
    if note_type not in NOTE_TYPES:
        raise ValidationError("Tipo di nota non valido")

    note = OrderNote(order_id=order.id, author_id=author_id, note_type=note_type, content=content)
    db.add(note)
    db.commit()
    db.refresh(note)

    append_activity(
        db,
        order_id=order.id,
        performed_by=author_id,
        action_type=ACTION_NOTE_ADDED,
        new_value={"note_type": note_type, "preview": content[:PREVIEW_LENGTH]},
        metadata={"note_id": note.id},
    )
    return note
