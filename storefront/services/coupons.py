from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.coupon import DISCOUNT_FIXED_AMOUNT, DISCOUNT_PERCENTAGE, Coupon, CouponRedemption
from storefront.services.activity_log import ACTION_COUPON_CREATED, ACTION_COUPON_UPDATED, append_activity

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")
DISCOUNT_TYPES = {DISCOUNT_PERCENTAGE, DISCOUNT_FIXED_AMOUNT}

MSG_CODE_REQUIRED = "Codice coupon richiesto"
MSG_INVALID_CODE = "Codice coupon non valido"
MSG_NOT_YET_ACTIVE = "Questo coupon non è ancora attivo"
MSG_EXPIRED = "Questo coupon è scaduto"
MSG_EXHAUSTED = "Questo coupon ha raggiunto il limite di utilizzi"
MSG_DUPLICATE_CODE = "Esiste già un coupon con questo codice"

REQUIRED_FIELDS = ("code", "discount_type", "discount_value", "min_order_amount", "is_active")


def to_money(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Importo non valido") from None
    if not amount.is_finite():
        raise ValidationError("Importo non valido")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_code(raw: Optional[str]) -> str:
    return (raw or "").strip().upper()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; stored values are UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class CouponValidation:
    coupon: Coupon
    subtotal: Decimal
    discount_amount: Decimal
    new_total: Decimal


def compute_discount(discount_type: str, discount_value: Any, subtotal: Any) -> Decimal:
    """Discount for ``subtotal``, never more than the subtotal itself.

    A percentage of 100 or more takes exactly the whole subtotal.
    """
    subtotal = to_money(subtotal)
    value = to_money(discount_value)

    if discount_type == DISCOUNT_PERCENTAGE:
        if value >= HUNDRED:
            discount = subtotal
        else:
            discount = (subtotal * value / HUNDRED).quantize(CENTS, rounding=ROUND_HALF_UP)
    elif discount_type == DISCOUNT_FIXED_AMOUNT:
        discount = value
    else:
        raise ValidationError("Tipo di coupon non valido")

    return max(Decimal("0.00"), min(discount, subtotal))


def check_redeemable(coupon: Coupon, subtotal: Decimal, *, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)

    valid_from = _as_utc(coupon.valid_from)
    if valid_from is not None and now < valid_from:
        raise ValidationError(MSG_NOT_YET_ACTIVE)

    valid_until = _as_utc(coupon.valid_until)
    if valid_until is not None and now > valid_until:
        raise ValidationError(MSG_EXPIRED)

    if coupon.max_uses is not None and int(coupon.current_uses or 0) >= int(coupon.max_uses):
        raise ValidationError(MSG_EXHAUSTED)

    min_order = to_money(coupon.min_order_amount or 0)
    if subtotal < min_order:
        raise ValidationError(f"Ordine minimo di €{min_order:.2f} richiesto per questo coupon")


def find_active_coupon(db: Session, code: str) -> Coupon:
    coupon = (
        db.query(Coupon)
        .filter(Coupon.code == code, Coupon.is_active.is_(True))
        .first()
    )
    if coupon is None:
        # Unknown and inactive codes get the same answer.
        raise NotFoundError(MSG_INVALID_CODE)
    return coupon


def validate_coupon(
    db: Session,
    raw_code: Optional[str],
    subtotal: Any,
    *,
    now: Optional[datetime] = None,
) -> CouponValidation:
    """Read-only check of a code against a cart subtotal.

    Never touches ``current_uses``; see :func:`redeem_coupon` for that.
    """
    code = normalize_code(raw_code)
    if not code:
        raise ValidationError(MSG_CODE_REQUIRED)
    if subtotal is None:
        raise ValidationError("Subtotale richiesto")
    amount = to_money(subtotal)
    if amount < 0:
        raise ValidationError("Subtotale non valido")

    coupon = find_active_coupon(db, code)
    check_redeemable(coupon, amount, now=now)

    discount = compute_discount(coupon.discount_type, coupon.discount_value, amount)
    return CouponValidation(
        coupon=coupon,
        subtotal=amount,
        discount_amount=discount,
        new_total=max(Decimal("0.00"), amount - discount),
    )


def redeem_coupon(
    db: Session,
    *,
    coupon_id: int,
    order_id: int,
    discount_amount: Decimal,
    user_id: Optional[int] = None,
) -> CouponRedemption:
    """Counts one use of the coupon inside the caller's transaction.

    The increment is a single conditional UPDATE guarded by the exhaustion
    check, so concurrent checkouts can never push ``current_uses`` past
    ``max_uses``. The caller commits together with the order insert.
    """
    rows = (
        db.query(Coupon)
        .filter(
            Coupon.id == coupon_id,
            Coupon.is_active.is_(True),
            or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
        )
        .update({Coupon.current_uses: Coupon.current_uses + 1}, synchronize_session=False)
    )
    if rows != 1:
        logger.info("Coupon redemption rejected coupon_id=%s", coupon_id, extra={"order_id": order_id})
        raise ConflictError(MSG_EXHAUSTED)

    redemption = CouponRedemption(
        coupon_id=coupon_id,
        order_id=order_id,
        user_id=user_id,
        discount_amount=discount_amount,
    )
    db.add(redemption)
    return redemption


def _coupon_snapshot(coupon: Coupon) -> dict[str, Any]:
    return {
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": str(coupon.discount_value),
        "min_order_amount": str(coupon.min_order_amount),
        "max_uses": coupon.max_uses,
        "valid_from": coupon.valid_from.isoformat() if coupon.valid_from else None,
        "valid_until": coupon.valid_until.isoformat() if coupon.valid_until else None,
        "is_active": bool(coupon.is_active),
    }


def _validate_terms(
    discount_type: str,
    discount_value: Decimal,
    min_order_amount: Decimal,
    max_uses: Optional[int],
    valid_from: Optional[datetime],
    valid_until: Optional[datetime],
    *,
    current_uses: int = 0,
) -> None:
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError("Tipo di coupon non valido")
    if discount_value < 0 or min_order_amount < 0:
        raise ValidationError("Gli importi del coupon non possono essere negativi")
    if max_uses is not None and max_uses < 0:
        raise ValidationError("Il limite di utilizzi non può essere negativo")
    if max_uses is not None and max_uses < current_uses:
        raise ValidationError(
            f"Il limite di utilizzi non può essere inferiore agli utilizzi già registrati ({current_uses})"
        )
    start, end = _as_utc(valid_from), _as_utc(valid_until)
    if start is not None and end is not None and end < start:
        raise ValidationError("La data di fine deve essere successiva alla data di inizio")


def _is_unique_violation(exc: IntegrityError) -> bool:
    # psycopg2 exposes the SQLSTATE; sqlite only has the message.
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    return "unique" in str(exc.orig).lower()


def _commit_coupon(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_unique_violation(exc):
            raise ConflictError(MSG_DUPLICATE_CODE) from None
        # A redemption landed between the load and this write.
        logger.warning("Coupon write rejected by constraint: %s", exc.orig)
        raise ConflictError("Il coupon è stato modificato nel frattempo, riprova") from None


def list_coupons(db: Session) -> list[Coupon]:
    return db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def create_coupon(
    db: Session,
    *,
    code: str,
    discount_type: str,
    discount_value: Any,
    actor_id: Optional[int],
    description: Optional[str] = None,
    min_order_amount: Any = 0,
    max_uses: Optional[int] = None,
    valid_from: Optional[datetime] = None,
    valid_until: Optional[datetime] = None,
    is_active: bool = True,
) -> Coupon:
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError(MSG_CODE_REQUIRED)
    value = to_money(discount_value)
    minimum = to_money(min_order_amount or 0)
    _validate_terms(discount_type, value, minimum, max_uses, valid_from, valid_until)

    coupon = Coupon(
        code=normalized,
        description=(description or "").strip() or None,
        discount_type=discount_type,
        discount_value=value,
        min_order_amount=minimum,
        max_uses=max_uses,
        current_uses=0,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=is_active,
    )
    db.add(coupon)
    _commit_coupon(db)
    db.refresh(coupon)

    append_activity(
        db,
        order_id=None,
        performed_by=actor_id,
        action_type=ACTION_COUPON_CREATED,
        new_value=_coupon_snapshot(coupon),
        metadata={"coupon_id": coupon.id},
    )
    return coupon


def update_coupon(db: Session, coupon_id: int, changes: dict[str, Any], *, actor_id: Optional[int]) -> Coupon:
    coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if coupon is None:
        raise NotFoundError("Coupon non trovato")

    previous = _coupon_snapshot(coupon)
    cleared = sorted(field for field in REQUIRED_FIELDS if field in changes and changes[field] is None)
    if cleared:
        raise ValidationError(f"Campo obbligatorio: {', '.join(cleared)}")
    if "code" in changes:
        changes["code"] = normalize_code(changes["code"])
        if not changes["code"]:
            raise ValidationError(MSG_CODE_REQUIRED)
    for money_field in ("discount_value", "min_order_amount"):
        if money_field in changes:
            changes[money_field] = to_money(changes[money_field] or 0)

    merged = {**previous, **changes}
    _validate_terms(
        merged["discount_type"],
        to_money(merged["discount_value"]),
        to_money(merged["min_order_amount"] or 0),
        merged["max_uses"],
        changes.get("valid_from", coupon.valid_from),
        changes.get("valid_until", coupon.valid_until),
        current_uses=int(coupon.current_uses or 0),
    )

    for field, value in changes.items():
        setattr(coupon, field, value)
    _commit_coupon(db)
    db.refresh(coupon)

    append_activity(
        db,
        order_id=None,
        performed_by=actor_id,
        action_type=ACTION_COUPON_UPDATED,
        previous_value=previous,
        new_value=_coupon_snapshot(coupon),
        metadata={"coupon_id": coupon.id, "fields": sorted(changes)},
    )
    return coupon
