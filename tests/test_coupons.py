from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from storefront.core.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.order import Order
from storefront.models.order_activity_log import OrderActivityLog
from storefront.services import checkout as checkout_service
from storefront.services.checkout import CheckoutItem, place_order
from storefront.services.coupons import (
    compute_discount,
    create_coupon,
    redeem_coupon,
    update_coupon,
    validate_coupon,
)
from tests.fixtures_data import SHIPPING_ADDRESS, make_coupon, make_order


def test_percentage_coupon_takes_share_of_subtotal(db) -> None:
    make_coupon(db, code="SAVE10", discount_type="percentage", discount_value=Decimal("10"))

    result = validate_coupon(db, "SAVE10", 100)

    assert result.discount_amount == Decimal("10.00")
    assert result.new_total == Decimal("90.00")


def test_fixed_coupon_never_exceeds_subtotal(db) -> None:
    make_coupon(db, code="FLAT20", discount_type="fixed_amount", discount_value=Decimal("20"))

    result = validate_coupon(db, "FLAT20", 15)

    assert result.discount_amount == Decimal("15.00")
    assert result.new_total == Decimal("0.00")


@pytest.mark.parametrize("percentage", ["100", "150"])
def test_percentage_of_hundred_or_more_equals_subtotal(percentage: str) -> None:
    assert compute_discount("percentage", Decimal(percentage), Decimal("37.45")) == Decimal("37.45")


def test_percentage_discount_rounds_half_up() -> None:
    assert compute_discount("percentage", Decimal("15"), Decimal("19.99")) == Decimal("3.00")
    assert compute_discount("percentage", Decimal("10"), Decimal("0.05")) == Decimal("0.01")


def test_code_is_matched_case_insensitively(db) -> None:
    make_coupon(db, code="SAVE10")

    assert validate_coupon(db, "  save10 ", 50).coupon.code == "SAVE10"


def test_empty_code_is_rejected(db) -> None:
    with pytest.raises(ValidationError):
        validate_coupon(db, "   ", 50)


def test_unknown_and_inactive_codes_look_the_same(db) -> None:
    make_coupon(db, code="OFF", is_active=False)

    with pytest.raises(NotFoundError) as unknown:
        validate_coupon(db, "NOPE", 50)
    with pytest.raises(NotFoundError) as inactive:
        validate_coupon(db, "OFF", 50)

    assert unknown.value.message == inactive.value.message == "Codice coupon non valido"


def test_validity_window_is_enforced(db) -> None:
    now = datetime.now(timezone.utc)
    make_coupon(db, code="FUTURE", valid_from=now + timedelta(days=1))
    make_coupon(db, code="PAST", valid_until=now - timedelta(days=1))

    with pytest.raises(ValidationError, match="non è ancora attivo"):
        validate_coupon(db, "FUTURE", 50)
    with pytest.raises(ValidationError, match="scaduto"):
        validate_coupon(db, "PAST", 50)


def test_exhausted_coupon_is_rejected(db) -> None:
    make_coupon(db, code="LIMITED", max_uses=2, current_uses=2)

    with pytest.raises(ValidationError, match="limite di utilizzi"):
        validate_coupon(db, "LIMITED", 50)


def test_minimum_order_message_names_the_threshold(db) -> None:
    make_coupon(db, code="MIN30", min_order_amount=Decimal("30"))

    with pytest.raises(ValidationError) as exc_info:
        validate_coupon(db, "MIN30", Decimal("29.99"))

    assert exc_info.value.message == "Ordine minimo di €30.00 richiesto per questo coupon"
    assert validate_coupon(db, "MIN30", 30).discount_amount == Decimal("3.00")


def test_validation_does_not_consume_uses(db) -> None:
    coupon = make_coupon(db, code="LIMITED", max_uses=1)

    for _ in range(3):
        validate_coupon(db, "LIMITED", 50)

    db.refresh(coupon)
    assert coupon.current_uses == 0


def test_redeem_counts_one_use_and_records_redemption(db) -> None:
    coupon = make_coupon(db, code="ONCE", max_uses=1)
    order = make_order(db)

    redeem_coupon(db, coupon_id=coupon.id, order_id=order.id, discount_amount=Decimal("4.00"))
    db.commit()

    db.refresh(coupon)
    assert coupon.current_uses == 1
    assert db.query(CouponRedemption).filter(CouponRedemption.order_id == order.id).count() == 1


def test_redeem_loses_race_for_last_use(db, engine) -> None:
    coupon = make_coupon(db, code="ONCE", max_uses=1)
    first, second = make_order(db), make_order(db)

    # Both checkouts validated while one use was left.
    validate_coupon(db, "ONCE", 50)
    other = sessionmaker(bind=engine)()
    try:
        redeem_coupon(other, coupon_id=coupon.id, order_id=first.id, discount_amount=Decimal("5.00"))
        other.commit()
    finally:
        other.close()

    with pytest.raises(ConflictError, match="limite di utilizzi"):
        redeem_coupon(db, coupon_id=coupon.id, order_id=second.id, discount_amount=Decimal("5.00"))
    db.rollback()

    db.refresh(coupon)
    assert coupon.current_uses == 1


def test_checkout_that_loses_redemption_race_leaves_no_order(db, engine, monkeypatch) -> None:
    coupon = make_coupon(db, code="ONCE", max_uses=1)
    real_validate = checkout_service.validate_coupon

    def validate_then_lose_race(session, code, subtotal):
        result = real_validate(session, code, subtotal)
        competitor = sessionmaker(bind=engine)()
        try:
            competitor.query(Coupon).filter(Coupon.id == coupon.id).update(
                {Coupon.current_uses: Coupon.current_uses + 1}, synchronize_session=False
            )
            competitor.commit()
        finally:
            competitor.close()
        return result

    monkeypatch.setattr(checkout_service, "validate_coupon", validate_then_lose_race)

    with pytest.raises(ConflictError):
        place_order(
            db,
            items=[CheckoutItem(name="Cuffie", unit_price=Decimal("60.00"), quantity=1)],
            email="race@example.com",
            shipping_address=SHIPPING_ADDRESS,
            coupon_code="ONCE",
        )

    assert db.query(Order).count() == 0
    assert db.query(CouponRedemption).count() == 0


def test_concurrent_checkouts_never_exceed_max_uses(tmp_path) -> None:
    from storefront.core.database import Base

    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # pysqlite defers BEGIN; take the write lock at transaction start instead.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)
    setup = Session()
    setup.add(
        Coupon(
            code="LAST3",
            discount_type="fixed_amount",
            discount_value=Decimal("5"),
            min_order_amount=Decimal("0"),
            max_uses=3,
            current_uses=0,
            is_active=True,
        )
    )
    setup.commit()
    setup.close()

    def attempt(index: int) -> str:
        session = Session()
        try:
            place_order(
                session,
                items=[CheckoutItem(name="Plettri", unit_price=Decimal("20.00"), quantity=1)],
                email=f"buyer{index}@example.com",
                shipping_address=SHIPPING_ADDRESS,
                coupon_code="LAST3",
            )
            return "ok"
        except (ConflictError, ValidationError):
            return "rejected"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        outcomes = list(pool.map(attempt, range(10)))

    check = Session()
    try:
        coupon = check.query(Coupon).filter(Coupon.code == "LAST3").one()
        assert outcomes.count("ok") == 3
        assert outcomes.count("rejected") == 7
        assert coupon.current_uses == 3
        assert check.query(CouponRedemption).count() == 3
        assert check.query(Order).filter(Order.coupon_code == "LAST3").count() == 3
    finally:
        check.close()
        engine.dispose()


def test_create_coupon_normalizes_code_and_is_audited(db) -> None:
    coupon = create_coupon(
        db,
        code=" summer15 ",
        discount_type="percentage",
        discount_value="15",
        actor_id=None,
        max_uses=100,
    )

    assert coupon.code == "SUMMER15"
    assert coupon.current_uses == 0
    entry = db.query(OrderActivityLog).filter(OrderActivityLog.action_type == "coupon_created").one()
    assert entry.order_id is None
    assert entry.meta == {"coupon_id": coupon.id}
    assert entry.new_value["code"] == "SUMMER15"


def test_create_coupon_rejects_duplicates_and_bad_terms(db) -> None:
    make_coupon(db, code="DUP")

    with pytest.raises(ConflictError):
        create_coupon(db, code="dup", discount_type="percentage", discount_value=5, actor_id=None)
    with pytest.raises(ValidationError):
        create_coupon(db, code="BAD", discount_type="bogo", discount_value=5, actor_id=None)
    with pytest.raises(ValidationError):
        create_coupon(db, code="NEG", discount_type="fixed_amount", discount_value=-1, actor_id=None)

    now = datetime.now(timezone.utc)
    with pytest.raises(ValidationError):
        create_coupon(
            db,
            code="WINDOW",
            discount_type="fixed_amount",
            discount_value=5,
            actor_id=None,
            valid_from=now,
            valid_until=now - timedelta(days=1),
        )


def test_update_coupon_records_previous_and_new_terms(db) -> None:
    coupon = make_coupon(db, code="EDIT", discount_value=Decimal("10"))

    updated = update_coupon(db, coupon.id, {"discount_value": "12.5", "is_active": False}, actor_id=None)

    assert updated.discount_value == Decimal("12.50")
    assert updated.is_active is False
    entry = db.query(OrderActivityLog).filter(OrderActivityLog.action_type == "coupon_updated").one()
    assert entry.previous_value["discount_value"] == "10.00"
    assert entry.new_value["discount_value"] == "12.50"
    assert entry.meta["fields"] == ["discount_value", "is_active"]


def test_update_cannot_lower_max_uses_below_recorded_uses(db) -> None:
    coupon = make_coupon(db, code="HALFWAY", max_uses=10, current_uses=5)

    with pytest.raises(ValidationError) as exc_info:
        update_coupon(db, coupon.id, {"max_uses": 2}, actor_id=None)

    assert exc_info.value.status_code == 400
    assert "(5)" in exc_info.value.message
    db.refresh(coupon)
    assert coupon.max_uses == 10
    assert update_coupon(db, coupon.id, {"max_uses": 5}, actor_id=None).max_uses == 5


@pytest.mark.parametrize("field", ["is_active", "code", "discount_value", "discount_type"])
def test_update_rejects_clearing_required_fields(db, field: str) -> None:
    coupon = make_coupon(db, code="KEEP")

    with pytest.raises(ValidationError):
        update_coupon(db, coupon.id, {field: None}, actor_id=None)

    assert db.query(OrderActivityLog).filter(OrderActivityLog.action_type == "coupon_updated").count() == 0


def test_update_to_taken_code_is_a_duplicate(db) -> None:
    make_coupon(db, code="FIRST")
    second = make_coupon(db, code="SECOND")

    with pytest.raises(ConflictError) as exc_info:
        update_coupon(db, second.id, {"code": "first"}, actor_id=None)

    assert exc_info.value.message == "Esiste già un coupon con questo codice"


def test_update_missing_coupon_is_not_found(db) -> None:
    with pytest.raises(NotFoundError):
        update_coupon(db, 999, {"is_active": False}, actor_id=None)
