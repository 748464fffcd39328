import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, event, func
from sqlalchemy.dialects.postgresql import JSONB

from storefront.core.database import Base

_JSON = JSONB().with_variant(sa.JSON(), "sqlite")


class OrderActivityLog(Base):
    __tablename__ = "order_activity_log"

    id = Column(Integer, primary_key=True, index=True)
    # Null for administrative actions not tied to an order (coupon changes).
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action_type = Column(String(40), nullable=False)
    previous_value = Column(_JSON, nullable=True)
    new_value = Column(_JSON, nullable=True)
    meta = Column("metadata", _JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(OrderActivityLog, "before_update")
def _reject_update(mapper, connection, target):
    raise AppendOnlyViolation(f"order_activity_log row {target.id} is append-only")


@event.listens_for(OrderActivityLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"order_activity_log row {target.id} is append-only")
