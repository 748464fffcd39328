import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from storefront.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(40), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Null user_id means a guest order; access_token is its capability secret.
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    access_token = Column(String(64), nullable=True)

    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(120), nullable=False)
    shipping_address_json = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False)
    items_json = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False)

    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)

    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=True, index=True)
    coupon_code = Column(String(64), nullable=True)
    payment_reference = Column(String(120), nullable=True)
    customer_note = Column(Text, nullable=True)

    tracking_number = Column(String(120), nullable=True)
    carrier = Column(String(60), nullable=True)
    tracking_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")
    coupon = relationship("Coupon", back_populates="orders")
    coupon_redemption = relationship("CouponRedemption", back_populates="order", uselist=False)
    notes = relationship("OrderNote", back_populates="order", order_by="OrderNote.created_at")
