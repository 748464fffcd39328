from sqlalchemy import Column, DateTime, Integer, String, func

from storefront.core.database import Base

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(120), nullable=True)
    role = Column(String(20), nullable=False, default=ROLE_CUSTOMER)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
