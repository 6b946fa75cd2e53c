"""
Voucher Model - promo codes applied at order creation
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, Enum as SQLEnum

from app.db.database import Base


class DiscountType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class Voucher(Base):
    """Promo code. restaurant_id NULL means the code is valid platform-wide."""

    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=True, index=True)

    discount_type = Column(SQLEnum(DiscountType), default=DiscountType.FIXED, nullable=False)
    # currency units for FIXED, percent of subtotal for PERCENTAGE
    discount_value = Column(Numeric(12, 2), nullable=False)
    # cap for PERCENTAGE codes
    max_discount = Column(Numeric(12, 2), nullable=True)
    minimum_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    max_usage = Column(Integer, nullable=True)  # NULL = unlimited
    usage_count = Column(Integer, default=0, nullable=False)

    valid_from = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
