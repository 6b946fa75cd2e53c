"""
Restaurant and Product Models - catalog side of an order
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, CheckConstraint

from app.db.database import Base


class Restaurant(Base):
    """A restaurant that receives orders and earns through its wallet"""

    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)

    # Only approved and active restaurants accept new orders
    is_approved = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Key into the per-business-type commission map of the platform settings
    business_type = Column(String(50), nullable=True)
    # Restaurant-specific commission percentage (0-100), overrides every default
    commission_rate = Column(Numeric(5, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)",
            name="ck_restaurant_commission_rate_range",
        ),
    )


class Product(Base):
    """Menu item. stock_quantity NULL means stock is not tracked."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    stock_quantity = Column(Integer, nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("stock_quantity IS NULL OR stock_quantity >= 0", name="ck_product_stock_non_negative"),
    )
