"""
Rider Daily Bonus Model - delivery count towards the daily bonus target
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, Date, DateTime, Boolean, ForeignKey, UniqueConstraint

from app.db.database import Base


class RiderDailyBonus(Base):
    """One row per rider per (UTC) day"""

    __tablename__ = "rider_daily_bonuses"

    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False, index=True)
    bonus_date = Column(Date, nullable=False)

    delivery_count = Column(Integer, default=0, nullable=False)
    target_deliveries = Column(Integer, nullable=False)
    bonus_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    is_achieved = Column(Boolean, default=False, nullable=False)
    credited_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("rider_id", "bonus_date", name="uq_rider_bonus_day"),
    )
