"""
Payout Model - batched bank disbursements to restaurants and riders
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, String, Text, Enum as SQLEnum, Index

from app.db.database import Base


class PayoutType(str, enum.Enum):
    RESTAURANT = "restaurant"
    RIDER = "rider"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self is not PayoutStatus.PENDING


class Payout(Base):
    """Created by an operator batch; terminal once paid"""

    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, index=True)
    payout_type = Column(SQLEnum(PayoutType), nullable=False)
    entity_id = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(SQLEnum(PayoutStatus), default=PayoutStatus.PENDING, nullable=False, index=True)
    bank_reference = Column(String(100), nullable=True)
    processed_by = Column(String(100), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_payouts_entity", "payout_type", "entity_id"),
    )
