"""
Rider Model - delivery riders, their availability and COD standing
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Enum as SQLEnum

from app.db.database import Base


class RiderStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class SettlementStatus(str, enum.Enum):
    ACTIVE = "active"
    # cod_balance is above the configured threshold; new assignments are refused
    OVERDUE = "overdue"
    # set by an operator, never cleared automatically
    BLOCKED = "blocked"


class Rider(Base):
    """Delivery rider"""

    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(SQLEnum(RiderStatus), default=RiderStatus.AVAILABLE, nullable=False)

    # Order the rider is currently carrying; plain id, orders already reference riders
    current_order_id = Column(Integer, nullable=True, index=True)

    # Cash collected from customers and not yet handed to the platform
    cod_balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    # Earnings the platform still owes the rider
    earnings_balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    settlement_status = Column(
        SQLEnum(SettlementStatus), default=SettlementStatus.ACTIVE, nullable=False, index=True
    )
    last_settlement_date = Column(DateTime, nullable=True)

    rating_average = Column(Numeric(3, 2), default=Decimal("0.00"), nullable=False)
    review_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
