"""
COD Ledger Model - cash a rider collected for one order
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, String, Enum as SQLEnum

from app.db.database import Base


class CODEntryStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class CODLedgerEntry(Base):
    """Created once per delivered COD order, moves pending -> paid exactly once"""

    __tablename__ = "cod_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)

    cash_collected = Column(Numeric(12, 2), nullable=False)
    rider_earning = Column(Numeric(12, 2), nullable=False)
    # cash_collected - rider_earning
    amount_owed = Column(Numeric(12, 2), nullable=False)

    status = Column(SQLEnum(CODEntryStatus), default=CODEntryStatus.PENDING, nullable=False, index=True)
    settled_at = Column(DateTime, nullable=True)
    settlement_reference = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class CODSettlement(Base):
    """One operator cash settlement; the reference is unique across all riders"""

    __tablename__ = "cod_settlements"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(64), unique=True, nullable=False)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False, index=True)

    amount_collected = Column(Numeric(12, 2), nullable=False)
    earnings_paid = Column(Numeric(12, 2), nullable=False)
    entries_settled = Column(Integer, default=0, nullable=False)
    processed_by = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
