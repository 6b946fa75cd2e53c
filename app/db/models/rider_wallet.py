"""
Rider Wallet Model - earnings and cash-in-hand per rider
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey

from app.db.database import Base


class RiderWallet(Base):
    """One wallet per rider, created lazily.

    available_withdraw is the ledger balance. cash_collected / cash_to_deposit
    track COD cash and are reconciled through the COD ledger instead.
    """

    __tablename__ = "rider_wallets"

    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), unique=True, nullable=False)

    total_earnings = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    available_withdraw = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    cash_collected = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    cash_to_deposit = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    delivery_earnings = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    bonuses = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    penalties = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    last_withdraw_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
