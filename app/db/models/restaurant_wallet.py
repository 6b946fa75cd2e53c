"""
Restaurant Wallet Model - running balances per restaurant
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey

from app.db.database import Base


class RestaurantWallet(Base):
    """One wallet per restaurant, created lazily on the first earning.

    available_balance is the ledger balance: the sum of the restaurant's
    Transaction amounts always equals it.
    """

    __tablename__ = "restaurant_wallets"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), unique=True, nullable=False)

    available_balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    pending_payout = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_earnings = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_commission_collected = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    on_hold_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    last_payout_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
