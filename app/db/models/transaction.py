"""
Transaction Model - append-only money ledger
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, Numeric, DateTime, ForeignKey, String, Index,
    Enum as SQLEnum, UniqueConstraint,
)

from app.db.database import Base

# entity_id used for rows booked against the platform itself
PLATFORM_ENTITY_ID = 0


class EntityType(str, enum.Enum):
    RESTAURANT = "restaurant"
    RIDER = "rider"
    PLATFORM = "platform"


class TransactionType(str, enum.Enum):
    EARNING = "earning"
    COMMISSION = "commission"
    PAYOUT = "payout"
    REFUND = "refund"
    CASH_DEPOSIT = "cash_deposit"
    BONUS = "bonus"
    PENALTY = "penalty"
    ADJUSTMENT = "adjustment"


class Transaction(Base):
    """Immutable ledger row; never updated or deleted.

    amount is the signed change of the entity's ledger balance, so summing an
    entity's rows in created order reconstructs that balance.
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(SQLEnum(EntityType), nullable=False)
    entity_id = Column(Integer, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    transaction_type = Column(SQLEnum(TransactionType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    description = Column(String(500), nullable=True)
    reference = Column(String(100), nullable=True)
    # operator that posted the row, e.g. "operator:7"
    processed_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        # one posting of each kind per entity and order; a settlement replay cannot double-post
        UniqueConstraint("entity_type", "entity_id", "order_id", "transaction_type", name="uq_tx_entity_order_type"),
        Index("ix_transactions_entity_created", "entity_type", "entity_id", "created_at"),
    )
