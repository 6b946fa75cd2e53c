"""
Outbox Message Model - Transactional Outbox Pattern
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON

from app.db.database import Base


class EventType(str, enum.Enum):
    ORDER_CREATED = "order-created"
    ORDER_STATUS_CHANGED = "order-status-changed"
    RIDER_ASSIGNED = "rider-assigned"
    ORDER_AVAILABLE = "order-available"
    WALLET_UPDATED = "wallet-updated"
    COD_UPDATED = "cod-updated"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """Event written in the same transaction as the state change, published later by a worker"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    event_type = Column(SQLEnum(EventType), nullable=False)
    channel = Column(String(200), nullable=False)  # Redis pub/sub channel
    payload = Column(JSON, nullable=False)

    status = Column(SQLEnum(MessageStatus), default=MessageStatus.PENDING, index=True)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    last_error = Column(String(1000), nullable=True)
