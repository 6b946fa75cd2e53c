"""
Order Audit Log Model - who moved an order, from what, to what
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.types import JSON

from app.db.database import Base


class OrderAuditAction(str, enum.Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    RIDER_ASSIGNED = "rider_assigned"
    RIDER_REASSIGNED = "rider_reassigned"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    RIDER_RATED = "rider_rated"


class OrderAuditLog(Base):
    """Append-only audit trail per order"""

    __tablename__ = "order_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    action = Column(SQLEnum(OrderAuditAction), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    actor_role = Column(String(20), nullable=False)
    actor_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
