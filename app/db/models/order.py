"""
Order Model - one customer purchase and its money breakdown
"""
import enum
import secrets
from dataclasses import dataclass
from decimal import Decimal
from datetime import datetime
from typing import Union
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Float, Numeric, Text, ForeignKey,
    CheckConstraint, Enum as SQLEnum, JSON,
)

from app.db.database import Base


def generate_order_number() -> str:
    return f"FS-{secrets.token_hex(4).upper()}"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    ON_THE_WAY = "on_the_way"
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value: str) -> "OrderStatus":
        """Accepts canonical values, enum names and the client synonyms (Confirmed, PickedUp, ...)"""
        key = value.strip().replace("-", "_").replace(" ", "_")
        normalized = key.lower()
        alias = _STATUS_ALIASES.get(normalized.replace("_", ""))
        if alias is not None:
            return alias
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown order status: {value}") from None

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)


_STATUS_ALIASES: dict[str, OrderStatus] = {
    "confirmed": OrderStatus.ACCEPTED,
    "pickedup": OrderStatus.ON_THE_WAY,
    "ontheway": OrderStatus.ON_THE_WAY,
    "arrivedatcustomer": OrderStatus.ARRIVED,
}


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    CARD = "card"
    JAZZCASH = "jazzcash"
    EASYPAISA = "easypaisa"

    @property
    def is_online(self) -> bool:
        return self is not PaymentMethod.COD


@dataclass(frozen=True)
class Unassigned:
    """No rider is bound to the order"""


@dataclass(frozen=True)
class Assigned:
    rider_id: int
    accepted_at: datetime


RiderAssignment = Union[Unassigned, Assigned]


class Order(Base):
    """Order record. Status and money fields are written only by the order services."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(20), unique=True, nullable=False, default=generate_order_number, index=True)

    customer_id = Column(Integer, nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)

    # Rider assignment; both columns are set or cleared together (see .assignment)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=True, index=True)
    rider_accepted_at = Column(DateTime, nullable=True)

    # [{"product_id", "name", "quantity", "unit_price"}], unit_price as a string
    items = Column(JSON, nullable=False)

    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_method = Column(SQLEnum(PaymentMethod), default=PaymentMethod.COD, nullable=False)

    shipping_address = Column(String(300), nullable=False)
    delivery_latitude = Column(Float, nullable=True)
    delivery_longitude = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    voucher_code = Column(String(32), nullable=True)

    # Money breakdown, integer currency units
    subtotal = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    service_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    gateway_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    commission_rate = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    commission_source = Column(String(20), nullable=True)
    commission_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    restaurant_earning = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    rider_gross_earning = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    rider_platform_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    rider_net_earning = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    platform_net_profit = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_price = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Distance used for the customer delivery fee at creation / for rider pay at completion
    quoted_distance_km = Column(Float, nullable=False)
    distance_km = Column(Float, nullable=True)
    # Set whenever the configured default distance replaced a missing or invalid one
    distance_fallback_used = Column(Boolean, default=False, nullable=False)

    # is_paid: the completion split has been applied (idempotency boundary)
    is_paid = Column(Boolean, default=False, nullable=False)
    # is_settled: every party has been squared up (COD cash handed in for COD orders)
    is_settled = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime, nullable=True)

    cancellation_reason = Column(String(500), nullable=True)
    cancelled_by = Column(String(20), nullable=True)
    refund_reason = Column(String(500), nullable=True)

    rider_rating = Column(Integer, nullable=True)
    rider_review = Column(Text, nullable=True)
    rated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    accepted_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    arrived_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True, index=True)
    cancelled_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency: every UPDATE carries "WHERE version = <loaded version>"
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "(rider_id IS NULL AND rider_accepted_at IS NULL) "
            "OR (rider_id IS NOT NULL AND rider_accepted_at IS NOT NULL)",
            name="ck_order_rider_assignment",
        ),
        CheckConstraint(
            "rider_rating IS NULL OR (rider_rating >= 1 AND rider_rating <= 5)",
            name="ck_order_rider_rating_range",
        ),
    )

    @property
    def assignment(self) -> RiderAssignment:
        if self.rider_id is None:
            return Unassigned()
        return Assigned(rider_id=self.rider_id, accepted_at=self.rider_accepted_at)

    def assign_rider(self, rider_id: int, accepted_at: datetime) -> None:
        self.rider_id = rider_id
        self.rider_accepted_at = accepted_at

    def clear_rider(self) -> None:
        self.rider_id = None
        self.rider_accepted_at = None
