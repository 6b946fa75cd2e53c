"""
Platform Settings Model - operator-editable tunables (single row)
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, Boolean, DateTime, String, Float, JSON

from app.db.database import Base

PLATFORM_SETTINGS_ID = 1


class PlatformSettings(Base):
    """Persisted source of truth for PlatformConfig. Read through SettingsProvider only."""

    __tablename__ = "platform_settings"

    id = Column(Integer, primary_key=True, default=PLATFORM_SETTINGS_ID)

    commission_rate = Column(Numeric(5, 2), nullable=False)
    # {"cloud_kitchen": "12", "cafe": "8"} - percent per restaurant business type
    business_type_commission = Column(JSON, nullable=False, default=dict)

    delivery_base_fee = Column(Numeric(12, 2), nullable=False)
    delivery_per_km_fee = Column(Numeric(12, 2), nullable=False)
    delivery_max_fee = Column(Numeric(12, 2), nullable=False)
    service_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_enabled = Column(Boolean, nullable=False, default=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    gateway_fee_percent = Column(Numeric(5, 2), nullable=False)

    rider_base_pay = Column(Numeric(12, 2), nullable=False)
    rider_per_km_rate = Column(Numeric(12, 2), nullable=False)
    rider_platform_fee_percent = Column(Numeric(5, 2), nullable=False)
    default_distance_km = Column(Float, nullable=False)

    cod_overdue_threshold = Column(Numeric(12, 2), nullable=False)
    minimum_order_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    is_maintenance_mode = Column(Boolean, nullable=False, default=False)

    bonus_daily_target = Column(Integer, nullable=False)
    bonus_amount = Column(Numeric(12, 2), nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    updated_by = Column(String(100), nullable=True)
