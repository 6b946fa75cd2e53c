"""
Settings Provider - platform tunables as an immutable value.

Reads go Redis cache -> platform_settings row -> last-known-good value.
Operator writes persist the row and drop the cache key, so every process
sees the change within one SETTINGS_CACHE_TTL_SECONDS interval at most.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import DependencyError, ValidationException
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID

logger = get_logger(__name__)

_CACHE_KEY = "platform_settings:config"

# Last config successfully read from the database, served when the database is unreachable
_last_known_good: "PlatformConfig | None" = None


class PlatformConfig(BaseModel):
    """Immutable snapshot of the platform tunables. Percentages are 0-100."""

    model_config = ConfigDict(frozen=True)

    commission_rate: Decimal = Field(ge=0, le=100)
    business_type_commission: dict[str, Decimal] = Field(default_factory=dict)

    delivery_base_fee: Decimal = Field(ge=0)
    delivery_per_km_fee: Decimal = Field(ge=0)
    delivery_max_fee: Decimal = Field(ge=0)
    service_fee: Decimal = Field(default=Decimal("0"), ge=0)
    tax_enabled: bool = False
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    gateway_fee_percent: Decimal = Field(ge=0, le=100)

    rider_base_pay: Decimal = Field(ge=0)
    rider_per_km_rate: Decimal = Field(ge=0)
    rider_platform_fee_percent: Decimal = Field(ge=0, le=100)
    default_distance_km: float = Field(gt=0)

    cod_overdue_threshold: Decimal = Field(ge=0)
    minimum_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    is_maintenance_mode: bool = False

    # a target of 0 switches the daily bonus off
    bonus_daily_target: int = Field(default=0, ge=0)
    bonus_amount: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator("business_type_commission")
    @classmethod
    def validate_business_type_rates(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        for business_type, rate in v.items():
            if rate < 0 or rate > 100:
                raise ValueError(f"commission for '{business_type}' must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def validate_fee_cap(self) -> "PlatformConfig":
        if self.delivery_max_fee < self.delivery_base_fee:
            raise ValueError("delivery_max_fee cannot be below delivery_base_fee")
        return self

    @classmethod
    def from_env_defaults(cls) -> "PlatformConfig":
        return cls(
            commission_rate=Decimal(str(settings.DEFAULT_COMMISSION_RATE)),
            delivery_base_fee=Decimal(settings.DEFAULT_DELIVERY_BASE_FEE),
            delivery_per_km_fee=Decimal(settings.DEFAULT_DELIVERY_PER_KM_FEE),
            delivery_max_fee=Decimal(settings.DEFAULT_DELIVERY_MAX_FEE),
            service_fee=Decimal(settings.DEFAULT_SERVICE_FEE),
            tax_enabled=settings.DEFAULT_TAX_ENABLED,
            tax_rate=Decimal(str(settings.DEFAULT_TAX_RATE)),
            gateway_fee_percent=Decimal(str(settings.DEFAULT_GATEWAY_FEE_PERCENT)),
            rider_base_pay=Decimal(settings.DEFAULT_RIDER_BASE_PAY),
            rider_per_km_rate=Decimal(settings.DEFAULT_RIDER_PER_KM_RATE),
            rider_platform_fee_percent=Decimal(str(settings.DEFAULT_RIDER_PLATFORM_FEE_PERCENT)),
            default_distance_km=settings.DEFAULT_DISTANCE_KM,
            cod_overdue_threshold=Decimal(settings.COD_OVERDUE_THRESHOLD),
            minimum_order_amount=Decimal(settings.DEFAULT_MINIMUM_ORDER_AMOUNT),
            bonus_daily_target=settings.DEFAULT_BONUS_DAILY_TARGET,
            bonus_amount=Decimal(settings.DEFAULT_BONUS_AMOUNT),
        )

    @classmethod
    def from_record(cls, record: PlatformSettings) -> "PlatformConfig":
        return cls(
            commission_rate=record.commission_rate,
            business_type_commission={
                key: Decimal(str(value))
                for key, value in (record.business_type_commission or {}).items()
            },
            delivery_base_fee=record.delivery_base_fee,
            delivery_per_km_fee=record.delivery_per_km_fee,
            delivery_max_fee=record.delivery_max_fee,
            service_fee=record.service_fee,
            tax_enabled=record.tax_enabled,
            tax_rate=record.tax_rate,
            gateway_fee_percent=record.gateway_fee_percent,
            rider_base_pay=record.rider_base_pay,
            rider_per_km_rate=record.rider_per_km_rate,
            rider_platform_fee_percent=record.rider_platform_fee_percent,
            default_distance_km=record.default_distance_km,
            cod_overdue_threshold=record.cod_overdue_threshold,
            minimum_order_amount=record.minimum_order_amount,
            is_maintenance_mode=record.is_maintenance_mode,
            bonus_daily_target=record.bonus_daily_target,
            bonus_amount=record.bonus_amount,
        )

    def apply_to_record(self, record: PlatformSettings) -> None:
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if field_name == "business_type_commission":
                value = {key: str(rate) for key, rate in value.items()}
            setattr(record, field_name, value)


def _remember(config: PlatformConfig) -> None:
    global _last_known_good
    _last_known_good = config


def reset_settings_state() -> None:
    """Forget the last-known-good config (tests and process forks)"""
    global _last_known_good
    _last_known_good = None


async def invalidate_settings_cache() -> None:
    try:
        redis = await get_redis()
        await redis.delete(_CACHE_KEY)
    except Exception as e:
        logger.warning(
            "Failed to invalidate settings cache",
            extra_data={"error": str(e)},
        )


class SettingsProvider:
    """Loads PlatformConfig for one request. Never mutates a config in place."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_config(self) -> PlatformConfig:
        cached = await self._read_cache()
        if cached is not None:
            return cached

        try:
            record = await self._load_or_seed_record()
        except SQLAlchemyError as e:
            if _last_known_good is not None:
                logger.warning(
                    "Settings store unavailable, serving last-known-good config",
                    extra_data={"error": str(e)},
                )
                return _last_known_good
            raise DependencyError("settings", "Platform settings are unavailable") from e

        config = PlatformConfig.from_record(record)
        _remember(config)
        await self._write_cache(config)
        return config

    async def update_config(self, changes: dict[str, Any], updated_by: str) -> PlatformConfig:
        """Validate and persist operator changes, then drop the cached copy"""
        unknown = set(changes) - set(PlatformConfig.model_fields)
        if unknown:
            raise ValidationException(
                f"Unknown settings: {', '.join(sorted(unknown))}",
                details={"unknown_fields": sorted(unknown)},
            )

        record = await self._load_or_seed_record(for_update=True)
        current = PlatformConfig.from_record(record)
        try:
            updated = PlatformConfig.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            raise ValidationException(
                "Invalid platform settings",
                details={
                    "errors": [
                        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                        for err in e.errors()
                    ]
                },
            ) from e

        updated.apply_to_record(record)
        record.updated_by = updated_by
        record.updated_at = datetime.utcnow()
        await self.db.commit()

        await invalidate_settings_cache()
        _remember(updated)

        logger.info(
            "Platform settings updated",
            extra_data={"updated_by": updated_by, "fields": sorted(changes)},
        )
        return updated

    async def _load_or_seed_record(self, for_update: bool = False) -> PlatformSettings:
        query = select(PlatformSettings).where(PlatformSettings.id == PLATFORM_SETTINGS_ID)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            record = PlatformSettings(id=PLATFORM_SETTINGS_ID)
            PlatformConfig.from_env_defaults().apply_to_record(record)
            self.db.add(record)
            await self.db.flush()
            logger.info("Seeded platform settings from environment defaults")
        return record

    async def _read_cache(self) -> PlatformConfig | None:
        if settings.SETTINGS_CACHE_TTL_SECONDS <= 0:
            return None
        try:
            redis = await get_redis()
            raw = await redis.get(_CACHE_KEY)
            if raw is None:
                return None
            return PlatformConfig.model_validate_json(raw)
        except Exception as e:
            logger.warning("Settings cache read failed", extra_data={"error": str(e)})
            return None

    async def _write_cache(self, config: PlatformConfig) -> None:
        if settings.SETTINGS_CACHE_TTL_SECONDS <= 0:
            return
        try:
            redis = await get_redis()
            await redis.setex(_CACHE_KEY, settings.SETTINGS_CACHE_TTL_SECONDS, config.model_dump_json())
        except Exception as e:
            logger.warning("Settings cache write failed", extra_data={"error": str(e)})
