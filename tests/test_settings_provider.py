"""
Tests for SettingsProvider: Redis cache, database row, last-known-good fallback
and validated operator updates.
"""
import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.exceptions import DependencyError, ValidationException
from app.db.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID
from app.domain.services.settings_provider import PlatformConfig, SettingsProvider
from tests.conftest import TEST_CONFIG

CACHE_KEY = "platform_settings:config"


def _db_down(*args, **kwargs):
    raise OperationalError("SELECT platform_settings", {}, Exception("connection refused"))


class TestGetConfig:
    @pytest.mark.unit
    async def test_reads_row_and_fills_cache(self, db_session, platform_config, fake_redis):
        config = await SettingsProvider(db_session).get_config()

        assert config == TEST_CONFIG
        cached = json.loads(await fake_redis.get(CACHE_KEY))
        assert Decimal(cached["commission_rate"]) == Decimal("10")
        assert fake_redis._ttls[CACHE_KEY] == settings.SETTINGS_CACHE_TTL_SECONDS

    @pytest.mark.unit
    async def test_cache_hit_skips_database(self, db_session, fake_redis):
        cached = TEST_CONFIG.model_copy(update={"commission_rate": Decimal("12")})
        await fake_redis.set(CACHE_KEY, cached.model_dump_json())

        with patch.object(SettingsProvider, "_load_or_seed_record", side_effect=_db_down):
            config = await SettingsProvider(db_session).get_config()

        assert config.commission_rate == Decimal("12")

    @pytest.mark.unit
    async def test_corrupt_cache_entry_falls_back_to_row(self, db_session, platform_config, fake_redis):
        await fake_redis.set(CACHE_KEY, "{not json")

        config = await SettingsProvider(db_session).get_config()

        assert config == TEST_CONFIG

    @pytest.mark.unit
    async def test_redis_unreachable_falls_back_to_row(self, db_session, platform_config):
        async def _broken_redis():
            raise ConnectionError("redis down")

        with patch("app.domain.services.settings_provider.get_redis", _broken_redis):
            config = await SettingsProvider(db_session).get_config()

        assert config == TEST_CONFIG

    @pytest.mark.unit
    async def test_seeds_row_from_environment_defaults(self, db_session):
        config = await SettingsProvider(db_session).get_config()

        assert config.commission_rate == Decimal(str(settings.DEFAULT_COMMISSION_RATE))
        assert config.default_distance_km == settings.DEFAULT_DISTANCE_KM
        assert config.cod_overdue_threshold == Decimal(settings.COD_OVERDUE_THRESHOLD)
        record = await db_session.get(PlatformSettings, PLATFORM_SETTINGS_ID)
        assert record is not None

    @pytest.mark.unit
    async def test_zero_ttl_bypasses_cache(self, db_session, platform_config, fake_redis, monkeypatch):
        monkeypatch.setattr(settings, "SETTINGS_CACHE_TTL_SECONDS", 0)

        await SettingsProvider(db_session).get_config()

        assert await fake_redis.get(CACHE_KEY) is None

    @pytest.mark.unit
    async def test_database_down_serves_last_known_good(self, db_session, platform_config, fake_redis):
        provider = SettingsProvider(db_session)
        await provider.get_config()
        await fake_redis.delete(CACHE_KEY)

        with patch.object(SettingsProvider, "_load_or_seed_record", side_effect=_db_down):
            config = await provider.get_config()

        assert config == TEST_CONFIG

    @pytest.mark.unit
    async def test_database_down_without_fallback(self, db_session):
        with patch.object(SettingsProvider, "_load_or_seed_record", side_effect=_db_down):
            with pytest.raises(DependencyError) as exc_info:
                await SettingsProvider(db_session).get_config()

        assert exc_info.value.status_code == 503


class TestUpdateConfig:
    @pytest.mark.unit
    async def test_update_persists_and_invalidates_cache(self, db_session, platform_config, fake_redis):
        provider = SettingsProvider(db_session)
        await provider.get_config()

        updated = await provider.update_config({"commission_rate": "12.5"}, "operator:1")

        assert updated.commission_rate == Decimal("12.5")
        assert await fake_redis.get(CACHE_KEY) is None
        record = await db_session.get(PlatformSettings, PLATFORM_SETTINGS_ID)
        assert record.commission_rate == Decimal("12.5")
        assert record.updated_by == "operator:1"
        assert (await provider.get_config()).commission_rate == Decimal("12.5")

    @pytest.mark.unit
    async def test_update_business_type_rates(self, db_session, platform_config):
        updated = await SettingsProvider(db_session).update_config(
            {"business_type_commission": {"bakery": "8", "pharmacy": "5"}}, "operator:1"
        )

        assert updated.business_type_commission == {"bakery": Decimal("8"), "pharmacy": Decimal("5")}

    @pytest.mark.unit
    async def test_unknown_field_rejected(self, db_session, platform_config):
        with pytest.raises(ValidationException) as exc_info:
            await SettingsProvider(db_session).update_config({"surge_multiplier": 2}, "operator:1")

        assert exc_info.value.details["unknown_fields"] == ["surge_multiplier"]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "changes",
        [
            {"commission_rate": "150"},
            {"rider_platform_fee_percent": "-1"},
            {"default_distance_km": 0},
            {"delivery_max_fee": "10"},
            {"business_type_commission": {"bakery": "101"}},
        ],
    )
    async def test_invalid_values_rejected(self, db_session, platform_config, changes):
        with pytest.raises(ValidationException):
            await SettingsProvider(db_session).update_config(changes, "operator:1")

        record = await db_session.get(PlatformSettings, PLATFORM_SETTINGS_ID)
        assert PlatformConfig.from_record(record) == TEST_CONFIG

    @pytest.mark.unit
    def test_config_is_immutable(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            TEST_CONFIG.commission_rate = Decimal("50")
