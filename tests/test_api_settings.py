"""
Tests for the platform settings API
"""
from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.db.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID

OPERATOR_HEADERS = {"X-Actor-Role": "operator", "X-Actor-Id": "2"}


class TestSettingsAPI:

    @pytest.mark.integration
    async def test_get_settings(self, test_client: AsyncClient):
        response = await test_client.get("/api/settings/", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["commission_rate"]) == Decimal("10")
        assert Decimal(data["cod_overdue_threshold"]) == Decimal("20000")
        assert data["is_maintenance_mode"] is False

    @pytest.mark.integration
    async def test_settings_are_operator_only(self, test_client: AsyncClient):
        response = await test_client.get(
            "/api/settings/", headers={"X-Actor-Role": "customer", "X-Actor-Id": "1"}
        )

        assert response.status_code == 403

    @pytest.mark.integration
    async def test_patch_updates_and_records_operator(self, test_client: AsyncClient, db_session, fake_redis):
        response = await test_client.patch(
            "/api/settings/",
            json={"commission_rate": "12.5", "delivery_base_fee": "60"},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 200
        assert Decimal(response.json()["commission_rate"]) == Decimal("12.5")
        assert Decimal(response.json()["delivery_base_fee"]) == Decimal("60")

        record = await db_session.get(PlatformSettings, PLATFORM_SETTINGS_ID, populate_existing=True)
        assert record.updated_by == "operator:2"
        assert record.commission_rate == Decimal("12.5")

    @pytest.mark.integration
    async def test_new_settings_apply_to_next_order(
        self, test_client: AsyncClient, sample_product
    ):
        await test_client.patch(
            "/api/settings/", json={"commission_rate": "20"}, headers=OPERATOR_HEADERS
        )

        response = await test_client.post(
            "/api/orders/",
            json={
                "customer_id": 501,
                "restaurant_id": sample_product.restaurant_id,
                "items": [{"product_id": sample_product.id, "quantity": 2}],
                "shipping_address": "House 12, Street 4, Gulberg III, Lahore",
                "distance_km": 5.0,
            },
            headers={"X-Actor-Role": "customer", "X-Actor-Id": "501"},
        )

        assert Decimal(response.json()["commission_amount"]) == Decimal("200")

    @pytest.mark.integration
    async def test_unknown_field_rejected(self, test_client: AsyncClient):
        response = await test_client.patch(
            "/api/settings/", json={"surge_multiplier": "2"}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["unknown_fields"] == ["surge_multiplier"]

    @pytest.mark.integration
    async def test_invalid_merged_value_rejected(self, test_client: AsyncClient):
        response = await test_client.patch(
            "/api/settings/", json={"delivery_max_fee": "10"}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_1001"

    @pytest.mark.integration
    async def test_maintenance_mode_blocks_new_orders(self, test_client: AsyncClient, sample_product):
        await test_client.patch(
            "/api/settings/", json={"is_maintenance_mode": True}, headers=OPERATOR_HEADERS
        )

        response = await test_client.post(
            "/api/orders/",
            json={
                "customer_id": 501,
                "restaurant_id": sample_product.restaurant_id,
                "items": [{"product_id": sample_product.id, "quantity": 1}],
                "shipping_address": "House 12, Street 4, Gulberg III, Lahore",
            },
            headers={"X-Actor-Role": "customer", "X-Actor-Id": "501"},
        )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "ERR_5002"
