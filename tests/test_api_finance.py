"""
Tests for the finance API: overview, restaurant wallets, ledgers and payouts
"""
from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.db.models.rider import Rider

OPERATOR_HEADERS = {"X-Actor-Role": "operator", "X-Actor-Id": "7"}
RESTAURANT_HEADERS = {"X-Actor-Role": "restaurant", "X-Actor-Id": "1"}


@pytest.fixture
async def delivered_order(order_factory, drive_order, sample_rider: Rider):
    order = await order_factory()
    return await drive_order(order, sample_rider)


class TestFinanceOverview:

    @pytest.mark.integration
    async def test_overview(self, test_client: AsyncClient, delivered_order):
        response = await test_client.get("/api/finance/overview", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["all_time"]["order_count"] == 1
        assert Decimal(data["all_time"]["revenue"]) == Decimal("1140")
        assert Decimal(data["all_time"]["commission"]) == Decimal("100")
        assert Decimal(data["all_time"]["platform_net_profit"]) == Decimal("114")
        assert data["today"]["order_count"] == 1
        assert Decimal(data["restaurant_pending_payouts"]) == Decimal("900")
        assert Decimal(data["rider_pending_payouts"]) == Decimal("126")
        assert Decimal(data["outstanding_cod"]) == Decimal("1140")
        assert data["overdue_riders"] == 0

    @pytest.mark.integration
    async def test_overview_is_operator_only(self, test_client: AsyncClient):
        response = await test_client.get("/api/finance/overview", headers=RESTAURANT_HEADERS)

        assert response.status_code == 403


class TestRestaurantWallet:

    @pytest.mark.integration
    async def test_wallet_after_delivery(self, test_client: AsyncClient, delivered_order):
        response = await test_client.get(
            f"/api/finance/restaurants/{delivered_order.restaurant_id}/wallet"
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["available_balance"]) == Decimal("900")
        assert Decimal(data["pending_payout"]) == Decimal("900")
        assert Decimal(data["total_commission_collected"]) == Decimal("100")

    @pytest.mark.integration
    async def test_wallet_of_unknown_restaurant(self, test_client: AsyncClient):
        response = await test_client.get("/api/finance/restaurants/404/wallet")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_3001"

    @pytest.mark.integration
    async def test_transactions(self, test_client: AsyncClient, delivered_order):
        response = await test_client.get(
            f"/api/finance/restaurants/{delivered_order.restaurant_id}/transactions"
        )

        [earning] = response.json()
        assert earning["transaction_type"] == "earning"
        assert earning["order_id"] == delivered_order.id
        assert Decimal(earning["amount"]) == Decimal("900")
        assert Decimal(earning["balance_after"]) == Decimal("900")

    @pytest.mark.integration
    async def test_refund_adjustment(self, test_client: AsyncClient, delivered_order):
        restaurant_id = delivered_order.restaurant_id

        response = await test_client.post(
            f"/api/finance/restaurants/{restaurant_id}/adjustments",
            json={"kind": "refund", "amount": "100", "description": "Cold food"},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["processed_by"] == "operator:7"
        assert response.json()["reference"] is None
        wallet = (await test_client.get(f"/api/finance/restaurants/{restaurant_id}/wallet")).json()
        assert Decimal(wallet["available_balance"]) == Decimal("800")
        assert Decimal(wallet["on_hold_amount"]) == Decimal("100")

    @pytest.mark.integration
    async def test_bonus_not_allowed_for_restaurants(self, test_client: AsyncClient, delivered_order):
        response = await test_client.post(
            f"/api/finance/restaurants/{delivered_order.restaurant_id}/adjustments",
            json={"kind": "bonus", "amount": "100"},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "kind"

    @pytest.mark.integration
    async def test_adjustment_cannot_overdraw(self, test_client: AsyncClient, delivered_order):
        response = await test_client.post(
            f"/api/finance/restaurants/{delivered_order.restaurant_id}/adjustments",
            json={"kind": "adjustment", "amount": "-5000"},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_4002"


class TestLedger:

    @pytest.mark.integration
    async def test_platform_transactions(self, test_client: AsyncClient, delivered_order):
        response = await test_client.get("/api/finance/platform/transactions", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        types = [tx["transaction_type"] for tx in response.json()]
        assert "commission" in types

    @pytest.mark.integration
    async def test_verify_ledger(self, test_client: AsyncClient, delivered_order, sample_rider: Rider):
        response = await test_client.get(
            f"/api/finance/ledger/rider/{sample_rider.id}/verify", headers=OPERATOR_HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["consistent"] is True
        assert Decimal(data["balance"]) == Decimal("126")
        assert Decimal(data["ledger_sum"]) == Decimal("126")

    @pytest.mark.integration
    async def test_verify_ledger_rejects_unknown_entity_type(self, test_client: AsyncClient):
        response = await test_client.get("/api/finance/ledger/customer/1/verify", headers=OPERATOR_HEADERS)

        assert response.status_code == 400


class TestPayouts:

    @pytest.mark.integration
    async def test_batch_paid_complete(self, test_client: AsyncClient, delivered_order):
        batch = await test_client.post(
            "/api/finance/payouts/batches",
            json={"payout_type": "restaurant", "notes": "week 42"},
            headers=OPERATOR_HEADERS,
        )
        assert batch.status_code == 200
        [payout] = batch.json()
        assert payout["status"] == "pending"
        assert Decimal(payout["total_amount"]) == Decimal("900")
        assert payout["processed_by"] == "operator:7"

        paid = await test_client.post(
            f"/api/finance/payouts/{payout['id']}/paid",
            json={"bank_reference": "BANK-42"},
            headers=OPERATOR_HEADERS,
        )
        assert paid.status_code == 200
        assert paid.json()["status"] == "paid"
        assert paid.json()["bank_reference"] == "BANK-42"

        completed = await test_client.post(
            f"/api/finance/payouts/{payout['id']}/complete", headers=OPERATOR_HEADERS
        )
        assert completed.json()["status"] == "completed"

        wallet = (
            await test_client.get(f"/api/finance/restaurants/{delivered_order.restaurant_id}/wallet")
        ).json()
        assert Decimal(wallet["available_balance"]) == Decimal("0")
        assert Decimal(wallet["pending_payout"]) == Decimal("0")

    @pytest.mark.integration
    async def test_list_payouts_by_status(self, test_client: AsyncClient, delivered_order):
        await test_client.post(
            "/api/finance/payouts/batches", json={"payout_type": "rider"}, headers=OPERATOR_HEADERS
        )

        pending = await test_client.get(
            "/api/finance/payouts", params={"status": "pending"}, headers=OPERATOR_HEADERS
        )
        paid = await test_client.get(
            "/api/finance/payouts", params={"status": "paid"}, headers=OPERATOR_HEADERS
        )

        assert [p["payout_type"] for p in pending.json()] == ["rider"]
        assert paid.json() == []

    @pytest.mark.integration
    async def test_unknown_payout(self, test_client: AsyncClient):
        response = await test_client.post(
            "/api/finance/payouts/77/paid", json={"bank_reference": "X"}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_4005"

    @pytest.mark.integration
    async def test_batches_are_operator_only(self, test_client: AsyncClient):
        response = await test_client.post(
            "/api/finance/payouts/batches", json={"payout_type": "restaurant"}, headers=RESTAURANT_HEADERS
        )

        assert response.status_code == 403
