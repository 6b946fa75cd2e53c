"""
Scenario 1 - happy path: the whole life of an order

Covers:
- COD order: place -> accept -> prepare -> ready -> rider takes it -> deliver
- outbox rows written at every step
- completion split with a longer actual distance than quoted
- operator cash settlement and restaurant payout closing the books
- card order settled on delivery
- daily delivery bonus credited once
"""
from decimal import Decimal

import pytest

from app.db.models.order import OrderStatus, PaymentMethod
from app.db.models.outbox_message import EventType
from app.db.models.payout import PayoutType
from app.db.models.rider import Rider
from app.db.models.transaction import EntityType, PLATFORM_ENTITY_ID, TransactionType
from app.domain.services.cod_service import CODReconciliationService
from app.domain.services.order_service import OrderService
from app.domain.services.payout_service import PayoutService
from tests.conftest import OPERATOR
from tests.scenarios.conftest import (
    assert_ledger_consistent,
    assert_ledger_count,
    assert_order_status,
    assert_outbox_count,
    assert_rider_balances,
    restaurant_actor,
    rider_actor,
)


@pytest.mark.scenario
class TestFullDeliveryLifecycle:

    @pytest.mark.asyncio
    async def test_cod_order_from_placement_to_payout(
        self, db_session, order_factory, sample_rider: Rider
    ):
        service = OrderService(db_session)

        # --- place: 2 x 500 quoted at 5 km ---
        order = await order_factory()
        assert order.total_price == Decimal("1140")
        await assert_outbox_count(db_session, EventType.ORDER_CREATED, 3)

        # --- kitchen ---
        kitchen = restaurant_actor(order)
        for step in (OrderStatus.ACCEPTED, OrderStatus.PREPARING, OrderStatus.READY):
            order = await service.update_status(order.id, step, kitchen)
        await assert_outbox_count(db_session, EventType.ORDER_AVAILABLE, 1, channel="foodswipe:riders:pool")

        # --- rider takes it from the pool ---
        order = await service.assign_rider(order.id, sample_rider.id, rider_actor(sample_rider))
        assert order.rider_id == sample_rider.id
        await assert_outbox_count(
            db_session, EventType.RIDER_ASSIGNED, 1, channel=f"foodswipe:riders:{sample_rider.id}"
        )

        # --- on the way, delivered after 7.5 km ---
        order = await service.update_status(order.id, OrderStatus.ON_THE_WAY, rider_actor(sample_rider))
        order = await service.update_status(
            order.id, OrderStatus.DELIVERED, rider_actor(sample_rider), distance_km=7.5
        )
        order = await assert_order_status(db_session, order.id, OrderStatus.DELIVERED)

        # customer amounts stay as quoted, rider pay follows the real trip
        assert order.delivery_fee == Decimal("140")
        assert order.total_price == Decimal("1140")
        assert order.rider_gross_earning == Decimal("190")
        assert order.rider_net_earning == Decimal("171")
        assert order.platform_net_profit == Decimal("69")
        assert order.is_paid is True
        assert order.is_settled is False

        await assert_ledger_count(db_session, EntityType.RESTAURANT, order.restaurant_id, 1, TransactionType.EARNING)
        await assert_ledger_count(db_session, EntityType.RIDER, sample_rider.id, 1, TransactionType.EARNING)
        await assert_ledger_count(db_session, EntityType.PLATFORM, PLATFORM_ENTITY_ID, 1, TransactionType.COMMISSION)
        await assert_rider_balances(
            db_session, sample_rider.id, cod_balance=Decimal("1140"), earnings_balance=Decimal("171")
        )

        # --- rider hands in the cash and is paid out ---
        cod = CODReconciliationService(db_session)
        [entry] = await cod.get_ledger(sample_rider.id)
        assert entry.amount_owed == Decimal("969")

        await cod.settle_rider_cod(
            sample_rider.id, Decimal("1140"), Decimal("171"), reference="DEP-77", processed_by="operator:1"
        )
        await assert_rider_balances(
            db_session, sample_rider.id, cod_balance=Decimal("0"), earnings_balance=Decimal("0")
        )
        assert (await OrderService(db_session).get_order(order.id)).is_settled is True

        # --- restaurant payout ---
        payouts = PayoutService(db_session)
        [payout] = await payouts.create_payout_batch(PayoutType.RESTAURANT, "operator:1")
        assert payout.total_amount == Decimal("900")
        await payouts.mark_paid(payout.id, "BANK-1", "operator:1")
        await payouts.mark_completed(payout.id, "operator:1")

        await assert_ledger_consistent(db_session, EntityType.RESTAURANT, order.restaurant_id)
        await assert_ledger_consistent(db_session, EntityType.RIDER, sample_rider.id)

    @pytest.mark.asyncio
    async def test_card_order_is_settled_on_delivery(
        self, db_session, order_factory, drive_order, sample_rider: Rider
    ):
        order = await order_factory(payment_method=PaymentMethod.CARD)
        order = await drive_order(order, sample_rider)

        order = await assert_order_status(db_session, order.id, OrderStatus.DELIVERED)
        assert order.is_settled is True
        assert order.gateway_fee == Decimal("25")
        assert order.platform_net_profit == Decimal("89")
        await assert_rider_balances(
            db_session, sample_rider.id, cod_balance=Decimal("0"), earnings_balance=Decimal("126")
        )
        assert await CODReconciliationService(db_session).get_ledger(sample_rider.id) == []

    @pytest.mark.asyncio
    async def test_daily_bonus_credited_once(
        self, db_session, order_factory, drive_order, sample_rider: Rider, set_platform_config
    ):
        await set_platform_config(bonus_daily_target=2, bonus_amount=Decimal("300"))

        for _ in range(3):
            order = await order_factory()
            await drive_order(order, sample_rider)

        await assert_ledger_count(db_session, EntityType.RIDER, sample_rider.id, 1, TransactionType.BONUS)
        await assert_ledger_count(db_session, EntityType.RIDER, sample_rider.id, 3, TransactionType.EARNING)
        await assert_ledger_consistent(db_session, EntityType.RIDER, sample_rider.id)

    @pytest.mark.asyncio
    async def test_missing_completion_distance_uses_quote(
        self, db_session, order_factory, drive_order, sample_rider: Rider
    ):
        order = await order_factory(distance_km=None)
        assert order.distance_fallback_used is True
        assert order.delivery_fee == Decimal("124")  # 40 + 4.2 km * 20

        order = await drive_order(order, sample_rider)

        assert order.distance_km == 4.2
        assert order.rider_net_earning == Decimal("112")  # 124 - 12
        assert order.distance_fallback_used is True

    @pytest.mark.asyncio
    async def test_reassignment_pays_the_delivering_rider(
        self, db_session, order_factory, drive_order, rider_factory
    ):
        first = await rider_factory(name="First")
        second = await rider_factory(name="Second")
        order = await order_factory()
        await drive_order(order, first, until=OrderStatus.READY)

        service = OrderService(db_session)
        await service.assign_rider(order.id, second.id, OPERATOR, reassign=True)
        await service.update_status(order.id, OrderStatus.ON_THE_WAY, rider_actor(second))
        await service.update_status(order.id, OrderStatus.DELIVERED, rider_actor(second))

        await assert_ledger_count(db_session, EntityType.RIDER, first.id, 0)
        await assert_ledger_count(db_session, EntityType.RIDER, second.id, 1, TransactionType.EARNING)
