"""
Tests for payout batches: one pending payout per wallet, ledger posted on paid
"""
from decimal import Decimal

import pytest

from app.core.exceptions import PayoutNotFoundError, ValidationException
from app.db.models.payout import PayoutStatus, PayoutType
from app.db.models.transaction import EntityType, TransactionType
from app.domain.services.payout_service import PayoutService
from app.domain.services.wallet_service import WalletLedgerService


@pytest.fixture
async def delivered_order(order_factory, drive_order, sample_rider):
    """Restaurant is owed 900, rider has 126 withdrawable"""
    order = await order_factory()
    return await drive_order(order, sample_rider)


class TestPayoutBatch:
    @pytest.mark.asyncio
    async def test_restaurant_batch(self, db_session, delivered_order):
        payouts = await PayoutService(db_session).create_payout_batch(
            PayoutType.RESTAURANT, "operator:1", notes="weekly"
        )

        assert len(payouts) == 1
        payout = payouts[0]
        assert payout.entity_id == delivered_order.restaurant_id
        assert payout.total_amount == Decimal("900")
        assert payout.status == PayoutStatus.PENDING
        assert payout.notes == "weekly"

    @pytest.mark.asyncio
    async def test_rider_batch(self, db_session, delivered_order, sample_rider):
        [payout] = await PayoutService(db_session).create_payout_batch(PayoutType.RIDER, "operator:1")

        assert payout.entity_id == sample_rider.id
        assert payout.total_amount == Decimal("126")

    @pytest.mark.asyncio
    async def test_entity_with_pending_payout_skipped(self, db_session, delivered_order):
        service = PayoutService(db_session)
        await service.create_payout_batch(PayoutType.RESTAURANT, "operator:1")

        second = await service.create_payout_batch(PayoutType.RESTAURANT, "operator:1")

        assert second == []

    @pytest.mark.asyncio
    async def test_entity_filter(self, db_session, delivered_order, restaurant_factory):
        other = await restaurant_factory(name="Other Kitchen")
        await WalletLedgerService(db_session).apply_restaurant_delta(
            other.id, Decimal("300"), TransactionType.EARNING
        )

        payouts = await PayoutService(db_session).create_payout_batch(
            PayoutType.RESTAURANT, "operator:1", entity_ids=[other.id]
        )

        assert [p.entity_id for p in payouts] == [other.id]

    @pytest.mark.asyncio
    async def test_empty_wallets_get_no_payout(self, db_session, sample_restaurant):
        await WalletLedgerService(db_session).get_or_create_restaurant_wallet(sample_restaurant.id)

        payouts = await PayoutService(db_session).create_payout_batch(PayoutType.RESTAURANT, "operator:1")

        assert payouts == []


class TestPayoutLifecycle:
    @pytest.mark.asyncio
    async def test_mark_paid_posts_ledger(self, db_session, delivered_order):
        service = PayoutService(db_session)
        [payout] = await service.create_payout_batch(PayoutType.RESTAURANT, "operator:1")

        paid = await service.mark_paid(payout.id, "BANK-42", "operator:2")

        assert paid.status == PayoutStatus.PAID
        assert paid.bank_reference == "BANK-42"
        assert paid.processed_by == "operator:2"
        assert paid.processed_at is not None

        wallets = WalletLedgerService(db_session)
        wallet = await wallets.get_restaurant_wallet(delivered_order.restaurant_id)
        assert wallet.available_balance == Decimal("0")
        assert wallet.pending_payout == Decimal("0")
        txs = await wallets.get_transactions(EntityType.RESTAURANT, delivered_order.restaurant_id)
        assert txs[-1].transaction_type == TransactionType.PAYOUT
        assert txs[-1].amount == Decimal("-900")
        assert txs[-1].reference == "BANK-42"
        assert txs[-1].processed_by == "operator:2"
        check = await wallets.verify_ledger(EntityType.RESTAURANT, delivered_order.restaurant_id)
        assert check.consistent

    @pytest.mark.asyncio
    async def test_mark_paid_twice_posts_once(self, db_session, delivered_order, sample_rider):
        service = PayoutService(db_session)
        [payout] = await service.create_payout_batch(PayoutType.RIDER, "operator:1")
        await service.mark_paid(payout.id, "BANK-1", "operator:1")

        again = await service.mark_paid(payout.id, "BANK-2", "operator:1")

        assert again.bank_reference == "BANK-1"
        txs = await WalletLedgerService(db_session).get_transactions(EntityType.RIDER, sample_rider.id)
        assert [tx.transaction_type for tx in txs].count(TransactionType.PAYOUT) == 1

    @pytest.mark.asyncio
    async def test_complete_after_paid(self, db_session, delivered_order):
        service = PayoutService(db_session)
        [payout] = await service.create_payout_batch(PayoutType.RESTAURANT, "operator:1")
        await service.mark_paid(payout.id, "BANK-9", "operator:1")

        completed = await service.mark_completed(payout.id, "operator:1")

        assert completed.status == PayoutStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pending_payout_cannot_complete(self, db_session, delivered_order):
        service = PayoutService(db_session)
        [payout] = await service.create_payout_batch(PayoutType.RESTAURANT, "operator:1")

        with pytest.raises(ValidationException):
            await service.mark_completed(payout.id, "operator:1")

    @pytest.mark.asyncio
    async def test_unknown_payout(self, db_session, platform_config):
        service = PayoutService(db_session)

        with pytest.raises(PayoutNotFoundError):
            await service.mark_paid(404, "BANK-0", "operator:1")
        with pytest.raises(PayoutNotFoundError):
            await service.get_payout(404)

    @pytest.mark.asyncio
    async def test_list_by_status(self, db_session, delivered_order):
        service = PayoutService(db_session)
        [restaurant_payout] = await service.create_payout_batch(PayoutType.RESTAURANT, "operator:1")
        await service.create_payout_batch(PayoutType.RIDER, "operator:1")
        await service.mark_paid(restaurant_payout.id, "BANK-5", "operator:1")

        paid = await service.list_payouts(status=PayoutStatus.PAID)
        pending_riders = await service.list_payouts(
            status=PayoutStatus.PENDING, payout_type=PayoutType.RIDER
        )

        assert [p.id for p in paid] == [restaurant_payout.id]
        assert len(pending_riders) == 1
