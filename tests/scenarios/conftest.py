"""
Fixtures and helpers for end-to-end scenario tests.

Provides:
- actor shortcuts for the parties of an order
- DB assertions (order status, outbox rows, wallets, ledger rows)
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.order import Order, OrderStatus
from app.db.models.outbox_message import EventType, OutboxMessage
from app.db.models.rider import Rider
from app.db.models.transaction import EntityType, Transaction, TransactionType
from app.domain.services.wallet_service import WalletLedgerService
from app.state_machine.order_states import Actor, ActorRole


# ============================================================================
# Actors
# ============================================================================


def restaurant_actor(order: Order) -> Actor:
    return Actor(ActorRole.RESTAURANT, order.restaurant_id)


def rider_actor(rider: Rider) -> Actor:
    return Actor(ActorRole.RIDER, rider.id)


def customer_actor(order: Order) -> Actor:
    return Actor(ActorRole.CUSTOMER, order.customer_id)


# ============================================================================
# DB assertions
# ============================================================================


async def assert_order_status(db: AsyncSession, order_id: int, expected: OrderStatus) -> Order:
    """Reload the order from the database and check its status"""
    order = await db.get(Order, order_id, populate_existing=True)
    assert order is not None, f"order {order_id} not found"
    assert order.status == expected, f"expected {expected.value}, got {order.status.value}"
    return order


async def assert_outbox_count(
    db: AsyncSession,
    event_type: EventType,
    expected: int,
    *,
    channel: Optional[str] = None,
) -> None:
    query = select(func.count(OutboxMessage.id)).where(OutboxMessage.event_type == event_type)
    if channel is not None:
        query = query.where(OutboxMessage.channel == channel)
    count = (await db.execute(query)).scalar_one()
    assert count == expected, f"{event_type.value}: expected {expected} rows, got {count}"


async def assert_ledger_count(
    db: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    expected: int,
    kind: Optional[TransactionType] = None,
) -> None:
    query = select(func.count(Transaction.id)).where(
        Transaction.entity_type == entity_type,
        Transaction.entity_id == entity_id,
    )
    if kind is not None:
        query = query.where(Transaction.transaction_type == kind)
    count = (await db.execute(query)).scalar_one()
    assert count == expected, f"{entity_type.value}:{entity_id}: expected {expected} ledger rows, got {count}"


async def assert_ledger_consistent(db: AsyncSession, entity_type: EntityType, entity_id: int) -> None:
    check = await WalletLedgerService(db).verify_ledger(entity_type, entity_id)
    assert check.consistent, f"balance {check.balance} != ledger sum {check.ledger_sum}"


async def assert_rider_balances(
    db: AsyncSession,
    rider_id: int,
    *,
    cod_balance: Decimal,
    earnings_balance: Decimal,
) -> Rider:
    rider = await db.get(Rider, rider_id, populate_existing=True)
    assert rider.cod_balance == cod_balance
    assert rider.earnings_balance == earnings_balance
    return rider
