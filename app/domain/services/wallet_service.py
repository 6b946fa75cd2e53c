"""
Wallet Ledger Service - restaurant and rider wallets with an append-only ledger.

Every balance change goes through apply_restaurant_delta / apply_rider_delta,
which mutate the wallet and append the matching Transaction in the same flush.
Transaction.amount is the signed change of the entity's ledger balance:

    restaurant -> RestaurantWallet.available_balance
    rider      -> RiderWallet.available_withdraw

so summing an entity's transactions always reconstructs that balance.

Methods here only flush. The caller owns the transaction and commits (or rolls
back) the wallet change together with whatever triggered it.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ErrorCode,
    InsufficientBalanceError,
    RestaurantNotFoundError,
    RiderNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID
from app.db.models.restaurant import Restaurant
from app.db.models.restaurant_wallet import RestaurantWallet
from app.db.models.rider import Rider
from app.db.models.rider_wallet import RiderWallet
from app.db.models.transaction import (
    EntityType,
    PLATFORM_ENTITY_ID,
    Transaction,
    TransactionType,
)
from app.domain.services.money import ZERO, to_decimal
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

RESTAURANT_KINDS = frozenset({
    TransactionType.EARNING,
    TransactionType.PAYOUT,
    TransactionType.REFUND,
    TransactionType.ADJUSTMENT,
})

RIDER_KINDS = frozenset({
    TransactionType.EARNING,
    TransactionType.BONUS,
    TransactionType.PENALTY,
    TransactionType.PAYOUT,
    TransactionType.ADJUSTMENT,
})

PLATFORM_KINDS = frozenset({
    TransactionType.COMMISSION,
    TransactionType.CASH_DEPOSIT,
    TransactionType.ADJUSTMENT,
})


@dataclass(frozen=True)
class LedgerCheck:
    entity_type: EntityType
    entity_id: int
    balance: Decimal
    ledger_sum: Decimal

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


def _checked_amount(amount, kind: TransactionType) -> Decimal:
    value = to_decimal(amount)
    if kind == TransactionType.ADJUSTMENT:
        if value == ZERO:
            raise ValidationException("Adjustment amount cannot be zero", field="amount",
                                      error_code=ErrorCode.INVALID_AMOUNT)
        return value
    if value <= ZERO:
        raise ValidationException("Amount must be positive", field="amount",
                                  error_code=ErrorCode.INVALID_AMOUNT)
    return value


class WalletLedgerService:
    """Wallet mutations and ledger queries"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox = OutboxService(db)

    # ==================== wallets ====================

    async def get_or_create_restaurant_wallet(
        self, restaurant_id: int, for_update: bool = False
    ) -> RestaurantWallet:
        query = select(RestaurantWallet).where(RestaurantWallet.restaurant_id == restaurant_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        wallet = result.scalar_one_or_none()

        if not wallet:
            wallet = RestaurantWallet(
                restaurant_id=restaurant_id,
                available_balance=ZERO,
                pending_payout=ZERO,
                total_earnings=ZERO,
                total_commission_collected=ZERO,
                on_hold_amount=ZERO,
            )
            self.db.add(wallet)
            await self.db.flush()

        return wallet

    async def get_or_create_rider_wallet(
        self, rider_id: int, for_update: bool = False
    ) -> RiderWallet:
        query = select(RiderWallet).where(RiderWallet.rider_id == rider_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        wallet = result.scalar_one_or_none()

        if not wallet:
            wallet = RiderWallet(
                rider_id=rider_id,
                total_earnings=ZERO,
                available_withdraw=ZERO,
                cash_collected=ZERO,
                cash_to_deposit=ZERO,
                delivery_earnings=ZERO,
                bonuses=ZERO,
                penalties=ZERO,
            )
            self.db.add(wallet)
            await self.db.flush()

        return wallet

    async def get_restaurant_wallet(self, restaurant_id: int) -> RestaurantWallet:
        """Read-only view; a restaurant without earnings yet gets an unsaved zero wallet"""
        if await self.db.get(Restaurant, restaurant_id) is None:
            raise RestaurantNotFoundError(restaurant_id)
        result = await self.db.execute(
            select(RestaurantWallet).where(RestaurantWallet.restaurant_id == restaurant_id)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            wallet = RestaurantWallet(
                restaurant_id=restaurant_id,
                available_balance=ZERO,
                pending_payout=ZERO,
                total_earnings=ZERO,
                total_commission_collected=ZERO,
                on_hold_amount=ZERO,
            )
        return wallet

    async def get_rider_wallet(self, rider_id: int) -> RiderWallet:
        """Read-only view; a rider without earnings yet gets an unsaved zero wallet"""
        if await self.db.get(Rider, rider_id) is None:
            raise RiderNotFoundError(rider_id)
        result = await self.db.execute(
            select(RiderWallet).where(RiderWallet.rider_id == rider_id)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            wallet = RiderWallet(
                rider_id=rider_id,
                total_earnings=ZERO,
                available_withdraw=ZERO,
                cash_collected=ZERO,
                cash_to_deposit=ZERO,
                delivery_earnings=ZERO,
                bonuses=ZERO,
                penalties=ZERO,
            )
        return wallet

    # ==================== ledger postings ====================

    async def apply_restaurant_delta(
        self,
        restaurant_id: int,
        amount,
        kind: TransactionType,
        order_id: Optional[int] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        commission=None,
        processed_by: Optional[str] = None,
    ) -> Transaction:
        """
        Apply one restaurant ledger event.

        earning    -> available, pending and total up (commission bumps total_commission_collected)
        payout     -> pending and available down, last_payout_date stamped
        refund     -> available down, on_hold up
        adjustment -> available moved by the signed amount
        """
        if kind not in RESTAURANT_KINDS:
            raise ValidationException(f"Unsupported restaurant transaction: {kind.value}", field="kind")
        value = _checked_amount(amount, kind)
        await self._ensure_not_posted(EntityType.RESTAURANT, restaurant_id, order_id, kind)

        wallet = await self.get_or_create_restaurant_wallet(restaurant_id, for_update=True)
        balance = wallet.available_balance

        if kind == TransactionType.EARNING:
            delta = value
            wallet.pending_payout = wallet.pending_payout + value
            wallet.total_earnings = wallet.total_earnings + value
            if commission is not None:
                wallet.total_commission_collected = (
                    wallet.total_commission_collected + to_decimal(commission)
                )
        elif kind == TransactionType.PAYOUT:
            if value > balance:
                raise InsufficientBalanceError("restaurant", restaurant_id, balance, value)
            delta = -value
            wallet.pending_payout = max(ZERO, wallet.pending_payout - value)
            wallet.last_payout_date = datetime.utcnow()
        elif kind == TransactionType.REFUND:
            if value > balance:
                raise InsufficientBalanceError("restaurant", restaurant_id, balance, value)
            delta = -value
            wallet.on_hold_amount = wallet.on_hold_amount + value
        else:
            if balance + value < ZERO:
                raise InsufficientBalanceError("restaurant", restaurant_id, balance, -value)
            delta = value

        wallet.available_balance = balance + delta
        transaction = await self._append(
            EntityType.RESTAURANT, restaurant_id, kind, delta,
            wallet.available_balance, order_id, description, reference,
            processed_by=processed_by,
        )
        await self.outbox.queue_wallet_updated(
            "restaurant",
            restaurant_id,
            {
                "transaction_type": kind.value,
                "amount": str(delta),
                "available_balance": str(wallet.available_balance),
                "pending_payout": str(wallet.pending_payout),
                "order_id": order_id,
            },
        )
        return transaction

    async def apply_rider_delta(
        self,
        rider_id: int,
        amount,
        kind: TransactionType,
        order_id: Optional[int] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> Transaction:
        """
        Apply one rider ledger event.

        earning    -> delivery_earnings, available and total up
        bonus      -> bonuses, available and total up
        penalty    -> penalties up, available down (may go negative)
        payout     -> available down, last_withdraw_date stamped
        adjustment -> available moved by the signed amount
        """
        if kind not in RIDER_KINDS:
            raise ValidationException(f"Unsupported rider transaction: {kind.value}", field="kind")
        value = _checked_amount(amount, kind)
        await self._ensure_not_posted(EntityType.RIDER, rider_id, order_id, kind)

        wallet = await self.get_or_create_rider_wallet(rider_id, for_update=True)
        balance = wallet.available_withdraw

        if kind == TransactionType.EARNING:
            delta = value
            wallet.delivery_earnings = wallet.delivery_earnings + value
            wallet.total_earnings = wallet.total_earnings + value
        elif kind == TransactionType.BONUS:
            delta = value
            wallet.bonuses = wallet.bonuses + value
            wallet.total_earnings = wallet.total_earnings + value
        elif kind == TransactionType.PENALTY:
            delta = -value
            wallet.penalties = wallet.penalties + value
        elif kind == TransactionType.PAYOUT:
            if value > balance:
                raise InsufficientBalanceError("rider", rider_id, balance, value)
            delta = -value
            wallet.last_withdraw_date = datetime.utcnow()
        else:
            delta = value

        wallet.available_withdraw = balance + delta
        transaction = await self._append(
            EntityType.RIDER, rider_id, kind, delta,
            wallet.available_withdraw, order_id, description, reference,
            processed_by=processed_by,
        )
        await self.outbox.queue_wallet_updated(
            "rider",
            rider_id,
            {
                "transaction_type": kind.value,
                "amount": str(delta),
                "available_withdraw": str(wallet.available_withdraw),
                "order_id": order_id,
            },
        )
        return transaction

    async def record_platform_entry(
        self,
        kind: TransactionType,
        amount,
        order_id: Optional[int] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Transaction:
        """Platform-side ledger line (commission, COD cash handed in)"""
        if kind not in PLATFORM_KINDS:
            raise ValidationException(f"Unsupported platform transaction: {kind.value}", field="kind")
        value = to_decimal(amount)
        await self._lock_platform_ledger()
        await self._ensure_not_posted(EntityType.PLATFORM, PLATFORM_ENTITY_ID, order_id, kind)
        balance = await self.reconstruct_balance(EntityType.PLATFORM, PLATFORM_ENTITY_ID)
        return await self._append(
            EntityType.PLATFORM, PLATFORM_ENTITY_ID, kind, value,
            balance + value, order_id, description, reference,
        )

    async def record_cod_collection(self, rider_id: int, amount) -> RiderWallet:
        """Cash taken from a customer: it is owed to the platform, not withdrawable"""
        value = to_decimal(amount)
        wallet = await self.get_or_create_rider_wallet(rider_id, for_update=True)
        wallet.cash_collected = wallet.cash_collected + value
        wallet.cash_to_deposit = wallet.cash_to_deposit + value
        await self.db.flush()
        return wallet

    async def record_cod_deposit(self, rider_id: int, amount) -> RiderWallet:
        """Cash handed in by a rider; never drives cash_to_deposit below zero"""
        value = to_decimal(amount)
        wallet = await self.get_or_create_rider_wallet(rider_id, for_update=True)
        wallet.cash_to_deposit = max(ZERO, wallet.cash_to_deposit - value)
        await self.db.flush()
        return wallet

    async def post_operator_adjustment(
        self,
        entity_type: EntityType,
        entity_id: int,
        kind: TransactionType,
        amount,
        description: Optional[str],
        processed_by: str,
    ) -> Transaction:
        """Operator bonus / penalty / refund / adjustment, committed on its own"""
        if entity_type == EntityType.RESTAURANT:
            if await self.db.get(Restaurant, entity_id) is None:
                raise RestaurantNotFoundError(entity_id)
            if kind not in (TransactionType.REFUND, TransactionType.ADJUSTMENT):
                raise ValidationException("Operators may only post refund or adjustment to a restaurant", field="kind")
            transaction = await self.apply_restaurant_delta(
                entity_id, amount, kind, description=description, processed_by=processed_by,
            )
        elif entity_type == EntityType.RIDER:
            if await self.db.get(Rider, entity_id) is None:
                raise RiderNotFoundError(entity_id)
            if kind not in (TransactionType.BONUS, TransactionType.PENALTY, TransactionType.ADJUSTMENT):
                raise ValidationException("Operators may only post bonus, penalty or adjustment to a rider", field="kind")
            transaction = await self.apply_rider_delta(
                entity_id, amount, kind, description=description, processed_by=processed_by,
            )
        else:
            raise ValidationException("Platform entries are posted by settlement only", field="entity_type")

        await self.db.commit()
        logger.info(
            "Operator wallet adjustment posted",
            extra_data={
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "kind": kind.value,
                "amount": str(transaction.amount),
                "processed_by": processed_by,
            },
        )
        return transaction

    # ==================== queries ====================

    async def get_transactions(
        self,
        entity_type: EntityType,
        entity_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        """Entity history in creation order"""
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.entity_type == entity_type,
                Transaction.entity_id == entity_id,
            )
            .order_by(Transaction.created_at, Transaction.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def reconstruct_balance(self, entity_type: EntityType, entity_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.entity_type == entity_type,
                Transaction.entity_id == entity_id,
            )
        )
        return to_decimal(result.scalar_one())

    async def verify_ledger(self, entity_type: EntityType, entity_id: int) -> LedgerCheck:
        if entity_type == EntityType.RESTAURANT:
            balance = (await self.get_restaurant_wallet(entity_id)).available_balance
        elif entity_type == EntityType.RIDER:
            balance = (await self.get_rider_wallet(entity_id)).available_withdraw
        else:
            raise ValidationException("Platform ledger has no wallet to verify against", field="entity_type")

        ledger_sum = await self.reconstruct_balance(entity_type, entity_id)
        check = LedgerCheck(entity_type, entity_id, to_decimal(balance), ledger_sum)
        if not check.consistent:
            logger.error(
                "Ledger does not reconstruct wallet balance",
                extra_data={
                    "entity_type": entity_type.value,
                    "entity_id": entity_id,
                    "balance": str(check.balance),
                    "ledger_sum": str(check.ledger_sum),
                },
            )
        return check

    # ==================== internals ====================

    async def _lock_platform_ledger(self) -> None:
        """The platform has no wallet row; appends serialize on the settings row instead"""
        await self.db.execute(
            select(PlatformSettings.id)
            .where(PlatformSettings.id == PLATFORM_SETTINGS_ID)
            .with_for_update()
        )

    async def _ensure_not_posted(
        self,
        entity_type: EntityType,
        entity_id: int,
        order_id: Optional[int],
        kind: TransactionType,
    ) -> None:
        """One posting per (entity, order, kind); the unique constraint backs this up"""
        if order_id is None:
            return
        result = await self.db.execute(
            select(Transaction.id).where(
                Transaction.entity_type == entity_type,
                Transaction.entity_id == entity_id,
                Transaction.order_id == order_id,
                Transaction.transaction_type == kind,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise ValidationException(
                f"{kind.value} for order {order_id} already posted",
                details={"entity_type": entity_type.value, "entity_id": entity_id, "order_id": order_id},
                error_code=ErrorCode.ALREADY_EXISTS,
            )

    async def _append(
        self,
        entity_type: EntityType,
        entity_id: int,
        kind: TransactionType,
        amount: Decimal,
        balance_after: Decimal,
        order_id: Optional[int],
        description: Optional[str],
        reference: Optional[str],
        processed_by: Optional[str] = None,
    ) -> Transaction:
        transaction = Transaction(
            entity_type=entity_type,
            entity_id=entity_id,
            order_id=order_id,
            transaction_type=kind,
            amount=amount,
            balance_after=balance_after,
            description=description,
            reference=reference,
            processed_by=processed_by,
            created_at=datetime.utcnow(),
        )
        self.db.add(transaction)
        await self.db.flush()
        return transaction
