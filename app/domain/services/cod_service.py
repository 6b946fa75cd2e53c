"""
COD Reconciliation Service - cash collected by riders against what they owe.

A delivered COD order adds its total to the rider's cod_balance and opens a
pending CODLedgerEntry. Once cod_balance is above the configured threshold
the rider is OVERDUE and cannot take new orders. Settling cash brings the
balance down, closes every pending entry and clears OVERDUE again when the
balance is back under the threshold. BLOCKED is only ever cleared by hand.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import RiderNotFoundError, ValidationException
from app.core.logging import get_logger, log_async_operation
from app.db.models.cod_ledger import CODEntryStatus, CODLedgerEntry, CODSettlement
from app.db.models.order import Order
from app.db.models.rider import Rider, SettlementStatus
from app.db.models.transaction import TransactionType
from app.domain.services.money import ZERO, to_decimal
from app.domain.services.outbox_service import OutboxService
from app.domain.services.settings_provider import PlatformConfig, SettingsProvider
from app.domain.services.wallet_service import WalletLedgerService

logger = get_logger(__name__)


def generate_settlement_reference() -> str:
    return f"CODS-{secrets.token_hex(6).upper()}"


@dataclass(frozen=True)
class RiderSnapshot:
    rider_id: int
    cod_balance: Decimal
    earnings_balance: Decimal
    settlement_status: SettlementStatus
    last_settlement_date: Optional[datetime]
    pending_entries: int
    cash_to_deposit: Decimal
    available_withdraw: Decimal
    settlement_reference: Optional[str] = None


class CODReconciliationService:
    """COD collection at completion and cash settlement by an operator"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallets = WalletLedgerService(db)
        self.outbox = OutboxService(db)

    async def record_collection(
        self,
        rider: Rider,
        order: Order,
        rider_earning: Decimal,
        config: PlatformConfig,
    ) -> CODLedgerEntry:
        """
        Book the cash a rider took for a delivered COD order.

        Runs inside the settlement transaction: flushes, never commits.
        """
        cash = to_decimal(order.total_price)
        rider.cod_balance = to_decimal(rider.cod_balance) + cash

        entry = CODLedgerEntry(
            rider_id=rider.id,
            order_id=order.id,
            cash_collected=cash,
            rider_earning=rider_earning,
            amount_owed=cash - rider_earning,
            status=CODEntryStatus.PENDING,
            created_at=datetime.utcnow(),
        )
        self.db.add(entry)
        await self.wallets.record_cod_collection(rider.id, cash)

        if (
            rider.settlement_status == SettlementStatus.ACTIVE
            and rider.cod_balance > config.cod_overdue_threshold
        ):
            rider.settlement_status = SettlementStatus.OVERDUE
            logger.warning(
                "Rider COD balance over threshold, marked overdue",
                extra_data={
                    "rider_id": rider.id,
                    "cod_balance": str(rider.cod_balance),
                    "threshold": str(config.cod_overdue_threshold),
                },
            )

        await self.outbox.queue_cod_updated(
            rider.id,
            {
                "order_id": order.id,
                "cash_collected": str(cash),
                "cod_balance": str(rider.cod_balance),
                "settlement_status": rider.settlement_status.value,
            },
        )
        await self.db.flush()
        return entry

    @log_async_operation("settle_rider_cod")
    async def settle_rider_cod(
        self,
        rider_id: int,
        amount_collected,
        earnings_paid=ZERO,
        reference: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> RiderSnapshot:
        """
        Square a rider up: cash handed in and earnings paid out, in one transaction.

        Each reference settles once: repeating it for the same rider is a no-op that
        returns the current snapshot, reusing another rider's reference is rejected.
        """
        collected = to_decimal(amount_collected)
        paid = to_decimal(earnings_paid)
        if collected < ZERO or paid < ZERO:
            raise ValidationException("Settlement amounts cannot be negative", field="amount_collected")
        if collected == ZERO and paid == ZERO:
            raise ValidationException("Nothing to settle", field="amount_collected")

        reference = reference or generate_settlement_reference()

        try:
            result = await self.db.execute(
                select(Rider).where(Rider.id == rider_id).with_for_update()
            )
            rider = result.scalar_one_or_none()
            if rider is None:
                raise RiderNotFoundError(rider_id)

            if await self._check_replay(rider_id, reference):
                await self.db.rollback()
                return await self.get_rider_snapshot(rider_id, reference)

            settlement = CODSettlement(
                reference=reference,
                rider_id=rider_id,
                amount_collected=collected,
                earnings_paid=paid,
                processed_by=processed_by,
                created_at=datetime.utcnow(),
            )
            self.db.add(settlement)
            await self.db.flush()

            config = await SettingsProvider(self.db).get_config()
            now = datetime.utcnow()

            if collected > ZERO:
                rider.cod_balance = max(ZERO, to_decimal(rider.cod_balance) - collected)
                await self.wallets.record_cod_deposit(rider_id, collected)
                await self.wallets.record_platform_entry(
                    TransactionType.CASH_DEPOSIT,
                    collected,
                    description=f"COD cash from rider {rider_id}",
                    reference=reference,
                )

            if paid > ZERO:
                await self.wallets.apply_rider_delta(
                    rider_id,
                    paid,
                    TransactionType.PAYOUT,
                    description="Earnings paid at COD settlement",
                    reference=reference,
                    processed_by=processed_by,
                )
                rider.earnings_balance = max(ZERO, to_decimal(rider.earnings_balance) - paid)

            pending = await self.get_ledger(rider_id, CODEntryStatus.PENDING)
            for entry in pending:
                entry.status = CODEntryStatus.PAID
                entry.settled_at = now
                entry.settlement_reference = reference
            settlement.entries_settled = len(pending)
            order_ids = [entry.order_id for entry in pending]
            if order_ids:
                await self.db.execute(
                    update(Order)
                    .where(Order.id.in_(order_ids))
                    .values(is_settled=True)
                    .execution_options(synchronize_session="fetch")
                )

            if (
                rider.settlement_status == SettlementStatus.OVERDUE
                and rider.cod_balance <= config.cod_overdue_threshold
            ):
                rider.settlement_status = SettlementStatus.ACTIVE
            rider.last_settlement_date = now

            await self.outbox.queue_cod_updated(
                rider_id,
                {
                    "settlement_reference": reference,
                    "amount_collected": str(collected),
                    "earnings_paid": str(paid),
                    "cod_balance": str(rider.cod_balance),
                    "settlement_status": rider.settlement_status.value,
                    "entries_settled": len(pending),
                },
            )
            await self.db.commit()
        except IntegrityError:
            # a concurrent settlement with the same reference committed first
            await self.db.rollback()
            if await self._check_replay(rider_id, reference):
                return await self.get_rider_snapshot(rider_id, reference)
            raise
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Rider COD settled",
            extra_data={
                "rider_id": rider_id,
                "reference": reference,
                "amount_collected": str(collected),
                "earnings_paid": str(paid),
                "entries_settled": len(pending),
                "processed_by": processed_by,
            },
        )
        return await self.get_rider_snapshot(rider_id, reference)

    async def get_ledger(
        self,
        rider_id: int,
        status: Optional[CODEntryStatus] = None,
    ) -> List[CODLedgerEntry]:
        query = select(CODLedgerEntry).where(CODLedgerEntry.rider_id == rider_id)
        if status is not None:
            query = query.where(CODLedgerEntry.status == status)
        result = await self.db.execute(query.order_by(CODLedgerEntry.created_at, CODLedgerEntry.id))
        return list(result.scalars().all())

    async def get_rider_snapshot(self, rider_id: int, reference: Optional[str] = None) -> RiderSnapshot:
        rider = await self.db.get(Rider, rider_id, populate_existing=True)
        if rider is None:
            raise RiderNotFoundError(rider_id)
        wallet = await self.wallets.get_rider_wallet(rider_id)
        pending = await self.get_ledger(rider_id, CODEntryStatus.PENDING)
        return RiderSnapshot(
            rider_id=rider.id,
            cod_balance=to_decimal(rider.cod_balance),
            earnings_balance=to_decimal(rider.earnings_balance),
            settlement_status=rider.settlement_status,
            last_settlement_date=rider.last_settlement_date,
            pending_entries=len(pending),
            cash_to_deposit=to_decimal(wallet.cash_to_deposit),
            available_withdraw=to_decimal(wallet.available_withdraw),
            settlement_reference=reference,
        )

    async def refresh_overdue_statuses(self) -> dict[str, int]:
        """Re-apply the threshold to every active/overdue rider, e.g. after an operator changed it"""
        config = await SettingsProvider(self.db).get_config()
        threshold = config.cod_overdue_threshold

        flagged = await self.db.execute(
            update(Rider)
            .where(
                Rider.settlement_status == SettlementStatus.ACTIVE,
                Rider.cod_balance > threshold,
            )
            .values(settlement_status=SettlementStatus.OVERDUE)
        )
        cleared = await self.db.execute(
            update(Rider)
            .where(
                Rider.settlement_status == SettlementStatus.OVERDUE,
                Rider.cod_balance <= threshold,
            )
            .values(settlement_status=SettlementStatus.ACTIVE)
        )
        await self.db.commit()
        return {"overdue": flagged.rowcount or 0, "cleared": cleared.rowcount or 0}

    async def _check_replay(self, rider_id: int, reference: str) -> bool:
        """True when this rider already settled under `reference`; another rider's reference is rejected"""
        result = await self.db.execute(
            select(CODSettlement.rider_id).where(CODSettlement.reference == reference)
        )
        owner = result.scalar_one_or_none()
        if owner is None:
            return False
        if owner != rider_id:
            raise ValidationException(
                "Settlement reference is already used by another rider",
                field="reference",
                details={"reference": reference},
            )
        logger.info(
            "COD settlement reference already applied",
            extra_data={"rider_id": rider_id, "reference": reference},
        )
        return True
