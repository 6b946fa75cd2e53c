"""
Payout Service - batched disbursements to restaurants and riders.

A batch opens one pending Payout per wallet with something to pay. Marking a
payout paid posts the PAYOUT ledger delta, so the wallet and its ledger move
together.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PayoutNotFoundError, ValidationException
from app.core.logging import get_logger, log_async_operation
from app.db.models.payout import Payout, PayoutStatus, PayoutType
from app.db.models.restaurant_wallet import RestaurantWallet
from app.db.models.rider_wallet import RiderWallet
from app.db.models.transaction import TransactionType
from app.domain.services.money import ZERO, to_decimal
from app.domain.services.wallet_service import WalletLedgerService

logger = get_logger(__name__)


class PayoutService:
    """Creates payout batches and records bank transfers"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallets = WalletLedgerService(db)

    @log_async_operation("create_payout_batch")
    async def create_payout_batch(
        self,
        payout_type: PayoutType,
        processed_by: str,
        entity_ids: Optional[Sequence[int]] = None,
        notes: Optional[str] = None,
    ) -> List[Payout]:
        """
        One pending payout per wallet with a positive payable amount.

        restaurant: pending_payout, capped by available_balance
        rider:      available_withdraw
        Entities that already have a pending payout are skipped.
        """
        payable = await self._payable_amounts(payout_type, entity_ids)

        result = await self.db.execute(
            select(Payout.entity_id).where(
                Payout.payout_type == payout_type,
                Payout.status == PayoutStatus.PENDING,
            )
        )
        already_pending = set(result.scalars().all())

        payouts = []
        for entity_id, amount in payable:
            if amount <= ZERO or entity_id in already_pending:
                continue
            payout = Payout(
                payout_type=payout_type,
                entity_id=entity_id,
                total_amount=amount,
                status=PayoutStatus.PENDING,
                processed_by=processed_by,
                notes=notes,
                created_at=datetime.utcnow(),
            )
            self.db.add(payout)
            payouts.append(payout)

        await self.db.commit()
        logger.info(
            "Payout batch created",
            extra_data={
                "payout_type": payout_type.value,
                "count": len(payouts),
                "total": str(sum((p.total_amount for p in payouts), ZERO)),
                "processed_by": processed_by,
            },
        )
        return payouts

    async def _payable_amounts(
        self,
        payout_type: PayoutType,
        entity_ids: Optional[Sequence[int]],
    ) -> List[tuple[int, Decimal]]:
        if payout_type == PayoutType.RESTAURANT:
            query = select(RestaurantWallet).order_by(RestaurantWallet.restaurant_id)
            if entity_ids:
                query = query.where(RestaurantWallet.restaurant_id.in_(list(entity_ids)))
            result = await self.db.execute(query)
            return [
                (wallet.restaurant_id, min(to_decimal(wallet.pending_payout), to_decimal(wallet.available_balance)))
                for wallet in result.scalars().all()
            ]

        query = select(RiderWallet).order_by(RiderWallet.rider_id)
        if entity_ids:
            query = query.where(RiderWallet.rider_id.in_(list(entity_ids)))
        result = await self.db.execute(query)
        return [
            (wallet.rider_id, to_decimal(wallet.available_withdraw))
            for wallet in result.scalars().all()
        ]

    async def get_payout(self, payout_id: int) -> Payout:
        payout = await self.db.get(Payout, payout_id)
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        return payout

    @log_async_operation("mark_payout_paid")
    async def mark_paid(self, payout_id: int, bank_reference: str, processed_by: str) -> Payout:
        """Post the PAYOUT delta and close the payout. Already-paid payouts are returned as is."""
        result = await self.db.execute(
            select(Payout).where(Payout.id == payout_id).with_for_update()
        )
        payout = result.scalar_one_or_none()
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        if payout.status.is_terminal:
            return payout

        try:
            description = f"Payout #{payout.id}"
            if payout.payout_type == PayoutType.RESTAURANT:
                await self.wallets.apply_restaurant_delta(
                    payout.entity_id, payout.total_amount, TransactionType.PAYOUT,
                    description=description, reference=bank_reference, processed_by=processed_by,
                )
            else:
                await self.wallets.apply_rider_delta(
                    payout.entity_id, payout.total_amount, TransactionType.PAYOUT,
                    description=description, reference=bank_reference, processed_by=processed_by,
                )

            payout.status = PayoutStatus.PAID
            payout.bank_reference = bank_reference
            payout.processed_by = processed_by
            payout.processed_at = datetime.utcnow()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Payout marked paid",
            extra_data={
                "payout_id": payout.id,
                "payout_type": payout.payout_type.value,
                "entity_id": payout.entity_id,
                "amount": str(payout.total_amount),
            },
        )
        return payout

    async def mark_completed(self, payout_id: int, processed_by: str) -> Payout:
        """Bank confirmed the transfer; no ledger change"""
        payout = await self.get_payout(payout_id)
        if payout.status == PayoutStatus.COMPLETED:
            return payout
        if payout.status != PayoutStatus.PAID:
            raise ValidationException("Only paid payouts can be completed", field="status")
        payout.status = PayoutStatus.COMPLETED
        payout.processed_by = processed_by
        await self.db.commit()
        return payout

    async def list_payouts(
        self,
        status: Optional[PayoutStatus] = None,
        payout_type: Optional[PayoutType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Payout]:
        query = select(Payout)
        if status is not None:
            query = query.where(Payout.status == status)
        if payout_type is not None:
            query = query.where(Payout.payout_type == payout_type)
        result = await self.db.execute(
            query.order_by(Payout.created_at.desc(), Payout.id.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())
