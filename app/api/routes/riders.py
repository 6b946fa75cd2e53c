"""
Rider API Routes - wallet, ledger and cash-on-delivery settlement
"""
from datetime import datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.actor import operator_name, require_operator
from app.core.validation import sanitized_text_validator
from app.db.database import get_db
from app.db.models.cod_ledger import CODEntryStatus
from app.db.models.rider import SettlementStatus
from app.db.models.transaction import EntityType, TransactionType
from app.domain.services.cod_service import CODReconciliationService
from app.domain.services.wallet_service import WalletLedgerService
from app.state_machine.order_states import Actor

router = APIRouter()


class RiderWalletResponse(BaseModel):
    rider_id: int
    total_earnings: Decimal
    available_withdraw: Decimal
    cash_collected: Decimal
    cash_to_deposit: Decimal
    delivery_earnings: Decimal
    bonuses: Decimal
    penalties: Decimal
    last_withdraw_date: datetime | None

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: int
    order_id: int | None
    transaction_type: TransactionType
    amount: Decimal
    balance_after: Decimal
    description: str | None
    reference: str | None
    processed_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CODEntryResponse(BaseModel):
    id: int
    order_id: int
    cash_collected: Decimal
    rider_earning: Decimal
    amount_owed: Decimal
    status: CODEntryStatus
    settled_at: datetime | None
    settlement_reference: str | None

    model_config = {"from_attributes": True}


class RiderCODResponse(BaseModel):
    rider_id: int
    cod_balance: Decimal
    earnings_balance: Decimal
    settlement_status: SettlementStatus
    last_settlement_date: datetime | None
    pending_entries: int
    cash_to_deposit: Decimal
    available_withdraw: Decimal
    settlement_reference: str | None = None

    model_config = {"from_attributes": True}


class CODSettlementRequest(BaseModel):
    amount_collected: Decimal = Field(ge=0)
    earnings_paid: Decimal = Field(default=Decimal("0"), ge=0)
    # re-sending the same reference is a no-op
    reference: str | None = Field(default=None, max_length=64)


class AdjustmentRequest(BaseModel):
    kind: TransactionType
    amount: Decimal
    description: str | None = None

    @field_validator("description")
    @classmethod
    def sanitize_description(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


@router.get("/{rider_id}/wallet", response_model=RiderWalletResponse, summary="Rider wallet")
async def get_rider_wallet(rider_id: int, db: AsyncSession = Depends(get_db)):
    return await WalletLedgerService(db).get_rider_wallet(rider_id)


@router.get(
    "/{rider_id}/transactions",
    response_model=List[TransactionResponse],
    summary="Rider ledger history",
)
async def get_rider_transactions(
    rider_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    service = WalletLedgerService(db)
    await service.get_rider_wallet(rider_id)
    return await service.get_transactions(EntityType.RIDER, rider_id, limit=limit, offset=offset)


@router.get("/{rider_id}/cod", response_model=RiderCODResponse, summary="Cash-on-delivery balance")
async def get_rider_cod(rider_id: int, db: AsyncSession = Depends(get_db)):
    return await CODReconciliationService(db).get_rider_snapshot(rider_id)


@router.get(
    "/{rider_id}/cod/ledger",
    response_model=List[CODEntryResponse],
    summary="Cash-on-delivery entries",
)
async def get_rider_cod_ledger(
    rider_id: int,
    status: CODEntryStatus | None = None,
    db: AsyncSession = Depends(get_db),
):
    service = CODReconciliationService(db)
    await service.get_rider_snapshot(rider_id)
    return await service.get_ledger(rider_id, status)


@router.post(
    "/{rider_id}/cod/settle",
    response_model=RiderCODResponse,
    summary="Settle a rider's cash",
    description="Record cash handed in by the rider and earnings paid out to them.",
)
async def settle_rider_cod(
    rider_id: int,
    data: CODSettlementRequest,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await CODReconciliationService(db).settle_rider_cod(
        rider_id,
        data.amount_collected,
        earnings_paid=data.earnings_paid,
        reference=data.reference,
        processed_by=operator_name(actor),
    )


@router.post(
    "/{rider_id}/wallet/adjustments",
    response_model=TransactionResponse,
    summary="Post a bonus, penalty or adjustment",
)
async def post_rider_adjustment(
    rider_id: int,
    data: AdjustmentRequest,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await WalletLedgerService(db).post_operator_adjustment(
        EntityType.RIDER,
        rider_id,
        data.kind,
        data.amount,
        data.description,
        processed_by=operator_name(actor),
    )
