"""
Finance API Routes - operator view of revenue, restaurant wallets and payouts
"""
from datetime import datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.actor import operator_name, require_operator
from app.api.routes.riders import AdjustmentRequest, TransactionResponse
from app.core.validation import sanitized_text_validator
from app.db.database import get_db
from app.db.models.payout import PayoutStatus, PayoutType
from app.db.models.transaction import PLATFORM_ENTITY_ID, EntityType
from app.domain.services.finance_service import FinanceService
from app.domain.services.payout_service import PayoutService
from app.domain.services.wallet_service import WalletLedgerService
from app.state_machine.order_states import Actor

router = APIRouter()


class RevenueSummaryResponse(BaseModel):
    revenue: Decimal
    commission: Decimal
    gateway_fees: Decimal
    platform_net_profit: Decimal
    delivery_fees: Decimal
    order_count: int

    model_config = {"from_attributes": True}


class FinanceOverviewResponse(BaseModel):
    today: RevenueSummaryResponse
    all_time: RevenueSummaryResponse
    restaurant_pending_payouts: Decimal
    rider_pending_payouts: Decimal
    outstanding_cod: Decimal
    overdue_riders: int
    generated_at: datetime

    model_config = {"from_attributes": True}


class RestaurantWalletResponse(BaseModel):
    restaurant_id: int
    available_balance: Decimal
    pending_payout: Decimal
    total_earnings: Decimal
    total_commission_collected: Decimal
    on_hold_amount: Decimal
    last_payout_date: datetime | None

    model_config = {"from_attributes": True}


class LedgerCheckResponse(BaseModel):
    entity_type: EntityType
    entity_id: int
    balance: Decimal
    ledger_sum: Decimal
    consistent: bool

    model_config = {"from_attributes": True}


class PayoutBatchRequest(BaseModel):
    payout_type: PayoutType
    entity_ids: List[int] | None = None
    notes: str | None = None

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class MarkPaidRequest(BaseModel):
    bank_reference: str = Field(min_length=1, max_length=100)


class PayoutResponse(BaseModel):
    id: int
    payout_type: PayoutType
    entity_id: int
    total_amount: Decimal
    status: PayoutStatus
    bank_reference: str | None
    processed_by: str | None
    processed_at: datetime | None
    notes: str | None
    created_at: datetime | None

    model_config = {"from_attributes": True}


@router.get(
    "/overview",
    response_model=FinanceOverviewResponse,
    summary="Revenue and outstanding balances",
)
async def get_finance_overview(
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await FinanceService(db).get_overview()


@router.get(
    "/restaurants/{restaurant_id}/wallet",
    response_model=RestaurantWalletResponse,
    summary="Restaurant wallet",
)
async def get_restaurant_wallet(restaurant_id: int, db: AsyncSession = Depends(get_db)):
    return await WalletLedgerService(db).get_restaurant_wallet(restaurant_id)


@router.get(
    "/restaurants/{restaurant_id}/transactions",
    response_model=List[TransactionResponse],
    summary="Restaurant ledger history",
)
async def get_restaurant_transactions(
    restaurant_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    service = WalletLedgerService(db)
    await service.get_restaurant_wallet(restaurant_id)
    return await service.get_transactions(EntityType.RESTAURANT, restaurant_id, limit=limit, offset=offset)


@router.post(
    "/restaurants/{restaurant_id}/adjustments",
    response_model=TransactionResponse,
    summary="Post a refund or adjustment to a restaurant",
)
async def post_restaurant_adjustment(
    restaurant_id: int,
    data: AdjustmentRequest,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await WalletLedgerService(db).post_operator_adjustment(
        EntityType.RESTAURANT,
        restaurant_id,
        data.kind,
        data.amount,
        data.description,
        processed_by=operator_name(actor),
    )


@router.get(
    "/platform/transactions",
    response_model=List[TransactionResponse],
    summary="Platform ledger history",
)
async def get_platform_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await WalletLedgerService(db).get_transactions(
        EntityType.PLATFORM, PLATFORM_ENTITY_ID, limit=limit, offset=offset
    )


@router.get(
    "/ledger/{entity_type}/{entity_id}/verify",
    response_model=LedgerCheckResponse,
    summary="Check that the ledger reconstructs the wallet balance",
)
async def verify_ledger(
    entity_type: EntityType,
    entity_id: int,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await WalletLedgerService(db).verify_ledger(entity_type, entity_id)


@router.post(
    "/payouts/batches",
    response_model=List[PayoutResponse],
    summary="Open a payout batch",
    description="Creates one pending payout per wallet with a positive payable amount.",
)
async def create_payout_batch(
    data: PayoutBatchRequest,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await PayoutService(db).create_payout_batch(
        data.payout_type,
        processed_by=operator_name(actor),
        entity_ids=data.entity_ids,
        notes=data.notes,
    )


@router.get("/payouts", response_model=List[PayoutResponse], summary="List payouts")
async def list_payouts(
    status: PayoutStatus | None = None,
    payout_type: PayoutType | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await PayoutService(db).list_payouts(status, payout_type, limit=limit, offset=offset)


@router.post(
    "/payouts/{payout_id}/paid",
    response_model=PayoutResponse,
    summary="Record the bank transfer of a payout",
)
async def mark_payout_paid(
    payout_id: int,
    data: MarkPaidRequest,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await PayoutService(db).mark_paid(payout_id, data.bank_reference, operator_name(actor))


@router.post(
    "/payouts/{payout_id}/complete",
    response_model=PayoutResponse,
    summary="Confirm a paid payout",
)
async def mark_payout_completed(
    payout_id: int,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await PayoutService(db).mark_completed(payout_id, operator_name(actor))
