"""
Finance Service - read-only aggregates for the operator finance view.
"""
from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.order import Order, OrderStatus
from app.db.models.restaurant_wallet import RestaurantWallet
from app.db.models.rider import Rider, SettlementStatus
from app.db.models.rider_wallet import RiderWallet
from app.domain.services.money import to_decimal


@dataclass(frozen=True)
class RevenueSummary:
    revenue: Decimal
    commission: Decimal
    gateway_fees: Decimal
    platform_net_profit: Decimal
    delivery_fees: Decimal
    order_count: int


@dataclass(frozen=True)
class FinanceOverview:
    today: RevenueSummary
    all_time: RevenueSummary
    restaurant_pending_payouts: Decimal
    rider_pending_payouts: Decimal
    outstanding_cod: Decimal
    overdue_riders: int
    generated_at: datetime


class FinanceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_overview(self, now: Optional[datetime] = None) -> FinanceOverview:
        """Delivered orders only; cancelled and refunded orders never count"""
        now = now or datetime.utcnow()
        day_start = datetime.combine(now.date(), time.min)

        restaurant_pending = await self.db.execute(
            select(func.coalesce(func.sum(RestaurantWallet.pending_payout), 0))
        )
        rider_pending = await self.db.execute(
            select(func.coalesce(func.sum(RiderWallet.available_withdraw), 0))
        )
        cod = await self.db.execute(select(func.coalesce(func.sum(Rider.cod_balance), 0)))
        overdue = await self.db.execute(
            select(func.count(Rider.id)).where(Rider.settlement_status == SettlementStatus.OVERDUE)
        )

        return FinanceOverview(
            today=await self._summarise(since=day_start),
            all_time=await self._summarise(),
            restaurant_pending_payouts=to_decimal(restaurant_pending.scalar_one()),
            rider_pending_payouts=to_decimal(rider_pending.scalar_one()),
            outstanding_cod=to_decimal(cod.scalar_one()),
            overdue_riders=overdue.scalar_one(),
            generated_at=now,
        )

    async def _summarise(self, since: Optional[datetime] = None) -> RevenueSummary:
        query = select(
            func.coalesce(func.sum(Order.total_price), 0),
            func.coalesce(func.sum(Order.commission_amount), 0),
            func.coalesce(func.sum(Order.gateway_fee), 0),
            func.coalesce(func.sum(Order.platform_net_profit), 0),
            func.coalesce(func.sum(Order.delivery_fee), 0),
            func.count(Order.id),
        ).where(Order.status == OrderStatus.DELIVERED)
        if since is not None:
            query = query.where(Order.delivered_at >= since)

        revenue, commission, gateway, profit, delivery, count = (await self.db.execute(query)).one()
        return RevenueSummary(
            revenue=to_decimal(revenue),
            commission=to_decimal(commission),
            gateway_fees=to_decimal(gateway),
            platform_net_profit=to_decimal(profit),
            delivery_fees=to_decimal(delivery),
            order_count=count,
        )
