"""
Settlement Service - the completion money split of a delivered order.

Runs inside the transaction that writes DELIVERED. Everything here flushes
only; OrderService commits the status write and the settlement together or
rolls both back. Settlement is idempotent on order.is_paid.

Customer-facing amounts (subtotal, fees, tax, discount, gateway fee, total,
commission) keep their creation-time values. Rider pay is recomputed from the
completion distance, and the platform's net profit follows from it.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SettlementError
from app.core.logging import get_logger, log_async_operation
from app.db.models.order import Order
from app.db.models.order_audit_log import OrderAuditAction
from app.db.models.rider import Rider, RiderStatus
from app.db.models.rider_bonus import RiderDailyBonus
from app.db.models.transaction import TransactionType
from app.domain.services.cod_service import CODReconciliationService
from app.domain.services.earning_estimator import RiderEarning, estimate_rider_earning
from app.domain.services.money import ZERO, to_decimal
from app.domain.services.order_audit import SYSTEM_ACTOR, record_audit
from app.domain.services.payment_split import calculate_platform_profit
from app.domain.services.settings_provider import PlatformConfig
from app.domain.services.wallet_service import WalletLedgerService
from app.state_machine.order_states import Actor

logger = get_logger(__name__)


class SettlementService:
    """Applies the authoritative split of one order to every ledger"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallets = WalletLedgerService(db)
        self.cod = CODReconciliationService(db)

    @log_async_operation("settle_order")
    async def settle_order(
        self,
        order: Order,
        config: PlatformConfig,
        distance_km: Optional[float] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> bool:
        """
        Settle a delivered order. Returns False when it was already settled.

        distance_km is the completion distance behind rider pay; None or an
        invalid value falls back to the quoted distance.
        """
        if order.is_paid:
            logger.info(
                "Order already settled, skipping settlement",
                extra_data={"order_id": order.id},
            )
            return False

        try:
            await self._apply(order, config, distance_km, actor)
        except SettlementError:
            raise
        except Exception as e:
            raise SettlementError(order.id, str(e)) from e
        return True

    async def _apply(
        self,
        order: Order,
        config: PlatformConfig,
        distance_km: Optional[float],
        actor: Actor,
    ) -> None:
        if order.rider_id is None:
            raise SettlementError(order.id, "order has no assigned rider")

        result = await self.db.execute(
            select(Rider).where(Rider.id == order.rider_id).with_for_update()
        )
        rider = result.scalar_one_or_none()
        if rider is None:
            raise SettlementError(order.id, f"rider {order.rider_id} not found")

        rider_km = distance_km if distance_km is not None else order.quoted_distance_km
        earning = estimate_rider_earning(rider_km, config)

        # fallback to the quoted distance when the completion distance is unusable
        if earning.distance.fallback_used and distance_km is not None:
            earning = estimate_rider_earning(order.quoted_distance_km, config)
            earning_fallback = True
        else:
            earning_fallback = earning.distance.fallback_used

        self._write_breakdown(order, earning, earning_fallback)

        if order.restaurant_earning > ZERO:
            await self.wallets.apply_restaurant_delta(
                order.restaurant_id,
                order.restaurant_earning,
                TransactionType.EARNING,
                order_id=order.id,
                description=f"Order {order.order_number}",
                commission=order.commission_amount,
            )
        if earning.net > ZERO:
            await self.wallets.apply_rider_delta(
                rider.id,
                earning.net,
                TransactionType.EARNING,
                order_id=order.id,
                description=f"Delivery {order.order_number}",
            )
        if order.commission_amount > ZERO:
            await self.wallets.record_platform_entry(
                TransactionType.COMMISSION,
                order.commission_amount,
                order_id=order.id,
                description=f"Commission on {order.order_number}",
            )

        if order.payment_method.is_online:
            order.is_settled = True
        else:
            await self.cod.record_collection(rider, order, earning.net, config)

        rider.earnings_balance = to_decimal(rider.earnings_balance) + earning.net
        if rider.current_order_id in (None, order.id):
            rider.current_order_id = None
            rider.status = RiderStatus.AVAILABLE

        await self._count_daily_delivery(rider, order, config)

        now = datetime.utcnow()
        order.is_paid = True
        order.paid_at = now

        record_audit(
            self.db,
            order,
            OrderAuditAction.SETTLED,
            actor,
            details={
                "restaurant_earning": str(order.restaurant_earning),
                "commission_amount": str(order.commission_amount),
                "rider_net_earning": str(order.rider_net_earning),
                "platform_net_profit": str(order.platform_net_profit),
                "distance_km": order.distance_km,
                "distance_fallback_used": order.distance_fallback_used,
            },
        )
        await self.db.flush()

        logger.info(
            "Order settled",
            extra_data={
                "order_id": order.id,
                "rider_id": rider.id,
                "payment_method": order.payment_method.value,
                "total_price": str(order.total_price),
                "rider_net_earning": str(order.rider_net_earning),
                "platform_net_profit": str(order.platform_net_profit),
            },
        )

    def _write_breakdown(self, order: Order, earning: RiderEarning, fallback_used: bool) -> None:
        order.distance_km = earning.distance.km
        order.distance_fallback_used = bool(order.distance_fallback_used or fallback_used)
        order.rider_gross_earning = earning.gross
        order.rider_platform_fee = earning.platform_fee
        order.rider_net_earning = earning.net
        order.platform_net_profit = calculate_platform_profit(
            commission_amount=to_decimal(order.commission_amount),
            delivery_fee=to_decimal(order.delivery_fee),
            rider_net_earning=earning.net,
            service_fee=to_decimal(order.service_fee),
            tax=to_decimal(order.tax),
            gateway_fee=to_decimal(order.gateway_fee),
            discount=to_decimal(order.discount),
        )

    async def _count_daily_delivery(self, rider: Rider, order: Order, config: PlatformConfig) -> None:
        """Count today's delivery; credit the bonus the first time the target is hit"""
        today = datetime.utcnow().date()
        result = await self.db.execute(
            select(RiderDailyBonus).where(
                RiderDailyBonus.rider_id == rider.id,
                RiderDailyBonus.bonus_date == today,
            ).with_for_update()
        )
        progress = result.scalar_one_or_none()
        if progress is None:
            progress = RiderDailyBonus(
                rider_id=rider.id,
                bonus_date=today,
                delivery_count=0,
                target_deliveries=config.bonus_daily_target,
                bonus_amount=config.bonus_amount,
                is_achieved=False,
            )
            self.db.add(progress)

        progress.delivery_count += 1

        if (
            not progress.is_achieved
            and progress.target_deliveries > 0
            and progress.delivery_count >= progress.target_deliveries
            and to_decimal(progress.bonus_amount) > ZERO
        ):
            progress.is_achieved = True
            progress.credited_at = datetime.utcnow()
            await self.wallets.apply_rider_delta(
                rider.id,
                progress.bonus_amount,
                TransactionType.BONUS,
                order_id=order.id,
                description=f"Daily bonus: {progress.delivery_count} deliveries on {today.isoformat()}",
            )
            logger.info(
                "Rider daily bonus credited",
                extra_data={
                    "rider_id": rider.id,
                    "deliveries": progress.delivery_count,
                    "bonus_amount": str(progress.bonus_amount),
                },
            )

        await self.db.flush()

