"""
Order Service - order placement and the order lifecycle.

Every write to an order is version-guarded (Order.version): the UPDATE only
matches the version that was read, so of two racing writers exactly one wins
and the other gets ConflictingStateTransitionError. The guarded status write
is flushed first; settlement, stock restore and rider release follow in the
same transaction and everything commits or rolls back together.
"""
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    ConflictingStateTransitionError,
    ErrorCode,
    InsufficientStockError,
    InvalidStateTransitionError,
    MaintenanceModeError,
    OrderNotFoundError,
    RestaurantNotFoundError,
    RiderNotEligibleError,
    RiderNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.core.validation import TextSanitizer, normalize_promo_code
from app.db.models.order import Assigned, Order, OrderStatus, PaymentMethod
from app.db.models.order_audit_log import OrderAuditAction
from app.db.models.restaurant import Product, Restaurant
from app.db.models.rider import Rider, RiderStatus, SettlementStatus
from app.db.models.voucher import DiscountType, Voucher
from app.domain.services.earning_estimator import RiderEarning, estimate_rider_earning
from app.domain.services.money import ZERO, percent_of, round_currency, to_decimal
from app.domain.services.order_audit import record_audit
from app.domain.services.outbox_service import OutboxService
from app.domain.services.payment_split import (
    SplitInput,
    calculate_split,
    calculate_subtotal,
    resolve_commission_rate,
)
from app.domain.services.settings_provider import PlatformConfig, SettingsProvider
from app.domain.services.settlement_service import SettlementService
from app.state_machine.order_states import (
    RIDER_REQUIRED_STATES,
    Actor,
    ActorRole,
    check_transition,
)

logger = get_logger(__name__)

_STATUS_TIMESTAMPS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.ON_THE_WAY: "picked_up_at",
    OrderStatus.ARRIVED: "arrived_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}

_RATING_QUANT = Decimal("0.01")


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class AvailableOrder:
    order: Order
    reward: RiderEarning


class OrderService:
    """Service for placing orders and driving them through their lifecycle"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox_service = OutboxService(db)
        self.settings_provider = SettingsProvider(db)

    # ==================== placement ====================

    @log_async_operation("create_order")
    async def create_order(
        self,
        customer_id: int,
        restaurant_id: int,
        items: Sequence[OrderLine],
        shipping_address: str,
        payment_method: PaymentMethod = PaymentMethod.COD,
        promo_code: Optional[str] = None,
        distance_km: Optional[float] = None,
        delivery_latitude: Optional[float] = None,
        delivery_longitude: Optional[float] = None,
        notes: Optional[str] = None,
        commission_rate: Optional[Decimal] = None,
        actor: Optional[Actor] = None,
    ) -> Order:
        """
        Validate the restaurant, price the items from the catalog, take the
        stock, apply the promo code and store the provisional split.

        commission_rate is an operator override (top precedence tier).
        """
        actor = actor or Actor(ActorRole.CUSTOMER, customer_id)
        if commission_rate is not None and actor.role != ActorRole.OPERATOR:
            raise ValidationException(
                "Only operators may set an order commission rate", field="commission_rate"
            )

        config = await self.settings_provider.get_config()
        if config.is_maintenance_mode:
            raise MaintenanceModeError()

        if not items:
            raise ValidationException("Order must contain at least one item", field="items")

        try:
            restaurant = await self.db.get(Restaurant, restaurant_id)
            if restaurant is None:
                raise RestaurantNotFoundError(restaurant_id)
            if not restaurant.is_approved or not restaurant.is_active:
                raise ValidationException(
                    "Restaurant is not accepting orders",
                    field="restaurant_id",
                    error_code=ErrorCode.RESTAURANT_NOT_APPROVED,
                )

            lines = await self._reserve_stock(restaurant, items)
            subtotal = calculate_subtotal(lines)
            if subtotal < config.minimum_order_amount:
                raise ValidationException(
                    f"Minimum order amount is {config.minimum_order_amount}",
                    field="items",
                    details={"subtotal": str(subtotal), "minimum": str(config.minimum_order_amount)},
                )

            voucher_code = None
            discount = ZERO
            if promo_code:
                voucher = await self._load_voucher(promo_code, restaurant.id, subtotal)
                discount = self._voucher_discount(voucher, subtotal)
                voucher.usage_count += 1
                voucher_code = voucher.code

            commission = resolve_commission_rate(
                config,
                order_rate=commission_rate,
                restaurant_rate=restaurant.commission_rate,
                business_type=restaurant.business_type,
            )
            split = calculate_split(
                SplitInput(
                    subtotal=subtotal,
                    commission_rate=commission.rate,
                    is_online=payment_method.is_online,
                    fee_distance_km=distance_km,
                    discount=discount,
                ),
                config,
            )

            order = Order(
                customer_id=customer_id,
                restaurant_id=restaurant.id,
                items=lines,
                status=OrderStatus.PENDING,
                payment_method=payment_method,
                shipping_address=shipping_address,
                delivery_latitude=delivery_latitude,
                delivery_longitude=delivery_longitude,
                notes=TextSanitizer.sanitize(notes) if notes else None,
                voucher_code=voucher_code,
                subtotal=split.subtotal,
                delivery_fee=split.delivery_fee,
                service_fee=split.service_fee,
                tax=split.tax,
                discount=split.discount,
                gateway_fee=split.gateway_fee,
                commission_rate=split.commission_rate,
                commission_source=commission.source.value,
                commission_amount=split.commission_amount,
                restaurant_earning=split.restaurant_earning,
                rider_gross_earning=split.rider.gross,
                rider_platform_fee=split.rider.platform_fee,
                rider_net_earning=split.rider_net_earning,
                platform_net_profit=split.platform_net_profit,
                total_price=split.total_price,
                quoted_distance_km=split.fee_distance.km,
                distance_fallback_used=split.distance_fallback_used,
                is_paid=False,
                is_settled=False,
            )
            self.db.add(order)
            await self.db.flush()

            record_audit(
                self.db,
                order,
                OrderAuditAction.CREATED,
                actor,
                to_status=OrderStatus.PENDING,
                details={
                    "total_price": str(order.total_price),
                    "commission_source": order.commission_source,
                    "distance_fallback_used": order.distance_fallback_used,
                },
            )
            await self.outbox_service.queue_order_created(order)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(order)
        logger.info(
            "Order created",
            extra_data={
                "order_id": order.id,
                "restaurant_id": order.restaurant_id,
                "total_price": str(order.total_price),
                "distance_fallback_used": order.distance_fallback_used,
            },
        )
        return order

    async def _reserve_stock(self, restaurant: Restaurant, items: Sequence[OrderLine]) -> List[dict]:
        """Price lines from the catalog and take tracked stock; returns the items JSON"""
        requested: "OrderedDict[int, int]" = OrderedDict()
        for item in items:
            if item.quantity <= 0:
                raise ValidationException("Item quantity must be at least 1", field="items")
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        result = await self.db.execute(
            select(Product)
            .where(Product.id.in_(list(requested)))
            .with_for_update()
        )
        products = {product.id: product for product in result.scalars().all()}

        lines = []
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None or product.restaurant_id != restaurant.id:
                raise ValidationException(
                    f"Product {product_id} is not on this restaurant's menu",
                    field="items",
                    error_code=ErrorCode.PRODUCT_NOT_FOUND,
                )
            if not product.is_available:
                raise ValidationException(f"Product {product_id} is not available", field="items")

            tracked = product.stock_quantity is not None
            if tracked:
                if quantity > product.stock_quantity:
                    raise InsufficientStockError(product_id, quantity, product.stock_quantity)
                product.stock_quantity -= quantity

            lines.append({
                "product_id": product.id,
                "name": product.name,
                "quantity": quantity,
                "unit_price": str(to_decimal(product.price)),
                "stock_tracked": tracked,
            })
        return lines

    async def _load_voucher(self, promo_code: str, restaurant_id: int, subtotal: Decimal) -> Voucher:
        code = normalize_promo_code(promo_code)
        result = await self.db.execute(
            select(Voucher).where(func.upper(Voucher.code) == code).with_for_update()
        )
        voucher = result.scalar_one_or_none()
        now = datetime.utcnow()

        reason = None
        if voucher is None or not voucher.is_active:
            reason = "Promo code is not valid"
        elif voucher.valid_from and voucher.valid_from > now:
            reason = "Promo code is not active yet"
        elif voucher.expires_at and voucher.expires_at < now:
            reason = "Promo code has expired"
        elif voucher.max_usage is not None and voucher.usage_count >= voucher.max_usage:
            reason = "Promo code usage limit reached"
        elif voucher.restaurant_id is not None and voucher.restaurant_id != restaurant_id:
            reason = "Promo code does not apply to this restaurant"
        elif subtotal < to_decimal(voucher.minimum_amount):
            reason = f"Promo code needs a minimum order of {voucher.minimum_amount}"

        if reason:
            raise ValidationException(reason, field="promo_code", error_code=ErrorCode.INVALID_VOUCHER)
        return voucher

    @staticmethod
    def _voucher_discount(voucher: Voucher, subtotal: Decimal) -> Decimal:
        if voucher.discount_type == DiscountType.PERCENTAGE:
            discount = percent_of(subtotal, voucher.discount_value)
            if voucher.max_discount is not None:
                discount = min(discount, round_currency(voucher.max_discount))
            return discount
        return round_currency(voucher.discount_value)

    # ==================== reads ====================

    async def _load_order(self, order_id: int) -> Order:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_order(self, order_id: int) -> Order:
        return await self._load_order(order_id)

    async def list_orders(
        self,
        restaurant_id: Optional[int] = None,
        rider_id: Optional[int] = None,
        customer_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Order]:
        query = select(Order)
        if restaurant_id is not None:
            query = query.where(Order.restaurant_id == restaurant_id)
        if rider_id is not None:
            query = query.where(Order.rider_id == rider_id)
        if customer_id is not None:
            query = query.where(Order.customer_id == customer_id)
        if status is not None:
            query = query.where(Order.status == status)
        result = await self.db.execute(
            query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def list_available_orders(self, limit: int = 50) -> List[AvailableOrder]:
        """READY orders without a rider, each with a fresh reward estimate"""
        config = await self.settings_provider.get_config()
        result = await self.db.execute(
            select(Order)
            .where(Order.status == OrderStatus.READY, Order.rider_id.is_(None))
            .order_by(Order.ready_at, Order.id)
            .limit(limit)
        )
        return [
            AvailableOrder(order=order, reward=estimate_rider_earning(order.quoted_distance_km, config))
            for order in result.scalars().all()
        ]

    # ==================== lifecycle ====================

    @log_async_operation("update_order_status", bind_order_id="order_id")
    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        actor: Actor,
        reason: Optional[str] = None,
        distance_km: Optional[float] = None,
    ) -> Order:
        """
        Move an order to new_status.

        DELIVERED settles the order in the same transaction; a settlement
        failure rejects the status change too. CANCELLED and REFUNDED give the
        stock back and free the rider.
        """
        config = await self.settings_provider.get_config()
        order = await self._load_order(order_id)
        check_transition(order, new_status, actor)

        from_status = order.status
        now = datetime.utcnow()
        order.status = new_status
        if new_status in _STATUS_TIMESTAMPS:
            setattr(order, _STATUS_TIMESTAMPS[new_status], now)
        if new_status == OrderStatus.CANCELLED:
            order.cancellation_reason = reason
            order.cancelled_by = actor.role.value
        elif new_status == OrderStatus.REFUNDED:
            order.refund_reason = reason

        await self._flush_guarded(order, new_status)

        try:
            if new_status == OrderStatus.DELIVERED:
                await SettlementService(self.db).settle_order(order, config, distance_km, actor)
            elif new_status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
                await self._restore_stock(order)
                await self._release_rider(order.rider_id, order.id)
            elif new_status == OrderStatus.READY and order.rider_id is None:
                reward = estimate_rider_earning(order.quoted_distance_km, config)
                await self.outbox_service.queue_order_available(
                    order, reward.net, reward.distance.km, reward.distance.fallback_used
                )

            action = {
                OrderStatus.CANCELLED: OrderAuditAction.CANCELLED,
                OrderStatus.REFUNDED: OrderAuditAction.REFUNDED,
            }.get(new_status, OrderAuditAction.STATUS_CHANGED)
            record_audit(
                self.db,
                order,
                action,
                actor,
                from_status=from_status,
                to_status=new_status,
                details={"reason": reason} if reason else None,
            )
            await self.outbox_service.queue_status_changed(order, from_status.value, reason)
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictingStateTransitionError(order_id, new_status.value) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Order status changed",
            extra_data={
                "order_id": order_id,
                "from_status": from_status.value,
                "to_status": new_status.value,
                "actor_role": actor.role.value,
            },
        )
        return order

    async def cancel_order(self, order_id: int, reason: str, actor: Actor) -> Order:
        if not reason or not reason.strip():
            raise ValidationException("Cancellation reason is required", field="reason")
        return await self.update_status(
            order_id, OrderStatus.CANCELLED, actor, reason=TextSanitizer.sanitize(reason, 500)
        )

    async def refund_order(self, order_id: int, reason: str, actor: Actor) -> Order:
        if not reason or not reason.strip():
            raise ValidationException("Refund reason is required", field="reason")
        return await self.update_status(
            order_id, OrderStatus.REFUNDED, actor, reason=TextSanitizer.sanitize(reason, 500)
        )

    @log_async_operation("assign_rider", bind_order_id="order_id")
    async def assign_rider(
        self,
        order_id: int,
        rider_id: int,
        actor: Actor,
        reassign: bool = False,
    ) -> Order:
        """
        Bind a rider to the order (operator, or the rider taking it from the pool).

        An order that already has a different rider is only moved with
        reassign=True by an operator; the previous rider is freed.
        """
        order = await self._load_order(order_id)
        if order.status.is_terminal:
            raise InvalidStateTransitionError(
                f"Order is {order.status.value}, riders can no longer be assigned",
                order_id=order.id,
                current_status=order.status.value,
            )
        if actor.role == ActorRole.RIDER:
            if actor.id != rider_id:
                raise InvalidStateTransitionError(
                    "Riders can only assign themselves", order_id=order.id,
                    details={"actor_id": actor.id, "rider_id": rider_id},
                )
        elif actor.role != ActorRole.OPERATOR:
            raise InvalidStateTransitionError(
                f"A {actor.role.value} may not assign riders", order_id=order.id,
            )

        current = order.assignment
        previous_rider_id = None
        if isinstance(current, Assigned):
            if current.rider_id == rider_id:
                return order
            if not reassign or actor.role != ActorRole.OPERATOR:
                raise InvalidStateTransitionError(
                    "Order already has a rider",
                    order_id=order.id,
                    current_status=order.status.value,
                    error_code=ErrorCode.RIDER_ALREADY_ASSIGNED,
                    details={"rider_id": current.rider_id},
                )
            previous_rider_id = current.rider_id

        result = await self.db.execute(select(Rider).where(Rider.id == rider_id).with_for_update())
        rider = result.scalar_one_or_none()
        if rider is None:
            raise RiderNotFoundError(rider_id)
        self._check_rider_eligible(rider, order)

        order.assign_rider(rider_id, datetime.utcnow())
        await self._flush_guarded(order, None)

        try:
            if previous_rider_id is not None:
                await self._release_rider(previous_rider_id, order.id)
            rider.status = RiderStatus.BUSY
            rider.current_order_id = order.id

            record_audit(
                self.db,
                order,
                OrderAuditAction.RIDER_REASSIGNED if previous_rider_id else OrderAuditAction.RIDER_ASSIGNED,
                actor,
                from_status=order.status,
                to_status=order.status,
                details={"rider_id": rider_id, "previous_rider_id": previous_rider_id},
            )
            await self.outbox_service.queue_rider_assigned(order, previous_rider_id)
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictingStateTransitionError(order_id) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Rider assigned",
            extra_data={
                "order_id": order_id,
                "rider_id": rider_id,
                "previous_rider_id": previous_rider_id,
                "actor_role": actor.role.value,
            },
        )
        return order

    async def unassign_rider(self, order_id: int, actor: Actor) -> Order:
        """Operator override: free the rider and put the order back in the pool"""
        if actor.role != ActorRole.OPERATOR:
            raise InvalidStateTransitionError("Only operators may unassign riders", order_id=order_id)

        config = await self.settings_provider.get_config()
        order = await self._load_order(order_id)
        if order.status.is_terminal or order.status in RIDER_REQUIRED_STATES:
            raise InvalidStateTransitionError(
                f"Rider cannot be removed while the order is {order.status.value}",
                order_id=order.id,
                current_status=order.status.value,
            )
        if order.rider_id is None:
            return order

        previous_rider_id = order.rider_id
        order.clear_rider()
        await self._flush_guarded(order, None)

        try:
            await self._release_rider(previous_rider_id, order.id)
            record_audit(
                self.db,
                order,
                OrderAuditAction.RIDER_REASSIGNED,
                actor,
                from_status=order.status,
                to_status=order.status,
                details={"rider_id": None, "previous_rider_id": previous_rider_id},
            )
            if order.status == OrderStatus.READY:
                reward = estimate_rider_earning(order.quoted_distance_km, config)
                await self.outbox_service.queue_order_available(
                    order, reward.net, reward.distance.km, reward.distance.fallback_used
                )
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictingStateTransitionError(order_id) from e
        except Exception:
            await self.db.rollback()
            raise
        return order

    async def rate_rider(
        self,
        order_id: int,
        rating: int,
        actor: Actor,
        review: Optional[str] = None,
    ) -> None:
        """Customer rates the rider of a delivered order, once"""
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationException("Rating must be between 1 and 5", field="rating")

        order = await self._load_order(order_id)
        if actor.role == ActorRole.CUSTOMER:
            if actor.id != order.customer_id:
                raise InvalidStateTransitionError("Only the ordering customer may rate this rider", order_id=order.id)
        elif actor.role != ActorRole.OPERATOR:
            raise InvalidStateTransitionError(f"A {actor.role.value} may not rate riders", order_id=order.id)
        if order.status != OrderStatus.DELIVERED or order.rider_id is None:
            raise InvalidStateTransitionError(
                "Only delivered orders can be rated",
                order_id=order.id,
                current_status=order.status.value,
            )
        if order.rider_rating is not None:
            raise InvalidStateTransitionError(
                "Rider was already rated for this order",
                order_id=order.id,
                error_code=ErrorCode.ALREADY_RATED,
            )

        order.rider_rating = rating
        order.rider_review = TextSanitizer.sanitize(review) if review else None
        order.rated_at = datetime.utcnow()
        await self._flush_guarded(order, None)

        try:
            result = await self.db.execute(select(Rider).where(Rider.id == order.rider_id).with_for_update())
            rider = result.scalar_one()
            count = rider.review_count or 0
            average = to_decimal(rider.rating_average)
            rider.rating_average = ((average * count + rating) / (count + 1)).quantize(_RATING_QUANT)
            rider.review_count = count + 1

            record_audit(
                self.db,
                order,
                OrderAuditAction.RIDER_RATED,
                actor,
                details={"rating": rating, "rider_id": order.rider_id},
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    # ==================== internals ====================

    async def _flush_guarded(self, order: Order, requested: Optional[OrderStatus]) -> None:
        """Version-checked UPDATE; losing the race rolls back and raises Conflicting"""
        # read before the rollback expires the instance
        order_id = order.id
        try:
            await self.db.flush()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(
                "Concurrent order update rejected",
                extra_data={"order_id": order_id, "requested_status": requested.value if requested else None},
            )
            raise ConflictingStateTransitionError(
                order_id, requested.value if requested else None
            ) from e

    def _check_rider_eligible(self, rider: Rider, order: Order) -> None:
        if not rider.is_active:
            raise RiderNotEligibleError(rider.id, "rider is not active", order.id)
        if rider.settlement_status == SettlementStatus.BLOCKED:
            raise RiderNotEligibleError(rider.id, "rider is blocked", order.id)
        if rider.settlement_status == SettlementStatus.OVERDUE:
            raise RiderNotEligibleError(rider.id, "COD settlement is overdue", order.id)
        if rider.status == RiderStatus.OFFLINE:
            raise RiderNotEligibleError(rider.id, "rider is offline", order.id)
        if rider.current_order_id is not None and rider.current_order_id != order.id:
            raise RiderNotEligibleError(rider.id, "rider is busy with another order", order.id)

    async def _restore_stock(self, order: Order) -> None:
        tracked = {
            int(line["product_id"]): int(line["quantity"])
            for line in order.items or []
            if line.get("stock_tracked")
        }
        if not tracked:
            return
        result = await self.db.execute(
            select(Product).where(Product.id.in_(list(tracked))).with_for_update()
        )
        for product in result.scalars().all():
            if product.stock_quantity is not None:
                product.stock_quantity += tracked[product.id]
        await self.db.flush()

    async def _release_rider(self, rider_id: Optional[int], order_id: int) -> None:
        if rider_id is None:
            return
        result = await self.db.execute(select(Rider).where(Rider.id == rider_id).with_for_update())
        rider = result.scalar_one_or_none()
        if rider is not None and rider.current_order_id == order_id:
            rider.current_order_id = None
            if rider.status == RiderStatus.BUSY:
                rider.status = RiderStatus.AVAILABLE
            await self.db.flush()
