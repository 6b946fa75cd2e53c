"""
Outbox Service - Transactional Outbox Pattern for order and wallet events

State changes queue their events in the same database transaction, one row
per pub/sub channel. A Celery beat task publishes the rows afterwards, so a
slow or failing Redis never blocks or rolls back an order or a settlement.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, List

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.models.outbox_message import EventType, MessageStatus, OutboxMessage
from app.db.models.order import Order
from app.domain.services import event_publisher


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Calculate exponential backoff seconds with a hard upper bound.

        backoff = base_seconds * (2 ** retry_count)

    The result is capped at max_backoff_seconds and avoids computing huge
    powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # Is 2**retry_count >= ceil(max/base)? Answer it without computing 2**retry_count.
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    is_power_of_two = (required_multiplier & (required_multiplier - 1)) == 0
    threshold = required_multiplier.bit_length() - 1
    if not is_power_of_two:
        threshold += 1

    if retry_count >= threshold:
        return max_backoff_seconds

    backoff = base_seconds * (1 << retry_count)
    return min(backoff, max_backoff_seconds)


def _money(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def order_payload(order: Order) -> dict[str, Any]:
    """Minimal order view for subscribers; money as strings"""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value if order.status else None,
        "restaurant_id": order.restaurant_id,
        "customer_id": order.customer_id,
        "rider_id": order.rider_id,
        "payment_method": order.payment_method.value if order.payment_method else None,
        "total_price": _money(order.total_price),
        "is_paid": order.is_paid,
        "is_settled": order.is_settled,
    }


class OutboxService:
    """
    Queues events next to the state change and tracks their publication.

    queue_* methods only add rows; the caller's transaction commits them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_event(
        self,
        event_type: EventType,
        channels: Iterable[str],
        payload: dict[str, Any],
    ) -> List[OutboxMessage]:
        """Queue one row per channel, all carrying the same payload"""
        body = {"event": event_type.value, **payload}
        messages = []
        for channel in dict.fromkeys(channels):
            message = OutboxMessage(
                event_type=event_type,
                channel=channel,
                payload=body,
                status=MessageStatus.PENDING,
                retry_count=0,
                max_retries=settings.OUTBOX_MAX_RETRIES,
            )
            self.db.add(message)
            messages.append(message)
        return messages

    async def queue_order_created(self, order: Order) -> List[OutboxMessage]:
        return await self.queue_event(
            EventType.ORDER_CREATED,
            [
                event_publisher.order_channel(order.id),
                event_publisher.restaurant_channel(order.restaurant_id),
                event_publisher.customer_channel(order.customer_id),
            ],
            order_payload(order),
        )

    async def queue_status_changed(
        self,
        order: Order,
        from_status: str,
        reason: str | None = None,
    ) -> List[OutboxMessage]:
        channels = [
            event_publisher.order_channel(order.id),
            event_publisher.restaurant_channel(order.restaurant_id),
            event_publisher.customer_channel(order.customer_id),
        ]
        if order.rider_id is not None:
            channels.append(event_publisher.rider_channel(order.rider_id))
        payload = order_payload(order)
        payload["from_status"] = from_status
        if reason:
            payload["reason"] = reason
        return await self.queue_event(EventType.ORDER_STATUS_CHANGED, channels, payload)

    async def queue_rider_assigned(
        self,
        order: Order,
        previous_rider_id: int | None = None,
    ) -> List[OutboxMessage]:
        channels = [
            event_publisher.order_channel(order.id),
            event_publisher.restaurant_channel(order.restaurant_id),
            event_publisher.rider_channel(order.rider_id),
        ]
        if previous_rider_id is not None:
            channels.append(event_publisher.rider_channel(previous_rider_id))
        payload = order_payload(order)
        payload["previous_rider_id"] = previous_rider_id
        return await self.queue_event(EventType.RIDER_ASSIGNED, channels, payload)

    async def queue_order_available(
        self,
        order: Order,
        estimated_reward: Decimal,
        distance_km: float,
        distance_fallback_used: bool,
    ) -> List[OutboxMessage]:
        """Broadcast a ready, unassigned order to the rider pool"""
        return await self.queue_event(
            EventType.ORDER_AVAILABLE,
            [event_publisher.rider_pool_channel()],
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "restaurant_id": order.restaurant_id,
                "shipping_address": order.shipping_address,
                "estimated_reward": str(estimated_reward),
                "distance_km": distance_km,
                "distance_fallback_used": distance_fallback_used,
            },
        )

    async def queue_wallet_updated(
        self,
        entity_type: str,
        entity_id: int,
        payload: dict[str, Any],
    ) -> List[OutboxMessage]:
        if entity_type == "restaurant":
            channel = event_publisher.restaurant_channel(entity_id)
        else:
            channel = event_publisher.rider_channel(entity_id)
        return await self.queue_event(
            EventType.WALLET_UPDATED,
            [channel, event_publisher.finance_channel()],
            {"entity_type": entity_type, "entity_id": entity_id, **payload},
        )

    async def queue_cod_updated(self, rider_id: int, payload: dict[str, Any]) -> List[OutboxMessage]:
        return await self.queue_event(
            EventType.COD_UPDATED,
            [event_publisher.rider_channel(rider_id), event_publisher.finance_channel()],
            {"rider_id": rider_id, **payload},
        )

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """Pending messages whose retry delay (if any) has elapsed, oldest first"""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(
                    OutboxMessage.next_retry_at.is_(None),
                    OutboxMessage.next_retry_at <= now,
                ),
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_as_processing(self, message_id: int) -> bool:
        """
        Claim a pending message. Returns False when another worker got there first
        or the message is no longer pending.
        """
        result = await self.db.execute(
            select(OutboxMessage)
            .where(OutboxMessage.id == message_id)
            .with_for_update(skip_locked=True)
        )
        message = result.scalar_one_or_none()
        if message is None or message.status != MessageStatus.PENDING:
            return False
        message.status = MessageStatus.PROCESSING
        await self.db.commit()
        return True

    async def mark_as_sent(self, message_id: int) -> None:
        """Mark message as successfully published"""
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        message = result.scalar_one_or_none()
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = datetime.utcnow()
            message.last_error = None
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Record a failed publish; retry later or give up after max_retries"""
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        message = result.scalar_one_or_none()
        if message:
            message.retry_count = (message.retry_count or 0) + 1
            message.last_error = error[:1000]

            if message.retry_count >= message.max_retries:
                message.status = MessageStatus.FAILED
                message.processed_at = datetime.utcnow()
            else:
                message.status = MessageStatus.PENDING
                backoff_seconds = _calculate_backoff_seconds(
                    message.retry_count,
                    base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                    max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
                )
                message.next_retry_at = datetime.utcnow() + timedelta(
                    seconds=backoff_seconds
                )

            await self.db.commit()

    async def cleanup_old_messages(self, days: int) -> int:
        """Delete sent messages processed more than `days` ago"""
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            delete(OutboxMessage).where(
                OutboxMessage.status == MessageStatus.SENT,
                OutboxMessage.processed_at < cutoff,
            )
        )
        await self.db.commit()
        return result.rowcount or 0
