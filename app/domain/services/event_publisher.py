"""
Event Publisher - Redis Pub/Sub fan-out for outbox events.

Channels:
- <prefix>:orders:<order_id>        one order's timeline
- <prefix>:restaurants:<id>         restaurant dashboard
- <prefix>:customers:<id>           customer app
- <prefix>:riders:<id>              one rider's app
- <prefix>:riders:pool              orders waiting for a rider
- <prefix>:finance                  operator finance view
"""
import json
from datetime import datetime, timezone
from typing import Any

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)


def _channel(*parts: Any) -> str:
    return ":".join([settings.EVENT_CHANNEL_PREFIX, *[str(p) for p in parts]])


def order_channel(order_id: int) -> str:
    return _channel("orders", order_id)


def restaurant_channel(restaurant_id: int) -> str:
    return _channel("restaurants", restaurant_id)


def customer_channel(customer_id: int) -> str:
    return _channel("customers", customer_id)


def rider_channel(rider_id: int) -> str:
    return _channel("riders", rider_id)


def rider_pool_channel() -> str:
    return _channel("riders", "pool")


def finance_channel() -> str:
    return _channel("finance")


async def publish_event(channel: str, payload: dict[str, Any]) -> int:
    """
    Publish one event. Returns the number of subscribers that received it.

    Raises on Redis errors; the outbox worker turns that into a retry.
    """
    message = json.dumps(
        {**payload, "published_at": datetime.now(timezone.utc).isoformat()},
        ensure_ascii=False,
        default=str,
    )
    redis = await get_redis()
    receivers = await redis.publish(channel, message)
    logger.debug(
        "Event published",
        extra_data={"channel": channel, "event": payload.get("event"), "receivers": receivers},
    )
    return receivers
