"""
Health Service - dependency checks for the readiness probe.

Two levels:
- liveness: the process answers (no dependency checks, lives in main.py)
- readiness: database, Redis, Celery broker and the outbox backlog
"""
from datetime import datetime, timedelta
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import func, select, text

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.database import AsyncSessionLocal
from app.db.models.outbox_message import MessageStatus, OutboxMessage

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Error strings never expose connection details
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"
_ERROR_OUTBOX_STALLED = "error: outbox_stalled"

# Pending events older than this mean the dispatcher is not running
_OUTBOX_STALL_MINUTES = 10


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """Ping the Celery broker (Redis)"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def _check_outbox() -> str:
    cutoff = datetime.utcnow() - timedelta(minutes=_OUTBOX_STALL_MINUTES)
    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(func.count(OutboxMessage.id)).where(
                    OutboxMessage.status == MessageStatus.PENDING,
                    OutboxMessage.created_at < cutoff,
                )
            )
            stalled = result.scalar_one()
    except Exception as e:
        logger.warning("Outbox health check failed", extra_data={"error": str(e)})
        return _ERROR_DB
    if stalled:
        logger.warning("Outbox has stalled events", extra_data={"stalled": stalled})
        return _ERROR_OUTBOX_STALLED
    return _CHECK_OK


async def check_readiness() -> dict[str, Any]:
    """
    Readiness check across all external dependencies.

    Returns {"status": "healthy" | "degraded", "db": ..., "redis": ..., "celery": ..., "outbox": ...}
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "celery": await _check_celery(),
        "outbox": await _check_outbox(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
