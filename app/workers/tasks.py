"""
Celery Tasks for Event Dispatch

Implements the worker side of the Transactional Outbox pattern.
Publishes pending order/wallet events from the outbox table to Redis
Pub/Sub, and runs the periodic housekeeping jobs.
"""
import asyncio
from contextlib import contextmanager

from app.workers.celery_app import celery_app
from app.db.database import get_task_session
from app.db.models.outbox_message import OutboxMessage
from app.domain.services import event_publisher
from app.domain.services.cod_service import CODReconciliationService
from app.domain.services.outbox_service import OutboxService
from app.core.config import settings
from app.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # the Redis singleton is bound to this loop and must not outlive it
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _process_single_message(message: OutboxMessage) -> tuple[bool, str]:
    """Publish one outbox message. Failures are recorded for retry, never raised."""
    async with get_task_session() as db:
        outbox_service = OutboxService(db)

        if not await outbox_service.mark_as_processing(message.id):
            return False, "skipped"

        try:
            receivers = await event_publisher.publish_event(message.channel, message.payload)
        except Exception as e:
            logger.error(
                "Event publish failed",
                extra_data={
                    "message_id": message.id,
                    "channel": message.channel,
                    "event_type": message.event_type.value,
                    "retry_count": message.retry_count,
                    "error": str(e),
                },
                exc_info=True,
            )
            await outbox_service.mark_as_failed(message.id, str(e))
            return False, str(e)

        await outbox_service.mark_as_sent(message.id)
        return True, f"receivers={receivers}"


@celery_app.task(name="app.workers.tasks.dispatch_order_events")
def dispatch_order_events():
    """
    Publish pending events from the outbox.
    Runs periodically; a message whose publish fails is retried with backoff.
    """

    async def _process():
        async with get_task_session() as db:
            outbox_service = OutboxService(db)
            messages = await outbox_service.get_pending_messages(limit=settings.OUTBOX_BATCH_SIZE)

        results = []
        for message in messages:
            success, result = await _process_single_message(message)
            results.append({
                "message_id": message.id,
                "success": success,
                "result": result,
            })

        if results:
            logger.info(
                "Outbox batch dispatched",
                extra_data={
                    "total": len(results),
                    "sent": sum(1 for r in results if r["success"]),
                },
            )
        return results

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int = settings.OUTBOX_RETENTION_DAYS):
    """Clean up old published messages from the outbox"""

    async def _cleanup():
        async with get_task_session() as db:
            deleted = await OutboxService(db).cleanup_old_messages(days)
            return {"deleted": deleted}

    return run_async(_cleanup())


@celery_app.task(name="app.workers.tasks.refresh_rider_settlement_status")
def refresh_rider_settlement_status():
    """Re-evaluate ACTIVE/OVERDUE for every rider against the current COD threshold"""

    async def _refresh():
        async with get_task_session() as db:
            return await CODReconciliationService(db).refresh_overdue_statuses()

    return run_async(_refresh())
