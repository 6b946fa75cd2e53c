"""
Order audit trail - one row per transition, assignment, settlement, cancellation, refund and rating.
"""
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.order import Order
from app.db.models.order_audit_log import OrderAuditAction, OrderAuditLog
from app.state_machine.order_states import Actor, ActorRole

SYSTEM_ACTOR = Actor(ActorRole.OPERATOR)


def _status_value(status) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)


def record_audit(
    db: AsyncSession,
    order: Order,
    action: OrderAuditAction,
    actor: Actor,
    from_status=None,
    to_status=None,
    details: Optional[dict[str, Any]] = None,
) -> OrderAuditLog:
    """Add an audit row to the current transaction; the caller flushes/commits"""
    entry = OrderAuditLog(
        order_id=order.id,
        action=action,
        from_status=_status_value(from_status),
        to_status=_status_value(to_status),
        actor_role=actor.role.value,
        actor_id=actor.id,
        details=details,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry


async def get_order_audit_trail(db: AsyncSession, order_id: int) -> List[OrderAuditLog]:
    result = await db.execute(
        select(OrderAuditLog)
        .where(OrderAuditLog.order_id == order_id)
        .order_by(OrderAuditLog.created_at, OrderAuditLog.id)
    )
    return list(result.scalars().all())
