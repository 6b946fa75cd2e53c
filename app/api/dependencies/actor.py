"""
FastAPI dependency for the acting party of a request.

Authentication happens upstream (gateway); it forwards who is acting as two
headers:
    X-Actor-Role: customer | restaurant | rider | operator
    X-Actor-Id:   id of the customer / restaurant / rider (optional for operators)

Usage:
    @router.post("/{order_id}/cancel")
    async def cancel(order_id: int, actor: Actor = Depends(get_actor), ...):
"""
from fastapi import Depends, Header, HTTPException, status

from app.core.logging import get_logger
from app.state_machine.order_states import Actor, ActorRole

logger = get_logger(__name__)


async def get_actor(
    x_actor_role: str | None = Header(default=None),
    x_actor_id: int | None = Header(default=None),
) -> Actor:
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Role header is required",
        )
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role: {x_actor_role}",
        ) from None

    if role != ActorRole.OPERATOR and x_actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-Id header is required for this role",
        )
    return Actor(role=role, id=x_actor_id)


async def require_operator(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.OPERATOR:
        logger.warning(
            "Operator endpoint denied",
            extra_data={"actor_role": actor.role.value, "actor_id": actor.id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator role required",
        )
    return actor


def operator_name(actor: Actor) -> str:
    """Value stored in processed_by / updated_by columns"""
    return f"operator:{actor.id}" if actor.id is not None else "operator"
