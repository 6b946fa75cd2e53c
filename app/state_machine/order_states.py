"""
Order lifecycle: allowed status transitions and who may drive them.

Rider assignment is not a status. An order can sit in READY with no rider;
ON_THE_WAY and later need one.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import InvalidStateTransitionError
from app.db.models.order import Order, OrderStatus


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    RIDER = "rider"
    OPERATOR = "operator"


@dataclass(frozen=True)
class Actor:
    role: ActorRole
    # restaurant id for RESTAURANT, rider id for RIDER, customer id for CUSTOMER
    id: Optional[int] = None


_FAILURE_STATES = [OrderStatus.CANCELLED, OrderStatus.REFUNDED]

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: [OrderStatus.ACCEPTED, *_FAILURE_STATES],
    OrderStatus.ACCEPTED: [OrderStatus.PREPARING, OrderStatus.READY, *_FAILURE_STATES],
    OrderStatus.PREPARING: [OrderStatus.READY, *_FAILURE_STATES],
    OrderStatus.READY: [OrderStatus.ON_THE_WAY, OrderStatus.DELIVERED, *_FAILURE_STATES],
    OrderStatus.ON_THE_WAY: [OrderStatus.ARRIVED, OrderStatus.DELIVERED, *_FAILURE_STATES],
    OrderStatus.ARRIVED: [OrderStatus.DELIVERED, *_FAILURE_STATES],

    # Terminal
    OrderStatus.DELIVERED: [],
    OrderStatus.CANCELLED: [],
    OrderStatus.REFUNDED: [],
}

# Target status -> roles allowed to request it
TRANSITION_ACTORS = {
    OrderStatus.ACCEPTED: {ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.PREPARING: {ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.READY: {ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.ON_THE_WAY: {ActorRole.RIDER, ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.ARRIVED: {ActorRole.RIDER, ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.DELIVERED: {ActorRole.RIDER, ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.CANCELLED: {ActorRole.RESTAURANT, ActorRole.OPERATOR},
    OrderStatus.REFUNDED: {ActorRole.OPERATOR},
}

RIDER_REQUIRED_STATES = frozenset({
    OrderStatus.ON_THE_WAY,
    OrderStatus.ARRIVED,
    OrderStatus.DELIVERED,
})


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, [])


def check_transition(order: Order, target: OrderStatus, actor: Actor) -> None:
    """Raise InvalidStateTransitionError unless `actor` may move `order` to `target`"""
    current = order.status

    if current.is_terminal:
        raise InvalidStateTransitionError(
            f"Order is {current.value}, no further transitions are accepted",
            order_id=order.id,
            current_status=current.value,
            requested_status=target.value,
        )

    if not is_valid_transition(current, target):
        raise InvalidStateTransitionError(
            f"Cannot move order from {current.value} to {target.value}",
            order_id=order.id,
            current_status=current.value,
            requested_status=target.value,
        )

    if actor.role not in TRANSITION_ACTORS.get(target, set()) or not _acts_for_order(order, actor):
        raise InvalidStateTransitionError(
            f"A {actor.role.value} may not move this order to {target.value}",
            order_id=order.id,
            current_status=current.value,
            requested_status=target.value,
            details={"actor_role": actor.role.value, "actor_id": actor.id},
        )

    if target in RIDER_REQUIRED_STATES and order.rider_id is None:
        raise InvalidStateTransitionError(
            f"Order needs an assigned rider before {target.value}",
            order_id=order.id,
            current_status=current.value,
            requested_status=target.value,
        )


def _acts_for_order(order: Order, actor: Actor) -> bool:
    """Restaurants and riders act only on their own orders"""
    if actor.role == ActorRole.OPERATOR:
        return True
    if actor.role == ActorRole.RESTAURANT:
        return actor.id is not None and actor.id == order.restaurant_id
    if actor.role == ActorRole.RIDER:
        return actor.id is not None and actor.id == order.rider_id
    if actor.role == ActorRole.CUSTOMER:
        return actor.id is not None and actor.id == order.customer_id
    return False
