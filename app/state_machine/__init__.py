"""
State Machine Module for the order lifecycle
"""
from app.state_machine.order_states import (
    Actor,
    ActorRole,
    ORDER_TRANSITIONS,
    check_transition,
    is_valid_transition,
)

__all__ = ["Actor", "ActorRole", "ORDER_TRANSITIONS", "check_transition", "is_valid_transition"]
