"""
ORDER LIFECYCLE RULES

The only allowed status transitions, and who may apply them.
No database writes, no side effects: OrderService asks `can_transition`
exactly once per attempt and acts on the decision.
"""
from typing import NamedTuple

from apps.accounts.models import Role
from .models import Order

S = Order.Status

TERMINAL_STATES = {S.DELIVERED, S.CANCELLED}

ALLOWED_TRANSITIONS = {
    S.DRAFT: {S.PENDING},
    S.PENDING: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.SHIPPED, S.CANCELLED},
    S.SHIPPED: {S.DELIVERED, S.CANCELLED},
}

ROLE_TRANSITIONS = {
    Role.ADMIN: {
        (src, dst) for src, targets in ALLOWED_TRANSITIONS.items() for dst in targets
    },
    Role.PRODUCER: {
        (S.PENDING, S.CONFIRMED),
        (S.CONFIRMED, S.SHIPPED),
        (S.SHIPPED, S.DELIVERED),
        (S.PENDING, S.CANCELLED),
        (S.CONFIRMED, S.CANCELLED),
        (S.SHIPPED, S.CANCELLED),
    },
    Role.BUYER: {
        (S.DRAFT, S.PENDING),
        (S.PENDING, S.CANCELLED),
    },
}


class TransitionDecision(NamedTuple):
    allowed: bool
    reason: str = ""
    forbidden: bool = False


ALLOW = TransitionDecision(True)


def is_valid_transition(from_status, to_status) -> bool:
    if from_status in TERMINAL_STATES:
        return False
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def can_transition(actor, order, from_status, to_status) -> TransitionDecision:
    """
    Single authority on transitions. `forbidden` is set when the actor is
    not a party to the order at all; otherwise a denial means the move is
    outside the table for that role.
    """
    if actor.role == Role.BUYER and order.buyer_id != actor.user_id:
        return TransitionDecision(False, "Not your order.", forbidden=True)

    if actor.role == Role.PRODUCER and actor.user_id not in order.producer_ids():
        return TransitionDecision(False, "You have no products in this order.", forbidden=True)

    if actor.role not in ROLE_TRANSITIONS:
        return TransitionDecision(False, f"Role {actor.role} cannot change orders.", forbidden=True)

    if not is_valid_transition(from_status, to_status):
        return TransitionDecision(False, f"Invalid status transition: {from_status} -> {to_status}.")

    if (from_status, to_status) not in ROLE_TRANSITIONS[actor.role]:
        return TransitionDecision(
            False, f"{actor.role.title()} cannot move an order from {from_status} to {to_status}."
        )

    return ALLOW
