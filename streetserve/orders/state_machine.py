"""Order status transition table."""
from enum import Enum
from typing import Optional, Set, Union

from streetserve.orders.models import OrderStatus
from streetserve.shared.utils import InvalidStateTransitionError


class Actor(str, Enum):
    BUYER = "buyer"
    VENDOR = "vendor"


FORWARD_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]
CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def next_status(current: Union[OrderStatus, str]) -> Optional[OrderStatus]:
    current = OrderStatus(current)
    if current in TERMINAL:
        return None
    return FORWARD_FLOW[FORWARD_FLOW.index(current) + 1]


def allowed_transitions(current: Union[OrderStatus, str], actor: Actor) -> Set[OrderStatus]:
    current = OrderStatus(current)
    allowed = set()
    if current in CANCELLABLE:
        allowed.add(OrderStatus.CANCELLED)
    if actor is Actor.VENDOR:
        step = next_status(current)
        if step:
            allowed.add(step)
    return allowed


def can_transition(current, target, actor: Actor) -> bool:
    return OrderStatus(target) in allowed_transitions(current, actor)


def assert_transition(current, target, actor: Actor):
    if not can_transition(current, target, actor):
        raise InvalidStateTransitionError(OrderStatus(current).value, OrderStatus(target).value, actor.value)
