import pytest

from streetserve.orders.models import OrderStatus
from streetserve.orders.state_machine import (
    Actor, allowed_transitions, assert_transition, can_transition, next_status
)
from streetserve.shared.utils import InvalidStateTransitionError


def test_vendor_happy_path():
    path = ["pending", "confirmed", "processing", "shipped", "delivered"]
    for current, target in zip(path, path[1:]):
        assert can_transition(current, target, Actor.VENDOR)
    assert next_status("delivered") is None


@pytest.mark.parametrize("current,target", [
    ("pending", "shipped"),
    ("pending", "processing"),
    ("confirmed", "delivered"),
    ("shipped", "confirmed"),
    ("cancelled", "pending"),
])
def test_skips_and_backwards_rejected(current, target):
    assert not can_transition(current, target, Actor.VENDOR)
    with pytest.raises(InvalidStateTransitionError):
        assert_transition(current, target, Actor.VENDOR)


@pytest.mark.parametrize("actor", list(Actor))
@pytest.mark.parametrize("current", ["pending", "confirmed", "processing"])
def test_cancel_allowed_before_shipping(actor, current):
    assert can_transition(current, "cancelled", actor)


@pytest.mark.parametrize("actor", list(Actor))
@pytest.mark.parametrize("current", ["shipped", "delivered", "cancelled"])
def test_cancel_rejected_after_shipping(actor, current):
    assert not can_transition(current, "cancelled", actor)


def test_buyer_can_only_cancel():
    assert allowed_transitions("pending", Actor.BUYER) == {OrderStatus.CANCELLED}
    assert allowed_transitions("shipped", Actor.BUYER) == set()
    assert not can_transition("pending", "confirmed", Actor.BUYER)


def test_error_detail():
    with pytest.raises(InvalidStateTransitionError) as exc:
        assert_transition("pending", "shipped", Actor.VENDOR)
    assert exc.value.status_code == 409
    assert exc.value.detail["current"] == "pending"
    assert exc.value.detail["target"] == "shipped"
