import hashlib
import hmac

import pytest

from streetserve.payments.gateway import compute_signature, verify_signature

EXPECTED = hmac.new(b"S", b"order_1|pay_1", hashlib.sha256).hexdigest()


def test_known_signature():
    assert compute_signature("order_1", "pay_1", "S") == EXPECTED
    assert verify_signature("order_1", "pay_1", EXPECTED, "S")


def mutations(signature):
    for i, ch in enumerate(signature):
        replacement = "0" if ch != "0" else "1"
        yield signature[:i] + replacement + signature[i + 1:]


def test_every_single_character_mutation_rejected():
    for mutated in mutations(EXPECTED):
        assert not verify_signature("order_1", "pay_1", mutated, "S")


@pytest.mark.parametrize("order_id,payment_id,signature,secret", [
    ("order_2", "pay_1", EXPECTED, "S"),
    ("order_1", "pay_2", EXPECTED, "S"),
    ("order_1", "pay_1", EXPECTED, "T"),
    ("order_1", "pay_1", EXPECTED.upper(), "S"),
    ("order_1", "pay_1", EXPECTED[:-1], "S"),
    ("order_1", "pay_1", "", "S"),
    ("order_1", "pay_1", None, "S"),
    ("", "pay_1", EXPECTED, "S"),
])
def test_rejected(order_id, payment_id, signature, secret):
    assert not verify_signature(order_id, payment_id, signature, secret)
