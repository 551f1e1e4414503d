"""Unit tests for the local payment state-machine guardrails."""

import pytest

from paygate.common.state_machine import PaymentState, is_terminal, validate_transition


def test_valid_transition():
    """Sanity check: pending may move to any terminal outcome."""

    for target in (PaymentState.SUCCESS, PaymentState.FAILED, PaymentState.CANCELED, PaymentState.TIMEOUT):
        validate_transition(PaymentState.PENDING, target)


def test_invalid_transition():
    """Terminal states never transition again."""

    with pytest.raises(ValueError):
        validate_transition(PaymentState.SUCCESS, PaymentState.FAILED)
    with pytest.raises(ValueError):
        validate_transition(PaymentState.TIMEOUT, PaymentState.SUCCESS)


def test_terminal_states():
    assert not is_terminal(PaymentState.PENDING)
    assert is_terminal(PaymentState.CANCELED)
