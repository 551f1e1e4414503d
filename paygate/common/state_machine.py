"""Local payment state machine driven by gateway status polling."""

from enum import Enum


class PaymentState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMEOUT = "timeout"


ALLOWED_TRANSITIONS: dict[PaymentState, set[PaymentState]] = {
    PaymentState.PENDING: {
        PaymentState.SUCCESS,
        PaymentState.FAILED,
        PaymentState.CANCELED,
        PaymentState.TIMEOUT,
    },
    PaymentState.SUCCESS: set(),
    PaymentState.FAILED: set(),
    PaymentState.CANCELED: set(),
    PaymentState.TIMEOUT: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def is_terminal(state: PaymentState) -> bool:
    return state in TERMINAL_STATES


def validate_transition(current: PaymentState, new: PaymentState) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current.value} -> {new.value}")
