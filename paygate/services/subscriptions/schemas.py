"""Result schemas for checkout, status snapshots and reconciliation."""

from datetime import datetime

from pydantic import BaseModel

from paygate.common.state_machine import PaymentState


class ReconciliationResult(BaseModel):
    """What reconciling one terminal outcome did to local state."""

    transaction_id: str
    subscription_id: str
    state: PaymentState
    applied: bool
    message: str
    subscription_status: str
    next_billing_date: datetime | None = None


class CheckoutResult(BaseModel):
    subscription_id: str
    transaction_id: str
    external_id: str | None = None
    state: PaymentState
    message: str
    requires_polling: bool
    redirect_url: str | None = None
    reconciliation: ReconciliationResult | None = None


class SnapshotResult(BaseModel):
    transaction_id: str
    state: PaymentState
    message: str
    reconciliation: ReconciliationResult | None = None


class PollStatus(BaseModel):
    """Live poll state for a subscription, or its last reconciled payment outcome."""

    subscription_id: str
    transaction_id: str
    active: bool
    state: PaymentState
    message: str
