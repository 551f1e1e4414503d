"""Subscription checkout and reconciliation.

Translates terminal payment outcomes into durable subscription state. Every
write is keyed by gateway transaction id so that the synchronous payment
response, the poll loop and the webhook can all report the same success
without extending the billing period twice.
"""

import calendar
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from paygate.common.logging import logger, transaction_id_ctx
from paygate.common.metrics import payment_success_total, reconciliations_total
from paygate.common.state_machine import PaymentState, is_terminal
from paygate.services.gateway.errors import (
    GatewayTimeout,
    PaymentValidationError,
    ServiceUnavailable,
)
from paygate.services.gateway.schemas import CustomerInfo, PaymentResponse
from paygate.services.payments.service import PaymentOrchestrator, normalize_payment_type
from paygate.services.poller.service import PollOutcome, PollSession, normalize_status
from paygate.services.subscriptions.models import BillingRecord, Subscription, SubscriptionPlan
from paygate.services.subscriptions.schemas import (
    CheckoutResult,
    PollStatus,
    ReconciliationResult,
    SnapshotResult,
)

BILLING_CYCLE_MONTHS = {"monthly": 1, "quarterly": 3, "yearly": 12}

BILLING_STATUS = {
    PaymentState.SUCCESS: "paid",
    PaymentState.FAILED: "failed",
    PaymentState.CANCELED: "cancelled",
    PaymentState.TIMEOUT: "timeout",
}

BILLING_STATES = {status: state for state, status in BILLING_STATUS.items()}

FALLBACK_MESSAGES = {
    PaymentState.SUCCESS: "Payment successful! Subscription activated.",
    PaymentState.FAILED: "Payment failed. Please try again.",
    PaymentState.CANCELED: "Payment was cancelled. No charge was made.",
    PaymentState.TIMEOUT: "Payment timeout - please check your phone before trying again",
    PaymentState.PENDING: "Payment is still being processed. Please wait...",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_cents(amount: Any) -> int:
    """Convert a major-unit amount (e.g. 150.5 ZMW) into integer minor units."""

    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> float:
    return cents / 100


def billing_state(status: str) -> PaymentState:
    return BILLING_STATES.get(status, PaymentState.PENDING)


def add_billing_cycle(start: datetime, billing_cycle: str) -> datetime:
    """Advance `start` by one cycle, clamping the day to the target month's end."""

    try:
        months = BILLING_CYCLE_MONTHS[billing_cycle]
    except KeyError:
        raise ValueError(f"Unknown billing cycle: {billing_cycle}") from None
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


class SubscriptionService:
    """Owns subscription and billing-record writes."""

    def __init__(self, session_factory, clock=_utcnow, service_name: str = "subscriptions") -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.service_name = service_name

    def _result(
        self,
        record: BillingRecord,
        subscription: Subscription,
        state: PaymentState,
        applied: bool,
        message: str,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            transaction_id=record.transaction_id,
            subscription_id=subscription.subscription_id,
            state=state,
            applied=applied,
            message=message,
            subscription_status=subscription.status,
            next_billing_date=_aware(subscription.next_billing_date),
        )

    def record_pending_payment(
        self,
        subscription_id: str,
        plan_id: str,
        response: PaymentResponse,
        payment_type: str,
    ) -> BillingRecord:
        """Create the billing row for a freshly initiated payment (once per transaction)."""

        with self.session_factory() as db:
            existing = db.execute(
                select(BillingRecord).where(BillingRecord.transaction_id == response.transaction_id)
            ).scalar_one_or_none()
            if existing:
                return existing
            subscription = db.get(Subscription, subscription_id)
            if subscription is None:
                raise LookupError(f"Subscription not found: {subscription_id}")
            record = BillingRecord(
                subscription_id=subscription_id,
                plan_id=plan_id,
                invoice_number=f"INV-{self.clock():%Y%m%d}-{uuid4().hex[:8].upper()}",
                transaction_id=response.transaction_id,
                external_id=response.external_id,
                amount_cents=to_cents(response.amount),
                currency=response.currency or subscription.currency,
                status="pending",
                payment_type=payment_type,
                message=response.message,
            )
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return db.execute(
                    select(BillingRecord).where(BillingRecord.transaction_id == response.transaction_id)
                ).scalar_one()
            logger.info(
                "billing record created subscription_id=%s transaction_id=%s invoice=%s",
                subscription_id,
                response.transaction_id,
                record.invoice_number,
            )
            return record

    def reconcile(
        self,
        transaction_id: str,
        state: PaymentState,
        message: str | None = None,
        amount: float | None = None,
        currency: str | None = None,
    ) -> ReconciliationResult:
        """Apply one outcome for `transaction_id`; safe to call repeatedly."""

        transaction_id_ctx.set(transaction_id)
        with self.session_factory() as db:
            record = db.execute(
                select(BillingRecord).where(BillingRecord.transaction_id == transaction_id)
            ).scalar_one_or_none()
            if record is None:
                raise LookupError(f"No billing record for transaction {transaction_id}")
            subscription = db.get(Subscription, record.subscription_id)
            if subscription is None:
                raise LookupError(f"Subscription not found: {record.subscription_id}")

            if state is not PaymentState.SUCCESS:
                if record.status != "paid":
                    if state is not PaymentState.PENDING:
                        record.status = BILLING_STATUS[state]
                    if message:
                        record.message = message
                db.commit()
                reconciliations_total.labels(result=state.value).inc()
                logger.info(
                    "payment not successful, subscription unchanged transaction_id=%s state=%s",
                    transaction_id,
                    state.value,
                )
                return self._result(record, subscription, state, False, message or FALLBACK_MESSAGES[state])

            if record.status == "paid":
                reconciliations_total.labels(result="duplicate").inc()
                logger.info("duplicate success skipped transaction_id=%s", transaction_id)
                return self._result(record, subscription, state, False, "Payment already reconciled")

            plan = db.get(SubscriptionPlan, record.plan_id)
            billing_cycle = plan.billing_cycle if plan else subscription.billing_cycle
            now = self.clock()
            current_end = _aware(subscription.end_date)
            if subscription.status == "active" and current_end is not None and current_end > now:
                period_start = current_end
            else:
                period_start = now
            period_end = add_billing_cycle(period_start, billing_cycle)
            paid_cents = to_cents(amount) if amount else record.amount_cents
            paid_currency = currency or record.currency

            current_version = subscription.state_version
            values: dict[str, Any] = {
                "status": "active",
                "state_version": current_version + 1,
                "billing_cycle": billing_cycle,
                "amount_cents": paid_cents,
                "currency": paid_currency,
                "payment_method": "mobile_money" if record.payment_type == "mobile-money" else record.payment_type,
                "end_date": period_end,
                "next_billing_date": period_end,
                "last_payment_date": now,
                "transaction_id": transaction_id,
                "external_id": record.external_id,
                "updated_at": now,
            }
            if subscription.start_date is None or subscription.status != "active":
                values["start_date"] = period_start
            if plan is not None:
                values["plan_id"] = plan.plan_id
                values["plan_type"] = plan.plan_type

            # Guarded by state_version so a concurrent reconcile cannot double-extend.
            result = db.execute(
                update(Subscription)
                .where(
                    Subscription.subscription_id == subscription.subscription_id,
                    Subscription.state_version == current_version,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                db.rollback()
                raise RuntimeError(
                    f"optimistic concurrency conflict for subscription {subscription.subscription_id} "
                    f"(expected version {current_version})"
                )
            for key, value in values.items():
                setattr(subscription, key, value)

            record.status = "paid"
            record.payment_date = now
            record.period_start = period_start
            record.period_end = period_end
            record.amount_cents = paid_cents
            record.currency = paid_currency
            if message:
                record.message = message
            db.commit()

        reconciliations_total.labels(result="applied").inc()
        payment_success_total.labels(service=self.service_name).inc()
        logger.info(
            "subscription activated subscription_id=%s transaction_id=%s next_billing_date=%s",
            subscription.subscription_id,
            transaction_id,
            period_end.isoformat(),
        )
        return self._result(record, subscription, state, True, message or FALLBACK_MESSAGES[state])

    def handle_webhook(self, payload: dict[str, Any]) -> ReconciliationResult:
        """Apply a gateway callback `{transactionId, status, ...}`."""

        if not isinstance(payload, dict):
            raise PaymentValidationError("Webhook payload must be a JSON object")
        transaction_id = payload.get("transactionId")
        status = payload.get("status")
        if not transaction_id or not status:
            raise PaymentValidationError("Missing required fields: transactionId and status")
        state = normalize_status(status)
        amount = payload.get("amount")
        if amount is not None:
            try:
                to_cents(amount)
            except (InvalidOperation, ValueError):
                raise PaymentValidationError("Webhook amount must be numeric", field="amount") from None
        logger.info("webhook received transaction_id=%s status=%s", transaction_id, status)
        return self.reconcile(
            transaction_id,
            state,
            message=payload.get("message"),
            amount=amount,
            currency=payload.get("currency"),
        )

    def get_subscription(self, subscription_id: str) -> Subscription | None:
        with self.session_factory() as db:
            return db.get(Subscription, subscription_id)

    def find_billing_record(self, transaction_id: str) -> BillingRecord | None:
        with self.session_factory() as db:
            return db.execute(
                select(BillingRecord).where(BillingRecord.transaction_id == transaction_id)
            ).scalar_one_or_none()

    def latest_billing_record(self, subscription_id: str) -> BillingRecord | None:
        with self.session_factory() as db:
            return db.execute(
                select(BillingRecord)
                .where(BillingRecord.subscription_id == subscription_id)
                .order_by(BillingRecord.created_at.desc())
            ).scalars().first()


class CheckoutService:
    """Inbound boundary: plan + payment type + customer in, transaction out."""

    def __init__(self, session_factory, orchestrator: PaymentOrchestrator, subscriptions: SubscriptionService) -> None:
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.subscriptions = subscriptions

    def _prepare_subscription(self, user_id: str, plan_id: str, payment_type: str) -> tuple[str, SubscriptionPlan]:
        with self.session_factory() as db:
            plan = db.get(SubscriptionPlan, plan_id)
            if plan is None or not plan.is_active:
                raise LookupError("Invalid or inactive plan")
            subscription = db.execute(
                select(Subscription)
                .where(Subscription.user_id == user_id, Subscription.status.in_(["active", "pending"]))
                .order_by(Subscription.created_at.desc())
            ).scalars().first()
            payment_method = "mobile_money" if payment_type == "mobile-money" else payment_type
            if subscription is None:
                subscription = Subscription(
                    user_id=user_id,
                    plan_id=plan.plan_id,
                    plan_type=plan.plan_type,
                    status="pending",
                    billing_cycle=plan.billing_cycle,
                    amount_cents=plan.price_cents,
                    currency=plan.currency,
                    payment_method=payment_method,
                )
                db.add(subscription)
                db.commit()
                logger.info("pending subscription created subscription_id=%s user_id=%s", subscription.subscription_id, user_id)
            elif subscription.status == "pending":
                subscription.plan_id = plan.plan_id
                subscription.plan_type = plan.plan_type
                subscription.billing_cycle = plan.billing_cycle
                subscription.amount_cents = plan.price_cents
                subscription.currency = plan.currency
                subscription.payment_method = payment_method
                db.commit()
            return subscription.subscription_id, plan

    async def checkout(
        self,
        user_id: str,
        plan_id: str,
        payment_type: str,
        customer: CustomerInfo,
    ) -> CheckoutResult:
        """Initiate a subscription payment; success is reconciled immediately."""

        normalized_type = normalize_payment_type(payment_type)
        subscription_id, plan = self._prepare_subscription(user_id, plan_id, normalized_type)
        response = await self.orchestrator.process_subscription_payment(
            subscription_id,
            from_cents(plan.price_cents),
            normalized_type,
            customer,
            narration=f"Subscription upgrade to {plan.name}",
        )
        self.subscriptions.record_pending_payment(subscription_id, plan.plan_id, response, normalized_type)

        state = normalize_status(response.status)
        reconciliation = None
        if state is not PaymentState.PENDING:
            reconciliation = self.subscriptions.reconcile(
                response.transaction_id,
                state,
                message=response.message,
                amount=response.amount,
                currency=response.currency,
            )
        return CheckoutResult(
            subscription_id=subscription_id,
            transaction_id=response.transaction_id,
            external_id=response.external_id,
            state=state,
            message=response.message or FALLBACK_MESSAGES[state],
            requires_polling=state is PaymentState.PENDING,
            redirect_url=response.redirect_url,
            reconciliation=reconciliation,
        )

    async def snapshot(self, transaction_id: str) -> SnapshotResult:
        """Report the current outcome for `transaction_id`, reconciling a terminal remote status.

        Settled billing records answer locally. A poll that timed out stays
        reported as `timeout` until the gateway moves past pending.
        """

        record = self.subscriptions.find_billing_record(transaction_id)
        recorded = billing_state(record.status) if record else None
        if recorded is not None and is_terminal(recorded) and recorded is not PaymentState.TIMEOUT:
            return SnapshotResult(
                transaction_id=transaction_id,
                state=recorded,
                message=record.message or FALLBACK_MESSAGES[recorded],
            )

        try:
            status = await self.orchestrator.get_transaction_status(transaction_id)
        except (GatewayTimeout, ServiceUnavailable) as exc:
            logger.warning("status check unavailable, reporting pending transaction_id=%s error=%s", transaction_id, exc)
            return self._unsettled(transaction_id, record, "Checking payment status... Please wait.")
        state = normalize_status(status.status)
        if state is PaymentState.PENDING:
            return self._unsettled(transaction_id, record, status.message)
        reconciliation = self.subscriptions.reconcile(
            transaction_id, state, message=status.message, amount=status.amount, currency=status.currency
        )
        return SnapshotResult(
            transaction_id=transaction_id,
            state=state,
            message=status.message or FALLBACK_MESSAGES[state],
            reconciliation=reconciliation,
        )

    @staticmethod
    def _unsettled(transaction_id: str, record: BillingRecord | None, message: str | None) -> SnapshotResult:
        if record is not None and billing_state(record.status) is PaymentState.TIMEOUT:
            return SnapshotResult(
                transaction_id=transaction_id,
                state=PaymentState.TIMEOUT,
                message=record.message or FALLBACK_MESSAGES[PaymentState.TIMEOUT],
            )
        return SnapshotResult(
            transaction_id=transaction_id,
            state=PaymentState.PENDING,
            message=message or FALLBACK_MESSAGES[PaymentState.PENDING],
        )

    def poll_status(self, subscription_id: str, session: PollSession | None = None) -> PollStatus:
        """What the wait dialog shows: the live poll, else the last reconciled outcome."""

        if session is not None and session.active:
            return PollStatus(
                subscription_id=subscription_id,
                transaction_id=session.transaction_id,
                active=True,
                state=session.state,
                message=FALLBACK_MESSAGES[session.state],
            )
        record = self.subscriptions.latest_billing_record(subscription_id)
        if record is None:
            raise LookupError(f"No payment found for subscription {subscription_id}")
        state = billing_state(record.status)
        return PollStatus(
            subscription_id=subscription_id,
            transaction_id=record.transaction_id,
            active=False,
            state=state,
            message=record.message or FALLBACK_MESSAGES[state],
        )

    async def on_poll_outcome(self, outcome: PollOutcome) -> ReconciliationResult:
        """Outcome handler for background poll sessions."""

        snapshot = outcome.snapshot
        return self.subscriptions.reconcile(
            outcome.transaction_id,
            outcome.state,
            message=outcome.message,
            amount=snapshot.amount if snapshot else None,
            currency=snapshot.currency if snapshot else None,
        )
