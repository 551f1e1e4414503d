"""Caller-driven polling of remote transaction status.

A `PollSession` is the cancellation token: one `active` flag checked at the
top of every tick. The `StatusPoller` registry keeps at most one live session
per key, so a superseded loop can never report an outcome.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from paygate.common.logging import logger
from paygate.common.metrics import poll_outcomes_total
from paygate.common.state_machine import PaymentState, validate_transition
from paygate.services.gateway.schemas import TransactionStatusResponse

TIMEOUT_MESSAGE = "Payment timeout"

_SUCCESS = {"successful", "completed", "success"}
_FAILED = {"failed", "error", "failure"}
_CANCELED = {"cancelled", "canceled", "cancel"}


def normalize_status(raw: str | None) -> PaymentState:
    """Map gateway status vocabulary onto the local state machine."""

    value = (raw or "").strip().lower()
    if value in _SUCCESS:
        return PaymentState.SUCCESS
    if value in _FAILED:
        return PaymentState.FAILED
    if value in _CANCELED:
        return PaymentState.CANCELED
    return PaymentState.PENDING


@dataclass
class PollOutcome:
    transaction_id: str
    state: PaymentState
    message: str
    snapshot: TransactionStatusResponse | None = None
    polls: int = 0


class PollSession:
    """Cancellation token for one poll loop."""

    def __init__(self, key: str, transaction_id: str) -> None:
        self.key = key
        self.transaction_id = transaction_id
        self.active = True
        self.state = PaymentState.PENDING
        self.outcome: PollOutcome | None = None
        self.task: asyncio.Task | None = None

    def cancel(self) -> None:
        self.active = False

    def _finish(self, outcome: PollOutcome) -> PollOutcome:
        validate_transition(self.state, outcome.state)
        self.state = outcome.state
        self.outcome = outcome
        self.active = False
        return outcome


StatusFetcher = Callable[[str], Awaitable[TransactionStatusResponse]]
OutcomeHandler = Callable[[PollOutcome], Awaitable[object]]


class StatusPoller:
    """Poll status every `interval` seconds until terminal, timeout, or cancel."""

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: float = 3.0,
        timeout: float = 300.0,
        sleep=asyncio.sleep,
        clock=time.monotonic,
    ) -> None:
        self.fetch_status = fetch_status
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._sessions: dict[str, PollSession] = {}

    async def poll(self, session: PollSession) -> PollOutcome | None:
        """Run the loop for one session; `None` means it was cancelled."""

        started = self._clock()
        polls = 0
        while True:
            await self._sleep(self.interval)
            if not session.active:
                logger.info("poll session cancelled transaction_id=%s polls=%s", session.transaction_id, polls)
                return None
            if self._clock() - started >= self.timeout:
                poll_outcomes_total.labels(outcome=PaymentState.TIMEOUT.value).inc()
                logger.warning("payment poll timed out transaction_id=%s polls=%s", session.transaction_id, polls)
                return session._finish(
                    PollOutcome(session.transaction_id, PaymentState.TIMEOUT, TIMEOUT_MESSAGE, polls=polls)
                )

            polls += 1
            try:
                snapshot = await self.fetch_status(session.transaction_id)
            except Exception as exc:
                # A failed lookup is not evidence that the transaction failed.
                logger.warning(
                    "status check failed, will keep polling transaction_id=%s poll=%s error=%s",
                    session.transaction_id,
                    polls,
                    exc,
                )
                continue

            if not session.active:
                return None
            state = normalize_status(snapshot.status)
            logger.info(
                "payment status check transaction_id=%s poll=%s remote=%s state=%s",
                session.transaction_id,
                polls,
                snapshot.status,
                state.value,
            )
            if state is PaymentState.PENDING:
                continue
            poll_outcomes_total.labels(outcome=state.value).inc()
            return session._finish(
                PollOutcome(
                    session.transaction_id,
                    state,
                    snapshot.message or _default_message(state),
                    snapshot=snapshot,
                    polls=polls,
                )
            )

    def start(self, key: str, transaction_id: str, on_outcome: OutcomeHandler | None = None) -> PollSession:
        """Start a background loop for `key`, cancelling any prior one."""

        self.cancel(key)
        session = PollSession(key, transaction_id)
        self._sessions[key] = session
        session.task = asyncio.create_task(self._run(session, on_outcome))
        logger.info("poll session started key=%s transaction_id=%s", key, transaction_id)
        return session

    async def _run(self, session: PollSession, on_outcome: OutcomeHandler | None) -> PollOutcome | None:
        # Nobody awaits this task, so failures end here as a log line.
        outcome = None
        try:
            outcome = await self.poll(session)
            if outcome is not None and on_outcome is not None:
                await on_outcome(outcome)
        except Exception as exc:
            logger.exception(
                "poll session failed key=%s transaction_id=%s error=%s",
                session.key,
                session.transaction_id,
                exc,
            )
        finally:
            if self._sessions.get(session.key) is session:
                del self._sessions[session.key]
        return outcome

    def cancel(self, key: str) -> bool:
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        session.cancel()
        logger.info("poll session cancelled key=%s transaction_id=%s", key, session.transaction_id)
        return True

    def active_session(self, key: str) -> PollSession | None:
        return self._sessions.get(key)

    async def shutdown(self) -> None:
        """Cancel every session and wait for loops to unwind."""

        sessions = list(self._sessions.values())
        for session in sessions:
            self.cancel(session.key)
        tasks = [s.task for s in sessions if s.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _default_message(state: PaymentState) -> str:
    if state is PaymentState.SUCCESS:
        return "Payment successful"
    if state is PaymentState.CANCELED:
        return "Payment was cancelled"
    return "Payment failed"
