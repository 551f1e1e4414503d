"""Payment orchestration on top of the gateway client.

Builds type-specific request bodies, normalizes and validates caller input
before anything touches the network, and short-circuits in mock mode.
"""

import math
import re
import time
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from paygate.common.config import GatewayConfig
from paygate.common.logging import external_id_ctx, logger, transaction_id_ctx
from paygate.common.metrics import payment_failure_total, payment_requests_total
from paygate.common.state_machine import PaymentState
from paygate.services.gateway.client import GatewayClient
from paygate.services.gateway.errors import (
    GatewayError,
    PaymentDeclined,
    PaymentError,
    PaymentValidationError,
    UnknownGatewayError,
)
from paygate.services.gateway.schemas import (
    CancelResult,
    ConnectionReport,
    CustomerInfo,
    PaymentRequest,
    PaymentResponse,
    StatusCustomer,
    TransactionStatusResponse,
)
from paygate.services.poller.service import normalize_status

MOBILE_MONEY_ENDPOINT = "/transactions/mobile-money"
CARD_ENDPOINT = "/transactions/card"
STATUS_ENDPOINT = "/transactions/status"
CANCEL_ENDPOINT = "/transactions/cancel"

PAYMENT_TYPE_ALIASES = {"mobile_money": "mobile-money", "mobile-money": "mobile-money", "card": "card"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_phone(raw: str | None, country_code: str = "260", national_length: int = 9) -> str:
    """Return the canonical `<cc><national>` form or raise a validation error.

    Accepts a leading trunk `0`, a bare national number, or an already
    prefixed number; separators and `+` are ignored.
    """

    if raw is None or not str(raw).strip():
        raise PaymentValidationError("Phone number is required", field="phoneNumber")
    digits = re.sub(r"[\s+\-().]", "", str(raw))
    if digits.startswith(country_code) and len(digits) == len(country_code) + national_length:
        normalized = digits
    elif digits.startswith("0"):
        normalized = country_code + digits[1:]
    else:
        normalized = country_code + digits
    if not re.fullmatch(rf"{country_code}[0-9]{{{national_length}}}", normalized):
        raise PaymentValidationError(
            f"Invalid phone number format. Must be a valid number (e.g., {country_code}{'X' * national_length})",
            field="phoneNumber",
        )
    return normalized


def validate_amount(value: Any) -> float:
    """Amount must be a positive, finite number."""

    if value is None or value == "":
        raise PaymentValidationError("Amount is required", field="amount")
    if isinstance(value, bool):
        raise PaymentValidationError("Invalid payment amount. Amount must be a positive number", field="amount")
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise PaymentValidationError(
            "Invalid payment amount. Amount must be a positive number", field="amount"
        ) from exc
    if not math.isfinite(amount) or amount <= 0:
        raise PaymentValidationError("Invalid payment amount. Amount must be a positive number", field="amount")
    return amount


def normalize_payment_type(payment_type: str) -> str:
    try:
        return PAYMENT_TYPE_ALIASES[payment_type]
    except KeyError:
        raise PaymentValidationError(
            "Invalid payment type. Must be mobile_money, mobile-money, or card", field="paymentType"
        ) from None


class PaymentOrchestrator:
    """Per-payment-type operations; one instance per process."""

    def __init__(self, config: GatewayConfig, client: GatewayClient) -> None:
        self.config = config
        self.client = client

    def _normalize(self, request: PaymentRequest) -> tuple[str, float]:
        phone = normalize_phone(
            request.phone_number,
            self.config.phone_country_code,
            self.config.phone_national_length,
        )
        return phone, validate_amount(request.amount)

    def _mock_response(self, request: PaymentRequest, amount: float, external_id: str) -> PaymentResponse:
        transaction_id = f"MOCK-{_now_ms()}-{uuid4().hex[:8]}"
        logger.warning(
            "MOCK PAYMENT: returning synthetic success, NO REAL MONEY CHARGED transaction_id=%s",
            transaction_id,
        )
        return PaymentResponse(
            status="Successful",
            message="Mock payment successful - NO REAL MONEY CHARGED",
            transaction_id=transaction_id,
            external_id=external_id,
            amount=amount,
            currency=request.currency or self.config.currency,
            payment_type="mock",
            redirect_url=request.client_redirect_url,
            client_redirect_url=request.client_redirect_url,
        )

    def _to_response(self, body: dict[str, Any], label: str, amount: float) -> PaymentResponse:
        """Treat a `Failed` payload as an error and demand a transaction id."""

        status = str(body.get("status") or "").strip()
        if status.lower() == "failed":
            message = body.get("message") or "Payment processing failed"
            payment_failure_total.labels(service="payments").inc()
            logger.error("%s payment declined by gateway message=%s", label, message)
            raise PaymentDeclined(f"{label} payment failed: {message}", gateway_message=body.get("message"))
        if not body.get("transactionId"):
            raise UnknownGatewayError(
                f"{label} payment response is missing transactionId",
                gateway_message=body.get("message"),
            )
        try:
            response = PaymentResponse.model_validate(
                {**body, "status": status or "Pending", "amount": body.get("amount") or amount}
            )
        except ValidationError as exc:
            raise UnknownGatewayError(f"{label} payment response could not be parsed: {exc}") from exc
        transaction_id_ctx.set(response.transaction_id)
        logger.info(
            "%s payment accepted status=%s transaction_id=%s",
            label,
            response.status,
            response.transaction_id,
        )
        return response

    async def pay_mobile_money(self, request: PaymentRequest) -> PaymentResponse:
        """Initiate a mobile-money collection from the customer's wallet."""

        phone, amount = self._normalize(request)
        external_id = request.external_id or f"MM-{_now_ms()}"
        external_id_ctx.set(external_id)
        payment_requests_total.labels(service="payments", payment_type="mobile-money").inc()
        logger.info("starting mobile money payment amount=%s external_id=%s", amount, external_id)

        if self.config.mock_mode:
            return self._mock_response(request, amount, external_id)

        body = {
            "currency": request.currency or self.config.currency,
            "amount": amount,
            # Mobile-money wallets are addressed by the phone number.
            "accountNumber": phone,
            "phoneNumber": phone,
            "fullName": request.full_name or "Customer",
            "email": request.email or "",
            "externalId": external_id,
            "narration": request.narration or "Mobile money payment",
        }
        result = await self.client.call(
            "POST",
            MOBILE_MONEY_ENDPOINT,
            json=body,
            timeout=self.config.mobile_money_timeout_seconds,
        )
        return self._to_response(result.body, "Mobile money", amount)

    async def pay_card(self, request: PaymentRequest) -> PaymentResponse:
        """Initiate a redirect-based card payment."""

        if not request.client_redirect_url:
            raise PaymentValidationError(
                "Redirect URL is required for card payments", field="clientRedirectUrl"
            )
        phone, amount = self._normalize(request)
        external_id = request.external_id or f"CARD-{_now_ms()}"
        external_id_ctx.set(external_id)
        payment_requests_total.labels(service="payments", payment_type="card").inc()
        logger.info("starting card payment amount=%s external_id=%s", amount, external_id)

        if self.config.mock_mode:
            return self._mock_response(request, amount, external_id)

        customer = request.customer
        name_parts = (request.full_name or "").split()
        body = {
            "currency": request.currency or self.config.currency,
            "amount": amount,
            "phoneNumber": phone,
            "email": request.email or "",
            "customerFirstName": (customer and customer.first_name) or (name_parts[0] if name_parts else "Customer"),
            "customerLastName": (customer and customer.last_name) or " ".join(name_parts[1:]) or "User",
            "customerCity": (customer and customer.city) or "Lusaka",
            "customerCountry": (customer and customer.country) or "Zambia",
            "customerAddress": (customer and customer.address) or "123 Main Street",
            "customerZip": (customer and customer.zip_code) or 10101,
            "externalId": external_id,
            "narration": request.narration or "Card payment",
            "clientRedirectUrl": request.client_redirect_url,
        }
        result = await self.client.call(
            "POST",
            CARD_ENDPOINT,
            json=body,
            timeout=self.config.card_timeout_seconds,
        )
        return self._to_response(result.body, "Card", amount)

    async def process_subscription_payment(
        self,
        subscription_id: str,
        amount: Any,
        payment_type: str,
        customer: CustomerInfo,
        narration: str | None = None,
    ) -> PaymentResponse:
        """Pay for a subscription with a `SUB-` correlation id."""

        normalized_type = normalize_payment_type(payment_type)
        external_id = f"SUB-{subscription_id}-{_now_ms()}"
        redirect_url = None
        if normalized_type == "card":
            redirect_url = (
                f"{self.config.public_base_url}/subscriptions/return"
                f"?payment=success&externalId={external_id}"
            )
        request = PaymentRequest(
            currency=self.config.currency,
            amount=amount,
            account_number=customer.phone_number,
            phone_number=customer.phone_number,
            email=customer.email,
            full_name=customer.full_name,
            external_id=external_id,
            narration=narration or f"Subscription payment - {external_id}",
            client_redirect_url=redirect_url,
            customer=customer,
        )
        if normalized_type == "mobile-money":
            return await self.pay_mobile_money(request)
        return await self.pay_card(request)

    async def get_transaction_status(self, transaction_id: str) -> TransactionStatusResponse:
        """Read one snapshot of remote transaction state."""

        if not transaction_id:
            raise PaymentValidationError("Transaction ID is required", field="transactionId")
        if self.config.mock_mode:
            logger.warning("MOCK MODE: returning synthetic transaction status transaction_id=%s", transaction_id)
            return TransactionStatusResponse(
                status="Successful",
                payment_type="mock",
                currency=self.config.currency,
                amount=0,
                account_number="260000000000",
                customer=StatusCustomer(
                    full_name="Mock Customer",
                    phone_number="260000000000",
                    email="mock@example.com",
                ),
                ip_address="127.0.0.1",
                message="Mock transaction successful - NO REAL MONEY CHARGED",
                transaction_id=transaction_id,
                external_id=transaction_id,
            )

        # The poll loop is the retry for status reads.
        result = await self.client.call(
            "GET",
            STATUS_ENDPOINT,
            params={"transactionId": transaction_id},
            timeout=self.config.status_timeout_seconds,
            max_retries=0,
        )
        try:
            return TransactionStatusResponse.model_validate(
                {"transactionId": transaction_id, **result.body}
            )
        except ValidationError as exc:
            raise UnknownGatewayError(f"Transaction status could not be parsed: {exc}") from exc

    async def cancel_transaction(self, transaction_id: str) -> CancelResult:
        """Ask the gateway to cancel a pending transaction; never raises gateway errors."""

        logger.info("cancelling transaction transaction_id=%s", transaction_id)
        if self.config.mock_mode:
            return CancelResult(success=True, message="Mock transaction cancelled")
        try:
            result = await self.client.call(
                "POST",
                CANCEL_ENDPOINT,
                json={"transactionId": transaction_id},
                timeout=self.config.status_timeout_seconds,
            )
        except GatewayError as exc:
            logger.error(
                "transaction cancellation failed transaction_id=%s status=%s",
                transaction_id,
                exc.status_code,
            )
            return CancelResult(
                success=False,
                message=f"Failed to cancel transaction: {exc.gateway_message or exc.message}",
            )
        return CancelResult(
            success=True,
            message=result.body.get("message") or "Transaction cancelled successfully",
        )

    async def verify_payment(self, transaction_id: str) -> bool:
        try:
            status = await self.get_transaction_status(transaction_id)
        except PaymentError as exc:
            logger.error("payment verification failed transaction_id=%s error=%s", transaction_id, exc)
            return False
        return normalize_status(status.status) is PaymentState.SUCCESS

    async def check_connection(self) -> ConnectionReport:
        return await self.client.check_connection()
