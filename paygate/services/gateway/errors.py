"""Typed error taxonomy for payment validation and gateway failures.

`category` drives user-facing messaging:

- `invalid_input`: caller must fix the request.
- `service_unavailable`: HTTP-layer failure, retry later.
- `payment_failed`: declined/rejected, re-enter details.
- `timeout`: outcome unknown, check before retrying to avoid a double charge.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class AttemptRecord:
    """One HTTP attempt made by the gateway client."""

    strategy: str
    attempt_number: int
    status_code: int | None
    outcome: str
    retried: bool


class PaymentError(Exception):
    """Base class for everything this subsystem raises to callers."""

    category = "service_unavailable"
    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        gateway_message: str | None = None,
        attempts: list[AttemptRecord] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.gateway_message = gateway_message
        self.attempts = attempts or []


class PaymentValidationError(PaymentError):
    """Caller input is malformed; never retried and never sent to the gateway."""

    category = "invalid_input"
    http_status = 422

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class PaymentDeclined(PaymentError):
    """HTTP call succeeded but the gateway reported `status: Failed`."""

    category = "payment_failed"
    http_status = 402


class GatewayError(PaymentError):
    """Transport or HTTP-status failure talking to the gateway."""


class Unauthorized(GatewayError):
    http_status = 503


class BadRequest(GatewayError):
    category = "payment_failed"
    http_status = 400


class Forbidden(GatewayError):
    http_status = 503


class NotFound(GatewayError):
    http_status = 502


class ServiceUnavailable(GatewayError):
    http_status = 503


class GatewayTimeout(GatewayError):
    category = "timeout"
    http_status = 504


class UnknownGatewayError(GatewayError):
    pass


_STATUS_ERRORS: dict[int, tuple[type[GatewayError], str]] = {
    400: (BadRequest, "Invalid payment data"),
    401: (Unauthorized, "Unauthorized - check gateway API credentials"),
    403: (Forbidden, "Forbidden - API key lacks required permissions"),
    404: (NotFound, "Endpoint not found - payment type may not be supported"),
    502: (ServiceUnavailable, "Server temporarily unavailable (502 Bad Gateway)"),
    503: (ServiceUnavailable, "Service temporarily unavailable (503)"),
    504: (ServiceUnavailable, "Request timeout (504 Gateway Timeout)"),
}


def error_for_status(
    status_code: int,
    gateway_message: str | None,
    attempts: list[AttemptRecord] | None = None,
) -> GatewayError:
    """Classify one HTTP error status into the taxonomy."""

    error_cls, default_message = _STATUS_ERRORS.get(status_code, (UnknownGatewayError, "Unknown gateway error"))
    if error_cls is UnknownGatewayError and status_code >= 500:
        default_message = "Server error - please try again later"
    message = gateway_message if error_cls is BadRequest and gateway_message else default_message
    return error_cls(
        message,
        status_code=status_code,
        gateway_message=gateway_message,
        attempts=attempts,
    )
