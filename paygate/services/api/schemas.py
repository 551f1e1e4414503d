"""API request/response schemas for the payment HTTP surface."""

from pydantic import BaseModel, ConfigDict, Field

from paygate.services.gateway.errors import PaymentError, PaymentValidationError
from paygate.services.gateway.schemas import CustomerInfo


class CheckoutRequest(BaseModel):
    """Subscription payment payload accepted from the dashboard layer."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    plan_id: str = Field(alias="planId", min_length=1)
    payment_type: str = Field(default="mobile_money", alias="paymentType")
    customer_info: CustomerInfo = Field(alias="customerInfo")


class ErrorResponse(BaseModel):
    error: str
    category: str
    message: str
    status_code: int | None = Field(default=None, alias="statusCode")
    field: str | None = None


def error_body(exc: PaymentError) -> dict:
    """Serialize a payment error so the UI can pick retry/re-enter/check messaging."""

    return ErrorResponse(
        error=type(exc).__name__,
        category=exc.category,
        message=exc.message,
        statusCode=exc.status_code,
        field=exc.field if isinstance(exc, PaymentValidationError) else None,
    ).model_dump(by_alias=True)
