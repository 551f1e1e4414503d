"""Wire schemas exchanged with the payment gateway."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CustomerInfo(BaseModel):
    """Optional structured billing details supplied by the caller."""

    model_config = ConfigDict(populate_by_name=True)

    full_name: str | None = Field(default=None, alias="fullName")
    phone_number: str = Field(alias="phoneNumber")
    email: str | None = None
    first_name: str | None = Field(default=None, alias="customerFirstName")
    last_name: str | None = Field(default=None, alias="customerLastName")
    city: str | None = Field(default=None, alias="customerCity")
    country: str | None = Field(default=None, alias="customerCountry")
    address: str | None = Field(default=None, alias="customerAddress")
    zip_code: int | None = Field(default=None, alias="customerZip")


class PaymentRequest(BaseModel):
    """Caller-facing payment request; validated by the orchestrator, not here."""

    model_config = ConfigDict(populate_by_name=True)

    currency: str | None = None
    amount: Any = None
    account_number: str | None = Field(default=None, alias="accountNumber")
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    email: str | None = None
    full_name: str | None = Field(default=None, alias="fullName")
    external_id: str | None = Field(default=None, alias="externalId")
    narration: str | None = None
    client_redirect_url: str | None = Field(default=None, alias="clientRedirectUrl")
    customer: CustomerInfo | None = None


class PaymentResponse(BaseModel):
    """Gateway answer to a payment initiation; immutable once returned.

    Any reply carrying a `transactionId` means the charge is in flight, so
    `status` stays free text and `amount` falls back to the requested amount.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    status: str
    message: str = ""
    transaction_id: str = Field(alias="transactionId")
    external_id: str | None = Field(default=None, alias="externalId")
    amount: float
    currency: str | None = None
    payment_type: str | None = Field(default=None, alias="paymentType")
    redirect_url: str | None = Field(default=None, alias="redirectUrl")
    client_redirect_url: str | None = Field(default=None, alias="clientRedirectUrl")


class StatusCustomer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_name: str | None = Field(default=None, alias="fullName")
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    email: str | None = None


class TransactionStatusResponse(BaseModel):
    """One snapshot of remote transaction state.

    `status` is kept as free text: the gateway vocabulary varies in wording
    and case, and is normalized by the poller.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    status: str
    payment_type: str | None = Field(default=None, alias="paymentType")
    currency: str | None = None
    amount: float | None = None
    account_number: str | None = Field(default=None, alias="accountNumber")
    customer: StatusCustomer | None = None
    ip_address: str | None = Field(default=None, alias="ipAddress")
    message: str = ""
    transaction_id: str = Field(alias="transactionId")
    external_id: str | None = Field(default=None, alias="externalId")


class CancelResult(BaseModel):
    success: bool
    message: str


class ConnectionReport(BaseModel):
    """Outcome of the `/health` self-test across auth strategies."""

    success: bool
    message: str
    strategy: str | None = None
    status_code: int | None = None
    tried: list[str] = Field(default_factory=list)
    mock_mode: bool = False
