"""Validation, request construction and mock mode in `PaymentOrchestrator`."""

import json
import math

import httpx
import pytest

from paygate.common.config import GatewayConfig
from paygate.services.gateway.errors import PaymentDeclined, PaymentValidationError, UnknownGatewayError
from paygate.services.gateway.schemas import CustomerInfo, PaymentRequest
from paygate.services.payments.service import (
    PaymentOrchestrator,
    normalize_phone,
    validate_amount,
)


def _orchestrator(make_client, handler, config: GatewayConfig | None = None):
    client, gateway = make_client(handler, config)
    return PaymentOrchestrator(client.config, client), gateway


def _accepted(request):
    body = json.loads(request.content)
    return httpx.Response(
        200,
        json={
            "status": "Pending",
            "message": "Request accepted",
            "transactionId": "LPL-123",
            "externalId": body.get("externalId"),
            "amount": body.get("amount"),
            "currency": body.get("currency"),
            "paymentType": "MtnMoney",
        },
    )


@pytest.mark.parametrize("raw", ["0977123456", "977123456", "260977123456", "+260 977 123 456", "0977-123-456"])
def test_phone_normalization_is_canonical_and_idempotent(raw):
    normalized = normalize_phone(raw)
    assert normalized == "260977123456"
    assert normalize_phone(normalized) == normalized


@pytest.mark.parametrize("raw", ["", None, "12345", "09771234567890", "26097712345a", "abc"])
def test_phone_normalization_rejects_malformed(raw):
    with pytest.raises(PaymentValidationError) as exc_info:
        normalize_phone(raw)
    assert exc_info.value.field == "phoneNumber"


def test_phone_normalization_other_country():
    assert normalize_phone("0712345678", country_code="254", national_length=9) == "254712345678"


@pytest.mark.parametrize("value", [0, -1, -0.01, "abc", None, "", math.nan, math.inf, True])
def test_invalid_amounts_rejected(value):
    with pytest.raises(PaymentValidationError):
        validate_amount(value)


def test_valid_amounts():
    assert validate_amount(100) == 100.0
    assert validate_amount("2.50") == 2.5


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, "ten", None])
async def test_bad_amount_never_reaches_network(make_client, amount):
    orchestrator, gateway = _orchestrator(make_client, _accepted)
    request = PaymentRequest(
        amount=amount,
        phone_number="0977123456",
        client_redirect_url="https://shop.test/return",
    )
    with pytest.raises(PaymentValidationError):
        await orchestrator.pay_mobile_money(request)
    with pytest.raises(PaymentValidationError):
        await orchestrator.pay_card(request)
    assert gateway.calls == 0


@pytest.mark.asyncio
async def test_card_requires_redirect_url(make_client):
    orchestrator, gateway = _orchestrator(make_client, _accepted)
    with pytest.raises(PaymentValidationError) as exc_info:
        await orchestrator.pay_card(PaymentRequest(amount=10, phone_number="0977123456"))
    assert exc_info.value.field == "clientRedirectUrl"
    assert gateway.calls == 0


@pytest.mark.asyncio
async def test_mock_mode_short_circuits(make_client):
    config = GatewayConfig(secret_key="", base_url="https://gateway.test", mock_mode=True)
    orchestrator, gateway = _orchestrator(make_client, _accepted, config)

    response = await orchestrator.pay_mobile_money(
        PaymentRequest(amount=100, phone_number="260977000000", external_id="EXT-1")
    )

    assert response.status == "Successful"
    assert response.transaction_id.startswith("MOCK-")
    assert response.payment_type == "mock"
    assert response.external_id == "EXT-1"
    assert gateway.calls == 0


@pytest.mark.asyncio
async def test_mobile_money_request_body(make_client):
    orchestrator, gateway = _orchestrator(make_client, _accepted)
    response = await orchestrator.pay_mobile_money(PaymentRequest(amount="25", phone_number="0977123456"))

    request = gateway.requests[0]
    body = json.loads(request.content)
    assert request.url.path == "/transactions/mobile-money"
    assert body["phoneNumber"] == body["accountNumber"] == "260977123456"
    assert body["amount"] == 25.0
    assert body["currency"] == "ZMW"
    assert body["fullName"] == "Customer"
    assert body["externalId"].startswith("MM-")
    assert response.status == "Pending"
    assert response.transaction_id == "LPL-123"


@pytest.mark.asyncio
async def test_card_request_splits_full_name(make_client):
    orchestrator, gateway = _orchestrator(make_client, _accepted)
    await orchestrator.pay_card(
        PaymentRequest(
            amount=10,
            phone_number="977123456",
            full_name="Mwila Chanda Banda",
            client_redirect_url="https://shop.test/return",
        )
    )
    body = json.loads(gateway.requests[0].content)
    assert gateway.requests[0].url.path == "/transactions/card"
    assert body["customerFirstName"] == "Mwila"
    assert body["customerLastName"] == "Chanda Banda"
    assert body["customerCity"] == "Lusaka"
    assert body["customerZip"] == 10101
    assert body["externalId"].startswith("CARD-")
    assert body["clientRedirectUrl"] == "https://shop.test/return"


@pytest.mark.asyncio
async def test_card_request_prefers_structured_customer(make_client):
    orchestrator, gateway = _orchestrator(make_client, _accepted)
    customer = CustomerInfo(
        phoneNumber="0977123456",
        customerFirstName="Bupe",
        customerLastName="Mulenga",
        customerCity="Ndola",
        customerZip=20101,
    )
    await orchestrator.pay_card(
        PaymentRequest(
            amount=10,
            phone_number="0977123456",
            full_name="Ignored Name",
            client_redirect_url="https://shop.test/return",
            customer=customer,
        )
    )
    body = json.loads(gateway.requests[0].content)
    assert (body["customerFirstName"], body["customerLastName"]) == ("Bupe", "Mulenga")
    assert body["customerCity"] == "Ndola"
    assert body["customerZip"] == 20101


@pytest.mark.asyncio
async def test_failed_payload_is_raised(make_client):
    def handler(request):
        return httpx.Response(200, json={"status": "Failed", "message": "Insufficient funds", "transactionId": "X"})

    orchestrator, _ = _orchestrator(make_client, handler)
    with pytest.raises(PaymentDeclined) as exc_info:
        await orchestrator.pay_card(
            PaymentRequest(amount=10, phone_number="0977123456", client_redirect_url="https://shop.test/r")
        )
    assert exc_info.value.gateway_message == "Insufficient funds"
    assert exc_info.value.category == "payment_failed"


@pytest.mark.asyncio
async def test_missing_transaction_id_is_an_error(make_client):
    orchestrator, _ = _orchestrator(make_client, lambda request: httpx.Response(200, json={"status": "Successful"}))
    with pytest.raises(UnknownGatewayError):
        await orchestrator.pay_card(
            PaymentRequest(amount=10, phone_number="0977123456", client_redirect_url="https://shop.test/r")
        )
    with pytest.raises(UnknownGatewayError):
        await orchestrator.pay_mobile_money(PaymentRequest(amount=10, phone_number="0977123456"))


@pytest.mark.asyncio
async def test_subscription_payment_dispatch(make_client):
    orchestrator, gateway = _orchestrator(make_client, _accepted)
    customer = CustomerInfo(phoneNumber="0977123456", fullName="Test Vendor")

    await orchestrator.process_subscription_payment("sub-1", 5.0, "mobile_money", customer)
    await orchestrator.process_subscription_payment("sub-1", 5.0, "card", customer)

    mm_body = json.loads(gateway.requests[0].content)
    card_body = json.loads(gateway.requests[1].content)
    assert gateway.requests[0].url.path == "/transactions/mobile-money"
    assert mm_body["externalId"].startswith("SUB-sub-1-")
    assert gateway.requests[1].url.path == "/transactions/card"
    assert card_body["clientRedirectUrl"].startswith("http://localhost:3000/subscriptions/return")

    with pytest.raises(PaymentValidationError):
        await orchestrator.process_subscription_payment("sub-1", 5.0, "bank", customer)


@pytest.mark.asyncio
async def test_status_cancel_and_verify(make_client):
    def handler(request):
        if request.url.path == "/transactions/status":
            assert request.url.params["transactionId"] == "LPL-9"
            return httpx.Response(
                200,
                json={"status": "Successful", "amount": 5, "currency": "ZMW", "message": "ok", "externalId": "E"},
            )
        return httpx.Response(404, json={"message": "no such transaction"})

    orchestrator, _ = _orchestrator(make_client, handler)

    status = await orchestrator.get_transaction_status("LPL-9")
    assert status.transaction_id == "LPL-9"
    assert status.status == "Successful"
    assert await orchestrator.verify_payment("LPL-9")

    result = await orchestrator.cancel_transaction("LPL-9")
    assert not result.success
    assert "no such transaction" in result.message


@pytest.mark.asyncio
async def test_verify_payment_swallows_gateway_errors(make_client):
    orchestrator, _ = _orchestrator(make_client, lambda request: httpx.Response(403))
    assert await orchestrator.verify_payment("LPL-1") is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("body", "status", "amount"),
    [
        ({"status": "Pending", "transactionId": "LPL-1"}, "Pending", 10.0),
        ({"status": "pending", "transactionId": "LPL-2", "amount": 12.5}, "pending", 12.5),
        ({"transactionId": "LPL-3", "amount": None}, "Pending", 10.0),
    ],
)
async def test_in_flight_reply_is_accepted(make_client, body, status, amount):
    orchestrator, _ = _orchestrator(make_client, lambda request: httpx.Response(200, json=body))

    response = await orchestrator.pay_mobile_money(PaymentRequest(amount=10, phone_number="0977123456"))

    assert response.transaction_id == body["transactionId"]
    assert response.status == status
    assert response.amount == amount


@pytest.mark.asyncio
async def test_failed_status_is_case_insensitive(make_client):
    def handler(request):
        return httpx.Response(200, json={"status": "FAILED", "message": "Wallet locked", "transactionId": "X"})

    orchestrator, _ = _orchestrator(make_client, handler)
    with pytest.raises(PaymentDeclined):
        await orchestrator.pay_mobile_money(PaymentRequest(amount=10, phone_number="0977123456"))


@pytest.mark.asyncio
async def test_verify_payment_accepts_success_synonyms(make_client):
    def handler(request):
        return httpx.Response(200, json={"status": "completed", "transactionId": "LPL-5"})

    orchestrator, _ = _orchestrator(make_client, handler)
    assert await orchestrator.verify_payment("LPL-5") is True
