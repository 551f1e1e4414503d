"""HTTP surface for subscription payments, status polling and gateway webhooks."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from paygate.common.config import settings
from paygate.common.db import Base, SessionLocal, engine
from paygate.common.logging import configure_logging, trace_id_ctx
from paygate.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from paygate.common.startup import check_gateway_config, log_startup_config
from paygate.common.tracing import instrument_app, setup_tracing
from paygate.services.api.schemas import CheckoutRequest, error_body
from paygate.services.gateway.client import GatewayClient
from paygate.services.gateway.errors import PaymentError
from paygate.services.gateway.schemas import CancelResult
from paygate.services.payments.service import PaymentOrchestrator
from paygate.services.poller.service import StatusPoller
from paygate.services.subscriptions import models  # noqa: F401  registers tables
from paygate.services.subscriptions.schemas import CheckoutResult, PollStatus, ReconciliationResult, SnapshotResult
from paygate.services.subscriptions.service import CheckoutService, SubscriptionService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "LIPILA_BASE_URL",
        "LIPILA_SECRET_KEY",
        "LIPILA_CURRENCY",
        "LIPILA_MOCK_MODE",
    ],
)
gateway_config = settings.gateway_config()
check_gateway_config(gateway_config)

gateway_client = GatewayClient(gateway_config)
orchestrator = PaymentOrchestrator(gateway_config, gateway_client)
subscriptions = SubscriptionService(SessionLocal)
checkout_service = CheckoutService(SessionLocal, orchestrator, subscriptions)
poller = StatusPoller(
    orchestrator.get_transaction_status,
    interval=settings.poll_interval_seconds,
    timeout=settings.poll_timeout_seconds,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Create tables, then stop poll sessions and the HTTP client on shutdown."""

    Base.metadata.create_all(engine)
    yield
    await poller.shutdown()
    await gateway_client.close()


app = FastAPI(title="Paygate Subscription Payments", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency, and bind the correlation id."""

    trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(PaymentError)
async def payment_error_handler(_: Request, exc: PaymentError):
    return JSONResponse(status_code=exc.http_status, content=error_body(exc))


@app.post("/subscriptions/checkout", response_model=CheckoutResult)
async def checkout(req: CheckoutRequest):
    """Initiate a subscription payment and poll in the background while pending."""

    try:
        result = await checkout_service.checkout(req.user_id, req.plan_id, req.payment_type, req.customer_info)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if result.requires_polling:
        poller.start(result.subscription_id, result.transaction_id, checkout_service.on_poll_outcome)
    return result


@app.get("/payments/{transaction_id}/status", response_model=SnapshotResult)
async def payment_status(transaction_id: str):
    """Report the payment outcome, reconciling a terminal remote status."""

    try:
        return await checkout_service.snapshot(transaction_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/subscriptions/{subscription_id}/poll", response_model=PollStatus)
def poll_status(subscription_id: str):
    """Live poll state, or the outcome the poller last reconciled (including timeout)."""

    try:
        return checkout_service.poll_status(subscription_id, poller.active_session(subscription_id))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/subscriptions/{subscription_id}/poll")
def stop_polling(subscription_id: str):
    """Stop background polling (user closed the wait dialog)."""

    return {"cancelled": poller.cancel(subscription_id)}


@app.post("/payments/{transaction_id}/cancel", response_model=CancelResult)
async def cancel_payment(transaction_id: str):
    return await orchestrator.cancel_transaction(transaction_id)


@app.get("/payments/{transaction_id}/verify")
async def verify_payment(transaction_id: str):
    return {"transactionId": transaction_id, "verified": await orchestrator.verify_payment(transaction_id)}


@app.post("/webhooks/lipila", response_model=ReconciliationResult)
async def lipila_webhook(request: Request):
    """Gateway callback; reconciled through the same idempotent path as polling."""

    payload = await request.json()
    try:
        return subscriptions.handle_webhook(payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Billing record not found") from exc


@app.get("/webhooks/lipila")
def lipila_webhook_probe():
    return {
        "message": "Lipila webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
