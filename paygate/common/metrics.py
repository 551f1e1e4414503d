"""Prometheus metric definitions for the payment subsystem."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter(
    "payment_requests_total",
    "Total payment initiation requests",
    ["service", "payment_type"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
payment_success_total = Counter("payment_success_total", "Total successful payments", ["service"])
payment_failure_total = Counter("payment_failure_total", "Total failed payments", ["service"])
gateway_attempts_total = Counter(
    "gateway_attempts_total",
    "Gateway HTTP attempts by auth strategy and outcome",
    ["endpoint", "strategy", "outcome"],
)
gateway_latency_seconds = Histogram(
    "gateway_latency_seconds",
    "Latency of single gateway HTTP attempts",
    ["endpoint"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
poll_outcomes_total = Counter(
    "poll_outcomes_total",
    "Terminal outcomes reported by status poll sessions",
    ["outcome"],
)
reconciliations_total = Counter(
    "reconciliations_total",
    "Subscription reconciliation results",
    ["result"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
