"""Prometheus metric definitions for the payment service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter(
    "payment_requests_total", "Total payment requests", ["service", "payment_method"]
)
payment_success_total = Counter(
    "payment_success_total", "Total payments reaching APPROVED", ["service", "payment_method"]
)
payment_failure_total = Counter(
    "payment_failure_total", "Total failed payment operations", ["service", "error_code"]
)
payment_validation_failures_total = Counter(
    "payment_validation_failures_total", "Requests rejected by validation", ["service", "error_code"]
)
payment_latency_seconds = Histogram(
    "payment_latency_seconds", "Payment processing latency seconds", ["service", "operation"]
)
gateway_calls_total = Counter(
    "gateway_calls_total", "Processor calls by operation and outcome", ["service", "operation", "outcome"]
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
status_reconciliations_total = Counter(
    "status_reconciliations_total",
    "Local records refreshed from the processor",
    ["service", "from_status", "to_status"],
)
optimistic_conflicts_total = Counter(
    "optimistic_conflicts_total", "Version conflicts on ledger updates", ["service"]
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
