"""HTTP surface for the payment orchestrator.

Thin adapter: parses requests, calls `PaymentService`, and maps the two error
kinds to 400 (validation) and 500 (processing).
"""

from datetime import timedelta
from functools import lru_cache
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from motopay.common.config import settings
from motopay.common.db import build_session_factory
from motopay.common.errors import PaymentProcessingError, PaymentValidationError
from motopay.common.logging import configure_logging, trace_id_ctx
from motopay.common.metrics import metrics_response
from motopay.common.startup import log_startup_config
from motopay.common.tracing import instrument_app, setup_tracing
from motopay.services.payments.gateway import StripeGateway
from motopay.services.payments.ledger import SqlPaymentLedger
from motopay.services.payments.schemas import (
    ErrorResponse,
    PaymentRecord,
    PaymentRequest,
    PaymentResult,
    ReconciliationReport,
)
from motopay.services.payments.service import PaymentService
from motopay.services.payments.validator import PaymentValidator

configure_logging(settings.service_name, settings.log_level)
setup_tracing(settings.service_name, settings.otel_exporter_otlp_endpoint)
log_startup_config(
    settings,
    [
        "postgres_dsn",
        "processor_base_url",
        "processor_secret_key",
        "processor_timeout_seconds",
        "max_amount",
        "supported_currencies",
        "retry_max_attempts",
    ],
)


@lru_cache(maxsize=1)
def get_service() -> PaymentService:
    """Build the process-wide orchestrator on first use."""

    return PaymentService(
        ledger=SqlPaymentLedger(build_session_factory(settings.postgres_dsn)),
        gateway=StripeGateway.from_settings(settings),
        validator=PaymentValidator(settings),
        config=settings,
    )


app = FastAPI(title="Motopay Payments")
instrument_app(app)


@app.middleware("http")
async def trace_middleware(request: Request, call_next):
    """Bind a correlation id for every request's log lines."""

    token = trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
    try:
        return await call_next(request)
    finally:
        trace_id_ctx.reset(token)


@app.exception_handler(PaymentValidationError)
async def validation_error_handler(_: Request, exc: PaymentValidationError):
    body = ErrorResponse(error_code=exc.code, message=exc.message, field=exc.field)
    return JSONResponse(status_code=400, content=body.model_dump())


@app.exception_handler(PaymentProcessingError)
async def processing_error_handler(_: Request, exc: PaymentProcessingError):
    body = ErrorResponse(error_code=exc.code, message=exc.message, external_error_code=exc.external_code)
    return JSONResponse(status_code=500, content=body.model_dump())


@app.post("/payments/card", response_model=PaymentResult, status_code=201)
def process_card_payment(req: PaymentRequest, service: PaymentService = Depends(get_service)):
    return service.process_card_payment(req)


@app.post("/payments/pix", response_model=PaymentResult, status_code=201)
def process_pix_payment(req: PaymentRequest, service: PaymentService = Depends(get_service)):
    return service.process_pix_payment(req)


@app.post("/payments/boleto", response_model=PaymentResult, status_code=201)
def process_boleto_payment(req: PaymentRequest, service: PaymentService = Depends(get_service)):
    return service.process_boleto_payment(req)


@app.get("/payments/{external_id}/status", response_model=PaymentResult)
def get_payment_status(external_id: str, service: PaymentService = Depends(get_service)):
    return service.get_payment_status(external_id)


@app.post("/payments/{external_id}/cancel", response_model=PaymentResult)
def cancel_payment(external_id: str, service: PaymentService = Depends(get_service)):
    return service.cancel_payment(external_id)


@app.get("/payments/user/{user_id}", response_model=list[PaymentRecord])
def get_user_payments(user_id: str, service: PaymentService = Depends(get_service)):
    return [PaymentRecord.model_validate(p) for p in service.get_user_payments(user_id)]


@app.get("/payments/id/{payment_id}", response_model=PaymentRecord)
def get_payment_by_id(payment_id: str, service: PaymentService = Depends(get_service)):
    payment = service.get_payment_by_id(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="payment not found")
    return PaymentRecord.model_validate(payment)


@app.post("/internal/reconciliation", response_model=ReconciliationReport)
def reconcile(
    older_than_seconds: int | None = None,
    limit: int | None = None,
    service: PaymentService = Depends(get_service),
):
    """Refresh stale non-final payments from the processor."""

    older_than = timedelta(seconds=older_than_seconds) if older_than_seconds is not None else None
    return service.reconcile_stale_payments(older_than=older_than, limit=limit)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
