"""Payment orchestration.

Coordinates validation, the local ledger and the processor gateway:
validate -> persist PENDING -> charge (bounded retry) -> map status -> update.
Status polls reconcile non-final records against the processor; final records
are served from the ledger without a network call.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from uuid import uuid4

from motopay.common.config import PaymentSettings
from motopay.common.errors import (
    InvalidTransitionError,
    PaymentProcessingError,
    PaymentValidationError,
    StalePaymentError,
)
from motopay.common.logging import external_id_ctx, logger, payment_id_ctx
from motopay.common.metrics import (
    gateway_calls_total,
    optimistic_conflicts_total,
    payment_failure_total,
    payment_latency_seconds,
    payment_requests_total,
    payment_success_total,
    payment_validation_failures_total,
    retries_total,
    status_reconciliations_total,
)
from motopay.common.retry import RetryPolicy
from motopay.common.state_machine import PaymentStatus, validate_transition
from motopay.common.tracing import get_tracer
from motopay.services.payments.gateway import (
    GatewayError,
    GatewayResult,
    PermanentGatewayError,
    ProcessorGateway,
    TransientGatewayError,
    map_gateway_status,
)
from motopay.services.payments.ledger import PaymentLedger
from motopay.services.payments.models import Payment, utcnow
from motopay.services.payments.schemas import (
    PaymentMethod,
    PaymentRequest,
    PaymentResult,
    ReconciliationReport,
    from_minor_units,
    to_minor_units,
)
from motopay.services.payments.validator import PaymentValidator, validate_identifier


tracer = get_tracer(__name__)

PROVISIONAL_ID_PREFIX = "pending_"
MAX_CONFLICT_RETRIES = 3


class _FinalizedConcurrently(Exception):
    """Another writer moved the record to a final status first."""

    def __init__(self, payment: Payment) -> None:
        super().__init__(f"payment {payment.id} finalized concurrently as {payment.status}")
        self.payment = payment


def _validate_external_id(external_id: str | None) -> None:
    if external_id is None or not external_id.strip() or len(external_id) > 255:
        raise PaymentValidationError(
            "external_id must be non-empty and at most 255 characters",
            code="INVALID_EXTERNAL_ID",
            field="external_id",
        )


class PaymentService:
    """Stateless orchestrator; safe to share across worker threads."""

    def __init__(
        self,
        ledger: PaymentLedger,
        gateway: ProcessorGateway,
        validator: PaymentValidator,
        config: PaymentSettings,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.gateway = gateway
        self.validator = validator
        self.config = config
        self.service_name = config.service_name
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay_seconds,
            multiplier=config.retry_multiplier,
            retry_on=(TransientGatewayError,),
        )
        self.clock = clock

    # -- caller-facing operations -------------------------------------------------

    def process_card_payment(self, request: PaymentRequest) -> PaymentResult:
        return self._process(request, PaymentMethod.CARD)

    def process_pix_payment(self, request: PaymentRequest) -> PaymentResult:
        return self._process(request, PaymentMethod.PIX)

    def process_boleto_payment(self, request: PaymentRequest) -> PaymentResult:
        return self._process(request, PaymentMethod.BOLETO)

    def get_payment_status(self, external_id: str) -> PaymentResult:
        """Serve final records locally; refresh non-final ones from the processor."""

        with self._operation("get_payment_status"):
            _validate_external_id(external_id)
            external_id_ctx.set(external_id)
            payment = self.ledger.find_by_external_id(external_id)
            if payment is None:
                logger.info("payment_not_local external_id=%s querying processor", external_id)
                return self._result_from_gateway(self._gateway_or_fail("retrieve", self.gateway.retrieve, external_id))

            payment_id_ctx.set(payment.id)
            if payment.payment_status.is_final:
                return self.to_result(payment)

            gateway_result = self._gateway_or_fail("retrieve", self.gateway.retrieve, external_id)
            try:
                payment = self._apply_gateway_result(payment, gateway_result, reason="status_reconciled")
            except _FinalizedConcurrently as exc:
                logger.info("status_poll_lost_race payment_id=%s status=%s", exc.payment.id, exc.payment.status)
                return self.to_result(exc.payment)
            return self.to_result(payment, gateway_result)

    def cancel_payment(self, external_id: str) -> PaymentResult:
        with self._operation("cancel_payment"):
            _validate_external_id(external_id)
            external_id_ctx.set(external_id)
            payment = self.ledger.find_by_external_id(external_id)
            if payment is None:
                raise PaymentValidationError("payment not found", code="PAYMENT_NOT_FOUND", field="external_id")
            payment_id_ctx.set(payment.id)
            if payment.payment_status.is_final:
                raise PaymentValidationError(
                    "cannot cancel a finalized payment", code="PAYMENT_FINALIZED", field="external_id"
                )

            gateway_result = self._gateway_or_fail("cancel", self.gateway.cancel, external_id)

            def mark_cancelled(record: Payment) -> None:
                self._transition(record, PaymentStatus.CANCELLED)
                record.metadata_json = {**(record.metadata_json or {}), **gateway_result.metadata}

            try:
                payment = self._save_with_retry(payment, mark_cancelled, reason="payment_cancelled")
            except _FinalizedConcurrently as exc:
                raise PaymentProcessingError(
                    f"payment was finalized concurrently as {exc.payment.status}",
                    code="CONCURRENT_MODIFICATION",
                ) from exc
            logger.info("payment_cancelled payment_id=%s", payment.id)
            return self.to_result(payment, gateway_result)

    def get_user_payments(self, user_id: str) -> list[Payment]:
        validate_identifier(user_id, "user_id", "INVALID_USER_ID")
        return self.ledger.find_by_user_id(user_id)

    def get_payment_by_id(self, payment_id: str) -> Payment | None:
        return self.ledger.find_by_id(payment_id)

    def get_payment_by_external_id(self, external_id: str) -> Payment | None:
        _validate_external_id(external_id)
        return self.ledger.find_by_external_id(external_id)

    def reconcile_stale_payments(
        self, older_than: timedelta | None = None, limit: int | None = None
    ) -> ReconciliationReport:
        """Re-query the processor for non-final records older than the cutoff.

        Per-record failures are logged and counted; they never abort the batch.
        """

        age = older_than if older_than is not None else timedelta(seconds=self.config.reconciliation_stale_after_seconds)
        batch = limit if limit is not None else self.config.reconciliation_batch_size
        candidates = self.ledger.find_stale_non_final(self.clock() - age, batch)
        report = ReconciliationReport(checked=len(candidates))
        for payment in candidates:
            try:
                result = self.get_payment_status(payment.external_id)
            except (PaymentProcessingError, PaymentValidationError) as exc:
                logger.warning(
                    "reconciliation_failed payment_id=%s external_id=%s code=%s",
                    payment.id,
                    payment.external_id,
                    exc.code,
                )
                report.failed += 1
                report.failed_external_ids.append(payment.external_id)
                continue
            if result.status.value != payment.status:
                report.updated += 1
            if result.status.is_final:
                report.finalized += 1
        logger.info(
            "reconciliation_done checked=%s updated=%s finalized=%s failed=%s",
            report.checked,
            report.updated,
            report.finalized,
            report.failed,
        )
        return report

    # -- orchestration internals --------------------------------------------------

    def _process(self, request: PaymentRequest, method: PaymentMethod) -> PaymentResult:
        operation = f"process_{method.value.lower()}_payment"
        payment_requests_total.labels(service=self.service_name, payment_method=method.value).inc()
        with self._operation(operation):
            self.validator.validate(request)
            if request.payment_method is not method:
                raise PaymentValidationError(
                    f"{operation} requires payment_method {method.value}",
                    code="PAYMENT_METHOD_MISMATCH",
                    field="payment_method",
                )
            logger.info(
                "payment_started user_id=%s method=%s installments=%s",
                request.user_id,
                method.value,
                request.installments,
            )
            payment = self._create_pending(request, method)
            result = self._charge(payment, request, method)
            if result.status.is_successful:
                payment_success_total.labels(service=self.service_name, payment_method=method.value).inc()
            logger.info("payment_processed payment_id=%s status=%s", payment.id, result.status.value)
            return result

    def _create_pending(self, request: PaymentRequest, method: PaymentMethod) -> Payment:
        now = self.clock()
        payment = Payment(
            id=str(uuid4()),
            external_id=f"{PROVISIONAL_ID_PREFIX}{uuid4().hex}",
            user_id=request.user_id,
            amount_cents=to_minor_units(request.amount),
            currency=request.currency,
            payment_method=method.value,
            status=PaymentStatus.PENDING.value,
            installments=request.installments,
            description=request.description,
            metadata_json=dict(request.metadata),
            version=0,
            created_at=now,
            updated_at=now,
        )
        payment = self.ledger.save(payment, reason="payment_created")
        payment_id_ctx.set(payment.id)
        external_id_ctx.set(payment.external_id)
        return payment

    def _charge(self, payment: Payment, request: PaymentRequest, method: PaymentMethod) -> PaymentResult:
        details = {
            PaymentMethod.CARD: request.card,
            PaymentMethod.PIX: request.pix,
            PaymentMethod.BOLETO: request.boleto,
        }[method]
        try:
            gateway_result = self._call_gateway(
                "charge", self.gateway.charge, request, details, idempotency_key=payment.external_id
            )
        except TransientGatewayError as exc:
            self._record_failure(payment, PaymentStatus.ERROR, f"processor unavailable: {exc.message}")
            raise PaymentProcessingError(
                "payment processor unavailable", code="PROCESSOR_UNAVAILABLE", external_code=exc.code
            ) from exc
        except PermanentGatewayError as exc:
            status = PaymentStatus.REJECTED if exc.is_decline else PaymentStatus.ERROR
            self._record_failure(payment, status, exc.message, remote_id=exc.remote_id)
            raise PaymentProcessingError(
                exc.message,
                code="PAYMENT_DECLINED" if exc.is_decline else "PROCESSOR_ERROR",
                external_code=exc.decline_code or exc.code,
            ) from exc
        except Exception as exc:
            self._record_failure(payment, PaymentStatus.ERROR, f"unexpected processor failure: {exc}")
            raise

        try:
            payment = self._apply_gateway_result(
                payment, gateway_result, reason="processor_charged", replace_external_id=True
            )
        except _FinalizedConcurrently as exc:
            return self.to_result(exc.payment)
        return self.to_result(payment, gateway_result)

    def _record_failure(
        self, payment: Payment, status: PaymentStatus, message: str, remote_id: str | None = None
    ) -> None:
        """Leave failed attempts visible in the ledger; never delete them.

        A declined confirmation still creates a processor intent; its id
        replaces the provisional one so the record stays findable.
        """

        def mark_failed(record: Payment) -> None:
            if remote_id:
                record.external_id = remote_id
            self._transition(record, status)
            record.error_message = message[:1000]

        try:
            self._save_with_retry(payment, mark_failed, reason=f"charge_{status.value.lower()}")
        except _FinalizedConcurrently:
            logger.warning("failure_not_recorded payment_id=%s already final", payment.id)
        except Exception:
            logger.exception("failure_not_recorded payment_id=%s status=%s", payment.id, status.value)

    def _apply_gateway_result(
        self,
        payment: Payment,
        gateway_result: GatewayResult,
        reason: str,
        replace_external_id: bool = False,
    ) -> Payment:
        reported = map_gateway_status(gateway_result.status_code)
        if gateway_result.amount_minor and (
            gateway_result.amount_minor != payment.amount_cents or gateway_result.currency != payment.currency
        ):
            logger.warning(
                "processor_amount_mismatch payment_id=%s local=%s %s remote=%s %s",
                payment.id,
                payment.amount_cents,
                payment.currency,
                gateway_result.amount_minor,
                gateway_result.currency,
            )

        def apply(record: Payment) -> None:
            if replace_external_id:
                record.external_id = gateway_result.remote_id
            previous = record.payment_status
            self._transition(record, reported)
            if reported is PaymentStatus.ERROR:
                record.error_message = f"unrecognised processor status: {gateway_result.status_code}"
            record.metadata_json = {**(record.metadata_json or {}), **gateway_result.metadata}
            if record.status != previous.value:
                status_reconciliations_total.labels(
                    service=self.service_name, from_status=previous.value, to_status=record.status
                ).inc()

        payment = self._save_with_retry(payment, apply, reason=reason)
        external_id_ctx.set(payment.external_id)
        return payment

    def _transition(self, record: Payment, target: PaymentStatus) -> None:
        current = record.payment_status
        if current.is_final:
            raise _FinalizedConcurrently(record)
        try:
            validate_transition(current, target)
        except InvalidTransitionError as exc:
            # Processor moved backwards (e.g. PROCESSING -> PENDING); keep local progress.
            logger.warning("ignored_status_regression payment_id=%s error=%s", record.id, exc)
            target = current
        record.status = target.value
        record.processed_at = self.clock()

    def _save_with_retry(self, payment: Payment, mutate: Callable[[Payment], None], reason: str) -> Payment:
        """Read-modify-write with compare-and-swap, re-reading on conflict."""

        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            mutate(payment)
            try:
                return self.ledger.save(payment, reason=reason)
            except StalePaymentError:
                optimistic_conflicts_total.labels(service=self.service_name).inc()
                logger.warning("ledger_conflict payment_id=%s attempt=%s", payment.id, attempt)
                fresh = self.ledger.find_by_id(payment.id)
                if fresh is None:
                    raise PaymentProcessingError(f"payment {payment.id} vanished from ledger", code="LEDGER_ERROR")
                payment = fresh
        raise PaymentProcessingError(
            f"payment {payment.id} kept changing concurrently", code="CONCURRENT_MODIFICATION"
        )

    def _call_gateway(self, operation: str, fn: Callable[..., GatewayResult], *args, **kwargs) -> GatewayResult:
        def on_retry(attempt: int, exc: BaseException) -> None:
            retries_total.labels(service=self.service_name, dependency="processor").inc()

        with tracer.start_as_current_span(f"processor.{operation}"):
            try:
                result = self.retry_policy.call(fn, *args, operation=operation, on_retry=on_retry, **kwargs)
            except TransientGatewayError:
                gateway_calls_total.labels(service=self.service_name, operation=operation, outcome="transient").inc()
                raise
            except PermanentGatewayError:
                gateway_calls_total.labels(service=self.service_name, operation=operation, outcome="permanent").inc()
                raise
        gateway_calls_total.labels(service=self.service_name, operation=operation, outcome="ok").inc()
        return result

    def _gateway_or_fail(self, operation: str, fn: Callable[..., GatewayResult], *args) -> GatewayResult:
        """Gateway call for poll/cancel paths: failures leave the record untouched."""

        try:
            return self._call_gateway(operation, fn, *args)
        except TransientGatewayError as exc:
            raise PaymentProcessingError(
                "payment processor unavailable", code="PROCESSOR_UNAVAILABLE", external_code=exc.code
            ) from exc
        except GatewayError as exc:
            raise PaymentProcessingError(exc.message, code="PROCESSOR_ERROR", external_code=exc.code) from exc

    @contextmanager
    def _operation(self, operation: str) -> Iterator[None]:
        """Time, log and translate errors at the orchestration boundary."""

        payment_token = payment_id_ctx.set("")
        external_token = external_id_ctx.set("")
        try:
            with payment_latency_seconds.labels(service=self.service_name, operation=operation).time():
                yield
        except PaymentValidationError as exc:
            payment_validation_failures_total.labels(service=self.service_name, error_code=exc.code).inc()
            logger.warning("payment_validation_failed operation=%s code=%s field=%s", operation, exc.code, exc.field)
            raise
        except PaymentProcessingError as exc:
            payment_failure_total.labels(service=self.service_name, error_code=exc.code).inc()
            logger.error(
                "payment_processing_failed operation=%s code=%s external_code=%s message=%s",
                operation,
                exc.code,
                exc.external_code,
                exc.message,
            )
            raise
        except Exception as exc:
            payment_failure_total.labels(service=self.service_name, error_code="PROCESSING_ERROR").inc()
            logger.exception("payment_unexpected_error operation=%s", operation)
            raise PaymentProcessingError(f"{operation} failed: {exc}") from exc
        finally:
            payment_id_ctx.reset(payment_token)
            external_id_ctx.reset(external_token)

    # -- result mapping -----------------------------------------------------------

    @staticmethod
    def to_result(payment: Payment, gateway_result: GatewayResult | None = None) -> PaymentResult:
        display = {}
        if gateway_result is not None:
            display = {
                "pix_qr_code": gateway_result.pix_qr_code,
                "pix_copy_paste": gateway_result.pix_copy_paste,
                "boleto_url": gateway_result.boleto_url,
                "boleto_barcode": gateway_result.boleto_barcode,
            }
        return PaymentResult(
            external_id=payment.external_id,
            status=payment.payment_status,
            amount=payment.amount,
            currency=payment.currency,
            payment_method=payment.method,
            installments=payment.installments,
            description=payment.description,
            metadata=dict(payment.metadata_json or {}),
            error_message=payment.error_message,
            **display,
        )

    @staticmethod
    def _result_from_gateway(gateway_result: GatewayResult) -> PaymentResult:
        method_code = (gateway_result.payment_method or "").upper()
        return PaymentResult(
            external_id=gateway_result.remote_id,
            status=map_gateway_status(gateway_result.status_code),
            amount=from_minor_units(gateway_result.amount_minor),
            currency=gateway_result.currency,
            payment_method=PaymentMethod(method_code) if method_code in PaymentMethod.__members__ else None,
            description=gateway_result.description,
            metadata=dict(gateway_result.metadata),
            pix_qr_code=gateway_result.pix_qr_code,
            pix_copy_paste=gateway_result.pix_copy_paste,
            boleto_url=gateway_result.boleto_url,
            boleto_barcode=gateway_result.boleto_barcode,
        )
