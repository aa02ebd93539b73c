"""Processor gateway port and a Stripe adapter built on the `stripe` SDK.

The adapter classifies SDK failures: connection errors, rate limiting and 5xx
API errors are transient (safe to retry); card, invalid-request and
authentication errors are permanent. Amounts cross this boundary in minor
units.
"""

import re
from collections.abc import Callable
from datetime import date
from typing import Any, Protocol

import stripe
from pydantic import BaseModel, ConfigDict, Field

from motopay.common.config import PaymentSettings
from motopay.common.logging import logger
from motopay.common.state_machine import PaymentStatus
from motopay.services.payments.schemas import (
    BoletoDetails,
    CardDetails,
    PaymentMethod,
    PaymentRequest,
    PixDetails,
    to_minor_units,
)


class GatewayResult(BaseModel):
    """Processor view of one remote payment intent."""

    model_config = ConfigDict(frozen=True)

    remote_id: str
    status_code: str
    amount_minor: int
    currency: str
    payment_method: str | None = None
    description: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    pix_qr_code: str | None = None
    pix_copy_paste: str | None = None
    boleto_url: str | None = None
    boleto_barcode: str | None = None


class GatewayError(Exception):
    """Base class for processor failures."""

    def __init__(self, message: str, code: str | None = None, decline_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.decline_code = decline_code


class TransientGatewayError(GatewayError):
    """Failure that may succeed when retried."""


class PermanentGatewayError(GatewayError):
    """Failure that will repeat on retry (bad request, decline, auth).

    `remote_id` is the processor's intent id when one was created before the
    failure, as with a declined confirmation.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        decline_code: str | None = None,
        is_decline: bool = False,
        remote_id: str | None = None,
    ) -> None:
        super().__init__(message, code, decline_code)
        self.is_decline = is_decline
        self.remote_id = remote_id


class ProcessorGateway(Protocol):
    def charge(
        self,
        request: PaymentRequest,
        method_details: CardDetails | PixDetails | BoletoDetails | None,
        idempotency_key: str | None = None,
    ) -> GatewayResult: ...

    def retrieve(self, external_id: str) -> GatewayResult: ...

    def cancel(self, external_id: str) -> GatewayResult: ...


STATUS_MAP: dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.APPROVED,
    "processing": PaymentStatus.PROCESSING,
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.PENDING,
    "canceled": PaymentStatus.CANCELLED,
}


def map_gateway_status(status_code: str | None) -> PaymentStatus:
    """Translate a processor status code; anything unrecognised is ERROR."""

    return STATUS_MAP.get((status_code or "").lower(), PaymentStatus.ERROR)


def configure_sdk(base_url: str, timeout: float) -> None:
    """Point the process-wide SDK at `base_url` with a bounded request timeout."""

    stripe.api_base = base_url
    # RetryPolicy owns retries; the SDK must not add its own.
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)


def translate_stripe_error(exc: stripe.StripeError) -> GatewayError:
    """Map an SDK exception onto the transient/permanent split."""

    error = (exc.json_body or {}).get("error") or {}
    message = error.get("message") or str(exc)
    status = exc.http_status
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
        code = "rate_limited" if isinstance(exc, stripe.RateLimitError) else "api_connection"
        return TransientGatewayError(message, code=code)
    if isinstance(exc, stripe.APIError) and (status is None or status >= 500):
        return TransientGatewayError(message, code=f"http_{status or 500}")
    if status is not None and (status == 429 or status >= 500):
        return TransientGatewayError(message, code=f"http_{status}")
    intent = error.get("payment_intent") or {}
    return PermanentGatewayError(
        message,
        code=exc.code or error.get("type"),
        decline_code=error.get("decline_code"),
        is_decline=isinstance(exc, stripe.CardError),
        remote_id=intent.get("id"),
    )


class StripeGateway:
    """Synchronous adapter over the Stripe PaymentIntents API."""

    def __init__(self, secret_key: str, today: Callable[[], date] = date.today) -> None:
        self.secret_key = secret_key
        self.today = today

    @classmethod
    def from_settings(cls, config: PaymentSettings) -> "StripeGateway":
        configure_sdk(config.processor_base_url, config.processor_timeout_seconds)
        return cls(secret_key=config.processor_secret_key)

    def _call(self, operation: str, fn: Callable[..., Any], *args, idempotency_key: str | None = None, **params):
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            return fn(*args, api_key=self.secret_key, **params)
        except stripe.StripeError as exc:
            translated = translate_stripe_error(exc)
            logger.warning(
                "processor_call_failed operation=%s status=%s code=%s kind=%s",
                operation,
                exc.http_status,
                translated.code,
                type(translated).__name__,
            )
            raise translated from exc

    def charge(
        self,
        request: PaymentRequest,
        method_details: CardDetails | PixDetails | BoletoDetails | None,
        idempotency_key: str | None = None,
    ) -> GatewayResult:
        customer_id = self._find_or_create_customer(request, idempotency_key)
        intent: dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "customer": customer_id,
            "description": request.description,
            "confirm": True,
            "metadata": self._metadata(request),
        }
        if request.payment_method is PaymentMethod.CARD:
            intent["payment_method_types"] = ["card"]
            intent["payment_method"] = self._create_card_method(method_details, idempotency_key)
            if (request.installments or 1) > 1:
                intent["payment_method_options"] = {
                    "card": {
                        "installments": {
                            "plan": {"count": request.installments, "interval": "month", "type": "fixed_count"}
                        }
                    }
                }
        elif request.payment_method is PaymentMethod.PIX:
            intent["payment_method_types"] = ["pix"]
            intent["payment_method_data"] = {"type": "pix"}
        else:
            intent["payment_method_types"] = ["boleto"]
            intent["payment_method_data"] = {
                "type": "boleto",
                "boleto": {"tax_id": re.sub(r"[^0-9]", "", request.customer.document or "")},
                "billing_details": self._billing_details(request),
            }
            if method_details is not None and method_details.due_date is not None:
                days = max(1, (method_details.due_date - self.today()).days)
                intent["payment_method_options"] = {"boleto": {"expires_after_days": days}}

        created = self._call(
            "payment_intent.create",
            stripe.PaymentIntent.create,
            idempotency_key=f"{idempotency_key}:intent" if idempotency_key else None,
            **intent,
        )
        return self._to_result(created)

    def retrieve(self, external_id: str) -> GatewayResult:
        return self._to_result(self._call("payment_intent.retrieve", stripe.PaymentIntent.retrieve, external_id))

    def cancel(self, external_id: str) -> GatewayResult:
        """Cancel an intent; the per-intent key makes a retried cancel replay the first answer."""

        canceled = self._call(
            "payment_intent.cancel",
            stripe.PaymentIntent.cancel,
            external_id,
            idempotency_key=f"{external_id}:cancel",
        )
        return self._to_result(canceled)

    def _find_or_create_customer(self, request: PaymentRequest, idempotency_key: str | None) -> str:
        customer = request.customer
        found = self._call("customer.list", stripe.Customer.list, email=customer.email, limit=1)
        if found.get("data"):
            return found["data"][0]["id"]
        created = self._call(
            "customer.create",
            stripe.Customer.create,
            idempotency_key=f"{idempotency_key}:customer" if idempotency_key else None,
            email=customer.email,
            name=customer.name,
            phone=customer.phone,
        )
        return created["id"]

    def _create_card_method(self, card: CardDetails | None, idempotency_key: str | None) -> str:
        if card is None:
            raise PermanentGatewayError("card data missing for card charge", code="missing_card")
        if card.token:
            card_params = {"token": card.token}
        else:
            month, year = card.expiry_date.split("/")
            card_params = {
                "number": "".join(card.number.split()),
                "exp_month": int(month),
                "exp_year": 2000 + int(year),
                "cvc": card.cvv,
            }
        created = self._call(
            "payment_method.create",
            stripe.PaymentMethod.create,
            idempotency_key=f"{idempotency_key}:payment_method" if idempotency_key else None,
            type="card",
            card=card_params,
            billing_details={"name": card.holder_name},
        )
        return created["id"]

    @staticmethod
    def _billing_details(request: PaymentRequest) -> dict[str, Any]:
        customer = request.customer
        details: dict[str, Any] = {"name": customer.name, "email": customer.email}
        if customer.address is not None:
            address = customer.address
            line1 = ", ".join(part for part in (address.street, address.number) if part)
            details["address"] = {
                "line1": line1 or None,
                "line2": address.complement,
                "city": address.city,
                "state": address.state,
                "postal_code": address.zip_code,
                "country": "BR",
            }
        return details

    @staticmethod
    def _metadata(request: PaymentRequest) -> dict[str, str]:
        metadata = dict(request.metadata)
        metadata.update(
            {
                "user_id": request.user_id,
                "payment_method": request.payment_method.value.lower(),
                "installments": str(request.installments or 1),
            }
        )
        return metadata

    @staticmethod
    def _to_result(intent) -> GatewayResult:
        """Accepts a `stripe.PaymentIntent` or any mapping with the same keys."""

        next_action = intent.get("next_action") or {}
        pix = next_action.get("pix_display_qr_code") or {}
        boleto = next_action.get("boleto_display_details") or {}
        method_types = intent.get("payment_method_types") or [None]
        return GatewayResult(
            remote_id=intent["id"],
            status_code=intent.get("status") or "",
            amount_minor=int(intent.get("amount") or 0),
            currency=(intent.get("currency") or "").upper(),
            payment_method=method_types[0],
            description=intent.get("description"),
            metadata={str(k): str(v) for k, v in (intent.get("metadata") or {}).items()},
            pix_qr_code=pix.get("image_url_png"),
            pix_copy_paste=pix.get("data"),
            boleto_url=boleto.get("hosted_voucher_url"),
            boleto_barcode=boleto.get("number"),
        )
