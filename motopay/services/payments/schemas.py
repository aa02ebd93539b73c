"""Request/result value types shared by the validator, orchestrator and API.

Input models are deliberately permissive: presence, format and business rules
are enforced by `PaymentValidator` so that every violation maps to one
machine-readable error code.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from motopay.common.state_machine import PaymentStatus


def to_minor_units(amount: Decimal) -> int:
    """Amount in cents; exact for amounts with at most two decimal places."""

    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


class PaymentMethod(str, Enum):
    CARD = "CARD"
    PIX = "PIX"
    BOLETO = "BOLETO"


class CardDetails(BaseModel):
    """Raw card data, or an opaque processor token in place of the PAN."""

    model_config = ConfigDict(frozen=True)

    number: str | None = None
    holder_name: str | None = None
    expiry_date: str | None = None
    cvv: str | None = None
    token: str | None = None

    def __repr__(self) -> str:
        # Never leak PAN/CVV through logs or tracebacks.
        return f"CardDetails(token={'set' if self.token else 'unset'}, last4={(self.number or '')[-4:]!r})"

    __str__ = __repr__


class PixDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    pix_key: str | None = None
    pix_key_type: str | None = None


class BoletoDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    due_date: date | None = None
    instructions: str | None = None
    description: str | None = None


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    street: str | None = None
    number: str | None = None
    complement: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None


class Customer(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    email: str | None = None
    document: str | None = None
    phone: str | None = None
    address: Address | None = None


class PaymentRequest(BaseModel):
    """Payment request accepted by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    payment_method: PaymentMethod | None = None
    installments: int | None = 1
    description: str | None = None
    customer: Customer | None = None
    card: CardDetails | None = None
    pix: PixDetails | None = None
    boleto: BoletoDetails | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("payment_method", mode="before")
    @classmethod
    def _method_code(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


class PaymentResult(BaseModel):
    """Outcome returned to callers for every payment operation."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    payment_method: PaymentMethod | None = None
    installments: int | None = None
    description: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    error_message: str | None = None
    pix_qr_code: str | None = None
    pix_copy_paste: str | None = None
    boleto_url: str | None = None
    boleto_barcode: str | None = None


class PaymentRecord(BaseModel):
    """Read model for persisted ledger rows."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    external_id: str
    user_id: str
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    installments: int
    description: str | None = None
    error_message: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime
    updated_at: datetime
    processed_at: datetime | None = None


class ReconciliationReport(BaseModel):
    checked: int = 0
    updated: int = 0
    finalized: int = 0
    failed: int = 0
    failed_external_ids: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    field: str | None = None
    external_error_code: str | None = None
