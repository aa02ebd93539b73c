"""Structural and business validation of payment requests.

Every rule raises `PaymentValidationError` with a stable code and, where a
single input is at fault, the offending field path. Rules run in a fixed order
and stop at the first violation.
"""

import re
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import NoReturn

from motopay.common.config import PaymentSettings
from motopay.common.errors import PaymentValidationError
from motopay.services.payments.checksums import cpf_is_valid, expiry_is_valid, luhn_is_valid, parse_expiry
from motopay.services.payments.schemas import (
    Address,
    BoletoDetails,
    CardDetails,
    Customer,
    PaymentMethod,
    PaymentRequest,
    PixDetails,
)


IDENTIFIER_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")
CURRENCY_PATTERN = re.compile(r"[A-Z]{3}")
PERSON_NAME_PATTERN = re.compile(r"[a-zA-ZÀ-ÿ\s]+")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
CPF_PATTERN = re.compile(r"[0-9]{3}\.?[0-9]{3}\.?[0-9]{3}-?[0-9]{2}")
PHONE_PATTERN = re.compile(r"\+?[0-9]{10,15}")
CARD_NUMBER_PATTERN = re.compile(r"[0-9]{13,19}")
CVV_PATTERN = re.compile(r"[0-9]{3,4}")
STATE_PATTERN = re.compile(r"[A-Z]{2}")
ZIP_PATTERN = re.compile(r"[0-9]{5}-?[0-9]{3}")

_CENT = Decimal("0.01")
_ADDRESS_LIMITS = {
    "street": 200,
    "number": 20,
    "complement": 100,
    "neighborhood": 100,
    "city": 100,
    "country": 100,
}


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _fail(message: str, code: str, field: str | None = None) -> NoReturn:
    raise PaymentValidationError(message, code=code, field=field)


def validate_identifier(value: str | None, field: str, code: str, max_length: int = 255) -> None:
    """Opaque ids and tokens: alnum, dash or underscore, at most `max_length` chars."""

    if _blank(value):
        _fail(f"{field} is required", code, field)
    if len(value) > max_length:
        _fail(f"{field} must be at most {max_length} characters", code, field)
    if not IDENTIFIER_PATTERN.fullmatch(value):
        _fail(f"{field} contains invalid characters", code, field)


def _validate_person_name(value: str | None, field: str, code: str) -> None:
    if _blank(value):
        _fail(f"{field} is required", code, field)
    if len(value) < 2 or len(value) > 100:
        _fail(f"{field} must have between 2 and 100 characters", code, field)
    if not PERSON_NAME_PATTERN.fullmatch(value):
        _fail(f"{field} contains invalid characters", code, field)


class PaymentValidator:
    """Validates payment requests against limits taken from `PaymentSettings`."""

    def __init__(self, config: PaymentSettings, today: Callable[[], date] = date.today) -> None:
        self.min_amount = Decimal(config.min_amount)
        self.max_amount = Decimal(config.max_amount)
        self.max_installments = config.max_installments
        self.supported_currencies = frozenset(config.supported_currencies)
        self.today = today

    def validate(self, request: PaymentRequest | None) -> None:
        """Validate a complete request, including its payment-method block."""

        if request is None:
            _fail("payment request must not be null", "MISSING_REQUEST")

        validate_identifier(request.user_id, "user_id", "INVALID_USER_ID")
        self.validate_amount(request.amount)
        self.validate_currency(request.currency)
        if request.payment_method is None:
            _fail("payment method is required", "MISSING_PAYMENT_METHOD", "payment_method")
        self.validate_installments(request.installments)
        if request.description and len(request.description) > 500:
            _fail("description must be at most 500 characters", "INVALID_DESCRIPTION", "description")
        self.validate_customer(request.customer)
        self._validate_method_block(request)

    def validate_amount(self, amount: Decimal | None) -> None:
        if amount is None:
            _fail("amount is required", "MISSING_AMOUNT", "amount")
        if not amount.is_finite():
            _fail("amount must be a finite decimal", "INVALID_AMOUNT", "amount")
        if amount <= 0:
            _fail("amount must be greater than zero", "INVALID_AMOUNT", "amount")
        if amount > self.max_amount:
            _fail(f"amount exceeds maximum of {self.max_amount}", "AMOUNT_ABOVE_MAXIMUM", "amount")
        if amount < self.min_amount:
            _fail(f"amount below minimum of {self.min_amount}", "AMOUNT_BELOW_MINIMUM", "amount")
        if amount != amount.quantize(_CENT):
            _fail("amount must have at most 2 decimal places", "INVALID_AMOUNT_SCALE", "amount")

    def validate_currency(self, currency: str | None) -> None:
        if _blank(currency):
            _fail("currency is required", "MISSING_CURRENCY", "currency")
        if not CURRENCY_PATTERN.fullmatch(currency):
            _fail("currency must be 3 uppercase letters", "INVALID_CURRENCY", "currency")
        if currency not in self.supported_currencies:
            _fail(f"currency not supported: {currency}", "UNSUPPORTED_CURRENCY", "currency")

    def validate_installments(self, installments: int | None) -> None:
        if installments is None:
            _fail("installments is required", "INVALID_INSTALLMENTS", "installments")
        if installments < 1 or installments > self.max_installments:
            _fail(
                f"installments must be between 1 and {self.max_installments}",
                "INVALID_INSTALLMENTS",
                "installments",
            )

    def validate_customer(self, customer: Customer | None) -> None:
        if customer is None:
            _fail("customer data is required", "MISSING_CUSTOMER", "customer")

        _validate_person_name(customer.name, "customer.name", "INVALID_CUSTOMER_NAME")

        if _blank(customer.email):
            _fail("customer.email is required", "INVALID_EMAIL", "customer.email")
        if len(customer.email) > 255 or not EMAIL_PATTERN.fullmatch(customer.email):
            _fail("customer.email must be a valid address", "INVALID_EMAIL", "customer.email")

        if not _blank(customer.document):
            self.validate_document(customer.document)

        if not _blank(customer.phone):
            phone = customer.phone
            if len(phone) > 20:
                _fail("customer.phone must be at most 20 characters", "INVALID_PHONE", "customer.phone")
            if not PHONE_PATTERN.fullmatch(re.sub(r"[^0-9+]", "", phone)):
                _fail("customer.phone must have 10 to 15 digits", "INVALID_PHONE", "customer.phone")

        if customer.address is not None:
            self.validate_address(customer.address)

    def validate_document(self, document: str) -> None:
        """CPF: format first, then the check digits over the bare digits."""

        if len(document) > 20 or not CPF_PATTERN.fullmatch(document):
            _fail("customer.document must be a CPF", "INVALID_DOCUMENT", "customer.document")
        if not cpf_is_valid(re.sub(r"[^0-9]", "", document)):
            _fail("customer.document has invalid CPF check digits", "INVALID_CPF", "customer.document")

    def validate_address(self, address: Address) -> None:
        for name, limit in _ADDRESS_LIMITS.items():
            value = getattr(address, name)
            if value is not None and len(value) > limit:
                _fail(
                    f"customer.address.{name} must be at most {limit} characters",
                    "INVALID_ADDRESS",
                    f"customer.address.{name}",
                )
        if address.state is not None and not STATE_PATTERN.fullmatch(address.state):
            _fail("customer.address.state must be 2 uppercase letters", "INVALID_ADDRESS", "customer.address.state")
        if address.zip_code is not None and not ZIP_PATTERN.fullmatch(address.zip_code):
            _fail("customer.address.zip_code must be a valid CEP", "INVALID_ADDRESS", "customer.address.zip_code")

    def validate_card(self, card: CardDetails | None) -> None:
        """Raw PAN rules, or only the token format when a token is supplied."""

        if card is None:
            _fail("card data is required", "MISSING_CARD", "card")

        if not _blank(card.token):
            validate_identifier(card.token, "card.token", "INVALID_CARD_TOKEN")
            return

        if _blank(card.number):
            _fail("card.number is required", "INVALID_CARD_NUMBER", "card.number")
        number = "".join(card.number.split())
        if not CARD_NUMBER_PATTERN.fullmatch(number):
            _fail("card.number must have 13 to 19 digits", "INVALID_CARD_NUMBER", "card.number")
        if not luhn_is_valid(number):
            _fail("card.number failed checksum", "INVALID_CARD_CHECKSUM", "card.number")

        _validate_person_name(card.holder_name, "card.holder_name", "INVALID_HOLDER_NAME")

        if _blank(card.expiry_date):
            _fail("card.expiry_date is required", "INVALID_EXPIRY_DATE", "card.expiry_date")
        if parse_expiry(card.expiry_date) is None:
            _fail("card.expiry_date must use MM/YY", "INVALID_EXPIRY_DATE", "card.expiry_date")
        if not expiry_is_valid(card.expiry_date, self.today()):
            _fail("card is expired", "CARD_EXPIRED", "card.expiry_date")

        if _blank(card.cvv) or not CVV_PATTERN.fullmatch(card.cvv):
            _fail("card.cvv must have 3 or 4 digits", "INVALID_CVV", "card.cvv")

    def validate_pix(self, pix: PixDetails | None) -> None:
        if pix is None:
            return
        if pix.pix_key is not None and len(pix.pix_key) > 100:
            _fail("pix.pix_key must be at most 100 characters", "INVALID_PIX_KEY", "pix.pix_key")
        if pix.pix_key_type is not None and len(pix.pix_key_type) > 50:
            _fail("pix.pix_key_type must be at most 50 characters", "INVALID_PIX_KEY", "pix.pix_key_type")

    def validate_boleto(self, boleto: BoletoDetails | None, customer: Customer) -> None:
        if boleto is None:
            _fail("boleto data is required", "MISSING_BOLETO", "boleto")
        if boleto.due_date is None or boleto.due_date <= self.today():
            _fail("boleto.due_date must be in the future", "INVALID_DUE_DATE", "boleto.due_date")
        for name in ("instructions", "description"):
            value = getattr(boleto, name)
            if value is not None and len(value) > 200:
                _fail(f"boleto.{name} must be at most 200 characters", "INVALID_BOLETO", f"boleto.{name}")
        if _blank(customer.document):
            _fail("customer.document is required for boleto", "MISSING_DOCUMENT", "customer.document")

    def _validate_method_block(self, request: PaymentRequest) -> None:
        blocks = {
            PaymentMethod.CARD: request.card,
            PaymentMethod.PIX: request.pix,
            PaymentMethod.BOLETO: request.boleto,
        }
        for method, block in blocks.items():
            if method is not request.payment_method and block is not None:
                _fail(
                    f"{method.value.lower()} data is not allowed for {request.payment_method.value} payments",
                    "UNEXPECTED_METHOD_DATA",
                    method.value.lower(),
                )

        if request.payment_method is PaymentMethod.CARD:
            self.validate_card(request.card)
        elif request.payment_method is PaymentMethod.PIX:
            self.validate_pix(request.pix)
        else:
            self.validate_boleto(request.boleto, request.customer)
