"""Validation rules, error codes, field paths and rule ordering."""

from datetime import date

import pytest

from motopay.common.errors import PaymentValidationError
from motopay.services.payments.schemas import PaymentRequest
from motopay.services.payments.validator import PaymentValidator


def assert_rejected(validator, request, code, field=None):
    with pytest.raises(PaymentValidationError) as exc_info:
        validator.validate(request)
    assert exc_info.value.code == code
    if field is not None:
        assert exc_info.value.field == field
    return exc_info.value


def test_valid_card_request_passes(validator, make_request):
    validator.validate(make_request())


def test_null_request_rejected(validator):
    assert_rejected(validator, None, "MISSING_REQUEST")


@pytest.mark.parametrize("user_id", [None, "", "   ", "user 123", "user@123", "u" * 256])
def test_invalid_user_id(validator, make_request, user_id):
    assert_rejected(validator, make_request(user_id=user_id), "INVALID_USER_ID", "user_id")


@pytest.mark.parametrize(
    "amount,code",
    [
        (None, "MISSING_AMOUNT"),
        ("0.00", "INVALID_AMOUNT"),
        ("-5", "INVALID_AMOUNT"),
        ("0.50", "AMOUNT_BELOW_MINIMUM"),
        ("1000000.01", "AMOUNT_ABOVE_MAXIMUM"),
        ("10.001", "INVALID_AMOUNT_SCALE"),
    ],
)
def test_amount_rules(validator, make_request, amount, code):
    assert_rejected(validator, make_request(amount=amount), code, "amount")


@pytest.mark.parametrize("amount", ["1.00", "1000000", "10.000", "99.9"])
def test_amount_boundaries_accepted(validator, make_request, amount):
    validator.validate(make_request(amount=amount))


@pytest.mark.parametrize(
    "currency,code",
    [
        (None, "MISSING_CURRENCY"),
        ("", "MISSING_CURRENCY"),
        ("brl", "INVALID_CURRENCY"),
        ("BR", "INVALID_CURRENCY"),
        ("BRLX", "INVALID_CURRENCY"),
        ("JPY", "UNSUPPORTED_CURRENCY"),
    ],
)
def test_currency_rules(validator, make_request, currency, code):
    assert_rejected(validator, make_request(currency=currency), code, "currency")


def test_missing_payment_method(validator, make_request):
    request = make_request(payment_method=None, card=None)
    assert_rejected(validator, request, "MISSING_PAYMENT_METHOD", "payment_method")


def test_payment_method_is_case_insensitive():
    assert PaymentRequest(payment_method="pix").payment_method.value == "PIX"


@pytest.mark.parametrize("installments", [None, 0, 13])
def test_installments_range(validator, make_request, installments):
    assert_rejected(validator, make_request(installments=installments), "INVALID_INSTALLMENTS", "installments")


def test_description_length(validator, make_request):
    validator.validate(make_request(description="x" * 500))
    assert_rejected(validator, make_request(description="x" * 501), "INVALID_DESCRIPTION", "description")


def test_first_violation_wins(validator, make_request):
    """Rules run in a fixed order; only the earliest failure is reported."""

    request = make_request(user_id="bad id", amount="0", currency="xx", customer=None)
    assert_rejected(validator, request, "INVALID_USER_ID")

    request = make_request(amount="0", currency="xx", customer=None)
    assert_rejected(validator, request, "INVALID_AMOUNT")

    request = make_request(currency="xx", customer=None)
    assert_rejected(validator, request, "INVALID_CURRENCY")


@pytest.mark.parametrize(
    "customer,code,field",
    [
        (None, "MISSING_CUSTOMER", "customer"),
        ({"name": "J", "email": "joao@email.com"}, "INVALID_CUSTOMER_NAME", "customer.name"),
        ({"name": "João 2", "email": "joao@email.com"}, "INVALID_CUSTOMER_NAME", "customer.name"),
        ({"name": "João Silva", "email": None}, "INVALID_EMAIL", "customer.email"),
        ({"name": "João Silva", "email": "joao@email"}, "INVALID_EMAIL", "customer.email"),
        ({"name": "João Silva", "email": "joao@email.com", "document": "1234"}, "INVALID_DOCUMENT", "customer.document"),
        (
            {"name": "João Silva", "email": "joao@email.com", "document": "111.444.777-36"},
            "INVALID_CPF",
            "customer.document",
        ),
        ({"name": "João Silva", "email": "joao@email.com", "phone": "12345"}, "INVALID_PHONE", "customer.phone"),
        (
            {"name": "João Silva", "email": "joao@email.com", "address": {"state": "sp"}},
            "INVALID_ADDRESS",
            "customer.address.state",
        ),
        (
            {"name": "João Silva", "email": "joao@email.com", "address": {"zip_code": "1234"}},
            "INVALID_ADDRESS",
            "customer.address.zip_code",
        ),
    ],
)
def test_customer_rules(validator, make_request, customer, code, field):
    assert_rejected(validator, make_request(customer=customer), code, field)


def test_customer_optional_fields_accepted(validator, make_request):
    customer = {
        "name": "Maria José",
        "email": "maria@email.com",
        "document": "111.444.777-35",
        "phone": "+55 (11) 98765-4321",
        "address": {"street": "Rua A", "number": "10", "city": "São Paulo", "state": "SP", "zip_code": "01310-100"},
    }
    validator.validate(make_request(customer=customer))


@pytest.mark.parametrize(
    "card,code,field",
    [
        (None, "MISSING_CARD", "card"),
        ({"number": "4242", "holder_name": "João Silva", "expiry_date": "12/30", "cvv": "123"}, "INVALID_CARD_NUMBER", "card.number"),
        (
            {"number": "4242424242424241", "holder_name": "João Silva", "expiry_date": "12/30", "cvv": "123"},
            "INVALID_CARD_CHECKSUM",
            "card.number",
        ),
        (
            {"number": "4242424242424242", "holder_name": None, "expiry_date": "12/30", "cvv": "123"},
            "INVALID_HOLDER_NAME",
            "card.holder_name",
        ),
        (
            {"number": "4242424242424242", "holder_name": "João Silva", "expiry_date": "2030-12", "cvv": "123"},
            "INVALID_EXPIRY_DATE",
            "card.expiry_date",
        ),
        (
            {"number": "4242424242424242", "holder_name": "João Silva", "expiry_date": "01/20", "cvv": "123"},
            "CARD_EXPIRED",
            "card.expiry_date",
        ),
        (
            {"number": "4242424242424242", "holder_name": "João Silva", "expiry_date": "12/30", "cvv": "12"},
            "INVALID_CVV",
            "card.cvv",
        ),
    ],
)
def test_card_rules(validator, make_request, card, code, field):
    assert_rejected(validator, make_request(card=card), code, field)


def test_card_token_skips_raw_card_rules(validator, make_request):
    """A tokenised card carries no PAN, expiry or CVV."""

    validator.validate(make_request(card={"token": "tok_visa_123"}))
    assert_rejected(validator, make_request(card={"token": "tok visa"}), "INVALID_CARD_TOKEN", "card.token")


def test_expiry_uses_injected_today(config, make_request):
    card = {"number": "4242424242424242", "holder_name": "João Silva", "expiry_date": "12/26", "cvv": "123"}
    PaymentValidator(config, today=lambda: date(2026, 12, 31)).validate(make_request(card=card))
    with pytest.raises(PaymentValidationError):
        PaymentValidator(config, today=lambda: date(2027, 1, 1)).validate(make_request(card=card))


def test_pix_request_with_optional_key(validator, make_request):
    validator.validate(make_request(payment_method="PIX"))
    validator.validate(make_request(payment_method="PIX", pix={"pix_key": "joao@email.com", "pix_key_type": "email"}))
    assert_rejected(
        validator, make_request(payment_method="PIX", pix={"pix_key": "k" * 101}), "INVALID_PIX_KEY", "pix.pix_key"
    )


def test_method_block_must_match_method(validator, make_request):
    request = make_request(payment_method="PIX", card={"token": "tok_1"})
    assert_rejected(validator, request, "UNEXPECTED_METHOD_DATA", "card")


def boleto_request(make_request, **boleto):
    return make_request(
        payment_method="BOLETO",
        customer={"name": "João Silva", "email": "joao@email.com", "document": "111.444.777-35"},
        boleto={"due_date": "2026-10-26", **boleto},
    )


def test_boleto_valid(validator, make_request):
    validator.validate(boleto_request(make_request))


def test_boleto_rules(validator, make_request):
    assert_rejected(validator, make_request(payment_method="BOLETO"), "MISSING_BOLETO", "boleto")
    assert_rejected(validator, boleto_request(make_request, due_date="2026-10-19"), "INVALID_DUE_DATE", "boleto.due_date")
    assert_rejected(
        validator, boleto_request(make_request, instructions="x" * 201), "INVALID_BOLETO", "boleto.instructions"
    )
    request = make_request(payment_method="BOLETO", boleto={"due_date": "2026-10-26"})
    assert_rejected(validator, request, "MISSING_DOCUMENT", "customer.document")
