"""Shared fixtures: in-memory SQLite ledger, fake processor, fixed clocks."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite://")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")

from datetime import date, datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from motopay.common.config import PaymentSettings  # noqa: E402
from motopay.common.db import Base, build_session_factory  # noqa: E402
from motopay.common.retry import RetryPolicy  # noqa: E402
from motopay.services.payments import models  # noqa: E402,F401
from motopay.services.payments.gateway import GatewayResult, TransientGatewayError  # noqa: E402
from motopay.services.payments.ledger import SqlPaymentLedger  # noqa: E402
from motopay.services.payments.schemas import PaymentRequest  # noqa: E402
from motopay.services.payments.service import PaymentService  # noqa: E402
from motopay.services.payments.validator import PaymentValidator  # noqa: E402


TODAY = date(2026, 10, 19)


class Clock:
    """Mutable UTC clock for created_at/processed_at assertions."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def intent(status: str, remote_id: str = "pi_test123", amount_minor: int = 10000, currency: str = "BRL", **extra):
    """Processor result as the gateway adapter would return it."""

    return GatewayResult(
        remote_id=remote_id,
        status_code=status,
        amount_minor=amount_minor,
        currency=currency,
        payment_method=extra.pop("payment_method", "card"),
        **extra,
    )


class FakeGateway:
    """Processor stand-in. Outcome queues repeat their last entry once drained."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []
        self.charge_outcomes: list = [intent("succeeded")]
        self.retrieve_outcomes: list = [intent("succeeded")]
        self.retrieve_by_id: dict = {}
        self.cancel_outcomes: list = [intent("canceled")]

    @staticmethod
    def _next(queue: list):
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def charge(self, request, method_details, idempotency_key=None):
        self.calls.append(("charge", idempotency_key))
        return self._next(self.charge_outcomes)

    def retrieve(self, external_id):
        self.calls.append(("retrieve", external_id))
        if external_id in self.retrieve_by_id:
            return self._next([self.retrieve_by_id[external_id]])
        return self._next(self.retrieve_outcomes)

    def cancel(self, external_id):
        self.calls.append(("cancel", external_id))
        return self._next(self.cancel_outcomes)

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


@pytest.fixture
def config():
    return PaymentSettings(
        postgres_dsn="sqlite+pysqlite://",
        min_amount=Decimal("1.00"),
        max_amount=Decimal("1000000"),
        max_installments=12,
        supported_currencies=["BRL", "USD", "EUR"],
    )


@pytest.fixture
def session_factory():
    factory = build_session_factory(
        "sqlite+pysqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return SqlPaymentLedger(session_factory)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def validator(config):
    return PaymentValidator(config, today=lambda: TODAY)


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(ledger, gateway, validator, config, clock, sleeps):
    policy = RetryPolicy(
        max_attempts=3,
        base_delay=1.0,
        multiplier=2.0,
        retry_on=(TransientGatewayError,),
        sleep=sleeps.append,
    )
    return PaymentService(ledger, gateway, validator, config, retry_policy=policy, clock=clock)


@pytest.fixture
def make_request():
    """Factory for a valid CARD request; keyword overrides replace top-level fields."""

    def build(**overrides) -> PaymentRequest:
        data = {
            "user_id": "user123",
            "amount": "100.00",
            "currency": "BRL",
            "payment_method": "CARD",
            "installments": 1,
            "description": "Aluguel Honda CG 160 - 7 dias",
            "customer": {"name": "João Silva", "email": "joao@email.com"},
            "card": {
                "number": "4242424242424242",
                "holder_name": "João Silva",
                "expiry_date": "12/30",
                "cvv": "123",
            },
        }
        if overrides.get("payment_method") in ("PIX", "BOLETO"):
            data.pop("card")
        data.update(overrides)
        return PaymentRequest.model_validate(data)

    return build
