"""Settings defaults and redacted startup logging."""

from decimal import Decimal

from motopay.common.config import PaymentSettings
from motopay.common.startup import log_startup_config


def test_defaults():
    config = PaymentSettings(_env_file=None)

    assert config.min_amount == Decimal("1.00")
    assert config.max_amount == Decimal("1000000")
    assert config.max_installments == 12
    assert config.supported_currencies == ["BRL", "USD", "EUR"]
    assert (config.retry_max_attempts, config.retry_base_delay_seconds, config.retry_multiplier) == (3, 1.0, 2.0)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MAX_INSTALLMENTS", "6")
    monkeypatch.setenv("SUPPORTED_CURRENCIES", '["BRL"]')

    config = PaymentSettings(_env_file=None)

    assert config.max_installments == 6
    assert config.supported_currencies == ["BRL"]


def test_startup_snapshot_redacts_secrets():
    config = PaymentSettings(_env_file=None, processor_secret_key="sk_live_abc", processor_base_url="https://p.test")

    snapshot = log_startup_config(config, ["processor_secret_key", "postgres_dsn", "processor_base_url", "missing"])

    assert snapshot["processor_secret_key"] == "<redacted>"
    assert snapshot["postgres_dsn"] == "<redacted>"
    assert snapshot["processor_base_url"] == "https://p.test"
    assert snapshot["missing"] == "<unset>"
    assert snapshot["service"] == "payments"
