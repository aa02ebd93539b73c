"""Startup-time helpers for safe config logging."""

from pydantic_settings import BaseSettings

from motopay.common.logging import logger


_SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")


def _safe_value(name: str, value) -> str:
    """Return a printable setting value, redacted for secret-like names."""

    if value is None or value == "":
        return "<unset>"
    if any(marker in name.upper() for marker in _SECRET_MARKERS):
        return "<redacted>"
    return str(value)


def log_startup_config(config: BaseSettings, keys: list[str]) -> dict[str, str]:
    """Log selected settings for quick troubleshooting and return what was logged."""

    snapshot = {"service": getattr(config, "service_name", "unknown-service")}
    for key in keys:
        snapshot[key] = _safe_value(key, getattr(config, key, None))
    logger.info("startup_config=%s", snapshot)
    return snapshot
