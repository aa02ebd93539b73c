"""Error taxonomy surfaced by the payment core.

Two kinds reach callers: `PaymentValidationError` (client fault, never retried)
and `PaymentProcessingError` (processor or infrastructure fault). The remaining
types are raised internally and translated by the orchestrator.
"""


class PaymentError(Exception):
    """Base class for errors that carry a machine-readable code."""

    default_code = "PAYMENT_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class PaymentValidationError(PaymentError):
    """Caller input violated a validation or business rule."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: str | None = None, field: str | None = None) -> None:
        super().__init__(message, code)
        self.field = field


class PaymentProcessingError(PaymentError):
    """The processor, the ledger or another collaborator failed."""

    default_code = "PROCESSING_ERROR"

    def __init__(self, message: str, code: str | None = None, external_code: str | None = None) -> None:
        super().__init__(message, code)
        self.external_code = external_code


class InvalidTransitionError(ValueError):
    """A status change is not allowed by the payment state machine."""

    def __init__(self, current: str, new: str) -> None:
        super().__init__(f"Invalid transition: {current} -> {new}")
        self.current = current
        self.new = new


class StalePaymentError(RuntimeError):
    """A version-guarded ledger update matched no row."""

    def __init__(self, payment_id: str, expected_version: int) -> None:
        super().__init__(
            f"optimistic concurrency conflict for payment {payment_id} (expected version {expected_version})"
        )
        self.payment_id = payment_id
        self.expected_version = expected_version
