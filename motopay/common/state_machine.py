"""Payment status state machine enforced by the orchestrator."""

from enum import Enum

from motopay.common.errors import InvalidTransitionError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES

    @property
    def is_successful(self) -> bool:
        return self is PaymentStatus.APPROVED


FINAL_STATUSES: frozenset[PaymentStatus] = frozenset(
    {
        PaymentStatus.APPROVED,
        PaymentStatus.REJECTED,
        PaymentStatus.CANCELLED,
        PaymentStatus.ERROR,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }
)

# Self-transitions on non-final states are status refreshes from the processor.
ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PENDING, PaymentStatus.PROCESSING} | FINAL_STATUSES,
    PaymentStatus.PROCESSING: {PaymentStatus.PROCESSING} | FINAL_STATUSES,
    PaymentStatus.APPROVED: set(),
    PaymentStatus.REJECTED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.ERROR: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.PARTIALLY_REFUNDED: set(),
}


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if not can_transition(current, new):
        raise InvalidTransitionError(current.value, new.value)
