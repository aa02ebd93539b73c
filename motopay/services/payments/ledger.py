"""Payment ledger port and its SQLAlchemy adapter."""

from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from motopay.common.errors import PaymentProcessingError, StalePaymentError
from motopay.common.logging import logger
from motopay.common.state_machine import FINAL_STATUSES
from motopay.services.payments.models import Payment, PaymentTimeline, utcnow


class PaymentLedger(Protocol):
    """Durable store of `Payment` records consumed by the orchestrator."""

    def find_by_id(self, payment_id: str) -> Payment | None: ...

    def find_by_external_id(self, external_id: str) -> Payment | None: ...

    def find_by_user_id(self, user_id: str) -> list[Payment]: ...

    def exists_by_external_id(self, external_id: str) -> bool: ...

    def find_stale_non_final(self, older_than: datetime, limit: int) -> list[Payment]: ...

    def save(self, payment: Payment, reason: str = "updated") -> Payment: ...

    def timeline(self, payment_id: str) -> list[PaymentTimeline]: ...


class SqlPaymentLedger:
    """Ledger backed by the `payments` and `payment_timeline` tables.

    Updates are compare-and-swap on `(id, version)` and only touch mutable
    columns; amount, currency, method and user are written once on insert.
    """

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def find_by_id(self, payment_id: str) -> Payment | None:
        with self.session_factory() as db:
            return db.get(Payment, payment_id)

    def find_by_external_id(self, external_id: str) -> Payment | None:
        with self.session_factory() as db:
            return db.execute(select(Payment).where(Payment.external_id == external_id)).scalar_one_or_none()

    def find_by_user_id(self, user_id: str) -> list[Payment]:
        """Newest first."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Payment)
                    .where(Payment.user_id == user_id)
                    .order_by(Payment.created_at.desc(), Payment.id.desc())
                ).scalars()
            )

    def exists_by_external_id(self, external_id: str) -> bool:
        with self.session_factory() as db:
            count = db.execute(
                select(func.count()).select_from(Payment).where(Payment.external_id == external_id)
            ).scalar_one()
            return count > 0

    def find_stale_non_final(self, older_than: datetime, limit: int) -> list[Payment]:
        """Non-final records created before `older_than`, oldest first."""

        final_values = [status.value for status in FINAL_STATUSES]
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Payment)
                    .where(Payment.status.not_in(final_values), Payment.created_at < older_than)
                    .order_by(Payment.created_at)
                    .limit(limit)
                ).scalars()
            )

    def timeline(self, payment_id: str) -> list[PaymentTimeline]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PaymentTimeline)
                    .where(PaymentTimeline.payment_id == payment_id)
                    .order_by(PaymentTimeline.created_at)
                ).scalars()
            )

    def save(self, payment: Payment, reason: str = "updated") -> Payment:
        """Insert a new record or apply a version-guarded update.

        Raises `StalePaymentError` when another writer bumped the version
        first, and `PaymentProcessingError` when the external id collides.
        """

        try:
            if not payment.version:
                return self._insert(payment, reason)
            return self._update(payment, reason)
        except IntegrityError as exc:
            logger.error("ledger_integrity_error payment_id=%s error=%s", payment.id, exc.orig)
            raise PaymentProcessingError(
                f"external id already recorded: {payment.external_id}", code="DUPLICATE_EXTERNAL_ID"
            ) from exc

    def _insert(self, payment: Payment, reason: str) -> Payment:
        now = utcnow()
        payment.created_at = payment.created_at or now
        payment.updated_at = now
        payment.version = 1
        with self.session_factory() as db:
            db.add(payment)
            db.flush()
            db.add(
                PaymentTimeline(
                    payment_id=payment.id,
                    from_status=None,
                    to_status=payment.status,
                    reason=reason,
                    created_at=now,
                )
            )
            db.commit()
            db.expunge(payment)
        return payment

    def _update(self, payment: Payment, reason: str) -> Payment:
        now = utcnow()
        current_version = payment.version
        with self.session_factory() as db:
            stored_status = db.execute(select(Payment.status).where(Payment.id == payment.id)).scalar_one_or_none()
            result = db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.version == current_version)
                .values(
                    external_id=payment.external_id,
                    status=payment.status,
                    error_message=payment.error_message,
                    metadata_json=payment.metadata_json,
                    processed_at=payment.processed_at,
                    updated_at=now,
                    version=current_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise StalePaymentError(payment.id, current_version)
            if stored_status != payment.status:
                db.add(
                    PaymentTimeline(
                        payment_id=payment.id,
                        from_status=stored_status,
                        to_status=payment.status,
                        reason=reason,
                        created_at=now,
                    )
                )
            db.commit()
        payment.version = current_version + 1
        payment.updated_at = now
        return payment
