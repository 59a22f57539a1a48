"""Repository implementations for cash-application entities.

Provides data access abstraction following the Repository pattern.
Repositories never commit: the calling service owns the transaction.
"""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ...exceptions import RecordNotFoundError
from ...storage.database.base import get_session
from ..domain.enums import BatchStatus, LookupKeyType, PaymentStatus
from ..domain.models import Batch, CustomerLookup, MatchLog, Payment, PaymentLine


class BatchRepository:
    """Repository for Batch entities."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def add(self, batch: Batch) -> Batch:
        self.session.add(batch)
        return batch

    def get(self, batch_id: int) -> Batch | None:
        return self.session.get(Batch, batch_id)

    def get_or_raise(self, batch_id: int) -> Batch:
        batch = self.get(batch_id)
        if batch is None:
            raise RecordNotFoundError(
                f"Batch {batch_id} not found", entity_type="Batch", entity_id=batch_id
            )
        return batch

    def find_recent(self, limit: int = 100, status: BatchStatus | None = None) -> list[Batch]:
        """Most recently imported batches first."""
        stmt = select(Batch).order_by(Batch.imported_at.desc(), Batch.id.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(Batch.status == status)
        return list(self.session.execute(stmt).scalars())

    def find_by_ids(self, batch_ids: Iterable[int]) -> list[Batch]:
        stmt = select(Batch).where(Batch.id.in_(list(batch_ids)))
        return list(self.session.execute(stmt).scalars())


class PaymentRepository:
    """Repository for Payment entities and their lines."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def add(self, payment: Payment) -> Payment:
        self.session.add(payment)
        return payment

    def get(self, payment_id: int) -> Payment | None:
        return self.session.get(Payment, payment_id)

    def get_or_raise(self, payment_id: int) -> Payment:
        payment = self.get(payment_id)
        if payment is None:
            raise RecordNotFoundError(
                f"Payment {payment_id} not found", entity_type="Payment", entity_id=payment_id
            )
        return payment

    def find_by_batch(
        self, batch_id: int, statuses: Iterable[PaymentStatus] | None = None
    ) -> list[Payment]:
        """Payments of a batch in import order, optionally filtered by status."""
        stmt = (
            select(Payment)
            .where(Payment.batch_id == batch_id)
            .order_by(Payment.sequence_number, Payment.id)
        )
        if statuses is not None:
            stmt = stmt.where(Payment.status.in_(list(statuses)))
        return list(self.session.execute(stmt).scalars())

    def find_matchable(self, batch_id: int) -> list[Payment]:
        """Imported and NeedsReview payments, the ones an auto-apply run touches."""
        return self.find_by_batch(
            batch_id, statuses=(PaymentStatus.IMPORTED, PaymentStatus.NEEDS_REVIEW)
        )

    def find_for_export(self, batch_id: int) -> list[Payment]:
        """AutoApplied payments with their lines eagerly loaded."""
        stmt = (
            select(Payment)
            .options(selectinload(Payment.lines))
            .where(Payment.batch_id == batch_id, Payment.status == PaymentStatus.AUTO_APPLIED)
            .order_by(Payment.sequence_number, Payment.id)
        )
        return list(self.session.execute(stmt).scalars())

    def find_lines(self, payment_id: int) -> list[PaymentLine]:
        stmt = (
            select(PaymentLine)
            .where(PaymentLine.payment_id == payment_id)
            .order_by(PaymentLine.invoice_no, PaymentLine.id)
        )
        return list(self.session.execute(stmt).scalars())

    def find_logs(self, payment_id: int) -> list[MatchLog]:
        stmt = select(MatchLog).where(MatchLog.payment_id == payment_id).order_by(MatchLog.id)
        return list(self.session.execute(stmt).scalars())

    def add_log(self, payment: Payment, message: str, level: str = "Info") -> MatchLog:
        entry = MatchLog(level=level, message=message)
        payment.logs.append(entry)
        return entry


class CustomerLookupRepository:
    """Repository for CustomerLookup entities."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def find(self, key_type: LookupKeyType, key_value: str) -> CustomerLookup | None:
        stmt = select(CustomerLookup).where(
            CustomerLookup.key_type == key_type, CustomerLookup.key_value == key_value
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find_customer(self, key_type: LookupKeyType, key_value: str | None) -> str | None:
        """Customer id stored for a key, or None when the key is blank or unknown."""
        if not key_value:
            return None
        stmt = select(CustomerLookup.customer_id).where(
            CustomerLookup.key_type == key_type, CustomerLookup.key_value == key_value
        )
        return self.session.execute(stmt).scalars().first()

    def find_all(self) -> list[CustomerLookup]:
        stmt = select(CustomerLookup).order_by(CustomerLookup.key_type, CustomerLookup.key_value)
        return list(self.session.execute(stmt).scalars())
