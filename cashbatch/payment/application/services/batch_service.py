"""Batch review operations: listing, manual assignment, suggestions and closing."""

from collections.abc import Iterable

from sqlalchemy.orm import Session

from ....exceptions import PaymentStateError, SourceUnavailableError, ValidationError
from ....utils.logging import get_logger
from ...domain.enums import BatchStatus, LookupKeyType, PaymentStatus
from ...domain.models import UNRESOLVED_CUSTOMER_VALUES, Batch, Payment
from ...domain.value_objects import AppliedLineView, OpenInvoice
from ...infrastructure.invoice_source import CustomerHintSource, OpenInvoiceProvider
from ...infrastructure.repository import BatchRepository, PaymentRepository
from .lookup_service import LookupService

logger = get_logger(__name__)


class BatchService:
    """Read and review operations over batches and their payments.

    Args:
        session: Database session; write operations commit on it
        invoice_provider: Optional open-invoice source used to enrich applied lines
        hint_source: Optional ERP customer-hint source used for suggestions
    """

    def __init__(
        self,
        session: Session,
        invoice_provider: OpenInvoiceProvider | None = None,
        hint_source: CustomerHintSource | None = None,
    ) -> None:
        self.session = session
        self.invoice_provider = invoice_provider
        self.hint_source = hint_source
        self.batches = BatchRepository(session)
        self.payments = PaymentRepository(session)
        self.lookups = LookupService(session)

    def get_recent(self, limit: int = 100, status: BatchStatus | None = None) -> list[Batch]:
        return self.batches.find_recent(limit=limit, status=status)

    def get_payments(self, batch_id: int) -> list[Payment]:
        return self.payments.find_by_batch(batch_id)

    def get_needs_review(self, batch_id: int) -> list[Payment]:
        return self.payments.find_by_batch(batch_id, statuses=(PaymentStatus.NEEDS_REVIEW,))

    def get_applied(self, payment_id: int) -> list[AppliedLineView]:
        """Applied lines of a payment, enriched with current ERP invoice figures.

        Enrichment is best effort: when the source fails the lines are
        returned with only their stored values.
        """
        payment = self.payments.get_or_raise(payment_id)
        lines = self.payments.find_lines(payment_id)

        info: dict[str, OpenInvoice] = {}
        if self.invoice_provider is not None and not payment.needs_customer:
            try:
                for invoice in self.invoice_provider.get_open_invoices(payment.customer_id):
                    info.setdefault(invoice.invoice_no.lower(), invoice)
            except SourceUnavailableError as e:
                logger.warning(
                    "applied_lines_enrichment_failed", payment_id=payment_id, error=str(e)
                )

        views = []
        for line in lines:
            invoice = info.get((line.invoice_no or "").lower())
            views.append(
                AppliedLineView(
                    invoice_no=line.invoice_no,
                    applied_amount=line.applied_amount,
                    was_auto_matched=line.was_auto_matched,
                    branch_id=(invoice.branch_id if invoice else None) or line.branch_id,
                    net_due_date=invoice.due_date if invoice else None,
                    amount_remaining=invoice.amount_remaining if invoice else None,
                    freight_allowed=invoice.freight_allowed if invoice else None,
                    terms_amount=invoice.terms_amount if invoice else None,
                )
            )

        logger.info("applied_lines_loaded", payment_id=payment_id, count=len(views))
        return views

    def assign_customer(self, payment_id: int, customer_id: str) -> Payment:
        """Manually assign a customer and remember the payment's bank identity.

        The ``bank_number|account`` key is upserted into the lookup table so
        future payments from the same account resolve automatically.

        Raises:
            ValidationError: If ``customer_id`` is blank or "0"
            PaymentStateError: If the payment was already exported
            RecordNotFoundError: If the payment does not exist
        """
        customer_id = (customer_id or "").strip()
        if customer_id in UNRESOLVED_CUSTOMER_VALUES:
            raise ValidationError("A customer id is required", field="customer_id", value=customer_id)

        payment = self.payments.get_or_raise(payment_id)
        if payment.status == PaymentStatus.EXPORTED:
            raise PaymentStateError(
                "Cannot reassign the customer of an exported payment",
                payment_id=payment_id,
                current_state=str(payment.status),
            )

        payment.customer_id = customer_id
        self.payments.add_log(payment, f"Customer {customer_id} assigned manually")

        key = payment.route_account_key
        if key:
            self.lookups.upsert(LookupKeyType.BANK_ROUTE_ACCT, key, customer_id, 1.0)

        self.session.commit()
        logger.info(
            "customer_assigned",
            payment_id=payment_id,
            customer_id=customer_id,
            lookup_saved=bool(key),
        )
        return payment

    def suggest_customer(self, invoice_number: str) -> str | None:
        """Ask the ERP which customer owns a remittance invoice number."""
        if self.hint_source is None:
            return None
        return self.hint_source.lookup(invoice_number)

    def close_batches(self, batch_ids: Iterable[int]) -> int:
        """Mark batches as completed and return how many were closed."""
        batches = self.batches.find_by_ids(batch_ids)
        for batch in batches:
            batch.close()
        self.session.commit()
        logger.info("batches_closed", batch_ids=[b.id for b in batches])
        return len(batches)
