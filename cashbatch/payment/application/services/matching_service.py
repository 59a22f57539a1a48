"""Auto-apply: resolve customers and exactly match payments to open invoices.

One run over a batch is one database transaction. Every payment is processed
inside its own SAVEPOINT so a failure rolls back only that payment; the
transaction is committed once every payment has been attempted.

Outcomes per payment:
- matched                 lines replaced, status AutoApplied
- unresolved customer     status NeedsReview
- no exact match          status NeedsReview
- invoice source failure  treated as zero invoices, status NeedsReview
- re-match miss on an AutoApplied payment: lines and status are kept
- concurrency conflict    payment dropped from the session, run continues
- any other exception     savepoint rolled back, status unchanged, run continues
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ....exceptions import (
    BatchFatalError,
    ConcurrencyConflictError,
    PaymentStateError,
    SourceUnavailableError,
    wrap_exception,
)
from ....utils.logging import clear_correlation_id, get_logger, set_correlation_id
from ...domain.enums import PaymentOutcome, PaymentStatus
from ...domain.models import Payment, PaymentLine
from ...domain.value_objects import AutoApplyResult, ExactMatch, OpenInvoice
from ...infrastructure.invoice_source import OpenInvoiceProvider
from ...infrastructure.repository import BatchRepository, PaymentRepository
from ...matchers.candidates import identify_deduction
from ...matchers.exact import ExactMatchFinder
from ...metrics import record_payment_outcome, track_batch_duration
from .customer_resolution import CustomerResolver

logger = get_logger(__name__)

_UNMATCHED_MESSAGES = {
    PaymentOutcome.UNRESOLVED: "No customer found for bank identity",
    PaymentOutcome.NO_MATCH: "No exact invoice combination for payment amount",
    PaymentOutcome.SOURCE_UNAVAILABLE: "Open invoices unavailable",
}


class AutoApplyService:
    """Run the matching engine over a batch or a single payment.

    Args:
        session: Session owning the run's transaction
        invoice_provider: Source of a customer's open invoices
        finder: Exact-match search (defaults to the standard limits)
        resolver: Customer resolver (defaults to one on ``session``)
    """

    def __init__(
        self,
        session: Session,
        invoice_provider: OpenInvoiceProvider,
        finder: ExactMatchFinder | None = None,
        resolver: CustomerResolver | None = None,
    ) -> None:
        self.session = session
        self.invoice_provider = invoice_provider
        self.finder = finder or ExactMatchFinder()
        self.resolver = resolver or CustomerResolver(session)
        self.payments = PaymentRepository(session)
        self.batches = BatchRepository(session)

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    def auto_apply(self, batch_id: int) -> AutoApplyResult:
        """Process every Imported and NeedsReview payment of a batch.

        Raises:
            RecordNotFoundError: If the batch does not exist
            BatchFatalError: If the run's transaction cannot begin or commit
        """
        correlation_id = set_correlation_id()
        result = AutoApplyResult(batch_id=batch_id)
        try:
            with track_batch_duration():
                logger.info("auto_apply_started", batch_id=batch_id)

                try:
                    self.batches.get_or_raise(batch_id)
                    result.resolved_in_bulk = self._bulk_assign(batch_id)
                    payments = self.payments.find_matchable(batch_id)
                except SQLAlchemyError as e:
                    self.session.rollback()
                    raise wrap_exception(
                        e,
                        "Unable to start auto-apply run",
                        exception_class=BatchFatalError,
                        batch_id=batch_id,
                    ) from e

                logger.info(
                    "auto_apply_payments_loaded",
                    batch_id=batch_id,
                    imported=sum(1 for p in payments if p.status == PaymentStatus.IMPORTED),
                    needs_review=sum(1 for p in payments if p.status == PaymentStatus.NEEDS_REVIEW),
                )

                for payment in payments:
                    outcome, error = self._process_isolated(payment)
                    result.record(outcome)
                    record_payment_outcome(str(outcome))
                    if error:
                        result.errors.append(error)

                self._commit(batch_id=batch_id)

            logger.info(
                "auto_apply_finished",
                batch_id=batch_id,
                correlation_id=correlation_id,
                **result.to_dict(),
            )
            return result
        finally:
            clear_correlation_id()

    def _bulk_assign(self, batch_id: int) -> int:
        try:
            with self.session.begin_nested():
                return self.resolver.bulk_assign(batch_id)
        except SQLAlchemyError as e:
            logger.warning(
                "bulk_customer_assign_failed",
                batch_id=batch_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

    def _process_isolated(self, payment: Payment) -> tuple[PaymentOutcome, str | None]:
        """Process one payment inside a savepoint, absorbing its failures."""
        payment_id = payment.id
        try:
            with self.session.begin_nested():
                outcome = self.process_payment(payment)
            return outcome, None
        except (StaleDataError, ConcurrencyConflictError) as e:
            logger.warning("payment_concurrency_conflict", payment_id=payment_id, error=str(e))
            if payment in self.session:
                self.session.expunge(payment)
            return PaymentOutcome.CONFLICT, f"Payment {payment_id}: concurrency conflict"
        except Exception as e:
            logger.error(
                "payment_processing_failed",
                payment_id=payment_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self._log_fault(payment, e)
            return PaymentOutcome.FAULT, f"Payment {payment_id}: {type(e).__name__}: {e}"

    def _log_fault(self, payment: Payment, error: Exception) -> None:
        try:
            with self.session.begin_nested():
                self.payments.add_log(
                    payment, f"Auto-apply failed: {type(error).__name__}: {error}", level="Error"
                )
        except SQLAlchemyError as e:
            logger.warning("match_log_write_failed", payment_id=payment.id, error=str(e))

    def _commit(self, **context: object) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise wrap_exception(
                e, "Auto-apply commit failed", exception_class=BatchFatalError, **context
            ) from e

    # ------------------------------------------------------------------
    # Single payment
    # ------------------------------------------------------------------

    def rematch_payment(self, payment_id: int) -> PaymentOutcome:
        """Run the matching pipeline on one payment and commit.

        Raises:
            RecordNotFoundError: If the payment does not exist
            PaymentStateError: If the payment was already exported
            ConcurrencyConflictError: If the payment changed concurrently
            BatchFatalError: If the commit fails
        """
        payment = self.payments.get_or_raise(payment_id)
        if payment.status == PaymentStatus.EXPORTED:
            raise PaymentStateError(
                "Exported payments cannot be re-matched",
                payment_id=payment_id,
                current_state=str(payment.status),
                attempted_state=str(PaymentStatus.AUTO_APPLIED),
            )

        try:
            outcome = self.process_payment(payment)
            self.session.flush()
        except StaleDataError as e:
            self.session.rollback()
            raise ConcurrencyConflictError(
                "Payment changed while being re-matched",
                context={"payment_id": payment_id},
                original_error=e,
            ) from e

        self._commit(payment_id=payment_id)
        record_payment_outcome(str(outcome))
        logger.info("payment_rematched", payment_id=payment_id, outcome=str(outcome))
        return outcome

    def process_payment(self, payment: Payment) -> PaymentOutcome:
        """Resolve, fetch, search and apply for one payment (no commit)."""
        logger.info(
            "payment_processing",
            payment_id=payment.id,
            check_number=payment.check_number,
            amount=str(payment.amount),
            customer_id=payment.customer_id,
        )

        if payment.needs_customer:
            customer_id = self.resolver.resolve(payment)
            if customer_id:
                payment.customer_id = customer_id
                self.payments.add_log(payment, f"Customer {customer_id} resolved from lookup")

        if payment.needs_customer:
            return self._mark_unmatched(payment, PaymentOutcome.UNRESOLVED)

        invoices, source_error = self._fetch_invoices(payment.customer_id)
        match = self.finder.find(invoices, payment.amount)
        if match is None:
            if source_error is not None:
                return self._mark_unmatched(
                    payment, PaymentOutcome.SOURCE_UNAVAILABLE, detail=source_error.message
                )
            return self._mark_unmatched(
                payment, PaymentOutcome.NO_MATCH, detail=f"{len(invoices)} open invoice(s)"
            )

        self.apply_match(payment, match)
        return PaymentOutcome.AUTO_APPLIED

    def _fetch_invoices(
        self, customer_id: str
    ) -> tuple[list[OpenInvoice], SourceUnavailableError | None]:
        try:
            invoices = self.invoice_provider.get_open_invoices(customer_id)
        except SourceUnavailableError as e:
            logger.warning(
                "open_invoices_unavailable",
                customer_id=customer_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return [], e

        logger.info("open_invoices_retrieved", customer_id=customer_id, count=len(invoices))
        return invoices, None

    def apply_match(self, payment: Payment, match: ExactMatch) -> None:
        """Replace the payment's lines with the match and mark it AutoApplied."""
        lines = []
        for selection in match.selections:
            deduction = identify_deduction(selection.candidates, selection.amount)
            lines.append(
                PaymentLine(
                    payment_number=payment.payment_number,
                    invoice_no=selection.invoice.invoice_no,
                    applied_amount=selection.amount,
                    was_auto_matched=True,
                    freight_taken_amt=deduction.freight_taken,
                    terms_taken_amt=deduction.terms_taken,
                    branch_id=selection.invoice.branch_id,
                )
            )

        payment.replace_lines(lines)
        payment.mark_auto_applied()
        self.payments.add_log(
            payment,
            f"Auto-applied {match.total} to {len(lines)} invoice(s) via {match.stage} search",
        )
        logger.info(
            "payment_auto_applied",
            payment_id=payment.id,
            stage=match.stage,
            lines=len(lines),
            total=str(match.total),
        )

    def _mark_unmatched(
        self, payment: Payment, outcome: PaymentOutcome, detail: str | None = None
    ) -> PaymentOutcome:
        message = _UNMATCHED_MESSAGES[outcome]
        if detail:
            message = f"{message} ({detail})"

        if payment.status == PaymentStatus.AUTO_APPLIED:
            # Status never moves backward; the previous match stands
            self.payments.add_log(payment, f"{message}; previous match kept", level="Warning")
            logger.warning(
                "rematch_failed_previous_match_kept",
                payment_id=payment.id,
                reason=str(outcome),
            )
            return PaymentOutcome.KEPT

        payment.mark_needs_review()
        self.payments.add_log(payment, message, level="Warning")
        logger.info("payment_needs_review", payment_id=payment.id, reason=str(outcome))
        return outcome
