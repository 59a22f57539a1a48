"""Tests for AutoApplyService: batch runs and single-payment re-match."""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from cashbatch.exceptions import BatchFatalError, PaymentStateError, RecordNotFoundError
from cashbatch.payment.application.services.matching_service import AutoApplyService
from cashbatch.payment.domain.enums import LookupKeyType, PaymentOutcome, PaymentStatus
from cashbatch.payment.domain.models import CustomerLookup, Payment
from cashbatch.payment.infrastructure.invoice_source import OpenInvoiceProvider
from cashbatch.payment.infrastructure.repository import PaymentRepository
from tests.factories import invoice_row

pytestmark = pytest.mark.integration


@pytest.fixture
def service(db_session, invoice_provider):
    return AutoApplyService(db_session, invoice_provider)


def _lines(payment):
    return sorted(
        (line.invoice_no, line.applied_amount, line.freight_taken_amt, line.terms_taken_amt)
        for line in payment.lines
    )


class TestAutoApplyBatch:
    """End-to-end runs over a batch."""

    def test_single_invoice_match(self, db_session, service, fake_source, make_payment, sample_batch):
        fake_source.rows["C1"] = [invoice_row("I1", "100.00", branch="03")]
        payment = make_payment("100.00", customer_id="C1")

        result = service.auto_apply(sample_batch.id)

        assert result.auto_applied == 1
        assert result.total == 1
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.AUTO_APPLIED
        assert _lines(payment) == [("I1", Decimal("100.00"), None, None)]
        line = payment.lines[0]
        assert line.was_auto_matched is True
        assert line.branch_id == "03"
        assert line.payment_number == payment.id

    def test_less_freight_match_records_deduction(
        self, db_session, service, fake_source, make_payment, sample_batch
    ):
        fake_source.rows["C1"] = [invoice_row("I1", "100.00", freight="5.00")]
        payment = make_payment("95.00", customer_id="C1")

        service.auto_apply(sample_batch.id)

        db_session.refresh(payment)
        assert _lines(payment) == [("I1", Decimal("95.00"), Decimal("5.00"), None)]

    def test_pair_match(self, db_session, service, fake_source, make_payment, sample_batch):
        fake_source.rows["C1"] = [invoice_row("I1", "60.00"), invoice_row("I2", "40.00")]
        payment = make_payment("100.00", customer_id="C1")

        service.auto_apply(sample_batch.id)

        db_session.refresh(payment)
        assert [line[:2] for line in _lines(payment)] == [
            ("I1", Decimal("60.00")),
            ("I2", Decimal("40.00")),
        ]
        assert payment.applied_total == payment.amount

    def test_no_match_needs_review(self, db_session, service, fake_source, make_payment, sample_batch):
        fake_source.rows["C1"] = [invoice_row("I1", "60.00"), invoice_row("I2", "40.00")]
        payment = make_payment("99.99", customer_id="C1")

        result = service.auto_apply(sample_batch.id)

        assert result.no_match == 1
        assert result.needs_review == 1
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.NEEDS_REVIEW
        assert payment.lines == []
        messages = [log.message for log in PaymentRepository(db_session).find_logs(payment.id)]
        assert any("No exact invoice combination" in m for m in messages)

    @pytest.mark.parametrize("customer_id", [None, "", "0"])
    def test_unresolved_customer(
        self, db_session, service, fake_source, make_payment, sample_batch, customer_id
    ):
        payment = make_payment("10.00", customer_id=customer_id, account_number="555")

        result = service.auto_apply(sample_batch.id)

        assert result.unresolved == 1
        assert fake_source.calls == []
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.NEEDS_REVIEW

    def test_customer_resolved_in_bulk_then_matched(
        self, db_session, service, fake_source, make_payment, sample_batch
    ):
        db_session.add(
            CustomerLookup(key_type=LookupKeyType.BANK_ROUTE_ACCT, key_value="021|111", customer_id="C9")
        )
        db_session.commit()
        fake_source.rows["C9"] = [invoice_row("I9", "42.00")]
        payment = make_payment("42.00", bank_number="021", account_number="111")

        result = service.auto_apply(sample_batch.id)

        assert result.resolved_in_bulk == 1
        assert result.auto_applied == 1
        db_session.refresh(payment)
        assert payment.customer_id == "C9"
        assert fake_source.calls == ["C9"]

    def test_source_unavailable_needs_review(
        self, db_session, service, fake_source, make_payment, sample_batch
    ):
        fake_source.unavailable.add("C1")
        payment = make_payment("10.00", customer_id="C1")

        result = service.auto_apply(sample_batch.id)

        assert result.source_unavailable == 1
        assert result.needs_review == 1
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.NEEDS_REVIEW

    def test_source_timeout_needs_review(self, db_session, fake_source, make_payment, sample_batch):
        release = threading.Event()

        class HungSource:
            def fetch_rows(self, customer_id):
                release.wait(5)
                return fake_source.fetch_rows(customer_id)

        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]
        payment = make_payment("10.00", customer_id="C1")
        service = AutoApplyService(
            db_session, OpenInvoiceProvider(HungSource(), timeout_seconds=0.05)
        )

        try:
            result = service.auto_apply(sample_batch.id)
        finally:
            release.set()

        assert result.source_unavailable == 1
        assert result.needs_review == 1
        assert result.faults == 0
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.NEEDS_REVIEW
        assert payment.lines == []
        messages = [log.message for log in PaymentRepository(db_session).find_logs(payment.id)]
        assert any("timed out" in message for message in messages)

    def test_needs_review_payment_matched_on_later_run(
        self, db_session, service, fake_source, make_payment, sample_batch
    ):
        payment = make_payment("10.00", customer_id="C1")
        service.auto_apply(sample_batch.id)
        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]

        result = service.auto_apply(sample_batch.id)

        assert result.auto_applied == 1
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.AUTO_APPLIED

    def test_auto_applied_payments_not_reprocessed(
        self, service, fake_source, make_payment, sample_batch
    ):
        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]
        make_payment("10.00", customer_id="C1")
        service.auto_apply(sample_batch.id)

        result = service.auto_apply(sample_batch.id)

        assert result.total == 0
        assert fake_source.calls == ["C1"]

    def test_fault_isolated_to_one_payment(
        self, db_session, service, fake_source, make_payment, sample_batch, invoice_provider, mocker
    ):
        fake_source.rows["C2"] = [invoice_row("I2", "20.00")]
        bad = make_payment("10.00", customer_id="C-BAD")
        good = make_payment("20.00", customer_id="C2")
        real_fetch = invoice_provider.get_open_invoices

        def fetch(customer_id):
            if customer_id == "C-BAD":
                raise RuntimeError("driver exploded")
            return real_fetch(customer_id)

        mocker.patch.object(invoice_provider, "get_open_invoices", side_effect=fetch)

        result = service.auto_apply(sample_batch.id)

        assert result.faults == 1
        assert result.auto_applied == 1
        assert any("RuntimeError" in e for e in result.errors)
        db_session.refresh(bad)
        db_session.refresh(good)
        assert bad.status == PaymentStatus.IMPORTED
        assert good.status == PaymentStatus.AUTO_APPLIED
        logs = PaymentRepository(db_session).find_logs(bad.id)
        assert [log.level for log in logs] == ["Error"]

    def test_concurrency_conflict_skips_payment(
        self, db_session, service, fake_source, make_payment, sample_batch, mocker
    ):
        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]
        stale = make_payment("10.00", customer_id="C1")
        fresh = make_payment("10.00", customer_id="C1")
        stale_id = stale.id
        real_process = service.process_payment

        def process(payment):
            if payment.id == stale_id:
                raise StaleDataError("row version changed")
            return real_process(payment)

        mocker.patch.object(service, "process_payment", side_effect=process)

        result = service.auto_apply(sample_batch.id)

        assert result.conflicts == 1
        assert result.auto_applied == 1
        assert stale not in db_session
        assert db_session.get(Payment, stale_id).status == PaymentStatus.IMPORTED
        db_session.refresh(fresh)
        assert fresh.status == PaymentStatus.AUTO_APPLIED

    def test_commit_failure_is_fatal(self, db_session, service, make_payment, sample_batch, mocker):
        make_payment("10.00", customer_id="C1")
        mocker.patch.object(
            db_session, "commit", side_effect=OperationalError("COMMIT", {}, Exception("disk full"))
        )

        with pytest.raises(BatchFatalError):
            service.auto_apply(sample_batch.id)

    def test_unknown_batch(self, service):
        with pytest.raises(RecordNotFoundError):
            service.auto_apply(9999)


class TestRematchPayment:
    """Tests for re-running the pipeline on one payment."""

    def test_rematch_is_idempotent(self, db_session, service, fake_source, make_payment, sample_batch):
        fake_source.rows["C1"] = [
            invoice_row("I1", "60.00", terms="1.00"),
            invoice_row("I2", "40.00", freight="2.00"),
        ]
        payment = make_payment("97.00", customer_id="C1")
        service.auto_apply(sample_batch.id)
        db_session.refresh(payment)
        before = _lines(payment)

        outcome = service.rematch_payment(payment.id)

        db_session.refresh(payment)
        assert outcome == PaymentOutcome.AUTO_APPLIED
        assert _lines(payment) == before
        assert len(payment.lines) == 2

    def test_failed_rematch_keeps_previous_match(
        self, db_session, service, fake_source, make_payment, sample_batch
    ):
        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]
        payment = make_payment("10.00", customer_id="C1")
        service.auto_apply(sample_batch.id)
        fake_source.rows["C1"] = []

        outcome = service.rematch_payment(payment.id)

        assert outcome == PaymentOutcome.KEPT
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.AUTO_APPLIED
        assert _lines(payment) == [("I1", Decimal("10.00"), None, None)]
        assert payment.logs[-1].level == "Warning"

    def test_rematch_needs_review_payment(self, db_session, service, fake_source, make_payment):
        payment = make_payment("10.00", customer_id="C1", status=PaymentStatus.NEEDS_REVIEW)
        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]

        assert service.rematch_payment(payment.id) == PaymentOutcome.AUTO_APPLIED

    def test_exported_payment_refused(self, service, make_payment):
        payment = make_payment("10.00", customer_id="C1", status=PaymentStatus.EXPORTED)

        with pytest.raises(PaymentStateError):
            service.rematch_payment(payment.id)

    def test_unknown_payment(self, service):
        with pytest.raises(RecordNotFoundError):
            service.rematch_payment(9999)
