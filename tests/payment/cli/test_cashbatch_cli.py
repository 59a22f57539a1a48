"""Tests for the payment CLI - Typer commands with CliRunner.

Commands run against the in-memory test database; the ERP is replaced by the
fake open-invoice source.
"""

from contextlib import nullcontext
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from cashbatch import __version__
from cashbatch.cli.main import app as root_app
from cashbatch.exceptions import ConfigurationError
from cashbatch.payment.cli.payment_cli import app
from cashbatch.payment.domain.enums import PaymentStatus
from cashbatch.payment.domain.models import PaymentLine
from cashbatch.payment.infrastructure.repository import (
    CustomerLookupRepository,
    PaymentRepository,
)
from tests.factories import invoice_row

pytestmark = pytest.mark.integration

runner = CliRunner()

CLI = "cashbatch.payment.cli.payment_cli"


@pytest.fixture(autouse=True)
def cli_env(mocker, db_session, invoice_provider, test_settings):
    """Point the CLI at the test session, fake ERP and test settings."""
    mocker.patch(f"{CLI}.get_db_session", side_effect=lambda: nullcontext(db_session))
    mocker.patch(f"{CLI}.get_invoice_provider", return_value=invoice_provider)
    mocker.patch(f"{CLI}.get_settings", return_value=test_settings)


class TestAutoApplyCommand:
    """Tests for 'auto-apply' and 'rematch'."""

    def test_auto_apply_summary(self, db_session, fake_source, make_payment, sample_batch):
        fake_source.rows["C1"] = [invoice_row("I1", "100.00")]
        payment = make_payment("100.00", customer_id="C1")

        result = runner.invoke(app, ["auto-apply", str(sample_batch.id)])

        assert result.exit_code == 0, result.output
        assert "Auto-applied" in result.output
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.AUTO_APPLIED

    def test_auto_apply_unknown_batch(self):
        result = runner.invoke(app, ["auto-apply", "9999"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_auto_apply_without_erp(self, mocker, sample_batch):
        mocker.patch(
            f"{CLI}.get_invoice_provider",
            side_effect=ConfigurationError("ERP database URL is not configured"),
        )

        result = runner.invoke(app, ["auto-apply", str(sample_batch.id)])

        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_rematch(self, fake_source, make_payment):
        fake_source.rows["C1"] = [invoice_row("I1", "10.00")]
        payment = make_payment("10.00", customer_id="C1", status=PaymentStatus.NEEDS_REVIEW)

        result = runner.invoke(app, ["rematch", str(payment.id)])

        assert result.exit_code == 0, result.output
        assert "auto_applied" in result.output

    def test_rematch_exported_refused(self, make_payment):
        payment = make_payment("10.00", customer_id="C1", status=PaymentStatus.EXPORTED)

        result = runner.invoke(app, ["rematch", str(payment.id)])

        assert result.exit_code == 1
        assert "Exported payments cannot be re-matched" in result.output


class TestReviewCommands:
    """Tests for listing and review commands."""

    def test_batches(self, sample_batch):
        result = runner.invoke(app, ["batches"])

        assert result.exit_code == 0
        assert "DEP-0315" in result.output

    def test_batches_empty(self):
        result = runner.invoke(app, ["batches", "--status", "Completed"])

        assert result.exit_code == 0
        assert "No batches found" in result.output

    def test_payments_needs_review(self, make_payment, sample_batch):
        make_payment("12.34", check_number="REVIEW1", status=PaymentStatus.NEEDS_REVIEW)
        make_payment("56.78", check_number="DONE1", status=PaymentStatus.AUTO_APPLIED)

        result = runner.invoke(app, ["payments", str(sample_batch.id), "--needs-review"])

        assert result.exit_code == 0
        assert "REVIEW1" in result.output
        assert "DONE1" not in result.output

    def test_applied_without_enrichment(self, db_session, make_payment):
        payment = make_payment("25.00", customer_id="C1", status=PaymentStatus.AUTO_APPLIED)
        payment.lines.append(PaymentLine(invoice_no="INV-77", applied_amount=Decimal("25.00")))
        db_session.commit()

        result = runner.invoke(app, ["applied", str(payment.id), "--no-enrich"])

        assert result.exit_code == 0
        assert "INV-77" in result.output
        assert "25.00" in result.output

    def test_logs(self, db_session, make_payment):
        payment = make_payment()
        PaymentRepository(db_session).add_log(payment, "Hello reviewer", level="Warning")
        db_session.commit()

        result = runner.invoke(app, ["logs", str(payment.id)])

        assert result.exit_code == 0
        assert "Hello reviewer" in result.output

    def test_assign(self, db_session, make_payment):
        payment = make_payment(bank_number="021", account_number="111")

        result = runner.invoke(app, ["assign", str(payment.id), "C7"])

        assert result.exit_code == 0, result.output
        assert "assigned to customer C7" in result.output
        assert CustomerLookupRepository(db_session).find_all()[0].key_value == "021|111"

    def test_assign_zero_rejected(self, make_payment):
        payment = make_payment()

        result = runner.invoke(app, ["assign", str(payment.id), "0"])

        assert result.exit_code == 1

    def test_suggest(self, mocker):
        hints = mocker.Mock()
        hints.lookup.return_value = "C5"
        mocker.patch(f"{CLI}.get_hint_source", return_value=hints)

        result = runner.invoke(app, ["suggest", "INV-1"])

        assert result.exit_code == 0
        assert "customer C5" in result.output

    def test_close(self, db_session, sample_batch):
        result = runner.invoke(app, ["close", str(sample_batch.id)])

        assert result.exit_code == 0
        assert "Closed 1 batch" in result.output


class TestLookupCommands:
    def test_lookup_set_then_list(self):
        set_result = runner.invoke(app, ["lookup-set", "BankAcct", "111", "C1", "-c", "0.9"])
        list_result = runner.invoke(app, ["lookups"])

        assert set_result.exit_code == 0, set_result.output
        assert "BankAcct" in list_result.output
        assert "0.90" in list_result.output

    def test_lookup_set_unknown_type(self):
        result = runner.invoke(app, ["lookup-set", "Routing", "111", "C1"])

        assert result.exit_code == 1
        assert "Unknown lookup key type" in result.output


class TestExportCommand:
    def test_export(self, db_session, make_payment, sample_batch, test_settings):
        payment = make_payment("10.00", customer_id="C1", status=PaymentStatus.AUTO_APPLIED)
        payment.lines.append(PaymentLine(invoice_no="I1", applied_amount=Decimal("10.00")))
        db_session.commit()

        result = runner.invoke(
            app, ["export", str(sample_batch.id), "--payment-date", "2025-03-17"]
        )

        assert result.exit_code == 0, result.output
        assert "Exported 1 payment" in result.output
        assert (test_settings.export_directory / "DEP-0315_detail.txt").exists()

    def test_export_nothing(self, sample_batch):
        result = runner.invoke(app, ["export", str(sample_batch.id)])

        assert result.exit_code == 0
        assert "No AutoApplied payments" in result.output


class TestRootApp:
    def test_version(self):
        result = runner.invoke(root_app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output
