"""Tests for the ERP open-invoice and customer-hint sources."""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from cashbatch.exceptions import (
    ConfigurationError,
    InvoiceSourceTimeoutError,
    SourceUnavailableError,
)
from cashbatch.payment.infrastructure.invoice_source import (
    OpenInvoiceProvider,
    StoredProcedureCustomerHintSource,
    StoredProcedureInvoiceSource,
    build_invoice_provider,
)
from tests.factories import FakeInvoiceSource, invoice_row

pytestmark = pytest.mark.unit


def _rejected(name):
    return DBAPIError(f"EXEC proc @{name}", {}, Exception("Procedure has no parameter"))


@pytest.fixture
def connection(mocker):
    return mocker.MagicMock()


@pytest.fixture
def engine(mocker, connection):
    engine = mocker.MagicMock()
    engine.connect.return_value.__enter__.return_value = connection
    return engine


def _result(mocker, rows):
    result = mocker.MagicMock()
    result.mappings.return_value.all.return_value = rows
    result.mappings.return_value.first.return_value = rows[0] if rows else None
    return result


class TestStoredProcedureInvoiceSource:
    """Tests for parameter-name fallthrough."""

    def test_first_candidate_accepted(self, mocker, engine, connection):
        connection.execute.return_value = _result(mocker, [{"invoice_no": "A"}])
        source = StoredProcedureInvoiceSource(engine, param_candidates=["CustomerId", "CustomerNo"])

        rows = source.fetch_rows("C100")

        assert rows == [{"invoice_no": "A"}]
        assert connection.execute.call_count == 1
        statement, params = connection.execute.call_args.args
        assert "@CustomerId = :customer_id" in str(statement)
        assert params == {"customer_id": "C100"}

    def test_falls_through_rejected_names(self, mocker, engine, connection):
        connection.execute.side_effect = [
            _rejected("CustomerId"),
            _rejected("CustomerNo"),
            _result(mocker, [{"invoice_no": "B"}]),
        ]
        source = StoredProcedureInvoiceSource(
            engine, param_candidates=["CustomerId", "CustomerNo", "cust_no"]
        )

        rows = source.fetch_rows("C100")

        assert rows == [{"invoice_no": "B"}]
        assert "@cust_no" in str(connection.execute.call_args.args[0])
        assert connection.rollback.call_count == 2

    def test_every_name_rejected(self, engine, connection):
        connection.execute.side_effect = [_rejected("a"), _rejected("b")]
        source = StoredProcedureInvoiceSource(engine, param_candidates=["a", "b"])

        with pytest.raises(SourceUnavailableError) as exc_info:
            source.fetch_rows("C100")

        assert exc_info.value.context["tried"] == "a,b"
        assert exc_info.value.context["customer_id"] == "C100"

    def test_unreachable_database(self, engine):
        engine.connect.side_effect = OperationalError("connect", {}, Exception("refused"))
        source = StoredProcedureInvoiceSource(engine)

        with pytest.raises(SourceUnavailableError):
            source.fetch_rows("C100")

    def test_at_prefix_stripped(self, engine):
        source = StoredProcedureInvoiceSource(engine, param_candidates=["@CustomerId"])

        assert source.param_candidates == ["CustomerId"]

    @pytest.mark.parametrize(
        ("procedure", "params"),
        [("proc; DROP TABLE x", ["CustomerId"]), ("proc", ["Customer Id"]), ("proc", [])],
    )
    def test_invalid_configuration(self, engine, procedure, params):
        with pytest.raises(ConfigurationError):
            StoredProcedureInvoiceSource(engine, procedure=procedure, param_candidates=params)


class TestStoredProcedureCustomerHintSource:
    """Tests for customer suggestions from invoice numbers."""

    def test_returns_customer_column(self, mocker, engine, connection):
        connection.execute.return_value = _result(mocker, [{"Customer_ID": " C200 "}])
        source = StoredProcedureCustomerHintSource(engine)

        assert source.lookup("INV-9") == "C200"

    def test_no_rows(self, mocker, engine, connection):
        connection.execute.return_value = _result(mocker, [])
        source = StoredProcedureCustomerHintSource(engine)

        assert source.lookup("INV-9") is None

    def test_blank_invoice_number_skips_query(self, engine):
        source = StoredProcedureCustomerHintSource(engine)

        assert source.lookup("  ") is None
        engine.connect.assert_not_called()

    def test_failure_returns_none(self, engine):
        engine.connect.side_effect = OperationalError("connect", {}, Exception("refused"))
        source = StoredProcedureCustomerHintSource(engine)

        assert source.lookup("INV-9") is None


class TestOpenInvoiceProvider:
    """Tests for mapping and time-boxing."""

    def test_maps_rows(self):
        source = FakeInvoiceSource({"C1": [invoice_row("A", "10.00", freight="-1.00")]})
        provider = OpenInvoiceProvider(source, timeout_seconds=None)

        invoices = provider.get_open_invoices("C1")

        assert len(invoices) == 1
        assert invoices[0].freight_allowed == Decimal("0.00")

    def test_never_caches(self):
        source = FakeInvoiceSource({"C1": [invoice_row("A", "10.00")]})
        provider = OpenInvoiceProvider(source, timeout_seconds=None)

        provider.get_open_invoices("C1")
        provider.get_open_invoices("C1")

        assert source.calls == ["C1", "C1"]

    def test_unavailable_propagates(self):
        provider = OpenInvoiceProvider(FakeInvoiceSource(unavailable={"C1"}), timeout_seconds=None)

        with pytest.raises(SourceUnavailableError):
            provider.get_open_invoices("C1")

    def test_timeout_raises_source_timeout(self, mocker):
        release = threading.Event()
        source = mocker.Mock()
        source.fetch_rows.side_effect = lambda customer_id: release.wait(5) or []
        provider = OpenInvoiceProvider(source, timeout_seconds=0.05)

        try:
            with pytest.raises(InvoiceSourceTimeoutError) as exc_info:
                provider.get_open_invoices("C1")
        finally:
            release.set()

        assert isinstance(exc_info.value, SourceUnavailableError)
        assert exc_info.value.context["customer_id"] == "C1"


class TestBuildInvoiceProvider:
    """Tests for wiring from settings."""

    def test_uses_configured_candidates_and_timeout(self, test_settings, engine):
        test_settings.invoice_param_candidates = ["CustNo"]
        test_settings.invoice_timeout_seconds = 12.5

        provider = build_invoice_provider(test_settings, engine=engine)

        assert provider.timeout_seconds == 12.5
        assert provider.source.param_candidates == ["CustNo"]

    def test_missing_erp_url(self, test_settings):
        test_settings.erp_database_url = None

        with pytest.raises(ConfigurationError):
            build_invoice_provider(test_settings)
