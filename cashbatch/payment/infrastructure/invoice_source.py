"""ERP read-side queries: open invoices and customer hints.

The ERP exposes stored procedures whose parameter names are not guaranteed,
so the open-invoice call is retried with each candidate parameter name in turn
and the first binding the server accepts wins.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from ...exceptions import ConfigurationError, InvoiceSourceTimeoutError, SourceUnavailableError
from ...utils.config import DEFAULT_PARAM_CANDIDATES, Settings
from ...utils.logging import get_logger
from ...utils.timeouts import call_with_timeout
from ..domain.value_objects import OpenInvoice
from ..metrics import record_invoice_source_failure
from .row_mapping import InvoiceRowMapper, parse_text

logger = get_logger(__name__)

DEFAULT_OPEN_INVOICES_PROCEDURE = "jbi_sp_cash_batch_open_invoices"
DEFAULT_CUSTOMER_LOOKUP_PROCEDURE = "jbi_sp_cash_batch_customer_lookup"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def _check_identifier(value: str, setting: str) -> str:
    # Procedure and parameter names are spliced into SQL text
    if not _IDENTIFIER.match(value):
        raise ConfigurationError(f"Invalid SQL identifier: {value!r}", setting=setting)
    return value


class OpenInvoiceSource(Protocol):
    """Anything that can return raw open-invoice rows for a customer."""

    def fetch_rows(self, customer_id: str) -> list[Mapping[str, Any]]: ...


class CustomerHintSource(Protocol):
    """Anything that can suggest a customer from a remittance invoice number."""

    def lookup(self, invoice_number: str) -> str | None: ...


class StoredProcedureInvoiceSource:
    """Call the ERP open-invoice stored procedure.

    Args:
        engine: Engine bound to the ERP read database
        procedure: Stored procedure name
        param_candidates: Parameter names tried in order
    """

    def __init__(
        self,
        engine: Engine,
        procedure: str = DEFAULT_OPEN_INVOICES_PROCEDURE,
        param_candidates: Sequence[str] = DEFAULT_PARAM_CANDIDATES,
    ) -> None:
        self.engine = engine
        self.procedure = _check_identifier(procedure, "open_invoices_procedure")
        self.param_candidates = [
            _check_identifier(name.lstrip("@"), "invoice_param_candidates")
            for name in param_candidates
        ]
        if not self.param_candidates:
            raise ConfigurationError(
                "At least one parameter candidate is required",
                setting="invoice_param_candidates",
            )

    def _statement(self, param_name: str) -> Any:
        return text(f"EXEC {self.procedure} @{param_name} = :customer_id")

    def fetch_rows(self, customer_id: str) -> list[Mapping[str, Any]]:
        """Return the raw rows for ``customer_id``.

        Raises:
            SourceUnavailableError: If the database is unreachable or every
                parameter name was rejected
        """
        tried: list[str] = []
        try:
            with self.engine.connect() as conn:
                for name in self.param_candidates:
                    tried.append(name)
                    try:
                        result = conn.execute(self._statement(name), {"customer_id": customer_id})
                        rows = [dict(row) for row in result.mappings().all()]
                    except DBAPIError as e:
                        logger.debug(
                            "open_invoice_param_rejected",
                            procedure=self.procedure,
                            param=name,
                            error=str(e.orig or e),
                        )
                        conn.rollback()
                        continue

                    logger.debug(
                        "open_invoices_fetched",
                        customer_id=customer_id,
                        param=name,
                        rows=len(rows),
                    )
                    return rows
        except SQLAlchemyError as e:
            raise SourceUnavailableError(
                "Open-invoice source unreachable",
                customer_id=customer_id,
                tried=tried,
                original_error=e,
            ) from e

        raise SourceUnavailableError(
            "Open-invoice query rejected every parameter name",
            customer_id=customer_id,
            tried=tried,
        )


class StoredProcedureCustomerHintSource:
    """Ask the ERP which customer owns an invoice number.

    Failures are logged and reported as "no suggestion".
    """

    def __init__(
        self,
        engine: Engine,
        procedure: str = DEFAULT_CUSTOMER_LOOKUP_PROCEDURE,
        param_name: str = "InvoiceNo",
    ) -> None:
        self.engine = engine
        self.procedure = _check_identifier(procedure, "customer_lookup_procedure")
        self.param_name = _check_identifier(param_name, "customer_lookup_param")

    def lookup(self, invoice_number: str) -> str | None:
        invoice_number = (invoice_number or "").strip()
        if not invoice_number:
            return None

        statement = text(f"EXEC {self.procedure} @{self.param_name} = :invoice_no")
        try:
            with self.engine.connect() as conn:
                first = conn.execute(statement, {"invoice_no": invoice_number}).mappings().first()
        except SQLAlchemyError as e:
            logger.warning(
                "customer_hint_unavailable", invoice_number=invoice_number, error=str(e)
            )
            return None

        if first is None:
            return None
        for key, value in first.items():
            if str(key).lower() == "customer_id":
                return parse_text(value)
        return None


class OpenInvoiceProvider:
    """Fetch, time-box and map open invoices for one customer.

    Results are never cached: every call goes to the source.

    Args:
        source: Raw row source
        mapper: Row mapper (defaults to the standard alias table)
        timeout_seconds: Per-call timeout; None disables it
    """

    def __init__(
        self,
        source: OpenInvoiceSource,
        mapper: InvoiceRowMapper | None = None,
        timeout_seconds: float | None = 30.0,
    ) -> None:
        self.source = source
        self.mapper = mapper or InvoiceRowMapper()
        self.timeout_seconds = timeout_seconds

    def get_open_invoices(self, customer_id: str) -> list[OpenInvoice]:
        """Return the customer's open invoices.

        Raises:
            InvoiceSourceTimeoutError: If the query exceeded the timeout
            SourceUnavailableError: If the query could not be completed
        """
        try:
            rows = call_with_timeout(
                self.source.fetch_rows, customer_id, timeout=self.timeout_seconds
            )
        except TimeoutError as e:
            record_invoice_source_failure("timeout")
            raise InvoiceSourceTimeoutError(
                f"Open-invoice query timed out after {self.timeout_seconds}s",
                customer_id=customer_id,
                original_error=e,
            ) from e
        except SourceUnavailableError:
            record_invoice_source_failure("unavailable")
            raise

        return self.mapper.map_rows(rows)


def create_erp_engine(settings: Settings) -> Engine:
    """Create the engine for the ERP read database.

    Raises:
        ConfigurationError: If no ERP database URL is configured
    """
    if not settings.erp_database_url:
        raise ConfigurationError(
            "ERP database URL is not configured", setting="erp_database_url"
        )
    return create_engine(settings.erp_database_url, pool_pre_ping=True)


def build_invoice_provider(settings: Settings, engine: Engine | None = None) -> OpenInvoiceProvider:
    """Wire an ``OpenInvoiceProvider`` from settings."""
    engine = engine or create_erp_engine(settings)
    source = StoredProcedureInvoiceSource(
        engine,
        procedure=settings.open_invoices_procedure,
        param_candidates=settings.invoice_param_candidates,
    )
    return OpenInvoiceProvider(source, timeout_seconds=settings.invoice_timeout_seconds)


def build_customer_hint_source(
    settings: Settings, engine: Engine | None = None
) -> StoredProcedureCustomerHintSource:
    """Wire the customer-hint source from settings."""
    return StoredProcedureCustomerHintSource(
        engine or create_erp_engine(settings),
        procedure=settings.customer_lookup_procedure,
    )
