"""Typed mapping of heterogeneous ERP rows to ``OpenInvoice``.

The open-invoice procedure does not guarantee column names, so every logical
field has an ordered alias list. Column names are matched case-insensitively
and the first alias holding a usable value wins; a present but unparseable
value falls through to the next alias.
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any, TypeVar

from ...utils.logging import get_logger
from ...utils.money import ZERO, round_money, to_decimal
from ..domain.value_objects import OpenInvoice

logger = get_logger(__name__)

T = TypeVar("T")

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "invoice_no": (
        "invoice_no",
        "invoice",
        "invoice_num",
        "invoice_number",
        "inv_no",
        "InvoiceNo",
        "InvoiceNumber",
    ),
    "amount_remaining": (
        "amount_remaining",
        "open_amount",
        "balance",
        "amount_due",
        "balance_remaining",
        "amount_open",
        "AmountRemaining",
    ),
    "freight_allowed": (
        "freight_allowed_amt",
        "freight_allowed",
        "freight",
        "FreightAllowedAmt",
    ),
    "terms_amount": ("terms_amount", "terms_amt", "TermsAmount"),
    "due_date": ("net_due_date", "net_due", "due_date", "NetDueDate"),
    "branch_id": ("branch_id", "BranchId", "branchid", "branch"),
}

DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y%m%d")


def parse_text(value: Any) -> str | None:
    """Stripped string, or None when blank."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_date(value: Any) -> date | None:
    """Accept ``date``/``datetime`` objects, ISO strings and US-style dates."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


class InvoiceRowMapper:
    """Map raw result rows to ``OpenInvoice`` objects.

    Amounts are rounded to cents half away from zero and negative deductions
    are clamped to zero. Rows without an invoice number or a remaining balance
    are skipped.
    """

    def __init__(self, aliases: Mapping[str, tuple[str, ...]] | None = None) -> None:
        self.aliases = dict(aliases or FIELD_ALIASES)

    def _first(
        self, row: Mapping[str, Any], field: str, parse: Callable[[Any], T | None]
    ) -> T | None:
        for alias in self.aliases[field]:
            key = alias.lower()
            if key not in row:
                continue
            parsed = parse(row[key])
            if parsed is not None:
                return parsed
        return None

    def map_row(self, row: Mapping[str, Any]) -> OpenInvoice | None:
        """Map one row, returning None (and logging) when it must be skipped."""
        lowered: dict[str, Any] = {}
        for key, value in row.items():
            lowered.setdefault(str(key).lower(), value)

        invoice_no = self._first(lowered, "invoice_no", parse_text)
        remaining = self._first(lowered, "amount_remaining", to_decimal)
        if invoice_no is None or remaining is None:
            logger.warning(
                "open_invoice_row_skipped",
                reason="missing_invoice_no" if invoice_no is None else "missing_amount_remaining",
                invoice_no=invoice_no,
                columns=sorted(lowered),
            )
            return None

        freight = self._first(lowered, "freight_allowed", to_decimal)
        terms = self._first(lowered, "terms_amount", to_decimal)

        return OpenInvoice(
            invoice_no=invoice_no,
            amount_remaining=round_money(remaining),
            freight_allowed=max(round_money(freight), ZERO) if freight is not None else ZERO,
            terms_amount=max(round_money(terms), ZERO) if terms is not None else ZERO,
            due_date=self._first(lowered, "due_date", parse_date),
            branch_id=self._first(lowered, "branch_id", parse_text),
        )

    def map_rows(self, rows: Iterable[Mapping[str, Any]]) -> list[OpenInvoice]:
        """Map every row, dropping the ones that cannot be used."""
        invoices: list[OpenInvoice] = []
        for row in rows:
            invoice = self.map_row(row)
            if invoice is not None:
                invoices.append(invoice)
        return invoices
