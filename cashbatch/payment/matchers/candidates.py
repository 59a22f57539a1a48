"""Candidate generation: the applied amounts each invoice can contribute.

For every invoice four formulas are evaluated, each rounded to cents half away
from zero and floored at zero:

- full          remaining balance
- less_freight  remaining - freight allowed
- less_terms    remaining - terms discount
- less_both     remaining - freight allowed - terms discount

The distinct strictly positive values become the invoice's choices (largest
first). The largest of the four formulas is the invoice's priority.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from ...utils.money import ZERO, round_money
from ..domain.enums import Deduction
from ..domain.value_objects import AppliedDeduction, InvoiceCandidates, OpenInvoice


def build_candidates(invoice: OpenInvoice) -> InvoiceCandidates:
    """Evaluate the four candidate formulas for one invoice."""
    remaining = round_money(invoice.amount_remaining)
    freight = max(round_money(invoice.freight_allowed), ZERO)
    terms = max(round_money(invoice.terms_amount), ZERO)

    full = max(remaining, ZERO)
    less_freight = max(round_money(remaining - freight), ZERO)
    less_terms = max(round_money(remaining - terms), ZERO)
    less_both = max(round_money(remaining - freight - terms), ZERO)

    values = (full, less_freight, less_terms, less_both)
    choices = tuple(sorted({v for v in values if v > ZERO}, reverse=True))

    return InvoiceCandidates(
        invoice=invoice,
        full=full,
        less_freight=less_freight,
        less_terms=less_terms,
        less_both=less_both,
        choices=choices,
        priority=max(values),
    )


def _priority_key(candidates: InvoiceCandidates) -> tuple[Decimal, bool, date, str]:
    due = candidates.invoice.due_date
    return (-candidates.priority, due is None, due or date.max, candidates.invoice_no)


def order_candidates(invoices: Iterable[OpenInvoice]) -> list[InvoiceCandidates]:
    """Build candidates and sort them into search priority order.

    Priority descending, then due date ascending with undated invoices last,
    then invoice number ascending.
    """
    return sorted((build_candidates(invoice) for invoice in invoices), key=_priority_key)


def identify_deduction(candidates: InvoiceCandidates, amount: Decimal) -> AppliedDeduction:
    """Work out which formula produced ``amount`` and what it deducted.

    Formulas are compared in the order full, less_freight, less_terms,
    less_both; the first equal one wins.

    Raises:
        ValueError: If ``amount`` is not one of the invoice's formulas
    """
    invoice = candidates.invoice
    freight = max(round_money(invoice.freight_allowed), ZERO)
    terms = max(round_money(invoice.terms_amount), ZERO)

    if amount == candidates.full:
        return AppliedDeduction(Deduction.FULL, None, None)
    if amount == candidates.less_freight:
        return AppliedDeduction(Deduction.LESS_FREIGHT, freight, None)
    if amount == candidates.less_terms:
        return AppliedDeduction(Deduction.LESS_TERMS, None, terms)
    if amount == candidates.less_both:
        return AppliedDeduction(Deduction.LESS_BOTH, freight, terms)

    raise ValueError(
        f"Amount {amount} is not a candidate of invoice {candidates.invoice_no}"
    )
