"""Single-invoice stage: one invoice whose choice equals the target."""

from collections.abc import Sequence
from decimal import Decimal

from ..domain.value_objects import InvoiceCandidates, MatchSelection
from .base import Selections


def find_single(candidates: Sequence[InvoiceCandidates], target: Decimal) -> Selections | None:
    """Return the first invoice (priority order) with a choice equal to ``target``.

    Choices are checked largest first, so a full-balance match is preferred
    over a deducted one of the same invoice.
    """
    for invoice in candidates:
        for choice in invoice.choices:
            if choice == target:
                return (MatchSelection(invoice, choice),)
    return None
