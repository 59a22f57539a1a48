"""Greedy stage: cheap heuristic for invoices roughly summing to the payment.

Not exhaustive. It can miss an exact combination that exists; the bounded
depth-first search covers that case for small invoice sets.
"""

from collections.abc import Sequence
from decimal import Decimal

from ...utils.money import ZERO
from ..domain.value_objects import InvoiceCandidates, MatchSelection
from .base import Selections


def find_greedy(candidates: Sequence[InvoiceCandidates], target: Decimal) -> Selections | None:
    """Walk invoices in priority order, taking the choice closest to what is left.

    A choice is accepted only if it does not exceed the remaining amount.
    Ties in distance go to the smaller choice. Succeeds as soon as the
    remaining amount reaches exactly zero.
    """
    remaining = target
    picked: list[MatchSelection] = []

    for invoice in candidates:
        if not invoice.choices:
            continue

        closest = min(invoice.choices, key=lambda choice: (abs(remaining - choice), choice))
        if closest > remaining:
            continue

        picked.append(MatchSelection(invoice, closest))
        remaining -= closest
        if remaining == ZERO:
            return tuple(picked)

    return None
