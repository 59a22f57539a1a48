"""Pairwise stage: two invoices whose choices sum to the target.

Runs over the capped invoice set only, so worst-case work stays quadratic in
the cap times the square of the choice count (at most 4 x 4).
"""

from collections.abc import Sequence
from decimal import Decimal

from ..domain.value_objects import InvoiceCandidates, MatchSelection
from .base import Selections


def find_pair(candidates: Sequence[InvoiceCandidates], target: Decimal) -> Selections | None:
    """Return the first pair ``i < j`` (priority order) summing exactly to ``target``.

    Pairs are scanned by outer index, then inner index, then the choices of
    the first invoice, then the choices of the second, all largest first.
    """
    count = len(candidates)
    for i in range(count):
        first = candidates[i]
        for j in range(i + 1, count):
            second = candidates[j]
            for a in first.choices:
                # Choices are positive: a >= target leaves nothing for the second invoice
                if a >= target:
                    continue
                for b in second.choices:
                    if a + b == target:
                        return (MatchSelection(first, a), MatchSelection(second, b))
    return None
