"""Bounded depth-first search with branch-and-bound pruning.

Invoices are visited in priority order. At each invoice every choice is tried
(largest first) before skipping the invoice. A branch is cut when its running
sum exceeds the target, or when even taking the priority value of every
remaining invoice could not reach the target. The first exact match in this
traversal order is returned and the search stops immediately.

The caller bounds the invoice count; the branching factor is up to five
(four choices plus skip) per invoice.
"""

from collections.abc import Sequence
from decimal import Decimal

from ...utils.money import ZERO
from ..domain.value_objects import InvoiceCandidates, MatchSelection
from .base import Selections


def _suffix_sums(candidates: Sequence[InvoiceCandidates]) -> list[Decimal]:
    """suffix[i] is the sum of priority values of invoices i..end."""
    suffix = [ZERO] * (len(candidates) + 1)
    for index in range(len(candidates) - 1, -1, -1):
        suffix[index] = suffix[index + 1] + candidates[index].priority
    return suffix


def find_dfs(candidates: Sequence[InvoiceCandidates], target: Decimal) -> Selections | None:
    """Return the first exact combination found by depth-first traversal."""
    if target <= ZERO:
        return None

    count = len(candidates)
    suffix = _suffix_sums(candidates)
    path: list[MatchSelection] = []

    def visit(index: int, running: Decimal) -> bool:
        if running == target:
            return True
        if running > target or index == count:
            return False
        if running + suffix[index] < target:
            return False

        invoice = candidates[index]
        for choice in invoice.choices:
            path.append(MatchSelection(invoice, choice))
            if visit(index + 1, running + choice):
                return True
            path.pop()

        return visit(index + 1, running)

    if visit(0, ZERO):
        return tuple(path)
    return None
