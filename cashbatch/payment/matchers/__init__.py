"""Exact payment-to-invoice matching.

Each search stage is a pure function over invoice candidates in priority
order, composed by ``ExactMatchFinder``.

Available Stages:
- find_single: one invoice equal to the target
- find_pair: two invoices summing to the target
- find_greedy: closest-choice heuristic
- find_dfs: bounded depth-first search with pruning

Usage:
    >>> from cashbatch.payment.matchers import ExactMatchFinder
    >>> match = ExactMatchFinder().find(invoices, payment.amount)
"""

__all__ = [
    "ExactMatchFinder",
    "SearchStage",
    "build_candidates",
    "find_dfs",
    "find_greedy",
    "find_pair",
    "find_single",
    "identify_deduction",
    "order_candidates",
]

from .base import SearchStage
from .candidates import build_candidates, identify_deduction, order_candidates
from .dfs import find_dfs
from .exact import ExactMatchFinder
from .greedy import find_greedy
from .pairwise import find_pair
from .single import find_single
