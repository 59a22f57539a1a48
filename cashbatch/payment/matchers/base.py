"""Common interface for exact-match search stages.

Every stage is a pure function over the same input: invoice candidates in
priority order plus a target amount already rounded to cents. A stage returns
the chosen (invoice, amount) pairs in the order they were picked, or None.

Implementing a new stage:
    1. Write a function matching the ``SearchStage`` signature
    2. Return selections whose amounts sum exactly to the target
    3. Return None (never an empty tuple) when nothing matches
    4. Register it in ``ExactMatchFinder.stages``
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import Protocol

from ..domain.value_objects import InvoiceCandidates, MatchSelection

Selections = tuple[MatchSelection, ...]


class SearchStage(Protocol):
    """Callable signature shared by single, pairwise, greedy and DFS search."""

    def __call__(
        self, candidates: Sequence[InvoiceCandidates], target: Decimal
    ) -> Selections | None: ...
