"""Layered exact-match search over a customer's open invoices.

Stages run in a fixed order and the first success wins:

1. single    over every invoice
2. pairwise  over the first ``search_cap`` invoices
3. greedy    over the same capped set
4. dfs       over the capped set, only when it holds at most
             ``dfs_max_invoices`` invoices

Equality is exact: amounts are ``Decimal`` values quantized to cents, so a
match accounts for the payment to the penny. Non-positive targets never match.
"""

from collections.abc import Iterable, Sequence
from decimal import Decimal

from ...utils.logging import get_logger
from ...utils.money import ZERO, round_money
from ..domain.value_objects import ExactMatch, InvoiceCandidates, OpenInvoice
from ..metrics import record_match_stage, track_matching_duration
from .base import SearchStage
from .candidates import order_candidates
from .dfs import find_dfs
from .greedy import find_greedy
from .pairwise import find_pair
from .single import find_single

logger = get_logger(__name__)

DEFAULT_SEARCH_CAP = 28
DEFAULT_DFS_MAX_INVOICES = 24


class ExactMatchFinder:
    """Find invoice applications summing exactly to a payment amount.

    Attributes:
        search_cap: Number of top-priority invoices searched by the
            pairwise, greedy and DFS stages
        dfs_max_invoices: Largest capped set the DFS stage is allowed to explore

    Example:
        >>> finder = ExactMatchFinder()
        >>> match = finder.find(invoices, Decimal("100.00"))
        >>> if match:
        ...     print(match.stage, [s.invoice.invoice_no for s in match.selections])
    """

    def __init__(
        self,
        search_cap: int = DEFAULT_SEARCH_CAP,
        dfs_max_invoices: int = DEFAULT_DFS_MAX_INVOICES,
    ) -> None:
        if search_cap < 1:
            raise ValueError(f"search_cap must be positive, got {search_cap}")
        if dfs_max_invoices < 0:
            raise ValueError(f"dfs_max_invoices must not be negative, got {dfs_max_invoices}")

        self.search_cap = search_cap
        self.dfs_max_invoices = dfs_max_invoices

    def stages(
        self, ordered: Sequence[InvoiceCandidates]
    ) -> list[tuple[str, SearchStage, Sequence[InvoiceCandidates]]]:
        """Return ``(name, stage, pool)`` triples in execution order."""
        capped = ordered[: self.search_cap]
        plan: list[tuple[str, SearchStage, Sequence[InvoiceCandidates]]] = [
            ("single", find_single, ordered),
            ("pairwise", find_pair, capped),
            ("greedy", find_greedy, capped),
        ]
        if len(capped) <= self.dfs_max_invoices:
            plan.append(("dfs", find_dfs, capped))
        else:
            logger.debug(
                "dfs_skipped",
                capped_invoices=len(capped),
                dfs_max_invoices=self.dfs_max_invoices,
            )
        return plan

    def find(self, invoices: Iterable[OpenInvoice], target: Decimal) -> ExactMatch | None:
        """Order ``invoices`` by priority and search for an exact combination."""
        return self.search(order_candidates(invoices), target)

    def search(
        self, ordered: Sequence[InvoiceCandidates], target: Decimal
    ) -> ExactMatch | None:
        """Search candidates that are already in priority order."""
        target = round_money(target)
        if target <= ZERO:
            logger.debug("match_skipped_non_positive_target", target=str(target))
            return None

        with track_matching_duration():
            for name, stage, pool in self.stages(ordered):
                selections = stage(pool, target)
                if selections:
                    record_match_stage(name)
                    logger.debug(
                        "exact_match_found",
                        stage=name,
                        target=str(target),
                        lines=len(selections),
                    )
                    return ExactMatch(selections=selections, stage=name)

        record_match_stage("none")
        logger.debug("exact_match_not_found", target=str(target), invoices=len(ordered))
        return None
