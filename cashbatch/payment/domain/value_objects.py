"""Value objects for the matching engine.

Immutable data carriers passed between the invoice source, the candidate
generator, the search stages and the result application step.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from .enums import Deduction, PaymentOutcome


@dataclass(frozen=True)
class OpenInvoice:
    """An outstanding ERP receivable for one customer.

    Fetched fresh for every matching attempt and never persisted. All amounts
    are already normalized to 2 decimal places; deductions are never negative.
    """

    invoice_no: str
    amount_remaining: Decimal
    freight_allowed: Decimal = Decimal("0.00")
    terms_amount: Decimal = Decimal("0.00")
    due_date: date | None = None
    branch_id: str | None = None


@dataclass(frozen=True)
class InvoiceCandidates:
    """The applied amounts one invoice can contribute to a match.

    Attributes:
        invoice: Source invoice
        full: Remaining balance
        less_freight: Remaining minus freight allowed
        less_terms: Remaining minus terms discount
        less_both: Remaining minus both deductions
        choices: Distinct strictly positive values, descending
        priority: Largest of the four formulas, used for ordering
    """

    invoice: OpenInvoice
    full: Decimal
    less_freight: Decimal
    less_terms: Decimal
    less_both: Decimal
    choices: tuple[Decimal, ...]
    priority: Decimal

    @property
    def invoice_no(self) -> str:
        return self.invoice.invoice_no


@dataclass(frozen=True)
class MatchSelection:
    """One (invoice, applied amount) pair chosen by a search stage."""

    candidates: InvoiceCandidates
    amount: Decimal

    @property
    def invoice(self) -> OpenInvoice:
        return self.candidates.invoice


@dataclass(frozen=True)
class ExactMatch:
    """A combination of selections summing exactly to the target amount."""

    selections: tuple[MatchSelection, ...]
    stage: str

    @property
    def total(self) -> Decimal:
        return sum((s.amount for s in self.selections), Decimal("0.00"))

    def __len__(self) -> int:
        return len(self.selections)


@dataclass(frozen=True)
class AppliedDeduction:
    """Which formula produced an applied amount and what it deducted.

    Both taken amounts are None when the full balance was applied.
    """

    deduction: Deduction
    freight_taken: Decimal | None
    terms_taken: Decimal | None


@dataclass(frozen=True)
class AppliedLineView:
    """An applied line enriched with the invoice's current ERP figures.

    ERP fields are None when the invoice is no longer open or the source
    could not be reached.
    """

    invoice_no: str | None
    applied_amount: Decimal
    was_auto_matched: bool
    branch_id: str | None = None
    net_due_date: date | None = None
    amount_remaining: Decimal | None = None
    freight_allowed: Decimal | None = None
    terms_amount: Decimal | None = None


@dataclass
class AutoApplyResult:
    """Summary of one auto-apply run over a batch."""

    batch_id: int
    total: int = 0
    auto_applied: int = 0
    needs_review: int = 0
    unresolved: int = 0
    no_match: int = 0
    source_unavailable: int = 0
    kept: int = 0
    conflicts: int = 0
    faults: int = 0
    resolved_in_bulk: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, outcome: PaymentOutcome) -> None:
        """Count one payment outcome."""
        self.total += 1
        if outcome is PaymentOutcome.AUTO_APPLIED:
            self.auto_applied += 1
        elif outcome is PaymentOutcome.UNRESOLVED:
            self.unresolved += 1
            self.needs_review += 1
        elif outcome is PaymentOutcome.NO_MATCH:
            self.no_match += 1
            self.needs_review += 1
        elif outcome is PaymentOutcome.SOURCE_UNAVAILABLE:
            self.source_unavailable += 1
            self.needs_review += 1
        elif outcome is PaymentOutcome.KEPT:
            self.kept += 1
        elif outcome is PaymentOutcome.CONFLICT:
            self.conflicts += 1
        elif outcome is PaymentOutcome.FAULT:
            self.faults += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "auto_applied": self.auto_applied,
            "needs_review": self.needs_review,
            "unresolved": self.unresolved,
            "no_match": self.no_match,
            "source_unavailable": self.source_unavailable,
            "kept": self.kept,
            "conflicts": self.conflicts,
            "faults": self.faults,
            "resolved_in_bulk": self.resolved_in_bulk,
        }
