"""Payment domain: entities, enums and value objects."""

from .enums import BatchStatus, Deduction, LookupKeyType, PaymentOutcome, PaymentStatus
from .models import Batch, CustomerLookup, MatchLog, Payment, PaymentLine
from .value_objects import (
    AppliedDeduction,
    AppliedLineView,
    AutoApplyResult,
    ExactMatch,
    InvoiceCandidates,
    MatchSelection,
    OpenInvoice,
)

__all__ = [
    "AppliedDeduction",
    "AppliedLineView",
    "AutoApplyResult",
    "Batch",
    "BatchStatus",
    "CustomerLookup",
    "Deduction",
    "ExactMatch",
    "InvoiceCandidates",
    "LookupKeyType",
    "MatchLog",
    "MatchSelection",
    "OpenInvoice",
    "Payment",
    "PaymentLine",
    "PaymentOutcome",
    "PaymentStatus",
]
