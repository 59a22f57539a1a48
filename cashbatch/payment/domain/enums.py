"""Enumerations for the payment domain."""

from enum import Enum


class BatchStatus(str, Enum):
    """Lifecycle of an imported remittance batch."""

    OPEN = "Open"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"

    def __str__(self) -> str:
        return self.value


class PaymentStatus(str, Enum):
    """Lifecycle of a single payment. Transitions only move forward."""

    IMPORTED = "Imported"
    AUTO_APPLIED = "AutoApplied"
    NEEDS_REVIEW = "NeedsReview"
    EXPORTED = "Exported"

    def __str__(self) -> str:
        return self.value


class LookupKeyType(str, Enum):
    """Kinds of bank-identity keys stored in the customer lookup table.

    Declared in resolution priority order.
    """

    BANK_ROUTE_ACCT = "BankRouteAcct"
    BANK_ACCT = "BankAcct"
    ADDR_HASH = "AddrHash"

    def __str__(self) -> str:
        return self.value


class Deduction(str, Enum):
    """Which candidate formula produced an applied amount."""

    FULL = "full"
    LESS_FREIGHT = "less_freight"
    LESS_TERMS = "less_terms"
    LESS_BOTH = "less_both"

    def __str__(self) -> str:
        return self.value


class PaymentOutcome(str, Enum):
    """Result of processing one payment during an auto-apply run."""

    AUTO_APPLIED = "auto_applied"
    UNRESOLVED = "unresolved"
    NO_MATCH = "no_match"
    SOURCE_UNAVAILABLE = "source_unavailable"
    KEPT = "kept"
    CONFLICT = "conflict"
    FAULT = "fault"

    def __str__(self) -> str:
        return self.value
