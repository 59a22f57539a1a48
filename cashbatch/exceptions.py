"""Exception hierarchy for CashBatch.

All exceptions carry a human-readable message plus structured context so they
can be logged as key-value pairs.

Usage:
    from cashbatch.exceptions import SourceUnavailableError

    try:
        rows = source.fetch_rows(customer_id)
    except SourceUnavailableError as e:
        logger.warning("open_invoices_unavailable", error=str(e), context=e.context)
"""

from __future__ import annotations

from typing import Any


class CashBatchError(Exception):
    """Base exception for all CashBatch errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Format exception with context for logging."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Validation & Configuration Errors
# =============================================================================


class ValidationError(CashBatchError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class ConfigurationError(CashBatchError):
    """Raised when application configuration is invalid or missing."""

    def __init__(self, message: str, *, setting: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Database & Persistence Errors
# =============================================================================


class DatabaseError(CashBatchError):
    """Base class for database-related errors."""


class RecordNotFoundError(DatabaseError):
    """Raised when a database record is not found."""

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: int | str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id is not None:
            context["entity_id"] = str(entity_id)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class ConcurrencyConflictError(DatabaseError):
    """Raised when a payment row changed underneath the current unit of work."""


class BatchFatalError(DatabaseError):
    """Raised when the enclosing transaction of a batch run cannot begin or commit.

    Nothing from the run is committed when this is raised.
    """


# =============================================================================
# Business Logic Errors
# =============================================================================


class BusinessLogicError(CashBatchError):
    """Base class for business rule violations."""


class PaymentStateError(BusinessLogicError):
    """Raised when a payment operation violates its state machine.

    Example: moving an Exported payment back to NeedsReview, or changing the
    amount of an imported payment.
    """

    def __init__(
        self,
        message: str,
        *,
        payment_id: int | None = None,
        current_state: str | None = None,
        attempted_state: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if payment_id is not None:
            context["payment_id"] = payment_id
        if current_state:
            context["current_state"] = current_state
        if attempted_state:
            context["attempted_state"] = attempted_state
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# External Integration Errors
# =============================================================================


class IntegrationError(CashBatchError):
    """Base class for external system integration errors."""


class SourceUnavailableError(IntegrationError):
    """Raised when the ERP open-invoice query cannot be completed.

    Callers treat this as "no invoices available" rather than a hard failure.
    """

    def __init__(
        self,
        message: str,
        *,
        customer_id: str | None = None,
        tried: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if customer_id:
            context["customer_id"] = customer_id
        if tried:
            context["tried"] = ",".join(tried)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class InvoiceSourceTimeoutError(SourceUnavailableError):
    """Raised when the ERP open-invoice query exceeds its timeout."""


class ExportError(IntegrationError):
    """Raised when writing the ERP export files fails."""

    def __init__(self, message: str, *, path: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if path:
            context["path"] = path
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Utility Functions
# =============================================================================


def wrap_exception(
    error: Exception,
    message: str,
    *,
    exception_class: type[CashBatchError] = CashBatchError,
    **context: Any,
) -> CashBatchError:
    """Wrap an external exception in the CashBatch hierarchy.

    Example:
        try:
            session.commit()
        except SQLAlchemyError as e:
            raise wrap_exception(
                e, "Batch commit failed", exception_class=BatchFatalError, batch_id=7
            ) from e
    """
    return exception_class(
        message,
        context=context,
        original_error=error,
    )


__all__ = [
    "CashBatchError",
    "ValidationError",
    "ConfigurationError",
    "DatabaseError",
    "RecordNotFoundError",
    "ConcurrencyConflictError",
    "BatchFatalError",
    "BusinessLogicError",
    "PaymentStateError",
    "IntegrationError",
    "SourceUnavailableError",
    "InvoiceSourceTimeoutError",
    "ExportError",
    "wrap_exception",
]
