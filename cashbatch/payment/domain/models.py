"""Domain models for cash batches.

DDD Entities:
- Have identity (unique ID)
- Mutable lifecycle guarded by explicit transition methods
- Mapped to database tables via SQLAlchemy
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Date,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    and_,
    case,
    func,
    inspect,
    or_,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from ...exceptions import PaymentStateError
from ...storage.database.base import Base
from .enums import BatchStatus, LookupKeyType, PaymentStatus

_ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.IMPORTED: frozenset({PaymentStatus.AUTO_APPLIED, PaymentStatus.NEEDS_REVIEW}),
    PaymentStatus.NEEDS_REVIEW: frozenset(
        {PaymentStatus.NEEDS_REVIEW, PaymentStatus.AUTO_APPLIED}
    ),
    PaymentStatus.AUTO_APPLIED: frozenset({PaymentStatus.AUTO_APPLIED, PaymentStatus.EXPORTED}),
    PaymentStatus.EXPORTED: frozenset(),
}

UNRESOLVED_CUSTOMER_VALUES = ("", "0")


class Batch(Base):
    """A remittance file imported as one unit of work.

    Attributes:
        name: Deposit/batch name used in the ERP export
        imported_at: When the file was imported
        imported_by: User who imported the file
        source_filename: Original file name
        deposit_date: Deposit date reported by the bank
        customer_batch_number: Bank-side batch number
        status: Batch lifecycle status
    """

    __tablename__ = "cash_batches"

    name: Mapped[str | None] = mapped_column(String(100))
    imported_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    imported_by: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    source_filename: Mapped[str] = mapped_column(String(260), default="", nullable=False)
    deposit_date: Mapped[date | None] = mapped_column(Date)
    customer_batch_number: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus), nullable=False, default=BatchStatus.OPEN, index=True
    )

    payments: Mapped[list["Payment"]] = relationship(
        back_populates="batch", cascade="all, delete-orphan", order_by="Payment.sequence_number"
    )

    def close(self) -> None:
        """Mark the batch as completed."""
        self.status = BatchStatus.COMPLETED

    def __repr__(self) -> str:
        return f"<Batch(id={self.id}, name='{self.name}', status='{self.status}')>"


class Payment(Base):
    """One bank-remitted amount to be reconciled against open invoices.

    The amount is immutable once set and the status only moves forward:
    Imported -> AutoApplied | NeedsReview, NeedsReview -> AutoApplied,
    AutoApplied -> Exported. Re-entering the current status is allowed for
    NeedsReview and AutoApplied so a payment can be re-matched.

    A version counter detects concurrent modification of the same row.
    """

    __tablename__ = "cash_payments"

    batch_id: Mapped[int] = mapped_column(ForeignKey("cash_batches.id"), nullable=False, index=True)
    batch: Mapped["Batch"] = relationship(back_populates="payments")

    sequence_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(50), index=True)
    original_customer_id: Mapped[str | None] = mapped_column(String(50))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    check_number: Mapped[str] = mapped_column(String(50), default="", nullable=False)

    # Bank identity used for customer resolution
    bank_number: Mapped[str | None] = mapped_column(String(50))
    account_number: Mapped[str | None] = mapped_column(String(50))
    bank_account: Mapped[str | None] = mapped_column(String(50))
    remit_address_hash: Mapped[str | None] = mapped_column(String(128))

    # Remittance details
    remitter_name: Mapped[str | None] = mapped_column(String(200))
    city: Mapped[str | None] = mapped_column(String(50))
    invoice_number: Mapped[str | None] = mapped_column(String(50))
    transaction_type: Mapped[str | None] = mapped_column(String(50))
    category: Mapped[str | None] = mapped_column(String(50))

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.IMPORTED, index=True
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["PaymentLine"]] = relationship(
        back_populates="payment", cascade="all, delete-orphan", order_by="PaymentLine.id"
    )
    logs: Mapped[list["MatchLog"]] = relationship(
        back_populates="payment", cascade="all, delete-orphan", order_by="MatchLog.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

    @validates("amount")
    def _validate_amount(self, key: str, value: Any) -> Decimal:
        new_value = value if isinstance(value, Decimal) else Decimal(str(value))
        current = self.__dict__.get("amount")
        if current is None and inspect(self).has_identity:
            # Expired after commit: load the stored value before comparing
            current = self.amount
        if current is not None and Decimal(current) != new_value:
            raise PaymentStateError(
                "Payment amount is immutable once imported",
                payment_id=self.id,
                context={"amount": str(current), "attempted": str(new_value)},
            )
        return new_value

    # ------------------------------------------------------------------
    # Bank identity keys (shared by per-row and set-based resolution)
    # ------------------------------------------------------------------

    @hybrid_property
    def route_account_key(self) -> str | None:
        """``bank_number|account`` composite, or None when both parts are blank."""
        bank = self.bank_number or ""
        account = self.account_number or self.bank_account or ""
        if not bank and not account:
            return None
        return f"{bank}|{account}"

    @route_account_key.inplace.expression
    @classmethod
    def _route_account_key_expression(cls) -> Any:
        bank = func.coalesce(cls.bank_number, "", type_=String)
        account = func.coalesce(
            func.nullif(cls.account_number, "", type_=String),
            func.nullif(cls.bank_account, "", type_=String),
            "",
            type_=String,
        )
        return case((and_(bank == "", account == ""), None), else_=bank + "|" + account)

    @hybrid_property
    def account_key(self) -> str | None:
        """Account number, falling back to the legacy bank account field."""
        return self.account_number or self.bank_account or None

    @account_key.inplace.expression
    @classmethod
    def _account_key_expression(cls) -> Any:
        return func.coalesce(
            func.nullif(cls.account_number, "", type_=String),
            func.nullif(cls.bank_account, "", type_=String),
            type_=String,
        )

    @hybrid_property
    def address_key(self) -> str | None:
        """Remit-address hash, or None when blank."""
        return self.remit_address_hash or None

    @address_key.inplace.expression
    @classmethod
    def _address_key_expression(cls) -> Any:
        return func.nullif(cls.remit_address_hash, "", type_=String)

    @hybrid_property
    def needs_customer(self) -> bool:
        """Whether the customer is still unknown (null, blank or "0")."""
        return self.customer_id is None or self.customer_id.strip() in UNRESOLVED_CUSTOMER_VALUES

    @needs_customer.inplace.expression
    @classmethod
    def _needs_customer_expression(cls) -> Any:
        return or_(
            cls.customer_id.is_(None), func.trim(cls.customer_id).in_(UNRESOLVED_CUSTOMER_VALUES)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def payment_number(self) -> int:
        """Numeric payment number used by the ERP export."""
        return self.id

    @property
    def applied_total(self) -> Decimal:
        """Sum of the applied amounts of all lines."""
        return sum((line.applied_amount for line in self.lines), Decimal("0.00"))

    def _transition(self, target: PaymentStatus) -> None:
        current = self.status or PaymentStatus.IMPORTED
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise PaymentStateError(
                f"Cannot move payment from {current} to {target}",
                payment_id=self.id,
                current_state=str(current),
                attempted_state=str(target),
            )
        self.status = target

    def can_transition_to(self, target: PaymentStatus) -> bool:
        """Whether ``target`` is reachable from the current status."""
        return target in _ALLOWED_TRANSITIONS[self.status or PaymentStatus.IMPORTED]

    def replace_lines(self, lines: list["PaymentLine"]) -> None:
        """Discard every existing line and attach ``lines`` instead."""
        self.lines.clear()
        self.lines.extend(lines)

    def mark_auto_applied(self) -> None:
        """Mark the payment as fully applied by the matching engine."""
        self._transition(PaymentStatus.AUTO_APPLIED)

    def mark_needs_review(self) -> None:
        """Flag the payment for human review."""
        self._transition(PaymentStatus.NEEDS_REVIEW)

    def mark_exported(self) -> None:
        """Mark the payment as written to the ERP import files."""
        self._transition(PaymentStatus.EXPORTED)

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, "
            f"check='{self.check_number}', "
            f"amount={self.amount}, "
            f"status='{self.status}')>"
        )


class PaymentLine(Base):
    """An invoice (fully or partially) satisfied by a payment."""

    __tablename__ = "cash_payment_lines"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("cash_payments.id"), nullable=False, index=True
    )
    payment: Mapped["Payment"] = relationship(back_populates="lines")

    payment_number: Mapped[int | None] = mapped_column(Integer)
    invoice_no: Mapped[str | None] = mapped_column(String(50))
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    was_auto_matched: Mapped[bool] = mapped_column(default=False, nullable=False)
    freight_taken_amt: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    terms_taken_amt: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    branch_id: Mapped[str | None] = mapped_column(String(8))

    def __repr__(self) -> str:
        return (
            f"<PaymentLine(id={self.id}, payment_id={self.payment_id}, "
            f"invoice_no='{self.invoice_no}', applied={self.applied_amount})>"
        )


class CustomerLookup(Base):
    """Maps a bank-identity key to a customer so future payments resolve automatically."""

    __tablename__ = "cash_customer_lookups"
    __table_args__ = (UniqueConstraint("key_type", "key_value"),)

    key_type: Mapped[LookupKeyType] = mapped_column(
        Enum(
            LookupKeyType,
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    key_value: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    confidence: Mapped[float] = mapped_column(default=1.0, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CustomerLookup(key_type='{self.key_type}', key_value='{self.key_value}', "
            f"customer_id='{self.customer_id}')>"
        )


class MatchLog(Base):
    """Audit entry explaining what the matching engine did with a payment."""

    __tablename__ = "cash_match_logs"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("cash_payments.id"), nullable=False, index=True
    )
    payment: Mapped["Payment"] = relationship(back_populates="logs")
    level: Mapped[str] = mapped_column(String(10), default="Info", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<MatchLog(payment_id={self.payment_id}, level='{self.level}')>"
