"""ERP cash-receipt import files.

Two tab-delimited files are written per export, CRLF terminated, with no
header row and no quoting:

``<batch>_header.txt`` one row per payment
    1 payment type (CHK)      2 description           3 payment date
    4 payment amount          5 applied amount        6 check number
    7 period                  8 fiscal year           9 deposit/batch name
    10 payment number         11 company id           12 customer id
    13 deposit date           14 bank number          15 GL bank account
    16 approved flag (Y)      17 variance

``<batch>_detail.txt`` one row per applied line
    1 payment number          2 check number          3 customer id
    4 invoice number          5 applied amount        6 terms taken
    7 freight allowed taken   8 AR account            9 terms account
    10 allowed account        11 company id           12 branch id

Dates are ``MM/dd/yy`` and amounts fixed 2-decimal strings. A line with no
terms or freight deduction (null) writes ``0.00`` in columns 6 and 7. GL
accounts get their last two characters replaced by a 2-character branch id
when one is present.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from ....exceptions import ExportError
from ....utils.logging import get_logger
from ....utils.money import format_amount
from ...domain.models import Payment

logger = get_logger(__name__)

FIELD_SEPARATOR = "\t"
LINE_TERMINATOR = "\r\n"
DATE_FORMAT = "%m/%d/%y"
PAYMENT_TYPE = "CHK"
APPROVED_FLAG = "Y"

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class ExportOptions:
    """Per-export ERP settings.

    Attributes:
        export_directory: Directory receiving the two files
        fiscal_year: ERP fiscal year
        period: ERP fiscal period
        bank_number: Depository bank number
        gl_bank_account: GL cash account (branch substituted)
        ar_account: Accounts-receivable account (branch substituted)
        terms_account: Terms-discount account (branch substituted)
        allowed_account: Freight-allowed account (branch substituted)
        batch_name: Deposit/batch name written in the header file
        company_id: ERP company id
        payment_date: Date written as the payment date (defaults to today)
        deposit_date: Deposit date (defaults to the payment date)
    """

    export_directory: Path
    fiscal_year: int
    period: int
    bank_number: str = ""
    gl_bank_account: str = ""
    ar_account: str = ""
    terms_account: str = ""
    allowed_account: str = ""
    batch_name: str = ""
    company_id: str = ""
    payment_date: date = field(default_factory=date.today)
    deposit_date: date | None = None


def apply_branch_suffix(account: str | None, branch_id: str | None) -> str:
    """Replace the last two characters of ``account`` with a 2-character branch id."""
    account = account or ""
    branch = (branch_id or "").strip()
    if len(branch) != 2 or len(account) < 2:
        return account
    return account[:-2] + branch


def format_date(value: date | None) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def clean_field(value: Any) -> str:
    """Render a value so it cannot break the tab/CRLF framing."""
    if value is None:
        return ""
    text = str(value)
    for char in ("\t", "\r", "\n"):
        text = text.replace(char, " ")
    return text


def _row(values: Sequence[Any]) -> str:
    return FIELD_SEPARATOR.join(clean_field(v) for v in values) + LINE_TERMINATOR


class ERPExporter:
    """Render and write the header/detail import files."""

    def header_row(self, payment: Payment, options: ExportOptions) -> list[str]:
        """Build the 17 header columns for one payment."""
        applied = payment.applied_total
        first_branch = payment.lines[0].branch_id if payment.lines else None
        description = payment.remitter_name or f"Check {payment.check_number}"

        return [
            PAYMENT_TYPE,
            clean_field(description),
            format_date(options.payment_date),
            format_amount(payment.amount),
            format_amount(applied),
            clean_field(payment.check_number),
            str(options.period),
            str(options.fiscal_year),
            clean_field(options.batch_name),
            str(payment.payment_number),
            clean_field(options.company_id),
            clean_field(payment.customer_id),
            format_date(options.deposit_date or options.payment_date),
            clean_field(options.bank_number),
            apply_branch_suffix(options.gl_bank_account, first_branch),
            APPROVED_FLAG,
            format_amount(payment.amount - applied),
        ]

    def detail_rows(self, payment: Payment, options: ExportOptions) -> list[list[str]]:
        """Build the 12 detail columns for every line of one payment."""
        rows = []
        for line in payment.lines:
            rows.append(
                [
                    str(payment.payment_number),
                    clean_field(payment.check_number),
                    clean_field(payment.customer_id),
                    clean_field(line.invoice_no),
                    format_amount(line.applied_amount),
                    format_amount(line.terms_taken_amt),
                    format_amount(line.freight_taken_amt),
                    apply_branch_suffix(options.ar_account, line.branch_id),
                    apply_branch_suffix(options.terms_account, line.branch_id),
                    apply_branch_suffix(options.allowed_account, line.branch_id),
                    clean_field(options.company_id),
                    clean_field(line.branch_id),
                ]
            )
        return rows

    def file_paths(self, options: ExportOptions) -> tuple[Path, Path]:
        """Header and detail file paths for ``options.batch_name``."""
        stem = _UNSAFE_FILENAME.sub("_", options.batch_name.strip()) or "batch"
        directory = Path(options.export_directory)
        return directory / f"{stem}_header.txt", directory / f"{stem}_detail.txt"

    def write(self, payments: Sequence[Payment], options: ExportOptions) -> tuple[Path, Path]:
        """Write both files for ``payments``.

        Files are written next to their destination and moved into place once
        complete, so a failed export never leaves a half-written file behind.

        Raises:
            ExportError: If the files cannot be written
        """
        header_path, detail_path = self.file_paths(options)

        header_text = "".join(_row(self.header_row(p, options)) for p in payments)
        detail_text = "".join(
            _row(values) for p in payments for values in self.detail_rows(p, options)
        )

        try:
            header_path.parent.mkdir(parents=True, exist_ok=True)
            for path, content in ((header_path, header_text), (detail_path, detail_text)):
                partial = path.with_name(path.name + ".partial")
                with open(partial, "w", encoding="utf-8", newline="") as handle:
                    handle.write(content)
                partial.replace(path)
        except OSError as e:
            raise ExportError(
                "Unable to write ERP export files", path=str(header_path.parent), original_error=e
            ) from e

        logger.info(
            "erp_export_written",
            header=str(header_path),
            detail=str(detail_path),
            payments=len(payments),
        )
        return header_path, detail_path
