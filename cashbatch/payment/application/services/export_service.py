"""Export AutoApplied payments to the ERP import files."""

from dataclasses import replace
from datetime import date
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ....exceptions import DatabaseError, wrap_exception
from ....utils.config import Settings
from ....utils.logging import LogPerformance, get_logger
from ...infrastructure.exporters.erp import ERPExporter, ExportOptions
from ...infrastructure.repository import BatchRepository, PaymentRepository
from ...metrics import record_export

logger = get_logger(__name__)


def build_export_options(
    settings: Settings,
    *,
    export_directory: Path | None = None,
    fiscal_year: int | None = None,
    period: int | None = None,
    batch_name: str = "",
    payment_date: date | None = None,
) -> ExportOptions:
    """Export options from settings, with per-run overrides."""
    return ExportOptions(
        export_directory=export_directory or settings.resolved_export_directory,
        fiscal_year=fiscal_year or settings.export_fiscal_year,
        period=period or settings.export_period,
        bank_number=settings.export_bank_number,
        gl_bank_account=settings.export_gl_bank_account,
        ar_account=settings.export_ar_account,
        terms_account=settings.export_terms_account,
        allowed_account=settings.export_allowed_account,
        batch_name=batch_name,
        company_id=settings.company_id,
        payment_date=payment_date or date.today(),
    )


class ExportService:
    """Write a batch's AutoApplied payments and mark them Exported."""

    def __init__(self, session: Session, exporter: ERPExporter | None = None) -> None:
        self.session = session
        self.exporter = exporter or ERPExporter()
        self.batches = BatchRepository(session)
        self.payments = PaymentRepository(session)

    def export_auto_applied(self, batch_id: int, options: ExportOptions) -> int:
        """Export every AutoApplied payment of a batch.

        Returns:
            Number of payments written

        Raises:
            RecordNotFoundError: If the batch does not exist
            ExportError: If the files cannot be written (nothing is marked)
            DatabaseError: If the status update cannot be committed
        """
        batch = self.batches.get_or_raise(batch_id)
        payments = self.payments.find_for_export(batch_id)
        if not payments:
            logger.info("erp_export_nothing_to_write", batch_id=batch_id)
            return 0

        if not options.batch_name:
            options = replace(options, batch_name=batch.name or f"batch{batch.id}")
        if options.deposit_date is None and batch.deposit_date is not None:
            options = replace(options, deposit_date=batch.deposit_date)

        with LogPerformance("erp_export_write", logger):
            self.exporter.write(payments, options)

        for payment in payments:
            payment.mark_exported()
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise wrap_exception(
                e,
                "Export files written but payment status update failed",
                exception_class=DatabaseError,
                batch_id=batch_id,
            ) from e

        record_export(len(payments))
        logger.info("erp_export_completed", batch_id=batch_id, payments=len(payments))
        return len(payments)
