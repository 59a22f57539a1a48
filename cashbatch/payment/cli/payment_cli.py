"""Cash application CLI commands.

Provides commands to auto-apply batches, review and assign payments, maintain
customer lookups and export AutoApplied payments to the ERP.
"""

from contextlib import AbstractContextManager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy.orm import Session

from ...exceptions import (
    BatchFatalError,
    CashBatchError,
    ConfigurationError,
    PaymentStateError,
    RecordNotFoundError,
    ValidationError,
)
from ...storage.session import db_session
from ...utils.config import get_settings
from ...utils.logging import get_logger
from ...utils.money import format_amount
from ..application.services import (
    AutoApplyService,
    BatchService,
    ExportService,
    LookupService,
    build_export_options,
)
from ..domain.enums import BatchStatus, PaymentStatus
from ..infrastructure.invoice_source import (
    OpenInvoiceProvider,
    StoredProcedureCustomerHintSource,
    build_customer_hint_source,
    build_invoice_provider,
)
from ..infrastructure.repository import PaymentRepository
from ..matchers import ExactMatchFinder

app = typer.Typer(name="payment", help="💵 Cash application & ERP export")
console = Console()
logger = get_logger(__name__)

_STATUS_STYLES = {
    PaymentStatus.IMPORTED: "white",
    PaymentStatus.AUTO_APPLIED: "green",
    PaymentStatus.NEEDS_REVIEW: "yellow",
    PaymentStatus.EXPORTED: "blue",
}


def get_db_session() -> AbstractContextManager[Session]:
    """Get a database session context manager."""
    return db_session()


def get_invoice_provider() -> OpenInvoiceProvider:
    """Build the ERP open-invoice provider from settings."""
    return build_invoice_provider(get_settings())


def get_hint_source() -> StoredProcedureCustomerHintSource:
    """Build the ERP customer-hint source from settings."""
    return build_customer_hint_source(get_settings())


def _build_finder() -> ExactMatchFinder:
    settings = get_settings()
    return ExactMatchFinder(
        search_cap=settings.search_cap, dfs_max_invoices=settings.dfs_max_invoices
    )


def _fail(message: str, code: int = 1) -> None:
    console.print(f"[red]✗ {escape(message)}[/]")
    raise typer.Exit(code)


def _status_text(status: PaymentStatus) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/]"


# ============================================================================
# COMMAND: auto-apply
# ============================================================================


@app.command("auto-apply")
def auto_apply(
    batch_id: int = typer.Argument(..., help="Batch ID"),
):
    """🔍 Resolve customers and exactly match every pending payment of a batch.

    Examples:
        cashbatch payment auto-apply 12
    """
    try:
        provider = get_invoice_provider()
    except ConfigurationError as e:
        _fail(str(e))

    with get_db_session() as session:
        service = AutoApplyService(session, provider, finder=_build_finder())
        try:
            result = service.auto_apply(batch_id)
        except RecordNotFoundError as e:
            _fail(e.message)
        except BatchFatalError as e:
            _fail(f"Auto-apply aborted, nothing was saved: {e}")

    table = Table(title=f"📊 Auto-apply results (batch {batch_id})", show_header=True)
    table.add_column("Outcome", style="cyan", width=22)
    table.add_column("Count", justify="right", style="bold")

    table.add_row("✅ Auto-applied", f"[green]{result.auto_applied}[/]")
    table.add_row("🔎 Needs review", f"[yellow]{result.needs_review}[/]")
    table.add_row("   no customer", str(result.unresolved))
    table.add_row("   no exact match", str(result.no_match))
    table.add_row("   invoices unavailable", str(result.source_unavailable))
    table.add_row("📌 Previous match kept", str(result.kept))
    table.add_row("⚠️  Conflicts", f"[red]{result.conflicts}[/]")
    table.add_row("❌ Errors", f"[red]{result.faults}[/]")
    table.add_row("━" * 22, "━" * 8)
    table.add_row("📈 Total", f"[bold]{result.total}[/]")
    console.print(table)

    if result.resolved_in_bulk:
        console.print(f"[dim]{result.resolved_in_bulk} customer(s) filled from lookups[/]")

    if result.errors:
        console.print("\n[red]Errors:[/]")
        for error in result.errors[:5]:
            console.print(f"  • {escape(error)}")


# ============================================================================
# COMMAND: rematch
# ============================================================================


@app.command()
def rematch(
    payment_id: int = typer.Argument(..., help="Payment ID"),
):
    """🔁 Re-run matching for a single payment."""
    try:
        provider = get_invoice_provider()
    except ConfigurationError as e:
        _fail(str(e))

    with get_db_session() as session:
        service = AutoApplyService(session, provider, finder=_build_finder())
        try:
            outcome = service.rematch_payment(payment_id)
        except (RecordNotFoundError, PaymentStateError) as e:
            _fail(e.message)
        except CashBatchError as e:
            _fail(str(e))

    console.print(f"[green]✓ Payment {payment_id}: {outcome}[/]")


# ============================================================================
# COMMAND: batches
# ============================================================================


@app.command()
def batches(
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum batches to show"),
    status: Optional[BatchStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """📦 List recent batches."""
    with get_db_session() as session:
        rows = BatchService(session).get_recent(limit=limit, status=status)

        if not rows:
            console.print("[yellow]No batches found[/]")
            return

        table = Table(title="📦 Batches", show_header=True)
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Name")
        table.add_column("Imported", style="dim")
        table.add_column("By")
        table.add_column("File")
        table.add_column("Status")

        for batch in rows:
            table.add_row(
                str(batch.id),
                batch.name or "-",
                batch.imported_at.strftime("%Y-%m-%d %H:%M") if batch.imported_at else "-",
                batch.imported_by or "-",
                batch.source_filename or "-",
                str(batch.status),
            )
        console.print(table)


# ============================================================================
# COMMAND: payments
# ============================================================================


@app.command()
def payments(
    batch_id: int = typer.Argument(..., help="Batch ID"),
    needs_review: bool = typer.Option(
        False, "--needs-review", "-r", help="Only payments that need review"
    ),
):
    """💳 List the payments of a batch."""
    with get_db_session() as session:
        service = BatchService(session)
        rows = service.get_needs_review(batch_id) if needs_review else service.get_payments(batch_id)

        if not rows:
            console.print("[yellow]No payments found[/]")
            return

        table = Table(title=f"💳 Payments (batch {batch_id})", show_header=True)
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Check")
        table.add_column("Customer")
        table.add_column("Remitter")
        table.add_column("Amount", justify="right")
        table.add_column("Invoice hint", style="dim")
        table.add_column("Status")

        total = Decimal("0.00")
        for payment in rows:
            total += payment.amount
            table.add_row(
                str(payment.id),
                payment.check_number,
                payment.customer_id or "[red]?[/]",
                payment.remitter_name or "-",
                format_amount(payment.amount),
                payment.invoice_number or "-",
                _status_text(payment.status),
            )
        console.print(table)
        console.print(f"[bold]{len(rows)}[/] payment(s), total [bold]{format_amount(total)}[/]")


# ============================================================================
# COMMAND: applied
# ============================================================================


@app.command()
def applied(
    payment_id: int = typer.Argument(..., help="Payment ID"),
    enrich: bool = typer.Option(
        True, "--enrich/--no-enrich", help="Show current ERP figures for each invoice"
    ),
):
    """🧾 Show the invoices applied to a payment."""
    provider = None
    if enrich:
        try:
            provider = get_invoice_provider()
        except ConfigurationError:
            console.print("[dim]ERP not configured, showing stored values only[/]")

    with get_db_session() as session:
        try:
            lines = BatchService(session, invoice_provider=provider).get_applied(payment_id)
        except RecordNotFoundError as e:
            _fail(e.message)

    if not lines:
        console.print("[yellow]No applied lines[/]")
        return

    table = Table(title=f"🧾 Applied lines (payment {payment_id})", show_header=True)
    table.add_column("Invoice", style="cyan")
    table.add_column("Due", style="dim")
    table.add_column("Remaining", justify="right")
    table.add_column("Freight", justify="right")
    table.add_column("Terms", justify="right")
    table.add_column("Branch")
    table.add_column("Applied", justify="right", style="bold")
    table.add_column("Auto")

    for line in lines:
        table.add_row(
            line.invoice_no or "-",
            line.net_due_date.strftime("%m/%d/%Y") if line.net_due_date else "-",
            format_amount(line.amount_remaining) if line.amount_remaining is not None else "-",
            format_amount(line.freight_allowed) if line.freight_allowed is not None else "-",
            format_amount(line.terms_amount) if line.terms_amount is not None else "-",
            line.branch_id or "-",
            format_amount(line.applied_amount),
            "✓" if line.was_auto_matched else "",
        )
    console.print(table)


# ============================================================================
# COMMAND: logs
# ============================================================================


@app.command()
def logs(
    payment_id: int = typer.Argument(..., help="Payment ID"),
):
    """📜 Show the matching log of a payment."""
    with get_db_session() as session:
        entries = PaymentRepository(session).find_logs(payment_id)

        if not entries:
            console.print("[yellow]No log entries[/]")
            return

        table = Table(title=f"📜 Match log (payment {payment_id})", show_header=True)
        table.add_column("When", style="dim")
        table.add_column("Level")
        table.add_column("Message")
        for entry in entries:
            table.add_row(
                entry.created_at.strftime("%Y-%m-%d %H:%M:%S") if entry.created_at else "-",
                entry.level,
                escape(entry.message),
            )
        console.print(table)


# ============================================================================
# COMMAND: assign / suggest
# ============================================================================


@app.command()
def assign(
    payment_id: int = typer.Argument(..., help="Payment ID"),
    customer_id: str = typer.Argument(..., help="Customer ID"),
):
    """👤 Assign a customer and remember the payment's bank account."""
    with get_db_session() as session:
        try:
            payment = BatchService(session).assign_customer(payment_id, customer_id)
        except (ValidationError, PaymentStateError, RecordNotFoundError) as e:
            _fail(e.message)

        console.print(f"[green]✓ Payment {payment.id} assigned to customer {payment.customer_id}[/]")
        if payment.route_account_key:
            console.print(f"[dim]Lookup saved for {payment.route_account_key}[/]")


@app.command()
def suggest(
    invoice_number: str = typer.Argument(..., help="Invoice number from the remittance"),
):
    """💡 Suggest the customer owning an invoice number."""
    try:
        hint_source = get_hint_source()
    except ConfigurationError as e:
        _fail(str(e))

    with get_db_session() as session:
        customer_id = BatchService(session, hint_source=hint_source).suggest_customer(
            invoice_number
        )

    if customer_id:
        console.print(f"[green]✓ Invoice {invoice_number} belongs to customer {customer_id}[/]")
    else:
        console.print(f"[yellow]No customer found for invoice {invoice_number}[/]")


# ============================================================================
# COMMAND: close
# ============================================================================


@app.command()
def close(
    batch_ids: list[int] = typer.Argument(..., help="Batch IDs to close"),
):
    """✅ Mark batches as completed."""
    with get_db_session() as session:
        closed = BatchService(session).close_batches(batch_ids)
    console.print(f"[green]✓ Closed {closed} batch(es)[/]")


# ============================================================================
# COMMANDS: lookups / lookup-set
# ============================================================================


@app.command()
def lookups():
    """🔑 List customer lookups."""
    with get_db_session() as session:
        rows = LookupService(session).list_all()

        if not rows:
            console.print("[yellow]No customer lookups[/]")
            return

        table = Table(title="🔑 Customer lookups", show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Key")
        table.add_column("Customer", style="bold")
        table.add_column("Confidence", justify="right")
        for lookup in rows:
            table.add_row(
                str(lookup.key_type), lookup.key_value, lookup.customer_id, f"{lookup.confidence:.2f}"
            )
        console.print(table)


@app.command("lookup-set")
def lookup_set(
    key_type: str = typer.Argument(..., help="BankRouteAcct | BankAcct | AddrHash"),
    key_value: str = typer.Argument(..., help="Key value"),
    customer_id: str = typer.Argument(..., help="Customer ID"),
    confidence: float = typer.Option(1.0, "--confidence", "-c", min=0.0, max=1.0),
):
    """✏️  Create or update a customer lookup."""
    with get_db_session() as session:
        try:
            LookupService(session).upsert(key_type, key_value, customer_id, confidence)
        except ValidationError as e:
            _fail(e.message)
        session.commit()
    console.print(f"[green]✓ {key_type} {key_value} → {customer_id}[/]")


# ============================================================================
# COMMAND: export
# ============================================================================


@app.command("export")
def export_batch(
    batch_id: int = typer.Argument(..., help="Batch ID"),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Export directory"),
    fiscal_year: Optional[int] = typer.Option(None, "--fiscal-year", "-y"),
    period: Optional[int] = typer.Option(None, "--period", "-p", min=1, max=13),
    batch_name: str = typer.Option("", "--batch-name", "-n", help="Deposit/batch name"),
    payment_date: Optional[datetime] = typer.Option(
        None, "--payment-date", formats=["%Y-%m-%d", "%m/%d/%Y"]
    ),
):
    """📤 Export AutoApplied payments to the ERP import files."""
    options = build_export_options(
        get_settings(),
        export_directory=directory,
        fiscal_year=fiscal_year,
        period=period,
        batch_name=batch_name,
        payment_date=payment_date.date() if payment_date else date.today(),
    )

    with get_db_session() as session:
        try:
            count = ExportService(session).export_auto_applied(batch_id, options)
        except RecordNotFoundError as e:
            _fail(e.message)
        except CashBatchError as e:
            _fail(str(e))

    if count:
        console.print(f"[green]✓ Exported {count} payment(s) to {options.export_directory}[/]")
    else:
        console.print("[yellow]No AutoApplied payments to export[/]")
