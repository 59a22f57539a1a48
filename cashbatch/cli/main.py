"""Main CLI entry point for CashBatch."""

import typer
from rich.console import Console

from cashbatch import __version__
from cashbatch.storage.database.base import init_db
from cashbatch.utils.config import get_settings
from cashbatch.utils.logging import configure_from_settings, get_logger

# Cash application commands live in the payment package.
from ..payment.cli import app as payment_app

app = typer.Typer(
    name="cashbatch",
    help="💵 Bank remittance cash application with exact invoice matching",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()
logger = get_logger(__name__)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]CashBatch[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """
    CashBatch - reconcile bank remittances against open ERP invoices.

    Payments are matched to the penny against a customer's open invoices and
    exported in the ERP's tab-delimited import format.
    """
    settings = get_settings()
    configure_from_settings(settings)

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    init_db(settings.resolved_database_url)

    if settings.metrics_enabled:
        from cashbatch.payment.metrics import start_metrics_server

        start_metrics_server(settings.metrics_port)

    logger.debug("cli_started", command=ctx.invoked_subcommand)


# Register command groups
app.add_typer(payment_app, name="payment", help="💵 Cash application & ERP export")


if __name__ == "__main__":
    app()
