"""Cash application CLI."""

from .payment_cli import app

__all__ = ["app"]
