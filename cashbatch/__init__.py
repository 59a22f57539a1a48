"""CashBatch - automatic cash application for bank remittance batches."""

__version__ = "0.1.0"
