"""Application layer for cash application."""
