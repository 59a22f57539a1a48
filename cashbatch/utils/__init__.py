"""Shared utilities: configuration, logging, money and timeouts."""
