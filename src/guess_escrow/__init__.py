"""Commit-reveal escrow betting ledger."""

__version__ = "1.0.0"
