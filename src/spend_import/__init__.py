"""Spend Import: bank CSV ingestion, categorization and ledger reconciliation."""

__version__ = "0.1.0"
