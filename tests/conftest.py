"""Shared pytest fixtures for Spend Import tests.

Provides reusable fixtures for:
- fixtures_dir: path to the CSV fixture files.
- store: a SqlLedgerStore on a file-backed SQLite database, schema created.
- project_dir: a temporary project with spend.toml pointing at that database,
  for CLI tests.
- sample_rules: a handful of TransactionRule objects with overlapping keywords.
- make_txn: factory for ParsedTransaction objects.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from spend_import.models import Category, ParsedTransaction, TransactionRule
from spend_import.store import SqlLedgerStore, create_store

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the tests/fixtures/ directory."""
    return FIXTURES_DIR


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """URL of a file-backed SQLite database unique to the test.

    A file (rather than ``:memory:``) lets every session in the store see
    the same data.
    """
    return f"sqlite:///{tmp_path / 'spend.db'}"


@pytest.fixture
def store(database_url: str) -> SqlLedgerStore:
    """A ledger store with the schema created."""
    return create_store(database_url)


@pytest.fixture
def project_dir(tmp_path: Path, database_url: str, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary project directory with a spend.toml, set as the cwd."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "spend.toml").write_text(
        "[general]\n"
        'user = "tester"\n\n'
        "[database]\n"
        f'url = "{database_url}"\n\n'
        "[import]\n"
        'parser = "generic"\n'
        "max_file_size_mb = 10\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("SPEND_DATABASE_URL", raising=False)
    monkeypatch.chdir(project)
    return project


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_rules() -> list[TransactionRule]:
    """Rules with overlapping keywords, deliberately not in priority order."""
    return [
        TransactionRule(
            keyword="AMAZON",
            category=Category.MISC_SHOP,
            created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        ),
        TransactionRule(
            keyword="KROGER",
            category=Category.GROCERY,
            created_at=datetime(2025, 1, 2, tzinfo=timezone.utc),
        ),
        TransactionRule(
            keyword="AMAZON PHARMACY",
            category=Category.MISC_HEALTH,
            created_at=datetime(2025, 1, 3, tzinfo=timezone.utc),
        ),
    ]


@pytest.fixture
def make_txn():
    """Factory for ParsedTransaction objects with sensible defaults."""

    def _make(
        merchant: str = "ALDI 70012",
        amount: str | Decimal = "31.98",
        *,
        bank_category: str = "",
        txn_date: date = date(2025, 10, 9),
        description: str = "",
        line: int = 2,
    ) -> ParsedTransaction:
        return ParsedTransaction(
            date=txn_date,
            merchant=merchant,
            amount=Decimal(amount),
            bank_category=bank_category,
            description=description,
            line=line,
        )

    return _make
