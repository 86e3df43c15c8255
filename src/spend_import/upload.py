"""File-level helpers around the parsers: pre-checks, reading, template.

The pre-check runs before any parsing so an oversized or mistyped upload
fails fast with a reason the user can act on.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path

from spend_import.models import FileCheck

MAX_FILE_SIZE = 10 * 1024 * 1024

TEMPLATE_HEADERS = ["Date", "Description", "Amount", "Category"]
TEMPLATE_ROWS = [
    ["2025-10-09", "KROGER 70012", "31.98", "Groceries"],
    ["2025-10-08", "CASEYS 2574", "45.50", "Auto & Transport"],
    ["2025-10-07", "ALDI 70012", "28.47", "Groceries"],
    ["2025-10-06", "AMAZON MKTP", "19.99", "Shopping"],
]


def validate_csv_file(path: Path, max_size: int = MAX_FILE_SIZE) -> FileCheck:
    """Check that *path* looks like an importable CSV before reading it.

    Args:
        path: The uploaded file.
        max_size: Maximum accepted size in bytes (10 MB by default).

    Returns:
        A :class:`FileCheck`; ``error`` explains why the file was rejected.
    """
    path = Path(path)
    if path.suffix.lower() != ".csv":
        return FileCheck(valid=False, error="File must be a CSV (.csv)")
    if not path.is_file():
        return FileCheck(valid=False, error=f"File not found: {path}")
    if path.stat().st_size > max_size:
        limit_mb = max_size / (1024 * 1024)
        return FileCheck(valid=False, error=f"File size must be less than {limit_mb:g}MB")
    return FileCheck(valid=True)


def read_csv_file(path: Path) -> str:
    """Read an uploaded CSV as text, dropping a UTF-8 byte-order mark."""
    return Path(path).read_text(encoding="utf-8-sig")


def generate_csv_template() -> str:
    """Return a starter CSV with the expected columns and example rows."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(TEMPLATE_ROWS)
    return buf.getvalue()
