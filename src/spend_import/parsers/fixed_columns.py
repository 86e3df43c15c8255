"""Parser for the bank's fixed 14-column transaction export.

Fixed-column CSV format (header row present but ignored):
    0 Date, 5 Name, 7 Amount, 8 Description, 9 Category

Sign convention:
    Positive amounts are expenses; zero and negative amounts are skipped.

Rows with fewer than 11 columns are reported as errors.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator

from spend_import.models import ParseResult, RowError, RowOutcome
from spend_import.parsers.common import build_transaction, clean_amount, collect, read_records

logger = logging.getLogger(__name__)

DATE_COL = 0
NAME_COL = 5
AMOUNT_COL = 7
DESCRIPTION_COL = 8
CATEGORY_COL = 9
MIN_COLUMNS = 11


def parse(text: str) -> ParseResult:
    """Parse a fixed-column bank export into normalized expense transactions.

    Args:
        text: Full contents of the uploaded file.

    Returns:
        A :class:`ParseResult`; see :func:`spend_import.parsers.generic.parse`
        for the error and skip semantics, which are identical.
    """
    records = read_records(text)
    try:
        header = next(records, None)
    except csv.Error as exc:
        return ParseResult(errors=[f"Could not read CSV: {exc}"])
    if header is None:
        return ParseResult(errors=["CSV file is empty"])

    def outcomes() -> Iterator[RowOutcome]:
        for line, cells in records:
            if len(cells) < MIN_COLUMNS:
                yield RowError(line, f"Insufficient columns ({len(cells)} < {MIN_COLUMNS})")
                continue
            amount_text = cells[AMOUNT_COL]
            yield build_transaction(
                line,
                date_text=cells[DATE_COL],
                merchant=cells[NAME_COL],
                amount=clean_amount(amount_text),
                amount_text=amount_text,
                bank_category=cells[CATEGORY_COL],
                description=cells[DESCRIPTION_COL],
                raw={str(i): value for i, value in enumerate(cells)},
            )

    try:
        return collect(outcomes())
    except csv.Error as exc:
        logger.warning("CSV tokenizer failed: %s", exc)
        return ParseResult(errors=[f"Could not read CSV: {exc}"])
