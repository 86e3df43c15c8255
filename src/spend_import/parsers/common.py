"""Row-level normalization shared by every parser.

Each parser tokenizes its own layout and hands the extracted cells to
:func:`build_transaction`, which applies the common acceptance policy and
returns a :data:`~spend_import.models.RowOutcome` value instead of raising.
:func:`collect` folds those outcomes into a
:class:`~spend_import.models.ParseResult`.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable, Iterator
from datetime import date
from decimal import Decimal, InvalidOperation

from spend_import.models import (
    ParsedTransaction,
    ParseResult,
    RowError,
    RowOutcome,
    RowSkipped,
)

logger = logging.getLogger(__name__)

# Descriptions of rows that move money between the user's own accounts.
# Matched case-sensitively as substrings of the merchant or memo.
SKIP_PHRASES = (
    "Savings Transfer",
    "Internal Transfer",
    "Loan Payment",
    "Payment Thank You",
)

_AMOUNT_STRIP_RE = re.compile(r"[^0-9.\-]")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def clean_amount(value: str) -> Decimal | None:
    """Parse a bank amount cell such as ``"$1,234.56"``.

    Every character other than digits, ``.`` and ``-`` is stripped before
    parsing. A blank cell means "no amount" and parses to zero.

    Returns:
        The parsed amount, or ``None`` if the cell is not blank but does
        not contain a number.
    """
    if not value.strip():
        return Decimal("0")
    cleaned = _AMOUNT_STRIP_RE.sub("", value)
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def normalize_date(value: str) -> date | None:
    """Parse ``YYYY-MM-DD`` or ``MM/DD/YYYY`` into a date.

    Returns ``None`` for any other shape or for an impossible calendar date.
    """
    value = value.strip()
    match = _ISO_DATE_RE.match(value)
    if match:
        year, month, day = match.groups()
    else:
        match = _US_DATE_RE.match(value)
        if not match:
            return None
        month, day, year = match.groups()
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def skip_phrase(*texts: str) -> str | None:
    """Return the first skip phrase contained in any of *texts*."""
    for phrase in SKIP_PHRASES:
        if any(phrase in text for text in texts):
            return phrase
    return None


def build_transaction(
    line: int,
    *,
    date_text: str,
    merchant: str,
    amount: Decimal | None,
    amount_text: str,
    bank_category: str = "",
    description: str = "",
    raw: dict[str, str] | None = None,
) -> RowOutcome:
    """Apply the acceptance policy to one row's extracted cells.

    Checks run in a fixed order: empty merchant, skip phrase, amount,
    date. A skip phrase therefore wins over an otherwise valid amount.

    Args:
        line: Source record number, used in error messages.
        date_text: Raw date cell.
        merchant: Raw merchant cell.
        amount: Amount already run through :func:`clean_amount`, or
            ``None`` if it could not be parsed.
        amount_text: Raw amount cell(s), for the error message.
        bank_category: Raw bank category cell.
        description: Raw memo/description cell.
        raw: Column mapping kept on the transaction for diagnostics.
    """
    merchant = merchant.strip()
    if not merchant:
        return RowSkipped(line, "empty merchant")

    phrase = skip_phrase(merchant, description)
    if phrase is not None:
        return RowSkipped(line, f"matches {phrase!r}")

    if amount is None:
        return RowError(line, f'Invalid amount "{amount_text}"')
    if amount <= 0:
        return RowSkipped(line, "not an expense")

    txn_date = normalize_date(date_text)
    if txn_date is None:
        return RowError(line, f'Invalid date format "{date_text}"')

    return ParsedTransaction(
        date=txn_date,
        merchant=merchant,
        amount=amount,
        bank_category=bank_category.strip(),
        description=description.strip(),
        line=line,
        raw=dict(raw or {}),
    )


def read_records(text: str) -> Iterator[tuple[int, list[str]]]:
    """Tokenize CSV *text*, yielding ``(line_number, cells)`` per record.

    Uses the ``csv`` module, so quoted fields may contain commas, doubled
    quotes and newlines. A leading byte-order mark is dropped and blank
    records are not yielded. The line number is the physical line on which
    the record ends.

    Raises:
        csv.Error: If the text cannot be tokenized.
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    for cells in reader:
        if not any(cell.strip() for cell in cells):
            continue
        yield reader.line_num, cells


def collect(outcomes: Iterable[RowOutcome]) -> ParseResult:
    """Fold per-row outcomes into a :class:`ParseResult`."""
    result = ParseResult()
    for outcome in outcomes:
        if isinstance(outcome, ParsedTransaction):
            result.transactions.append(outcome)
        elif isinstance(outcome, RowError):
            result.errors.append(str(outcome))
        else:
            logger.debug("Skipped line %d: %s", outcome.line, outcome.reason)
            result.skipped += 1

    logger.debug(
        "Parsed %d transaction(s), skipped %d, %d error(s)",
        len(result.transactions),
        result.skipped,
        len(result.errors),
    )
    return result
