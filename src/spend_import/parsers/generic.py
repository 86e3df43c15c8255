"""Header-aware parser for arbitrary bank CSV exports.

Columns are located by name rather than position. The first row is the
header; each logical field accepts a small set of header aliases, matched
case-sensitively after trimming:

    date:      Date, Transaction Date, Posted Date
    merchant:  Name, Merchant, Payee, Description
    amount:    Amount, Transaction Amount (or a Debit/Credit pair)
    category:  Category, Bank Category, Type
    memo:      Description, Memo, Notes

Sign convention:
    Positive amounts are expenses. Zero and negative amounts (income,
    refunds) are skipped. In a Debit/Credit layout the debit is the expense
    and a credit counts as negative.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator
from decimal import Decimal

from spend_import.models import ParseResult, RowError, RowOutcome
from spend_import.parsers.common import build_transaction, clean_amount, collect, read_records

logger = logging.getLogger(__name__)

DATE_HEADERS = ("Date", "Transaction Date", "Posted Date")
MERCHANT_HEADERS = ("Name", "Merchant", "Payee", "Description")
AMOUNT_HEADERS = ("Amount", "Transaction Amount")
DEBIT_HEADERS = ("Debit",)
CREDIT_HEADERS = ("Credit",)
CATEGORY_HEADERS = ("Category", "Bank Category", "Type")
MEMO_HEADERS = ("Description", "Memo", "Notes")


def find_header(headers: list[str], aliases: tuple[str, ...], exclude: int | None = None) -> int | None:
    """Return the column index of the first alias present in *headers*.

    Aliases are tried in order, so ``"Name"`` beats ``"Description"`` for
    the merchant column even when both exist. *exclude* is a column index
    that may not be returned (used so the memo never repeats the merchant).
    """
    for alias in aliases:
        for index, header in enumerate(headers):
            if header == alias and index != exclude:
                return index
    return None


def parse(text: str) -> ParseResult:
    """Parse bank-export CSV *text* into normalized expense transactions.

    Never raises for a bad row: row problems are reported as
    ``"Line <n>: <reason>"`` strings in ``errors`` and the row is dropped.
    Only an empty file or missing required headers stop the parse early,
    in which case no transactions are returned.

    Args:
        text: Full contents of the uploaded file.

    Returns:
        A :class:`ParseResult`. ``success`` is true when ``errors`` is
        empty, however many rows were skipped.
    """
    records = read_records(text)
    try:
        first = next(records, None)
    except csv.Error as exc:
        return ParseResult(errors=[f"Could not read CSV: {exc}"])
    if first is None:
        return ParseResult(errors=["CSV file is empty"])

    _, header_cells = first
    headers = [h.strip() for h in header_cells]

    date_col = find_header(headers, DATE_HEADERS)
    merchant_col = find_header(headers, MERCHANT_HEADERS)
    amount_col = find_header(headers, AMOUNT_HEADERS)
    debit_col = find_header(headers, DEBIT_HEADERS)
    credit_col = find_header(headers, CREDIT_HEADERS)
    category_col = find_header(headers, CATEGORY_HEADERS)
    memo_col = find_header(headers, MEMO_HEADERS, exclude=merchant_col)

    errors: list[str] = []
    if date_col is None:
        errors.append("Could not find Date column. Expected headers: " + ", ".join(DATE_HEADERS))
    if merchant_col is None:
        errors.append(
            "Could not find Merchant/Name column. Expected headers: " + ", ".join(MERCHANT_HEADERS)
        )
    if amount_col is None and debit_col is None and credit_col is None:
        errors.append(
            "Could not find Amount column. Expected headers: "
            + ", ".join(AMOUNT_HEADERS + DEBIT_HEADERS + CREDIT_HEADERS)
        )
    if errors or date_col is None or merchant_col is None:
        return ParseResult(errors=errors)

    required = [date_col, merchant_col]
    if amount_col is not None:
        required.append(amount_col)
    else:
        required.extend(col for col in (debit_col, credit_col) if col is not None)
    needed = max(required) + 1

    def outcomes() -> Iterator[RowOutcome]:
        for line, cells in records:
            if len(cells) < needed:
                yield RowError(line, f"Insufficient columns ({len(cells)} < {needed})")
                continue

            def cell(col: int | None) -> str:
                if col is None or col >= len(cells):
                    return ""
                return cells[col]

            if amount_col is not None:
                amount_text = cell(amount_col)
                amount = clean_amount(amount_text)
            else:
                amount_text = "/".join(cell(c) for c in (debit_col, credit_col) if c is not None)
                amount = _debit_credit_amount(cell(debit_col), cell(credit_col))

            yield build_transaction(
                line,
                date_text=cell(date_col),
                merchant=cell(merchant_col),
                amount=amount,
                amount_text=amount_text,
                bank_category=cell(category_col),
                description=cell(memo_col),
                raw=dict(zip(headers, cells)),
            )

    try:
        return collect(outcomes())
    except csv.Error as exc:
        # Tokenizer failure mid-file: keep nothing rather than a partial parse.
        logger.warning("CSV tokenizer failed: %s", exc)
        return ParseResult(errors=[f"Could not read CSV: {exc}"])


def _debit_credit_amount(debit_text: str, credit_text: str) -> Decimal | None:
    """Combine split Debit/Credit cells into one signed expense amount."""
    debit = clean_amount(debit_text)
    credit = clean_amount(credit_text)
    if debit is None or credit is None:
        return None
    if debit > 0:
        return debit
    return -credit
