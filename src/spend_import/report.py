"""Preview writer and summary printers for the ``import`` command.

- :func:`write_preview` writes the flattened ledger entries of a reviewed
  import to a CSV file so they can be inspected before committing.
- :func:`print_review_summary` prints what was parsed and how it was
  categorized.
- :func:`print_import_summary` prints what was written to the store.
"""

from __future__ import annotations

import csv
from collections import Counter, defaultdict
from decimal import Decimal
from pathlib import Path

from spend_import.models import (
    Category,
    ImportResult,
    MappedTransaction,
    MappingSummary,
    MatchSource,
    ParseResult,
)
from spend_import.reconciler import flatten

PREVIEW_COLUMNS = [
    "date",
    "name",
    "amount",
    "category",
    "template",
    "bank_category",
    "description",
]


def write_preview(rows: list[MappedTransaction], output_path: str | Path) -> Path:
    """Write the ledger entries *rows* would produce to *output_path*.

    Split rows appear once per fragment. Overwrites an existing file.

    Returns:
        The :class:`~pathlib.Path` written.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=PREVIEW_COLUMNS)
        writer.writeheader()
        for entry in flatten(rows):
            writer.writerow(
                {
                    "date": entry.date.isoformat(),
                    "name": entry.name,
                    "amount": str(entry.amount),
                    "category": entry.category.value,
                    "template": entry.category.template.value,
                    "bank_category": entry.bank_category,
                    "description": entry.description,
                }
            )
    return output_path


def print_review_summary(
    source: str,
    parse_result: ParseResult,
    rows: list[MappedTransaction],
    summary: MappingSummary,
) -> None:
    """Print parse counts, categorization breakdown and spend per category.

    Args:
        source: File name shown in the header.
        parse_result: Output of the parser.
        rows: Categorized rows as they currently stand.
        summary: Counters from :func:`~spend_import.categorizer.summarize`.
    """
    category_totals: defaultdict[Category, Decimal] = defaultdict(Decimal)
    for entry in flatten(rows):
        category_totals[entry.category] += entry.amount

    review_count: Counter[str] = Counter()
    for row in rows:
        if row.source is MatchSource.DEFAULT:
            review_count[row.merchant] += 1
    top_review = sorted(review_count, key=lambda m: (-review_count[m], m))[:10]

    print()
    print(f"== Import Preview: {source} ==")
    print(f"Parsed:   {len(parse_result.transactions)} transactions")
    print(f"Skipped:  {parse_result.skipped} (transfers, income, blank merchants)")
    print(f"Errors:   {len(parse_result.errors)}")
    print(f"Matched by rules: {summary.matched_by_rule}")
    print(f"Auto-mapped:      {summary.auto_mapped}")
    print(f"Need review:      {summary.needs_review}")

    if top_review:
        print()
        print("Merchants needing review:")
        for i, merchant in enumerate(top_review, start=1):
            print(f"  {i:>2}. {merchant:<30} ({review_count[merchant]} txns)")

    if category_totals:
        print()
        print("Spending by category:")
        for category, total in sorted(category_totals.items(), key=lambda pair: -pair[1]):
            label = f"{category.label} ({category.template.value}):"
            print(f"  {label:<36} ${total:,.2f}")

    if parse_result.errors:
        print()
        print(f"Errors: {len(parse_result.errors)}")
        for e in parse_result.errors:
            print(f"  - {e}")

    print()


def print_import_summary(result: ImportResult, held_back: int = 0) -> None:
    """Print the counts of a completed import."""
    print()
    print("== Import Summary ==")
    print(f"  Transactions imported: {result.imported}")
    print(f"  Items upserted:        {result.items_upserted}")
    print(f"  Logs created:          {result.logs_created}")
    if result.logs_deduplicated:
        print(f"  Already imported:      {result.logs_deduplicated}")
    print(f"  Rules saved:           {result.rules_saved}")
    if held_back:
        print(f"  Held back (unbalanced split): {held_back}")
    print()
