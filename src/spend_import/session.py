"""Review session for one import.

An :class:`ImportSession` holds the categorized rows of one parsed file
while the user reviews them: changing categories, flagging rows to save as
rules, and splitting rows. Nothing is written until the caller passes
:meth:`ImportSession.ready_rows` to
:func:`~spend_import.reconciler.reconcile`; discarding the session cancels
the import.

Rows whose split does not add up are held back from ``ready_rows`` until
they are fixed or the split is cancelled. Other rows are unaffected.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from decimal import Decimal

from spend_import import splits as split_ops
from spend_import.categorizer import categorize, recategorize, summarize
from spend_import.models import (
    Category,
    MappedTransaction,
    MappingSummary,
    ParseResult,
    TransactionRule,
)


class ImportSession:
    """Mutable review state over immutable :class:`MappedTransaction` rows."""

    def __init__(self, parse_result: ParseResult, rules: Iterable[TransactionRule]) -> None:
        self.parse_result = parse_result
        self.rules = list(rules)
        self.rows: list[MappedTransaction] = categorize(parse_result.transactions, self.rules)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> MappedTransaction:
        return self.rows[index]

    # -- row edits -------------------------------------------------------------

    def set_category(self, index: int, category: Category | str) -> MappedTransaction:
        self.rows[index] = recategorize(self.rows[index], category)
        return self.rows[index]

    def set_save_rule(self, index: int, save: bool = True) -> MappedTransaction:
        self.rows[index] = replace(self.rows[index], save_rule=save)
        return self.rows[index]

    # -- splits ----------------------------------------------------------------

    def start_split(self, index: int) -> MappedTransaction:
        self.rows[index] = split_ops.start_split(self.rows[index])
        return self.rows[index]

    def add_split(self, index: int) -> MappedTransaction:
        self.rows[index] = split_ops.add_split(self.rows[index])
        return self.rows[index]

    def remove_split(self, index: int, split_index: int) -> MappedTransaction:
        self.rows[index] = split_ops.remove_split(self.rows[index], split_index)
        return self.rows[index]

    def update_split(
        self,
        index: int,
        split_index: int,
        *,
        amount: Decimal | None = None,
        category: Category | str | None = None,
    ) -> MappedTransaction:
        self.rows[index] = split_ops.update_split(
            self.rows[index], split_index, amount=amount, category=category
        )
        return self.rows[index]

    def cancel_split(self, index: int) -> MappedTransaction:
        self.rows[index] = split_ops.cancel_split(self.rows[index])
        return self.rows[index]

    def save_split(self, index: int) -> MappedTransaction:
        """Confirm the split on row *index*.

        Raises:
            SplitImbalanceError: While the fragments do not add up or one
                of them is not positive.
        """
        split_ops.ensure_balanced(self.rows[index])
        return self.rows[index]

    # -- status ----------------------------------------------------------------

    def summary(self) -> MappingSummary:
        return summarize(self.rows, self.rules)

    def blocked_rows(self) -> list[int]:
        """Indexes of rows held back because their split cannot be committed."""
        return [i for i, row in enumerate(self.rows) if not split_ops.is_split_valid(row)]

    def ready_rows(self) -> list[MappedTransaction]:
        """Rows that can be committed now."""
        return [row for row in self.rows if split_ops.is_split_valid(row)]
