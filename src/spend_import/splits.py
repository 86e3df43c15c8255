"""Split editing for mapped transactions.

A split replaces a transaction's single category with two or more
fragments, each with its own amount and category. All functions here are
pure: they take a :class:`~spend_import.models.MappedTransaction` and return
a new one.

Fragments may be temporarily out of balance, or zero, while the user edits
them; :func:`is_split_valid` tells the caller whether the split can be
committed.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_DOWN, Decimal

from spend_import.errors import SplitImbalanceError, SplitStateError
from spend_import.models import (
    Category,
    MappedTransaction,
    Single,
    Split,
    TransactionSplit,
)

TOLERANCE = Decimal("0.01")
_CENT = Decimal("0.01")


def _require_split(mapped: MappedTransaction) -> Split:
    if not isinstance(mapped.assignment, Split):
        raise SplitStateError(f"Transaction {mapped.merchant!r} is not split")
    return mapped.assignment


def _with_splits(mapped: MappedTransaction, splits: list[TransactionSplit]) -> MappedTransaction:
    current = _require_split(mapped)
    return replace(mapped, assignment=Split(tuple(splits), previous=current.previous))


def start_split(mapped: MappedTransaction) -> MappedTransaction:
    """Split *mapped* into two halves that inherit its category.

    The first half is rounded down to the cent and the second takes the
    remainder, so the halves always add up to the parent amount exactly.
    Starting a split on an already-split transaction returns it unchanged.
    """
    if mapped.is_split:
        return mapped
    amount = mapped.amount
    if amount == amount.quantize(_CENT):
        first = (amount / 2).quantize(_CENT, rounding=ROUND_DOWN)
        second = amount - first
    else:
        first = second = amount / 2
    category = mapped.category
    splits = (TransactionSplit(first, category), TransactionSplit(second, category))
    return replace(mapped, assignment=Split(splits, previous=category))


def split_total(mapped: MappedTransaction) -> Decimal:
    """Sum of the split amounts (zero for a transaction that is not split)."""
    return sum((s.amount for s in mapped.splits), Decimal("0"))


def split_difference(mapped: MappedTransaction) -> Decimal:
    """Parent amount minus the split total; positive means under-allocated."""
    if not mapped.is_split:
        return Decimal("0")
    return mapped.amount - split_total(mapped)


def _first_non_positive(mapped: MappedTransaction) -> Decimal | None:
    for fragment in mapped.splits:
        if fragment.amount <= 0:
            return fragment.amount
    return None


def is_split_valid(mapped: MappedTransaction) -> bool:
    """True when every fragment is positive and they add up to the parent.

    The sum may be off by less than one cent. A transaction that is not
    split is always valid.
    """
    if _first_non_positive(mapped) is not None:
        return False
    return abs(split_difference(mapped)) < TOLERANCE


def add_split(mapped: MappedTransaction) -> MappedTransaction:
    """Append a fragment pre-filled with the unallocated remainder.

    The remainder is clamped at zero, so adding a fragment never makes an
    over-allocated split worse.
    """
    split = _require_split(mapped)
    remaining = max(mapped.amount - split_total(mapped), Decimal("0"))
    return _with_splits(mapped, [*split.splits, TransactionSplit(remaining, split.previous)])


def remove_split(mapped: MappedTransaction, index: int) -> MappedTransaction:
    """Remove fragment *index*; a no-op when only two fragments remain.

    Raises:
        IndexError: If *index* does not name a fragment.
    """
    split = _require_split(mapped)
    splits = list(split.splits)
    if not -len(splits) <= index < len(splits):
        raise IndexError(f"No split at index {index}")
    if len(splits) <= 2:
        return mapped
    del splits[index]
    return _with_splits(mapped, splits)


def update_split(
    mapped: MappedTransaction,
    index: int,
    *,
    amount: Decimal | None = None,
    category: Category | str | None = None,
) -> MappedTransaction:
    """Change the amount and/or category of one fragment.

    The fragment's template follows its own category; other fragments and
    the parent are untouched.

    Raises:
        IndexError: If *index* does not name a fragment.
        ValueError: If *category* is not a known category id.
    """
    split = _require_split(mapped)
    splits = list(split.splits)
    fragment = splits[index]
    if amount is not None:
        fragment = replace(fragment, amount=Decimal(amount))
    if category is not None:
        fragment = replace(fragment, category=Category.parse(category))
    splits[index] = fragment
    return _with_splits(mapped, splits)


def cancel_split(mapped: MappedTransaction) -> MappedTransaction:
    """Drop all fragments and restore the single category held before."""
    if not isinstance(mapped.assignment, Split):
        return mapped
    return replace(mapped, assignment=Single(mapped.assignment.previous))


def ensure_balanced(mapped: MappedTransaction) -> None:
    """Raise :class:`SplitImbalanceError` if *mapped* cannot be committed."""
    fragment = _first_non_positive(mapped)
    if fragment is not None:
        raise SplitImbalanceError(mapped.merchant, split_difference(mapped), fragment=fragment)
    if not is_split_valid(mapped):
        raise SplitImbalanceError(mapped.merchant, split_difference(mapped))
