"""Categorization engine: rule matching, bank-category mapping, overrides.

Every parsed transaction is assigned a category by the first of these that
applies:

1. **User rule** -- the merchant contains a rule keyword
   (case-insensitive). When several rules match, the longest keyword wins;
   equal lengths go to the rule created first, then to the keyword that
   sorts first. The result never depends on the order the store returned
   the rules in.
2. **Bank category** -- the bank's own category label is looked up in the
   built-in ``BANK_CATEGORY_MAP`` (exact string match).
3. **Default** -- ``misc-shop`` (template ``chronicle``).

Mapping is pure: no store access, no mutation of the inputs.

Depends on ``models.py`` and ``errors.py`` only.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from spend_import.errors import RuleError
from spend_import.models import (
    DEFAULT_CATEGORY,
    Category,
    MappedTransaction,
    MappingSummary,
    MatchSource,
    ParsedTransaction,
    Single,
    TransactionRule,
)

BANK_CATEGORY_MAP: dict[str, Category] = {
    "Groceries": Category.GROCERY,
    "Shopping": Category.MISC_SHOP,
    "Supplements": Category.SUPPLEMENTS,
    "Auto & Transport": Category.AUTO,
    "Rent": Category.RENT,
    "Bills & Utilities": Category.BILLS,
    "Invests": Category.INVESTMENT,
    "Investment": Category.INVESTMENT,
    "Education": Category.MISC_SHOP,
    "Software & Tech": Category.MISC_SHOP,
}


# ---------------------------------------------------------------------------
# Rule matching
# ---------------------------------------------------------------------------


def _rule_priority(rule: TransactionRule) -> tuple:
    """Sort key: longest keyword, then oldest, then alphabetical."""
    created = rule.created_at
    return (
        -len(rule.keyword),
        created is None,
        created.timestamp() if created is not None else 0.0,
        rule.keyword.upper(),
    )


def match_rule(merchant: str, rules: Iterable[TransactionRule]) -> TransactionRule | None:
    """Find the best rule whose keyword occurs in *merchant*.

    Args:
        merchant: Merchant string from the bank export.
        rules: The user's rules, in any order.

    Returns:
        The winning :class:`TransactionRule`, or ``None`` if no keyword
        occurs in the merchant.
    """
    merchant_upper = merchant.upper()
    best: TransactionRule | None = None
    for rule in rules:
        if not rule.keyword or rule.keyword.upper() not in merchant_upper:
            continue
        if best is None or _rule_priority(rule) < _rule_priority(best):
            best = rule
    return best


def map_bank_category(bank_category: str) -> Category | None:
    """Translate a bank's category label, or ``None`` if it is not known."""
    return BANK_CATEGORY_MAP.get(bank_category)


# ---------------------------------------------------------------------------
# Categorize stage
# ---------------------------------------------------------------------------


def classify(
    transaction: ParsedTransaction,
    rules: Iterable[TransactionRule],
) -> tuple[Category, MatchSource]:
    """Return the category for *transaction* and which tier chose it."""
    rule = match_rule(transaction.merchant, rules)
    if rule is not None:
        return rule.category, MatchSource.RULE

    bank = map_bank_category(transaction.bank_category)
    if bank is not None:
        return bank, MatchSource.BANK

    return DEFAULT_CATEGORY, MatchSource.DEFAULT


def categorize_one(
    transaction: ParsedTransaction,
    rules: Iterable[TransactionRule],
) -> MappedTransaction:
    """Assign a category (and therefore a template) to one transaction."""
    category, source = classify(transaction, rules)
    return MappedTransaction(
        transaction=transaction,
        assignment=Single(category),
        source=source,
    )


def categorize(
    transactions: Iterable[ParsedTransaction],
    rules: Iterable[TransactionRule],
) -> list[MappedTransaction]:
    """Categorize every transaction, preserving input order."""
    rules = list(rules)
    return [categorize_one(txn, rules) for txn in transactions]


def summarize(
    transactions: Iterable[ParsedTransaction | MappedTransaction],
    rules: Iterable[TransactionRule],
) -> MappingSummary:
    """Count how many transactions each tier would categorize.

    The counts are recomputed from the precedence rules rather than read
    from ``MappedTransaction.source``, so manual overrides made during
    review do not change them.
    """
    rules = list(rules)
    matched = auto = total = 0
    for txn in transactions:
        if isinstance(txn, MappedTransaction):
            txn = txn.transaction
        total += 1
        _, source = classify(txn, rules)
        if source is MatchSource.RULE:
            matched += 1
        elif source is MatchSource.BANK:
            auto += 1
    return MappingSummary(
        matched_by_rule=matched,
        auto_mapped=auto,
        needs_review=total - matched - auto,
    )


def recategorize(mapped: MappedTransaction, category: Category | str) -> MappedTransaction:
    """Return *mapped* with a user-chosen category.

    The template follows the category automatically. For a split
    transaction this sets the category the row reverts to if the split is
    cancelled; the split fragments keep their own categories.
    """
    category = Category.parse(category)
    if mapped.is_split:
        return replace(mapped, assignment=replace(mapped.assignment, previous=category))
    return replace(mapped, assignment=Single(category), source=MatchSource.MANUAL)


# ---------------------------------------------------------------------------
# Rule helpers
# ---------------------------------------------------------------------------


def rule_keyword(merchant: str) -> str:
    """Derive a rule keyword from a merchant: its first word, upper-cased.

    ``"KROGER 8901"`` gives ``"KROGER"``. Returns an empty string for a
    blank merchant.
    """
    parts = merchant.split()
    return parts[0].upper() if parts else ""


def new_rule(
    keyword: str,
    category: Category | str,
    *,
    created_at: datetime | None = None,
) -> TransactionRule:
    """Build a validated rule with a normalized (upper-case) keyword.

    Raises:
        RuleError: If the keyword is blank or the category is unknown.
    """
    keyword = keyword.strip().upper()
    if not keyword:
        raise RuleError("Rule keyword must not be empty")
    try:
        parsed = Category.parse(category)
    except ValueError as exc:
        raise RuleError(str(exc)) from None
    return TransactionRule(keyword=keyword, category=parsed, created_at=created_at)
