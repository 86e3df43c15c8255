"""Core data models for Spend Import.

This module defines the category taxonomy, the dataclasses that flow through
the import pipeline, and the result types each stage returns. It has zero
internal imports -- everything depends on it, but it depends on nothing
within the package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Union


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class Category(str, Enum):
    """Internal spending categories (closed set)."""

    GROCERY = "grocery"
    AUTO = "auto"
    RENT = "rent"
    BILLS = "bills"
    INVESTMENT = "investment"
    SUPPLEMENTS = "supplements"
    MISC_SHOP = "misc-shop"
    MISC_HEALTH = "misc-health"
    HOME_GARDEN = "home-garden"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]

    @property
    def template(self) -> Template:
        return template_for(self)

    @classmethod
    def parse(cls, value: str | Category) -> Category:
        """Coerce a category id such as ``"misc-shop"`` to a :class:`Category`.

        Raises:
            ValueError: If *value* is not one of the known category ids.
        """
        if isinstance(value, Category):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown category {value!r}. Expected one of: {valid}") from None


class Template(str, Enum):
    """Display/workflow mode a category's ledger items are tracked with."""

    MARKET = "market"
    COVENANT = "covenant"
    CHRONICLE = "chronicle"
    TREASURY = "treasury"


CATEGORY_TEMPLATES: dict[Category, Template] = {
    Category.GROCERY: Template.MARKET,
    Category.AUTO: Template.MARKET,
    Category.SUPPLEMENTS: Template.MARKET,
    Category.RENT: Template.COVENANT,
    Category.BILLS: Template.COVENANT,
    Category.INVESTMENT: Template.TREASURY,
    Category.MISC_SHOP: Template.CHRONICLE,
    Category.MISC_HEALTH: Template.CHRONICLE,
    Category.HOME_GARDEN: Template.CHRONICLE,
}

CATEGORY_LABELS: dict[Category, str] = {
    Category.GROCERY: "Grocery",
    Category.AUTO: "Auto",
    Category.RENT: "Rent",
    Category.BILLS: "Bills & Utilities",
    Category.INVESTMENT: "Investment",
    Category.SUPPLEMENTS: "Supplements",
    Category.MISC_SHOP: "Misc Shopping",
    Category.MISC_HEALTH: "Misc Health",
    Category.HOME_GARDEN: "Home & Garden",
}

# A category added to the enum without a template is a bug, not a lookup miss.
_unmapped = set(Category) - set(CATEGORY_TEMPLATES)
if _unmapped:
    raise RuntimeError(f"Categories without a template: {sorted(c.value for c in _unmapped)}")
del _unmapped

DEFAULT_CATEGORY = Category.MISC_SHOP


def template_for(category: Category) -> Template:
    """Return the template for *category*. Total over :class:`Category`."""
    return CATEGORY_TEMPLATES[category]


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedTransaction:
    """A normalized candidate expense produced by a parser.

    Attributes:
        date: Transaction date.
        merchant: Trimmed, non-empty counterparty name.
        amount: Positive expense magnitude.
        bank_category: Category label supplied by the bank, or empty string.
        description: Memo/description text, or empty string.
        line: Record number in the source file (the header is line 1).
        raw: The raw column-name to value mapping, for diagnostics only.
    """

    date: date
    merchant: str
    amount: Decimal
    bank_category: str = ""
    description: str = ""
    line: int = 0
    raw: dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class RowError:
    """A row that could not be parsed."""

    line: int
    reason: str

    def __str__(self) -> str:
        return f"Line {self.line}: {self.reason}"


@dataclass(frozen=True)
class RowSkipped:
    """A row that was deliberately ignored (income, transfer, blank merchant)."""

    line: int
    reason: str


RowOutcome = Union[ParsedTransaction, RowError, RowSkipped]


@dataclass
class ParseResult:
    """Return type of every parser.

    Attributes:
        transactions: Accepted expense rows, in file order.
        errors: Human-readable ``"Line <n>: <reason>"`` strings, or a single
            structural error when the file could not be parsed at all.
        skipped: Count of rows ignored on purpose.
    """

    transactions: list[ParsedTransaction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class FileCheck:
    """Outcome of the pre-parse file validation."""

    valid: bool
    error: str = ""


# ---------------------------------------------------------------------------
# Rules and categorization
# ---------------------------------------------------------------------------


@dataclass
class TransactionRule:
    """A user keyword-to-category rule.

    Rules match when the transaction merchant contains ``keyword``
    (case-insensitive). The template is always derived from the category.

    Attributes:
        keyword: Substring to look for, stored upper-case.
        category: Target category.
        id: Store identifier, or ``None`` for rules not yet persisted.
        created_at: Creation timestamp, used to break ties between rules
            of equal keyword length.
    """

    keyword: str
    category: Category
    id: int | None = None
    created_at: datetime | None = None

    @property
    def template(self) -> Template:
        return template_for(self.category)


class MatchSource(str, Enum):
    """How a transaction's category was chosen."""

    RULE = "rule"
    BANK = "bank"
    DEFAULT = "default"
    MANUAL = "manual"


@dataclass(frozen=True)
class TransactionSplit:
    """One fragment of a split transaction."""

    amount: Decimal
    category: Category

    @property
    def template(self) -> Template:
        return template_for(self.category)


@dataclass(frozen=True)
class Single:
    """The whole transaction is assigned to one category."""

    category: Category


@dataclass(frozen=True)
class Split:
    """The transaction is divided into two or more category fragments."""

    splits: tuple[TransactionSplit, ...]
    # Category to return to when the split is cancelled.
    previous: Category

    def __post_init__(self) -> None:
        if len(self.splits) < 2:
            raise ValueError("A split needs at least 2 entries")


Assignment = Union[Single, Split]


@dataclass(frozen=True)
class MappedTransaction:
    """A parsed transaction together with its category assignment.

    Attributes:
        transaction: The underlying parsed row.
        assignment: Either a :class:`Single` category or a :class:`Split`.
        source: How the category was originally chosen.
        save_rule: Whether the import should persist a rule for this
            merchant.
    """

    transaction: ParsedTransaction
    assignment: Assignment
    source: MatchSource = MatchSource.DEFAULT
    save_rule: bool = False

    @property
    def merchant(self) -> str:
        return self.transaction.merchant

    @property
    def amount(self) -> Decimal:
        return self.transaction.amount

    @property
    def category(self) -> Category:
        if isinstance(self.assignment, Split):
            return self.assignment.previous
        return self.assignment.category

    @property
    def template(self) -> Template:
        return template_for(self.category)

    @property
    def is_split(self) -> bool:
        return isinstance(self.assignment, Split)

    @property
    def splits(self) -> tuple[TransactionSplit, ...]:
        if isinstance(self.assignment, Split):
            return self.assignment.splits
        return ()


@dataclass(frozen=True)
class MappingSummary:
    """Display counters for a categorized import."""

    matched_by_rule: int
    auto_mapped: int
    needs_review: int


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntry:
    """One flattened row to persist as an item plus a log."""

    date: date
    name: str
    category: Category
    amount: Decimal
    bank_category: str = ""
    description: str = ""


@dataclass
class ImportResult:
    """Outcome of reconciling one import into the ledger store.

    Attributes:
        imported: Number of source transactions persisted.
        rules_saved: Rules newly inserted (existing keywords are ignored).
        items_upserted: Ledger items inserted or refreshed.
        logs_created: Log rows written.
        logs_deduplicated: Log rows not written because an identical log
            (same item, date and amount) was already stored.
        rule_error: Message of a failed rule save, or empty string.
    """

    imported: int = 0
    rules_saved: int = 0
    items_upserted: int = 0
    logs_created: int = 0
    logs_deduplicated: int = 0
    rule_error: str = ""

    @property
    def fully_succeeded(self) -> bool:
        return not self.rule_error


@dataclass
class AppConfig:
    """Top-level application configuration loaded from ``spend.toml``.

    Attributes:
        user: Identifier that scopes rules, items and logs in the store.
        database_url: SQLAlchemy database URL.
        parser: Default parser name, e.g. ``"generic"``.
        max_file_size_mb: Upload size limit checked before parsing.
    """

    user: str = "local"
    database_url: str = "sqlite:///spend.db"
    parser: str = "generic"
    max_file_size_mb: int = 10

    @property
    def max_file_size(self) -> int:
        return self.max_file_size_mb * 1024 * 1024
