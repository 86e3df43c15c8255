"""Exception types raised by Spend Import.

Parsers never raise for bad rows; they report them in
:class:`~spend_import.models.ParseResult`. The exceptions here cover the
cases that must propagate to the caller: invalid configuration or rules,
misuse of the split editor, and persistence failures.
"""

from __future__ import annotations


class SpendImportError(Exception):
    """Base class for all Spend Import errors."""


class ConfigError(SpendImportError):
    """The project configuration is invalid."""


class RuleError(SpendImportError):
    """A transaction rule is invalid (empty keyword, unknown category)."""


class SplitStateError(SpendImportError):
    """A split operation was applied to a transaction that is not split."""


class SplitImbalanceError(SpendImportError):
    """A split cannot be committed.

    Either the split amounts do not add up to the parent transaction amount,
    or a fragment amount is zero or negative.

    Attributes:
        merchant: Merchant of the split transaction.
        difference: Parent amount minus the split total.
        fragment: The offending fragment amount, when one is not positive.
    """

    def __init__(self, merchant: str, difference, *, fragment=None) -> None:
        self.merchant = merchant
        self.difference = difference
        self.fragment = fragment
        if fragment is not None:
            message = (
                f"Split for {merchant!r} has a fragment of {fragment}; "
                f"every split amount must be greater than zero"
            )
        else:
            message = (
                f"Split for {merchant!r} is off by {difference}; "
                f"split amounts must add up to the transaction amount"
            )
        super().__init__(message)


class StoreError(SpendImportError):
    """A ledger store operation failed.

    Attributes:
        operation: Name of the failed operation, e.g. ``"upsert items"``.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ReconcileError(SpendImportError):
    """An import could not be committed; nothing from the failed stage was kept."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Import aborted during {operation}: {message}")
