"""Import reconciliation: persist reviewed transactions to the ledger store.

Stages run in a fixed order because each depends on the one before:

1. **Rules** -- rows flagged ``save_rule`` become keyword rules (first word
   of the merchant). Keywords the user already has are left alone. Rules
   are written under a savepoint: a failure here rolls back the rules only,
   is reported in :attr:`ImportResult.rule_error` and does not stop the
   import.
2. **Flatten** -- each transaction becomes one :class:`LedgerEntry`, or one
   per fragment when it is split.
3. **Items** -- one item per (user, category, name) is inserted or
   refreshed, so re-importing a file never duplicates items.
4. **Logs** -- one actual (not planned) log per entry, referencing its item.
   Logs identical to stored ones are not written again.

All stages share one database transaction. If items or logs fail, nothing
is kept, the new rules included, and :class:`ReconcileError` is raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from spend_import.categorizer import rule_keyword
from spend_import.errors import ReconcileError, StoreError
from spend_import.models import (
    ImportResult,
    LedgerEntry,
    MappedTransaction,
    TransactionRule,
)
from spend_import.splits import ensure_balanced
from spend_import.store import LedgerStore

logger = logging.getLogger(__name__)


def rules_to_save(transactions: Iterable[MappedTransaction]) -> list[TransactionRule]:
    """Derive one rule per distinct keyword from rows flagged ``save_rule``.

    When two flagged rows share a keyword, the first row's category is used.
    """
    rules: dict[str, TransactionRule] = {}
    for mapped in transactions:
        if not mapped.save_rule:
            continue
        keyword = rule_keyword(mapped.merchant)
        if not keyword or keyword in rules:
            continue
        rules[keyword] = TransactionRule(keyword=keyword, category=mapped.category)
    return list(rules.values())


def flatten(transactions: Iterable[MappedTransaction]) -> list[LedgerEntry]:
    """Expand transactions into ledger entries, one per split fragment.

    Fragment names carry a ``(split i/n)`` suffix so they are tracked as
    items of their own rather than merged with the unsplit merchant.
    """
    entries: list[LedgerEntry] = []
    for mapped in transactions:
        txn = mapped.transaction
        if not mapped.is_split:
            entries.append(
                LedgerEntry(
                    date=txn.date,
                    name=txn.merchant,
                    category=mapped.category,
                    amount=txn.amount,
                    bank_category=txn.bank_category,
                    description=txn.description,
                )
            )
            continue
        count = len(mapped.splits)
        for i, split in enumerate(mapped.splits, start=1):
            entries.append(
                LedgerEntry(
                    date=txn.date,
                    name=f"{txn.merchant} (split {i}/{count})",
                    category=split.category,
                    amount=split.amount,
                    bank_category=txn.bank_category,
                    description=txn.description,
                )
            )
    return entries


def log_note(entry: LedgerEntry) -> str:
    """Annotation stored on each imported log."""
    if entry.bank_category:
        return f"Imported from CSV ({entry.bank_category})"
    return "Imported from CSV"


def reconcile(
    store: LedgerStore,
    user_id: str,
    transactions: Iterable[MappedTransaction],
) -> ImportResult:
    """Persist reviewed transactions for *user_id*.

    Args:
        store: The ledger store.
        user_id: Owner of the rules, items and logs.
        transactions: Reviewed rows; split rows must be balanced.

    Returns:
        An :class:`ImportResult` with per-stage counts.

    Raises:
        SplitImbalanceError: If any split does not add up to its parent
            amount or has a fragment that is not positive. Raised before
            anything is written.
        ReconcileError: If writing items or logs failed. Nothing from this
            import was kept, including rules.
    """
    transactions = list(transactions)
    for mapped in transactions:
        ensure_balanced(mapped)

    result = ImportResult()
    if not transactions:
        return result
    rules = rules_to_save(transactions)
    entries = flatten(transactions)

    operation = "import"
    try:
        with store.transaction() as writer:
            # -- Stage 1: rules, under a savepoint --------------------------------
            if rules:
                try:
                    result.rules_saved = writer.insert_rules_if_absent(user_id, rules)
                except StoreError as exc:
                    logger.warning("Could not save rules: %s", exc)
                    result.rule_error = str(exc)

            # -- Stages 3 and 4: items then logs ----------------------------------
            operation = "upsert items"
            item_ids = writer.upsert_items(user_id, entries)
            operation = "insert logs"
            created, duplicates = writer.insert_logs(
                user_id, entries, item_ids, [log_note(e) for e in entries]
            )
            operation = "commit"
    except StoreError as exc:
        logger.error("Import rolled back during %s: %s", operation, exc)
        raise ReconcileError(operation, str(exc)) from exc

    if rules and result.rule_error is None:
        logger.info("Saved %d new rule(s) of %d requested", result.rules_saved, len(rules))
    result.imported = len(transactions)
    result.items_upserted = len(item_ids)
    result.logs_created = created
    result.logs_deduplicated = duplicates
    logger.info(
        "Imported %d transaction(s): %d item(s), %d new log(s), %d already present",
        result.imported,
        result.items_upserted,
        result.logs_created,
        result.logs_deduplicated,
    )
    return result
