"""Ledger store: rules, items and logs persisted with SQLAlchemy.

The import pipeline talks to storage only through the :class:`LedgerStore`
protocol. :class:`SqlLedgerStore` implements it on top of SQLAlchemy so the
same code runs against SQLite (local use, tests) and Postgres.

Tables:

- ``transaction_rules`` -- unique on ``(user_id, keyword)``.
- ``category_items`` -- unique on ``(user_id, category, name)``; upserted
  on every import so a merchant/category pair exists once per user.
- ``category_logs`` -- one row per occurrence of an item.

Upserts use the dialect's ``INSERT .. ON CONFLICT`` so each import stage is
a few bulk statements of at most ``CHUNK_SIZE`` rows, all inside one
database transaction.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from spend_import.errors import RuleError, StoreError
from spend_import.models import Category, LedgerEntry, TransactionRule, template_for

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

# Rows per INSERT and values per IN (...) list. Keeps every statement well
# under the bind-parameter limits of SQLite and Postgres.
CHUNK_SIZE = 500


def _chunks(items: Sequence, size: int = CHUNK_SIZE) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cents(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


class RuleRow(Base):
    __tablename__ = "transaction_rules"
    __table_args__ = (UniqueConstraint("user_id", "keyword", name="uq_transaction_rules_user_keyword"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    keyword: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    # Denormalized for readers of the table; always template_for(category).
    template: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ItemRow(Base):
    __tablename__ = "category_items"
    __table_args__ = (
        UniqueConstraint("user_id", "category", "name", name="uq_category_items_user_category_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="one-time")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LogRow(Base):
    __tablename__ = "category_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    category_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("category_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_planned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class LedgerWriter(Protocol):
    """Rule, item and log writes that share one database transaction."""

    def insert_rules_if_absent(self, user_id: str, rules: Sequence[TransactionRule]) -> int:
        """Insert new rules under a savepoint; a failure leaves other writes intact."""
        ...

    def upsert_items(self, user_id: str, entries: Sequence[LedgerEntry]) -> dict[tuple[str, str], int]:
        """Insert or refresh one item per (category, name); return their ids."""
        ...

    def insert_logs(
        self,
        user_id: str,
        entries: Sequence[LedgerEntry],
        item_ids: dict[tuple[str, str], int],
        notes: Sequence[str],
    ) -> tuple[int, int]:
        """Write actual-occurrence logs; return ``(created, already_present)``."""
        ...


class LedgerStore(Protocol):
    """Storage operations the import pipeline and rule commands rely on."""

    def list_rules(self, user_id: str) -> list[TransactionRule]: ...

    def add_rule(self, user_id: str, rule: TransactionRule) -> TransactionRule: ...

    def update_rule(self, user_id: str, keyword: str, category: Category) -> TransactionRule: ...

    def delete_rule(self, user_id: str, keyword: str) -> bool: ...

    def insert_rules_if_absent(self, user_id: str, rules: Sequence[TransactionRule]) -> int: ...

    def transaction(self) -> AbstractContextManager[LedgerWriter]: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlLedgerStore:
    """:class:`LedgerStore` backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)

    def create_schema(self) -> None:
        """Create the tables if they do not exist."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self, operation: str) -> Iterator[Session]:
        """Provide a transactional scope; errors roll back and become StoreError."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.debug("Rolled back %s", operation, exc_info=True)
            raise StoreError(operation, str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _insert(self, table):
        if self.engine.dialect.name == "postgresql":
            return pg_insert(table)
        if self.engine.dialect.name == "sqlite":
            return sqlite_insert(table)
        raise StoreError("insert", f"unsupported database dialect {self.engine.dialect.name!r}")

    # -- rules ---------------------------------------------------------------

    def list_rules(self, user_id: str) -> list[TransactionRule]:
        with self.session_scope("list rules") as session:
            rows = session.scalars(
                select(RuleRow).where(RuleRow.user_id == user_id).order_by(RuleRow.keyword)
            ).all()
            return [_rule_from_row(row) for row in rows]

    def add_rule(self, user_id: str, rule: TransactionRule) -> TransactionRule:
        try:
            with self.session_scope("add rule") as session:
                row = RuleRow(
                    user_id=user_id,
                    keyword=rule.keyword,
                    category=rule.category.value,
                    template=template_for(rule.category).value,
                )
                if rule.created_at is not None:
                    row.created_at = rule.created_at
                session.add(row)
                session.flush()
                return _rule_from_row(row)
        except StoreError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise RuleError(f"A rule for {rule.keyword!r} already exists") from None
            raise

    def update_rule(self, user_id: str, keyword: str, category: Category) -> TransactionRule:
        with self.session_scope("update rule") as session:
            row = session.scalars(
                select(RuleRow).where(RuleRow.user_id == user_id, RuleRow.keyword == keyword.upper())
            ).first()
            if row is None:
                raise RuleError(f"No rule for {keyword.upper()!r}")
            row.category = category.value
            row.template = template_for(category).value
            row.updated_at = _utcnow()
            session.flush()
            return _rule_from_row(row)

    def delete_rule(self, user_id: str, keyword: str) -> bool:
        with self.session_scope("delete rule") as session:
            result = session.execute(
                delete(RuleRow).where(RuleRow.user_id == user_id, RuleRow.keyword == keyword.upper())
            )
            return result.rowcount > 0

    def insert_rules_if_absent(self, user_id: str, rules: Sequence[TransactionRule]) -> int:
        """Insert rules whose keyword the user does not have yet.

        Existing keywords are left untouched. Returns the number of rules
        inserted.
        """
        if not rules:
            return 0
        with self.session_scope("save rules") as session:
            return self._insert_rules(session, user_id, rules)

    def _insert_rules(self, session: Session, user_id: str, rules: Sequence[TransactionRule]) -> int:
        keywords = sorted({r.keyword for r in rules})
        existing: set[str] = set()
        for chunk in _chunks(keywords):
            existing.update(
                session.scalars(
                    select(RuleRow.keyword).where(RuleRow.user_id == user_id, RuleRow.keyword.in_(chunk))
                ).all()
            )
        now = _utcnow()
        payload: list[dict] = []
        for r in rules:
            if r.keyword in existing:
                continue
            existing.add(r.keyword)
            payload.append(
                {
                    "user_id": user_id,
                    "keyword": r.keyword,
                    "category": r.category.value,
                    "template": template_for(r.category).value,
                    "created_at": r.created_at or now,
                    "updated_at": now,
                }
            )
        for chunk in _chunks(payload):
            stmt = self._insert(RuleRow).values(list(chunk))
            stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "keyword"])
            session.execute(stmt)
        return len(payload)

    # -- items and logs ------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[SqlLedgerWriter]:
        """Open one database transaction for the writes of an import.

        Everything written through the yielded writer is committed together
        or rolled back together.
        """
        with self.session_scope("import") as session:
            yield SqlLedgerWriter(self, session)

    def count_logs(self, user_id: str) -> int:
        with self.session_scope("count logs") as session:
            return session.scalar(select(func.count()).select_from(LogRow).where(LogRow.user_id == user_id)) or 0

    def list_items(self, user_id: str) -> list[ItemRow]:
        with self.session_scope("list items") as session:
            return list(
                session.scalars(
                    select(ItemRow).where(ItemRow.user_id == user_id).order_by(ItemRow.category, ItemRow.name)
                ).all()
            )


class SqlLedgerWriter:
    """Rule, item and log writes bound to an open session."""

    def __init__(self, store: SqlLedgerStore, session: Session) -> None:
        self._store = store
        self._session = session

    def insert_rules_if_absent(self, user_id: str, rules: Sequence[TransactionRule]) -> int:
        """Insert rules the user does not have yet, under a savepoint.

        A failure rolls back the rules only and raises :class:`StoreError`;
        the enclosing transaction stays usable. The rules are committed
        with the rest of the import, or not at all.
        """
        if not rules:
            return 0
        try:
            with self._session.begin_nested():
                return self._store._insert_rules(self._session, user_id, rules)
        except SQLAlchemyError as exc:
            logger.debug("Rolled back rule savepoint", exc_info=True)
            raise StoreError("save rules", str(exc)) from exc

    def upsert_items(self, user_id: str, entries: Sequence[LedgerEntry]) -> dict[tuple[str, str], int]:
        """Insert or refresh one item per (category, name).

        When several entries share a key, the last one's amount and
        description win. Returns a mapping of ``(category, name)`` to item id.
        """
        if not entries:
            return {}
        now = _utcnow()
        by_key: dict[tuple[str, str], dict] = {}
        for entry in entries:
            key = (entry.category.value, entry.name)
            by_key[key] = {
                "user_id": user_id,
                "category": entry.category.value,
                "name": entry.name,
                "description": entry.description or None,
                "amount": _cents(entry.amount),
                "frequency": "one-time",
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }

        for chunk in _chunks(list(by_key.values())):
            stmt = self._store._insert(ItemRow).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "category", "name"],
                set_={
                    "description": stmt.excluded.description,
                    "amount": stmt.excluded.amount,
                    "is_active": True,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            self._session.execute(stmt)

        ids: dict[tuple[str, str], int] = {}
        for names in _chunks(sorted({name for _, name in by_key})):
            rows = self._session.execute(
                select(ItemRow.id, ItemRow.category, ItemRow.name).where(
                    ItemRow.user_id == user_id, ItemRow.name.in_(names)
                )
            ).all()
            for row in rows:
                if (row.category, row.name) in by_key:
                    ids[(row.category, row.name)] = row.id
        missing = set(by_key) - set(ids)
        if missing:
            raise StoreError("upsert items", f"{len(missing)} item(s) missing after upsert")
        return ids

    def insert_logs(
        self,
        user_id: str,
        entries: Sequence[LedgerEntry],
        item_ids: dict[tuple[str, str], int],
        notes: Sequence[str],
    ) -> tuple[int, int]:
        """Write one actual (not planned) log per entry.

        A log identical to a stored one (same item, date and amount) is not
        written again. Duplicates are counted, so a file with two identical
        rows yields two logs on first import and none on re-import.

        Returns:
            ``(created, already_present)``.
        """
        if not entries:
            return 0, 0
        existing: Counter[tuple[int, date, Decimal]] = Counter()
        for wanted_ids in _chunks(sorted(set(item_ids.values()))):
            rows = self._session.execute(
                select(LogRow.category_item_id, LogRow.date, LogRow.actual_amount).where(
                    LogRow.user_id == user_id,
                    LogRow.category_item_id.in_(wanted_ids),
                    LogRow.is_planned.is_(False),
                )
            ).all()
            existing.update(
                (row.category_item_id, row.date, _cents(row.actual_amount or Decimal("0"))) for row in rows
            )

        now = _utcnow()
        payload: list[dict] = []
        duplicates = 0
        for entry, note in zip(entries, notes):
            item_id = item_ids[(entry.category.value, entry.name)]
            key = (item_id, entry.date, _cents(entry.amount))
            if existing[key] > 0:
                existing[key] -= 1
                duplicates += 1
                continue
            payload.append(
                {
                    "user_id": user_id,
                    "category_item_id": item_id,
                    "date": entry.date,
                    "actual_amount": _cents(entry.amount),
                    "notes": note,
                    "is_planned": False,
                    "timestamp": now,
                }
            )

        for chunk in _chunks(payload):
            self._session.execute(insert(LogRow), list(chunk))
        return len(payload), duplicates


def _rule_from_row(row: RuleRow) -> TransactionRule:
    return TransactionRule(
        keyword=row.keyword,
        category=Category(row.category),
        id=row.id,
        created_at=row.created_at,
    )


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy, not the pysqlite driver, emit BEGIN.

    The driver starts transactions lazily and not before SAVEPOINT, so a
    savepoint opened first would commit on release.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_store(database_url: str, *, create_schema: bool = True) -> SqlLedgerStore:
    """Build a :class:`SqlLedgerStore` for *database_url*.

    Args:
        database_url: SQLAlchemy URL, e.g. ``"sqlite:///spend.db"``.
        create_schema: Create missing tables before returning.
    """
    engine = create_engine(database_url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    store = SqlLedgerStore(engine)
    if create_schema:
        store.create_schema()
    return store
