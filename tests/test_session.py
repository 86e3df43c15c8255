"""Tests for spend_import.session -- review state for one import."""

from __future__ import annotations

from decimal import Decimal

import pytest

from spend_import.errors import SplitImbalanceError
from spend_import.models import Category, MatchSource, ParseResult
from spend_import.session import ImportSession


@pytest.fixture
def session(make_txn, sample_rules):
    parse_result = ParseResult(
        transactions=[
            make_txn("KROGER 8901", "40.00", line=2),
            make_txn("CASEYS 2574", "45.50", bank_category="Auto & Transport", line=3),
            make_txn("MYSTERY SHOP", "100.00", line=4),
        ]
    )
    return ImportSession(parse_result, sample_rules)


class TestImportSession:
    def test_rows_categorized(self, session):
        assert len(session) == 3
        assert [row.source for row in session.rows] == [
            MatchSource.RULE,
            MatchSource.BANK,
            MatchSource.DEFAULT,
        ]

    def test_summary(self, session):
        summary = session.summary()
        assert (summary.matched_by_rule, summary.auto_mapped, summary.needs_review) == (1, 1, 1)

    def test_set_category(self, session):
        row = session.set_category(2, "home-garden")
        assert row.category is Category.HOME_GARDEN
        assert session[2] is row
        # Counters reflect the automatic tiers, not the override.
        assert session.summary().needs_review == 1

    def test_set_save_rule(self, session):
        session.set_save_rule(1)
        assert session[1].save_rule is True
        session.set_save_rule(1, False)
        assert session[1].save_rule is False

    def test_unbalanced_split_is_held_back(self, session):
        session.start_split(2)
        session.update_split(2, 1, amount=Decimal("20"))

        assert session.blocked_rows() == [2]
        ready = session.ready_rows()
        assert [row.merchant for row in ready] == ["KROGER 8901", "CASEYS 2574"]
        with pytest.raises(SplitImbalanceError):
            session.save_split(2)

    def test_fixing_split_releases_row(self, session):
        session.start_split(2)
        session.update_split(2, 1, amount=Decimal("20"))
        session.add_split(2)
        assert session.blocked_rows() == []
        assert session.save_split(2).splits[2].amount == Decimal("30.00")
        assert len(session.ready_rows()) == 3

    def test_zero_fragment_is_held_back(self, session):
        session.start_split(2)
        session.add_split(2)

        assert session.blocked_rows() == [2]
        assert len(session.ready_rows()) == 2
        with pytest.raises(SplitImbalanceError, match="greater than zero"):
            session.save_split(2)

    def test_cancel_split_releases_row(self, session):
        session.start_split(2)
        session.update_split(2, 0, amount=Decimal("1"))
        session.cancel_split(2)
        assert session.blocked_rows() == []
        assert session[2].is_split is False

    def test_remove_split(self, session):
        session.start_split(0)
        session.add_split(0)
        session.remove_split(0, 2)
        assert len(session[0].splits) == 2
