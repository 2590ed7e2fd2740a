"""Tests for cursor-based pagination and cursor rollback."""

import asyncio
from datetime import date

from budget_bully.models import SyncPage
from budget_bully.tools.reconciler import sync_transactions
from tests.fakes import FakeProvider, ptxn


def _three_page_feed(provider: FakeProvider):
    provider.feed[None] = SyncPage(
        added=[ptxn("t1", date(2024, 3, 1), -5.0), ptxn("t2", date(2024, 3, 2), -6.0)],
        next_cursor="c1",
        has_more=True,
    )
    provider.feed["c1"] = SyncPage(
        added=[ptxn("t3", date(2024, 3, 3), -7.0)],
        modified=[ptxn("t1", date(2024, 3, 1), -5.5)],
        next_cursor="c2",
        has_more=True,
    )
    provider.feed["c2"] = SyncPage(
        removed=["t2"],
        modified=[ptxn("t3", date(2024, 3, 3), -7.5)],
        next_cursor="c3",
        has_more=False,
    )


class TestPagination:
    def test_accumulates_pages_in_order(self):
        provider = FakeProvider()
        _three_page_feed(provider)

        result = asyncio.run(sync_transactions(provider, "access-sandbox-1", None, page_size=2))

        assert result.complete
        assert result.pages == 3
        assert result.cursor == "c3"
        assert [t.id for t in result.added] == ["t1", "t2", "t3"]
        assert [(t.id, t.amount) for t in result.modified] == [("t1", -5.5), ("t3", -7.5)]
        assert result.removed == ["t2"]

    def test_each_request_uses_previous_page_cursor(self):
        provider = FakeProvider()
        _three_page_feed(provider)

        asyncio.run(sync_transactions(provider, "access-sandbox-1", None, page_size=2))

        assert provider.requests == [
            ("access-sandbox-1", None, 2),
            ("access-sandbox-1", "c1", 2),
            ("access-sandbox-1", "c2", 2),
        ]

    def test_resumes_from_stored_cursor(self):
        provider = FakeProvider()
        _three_page_feed(provider)

        result = asyncio.run(sync_transactions(provider, "access-sandbox-1", "c2"))

        assert result.cursor == "c3"
        assert result.added == []
        assert result.removed == ["t2"]

    def test_no_updates_keeps_cursor(self):
        provider = FakeProvider()
        provider.feed["c9"] = SyncPage(next_cursor="c9", has_more=False)

        result = asyncio.run(sync_transactions(provider, "tok", "c9"))

        assert result.complete
        assert result.cursor == "c9"
        assert (result.added, result.modified, result.removed) == ([], [], [])


class TestRollback:
    def test_failure_mid_sync_returns_starting_cursor(self):
        provider = FakeProvider()
        _three_page_feed(provider)
        provider.failing_cursors.add("c2")

        result = asyncio.run(sync_transactions(provider, "tok", None))

        assert not result.complete
        assert result.cursor is None
        assert result.pages == 2

    def test_failure_discards_partial_pages(self):
        provider = FakeProvider()
        _three_page_feed(provider)
        provider.failing_cursors.add("c2")

        result = asyncio.run(sync_transactions(provider, "tok", None))

        assert result.added == []
        assert result.modified == []
        assert result.removed == []

    def test_failure_on_first_page_keeps_existing_cursor(self):
        provider = FakeProvider()
        provider.failing_cursors.add("c5")

        result = asyncio.run(sync_transactions(provider, "tok", "c5"))

        assert not result.complete
        assert result.cursor == "c5"

    def test_retry_after_failure_starts_from_same_point(self):
        provider = FakeProvider()
        _three_page_feed(provider)
        provider.failing_cursors.add("c1")

        first = asyncio.run(sync_transactions(provider, "tok", None))
        provider.failing_cursors.clear()
        second = asyncio.run(sync_transactions(provider, "tok", first.cursor))

        assert second.complete
        assert second.cursor == "c3"
        assert [t.id for t in second.added] == ["t1", "t2", "t3"]


class TestNetChanges:
    def test_latest_event_per_id_wins(self):
        provider = FakeProvider()
        _three_page_feed(provider)

        result = asyncio.run(sync_transactions(provider, "tok", None))

        assert set(result.changes) == {"t1", "t2", "t3"}
        assert result.changes["t1"].amount == -5.5
        assert result.changes["t2"] is None
        assert result.changes["t3"].amount == -7.5

    def test_readded_after_removal(self):
        provider = FakeProvider()
        provider.feed[None] = SyncPage(removed=["t9"], next_cursor="c1", has_more=True)
        provider.feed["c1"] = SyncPage(added=[ptxn("t9", date(2024, 3, 4), -1.0)], next_cursor="c2")

        result = asyncio.run(sync_transactions(provider, "tok", None))

        assert result.changes["t9"].amount == -1.0

    def test_failure_leaves_no_changes(self):
        provider = FakeProvider()
        _three_page_feed(provider)
        provider.failing_cursors.add("c2")

        assert asyncio.run(sync_transactions(provider, "tok", None)).changes == {}
