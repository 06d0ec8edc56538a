"""Unit tests for thread rollups and mailbox listings."""

from __future__ import annotations

from datetime import datetime, timezone

from mail_sync.models import MESSAGE_TYPE, PropertyTier
from mail_sync.sync.diff import DiffApplier
from mail_sync.sync.views import ViewRegistry


def _track_all(cache, views: ViewRegistry) -> None:
    for message_id in cache.get_all(MESSAGE_TYPE):
        views.track(message_id)


class TestThreadRollup:
    """Test suite for thread rollups."""

    def test_rollup_aggregates_cached_messages(self, cache) -> None:
        """Test that a thread rollup aggregates flags, senders and dates."""
        views = ViewRegistry(cache)
        _track_all(cache, views)
        cache.put(MESSAGE_TYPE, "m2", {"isUnread": False, "isFlagged": True}, cache.get_status(MESSAGE_TYPE, "m2"))

        rollup = views.thread("t1")

        assert rollup.message_ids == ("m1", "m2", "m3")
        assert rollup.unread_count == 2
        assert rollup.is_flagged is True
        assert rollup.participants == ("alice@example.com",)
        assert rollup.mailbox_ids == frozenset({"inbox"})
        assert rollup.latest_date == datetime(2025, 1, 3, 10, tzinfo=timezone.utc)

    def test_unknown_thread_is_empty(self, cache) -> None:
        """Test that an unknown thread yields an empty rollup."""
        views = ViewRegistry(cache)

        rollup = views.thread("nope")

        assert rollup.message_ids == ()
        assert rollup.latest_date is None

    def test_change_invalidates_only_the_affected_thread(self, cache, make_record) -> None:
        """Test that a change drops only the views the message belongs to."""
        views = ViewRegistry(cache)
        applier = DiffApplier(cache, views)
        applier.apply_records([make_record("m9", threadId="t2")], PropertyTier.HEADERS)
        _track_all(cache, views)
        views.thread("t1")
        views.thread("t2")

        applier.apply_partial({"m9": {"isUnread": False}})

        assert views.has_thread("t1")
        assert not views.has_thread("t2")
        assert views.thread("t2").unread_count == 0

    def test_moving_message_between_threads_updates_both(self, cache) -> None:
        """Test that moving a message updates the old and new thread."""
        views = ViewRegistry(cache)
        applier = DiffApplier(cache, views)
        _track_all(cache, views)

        applier.apply_partial({"m1": {"threadId": "t2"}})

        assert views.thread("t1").message_ids == ("m2", "m3")
        assert views.thread("t2").message_ids == ("m1",)


class TestMailboxListing:
    """Test suite for per-mailbox membership."""

    def test_listing_is_newest_first_and_follows_membership(self, cache) -> None:
        """Test that mailbox listings are newest first and follow mailboxIds."""
        views = ViewRegistry(cache)
        applier = DiffApplier(cache, views)
        _track_all(cache, views)

        assert views.mailbox("inbox").message_ids == ("m3", "m2", "m1")

        applier.apply_partial({"m3": {"mailboxIds": ["archive"]}})

        assert views.mailbox("inbox").message_ids == ("m2", "m1")
        assert views.mailbox("archive").message_ids == ("m3",)
        assert views.mailbox("inbox").unread_count == 2

    def test_invalidate_all_drops_every_view(self, cache) -> None:
        """Test that invalidate_all drops every computed view."""
        views = ViewRegistry(cache)
        _track_all(cache, views)
        views.mailbox("inbox")
        views.thread("t1")

        views.invalidate_all()

        assert not views.has_mailbox("inbox")
        assert not views.has_thread("t1")

    def test_naive_and_missing_dates_sort_together(self, cache) -> None:
        """Test that naive timestamps sort as UTC alongside aware and missing ones."""
        views = ViewRegistry(cache)
        cache.put(MESSAGE_TYPE, "m1", {"date": None}, cache.get_status(MESSAGE_TYPE, "m1"))
        cache.put(
            MESSAGE_TYPE, "m2", {"date": "2025-01-05T10:00:00"}, cache.get_status(MESSAGE_TYPE, "m2")
        )
        _track_all(cache, views)

        assert views.mailbox("inbox").message_ids == ("m2", "m3", "m1")
        assert views.thread("t1").message_ids == ("m1", "m3", "m2")


class TestMembership:
    """Test suite for message to view edges."""

    def test_empty_memberships_are_dropped(self, cache) -> None:
        """Test that a thread or mailbox with no remaining members is forgotten."""
        views = ViewRegistry(cache)
        applier = DiffApplier(cache, views)
        _track_all(cache, views)
        applier.apply_partial({"m1": {"threadId": "t2", "mailboxIds": ["archive"]}})

        applier.remove(["m1"])

        assert "t2" not in views._thread_members
        assert "archive" not in views._mailbox_members
        assert views._thread_members["t1"] == {"m2", "m3"}
