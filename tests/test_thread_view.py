"""Tests for thread entries and rendering helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk_core.models import Attachment, Note, Profile, Reply, UserRole, Viewer
from helpdesk_core.sync import (
    ConfirmedEntry,
    PendingEntry,
    assemble_thread,
    format_relative_time,
    mark_pending_local,
    merge_thread,
    reconcile,
    remove_entry,
    render_thread,
    visible_items,
)
from helpdesk_core.sync.entries import rebase

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
USER = Viewer(user_id="u1", role=UserRole.USER)
CONSULTANT = Viewer(user_id="k1", role=UserRole.CONSULTANT)


def _reply(reply_id, minutes=0, **kwargs):
    return Reply(id=reply_id, case_id="c1", user_id="u1", content=reply_id, created_at=T0 + timedelta(minutes=minutes), **kwargs)


def _note(note_id, minutes=0):
    return Note(id=note_id, case_id="c1", user_id="k1", content=note_id, created_at=T0 + timedelta(minutes=minutes))


class TestMergeAndVisibility:
    """Tests for merge_thread, visible_items and assemble_thread."""

    def test_merge_orders_by_created_at(self):
        merged = merge_thread([_reply("r2", 2), _reply("r1", 0)], [_note("n1", 1)])

        assert [i.id for i in merged] == ["r1", "n1", "r2"]

    def test_merge_is_stable_for_equal_timestamps(self):
        merged = merge_thread([_reply("r1"), _reply("r2")], [_note("n1")])

        assert [i.id for i in merged] == ["r1", "r2", "n1"]

    def test_users_never_see_notes_or_internal_replies(self):
        """Test the visibility filter for both kinds of viewer."""
        items = merge_thread([_reply("r1"), _reply("r2", 1, is_internal=True)], [_note("n1", 2)])

        assert [i.id for i in visible_items(items, USER)] == ["r1"]
        assert [i.id for i in visible_items(items, CONSULTANT)] == ["r1", "r2", "n1"]

    def test_assemble_links_attachments(self):
        """Test that reply attachments are attached and case-level ones returned separately."""
        attachments = [
            Attachment(id="a1", case_id="c1", reply_id="r1", file_name="x.png", file_path="p/x.png"),
            Attachment(id="a2", case_id="c1", file_name="initial.pdf", file_path="p/initial.pdf"),
        ]

        items, case_level = assemble_thread([_reply("r1"), _reply("r2", 1)], [], attachments)

        assert [a.id for a in items[0].attachments] == ["a1"]
        assert items[1].attachments == []
        assert [a.id for a in case_level] == ["a2"]


class TestEntries:
    """Tests for optimistic entry transitions."""

    def test_reconcile_replaces_in_place(self):
        """Test that the confirmed item takes the pending entry's position."""
        pending = PendingEntry("temp-1", _reply("temp-1", 5, is_optimistic=True))
        entries = [ConfirmedEntry(_reply("r1")), pending, ConfirmedEntry(_reply("r3", 9))]

        result = reconcile(entries, "temp-1", _reply("r2", 5))

        assert [e.id for e in result] == ["r1", "r2", "r3"]
        assert isinstance(result[1], ConfirmedEntry)
        assert result[1].item.is_optimistic is False

    def test_reconcile_dedupes_when_fetch_won(self):
        """Test that an item already delivered by a fetch is not shown twice."""
        entries = [ConfirmedEntry(_reply("r2")), PendingEntry("temp-1", _reply("temp-1", is_optimistic=True))]

        result = reconcile(entries, "temp-1", _reply("r2"))

        assert [e.id for e in result] == ["r2"]

    def test_reconcile_append_missing(self):
        result = reconcile([ConfirmedEntry(_reply("r1"))], "temp-x", _reply("r2", 1), append_missing=True)

        assert [e.id for e in result] == ["r1", "r2"]
        assert [e.id for e in reconcile([], "temp-x", _reply("r2"))] == []

    def test_mark_pending_local_and_remove(self):
        entries = [PendingEntry("temp-1", _reply("temp-1", is_optimistic=True))]

        marked = mark_pending_local(entries, "temp-1", "offline")

        assert marked[0].failed is True
        assert marked[0].error == "offline"
        assert entries[0].failed is False
        assert remove_entry(marked, "temp-1") == []

    def test_rebase_keeps_unanswered_pending(self):
        """Test that a fetch replaces confirmed items but keeps pending ones."""
        delivered = PendingEntry("temp-1", _reply("temp-1", is_optimistic=True))
        waiting = PendingEntry("temp-2", _reply("temp-2", is_optimistic=True))
        entries = [ConfirmedEntry(_reply("old")), delivered, waiting]

        result = rebase(entries, [_reply("r1"), _reply("r2", 1, client_id="temp-1")])

        assert [e.id for e in result] == ["r1", "r2", "temp-2"]


class TestRelativeTime:
    """Tests for format_relative_time."""

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=10), "less than a minute ago"),
            (timedelta(seconds=60), "1 minute ago"),
            (timedelta(minutes=5), "5 minutes ago"),
            (timedelta(minutes=60), "about 1 hour ago"),
            (timedelta(hours=2), "about 2 hours ago"),
            (timedelta(hours=30), "1 day ago"),
            (timedelta(days=3), "3 days ago"),
            (timedelta(days=45), "about 2 months ago"),
            (timedelta(days=120), "4 months ago"),
            (timedelta(days=400), "about 1 year ago"),
        ],
    )
    def test_phrases(self, delta, expected):
        assert format_relative_time(T0 - delta, now=T0) == expected

    def test_future_times_clamp(self):
        assert format_relative_time(T0 + timedelta(minutes=5), now=T0) == "less than a minute ago"


class TestRenderThread:
    """Tests for render_thread."""

    def test_attribution_ordering_and_flags(self):
        """Test author names, ordering and pending flags of rendered rows."""
        entries = [
            PendingEntry("temp-1", _reply("temp-1", 10, is_optimistic=True), failed=True),
            ConfirmedEntry(_reply("r1", 0)),
            ConfirmedEntry(Reply(id="r2", case_id="c1", user_id="ghost", content="?", created_at=T0 + timedelta(minutes=1))),
        ]
        profiles = {"u1": Profile(id="u1", full_name="Ada Lovelace")}

        rows = render_thread(entries, USER, profiles, now=T0 + timedelta(minutes=15))

        assert [r.id for r in rows] == ["r1", "r2", "temp-1"]
        assert rows[0].author_name == "Ada Lovelace"
        assert rows[1].author_name == "Unknown user"
        assert rows[0].relative_time == "15 minutes ago"
        assert rows[2].is_pending and rows[2].is_failed
        assert not rows[0].is_pending

    def test_notes_hidden_from_users(self):
        entries = [ConfirmedEntry(_note("n1")), ConfirmedEntry(_reply("r1"))]

        assert [r.id for r in render_thread(entries, USER, now=T0)] == ["r1"]
        rendered = render_thread(entries, CONSULTANT, now=T0)
        assert [r.kind for r in rendered] == ["note", "reply"]
        assert rendered[0].is_internal is True
