"""
Tests for the incremental sync cursor.
"""

from datetime import datetime, timedelta, timezone

from decision_miner.sync.cursor import Cursor, CursorManager

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestCursorSerialization:
    """Stored form of the cursor."""

    def test_to_dict_uses_stored_keys(self):
        cursor = Cursor(pr_updated_after=T0, commit_since=None, version=3)
        assert cursor.to_dict() == {
            "prUpdatedAfter": "2026-03-01T12:00:00+00:00",
            "commitSince": None,
            "version": 3,
        }

    def test_from_dict_parses_z_suffix(self):
        cursor = Cursor.from_dict({"prUpdatedAfter": "2026-03-01T12:00:00Z", "version": 1})
        assert cursor.pr_updated_after == T0
        assert cursor.commit_since is None
        assert cursor.version == 1

    def test_from_dict_empty_is_none(self):
        assert Cursor.from_dict(None) is None
        assert Cursor.from_dict({}) is None

    def test_round_trip_through_storage(self):
        cursor = Cursor(pr_updated_after=T0, commit_since=T0 - timedelta(days=1), version=2)
        assert Cursor.from_dict(cursor.to_dict()) == cursor


class TestCursorManager:
    """Initial, next and merged cursors."""

    def test_initial_cursor_uses_lookback(self):
        cursor = CursorManager().initial_cursor(90, now=T0)
        assert cursor.pr_updated_after == T0 - timedelta(days=90)
        assert cursor.commit_since == T0 - timedelta(days=90)
        assert cursor.version == 0

    def test_watermark_backs_off_by_overlap(self):
        manager = CursorManager(overlap=timedelta(minutes=120))
        assert manager.watermark(T0) == T0 - timedelta(hours=2)

    def test_next_cursor_returns_cursor(self):
        cursor = CursorManager().next_cursor(None, pr_last_seen=T0)
        assert isinstance(cursor, Cursor)
        assert cursor.pr_updated_after == T0 - timedelta(hours=2)
        assert cursor.commit_since is None
        assert cursor.version == 1

    def test_next_cursor_moves_only_streams_that_saw_items(self):
        existing = Cursor(pr_updated_after=T0, commit_since=T0 - timedelta(days=2), version=3)
        later = T0 + timedelta(days=1)

        cursor = CursorManager().next_cursor(existing, commit_last_seen=later)

        assert cursor.pr_updated_after == T0
        assert cursor.commit_since == later - timedelta(hours=2)
        assert cursor.version == 4

    def test_next_cursor_without_new_items_is_unchanged(self):
        existing = Cursor(pr_updated_after=T0, version=2)
        assert CursorManager().next_cursor(existing) is existing
        # Re-seeing the same item lands on the same watermark
        same = CursorManager().next_cursor(existing, pr_last_seen=T0 + timedelta(hours=2))
        assert same is existing

    def test_merge_onto_nothing_creates_cursor(self):
        merged = CursorManager().merge(None, pr_updated_after=T0)
        assert merged.pr_updated_after == T0
        assert merged.commit_since is None
        assert merged.version == 1

    def test_merge_keeps_unspecified_sub_cursors(self):
        existing = Cursor(pr_updated_after=T0, commit_since=T0 - timedelta(days=3), version=4)
        later = T0 + timedelta(days=1)

        merged = CursorManager().merge(existing, pr_updated_after=later)

        assert merged.pr_updated_after == later
        assert merged.commit_since == existing.commit_since
        assert merged.version == 5

    def test_merge_without_change_keeps_version(self):
        existing = Cursor(pr_updated_after=T0, version=2)
        assert CursorManager().merge(existing, pr_updated_after=T0) is existing
        assert CursorManager().merge(existing) is existing

    def test_merge_does_not_mutate_existing(self):
        existing = Cursor(pr_updated_after=T0, version=1)
        CursorManager().merge(existing, pr_updated_after=T0 + timedelta(hours=5))
        assert existing.pr_updated_after == T0
        assert existing.version == 1

    def test_effective_cursor_fills_missing_from_lookback(self):
        stored = Cursor(pr_updated_after=T0, version=1)
        effective = CursorManager().effective_cursor(stored, 30)
        assert effective.pr_updated_after == T0
        assert effective.commit_since is not None
        assert effective.commit_since < datetime.now(timezone.utc) - timedelta(days=29)

    def test_effective_cursor_without_storage(self):
        effective = CursorManager().effective_cursor(None, 7)
        assert effective.version == 0
        assert effective.pr_updated_after < datetime.now(timezone.utc) - timedelta(days=6)
