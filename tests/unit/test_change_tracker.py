"""Unit tests for per-consumer change tracking."""

from cricket_warehouse.models import RawMatch, StreamOffset
from cricket_warehouse.transform.change_tracker import ChangeTracker


def _add_raw(session, count: int) -> list[int]:
    rows = [
        RawMatch(info={"n": i}, source_file=f"{i}.json", content_hash=f"hash-{i}")
        for i in range(count)
    ]
    session.add_all(rows)
    session.flush()
    return [row.id for row in rows]


class TestChangeTracker:
    """Test cursor polling, advancing and replay."""

    def test_new_consumer_sees_everything(self, session):
        ids = _add_raw(session, 3)
        tracker = ChangeTracker()

        assert [r.id for r in tracker.poll(session, "clean_match", RawMatch)] == ids
        assert tracker.has_pending(session, "clean_match", RawMatch)

    def test_advance_hides_consumed_rows(self, session):
        ids = _add_raw(session, 3)
        tracker = ChangeTracker()

        tracker.advance(session, "clean_match", RawMatch, ids[1])

        assert [r.id for r in tracker.poll(session, "clean_match", RawMatch)] == ids[2:]
        tracker.advance(session, "clean_match", RawMatch, ids[2])
        assert not tracker.has_pending(session, "clean_match", RawMatch)

    def test_consumers_are_independent(self, session):
        ids = _add_raw(session, 2)
        tracker = ChangeTracker()

        tracker.advance(session, "clean_match", RawMatch, ids[-1])

        assert tracker.poll(session, "clean_match", RawMatch) == []
        assert len(tracker.poll(session, "clean_player", RawMatch)) == 2

    def test_rows_stay_pending_until_advanced(self, session):
        _add_raw(session, 2)
        tracker = ChangeTracker()

        first = tracker.poll(session, "clean_match", RawMatch)
        again = tracker.poll(session, "clean_match", RawMatch)

        assert [r.id for r in first] == [r.id for r in again]

    def test_cursor_never_moves_backwards(self, session):
        ids = _add_raw(session, 3)
        tracker = ChangeTracker()

        tracker.advance(session, "clean_match", RawMatch, ids[2])
        tracker.advance(session, "clean_match", RawMatch, ids[0])

        assert tracker.get_offset(session, "clean_match", RawMatch) == ids[2]

    def test_batch_size_limits_poll(self, session):
        ids = _add_raw(session, 5)
        tracker = ChangeTracker(batch_size=2)

        assert [r.id for r in tracker.poll(session, "clean_match", RawMatch)] == ids[:2]

    def test_reset_replays_table(self, session):
        ids = _add_raw(session, 2)
        tracker = ChangeTracker()
        tracker.advance(session, "clean_match", RawMatch, ids[-1])
        session.flush()

        tracker.reset(session, "clean_match", RawMatch)
        session.flush()

        assert session.get(StreamOffset, ("clean_match", "raw_match")) is None
        assert len(tracker.poll(session, "clean_match", RawMatch)) == 2

    def test_empty_source_has_nothing_pending(self, session):
        assert not ChangeTracker().has_pending(session, "clean_match", RawMatch)
