"""Tests for the cleaning history store."""

import json
from datetime import datetime

from devprune.models import CleanedItem, CleaningSession
from devprune.statistics import StatisticsStore


def session(size, count, when=None):
    return CleaningSession(
        timestamp=when or datetime.now(),
        total_size=size,
        item_count=count,
        items=[
            CleanedItem(name=f"p{i}", item_type="Build Folder", project_type="Node.js", size=size // count, path=f"/p{i}")
            for i in range(count)
        ],
    )


class TestStatisticsStore:
    def test_default_path(self, devprune_home):
        assert StatisticsStore().path == devprune_home / "history.json"

    def test_empty(self, tmp_path):
        store = StatisticsStore(tmp_path / "history.json")
        assert store.load_sessions() == []
        assert store.get_statistics().session_count == 0

    def test_record_and_load(self, tmp_path):
        store = StatisticsStore(tmp_path / "history.json")
        recorded = session(100, 2)
        store.record_session(recorded)

        loaded = store.load_sessions()
        assert len(loaded) == 1
        assert loaded[0].id == recorded.id
        assert loaded[0].items[1].path == "/p1"

    def test_sessions_newest_first(self, tmp_path):
        store = StatisticsStore(tmp_path / "history.json")
        store.record_session(session(1, 1, datetime(2024, 1, 1)))
        store.record_session(session(2, 1, datetime(2024, 3, 1)))
        assert [s.total_size for s in store.load_sessions()] == [2, 1]

    def test_statistics(self, tmp_path):
        store = StatisticsStore(tmp_path / "history.json")
        store.record_session(session(100, 2))
        store.record_session(session(300, 4))
        stats = store.get_statistics()
        assert stats.total_size_cleaned == 400
        assert stats.total_items_cleaned == 6
        assert stats.session_count == 2

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("not json")
        assert StatisticsStore(path).load_sessions() == []

    def test_malformed_entries_are_skipped(self, tmp_path):
        path = tmp_path / "history.json"
        good = session(5, 1).model_dump(mode="json")
        path.write_text(json.dumps({"sessions": [good, {"total_size": "lots"}]}))
        assert len(StatisticsStore(path).load_sessions()) == 1

    def test_clear(self, tmp_path):
        store = StatisticsStore(tmp_path / "history.json")
        store.record_session(session(1, 1))
        store.clear()
        assert store.load_sessions() == []
