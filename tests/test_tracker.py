"""
Tests for per-channel progress bookkeeping.
"""

import pytest

from slack_dl.bo import AuthResult, StoreError
from slack_dl.store import ArchiveStore
from slack_dl.tracker import ArchiveState, ChannelProgress, ProgressTracker

from conftest import readJson


class TestProgressTracker:
    def test_missing_file_means_no_progress(self, tmp_path):
        tracker = ProgressTracker.load(ArchiveStore(tmp_path))
        assert tracker.channelIds() == []
        assert tracker.auth is None
        assert not tracker.isComplete("C1")

    def test_records_are_created_on_access(self):
        tracker = ProgressTracker()
        assert tracker.get("C1") == ChannelProgress()
        assert tracker.channelIds() == ["C1"]

    def test_save_and_load(self, tmp_path):
        store = ArchiveStore(tmp_path)
        tracker = ProgressTracker()
        tracker.auth = AuthResult.fromSlack({"ok": True, "user": "ann", "response_metadata": {"warnings": []}})
        tracker.markComplete("C1")
        tracker.setMessageCount("C1", 3)
        tracker.setMessageCount("C2", 0)
        tracker.save(store)

        stored = readJson(store.archiveDataPath)
        assert stored == {
            "version": "1",
            "auth": {"ok": True, "user": "ann"},
            "channels": {
                "C1": {"fullyDownloaded": True, "messages": 3},
                "C2": {"fullyDownloaded": False, "messages": 0},
            },
        }
        loaded = ProgressTracker.load(store)
        assert loaded.isComplete("C1")
        assert not loaded.isComplete("C2")
        assert loaded.get("C1").messages == 3
        assert loaded.auth.user == "ann"

    def test_invalid_file_error_names_the_file(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.archiveDataPath, {"version": "1", "channels": {"C1": {"messages": -5}}})
        with pytest.raises(StoreError, match="slack-archive.json"):
            ProgressTracker.load(store)

    def test_negative_message_count_is_rejected(self):
        with pytest.raises(AssertionError):
            ProgressTracker().setMessageCount("C1", -1)


class TestArchiveState:
    def test_unversioned_data_is_accepted(self):
        state = ArchiveState.fromStore({"channels": {"C1": {"fullyDownloaded": True}}})
        assert state.channels["C1"] == ChannelProgress(fullyDownloaded=True, messages=0)

    def test_invalid_data_is_store_error(self):
        with pytest.raises(StoreError):
            ArchiveState.fromStore({"version": "1", "channels": {"C1": {"messages": -5}}})

    def test_non_object_is_store_error(self):
        with pytest.raises(StoreError):
            ArchiveState.fromStore([])

    def test_other_version_is_loaded_with_warning(self, caplog):
        state = ArchiveState.fromStore({"version": "2.1", "channels": {}})
        assert state.channels == {}
        assert "different version 2.1" in caplog.text
