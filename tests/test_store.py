"""
Tests for the on-disk archive store.
"""

from datetime import datetime, timezone

import pytest

from slack_dl.bo import Message, StoreError, User
from slack_dl.store import ArchiveStore, MessageCache

from conftest import readJson


class TestPaths:
    def test_layout(self, tmp_path):
        store = ArchiveStore(tmp_path)
        assert store.channelsPath == tmp_path / "data" / "channels.json"
        assert store.usersPath == tmp_path / "data" / "users.json"
        assert store.archiveDataPath == tmp_path / "data" / "slack-archive.json"
        assert store.channelDataPath("C1") == tmp_path / "data" / "C1.json"
        assert store.filesDirectory("C1") == tmp_path / "files" / "C1"
        assert store.avatarsDirectory == tmp_path / "avatars"

    @pytest.mark.parametrize("channelId", ["", ".", "..", "../C1", "a/b"])
    def test_unsafe_channel_ids_are_rejected(self, tmp_path, channelId):
        with pytest.raises(ValueError):
            ArchiveStore(tmp_path).channelDataPath(channelId)


class TestWriting:
    def test_write_json_leaves_no_partial_file(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.usersPath, {"U1": User.fromSlack({"id": "U1", "name": "ann"})})
        assert readJson(store.usersPath) == {"U1": {"id": "U1", "name": "ann"}}
        assert [p.name for p in store.dataDirectory.iterdir()] == ["users.json"]

    def test_unicode_is_written_verbatim(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.channelsPath, [{"name": "čaj"}])
        assert "čaj" in store.channelsPath.read_text(encoding="utf8")

    def test_merge_sequence_with_key_and_order(self, tmp_path):
        store = ArchiveStore(tmp_path)
        path = store.channelDataPath("C1")
        store.writeJson(path, [{"ts": "2", "v": "old"}, {"ts": "1"}])
        merged = store.mergeAndPersist(
            path,
            [Message.fromSlack({"ts": "2", "v": "new"}), Message.fromSlack({"ts": "3"})],
            key=lambda r: r.get("ts"),
            order=lambda records: sorted(records, key=lambda r: float(r["ts"]), reverse=True),
        )
        assert merged == [{"ts": "3"}, {"ts": "2", "v": "new"}, {"ts": "1"}]
        assert readJson(path) == merged

    def test_merge_sequence_without_key_concatenates(self, tmp_path):
        store = ArchiveStore(tmp_path)
        path = store.channelsPath
        store.mergeAndPersist(path, [{"id": "A"}])
        assert store.mergeAndPersist(path, [{"id": "A"}]) == [{"id": "A"}, {"id": "A"}]

    def test_merge_mapping_replaces_same_keys(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.usersPath, {"U1": {"name": "old"}, "U2": {"name": "kept"}})
        merged = store.mergeAndPersist(store.usersPath, {"U1": User.fromSlack({"id": "U1", "name": "new"})})
        assert merged == {"U1": {"id": "U1", "name": "new"}, "U2": {"name": "kept"}}

    def test_merge_into_missing_file(self, tmp_path):
        store = ArchiveStore(tmp_path)
        assert store.mergeAndPersist(store.channelDataPath("C1"), []) == []
        assert readJson(store.channelDataPath("C1")) == []


class TestReading:
    def test_missing_files_read_as_empty(self, tmp_path):
        store = ArchiveStore(tmp_path)
        assert store.loadChannelList() == []
        assert store.loadMessages("C1") == []
        assert store.loadUsers() == {}
        assert store.isEmpty()
        assert not store.hasArchive()

    def test_load_messages(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.channelDataPath("C1"), [{"ts": "1", "user": "U1", "text": "hi"}])
        [message] = store.loadMessages("C1")
        assert message.ts == "1"
        assert message.userId == "U1"
        assert message.misc == {"text": "hi"}

    def test_wrong_json_type_is_store_error(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.channelDataPath("C1"), {"ts": "1"})
        with pytest.raises(StoreError):
            store.loadMessages("C1")
        store.writeJson(store.usersPath, [])
        with pytest.raises(StoreError):
            store.loadUsers()

    def test_store_errors_name_the_file(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.channelsPath, {"id": "C1"})
        with pytest.raises(StoreError, match="channels.json"):
            store.loadChannelList()
        store.writeJson(store.channelDataPath("C7"), {"ts": "1"})
        with pytest.raises(StoreError) as excinfo:
            store.loadMessages("C7")
        assert str(store.channelDataPath("C7")) in str(excinfo.value)
        store.writeJson(store.usersPath, [])
        with pytest.raises(StoreError, match="users.json"):
            store.loadUsers()

    def test_corrupted_json_is_store_error_naming_the_file(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.dataDirectory.mkdir()
        store.channelDataPath("C1").write_text('[{"ts": "1"', encoding="utf8")
        with pytest.raises(StoreError, match="C1.json"):
            store.loadMessages("C1")

    def test_last_successful_run(self, tmp_path):
        store = ArchiveStore(tmp_path)
        assert store.readLastSuccessfulRun() is None
        moment = datetime(2023, 5, 1, 12, 30, tzinfo=timezone.utc)
        store.writeLastSuccessfulRun(moment)
        assert store.readLastSuccessfulRun() == moment

    def test_last_successful_run_accepts_zulu_suffix(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.lastRunPath.write_text("2023-05-01T12:30:00.000Z", encoding="utf8")
        assert store.readLastSuccessfulRun() == datetime(2023, 5, 1, 12, 30, tzinfo=timezone.utc)

    def test_unreadable_marker_is_ignored(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.lastRunPath.write_text("yesterday-ish", encoding="utf8")
        assert store.readLastSuccessfulRun() is None

    def test_empty_removes_everything(self, tmp_path):
        store = ArchiveStore(tmp_path / "archive")
        store.writeJson(store.channelsPath, [])
        store.writeLastSuccessfulRun(datetime.now(timezone.utc))
        (store.filesDirectory("C1")).mkdir(parents=True)
        store.empty()
        assert list(store.outputDirectory.iterdir()) == []


class TestMessageCache:
    def test_loads_lazily_and_serves_updates(self, tmp_path):
        store = ArchiveStore(tmp_path)
        store.writeJson(store.channelDataPath("C1"), [{"ts": "1"}])
        cache = MessageCache(store)
        assert "C1" not in cache
        assert [m.ts for m in cache.get("C1")] == ["1"]
        assert "C1" in cache

        cache.set("C1", [Message.fromSlack({"ts": "2"})])
        assert [m.ts for m in cache.get("C1")] == ["2"]
        assert cache.channelIds() == ["C1"]
