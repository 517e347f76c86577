"""
Tests for archive snapshots.
"""

from datetime import datetime, timezone

import pytest

from slack_dl.backup import BackupError, BackupGuardian, BackupState
from slack_dl.store import ArchiveStore

from conftest import readJson


@pytest.fixture
def store(tmp_path):
    store = ArchiveStore(tmp_path / "archive")
    store.writeJson(store.channelsPath, [{"id": "C1"}])
    store.writeJson(store.channelDataPath("C1"), [{"ts": "1"}])
    return store


@pytest.fixture
def guardian(store, tmp_path):
    return BackupGuardian(store, tmp_path / "backups", retain=2)


class TestSnapshotLifecycle:
    def test_snapshot_copies_data(self, guardian, store):
        snapshot = guardian.createBackup()
        assert guardian.state == BackupState.Snapshotted
        assert guardian.snapshot == snapshot
        assert BackupGuardian.NAME_PATTERN.match(snapshot.name)
        assert readJson(snapshot / "data" / "C1.json") == [{"ts": "1"}]

    def test_empty_archive_is_not_snapshotted(self, tmp_path):
        guardian = BackupGuardian(ArchiveStore(tmp_path / "empty"), tmp_path / "backups")
        assert guardian.createBackup() is None
        assert guardian.state == BackupState.Idle
        guardian.deleteBackup()
        assert guardian.state == BackupState.Committed

    def test_only_one_snapshot_per_run(self, guardian):
        guardian.createBackup()
        with pytest.raises(BackupError):
            guardian.createBackup()

    def test_delete_commits(self, guardian):
        snapshot = guardian.createBackup()
        guardian.deleteBackup()
        assert guardian.state == BackupState.Committed
        assert not snapshot.exists()
        assert guardian.snapshot is None

    def test_restore_rolls_back(self, guardian, store):
        guardian.createBackup()
        store.writeJson(store.channelDataPath("C1"), [{"ts": "2"}, {"ts": "1"}])
        store.writeJson(store.channelDataPath("C2"), [{"ts": "3"}])

        guardian.restoreBackup()
        assert guardian.state == BackupState.RolledBack
        assert readJson(store.channelDataPath("C1")) == [{"ts": "1"}]
        assert not store.channelDataPath("C2").exists()
        assert guardian.listBackups() == []

    def test_restore_without_snapshot_fails(self, guardian):
        with pytest.raises(BackupError):
            guardian.restoreBackup()

    def test_snapshot_covers_downloads_and_marker(self, guardian, store):
        (store.filesDirectory("C1") / "F1.txt").parent.mkdir(parents=True)
        (store.filesDirectory("C1") / "F1.txt").write_bytes(b"attachment")
        store.avatarsDirectory.mkdir()
        (store.avatarsDirectory / "U1.png").write_bytes(b"png")
        store.writeLastSuccessfulRun(datetime(2024, 1, 2, tzinfo=timezone.utc))
        guardian.createBackup()

        store.empty()
        guardian.restoreBackup()
        assert (store.filesDirectory("C1") / "F1.txt").read_bytes() == b"attachment"
        assert (store.avatarsDirectory / "U1.png").read_bytes() == b"png"
        assert store.readLastSuccessfulRun() == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert readJson(store.channelDataPath("C1")) == [{"ts": "1"}]

    def test_restore_drops_files_added_after_snapshot(self, guardian, store):
        guardian.createBackup()
        (store.filesDirectory("C2") / "F9.txt").parent.mkdir(parents=True)
        (store.filesDirectory("C2") / "F9.txt").write_bytes(b"new")

        guardian.restoreBackup()
        assert not store.filesDirectory("C2").exists()

    def test_archive_with_only_marker_is_snapshotted(self, tmp_path):
        store = ArchiveStore(tmp_path / "archive")
        store.writeLastSuccessfulRun(datetime(2024, 1, 2, tzinfo=timezone.utc))
        guardian = BackupGuardian(store, tmp_path / "backups")
        snapshot = guardian.createBackup()
        assert (snapshot / ".last-successful-run").is_file()

    def test_backup_directory_inside_archive_is_rejected(self, store):
        guardian = BackupGuardian(store, store.outputDirectory / "backups")
        with pytest.raises(BackupError):
            guardian.createBackup()
        assert guardian.state == BackupState.Idle


class TestPruning:
    def makeOld(self, guardian, *names):
        for name in names:
            (guardian.backupDirectory / name).mkdir(parents=True)

    def test_keeps_most_recent(self, guardian):
        self.makeOld(guardian, "20200101-000000-000000", "20200102-000000-000000", "20200103-000000-000000")
        removed = guardian.deleteOlderBackups()
        assert [p.name for p in removed] == ["20200101-000000-000000"]
        assert [p.name for p in guardian.listBackups()] == ["20200102-000000-000000", "20200103-000000-000000"]

    def test_current_snapshot_is_never_pruned(self, guardian):
        self.makeOld(guardian, "20200101-000000-000000", "20200102-000000-000000", "20200103-000000-000000")
        snapshot = guardian.createBackup()
        guardian.deleteOlderBackups()
        assert snapshot.exists()
        assert len(guardian.listBackups()) == 3

    def test_negative_retain_disables_pruning(self, guardian):
        guardian.retain = -1
        self.makeOld(guardian, "20200101-000000-000000", "20200102-000000-000000", "20200103-000000-000000")
        assert guardian.deleteOlderBackups() == []
        assert len(guardian.listBackups()) == 3

    def test_foreign_directories_are_ignored(self, guardian):
        self.makeOld(guardian, "notes", "20200101-000000-000000")
        guardian.retain = 0
        guardian.deleteOlderBackups()
        assert (guardian.backupDirectory / "notes").is_dir()
        assert guardian.listBackups() == []


def test_backups_default_to_sibling_directory(store, tmp_path):
    assert BackupGuardian(store).backupDirectory == (tmp_path / "archive-backups").resolve()
