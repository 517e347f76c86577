'''
    Snapshots of the archive taken before a run modifies it.

    Snapshots live in a directory next to the output directory, each one named
    by the time of its creation, so lexical order is also chronological.
'''

from .common import *

from .store import ArchiveStore

from datetime import timedelta
import shutil

class BackupError(Exception):
    '''Snapshot couldn't be created or used.'''
    pass

class BackupState(Enum):
    Idle = enumerator()
    Snapshotted = enumerator()
    Committed = enumerator()
    RolledBack = enumerator()

class BackupGuardian:
    '''
        Owns the snapshot of the whole output directory for the duration of a run.

        Lifecycle is Idle -> Snapshotted -> Committed (snapshot discarded)
        or Snapshotted -> RolledBack (archive overwritten by snapshot).
        Taking a snapshot of an empty archive is no-op and leaves the guardian Idle.
    '''
    NAME_FORMAT = '%Y%m%d-%H%M%S-%f'
    NAME_PATTERN = re.compile(r'^\d{8}-\d{6}-\d{6}$')

    def __init__(self, store: ArchiveStore, backupDirectory: Optional[Path] = None, retain: int = 3):
        self.store = store
        if backupDirectory is None:
            output = store.outputDirectory.resolve()
            backupDirectory = output.parent / (output.name + '-backups')
        self.backupDirectory: Path = Path(backupDirectory)
        # Negative value disables pruning
        self.retain: int = retain
        self._state = BackupState.Idle
        self._snapshot: Optional[Path] = None

    @property
    def state(self) -> BackupState:
        return self._state

    @property
    def snapshot(self) -> Optional[Path]:
        return self._snapshot

    def makeSnapshotName(self) -> Path:
        moment = datetime.now()
        candidate = self.backupDirectory / moment.strftime(self.NAME_FORMAT)
        # Names must not collide, even for snapshots taken in the same microsecond
        while candidate.exists():
            moment += timedelta(microseconds=1)
            candidate = self.backupDirectory / moment.strftime(self.NAME_FORMAT)
        return candidate

    def createBackup(self) -> Optional[Path]:
        if self._state != BackupState.Idle:
            raise BackupError(f'Snapshot can be taken only once per run, guardian is {self._state.name}.')
        if self.store.contains(self.backupDirectory):
            raise BackupError(f"Backup directory '{self.backupDirectory}' can't lie inside the archive.")
        if self.store.isEmpty():
            logging.debug('Archive is empty, no snapshot taken.')
            return None

        target = self.makeSnapshotName()
        logging.info(f"Creating backup of the archive in '{target}'.")
        try:
            self.backupDirectory.mkdir(parents=True, exist_ok=True)
            shutil.copytree(self.store.outputDirectory, target, symlinks=True)
        except OSError as err:
            if target.exists():
                shutil.rmtree(target, ignore_errors=True)
            raise BackupError(f"Failed to create backup in '{target}'.") from err
        self._snapshot = target
        self._state = BackupState.Snapshotted
        return target

    def deleteBackup(self):
        '''Discards snapshot of this run, if any.'''
        if self._state == BackupState.Snapshotted:
            assert self._snapshot is not None
            logging.debug(f"Removing backup '{self._snapshot}'.")
            shutil.rmtree(self._snapshot)
            self._snapshot = None
            self._state = BackupState.Committed
        elif self._state == BackupState.Idle:
            self._state = BackupState.Committed

    def restoreBackup(self):
        '''Replaces whole archive content by the snapshot, which is consumed.'''
        if self._state != BackupState.Snapshotted:
            raise BackupError(f'No snapshot to restore, guardian is {self._state.name}.')
        assert self._snapshot is not None
        output = self.store.outputDirectory
        logging.warning(f"Restoring archive from backup '{self._snapshot}'.")
        self.store.empty()
        output.mkdir(parents=True, exist_ok=True)
        for entry in self._snapshot.iterdir():
            shutil.move(str(entry), str(output / entry.name))
        self._snapshot.rmdir()
        self._snapshot = None
        self._state = BackupState.RolledBack

    def listBackups(self) -> List[Path]:
        '''Existing snapshots, oldest first.'''
        if not self.backupDirectory.is_dir():
            return []
        return sorted(
            (entry for entry in self.backupDirectory.iterdir()
                if entry.is_dir() and self.NAME_PATTERN.match(entry.name)),
            key=lambda entry: entry.name)

    def deleteOlderBackups(self) -> List[Path]:
        '''
            Keeps only `retain` most recent snapshots. Snapshot still owned
            by this run is never removed. Returns removed snapshots.
        '''
        if self.retain < 0:
            return []
        candidates = [entry for entry in self.listBackups() if entry != self._snapshot]
        removable = candidates[:max(len(candidates) - self.retain, 0)]
        for entry in removable:
            logging.debug(f"Removing old backup '{entry}'.")
            shutil.rmtree(entry)
        if removable:
            logging.info(f'Removed {len(removable)} old backups.')
        return removable
