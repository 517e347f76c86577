'''
    Contains high level logic of archive synchronization
'''

from .common import *

from .backup import BackupError, BackupGuardian, BackupState
from .bo import *
from .config import ConfigFile
from .driver import SlackDriver
from .notifiers import DownstreamNotifiers
from .recovery import RecoveryArbiter
from .recovery_actions import RBackup, RDelete, RRestore
from .store import ArchiveStore, MessageCache
from .tracker import ProgressTracker

from datetime import timezone

class SavingFailed(Exception):
    '''
        Invocation of Saver failed due to known external problem, such as failing to log in.
        Unlike logical errors, dumping stack trace to users is not necessary.

        Should stringify into problem description and if caused by internal exception that
        may provide additional info, such subexception may be chained into it.
    '''
    pass

class AuthenticationFailed(SavingFailed):
    HELP_URL = 'https://api.slack.com/methods/auth.test'

    def __init__(self, auth: AuthResult, token: str):
        super().__init__(
            f'Authentication with Slack failed. The error was: {auth.error}\n'
            + f'The provided token was {maskSecret(token)}. Double-check the token and try again.\n'
            + f'For more information on the error code, see the error table at {self.HELP_URL}'
        )
        self.auth = auth

class ChannelState(Enum):
    NotStarted = enumerator()
    Skipped = enumerator()
    Fetching = enumerator()
    Merging = enumerator()
    Persisted = enumerator()
    # Nothing more will be downloaded in future runs
    Completed = enumerator()
    # Stored, but future runs will continue fetching
    PartiallyUpdated = enumerator()

CHANNEL_TRANSITIONS: Dict[ChannelState, FrozenSet[ChannelState]] = {
    ChannelState.NotStarted: frozenset({ChannelState.Skipped, ChannelState.Fetching}),
    ChannelState.Fetching: frozenset({ChannelState.Merging}),
    ChannelState.Merging: frozenset({ChannelState.Persisted}),
    ChannelState.Persisted: frozenset({ChannelState.Completed, ChannelState.PartiallyUpdated}),
}

@dataclass
class ChannelRun:
    '''Progress of single channel within the run.'''
    channel: Channel
    state: ChannelState = ChannelState.NotStarted
    # Messages that weren't in the archive before this run
    newMessages: int = 0

    def advance(self, state: ChannelState):
        assert state in CHANNEL_TRANSITIONS.get(self.state, frozenset()), f'{self.channel}: {self.state.name} -> {state.name}'
        logging.debug(f'{self.channel}: {self.state.name} -> {state.name}')
        self.state = state

@dataclass
class RunReport:
    channels: List[ChannelRun] = dataclassfield(default_factory=list)

    @property
    def channelStates(self) -> Dict[Id, ChannelState]:
        return {run.channel.id: run.state for run in self.channels if run.channel.id is not None}

    @property
    def newMessages(self) -> Dict[Id, int]:
        return {run.channel.id: run.newMessages for run in self.channels if run.channel.id is not None}

    @property
    def updatedChannels(self) -> List[Channel]:
        return [run.channel for run in self.channels if run.channel.id is not None and run.newMessages > 0]

    def stateOf(self, channelId: Id) -> ChannelState:
        for run in self.channels:
            if run.channel.id == channelId:
                return run.state
        raise KeyError(channelId)

def deduplicate(messages: Iterable[Message]) -> List[Message]:
    '''Keeps first message of every `ts`, later duplicates are dropped.'''
    seen: Set[Optional[str]] = set()
    result = []
    for message in messages:
        if message.ts in seen:
            continue
        seen.add(message.ts)
        result.append(message)
    return result

def orderMessages(messages: Iterable[Message]) -> List[Message]:
    '''Newest first. Stable, so messages with equal timestamps keep their relative order.'''
    return sorted(messages, key=lambda m: m.timestamp, reverse=True)

def orderStoredMessages(records: List[dict]) -> List[dict]:
    return sorted(records, key=lambda r: timestampValue(r.get('ts', None)), reverse=True)

def storedMessageKey(record: dict) -> Optional[str]:
    return record.get('ts', None)

def isChannelComplete(channel: Channel) -> bool:
    '''No new messages can appear in archived channels and in conversations with deactivated users.'''
    return bool(channel.isArchived or (channel.isIm and channel.isUserDeleted))

class Saver:
    '''
        Main class responsible for orchestrating the archiving process.
        Should start from __call__ method.
    '''
    def __init__(self, configfile: ConfigFile, driver: Optional[SlackDriver] = None,
            store: Optional[ArchiveStore] = None,
            arbiter: Optional[RecoveryArbiter] = None,
            notifiers: Optional[DownstreamNotifiers] = None,
            guardian: Optional[BackupGuardian] = None
            ):
        if driver is None:
            driver = SlackDriver(configfile)
        if store is None:
            store = ArchiveStore(configfile.outputDirectory)
        if arbiter is None:
            arbiter = RecoveryArbiter(configfile)
        if notifiers is None:
            notifiers = DownstreamNotifiers()
        if guardian is None:
            guardian = BackupGuardian(store, configfile.effectiveBackupDirectory, retain=configfile.backupRetain)
        self.configfile = configfile
        self.driver: SlackDriver = driver
        self.store: ArchiveStore = store
        self.recoveryArbiter: RecoveryArbiter = arbiter
        self.notifiers: DownstreamNotifiers = notifiers
        self.guardian: BackupGuardian = guardian

    def selectChannels(self, channels: List[Channel]) -> List[Channel]:
        '''
            Picks channels requested by configuration, keeping the listing order.
        '''
        if len(self.configfile.explicitChannels) == 0:
            return channels
        selected = []
        unmatched = set(self.configfile.explicitChannels)
        for channel in channels:
            for locator in self.configfile.explicitChannels:
                if locator.match(channel):
                    selected.append(channel)
                    unmatched.discard(locator)
                    break
        for locator in unmatched:
            logging.warning(f'Found no requested channel via locator {locator}.')
        return selected

    def applyRecovery(self, action: Union[RBackup, RDelete, RRestore]):
        if isinstance(action, RRestore):
            if self.guardian.state == BackupState.Snapshotted:
                self.guardian.restoreBackup()
            else:
                logging.warning('There is no backup to restore the archive from.')
        elif isinstance(action, RDelete):
            self.guardian.deleteBackup()
        else:
            assert action == RBackup()

    def recover(self, err: BaseException):
        '''Handles the snapshot after failed run, never masks the original failure.'''
        try:
            self.applyRecovery(self.recoveryArbiter.onRunFailure(err, self.guardian.snapshot))
        except (OSError, BackupError):
            logging.error(exceptionFormatter('Failed to handle archive backup after failure.'))

    def authenticate(self) -> AuthResult:
        logging.info('Testing authentication ...')
        auth = self.driver.authTest()
        if not auth.ok:
            self.applyRecovery(self.recoveryArbiter.onAuthenticationFailure(auth, self.guardian.snapshot))
            raise AuthenticationFailed(auth, self.configfile.token)
        logging.info(f'Successfully authorized with Slack as {auth.user}.')
        return auth

    def processChannel(self, run: ChannelRun, tracker: ProgressTracker, users: Dict[Id, User],
            cache: MessageCache, position: str = ''):
        '''
            Brings archive of single channel up to date.

            Steps are strictly ordered, any failure propagates and aborts the whole run,
            as progress must never be recorded without matching stored messages.
        '''
        channel = run.channel
        if channel.id is None:
            logging.warning(f'Selected channel does not have an id, skipping: {channel.toStore()}')
            run.advance(ChannelState.Skipped)
            return
        if tracker.get(channel.id).fullyDownloaded:
            logging.info(f'{position}{channel.displayName} is fully downloaded, skipping.')
            run.advance(ChannelState.Skipped)
            return

        logging.info(f'{position}Processing {channel.displayName} ...')
        run.advance(ChannelState.Fetching)
        fetched = self.driver.fetchMessages(channel, cache.get(channel.id))
        run.newMessages = fetched.newCount
        messages = fetched.messages
        self.driver.fetchExtras(channel, messages, users)
        if self.configfile.downloadAvatars:
            self.driver.fetchAvatars(users, self.store.avatarsDirectory)

        run.advance(ChannelState.Merging)
        messages = orderMessages(deduplicate(messages))
        self.store.mergeAndPersist(self.store.usersPath, users)
        stored = self.store.mergeAndPersist(self.store.channelDataPath(channel.id), messages,
            key=storedMessageKey, order=orderStoredMessages)
        messages = [Message.fromStore(record) for record in stored]
        run.advance(ChannelState.Persisted)

        # Needs stored messages, as these determine which files belong to the channel
        if self.configfile.downloadFiles:
            self.driver.fetchFiles(channel.id, messages, self.store.filesDirectory(channel.id))
        cache.set(channel.id, messages)

        if isChannelComplete(channel):
            tracker.markComplete(channel.id)
        tracker.setMessageCount(channel.id, len(messages))
        run.advance(ChannelState.Completed if tracker.isComplete(channel.id) else ChannelState.PartiallyUpdated)
        logging.info(f'Saved {len(messages)} messages of {channel.displayName} ({run.newMessages} new).')

    def __call__(self) -> RunReport:
        '''
            Entrypoint of the Saver logic. Throws SavingFailed on known errors.
        '''
        try:
            self.guardian.createBackup()
        except BackupError as err:
            raise SavingFailed('Failed to back up the archive, nothing was changed.') from err

        report = RunReport()
        try:
            tracker = ProgressTracker.load(self.store)
            # Fresh runs must not carry users of the discarded archive over
            users = self.store.loadUsers() if self.configfile.mergeExisting else {}

            auth = self.authenticate()

            logging.info('Collecting metadata about available channels ...')
            channels = self.driver.listChannels(self.configfile.channelTypes, users)
            selected = self.selectChannels(channels)
            if len(selected) == 0:
                logging.warning('No channels selected for download.')

            if self.store.hasArchive() and not self.configfile.mergeExisting:
                logging.info('Not merging with existing archive, starting from scratch.')
                self.store.empty()
                tracker = ProgressTracker()
            tracker.auth = auth
            self.store.mergeAndPersist(self.store.channelsPath, selected, key=lambda c: c.get('id', None))

            cache = MessageCache(self.store)
            logging.info('Processing channels ...')
            for index, channel in enumerate(selected):
                run = ChannelRun(channel)
                report.channels.append(run)
                self.processChannel(run, tracker, users, cache, position=f'[{index + 1}/{len(selected)}] ')

            tracker.save(self.store)

            self.notifiers.onChannelsUpdated(report.updatedChannels, cache)
            self.notifiers.onArchiveUpdated(selected, cache)
        except AuthenticationFailed:
            raise
        except KeyboardInterrupt as err:
            self.recover(err)
            raise SavingFailed('Archiving interrupted.') from err
        except Exception as err:
            logging.debug(exceptionFormatter('Archiving failed.'))
            self.recover(err)
            raise SavingFailed(f'Archiving failed: {err}') from err

        self.guardian.deleteBackup()
        self.guardian.deleteOlderBackups()
        self.store.writeLastSuccessfulRun(datetime.now(timezone.utc))

        logging.info('All done.')
        return report
