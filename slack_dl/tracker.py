'''
    Persistent per-channel progress of the archive.

    Stored in `data/slack-archive.json`, see archive.schema.json.
'''

from .common import *

from .bo import AuthResult, Id, StoreError
from . import jsonvalidation
from .jsonvalidation import validateDocument
from .store import ArchiveStore

# HACK: Pyright linter doesn't recognize special meaning of ClassVar from .common in dataclasses
from typing import ClassVar
import jsonschema

@dataclass
class ChannelProgress:
    # Nothing more will ever be posted, once set it stays set
    fullyDownloaded: bool = False
    # Mirror of stored message count, for reporting only
    messages: int = 0

    @classmethod
    def fromStore(cls, info: dict) -> 'ChannelProgress':
        return cls(fullyDownloaded=info.get('fullyDownloaded', False), messages=info.get('messages', 0))

    def toStore(self) -> dict:
        return {'fullyDownloaded': self.fullyDownloaded, 'messages': self.messages}

@dataclass
class ArchiveState:
    _schemaValidator: ClassVar[jsonschema.Draft7Validator]
    VERSION: ClassVar[str] = '1'

    auth: Optional[AuthResult] = None
    channels: Dict[Id, ChannelProgress] = dataclassfield(default_factory=dict)

    @classmethod
    def fromStore(cls, info: Any) -> 'ArchiveState':
        # Archives created by older tools carry no version
        info = validateDocument(info, cls._schemaValidator, acceptedVersion=cls.VERSION,
            documentName='Archive data', error=StoreError, warnMissingVersion=False)

        self = cls()
        if 'auth' in info:
            self.auth = AuthResult.fromStore(info['auth'])
        for channelId, progressInfo in info.get('channels', {}).items():
            self.channels[Id(channelId)] = ChannelProgress.fromStore(progressInfo)
        return self

    def toStore(self) -> dict:
        content: Dict[str, Any] = {
            'version': self.VERSION,
        }
        if self.auth is not None:
            content.update(auth=self.auth.toStore())
        content.update(channels={channelId: progress.toStore() for channelId, progress in self.channels.items()})
        return content

ArchiveState._schemaValidator = jsonvalidation.loadSchemaValidator('archive.schema.json')

class ProgressTracker:
    '''
        Storage of channel completion state. Holds no policy about when a channel is complete,
        that's decided by the caller.
        Records are created on first access and never removed.
    '''
    def __init__(self, state: Optional[ArchiveState] = None):
        self.state: ArchiveState = state if state is not None else ArchiveState()

    @classmethod
    def load(cls, store: ArchiveStore) -> 'ProgressTracker':
        if not store.archiveDataPath.is_file():
            return cls()
        try:
            return cls(ArchiveState.fromStore(store.readJson(store.archiveDataPath)))
        except StoreError as err:
            raise StoreError(f"Can't load archive data '{store.archiveDataPath}': {err}") from err

    def save(self, store: ArchiveStore):
        store.writeJson(store.archiveDataPath, self.state)

    @property
    def auth(self) -> Optional[AuthResult]:
        return self.state.auth
    @auth.setter
    def auth(self, value: AuthResult):
        self.state.auth = value

    def get(self, channelId: Id) -> ChannelProgress:
        if channelId not in self.state.channels:
            self.state.channels[channelId] = ChannelProgress()
        return self.state.channels[channelId]

    def isComplete(self, channelId: Id) -> bool:
        return channelId in self.state.channels and self.state.channels[channelId].fullyDownloaded

    def markComplete(self, channelId: Id):
        self.get(channelId).fullyDownloaded = True

    def setMessageCount(self, channelId: Id, count: int):
        assert count >= 0
        self.get(channelId).messages = count

    def channelIds(self) -> List[Id]:
        return list(self.state.channels)
