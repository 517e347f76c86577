'''
    Contains the archive storage format and related utilities

    The format currently looks like
    <output>/data/channels.json
        - json array of channels as listed by Slack, merged by channel id across runs
    <output>/data/users.json
        - json object mapping user id to user as returned by Slack
    <output>/data/slack-archive.json
        - archive bookkeeping, see tracker.ArchiveState
    <output>/data/<channel id>.json
        - json array of messages, newest first, no two messages share `ts`
    <output>/files/<channel id>/, <output>/avatars/
        - downloaded binary content
    <output>/.last-successful-run
        - ISO-8601 time of last run that finished without problems
'''

from .common import *

from .bo import *

import json
import shutil

JsonValue = Any

PARTIAL_SUFFIX = '.partial'

def writeAtomically(path: Path, content: Union[str, bytes]):
    '''
        Writes content next to `path` first and then moves it in place,
        so `path` either keeps its old content or holds the whole new one.
    '''
    path.parent.mkdir(parents=True, exist_ok=True)
    temporaryPath = path.with_name(path.name + PARTIAL_SUFFIX)
    try:
        if isinstance(content, bytes):
            output = open(temporaryPath, 'wb')
        else:
            output = open(temporaryPath, 'w', encoding='utf8')
        with output:
            output.write(content)
            output.flush()
            os.fsync(output.fileno())
        os.replace(temporaryPath, path)
    except BaseException:
        if temporaryPath.exists():
            temporaryPath.unlink()
        raise

class ArchiveStore:
    '''
        Accessor of the on-disk archive.

        All JSON writes replace the target file in one step, readers never observe
        partially written content. I/O errors are propagated as they are.
    '''
    DATA_DIRECTORY = 'data'
    FILES_DIRECTORY = 'files'
    AVATARS_DIRECTORY = 'avatars'
    LAST_RUN_FILE = '.last-successful-run'

    def __init__(self, outputDirectory: Path):
        self.outputDirectory: Path = Path(outputDirectory)

    @property
    def dataDirectory(self) -> Path:
        return self.outputDirectory / self.DATA_DIRECTORY
    @property
    def channelsPath(self) -> Path:
        return self.dataDirectory / 'channels.json'
    @property
    def usersPath(self) -> Path:
        return self.dataDirectory / 'users.json'
    @property
    def archiveDataPath(self) -> Path:
        return self.dataDirectory / 'slack-archive.json'
    @property
    def avatarsDirectory(self) -> Path:
        return self.outputDirectory / self.AVATARS_DIRECTORY
    @property
    def lastRunPath(self) -> Path:
        return self.outputDirectory / self.LAST_RUN_FILE

    def channelDataPath(self, channelId: Id) -> Path:
        if '/' in channelId or channelId in ('', '.', '..'):
            raise ValueError(f"Refusing to derive storage path from channel id '{channelId}'.")
        return self.dataDirectory / f'{channelId}.json'

    def filesDirectory(self, channelId: Id) -> Path:
        return self.outputDirectory / self.FILES_DIRECTORY / channelId

    @staticmethod
    def toJson(obj) -> JsonValue:
        '''Converts business objects (and containers of them) to plain JSON values.'''
        if hasattr(obj, 'toStore'):
            return obj.toStore()
        if isinstance(obj, Mapping):
            return {key: ArchiveStore.toJson(value) for key, value in obj.items()}
        if isinstance(obj, (list, tuple)):
            return [ArchiveStore.toJson(value) for value in obj]
        return obj

    def readJson(self, path: Path) -> JsonValue:
        with open(path, 'r', encoding='utf8') as inputFile:
            try:
                return json.load(inputFile)
            except json.JSONDecodeError as err:
                problem = f"'{path}' isn't valid JSON: {err}"
                logging.error(problem)
                raise StoreError(problem) from err

    def writeJson(self, path: Path, obj):
        self.writeText(path, json.dumps(self.toJson(obj), ensure_ascii=False, indent=2))

    def writeText(self, path: Path, text: str):
        writeAtomically(path, text)

    def mergeAndPersist(self, path: Path, newRecords: Union[Mapping, Iterable],
            key: Optional[Callable[[JsonValue], Any]] = None,
            order: Optional[Callable[[List[JsonValue]], List[JsonValue]]] = None
        ) -> JsonValue:
        '''
            Writes union of records already stored at `path` and `newRecords`.

            For mappings, new values replace old ones under the same key.
            For sequences, new records are placed before the stored ones; if `key` is given,
            only the first record per key is kept (so fresh records win), and `order` may
            rearrange the result. Both callables operate on JSON form of records.

            Returns the written content.
        '''
        existing = self.readJson(path) if path.is_file() else None
        if isinstance(newRecords, Mapping):
            if existing is not None and not isinstance(existing, dict):
                logging.warning(f"Stored content of '{path}' isn't an object, it will be replaced.")
                existing = None
            merged: JsonValue = dict(existing or {})
            merged.update(self.toJson(newRecords))
        else:
            if existing is not None and not isinstance(existing, list):
                logging.warning(f"Stored content of '{path}' isn't an array, it will be replaced.")
                existing = None
            records = self.toJson(list(newRecords)) + (existing or [])
            if key is not None:
                seen = set()
                unique = []
                for record in records:
                    recordKey = key(record)
                    if recordKey in seen:
                        continue
                    seen.add(recordKey)
                    unique.append(record)
                records = unique
            if order is not None:
                records = order(records)
            merged = records
        self.writeJson(path, merged)
        return merged

    def hasArchive(self) -> bool:
        return self.channelsPath.is_file()

    def isEmpty(self) -> bool:
        '''True if the output directory holds nothing at all, downloads and markers included.'''
        return not self.outputDirectory.is_dir() or not any(self.outputDirectory.iterdir())

    def contains(self, path: Path) -> bool:
        '''True if `path` is the output directory or lies somewhere inside it.'''
        output = self.outputDirectory.resolve()
        path = Path(path).resolve()
        return path == output or output in path.parents

    def empty(self):
        '''Removes whole content of the output directory.'''
        if not self.outputDirectory.is_dir():
            return
        logging.info(f"Removing previous archive content in '{self.outputDirectory}'.")
        for entry in self.outputDirectory.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def loadChannelList(self) -> List[Channel]:
        if not self.channelsPath.is_file():
            return []
        content = self.readJson(self.channelsPath)
        if not isinstance(content, list):
            problem = f"Channel list '{self.channelsPath}' isn't a JSON array."
            logging.error(problem)
            raise StoreError(problem)
        return [Channel.fromStore(info) for info in content]

    def loadMessages(self, channelId: Id) -> List[Message]:
        path = self.channelDataPath(channelId)
        if not path.is_file():
            return []
        content = self.readJson(path)
        if not isinstance(content, list):
            problem = f"Message log '{path}' isn't a JSON array."
            logging.error(problem)
            raise StoreError(problem)
        return [Message.fromStore(info) for info in content]

    def loadUsers(self) -> Dict[Id, User]:
        if not self.usersPath.is_file():
            return {}
        content = self.readJson(self.usersPath)
        if not isinstance(content, dict):
            problem = f"User directory '{self.usersPath}' isn't a JSON object."
            logging.error(problem)
            raise StoreError(problem)
        return {Id(userId): User.fromStore(info) for userId, info in content.items()}

    def readLastSuccessfulRun(self) -> Optional[datetime]:
        '''
            Time of last successful run, None if unknown.
            Unreadable marker is not a problem, it is informational only.
        '''
        if not self.lastRunPath.is_file():
            return None
        try:
            text = self.lastRunPath.read_text(encoding='utf8').strip()
            # Older Python versions don't accept the 'Z' suffix
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            return datetime.fromisoformat(text)
        except (OSError, UnicodeDecodeError, ValueError) as err:
            logging.debug(f"Ignoring unreadable marker '{self.lastRunPath}': {err}")
            return None

    def writeLastSuccessfulRun(self, when: datetime):
        self.writeText(self.lastRunPath, when.isoformat())

class MessageCache:
    '''
        Messages of channels keyed by channel id, valid for one run.
        Missing channels are loaded from the store on first access.
    '''
    def __init__(self, store: ArchiveStore):
        self.store = store
        self._messages: Dict[Id, List[Message]] = {}

    def get(self, channelId: Id) -> List[Message]:
        if channelId not in self._messages:
            self._messages[channelId] = self.store.loadMessages(channelId)
        return self._messages[channelId]

    def set(self, channelId: Id, messages: List[Message]):
        self._messages[channelId] = messages

    def __contains__(self, channelId: Id) -> bool:
        return channelId in self._messages

    def channelIds(self) -> List[Id]:
        return list(self._messages)
