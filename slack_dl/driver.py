'''
    Implements Slack driver, object that logically
    represents (connection to) Slack workspace through its Web API
'''

from .common import *
from .bo import *
from .config import ConfigFile, LogVerbosity
from . import progress
from .store import PARTIAL_SUFFIX, writeAtomically

from mimetypes import guess_extension
import requests
from time import sleep

class SlackApiError(Exception):
    '''Slack answered the call, but with `ok: false`.'''
    def __init__(self, method: str, error: str):
        super().__init__(f"Slack method '{method}' failed with error '{error}'.")
        self.method = method
        self.error = error

@dataclass
class FetchResult:
    # Newly fetched messages followed by the previously stored ones
    messages: List[Message]
    # Fetched messages not present in the store before
    newCount: int

class SlackDriver:
    PAGE_SIZE = 200
    # File modes that have no downloadable content
    SKIPPED_FILE_MODES = ('tombstone', 'hidden_by_limit', 'external')

    def __init__(self, config: ConfigFile, session: Optional[requests.Session] = None):
        self.configfile: ConfigFile = config
        self.session = session if session is not None else requests.Session()

    def onBadHttpResponse(self, request: str, result: requests.Response) -> NoReturn:
        message = None
        try:
            jsn = result.json()
            message = jsn.get('error', None)
        except Exception:
            pass
        logmessage = f"Request '{request}' failed with status code {result.status_code}.\nHTTP status: {result.reason}"
        if message:
            logmessage += "\nError message: " + message
        logging.error(logmessage)
        result.raise_for_status()
        raise requests.HTTPError(logmessage, response=result)

    def delay(self):
        if self.configfile.throttlingLoopDelay:
            logging.debug(f"Waiting for {self.configfile.throttlingLoopDelay/1000}s ...")
            sleep(self.configfile.throttlingLoopDelay/1000)

    @staticmethod
    def retryAfter(result: requests.Response) -> float:
        try:
            return max(float(result.headers.get('Retry-After', 1)), 0)
        except ValueError:
            return 1

    def getRaw(self, url: str, params: Optional[dict] = None, authorized: bool = True) -> requests.Response:
        '''
            GET request of absolute url, carrying the token unless `authorized` is False.
            Rate limited requests are repeated after the time Slack asks for.
        '''
        headers = {'Authorization': 'Bearer ' + self.configfile.token} if authorized else {}
        attempt = 0
        while True:
            r = self.session.get(url, headers=headers, params=params)
            if r.status_code == 429 and attempt < self.configfile.maxRetries:
                attempt += 1
                wait = self.retryAfter(r)
                logging.info(f"Rate limited by Slack, retrying in {wait}s ({attempt}/{self.configfile.maxRetries}).")
                sleep(wait)
                continue
            if r.status_code != 200:
                self.onBadHttpResponse(url, r)
            return r

    def call(self, method: str, params: Optional[dict] = None, checkOk: bool = True) -> dict:
        '''
            Invokes Web API method and returns its decoded response.
            Unless `checkOk` is False, responses with `ok: false` raise SlackApiError.
        '''
        r = self.getRaw(self.configfile.apiUrl + method, params)
        info = r.json()
        # We're guaranteeing certain types on output
        if not isinstance(info, dict):
            raise TypeError(f"Slack method '{method}' returned {type(info).__name__} instead of object.")
        if checkOk and not info.get('ok', False):
            error = info.get('error', 'unknown_error')
            logging.error(f"Slack method '{method}' failed: {error}")
            raise SlackApiError(method, error)
        return info

    def paginate(self, method: str, params: dict, itemsKey: str) -> Generator[List[dict], None, None]:
        '''Yields result pages of cursor paginated method.'''
        params = dict(params, limit=self.PAGE_SIZE)
        while True:
            info = self.call(method, params)
            items = info.get(itemsKey, [])
            assert isinstance(items, list)
            yield items
            cursor = info.get('response_metadata', {}).get('next_cursor', '')
            if not cursor:
                return
            params['cursor'] = cursor
            self.delay()

    def showProgressReport(self) -> bool:
        return (self.configfile.verbosity == LogVerbosity.Normal
            and self.configfile.reportProgress.mode != progress.VisualizationMode.DumbTerminal)

    def itemCounter(self, header: str, footer: str) -> progress.ItemCounter:
        return progress.ItemCounter(sys.stderr, enabled=self.showProgressReport(),
            settings=self.configfile.reportProgress, header=header, footer=footer,
            updateIntervalMs=self.configfile.progressInterval)

    def authTest(self) -> AuthResult:
        return AuthResult.fromSlack(self.call('auth.test', checkOk=False))

    def getUser(self, userId: Id, users: Dict[Id, User]) -> Optional[User]:
        '''Returns user from the directory, fetching and adding unknown ones.'''
        if userId in users:
            return users[userId]
        try:
            info = self.call('users.info', {'user': userId})
        except SlackApiError as err:
            if err.error in ('user_not_found', 'user_not_visible'):
                logging.warning(f"User {userId} can't be looked up ({err.error}).")
                return None
            raise
        user = User.fromSlack(info['user'])
        users[userId] = user
        return user

    def listChannels(self, types: Iterable[ChannelType], users: Dict[Id, User]) -> List[Channel]:
        '''
            Lists channels of given types visible to the token's user.
            Direct conversations get named after the partner and inherit partner's deactivation.
        '''
        channels: List[Channel] = []
        params = {
            'types': ','.join(t.value for t in types),
            'exclude_archived': 'false',
        }
        for page in self.paginate('conversations.list', params, 'channels'):
            for info in page:
                channel = Channel.fromSlack(info)
                if channel.isIm and channel.userId:
                    user = self.getUser(channel.userId, users)
                    if user is not None:
                        if not channel.name:
                            channel.name = user.name
                        if user.deleted:
                            channel.isUserDeleted = True
                channels.append(channel)
        logging.info(f'Found {len(channels)} channels.')
        return channels

    def fetchMessages(self, channel: Channel, existing: Sequence[Message]) -> FetchResult:
        '''
            Downloads messages newer than the newest already stored one.
        '''
        assert channel.id is not None
        params: Dict[str, Any] = {'channel': channel.id}
        if existing:
            watermark = max(existing, key=lambda m: m.timestamp)
            if watermark.ts:
                params['oldest'] = watermark.ts

        fetched: List[Message] = []
        with self.itemCounter(f'Downloading {channel.displayName}: ', ' messages') as counter:
            for page in self.paginate('conversations.history', params, 'messages'):
                fetched.extend(Message.fromSlack(info) for info in page)
                counter.add(len(page))

        knownTs = {m.ts for m in existing}
        newCount = len({m.ts for m in fetched if m.ts not in knownTs})
        logging.debug(f'Fetched {len(fetched)} messages of {channel}, {newCount} of them new.')
        return FetchResult(messages=fetched + list(existing), newCount=newCount)

    def fetchReplies(self, channel: Channel, parent: Message) -> List[Message]:
        replies: List[Message] = []
        params = {'channel': channel.id, 'ts': parent.threadTs}
        for page in self.paginate('conversations.replies', params, 'messages'):
            # Parent is repeated on every page
            replies.extend(Message.fromSlack(info) for info in page if info.get('ts') != parent.ts)
        return replies

    def fetchExtras(self, channel: Channel, messages: List[Message], users: Dict[Id, User]):
        '''
            Completes messages with thread replies and the user directory with their authors.
            Messages are modified in place.
        '''
        for message in messages:
            if message.hasReplies and len(message.misc.get('replies', [])) != message.replyCount:
                message.replies = self.fetchReplies(channel, message)
                self.delay()
            authors = [message.userId] + [reply.userId for reply in message.replies]
            for userId in authors:
                if userId and userId not in users:
                    self.getUser(userId, users)

    def storeFile(self, url: str, filename: str, directoryName: Path, suffix: Optional[str] = None,
            authorized: bool = True) -> str:
        '''
            Downloads url into given directory, guessing file suffix from content type if not given.
            Returns the name of stored file.
        '''
        if '/' in filename:
            logging.warning(f'Refusing to store file with name "{filename}"')
            raise ValueError

        httpResponse = self.getRaw(url, authorized=authorized)
        if suffix is None:
            if 'content-type' in httpResponse.headers:
                contentType = httpResponse.headers['content-type']
                suffixIdx = contentType.find(';')
                if suffixIdx != -1:
                    contentType = contentType[:suffixIdx]
                suffix = guess_extension(contentType)
                if suffix is None:
                    crudeParse = re.match(r'^[^/]+/(\S+)$', contentType)
                    if crudeParse is not None:
                        suffix = '.'+crudeParse[1]
                    else:
                        logging.warning(f"Can't guess extension from content type '{contentType}', leaving empty.")
                        suffix = ''
            else:
                suffix = ''
        assert isinstance(suffix, str)
        writeAtomically(directoryName / (filename + suffix), httpResponse.content)
        return filename + suffix

    @staticmethod
    def storedStems(directoryName: Path) -> Set[str]:
        if not directoryName.is_dir():
            return set()
        return {Path(name).stem for name in os.listdir(directoryName) if not name.endswith(PARTIAL_SUFFIX)}

    def fetchAvatars(self, users: Mapping[Id, User], directoryName: Path) -> int:
        '''Downloads avatars of users that don't have one stored yet. Returns number of downloads.'''
        present = self.storedStems(directoryName)
        count = 0
        for user in users.values():
            url = user.avatarUrl
            if user.id is None or url is None or user.id in present:
                continue
            suffix = Path(url.split('?')[0]).suffix or None
            # Avatar hosts are outside of Slack, the token must not leak there
            self.storeFile(url, user.id, directoryName, suffix=suffix, authorized=False)
            present.add(user.id)
            count += 1
        if count:
            logging.debug(f'Downloaded {count} avatars.')
        return count

    def fetchFiles(self, channelId: Id, messages: Iterable[Message], directoryName: Path) -> int:
        '''
            Downloads files attached to messages (and their thread replies) that aren't stored yet.
            Returns number of downloads.
        '''
        present = self.storedStems(directoryName)
        def attachedFiles():
            for message in messages:
                yield from message.files
                for reply in message.replies:
                    yield from reply.files
        with self.itemCounter(f'Downloading files of {channelId}: ', ' files') as counter:
            for fileInfo in attachedFiles():
                fileId = fileInfo.get('id', None)
                url = fileInfo.get('url_private_download', None) or fileInfo.get('url_private', None)
                if (not fileId or not url or fileId in present
                        or fileInfo.get('mode', None) in self.SKIPPED_FILE_MODES
                        or fileInfo.get('is_external', False)):
                    continue
                suffix = Path(fileInfo.get('name', '')).suffix
                if not suffix and fileInfo.get('filetype', None):
                    suffix = '.' + fileInfo['filetype']
                self.storeFile(url, fileId, directoryName, suffix=suffix or None)
                present.add(fileId)
                counter.add()
        if counter.count:
            logging.info(f'Downloaded {counter.count} files of channel {channelId}.')
        return counter.count
