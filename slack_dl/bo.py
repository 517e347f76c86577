'''
    Defines "business objects",
    OOP representations of Slack entities
'''

__all__ = [
    'StoreError',
    'Id',
    'JsonMessage',
    'timestampValue',
    'Message',
    'ChannelType',
    'Channel',
    'User',
    'AuthResult',
]

from .common import *

import math

class StoreError(Exception):
    '''Failed to load from the storage of downloaded content.'''
    pass

Id = NewType('Id', str)

def timestampValue(ts: Any) -> float:
    '''
        Numeric interpretation of Slack's `ts` token, like "1700000000.000100".
        Missing, non-numeric and non-finite tokens are treated as 0.
    '''
    try:
        value = float(ts)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value

@dataclass
class JsonMessage:
    '''
        Base class for all Json based data structures, notably all Slack entities.

        Fields the program inspects are pulled out into typed members, everything else
        is collected in `misc` and kept untouched. Members are mapped to Slack's
        key names by `_slackKeys`, which allows storing the entity back in exactly
        the shape Slack sent it.
    '''
    _slackKeys: ClassVar[Dict[str, str]] = {}

    # All otherwise unknown fields are collected in this generic dict
    # Note: Without default value, as that would force all dataclass based subclasses to have all members optional
    misc: Dict[str, Any]

    def drop(self, attrName: str):
        if attrName in self.misc:
            del self.misc[attrName]

    def extract(self, attrName: str) -> Any:
        assert attrName in self.misc
        res = self.misc[attrName]
        del self.misc[attrName]
        return res

    def extractOr(self, attrName: str, fallback: Any) -> Any:
        if attrName not in self.misc:
            return fallback
        return self.extract(attrName)

    def toStore(self) -> dict:
        '''
            Returns the Slack shaped dictionary. Members that are None are omitted,
            so payload that lacked the key doesn't gain it.
        '''
        content = dict(self.misc)
        for memberName, slackKey in self._slackKeys.items():
            value = getattr(self, memberName)
            if value is not None:
                content[slackKey] = value
        return content

    _T = TypeVar('_T', bound='JsonMessage')
    @classmethod
    def fromSlack(cls: Type[_T], info: dict) -> _T:
        if not isinstance(info, dict):
            problem = f"Can't load `{cls.__name__}` from JSON value of type {type(info).__name__}."
            logging.error(problem)
            raise StoreError(problem)
        entity = JsonMessage(misc=dict(info))
        known = {memberName: entity.extractOr(slackKey, None)
            for memberName, slackKey in cls._slackKeys.items()}
        return cls(misc=entity.misc, **known)

    @classmethod
    def fromStore(cls: Type[_T], info: dict) -> _T:
        # Stored form is the Slack form
        return cls.fromSlack(info)

@dataclass
class Message(JsonMessage):
    _slackKeys: ClassVar[Dict[str, str]] = {
        'ts': 'ts',
        'userId': 'user',
        'threadTs': 'thread_ts',
        'replyCount': 'reply_count',
    }

    ts: Optional[str] = None
    userId: Optional[Id] = None
    # Set on thread parents as well as on replies
    threadTs: Optional[str] = None
    replyCount: Optional[int] = None

    @property
    def timestamp(self) -> float:
        return timestampValue(self.ts)

    @property
    def hasReplies(self) -> bool:
        return bool(self.replyCount) and self.threadTs is not None

    @property
    def files(self) -> List[dict]:
        files = self.misc.get('files', [])
        return files if isinstance(files, list) else []

    @property
    def replies(self) -> List['Message']:
        return [Message.fromSlack(r) for r in self.misc.get('replies', [])]

    @replies.setter
    def replies(self, value: List['Message']):
        self.misc['replies'] = [r.toStore() for r in value]

    def __str__(self):
        return f'Message(u={self.userId}, ts={self.ts})'

class ChannelType(Enum):
    Public = 'public_channel'
    Private = 'private_channel'
    Group = 'mpim'
    Direct = 'im'

    @classmethod
    def fromConfig(cls, info: str) -> 'ChannelType':
        for member in cls:
            if member.value == info:
                return member
        raise ValueError(f"Unknown channel type '{info}'.")

@dataclass
class Channel(JsonMessage):
    _slackKeys: ClassVar[Dict[str, str]] = {
        'id': 'id',
        'name': 'name',
        'isArchived': 'is_archived',
        'isIm': 'is_im',
        'isUserDeleted': 'is_user_deleted',
        'userId': 'user',
    }

    # Listing may return channels without id, those can't be downloaded
    id: Optional[Id] = None
    name: Optional[str] = None
    isArchived: Optional[bool] = None
    isIm: Optional[bool] = None
    isUserDeleted: Optional[bool] = None
    # Partner of direct conversation
    userId: Optional[Id] = None

    def __hash__(self):
        return hash(self.id)

    @property
    def displayName(self) -> str:
        return self.name or self.id or 'Unknown'

    def __str__(self) -> str:
        return f'Channel({self.displayName})'

@dataclass
class User(JsonMessage):
    _slackKeys: ClassVar[Dict[str, str]] = {
        'id': 'id',
        'name': 'name',
        'deleted': 'deleted',
    }

    id: Optional[Id] = None
    name: Optional[str] = None
    # Deactivated account
    deleted: Optional[bool] = None

    def __hash__(self):
        return hash(self.id)

    @property
    def displayName(self) -> str:
        profile = self.misc.get('profile', {})
        return profile.get('display_name') or self.misc.get('real_name') or self.name or self.id or 'Unknown'

    @property
    def avatarUrl(self) -> Optional[str]:
        profile = self.misc.get('profile', {})
        for key in ('image_original', 'image_512', 'image_192', 'image_72'):
            if profile.get(key):
                return profile[key]
        return None

    def __str__(self):
        return f'User({self.name})'

@dataclass
class AuthResult(JsonMessage):
    '''
        Outcome of the `auth.test` call. Failed checks carry Slack's error code.
    '''
    _slackKeys: ClassVar[Dict[str, str]] = {
        'ok': 'ok',
        'user': 'user',
        'userId': 'user_id',
        'team': 'team',
        'error': 'error',
    }

    ok: Optional[bool] = None
    user: Optional[str] = None
    userId: Optional[Id] = None
    team: Optional[str] = None
    error: Optional[str] = None

    def toStore(self) -> dict:
        content = super().toStore()
        # Service headers aren't interesting for the archive
        content.pop('response_metadata', None)
        return content
