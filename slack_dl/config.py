'''
    Defines configuration options of the program
    and handles their loading from JSON or TOML
'''

from .common import *
from .bo import Channel, ChannelType, Id
from . import jsonvalidation
from .jsonvalidation import validateDocument
from . import progress
from .progress import ProgressSettings
from .recovery_actions import RBackup, RDelete, RRestore

import argparse
import json
from json.decoder import JSONDecodeError
import jsonschema
# HACK: Pyright linter doesn't recognize special meaning of ClassVar from .common in dataclasses
from typing import ClassVar


class LogVerbosity(Enum):
    ProblemsOnly = enumerator()
    Normal = enumerator()
    Verbose = enumerator()

class ConfigurationError(Exception):
    '''Invalid or missing configuration.'''
    def __init__(self, filename: Optional[Path] = None, *args):
        super().__init__(*args)
        self.filename = filename

class ChannelLocator:
    '''Identifies channel requested by configuration either by its id or name.'''
    def __init__(self, info: dict):
        if ('id' in info) == ('name' in info):
            raise ValueError('ChannelLocator needs exactly one of id or name.')
        self.id: Optional[Id] = info.get('id', None)
        self.name: Optional[str] = info.get('name', None)

    def match(self, channel: Channel) -> bool:
        if self.id is not None:
            return channel.id == self.id
        return channel.name == self.name

    def __eq__(self, other) -> bool:
        return isinstance(other, ChannelLocator) and (self.id, self.name) == (other.id, other.name)
    def __hash__(self) -> int:
        return hash((self.id, self.name))
    def __repr__(self) -> str:
        return f'ChannelLocator({ {k: v for k, v in self.__dict__.items() if v is not None} })'

def allChannelTypes() -> List[ChannelType]:
    return list(ChannelType)

@dataclass
class ConfigFile:
    _schemaValidator: ClassVar[jsonschema.Draft7Validator]
    DEFAULT_API_URL: ClassVar[str] = 'https://slack.com/api/'

    token: str = ''
    tokenFile: Path = Path('.token')
    apiUrl: str = DEFAULT_API_URL
    maxRetries: int = 5

    throttlingLoopDelay: int = 0

    outputDirectory: Path = Path('slack-archive')
    channelTypes: List[ChannelType] = dataclassfield(default_factory=allChannelTypes)
    explicitChannels: List[ChannelLocator] = dataclassfield(default_factory=list)
    mergeExisting: bool = True
    downloadFiles: bool = True
    downloadAvatars: bool = True

    # None means sibling of the output directory
    backupDirectory: Optional[Path] = None
    backupRetain: int = 3
    backupOnFailure: Union[RBackup, RDelete, RRestore] = RBackup()

    verbosity: LogVerbosity = LogVerbosity.Normal
    reportProgress: ProgressSettings = dataclassfield(
        default_factory=lambda: ProgressSettings(mode=progress.VisualizationMode.AnsiEscapes))
    progressInterval: int = 500

    @property
    def effectiveBackupDirectory(self) -> Path:
        if self.backupDirectory is not None:
            return self.backupDirectory
        output = self.outputDirectory.resolve()
        return output.parent / (output.name + '-backups')

    @staticmethod
    def loadFile(filename: Path) -> Any:
        '''
            Loads Json or supported Json-like structured data from file.
            Raises ConfigurationError on failure
        '''
        ftype = '.json'
        if filename.suffix in ('.json', '.toml'):
            ftype = filename.suffix
        else:
            if filename.suffix == '':
                logging.warning('Missing configuration suffix, assuming json.')
            else:
                logging.warning(f'Unrecognized configuration suffix "{filename.suffix}", assuming json.')

        try:
            with open(filename, encoding='utf8') as f:
                if ftype == '.json':
                    try:
                        config = json.load(f)
                    except JSONDecodeError as err:
                        logging.error(exceptionFormatter('Failed to load configuration file.'))
                        raise ConfigurationError(filename) from err
                else:
                    assert ftype == '.toml'
                    import toml # Late import as this feature is otherwise optional

                    try:
                        config = toml.load(f)
                    except toml.TomlDecodeError as err:
                        logging.error(exceptionFormatter('Failed to load configuration file.'))
                        raise ConfigurationError(filename) from err
        except OSError as err:
            logging.error(f"Can't read configuration file '{filename}': {err}")
            raise ConfigurationError(filename) from err

        return config

    @classmethod
    def fromFile(cls, filename: Path) -> 'ConfigFile':
        config = cls.loadFile(filename)
        validateDocument(config, ConfigFile._schemaValidator, acceptedVersion='1',
            documentName='Configuration', error=lambda: ConfigurationError(filename))
        assert isinstance(config, Mapping)

        return ConfigFile.fromJson(config)

    @staticmethod
    def fromJson(config: Mapping) -> 'ConfigFile':
        self = ConfigFile()
        if 'connection' in config:
            connection = config['connection']
            if 'token' in connection:
                self.token = connection['token']
            if 'tokenFile' in connection:
                self.tokenFile = Path(connection['tokenFile'])
            if 'apiUrl' in connection:
                self.apiUrl = connection['apiUrl']
                if not self.apiUrl.endswith('/'):
                    self.apiUrl += '/'
            if 'maxRetries' in connection:
                self.maxRetries = connection['maxRetries']

        if 'throttling' in config:
            self.throttlingLoopDelay = config['throttling']['loopDelay']
        if 'output' in config:
            output = config['output']
            if 'directory' in output:
                self.outputDirectory = Path(output['directory'])

        if 'channelTypes' in config:
            self.channelTypes = [ChannelType.fromConfig(t) for t in config['channelTypes']]
        if 'channels' in config:
            assert isinstance(config['channels'], list)
            self.explicitChannels = [ChannelLocator(info) for info in config['channels']]
        if 'mergeExisting' in config:
            self.mergeExisting = config['mergeExisting']

        if 'downloads' in config:
            downloads = config['downloads']
            self.downloadFiles = downloads.get('files', self.downloadFiles)
            self.downloadAvatars = downloads.get('avatars', self.downloadAvatars)

        if 'backups' in config:
            backups = config['backups']
            if 'directory' in backups:
                self.backupDirectory = Path(backups['directory'])
            self.backupRetain = backups.get('retain', self.backupRetain)
            x = backups.get('onFailure', None)
            if x is not None:
                self.backupOnFailure = {
                    'keep': RBackup(),
                    'restore': RRestore(),
                    'delete': RDelete(),
                }[x]

        if 'report' in config:
            reportingOptions = config['report']

            if 'verbosity' in reportingOptions:
                level = reportingOptions['verbosity']
                assert isinstance(level, int)
                self.verbosity = LogVerbosity(level + 1)
            if 'showProgress' in reportingOptions and reportingOptions['showProgress'] is not None:
                if not reportingOptions['showProgress']:
                    self.reportProgress = progress.ProgressSettings(mode=progress.VisualizationMode.DumbTerminal, forceMode=True)
                else:
                    self.reportProgress = progress.ProgressSettings(mode=progress.VisualizationMode.AnsiEscapes, forceMode=True)
            if 'progressInterval' in reportingOptions:
                self.progressInterval = reportingOptions['progressInterval']

        return self

    def updateFromEnv(self):
        env = os.environ
        if env.get('SLACK_TOKEN'):
            self.token = env['SLACK_TOKEN']
        if env.get('SLACK_ARCHIVE_OUTPUT'):
            self.outputDirectory = Path(env['SLACK_ARCHIVE_OUTPUT'])

    def updateFromArgs(self, args: argparse.Namespace):
        if args.token is not None:
            self.token = args.token
        if args.output is not None:
            self.outputDirectory = args.output
        if args.fresh:
            self.mergeExisting = False

        assert 'verbosity' in args
        if args.verbosity != LogVerbosity.Normal:
            self.verbosity = args.verbosity

    def validate(self):
        '''
            Delayed validation after loading configuration from all override sources.
            Falls back to the token file if no token was given.
        '''
        if self.token == '' and self.tokenFile.is_file():
            logging.debug(f"Reading token from '{self.tokenFile}'.")
            try:
                self.token = self.tokenFile.read_text(encoding='utf8').strip()
            except OSError as err:
                logging.error(f"Can't read token file '{self.tokenFile}': {err}")
                raise ConfigurationError(self.tokenFile) from err
        if self.token == '':
            logging.error('Slack token was not specified in config file, environment (SLACK_TOKEN), token file nor on command line.')
            raise ConfigurationError
        if len(self.channelTypes) == 0:
            logging.error('No channel types are selected for download.')
            raise ConfigurationError
        output = self.outputDirectory.resolve()
        backups = self.effectiveBackupDirectory.resolve()
        if backups == output or output in backups.parents:
            logging.error(f"Backup directory '{self.effectiveBackupDirectory}' can't lie inside the output directory.")
            raise ConfigurationError

ConfigFile._schemaValidator = jsonvalidation.loadSchemaValidator('config.schema.json')
