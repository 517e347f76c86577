#!/usr/bin/env python3

from argparse import ArgumentParser, Namespace as ArgNamespace
from sys import version_info
assert version_info >= (3, 7), "Required at least python 3.7, executed with version "+str(version_info)+"!"

from .common import *
from .config import ConfigFile, ConfigurationError, LogVerbosity
from .saver import Saver, SavingFailed
from .store import ArchiveStore

PROGRAM_NAME = 'slack-dl'

def setupLogging(verbosity: LogVerbosity):
    # We assume this already happened, note multiple operations are NOP
    logging.basicConfig()
    rootLogger = logging.getLogger()
    if verbosity == LogVerbosity.Verbose:
        rootLogger.setLevel(logging.DEBUG)
        rootLogger.handlers[0].setFormatter(
            logging.Formatter('%(asctime)s:%(levelname)s:%(name)s:%(filename)s:%(lineno)s: %(message)s')
        )
    elif verbosity == LogVerbosity.Normal:
        rootLogger.setLevel(logging.INFO)
        rootLogger.handlers[0].setFormatter(
            logging.Formatter('%(message)s')
        )
    else:
        assert verbosity == LogVerbosity.ProblemsOnly
        rootLogger.setLevel(logging.WARNING)
        rootLogger.handlers[0].setFormatter(
            logging.Formatter('%(message)s')
        )

def parseArgs(argv: Optional[Sequence[str]] = None) -> ArgNamespace:
    argumentParser = ArgumentParser(prog=PROGRAM_NAME, description="Creates and incrementally updates a local archive of Slack workspace.")
    argumentParser.add_argument('--conf','-c', help='Configuration JSON or TOML file. For allowed options see config.schema.json in source code. If omitted, standard locations are checked.', type=Path)
    verbosity = argumentParser.add_mutually_exclusive_group()
    verbosity.add_argument('--verbose', '-v', help='Verbose mode.', const=LogVerbosity.Verbose,
                           action='store_const', default=LogVerbosity.Normal, dest='verbosity')
    verbosity.add_argument(
        '--quiet', '-q', help='Quiet mode. Removes outputs if no problems occur.',  action='store_const', const=LogVerbosity.ProblemsOnly, dest='verbosity')

    quickConf = argumentParser.add_argument_group()
    quickConf.add_argument(
        '--token', '-t', help="Slack token, like config setting 'connection.token'.\n"
        + 'Prefer passing it through config file, token file or SLACK_TOKEN env variable for security reasons.')
    quickConf.add_argument(
        '--output', '-o', help="Archive directory, like config setting 'output.directory'.", type=Path)
    quickConf.add_argument(
        '--fresh', help="Discard existing archive instead of merging into it, like config setting 'mergeExisting' set to false.",
        action='store_true')

    args = argumentParser.parse_args(argv)
    return args

def selectConfigFile() -> Optional[Path]:
    def suffixes():
        yield 'toml'
        yield 'json'
    locations = []
    for confPath in (Path(f'./{PROGRAM_NAME}.{sfx}') for sfx in suffixes()):
        if confPath.is_file():
            return confPath
        locations.append(confPath)
    for variable in ('XDG_CONFIG_HOME', 'HOME'):
        if variable in os.environ:
            for confPath in (Path(os.environ[variable])/f'{PROGRAM_NAME}.{sfx}' for sfx in suffixes()):
                if confPath.is_file():
                    return confPath
                locations.append(confPath)

    logging.info(f'No configuration file found, searched locations follow: {locations}')
    return None

def welcome(conffile: ConfigFile):
    lastRun = ArchiveStore(conffile.outputDirectory).readLastSuccessfulRun()
    if lastRun is not None:
        logging.info(f"Welcome to {PROGRAM_NAME}. Archive '{conffile.outputDirectory}' was last successfully updated at {lastRun.astimezone():%Y-%m-%d %H:%M:%S}.")
    else:
        logging.info(f"Welcome to {PROGRAM_NAME}. Archive '{conffile.outputDirectory}' has no record of previous successful run.")

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parseArgs(argv)
    setupLogging(args.verbosity)

    if args.conf is None:
        args.conf = selectConfigFile()

    try:
        if args.conf is not None:
            logging.debug(f'Loading configuration file {args.conf}.')
            conffile = ConfigFile.fromFile(args.conf)
        else:
            conffile = ConfigFile()
        conffile.updateFromEnv()
        conffile.updateFromArgs(args)
        conffile.validate()
    except ConfigurationError:
        if args.conf is not None:
            logging.fatal(f'Configuration file {args.conf} failed to be loaded.')
        else:
            logging.fatal('Configuration failed to be loaded.')
        return 1
    setupLogging(conffile.verbosity)

    welcome(conffile)
    try:
        Saver(conffile)()
    except SavingFailed as err:
        logging.fatal(err)
        if conffile.verbosity == LogVerbosity.Verbose:
            text = ''
            cause: Optional[BaseException] = err.__cause__
            while cause is not None:
                text += f'Caused by: {cause}\n'
                cause = cause.__cause__
            if text:
                logging.fatal(text)
        return 1
    except Exception:
        logging.info("-----\n")
        logging.fatal("Application encountered unexpected situation and will terminate, sorry for inconvenience.\nFollowing information can be useful for developers:")
        raise
    return 0

def run():
    sys.exit(main())
