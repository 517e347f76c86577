'''
    Contains logic pertaining to arbitrage in situations
    where archived data may get lost.
'''

from .common import *

from .bo import AuthResult
from .config import ConfigFile
from .recovery_actions import RBackup, RDelete, RRestore

class RecoveryArbiter:
    '''
        Decision maker that centralises reasoning in all situations
        that may result in data loss.

        Acts as an interface that subclasses may use to, for example, ask user
        for decision interactively.
    '''
    def __init__(self, config: ConfigFile) -> None:
        self.config = config

    def onAuthenticationFailure(self, auth: AuthResult, snapshot: Optional[Path]) -> Union[RDelete, RRestore]:
        '''
            Slack refused the credentials before anything was modified.

            @returns either
                - RDelete - snapshot is discarded, archive is left as it was
                - RRestore - archive is overwritten by the snapshot
        '''
        return RDelete()

    def onRunFailure(self, err: BaseException, snapshot: Optional[Path]) -> Union[RBackup, RDelete, RRestore]:
        '''
            Run was aborted by an error after archive modification may have started.

            @returns either
                - RBackup - snapshot stays in place for manual recovery
                - RDelete - snapshot is discarded, archive keeps partially updated state
                - RRestore - archive is rolled back to the snapshot
        '''
        action = self.config.backupOnFailure
        if snapshot is not None:
            if action == RBackup():
                logging.warning(f"Archive may be partially updated, its state before the run is kept in '{snapshot}'.")
            elif action == RRestore():
                logging.warning("Archive will be rolled back to its state before the run.")
        return action
