'''
    Contains recovery scenario enumerators useful for arbitrage in situations
    where archived data may get lost.

    Sublogic of recovery module.
'''


class RecoveryAction:
    '''
        Subtypes describe general recovery strategies.
        For concrete meaning, see documentation of individual
        functions returning these.
    '''
    def __eq__(self, other: object) -> bool:
        return type(self) == type(other)

    def __hash__(self) -> int:
        return hash(type(self))

    def __repr__(self) -> str:
        return f'{type(self).__name__}()'

class RDelete(RecoveryAction):
    '''Snapshot of the archive is discarded.'''
    pass

class RBackup(RecoveryAction):
    '''Snapshot of the archive is kept in place for manual inspection.'''
    pass

class RRestore(RecoveryAction):
    '''Archive is overwritten by its snapshot, rolling back the run.'''
    pass
