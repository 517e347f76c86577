'''
    Hooks for generators of artifacts derived from the archive,
    like rendered HTML pages or search index.
'''

from .common import *

from .bo import Channel
from .store import MessageCache

class DownstreamNotifiers:
    '''
        Interface invoked by Saver once archive data are persisted.
        Subclasses plug in the actual generators, default implementation only reports.

        Both hooks receive the run's message cache, generators shall read messages through it
        instead of loading the store again.
    '''
    def onChannelsUpdated(self, channels: Sequence[Channel], cache: MessageCache):
        '''
            Called once per run with channels that gained new messages.
            Channels without new messages are never passed, even if they were fetched.
        '''
        for channel in channels:
            assert channel.id is not None
            logging.debug(f'{channel} has {len(cache.get(channel.id))} messages after update.')

    def onArchiveUpdated(self, channels: Sequence[Channel], cache: MessageCache):
        '''Called once per successful run with all selected channels, for archive wide artifacts.'''
        logging.debug(f'Archive holds {len(channels)} selected channels.')
