'''
    Helper utilities to visualise progress in long running foreground tasks,
    working in interactive and noninteractive environment.
'''

from .common import *

from copy import copy
import time

class VisualizationMode(Enum):
    DumbTerminal = 0
    AnsiEscapes = 1

@dataclass
class ProgressSettings:
    mode: VisualizationMode = VisualizationMode.AnsiEscapes
    forceMode: bool = False

class ProgressReporter:
    '''
        Single line report, like `Progress: 120 messages`, rewritten in place on terminals
        supporting ANSI escapes, printed line by line otherwise.

        Updates coming sooner than `updateIntervalMs` after the last shown one are dropped,
        except for the final one shown on close.
    '''
    def __init__(self, io: TextIO, settings: ProgressSettings = ProgressSettings(), header: str = '', footer: str = '',
            contentPadding: int = 0, contentAlignLeft: bool = True, updateIntervalMs: int = 0):
        self.io: TextIO = io
        self.settings: ProgressSettings = copy(settings)
        self.header: str = header
        self.contentPadding: int = contentPadding
        self.contentAlignLeft: bool = contentAlignLeft
        self.footer: str = footer
        self.updateIntervalMs: int = updateIntervalMs
        self._lastUpdate: Optional[float] = None
        self._pending: Optional[str] = None

        if not settings.forceMode:
            if not self.io.isatty():
                self.settings.mode = VisualizationMode.DumbTerminal
    def open(self):
        if self.settings.mode == VisualizationMode.AnsiEscapes:
            self.io.write(self.header+'\x1b[s')
            self.io.flush()
    def update(self, content: str, redraw: bool = False):
        now = time.monotonic()
        if (self._lastUpdate is not None and not redraw
                and (now - self._lastUpdate) * 1000 < self.updateIntervalMs):
            self._pending = content
            return
        self._lastUpdate = now
        self._pending = None
        self._show(content, redraw)
    def _show(self, content: str, redraw: bool = False):
        padding = max(self.contentPadding-len(content), 0)
        if padding:
            if self.contentAlignLeft:
                paddedContent = content + ' '*padding
            else:
                paddedContent = ' '*padding + content
        else:
            paddedContent = content
        if self.settings.mode == VisualizationMode.DumbTerminal:
            self.io.write(self.header+paddedContent+self.footer+'\n')
        elif self.settings.mode == VisualizationMode.AnsiEscapes:
            if redraw:
                self.open()
            self.io.write('\x1b[u'+paddedContent+self.footer+'\x1b[0K')
            self.io.flush()
    def close(self):
        if self._pending is not None:
            self._show(self._pending)
            self._pending = None
        if self.settings.mode == VisualizationMode.AnsiEscapes:
            # Move to start of new line
            self.io.write('\n')
            self.io.flush()

class ItemCounter:
    '''
        Running count of downloaded items, like `Downloading general:    120 messages`.
        Shows nothing when disabled, so callers don't need to branch. Intended as context manager.
    '''
    def __init__(self, io: TextIO, enabled: bool, settings: ProgressSettings, header: str, footer: str,
            updateIntervalMs: int = 0):
        self.count: int = 0
        self.reporter: Optional[ProgressReporter] = None
        if enabled:
            self.reporter = ProgressReporter(io, settings=settings, header=header, footer=footer,
                contentPadding=6, contentAlignLeft=False, updateIntervalMs=updateIntervalMs)
    def __enter__(self) -> 'ItemCounter':
        if self.reporter is not None:
            self.reporter.open()
            self.reporter.update(str(self.count))
        return self
    def add(self, amount: int = 1):
        self.count += amount
        if self.reporter is not None:
            self.reporter.update(str(self.count))
    def __exit__(self, *excInfo):
        if self.reporter is not None:
            self.reporter.close()
