'''
Utility classes and functions for logging.
'''

import logging
import sys

from rainbow_logging_handler import RainbowLoggingHandler

FORMAT = '%(asctime)s\t[%(name)s] %(pathname)s:%(lineno)d\t%(levelname)s:\t%(message)s'

class LevelFilter(logging.Filter):
    '''
    Per-namespace minimum levels applied at a handler.

    Setting the level on a logger affects every handler attached to it.
    Attaching this filter to one handler limits only that handler, e.g. to
    silence `tandem.core` debug output on the console while a file handler
    keeps it.

    The longest namespace matching a record's logger name decides.
    Records from namespaces without a rule are passed.
    '''

    def __init__(self, rules=None):
        super(LevelFilter, self).__init__()
        self._rules = dict(rules or {})

    def level_for(self, name):
        '''
        Return the minimum level for logger `name`, or `None` if unrestricted.
        '''
        while name:
            if name in self._rules:
                return self._rules[name]
            name = name.rpartition('.')[0]

        return None

    def filter(self, record):
        level = self.level_for(record.name)
        return level is None or record.levelno >= level

    def add(self, namespace, level):
        self._rules[namespace] = level

    def remove(self, namespace):
        self._rules.pop(namespace, None)

def configure(level=logging.INFO, rules=None, stream=None):
    '''
    Install a colored console handler on the root logger.

    `rules` maps logger namespaces to the lowest level passed through for
    that namespace, e.g. `{'tandem.core': logging.ERROR}`.

    Returns the installed handler.
    '''

    handler = RainbowLoggingHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(FORMAT))
    handler.addFilter(LevelFilter(rules))

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    return handler
