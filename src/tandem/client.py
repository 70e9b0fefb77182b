'''
WebSocket client interface to `TandemServer`.
'''

import logging

from copy import deepcopy
from functools import partial
from os import environ

from tornado.gen import coroutine

from .core import Document, split_key, join_key
from .session import Session
from .view import MirrorView
from . import protocol
from . import DEFAULT_PORT

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

def _overlaps(a, b):
    # one path lies on the other's branch
    n = min(len(a), len(b))
    return a[:n] == b[:n]

class TandemClient(object):
    '''
    Client keeping a mirrored copy of a `TandemServer` document.

    If `host` is not provided, the `TANDEM_SERVER` environment variable is
    used, and failing that `localhost` on the default port. The same goes
    for `token` and `TANDEM_TOKEN`.

    Unless `connect` is `False`, the client starts connecting in the
    background right away. `timeout` and `reconnect_delay` are passed to
    the underlying `Session`.
    '''

    def __init__(self, host=None, token=None, timeout=30, reconnect_delay=1.0, connect=True):
        self._host = host
        if not self._host:
            # fall back to environment variable
            self._host = environ.get('TANDEM_SERVER', None)
        if not self._host:
            # fall back to default
            self._host = 'ws://localhost:{}/'.format(DEFAULT_PORT)

        if not self._host.startswith(('ws://', 'wss://')):
            self._host = 'ws://' + self._host

        token = token or environ.get('TANDEM_TOKEN', None)
        if not token:
            raise ValueError('an access token is required')

        self.mirror = Document()
        self._deletes = []

        self.session = Session(self._host, token, timeout=timeout, reconnect_delay=reconnect_delay)
        self.session.on('snapshot', self._on_snapshot)

        if connect:
            self.session.start()

    @property
    def host(self):
        return self._host

    @property
    def connected(self):
        return self.session.connected

    @property
    def database(self):
        '''
        `MirrorView` of the whole mirrored document.
        '''

        return MirrorView(self)

    def on(self, event, callback):
        '''
        Register `callback` for a session event. See `Session.on`.
        '''

        self.session.on(event, callback)

    def connect(self):
        '''
        Connect now. Returns a future resolved once synchronized.
        '''

        return self.session.connect()

    def close(self):
        self.session.close()

    def _on_snapshot(self, snapshot):
        if not isinstance(snapshot, dict):
            logger.warning('ignoring snapshot of type {}'.format(type(snapshot).__name__))
            return

        self.mirror.replace(snapshot)

        # writes not flushed yet remain visible locally
        for (kind, payload) in self.session.pending():
            if kind == protocol.PUT:
                self.mirror.put(payload['path'], payload['value'])

        logger.info('synchronized {} keys from {}'.format(len(snapshot), self._host))

    def _log_failure(self, operation, key, future):
        if future.cancelled():
            logger.warning('{} "{}" cancelled'.format(operation, join_key(key)))
        elif future.exception() is not None:
            logger.error('{} "{}" failed: {}'.format(operation, join_key(key), future.exception()))

    @coroutine
    def get(self, key=None, default=None):
        '''
        Fetch the current document from the server.

        If `key` is provided, only the value at `key` is returned, or
        `default` if there is none. The mirror is left untouched.
        '''

        snapshot = yield self.session.send(protocol.GET_DATA)
        return Document(snapshot).get(key, default)

    def put(self, key, value):
        '''
        Store `value` at `key` in the mirror and on the server.

        The mirror is updated before the request is sent. Returns the
        request future; failures are also logged.
        '''

        key = split_key(key)
        self.mirror.put(key, value)
        value = deepcopy(value)

        for pending in self._deletes:
            if _overlaps(pending['path'], key):
                pending['replay'].append((key, value))

        future = self.session.send(protocol.PUT, {'path': key, 'value': value})
        future.add_done_callback(partial(self._log_failure, 'put', key))
        return future

    def delete(self, key):
        '''
        Remove `key` on the server, then from the mirror.

        The mirror keeps the value until the server confirms. `put` calls
        overlapping `key` that are issued before the confirmation arrives
        are applied again after the removal, in the order the server
        applied them, so the mirror ends up matching the server.

        Returns the request future; failures are also logged.
        '''

        key = split_key(key)
        if not key:
            raise ValueError('delete requires a non-empty path')

        pending = {'path': key, 'replay': []}
        self._deletes.append(pending)

        future = self.session.send(protocol.DELETE, {'path': key})
        future.add_done_callback(partial(self._on_deleted, pending))
        return future

    def _on_deleted(self, pending, future):
        self._deletes = [p for p in self._deletes if p is not pending]

        if future.cancelled() or future.exception() is not None:
            self._log_failure('delete', pending['path'], future)
            return

        self.mirror.delete(pending['path'])
        for (key, value) in pending['replay']:
            self.mirror.put(key, value)
