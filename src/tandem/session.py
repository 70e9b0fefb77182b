'''
Client connection session for `TandemServer`.

A `Session` owns one WebSocket connection and moves through three states.
```
DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (on close or error)
```
While `CONNECTING`, the session fetches the whole document with a
`getData` request and hands it to the `snapshot` listeners. It then
becomes `CONNECTED` and sends every operation queued in the meantime, in
the order they were issued.

Every request sent on the connection gets the next id from a counter that
is never reset, and its future is kept in the correlation table until the
matching response arrives. A request is failed with `RequestTimeout` if
no response arrives within `timeout` seconds, and with `ConnectionClosed`
if the connection drops first. Responses that arrive after that are
dropped.

All state is only touched from the Tornado event loop.
'''

import logging

from collections import deque
from itertools import count

from tornado.concurrent import (Future, future_set_result_unless_cancelled,
                                future_set_exception_unless_cancelled)
from tornado.gen import coroutine
from tornado.ioloop import IOLoop
from tornado.websocket import websocket_connect, WebSocketClosedError

import jsonschema

from .codec import json_encode, json_decode
from . import protocol

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

DISCONNECTED = 'disconnected'
CONNECTING = 'connecting'
CONNECTED = 'connected'

EVENTS = ('snapshot', 'connect', 'disconnect', 'error')

class RequestError(RuntimeError):
    '''
    The server answered a request with an error, or no answer can come.
    '''

class RequestTimeout(RequestError):
    pass

class ConnectionClosed(RequestError):
    pass

class Session(object):
    '''
    Request/response correlation over a single WebSocket connection.

    `timeout` bounds the wait for each response once the request has been
    sent; `None` waits forever. After the connection drops, a new attempt
    is made every `reconnect_delay` seconds; `None` disables reconnection.
    '''

    def __init__(self, url, token, timeout=30, reconnect_delay=1.0):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.reconnect_delay = reconnect_delay

        self.state = DISCONNECTED

        self._connection = None
        self._connecting = None
        self._reconnect_handle = None
        self._closed = False
        self._dropped = False

        self._ids = count(1)
        self._requests = {}
        self._queue = deque()

        self._listeners = {event: [] for event in EVENTS}

    @property
    def connected(self):
        return self.state == CONNECTED

    @property
    def closed(self):
        return self._closed

    def on(self, event, callback):
        '''
        Call `callback` on `event`.

        `snapshot` listeners receive the document fetched on connection,
        `error` listeners receive the exception. `connect` and `disconnect`
        listeners receive no arguments.
        '''

        if event not in self._listeners:
            raise ValueError('unknown event: {}'.format(event))

        self._listeners[event].append(callback)

    def _emit(self, event, *args):
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:  # pylint: disable=broad-except
                logger.exception('error in {} listener'.format(event))

    def pending(self):
        '''
        Return the queued operations as `(kind, payload)` tuples, oldest first.
        '''

        return [(kind, payload) for (kind, payload, _) in self._queue]

    def in_flight(self):
        '''
        Return the ids of sent requests still awaiting a response.
        '''

        return sorted(self._requests.keys())

    def start(self):
        '''
        Connect in the background, retrying according to `reconnect_delay`.
        '''

        IOLoop.current().spawn_callback(self._reconnect)

    def connect(self):
        '''
        Open the connection and synchronize.

        Returns a future that resolves once the session is `CONNECTED` and
        the queue has been flushed, or fails with `ConnectionClosed`.
        Concurrent calls share the same attempt.
        '''

        if self._closed:
            future = Future()
            future.set_exception(ConnectionClosed('session is closed'))
            return future

        if self._connecting is None or self._connecting.done():
            if self.state == CONNECTED:
                future = Future()
                future.set_result(None)
                return future

            self._connecting = self._connect()

        return self._connecting

    @coroutine
    def _connect(self):
        self._cancel_reconnect()
        self.state = CONNECTING
        self._dropped = False
        logger.info('connecting to {}'.format(self.url))

        try:
            connection = yield websocket_connect(self.url,
                                                 connect_timeout=self.timeout,
                                                 on_message_callback=self._on_message)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning('connection to {} failed: {}'.format(self.url, exc))
            self.state = DISCONNECTED
            self._emit('error', exc)
            self._schedule_reconnect()
            raise ConnectionClosed('connection to {} failed: {}'.format(self.url, exc))

        if self._closed:
            connection.close()
            raise ConnectionClosed('session is closed')

        yield self._attach(connection)

    @coroutine
    def _attach(self, connection):
        '''
        Synchronize over the freshly opened `connection`.
        '''

        self._connection = connection
        logger.info('connected to {}'.format(self.url))

        try:
            if self._dropped:
                raise ConnectionClosed('connection closed while connecting')
            snapshot = yield self._request(protocol.GET_DATA)
        except ConnectionClosed:
            self._abandon(connection)
            raise
        except RequestError as exc:
            logger.error('error loading data: {}'.format(exc))
        else:
            self._emit('snapshot', snapshot)

        if self._connection is not connection:
            raise ConnectionClosed('connection lost while synchronizing')

        self.state = CONNECTED
        self._drain()
        self._emit('connect')

    def send(self, kind, payload=None):
        '''
        Send a `kind` request carrying the fields in `payload`.

        Returns a future for the `value` (or `success`) of the response.
        If the session is not `CONNECTED`, the request is queued and sent
        after the next successful connection.
        '''

        future = Future()

        if self._closed:
            future.set_exception(ConnectionClosed('session is closed'))
        elif self.state == CONNECTED and self._dispatch(kind, payload, future):
            pass
        else:
            self._queue.append((kind, payload, future))
            logger.debug('queued {} ({} pending)'.format(kind, len(self._queue)))

        return future

    def _request(self, kind, payload=None):
        future = Future()
        if not self._dispatch(kind, payload, future):
            future.set_exception(ConnectionClosed('connection closed'))
        return future

    def _dispatch(self, kind, payload, future):
        '''
        Write one request and record it in the correlation table.

        Returns `False` if the connection turned out to be closed, in which
        case nothing was recorded.
        '''

        if self._connection is None:
            return False

        req_id = next(self._ids)

        try:
            message = json_encode(protocol.request(kind, req_id, self.token, payload))
        except (TypeError, ValueError) as exc:
            future_set_exception_unless_cancelled(future, exc)
            return True

        try:
            written = self._connection.write_message(message)
        except WebSocketClosedError:
            logger.debug('connection closed before {} {}'.format(kind, req_id))
            return False

        written.add_done_callback(self._on_written)

        handle = None
        if self.timeout is not None:
            handle = IOLoop.current().call_later(self.timeout, self._expire, req_id)

        self._requests[req_id] = (future, handle)
        logger.debug('sent {} {}'.format(kind, req_id))
        return True

    def _on_written(self, written):
        exc = written.exception()
        if exc is not None:
            # the close callback fails the request
            logger.debug('write failed: {}'.format(exc))

    def _drain(self):
        while self._queue and self.state == CONNECTED:
            (kind, payload, future) = self._queue.popleft()
            if future.done():
                continue

            if not self._dispatch(kind, payload, future):
                self._queue.appendleft((kind, payload, future))
                break

    def _on_message(self, message):
        if message is None:
            self._on_close()
            return

        try:
            obj = json_decode(message)
            jsonschema.validate(obj, protocol.RESPONSE_SCHEMA)
        except (ValueError, jsonschema.ValidationError) as exc:
            logger.warning('malformed response: {}\n\nResponse:\n{}'.format(exc, message))
            return

        req_id = obj.get('id')

        try:
            (future, handle) = self._requests.pop(req_id)
        except KeyError:
            if req_id is None and obj['type'] == protocol.ERROR:
                logger.error('server error: {}'.format(obj.get('error')))
                self._emit('error', RequestError(obj.get('error')))
            else:
                logger.debug('dropping response to unknown request {}'.format(req_id))
            return

        if handle is not None:
            IOLoop.current().remove_timeout(handle)

        if obj['type'] == protocol.ERROR:
            future_set_exception_unless_cancelled(future, RequestError(obj.get('error', 'unknown error')))
        elif 'value' in obj:
            future_set_result_unless_cancelled(future, obj['value'])
        else:
            future_set_result_unless_cancelled(future, obj.get('success'))

    def _expire(self, req_id):
        try:
            (future, _) = self._requests.pop(req_id)
        except KeyError:
            return

        logger.warning('request {} timed out after {}s'.format(req_id, self.timeout))
        future_set_exception_unless_cancelled(future, RequestTimeout('request {} timed out'.format(req_id)))

    def _fail_requests(self, text):
        requests = self._requests
        self._requests = {}

        for (future, handle) in requests.values():
            if handle is not None:
                IOLoop.current().remove_timeout(handle)
            future_set_exception_unless_cancelled(future, ConnectionClosed(text))

    def _on_close(self):
        connection = self._connection
        if connection is None:
            if self.state == CONNECTING:
                # lost before the connection was attached
                self._dropped = True
            return

        self._connection = None
        self.state = DISCONNECTED

        logger.warning('disconnected from {} ({})'.format(self.url, connection.close_code))

        self._fail_requests('connection closed')
        self._emit('disconnect')
        self._schedule_reconnect()

    def _abandon(self, connection):
        '''
        Give up on `connection` if it is lost before synchronizing.
        '''

        self._dropped = False
        if self._connection is not connection:
            # already handled by the close callback or by `close()`
            return

        logger.warning('connection to {} lost while synchronizing'.format(self.url))

        self._connection = None
        self.state = DISCONNECTED
        connection.close()

        self._fail_requests('connection closed')
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._closed or self.reconnect_delay is None or self._reconnect_handle is not None:
            return

        logger.info('reconnecting in {}s'.format(self.reconnect_delay))
        self._reconnect_handle = IOLoop.current().call_later(self.reconnect_delay, self._reconnect)

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            IOLoop.current().remove_timeout(self._reconnect_handle)
            self._reconnect_handle = None

    @coroutine
    def _reconnect(self):
        self._reconnect_handle = None

        try:
            yield self.connect()
        except ConnectionClosed:
            # already logged, and the next attempt is scheduled
            pass

    def close(self):
        '''
        Close the connection for good.

        Requests in flight and queued operations fail with
        `ConnectionClosed`.
        '''

        if self._closed:
            return

        self._closed = True
        self._cancel_reconnect()

        connection = self._connection
        self._connection = None
        was_connected = self.state == CONNECTED
        self.state = DISCONNECTED

        if connection is not None:
            connection.close()

        self._fail_requests('session closed')

        while self._queue:
            (_, _, future) = self._queue.popleft()
            future_set_exception_unless_cancelled(future, ConnectionClosed('session closed'))

        logger.info('closed session to {}'.format(self.url))

        if was_connected:
            self._emit('disconnect')
