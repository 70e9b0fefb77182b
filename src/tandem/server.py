'''
WebSocket server interface for Tandem.

The server accepts WebSocket connections at `/`. Each inbound message is
authenticated, validated and dispatched on its own:
 * `getData`: respond with the whole document
 * `put`: store `value` at `path`, persist, respond with success
 * `delete`: remove `path`, persist, respond with success
Refer to `tandem.protocol` for the message structures.

All connections are serviced by one Tornado event loop, so a message is
always handled to completion, persistence included, before the next one
is looked at.
'''

import hmac
import logging

from os import environ
from secrets import token_hex

from tornado.ioloop import IOLoop
from tornado.web import Application
from tornado.websocket import WebSocketHandler, WebSocketClosedError

import jsonschema

from .codec import json_encode, json_decode
from .store import DocumentStore
from . import protocol
from . import DEFAULT_PORT

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

class SyncHandler(WebSocketHandler):
    '''
    Handler relaying each WebSocket message to `TandemServer.handle_message`.
    '''

    def check_origin(self, origin):
        # access is controlled by the token in every message
        return True

    def open(self):  # pylint: disable=arguments-differ
        self.application.connections.add(self)
        logger.info('connection from {}'.format(self.request.remote_ip))

    def on_message(self, message):
        response = self.application.handle_message(message)

        try:
            self.write_message(json_encode(response))
        except WebSocketClosedError:
            logger.warning('connection from {} closed before response {}'.format(
                self.request.remote_ip, response.get('id', '-')))

    def on_close(self):
        self.application.connections.discard(self)
        logger.info('disconnect {} ({})'.format(self.request.remote_ip, self.close_code))

class TandemServer(Application):
    '''
    Tornado web application serving one persisted document over WebSockets.

    If `token` is not provided, the `TANDEM_TOKEN` environment variable is
    used, and failing that a random token is generated. Clients must
    present the token with every message.

    If `strict_persistence`, a mutation whose save fails is answered with
    an error instead of success. The mutation stays applied in memory.
    '''

    def __init__(self, path, port=DEFAULT_PORT, address='', token=None, strict_persistence=False):
        super(TandemServer, self).__init__()
        self._port = port
        self._address = address

        self.token = token or environ.get('TANDEM_TOKEN') or token_hex(32)
        self.strict_persistence = strict_persistence

        self.store = DocumentStore(path)
        self.store.load()

        self.connections = set()

        self._handlers = {
            protocol.GET_DATA: self._get_data,
            protocol.PUT: self._put,
            protocol.DELETE: self._delete,
        }

        # install handlers for various URLs
        self.add_handlers(r'.*', [(r'/', SyncHandler)])

    @property
    def document(self):
        return self.store.document

    def _authenticate(self, token):
        if not isinstance(token, str):
            return False
        return hmac.compare_digest(token.encode('utf-8'), self.token.encode('utf-8'))

    def handle_message(self, message):
        '''
        Decode, authenticate and dispatch one raw `message`.

        Returns the response or error object to send back. Nothing raised
        while handling the message escapes this method.
        '''

        req_id = None

        try:
            obj = json_decode(message)

            if isinstance(obj, dict) and isinstance(obj.get('id'), int):
                req_id = obj['id']

            if not isinstance(obj, dict) or not self._authenticate(obj.get('token')):
                logger.warning('unauthorized message: {}'.format(req_id))
                return protocol.error(protocol.UNAUTHORIZED, req_id)

            jsonschema.validate(obj, protocol.REQUEST_SCHEMA)

            try:
                handler = self._handlers[obj['type']]
            except KeyError:
                logger.warning('unknown message type: {}'.format(obj['type']))
                return protocol.error(protocol.UNKNOWN_TYPE, req_id)

            logger.debug('{} {}'.format(obj['type'], req_id))
            return handler(obj)

        except jsonschema.ValidationError as exc:
            logger.warning('malformed message: {}'.format(exc.message))
            return protocol.error('malformed message: {}'.format(exc.message), req_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception('error handling message {}'.format(req_id))
            return protocol.error(str(exc), req_id)

    def _get_data(self, obj):
        return protocol.response(obj['id'], value=self.document.get())

    def _put(self, obj):
        jsonschema.validate(obj, protocol.PUT_SCHEMA)
        self.document.put(obj['path'], obj['value'])
        return self._persist(obj['id'])

    def _delete(self, obj):
        jsonschema.validate(obj, protocol.DELETE_SCHEMA)
        self.document.delete(obj['path'])
        return self._persist(obj['id'])

    def _persist(self, req_id):
        if not self.store.save() and self.strict_persistence:
            return protocol.error('persistence failed', req_id)

        return protocol.response(req_id, success=True)

    def log_request(self, handler):
        # only the WebSocket upgrade passes through here
        status = handler.get_status()
        log = logger.debug if status < 400 else logger.warning

        log('upgrade {} {} {} {:.2f}ms'.format(
            handler.request.remote_ip, handler.request.uri, status,
            1000 * handler.request.request_time()))

    def close_connections(self):
        '''
        Close every open client connection.
        '''

        for handler in list(self.connections):
            handler.close()
        self.connections.clear()

    def run(self):
        '''
        Start servicing the Tornado event loop.
        '''

        loop = IOLoop.current()

        # bind the socket
        self.listen(self._port, self._address)
        logger.info('Tandem started on {}:{} with "{}"'.format(
            self._address or '*', self._port, self.store.path))

        try:
            loop.start()
        except KeyboardInterrupt:
            pass

        self.close_connections()
        loop.stop()

        logger.info('Tandem stopped')

if __name__ == '__main__':
    from argparse import ArgumentParser, ArgumentDefaultsHelpFormatter

    from .log import configure

    parser = ArgumentParser(description='synchronized document server', formatter_class=ArgumentDefaultsHelpFormatter)

    parser.add_argument('-a', '--address', metavar='HOST', default='', help='address to bind')
    parser.add_argument('-p', '--port', metavar='PORT', type=int, default=DEFAULT_PORT, help='port to bind')
    parser.add_argument('-t', '--token', metavar='TOKEN', help='access token (generated if not provided)')
    parser.add_argument('--strict-persistence', action='store_true', help='report failed saves to clients')
    parser.add_argument('-v', '--verbose', action='store_true', help='log debug messages')
    parser.add_argument('path', metavar='PATH', help='document file (.rdb or .gz for compressed)')

    args = parser.parse_args()

    configure(logging.DEBUG if args.verbose else logging.INFO)

    server = TandemServer(args.path, port=args.port, address=args.address,
                          token=args.token, strict_persistence=args.strict_persistence)

    if not args.token and not environ.get('TANDEM_TOKEN'):
        print('access token: {}'.format(server.token))

    server.run()
