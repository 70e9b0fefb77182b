'''
Helper for running server-dependent tests.
'''

import shutil
import tempfile

from os import path

from tornado.concurrent import Future
from tornado.testing import AsyncHTTPTestCase

from tandem.server import TandemServer
from tandem.client import TandemClient

TOKEN = 'unittest-token'

def nested(levels, leaf=1):
    '''
    Return `leaf` wrapped in `levels` single-key dictionaries.
    '''

    value = leaf
    for _ in range(levels):
        value = {'k': value}
    return value

def event_future(client, event):
    '''
    Return a future resolved the next time `client` emits `event`.
    '''

    future = Future()

    def callback(*args):
        if not future.done():
            future.set_result(args)

    client.on(event, callback)
    return future

class ServerDependentTestCase(AsyncHTTPTestCase):
    '''
    Unit test base class that sets up a document server backed by a
    temporary file just for the tests in this case.
    '''

    filename = 'database.json'
    initial = None

    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.path = path.join(self.directory, self.filename)
        self.clients = []
        super(ServerDependentTestCase, self).setUp()

    def get_app(self):
        '''
        Initialize the server.
        '''
        self.server = TandemServer(self.path, token=TOKEN)
        if self.initial is not None:
            self.server.document.replace(self.initial)
        return self.server

    def get_ws_url(self):
        return 'ws://127.0.0.1:{}/'.format(self.get_http_port())

    def make_client(self, **kwargs):
        '''
        Create a client for the test server that is not connected yet.
        '''
        kwargs.setdefault('token', TOKEN)
        kwargs.setdefault('connect', False)
        kwargs.setdefault('reconnect_delay', None)
        kwargs.setdefault('timeout', 5)

        client = TandemClient(self.get_ws_url(), **kwargs)
        self.clients.append(client)
        return client

    def tearDown(self):
        for client in self.clients:
            client.close()
        self.server.close_connections()
        super(ServerDependentTestCase, self).tearDown()
        shutil.rmtree(self.directory, ignore_errors=True)
