# pylint: disable=line-too-long,missing-docstring,invalid-name,protected-access

import os
import shutil
import tempfile

from unittest import TestCase, mock

from tornado.testing import gen_test
from tornado.websocket import websocket_connect

from tandem.core import MAX_DEPTH
from tandem.codec import json_encode, json_decode
from tandem.server import TandemServer
from tandem.store import DocumentStore

from .helper import ServerDependentTestCase, TOKEN, nested

class Skip(object):  # pylint: disable=too-few-public-methods
    class RouterTest(TestCase):
        initial = {'a': 4, 'b': {'c': 2}}
        strict_persistence = False

        def setUp(self):
            self.directory = tempfile.mkdtemp()
            self.path = os.path.join(self.directory, 'database.json')
            self.server = TandemServer(self.path, token=TOKEN, strict_persistence=self.strict_persistence)
            self.server.document.replace(self.initial)

        def handle(self, obj, token=TOKEN):
            if token is not None:
                obj = dict(obj, token=token)
            return self.server.handle_message(json_encode(obj))

        def tearDown(self):
            shutil.rmtree(self.directory, ignore_errors=True)

    class PersistenceTest(RouterTest):

        def setUp(self):
            super(Skip.PersistenceTest, self).setUp()
            # saving into a missing directory always fails
            self.server.store.path = os.path.join(self.directory, 'missing', 'database.json')

class ServerTest_GetData(Skip.RouterTest):

    def test_server_get_data(self):
        response = self.handle({'type': 'getData', 'id': 1})
        self.assertDictEqual(response, {'type': 'response', 'id': 1, 'value': {'a': 4, 'b': {'c': 2}}})

    def test_server_get_data_snapshot(self):
        response = self.handle({'type': 'getData', 'id': 1})
        response['value']['b']['c'] = 100
        self.assertEqual(self.server.document.get('b/c'), 2)

class ServerTest_Put(Skip.RouterTest):

    def test_server_put(self):
        response = self.handle({'type': 'put', 'id': 7, 'path': ['b', 'd'], 'value': 5})
        self.assertDictEqual(response, {'type': 'response', 'id': 7, 'success': True})
        self.assertDictEqual(self.server.document.get(), {'a': 4, 'b': {'c': 2, 'd': 5}})

    def test_server_put_persists(self):
        self.handle({'type': 'put', 'id': 1, 'path': ['x', 'y'], 'value': 'v'})
        self.assertDictEqual(DocumentStore(self.path).load().get(), {'a': 4, 'b': {'c': 2}, 'x': {'y': 'v'}})

    def test_server_put_overwrites_scalar(self):
        self.handle({'type': 'put', 'id': 1, 'path': ['a', 'y'], 'value': 'v'})
        self.assertDictEqual(self.server.document.get(), {'a': {'y': 'v'}, 'b': {'c': 2}})

    def test_server_put_null(self):
        response = self.handle({'type': 'put', 'id': 1, 'path': ['a'], 'value': None})
        self.assertTrue(response['success'])
        self.assertIn('a', self.server.document.data)
        self.assertIsNone(self.server.document.get('a', default=1))

    def test_server_put_empty_path(self):
        response = self.handle({'type': 'put', 'id': 3, 'path': [], 'value': 1})
        self.assertEqual(response['type'], 'error')
        self.assertEqual(response['id'], 3)
        self.assertTrue(response['error'].startswith('malformed message'))
        self.assertDictEqual(self.server.document.get(), self.initial)

    def test_server_put_missing_value(self):
        response = self.handle({'type': 'put', 'id': 3, 'path': ['a']})
        self.assertEqual(response['type'], 'error')
        self.assertDictEqual(self.server.document.get(), self.initial)

    def test_server_put_bad_path(self):
        response = self.handle({'type': 'put', 'id': 3, 'path': 'a/b', 'value': 1})
        self.assertEqual(response['type'], 'error')
        response = self.handle({'type': 'put', 'id': 4, 'path': [1], 'value': 1})
        self.assertEqual(response['type'], 'error')
        self.assertDictEqual(self.server.document.get(), self.initial)

class ServerTest_Delete(Skip.RouterTest):

    def test_server_delete(self):
        response = self.handle({'type': 'delete', 'id': 2, 'path': ['b', 'c']})
        self.assertDictEqual(response, {'type': 'response', 'id': 2, 'success': True})
        self.assertDictEqual(self.server.document.get(), {'a': 4, 'b': {}})
        self.assertDictEqual(DocumentStore(self.path).load().get(), {'a': 4, 'b': {}})

    def test_server_delete_idempotent(self):
        for req_id in [1, 2]:
            response = self.handle({'type': 'delete', 'id': req_id, 'path': ['a']})
            self.assertTrue(response['success'])
        self.assertDictEqual(self.server.document.get(), {'b': {'c': 2}})

    def test_server_delete_through_scalar(self):
        response = self.handle({'type': 'delete', 'id': 1, 'path': ['a', 'b', 'c']})
        self.assertTrue(response['success'])
        self.assertDictEqual(self.server.document.get(), self.initial)

    def test_server_delete_empty_path(self):
        response = self.handle({'type': 'delete', 'id': 1, 'path': []})
        self.assertEqual(response['type'], 'error')
        self.assertDictEqual(self.server.document.get(), self.initial)

class ServerTest_Depth(Skip.RouterTest):

    def test_server_put_path_too_deep(self):
        response = self.handle({'type': 'put', 'id': 1, 'path': ['k'] * 600, 'value': 1})
        self.assertEqual(response['type'], 'error')
        self.assertEqual(response['id'], 1)
        self.assertDictEqual(self.server.document.get(), self.initial)

    def test_server_put_value_too_deep(self):
        response = self.handle({'type': 'put', 'id': 1, 'path': ['x'], 'value': nested(300)})
        self.assertEqual(response['type'], 'error')
        self.assertIn('deeper', response['error'])
        self.assertDictEqual(self.server.document.get(), self.initial)

    def test_server_usable_after_deep_put(self):
        self.handle({'type': 'put', 'id': 1, 'path': ['k'] * 1200, 'value': 1})

        response = self.handle({'type': 'put', 'id': 2, 'path': ['x'], 'value': 1})
        self.assertDictEqual(response, {'type': 'response', 'id': 2, 'success': True})

        response = self.handle({'type': 'getData', 'id': 3})
        self.assertDictEqual(response['value'], {'a': 4, 'b': {'c': 2}, 'x': 1})

    def test_server_reload_deepest_document(self):
        path = ['k'] * MAX_DEPTH
        response = self.handle({'type': 'put', 'id': 1, 'path': path, 'value': 'leaf'})
        self.assertTrue(response['success'])

        server = TandemServer(self.path, token=TOKEN)
        self.assertEqual(server.document.get(path), 'leaf')

        response = server.handle_message(json_encode({'type': 'getData', 'id': 2, 'token': TOKEN}))
        self.assertEqual(response['type'], 'response')

class ServerTest_Errors(Skip.RouterTest):

    def test_server_unauthorized(self):
        before = self.server.document.get()
        response = self.handle({'type': 'put', 'id': 5, 'path': ['a'], 'value': 1}, token='wrong')
        self.assertDictEqual(response, {'type': 'error', 'id': 5, 'error': 'Unauthorized'})
        self.assertDictEqual(self.server.document.get(), before)
        self.assertFalse(os.path.exists(self.path))

    def test_server_unauthorized_missing_token(self):
        response = self.handle({'type': 'delete', 'id': 5, 'path': ['a']}, token=None)
        self.assertEqual(response['error'], 'Unauthorized')
        self.assertDictEqual(self.server.document.get(), self.initial)

    def test_server_unauthorized_before_type(self):
        response = self.handle({'type': 'random', 'id': 5}, token='wrong')
        self.assertEqual(response['error'], 'Unauthorized')

    def test_server_not_object(self):
        response = self.server.handle_message(json_encode([1, 2, 3]))
        self.assertDictEqual(response, {'type': 'error', 'error': 'Unauthorized'})

    def test_server_undecodable(self):
        response = self.server.handle_message('{not json')
        self.assertEqual(response['type'], 'error')
        self.assertNotIn('id', response)
        self.assertTrue(response['error'])

    def test_server_unknown_type(self):
        response = self.handle({'type': 'random', 'id': 9})
        self.assertDictEqual(response, {'type': 'error', 'id': 9, 'error': 'Unknown message type'})

    def test_server_missing_id(self):
        response = self.handle({'type': 'getData'})
        self.assertEqual(response['type'], 'error')
        self.assertNotIn('id', response)

    def test_server_handler_exception(self):
        with mock.patch.object(self.server.document, 'get', side_effect=RuntimeError('boom')):
            response = self.handle({'type': 'getData', 'id': 1})
        self.assertDictEqual(response, {'type': 'error', 'id': 1, 'error': 'boom'})

class ServerTest_Persistence(Skip.PersistenceTest):

    def test_server_persistence_failure_ignored(self):
        response = self.handle({'type': 'put', 'id': 1, 'path': ['a'], 'value': 1})
        self.assertDictEqual(response, {'type': 'response', 'id': 1, 'success': True})
        self.assertEqual(self.server.document.get('a'), 1)

class ServerTest_StrictPersistence(Skip.PersistenceTest):
    strict_persistence = True

    def test_server_persistence_failure_reported(self):
        response = self.handle({'type': 'put', 'id': 1, 'path': ['a'], 'value': 1})
        self.assertDictEqual(response, {'type': 'error', 'id': 1, 'error': 'persistence failed'})
        # the mutation is not rolled back
        self.assertEqual(self.server.document.get('a'), 1)

    def test_server_persistence_failure_delete(self):
        response = self.handle({'type': 'delete', 'id': 2, 'path': ['a']})
        self.assertEqual(response['error'], 'persistence failed')

class ServerTest_Configuration(TestCase):

    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.path = os.path.join(self.directory, 'database.rdb')

    def test_server_generated_token(self):
        with mock.patch.dict(os.environ, clear=True):
            server = TandemServer(self.path)
            other = TandemServer(self.path)
        self.assertEqual(len(server.token), 64)
        int(server.token, 16)
        self.assertNotEqual(server.token, other.token)

    def test_server_environment_token(self):
        with mock.patch.dict(os.environ, {'TANDEM_TOKEN': 'from-env'}):
            server = TandemServer(self.path)
        self.assertEqual(server.token, 'from-env')

    def test_server_explicit_token(self):
        with mock.patch.dict(os.environ, {'TANDEM_TOKEN': 'from-env'}):
            server = TandemServer(self.path, token='explicit')
        self.assertEqual(server.token, 'explicit')

    def test_server_loads_document(self):
        store = DocumentStore(self.path)
        store.document.put(['a'], 1)
        store.save()

        self.assertDictEqual(TandemServer(self.path).document.get(), {'a': 1})

    def tearDown(self):
        shutil.rmtree(self.directory, ignore_errors=True)

class ServerTest_WebSocket(ServerDependentTestCase):
    initial = {'a': 4}

    @gen_test
    def test_server_websocket_round_trip(self):
        connection = yield websocket_connect(self.get_ws_url())

        yield connection.write_message(json_encode({'type': 'put', 'id': 1, 'token': TOKEN, 'path': ['b'], 'value': 5}))
        response = json_decode((yield connection.read_message()))
        self.assertDictEqual(response, {'type': 'response', 'id': 1, 'success': True})

        yield connection.write_message(json_encode({'type': 'getData', 'id': 2, 'token': TOKEN}))
        response = json_decode((yield connection.read_message()))
        self.assertDictEqual(response, {'type': 'response', 'id': 2, 'value': {'a': 4, 'b': 5}})

        connection.close()

    @gen_test
    def test_server_websocket_error_keeps_connection(self):
        connection = yield websocket_connect(self.get_ws_url())

        yield connection.write_message('garbage')
        response = json_decode((yield connection.read_message()))
        self.assertEqual(response['type'], 'error')

        yield connection.write_message(json_encode({'type': 'random', 'id': 1, 'token': TOKEN}))
        response = json_decode((yield connection.read_message()))
        self.assertEqual(response['error'], 'Unknown message type')

        yield connection.write_message(json_encode({'type': 'getData', 'id': 2, 'token': TOKEN}))
        response = json_decode((yield connection.read_message()))
        self.assertDictEqual(response['value'], {'a': 4})

        self.assertEqual(len(self.server.connections), 1)
        connection.close()
