'''
Message vocabulary shared by the Tandem server and client.

Every message is a JSON object sent as one WebSocket text frame.

Client to server:
```
{
    'type': 'getData' | 'put' | 'delete',
    'id': <integer>,
    'token': <secret>,
    'path': [ <key1>, <key2>, ... ],    # put and delete
    'value': <value>                    # put
}
```
Server to client:
```
{'type': 'response', 'id': <integer>, 'value': <document>}
{'type': 'response', 'id': <integer>, 'success': true}
{'type': 'error', 'id': <integer>, 'error': <message>}
```
The `id` of an error is omitted when the request could not be decoded.

Paths hold between 1 and `MAX_DEPTH` keys.
'''

from .core import MAX_DEPTH

GET_DATA = 'getData'
PUT = 'put'
DELETE = 'delete'

RESPONSE = 'response'
ERROR = 'error'

UNAUTHORIZED = 'Unauthorized'
UNKNOWN_TYPE = 'Unknown message type'

_PATH_SCHEMA = {
    'type': 'array',
    'items': {
        'type': 'string'
    },
    'minItems': 1,
    'maxItems': MAX_DEPTH,
}

REQUEST_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'object',
    'properties': {
        'type': {
            'type': 'string'
        },
        'id': {
            'type': 'integer'
        },
        'token': {
            'type': 'string'
        },
    },
    'required': ['type', 'id', 'token'],
}

PUT_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'object',
    'properties': {
        'path': _PATH_SCHEMA,
        'value': {},
    },
    'required': ['path', 'value'],
}

DELETE_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'object',
    'properties': {
        'path': _PATH_SCHEMA,
    },
    'required': ['path'],
}

RESPONSE_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'object',
    'properties': {
        'type': {
            'enum': [RESPONSE, ERROR]
        },
        'id': {
            'type': 'integer'
        },
        'value': {},
        'success': {
            'type': 'boolean'
        },
        'error': {
            'type': 'string'
        },
    },
    'required': ['type'],
}

def request(kind, req_id, token, payload=None):
    msg = dict(payload or {})
    msg.update({'type': kind, 'id': req_id, 'token': token})
    return msg

def response(req_id, **kwargs):
    msg = {'type': RESPONSE, 'id': req_id}
    msg.update(kwargs)
    return msg

def error(text, req_id=None):
    msg = {'type': ERROR, 'error': text}
    if req_id is not None:
        msg['id'] = req_id
    return msg
