'''

# Tandem

A real-time synchronized key-value database for Python objects.

## Design

The server holds a single authoritative document: a nested dictionary whose
values are anything that can be serialized in JavaScript Object Notation
(JSON). The document is persisted to a backing file after every accepted
mutation. Clients connect over a WebSocket, fetch the whole document once and
keep a mirrored copy in memory. Writes to the mirror are applied locally and
propagated to the server in the background.

Locations inside the document are addressed by a path, a list of keys such as
`['array', 'key']`. A forward-slash (`/`) delimited string like `array/key` is
accepted wherever a path is expected.

The database supports three operations.
 - `getData`: retrieve the whole document
 - `put`: store a value at a path
 - `delete`: remove the value at a path

`put` creates as many intermediate dictionaries as needed and overwrites any
non-dictionary value found along the way. `delete` of a path that does not
exist is not an error.

### Example

Suppose the database starts empty.
```
{}
```
After putting the value `4` at path `a/b/c`, the database creates the
necessary structure to contain the nested keys `a`, `b`, and `c`.
```
{
    'a': {
        'b': {
            'c': 4
        }
    }
}
```
Putting `5` at `a/b/c/d` then replaces the value `4` with `{'d': 5}`.

## Usage

The following code snippet starts a database server backed by
`database.rdb` on all interfaces at the default port.
```
from tandem.server import TandemServer

server = TandemServer('database.rdb')
print(server.token)
server.run()
```
The `.rdb` and `.gz` extensions select a compressed file. Any other
extension stores pretty-printed JSON. The `TandemServer.run` method blocks
until a `KeyboardInterrupt` is raised.

The following coroutine connects a client to `localhost` on the default port.
```
from tandem.client import TandemClient

client = TandemClient(token=token, connect=False)
yield client.connect()

database = client.database
database.array = {}
database.array.key = 'nested_value'
database['key'] = 'root_value'
```
Writes made while the client is disconnected are queued and sent in order
once the connection is (re-)established. Refer to the `TandemClient`,
`Session` and `MirrorView` classes for the available operations.
'''

DEFAULT_PORT = 8080
