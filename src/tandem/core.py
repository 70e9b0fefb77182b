'''
Core document components of Tandem.
'''

import re

from copy import deepcopy

import logging
logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

SEPARATOR = '/'
_separator = re.compile(r'(?<!\\)' + SEPARATOR)  # pylint: disable=invalid-name

MAX_DEPTH = 100

def split_key(key):
    r'''
    Normalize `key` into a list of path components.

    A string key is split at each forward slash (`/`) not escaped
    by a preceding backslash (`\`). Empty components are dropped so
    `a/b`, `/a/b/` and `a//b` address the same location. Any other
    sequence is copied into a new list as is.

    `None` is the empty path.
    '''

    if key is None:
        return []
    elif isinstance(key, str):
        return [k.replace('\\' + SEPARATOR, SEPARATOR) for k in _separator.split(key) if len(k)]
    else:
        return list(key)

def depth(value):
    '''
    Return how deeply dictionaries and lists nest in `value`.

    A scalar has depth 0 and `{'a': [1]}` has depth 2. The walk does not
    recurse, so arbitrarily deep values are measured safely.
    '''

    deepest = 0
    stack = [(value, 0)]

    while stack:
        (node, level) = stack.pop()
        if isinstance(node, dict):
            children = node.values()
        elif isinstance(node, (list, tuple)):
            children = node
        else:
            continue

        level += 1
        deepest = max(deepest, level)
        stack.extend((child, level) for child in children)

    return deepest

def join_key(key):
    '''
    Inverse of `split_key` for display purposes.
    '''

    return SEPARATOR.join(str(k).replace(SEPARATOR, '\\' + SEPARATOR) for k in split_key(key))

class StoreInterface(object):
    '''
    Basic interface for a path-addressed document.
    '''

    def get(self, key=None, default=None, strict=False):
        raise NotImplementedError

    def put(self, key, value):
        raise NotImplementedError

    def delete(self, key):
        raise NotImplementedError

class Document(StoreInterface):
    '''
    Nested dictionary addressed by paths.

    Only dictionaries are containers. Any other value, lists included,
    terminates a path. Values are copied on the way in and on the way
    out so callers never hold a live reference into the document.

    Dictionaries and lists nest at most `MAX_DEPTH` levels deep, counting
    the root.
    '''

    def __init__(self, data=None):
        self._data = {}
        if data is not None:
            self.replace(data)

    @property
    def data(self):
        '''
        Live root dictionary of the document.

        Mutating it bypasses the path semantics of `put` and `delete`.
        '''

        return self._data

    def replace(self, data):
        '''
        Replace the whole content with a copy of `data`.

        The root dictionary object is kept so existing references to
        `data` observe the new content.
        '''

        if not isinstance(data, dict):
            raise TypeError('document root must be a dictionary, not {}'.format(type(data).__name__))
        if depth(data) > MAX_DEPTH:
            raise ValueError('document nests deeper than {} levels'.format(MAX_DEPTH))

        logger.debug('replace: {} keys'.format(len(data)))

        data = deepcopy(data)
        self._data.clear()
        self._data.update(data)

    def get(self, key=None, default=None, strict=False):
        '''
        Get a copy of the value referenced by `key`.

        With no `key`, the whole document is returned. A missing key or a
        non-dictionary value along the path is a miss: `default` is
        returned, or `KeyError` is raised if `strict`.
        '''

        logger.debug('get: "{}"'.format(join_key(key)))

        try:
            return deepcopy(self.lookup(key))
        except KeyError:
            if strict:
                raise
            return default

    def lookup(self, key=None):
        '''
        Return the live value referenced by `key` or raise `KeyError`.
        '''

        node = self._data
        for k in split_key(key):
            if not isinstance(node, dict) or k not in node:
                raise KeyError(join_key(key))
            node = node[k]

        return node

    def put(self, key, value):
        '''
        Store a copy of `value` at `key`.

        Missing intermediate keys are created as empty dictionaries.
        An intermediate key holding anything other than a dictionary is
        overwritten with an empty dictionary, losing its previous value.

        An empty `key` raises `ValueError`, and so does a `value` that
        would make the document nest deeper than `MAX_DEPTH` levels. Nothing
        is changed in either case.
        '''

        key = split_key(key)
        if not key:
            raise ValueError('put requires a non-empty path')
        if len(key) + depth(value) > MAX_DEPTH:
            raise ValueError('put would nest deeper than {} levels'.format(MAX_DEPTH))

        logger.debug('put: "{}"'.format(join_key(key)))

        node = self._data
        for k in key[:-1]:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]

        node[key[-1]] = deepcopy(value)
        return True

    def delete(self, key):
        '''
        Remove the value at `key`.

        Nothing is created while walking the path. If the walk ends early
        at a missing key or a non-dictionary value, nothing is removed.
        Deleting a nonexistent key is not an error.

        An empty `key` raises `ValueError`.
        '''

        key = split_key(key)
        if not key:
            raise ValueError('delete requires a non-empty path')

        logger.debug('delete: "{}"'.format(join_key(key)))

        node = self._data
        for k in key[:-1]:
            node = node.get(k)
            if not isinstance(node, dict):
                return True

        node.pop(key[-1], None)
        return True

    def is_empty(self):
        '''
        Test if the document holds no keys.
        '''

        return not self._data

    def __eq__(self, other):
        if isinstance(other, Document):
            other = other._data
        return self._data == other

    def __ne__(self, other):
        return not self == other

    __hash__ = None

    def __repr__(self):
        return 'Document({!r})'.format(self._data)
