'''
Transparent dictionary-like access to a client's mirrored document.
'''

from collections.abc import Mapping, MutableMapping
from copy import deepcopy

from .core import join_key

class MirrorView(MutableMapping):
    '''
    View onto the dictionary at one path of a `TandemClient` mirror.

    Keys can be read and written as items (`view['key']`) or as attributes
    (`view.key`) when the name is a valid identifier not shadowed by a
    method. Reading a dictionary value returns a nested `MirrorView`, reading
    a list returns a copy, and anything else is returned as is.

    Writing a key updates the mirror immediately and sends a `put` for the
    full path in the background. Deleting a key sends a `delete`; the key
    stays visible until the server confirms it.

    A view only remembers its path. The target dictionary is looked up on
    every access, so a view stays usable after the mirror is replaced by a
    fresh snapshot.
    '''

    def __init__(self, client, path=()):
        object.__setattr__(self, '_client', client)
        object.__setattr__(self, '_path', list(path))

    def _target(self):
        node = self._client.mirror.lookup(self._path)
        if not isinstance(node, dict):
            raise KeyError('"{}" no longer holds a dictionary'.format(join_key(self._path)))
        return node

    def _child(self, key):
        return self._path + [key]

    def __getitem__(self, key):
        value = self._target()[key]

        if isinstance(value, dict):
            return MirrorView(self._client, self._child(key))
        elif isinstance(value, list):
            return deepcopy(value)
        else:
            return value

    def __setitem__(self, key, value):
        if not isinstance(key, str):
            raise TypeError('keys must be strings, not {}'.format(type(key).__name__))

        if isinstance(value, MirrorView):
            value = value.to_dict()

        self._client.put(self._child(key), value)

    def __delitem__(self, key):
        if key not in self._target():
            raise KeyError(key)

        self._client.delete(self._child(key))

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)

        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)

    def __setattr__(self, name, value):
        if name.startswith('_'):
            object.__setattr__(self, name, value)
        else:
            self[name] = value

    def __delattr__(self, name):
        if name.startswith('_'):
            object.__delattr__(self, name)
            return

        try:
            del self[name]
        except KeyError:
            raise AttributeError(name)

    def __iter__(self):
        return iter(list(self._target()))

    def __len__(self):
        return len(self._target())

    def __contains__(self, key):
        return key in self._target()

    def clear(self):
        # deletes only take effect once confirmed, so popitem() would never finish
        for key in list(self._target()):
            del self[key]

    def to_dict(self):
        '''
        Return a copy of the viewed dictionary.
        '''

        return deepcopy(self._target())

    def __eq__(self, other):
        if isinstance(other, MirrorView):
            other = other.to_dict()
        elif not isinstance(other, Mapping):
            return NotImplemented

        return self.to_dict() == other

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    def __repr__(self):
        return '<MirrorView {} {!r}>'.format(join_key(self._path) or '/', self._target())
