'''
File-backed persistence for the server `Document`.

Two file kinds are supported. Paths ending in `.rdb` or `.gz` hold
gzip-compressed JSON. Any other path holds pretty-printed JSON. Every save
rewrites the whole file.
'''

import logging
import os
import zlib

from .core import Document
from . import codec

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

COMPRESSED_EXTENSIONS = ('.rdb', '.gz')

class DocumentStore(object):
    '''
    Owner of the authoritative `Document` and its backing file.

    Load and save failures are logged rather than raised. A document that
    cannot be read starts out empty, and a failed save leaves the previous
    file contents in place.
    '''

    def __init__(self, path):
        self.path = path
        self.compressed = os.path.splitext(path)[1].lower() in COMPRESSED_EXTENSIONS
        self.document = Document()

    def _encode(self, obj):
        if self.compressed:
            return codec.pack(obj)
        else:
            return codec.dump_text(obj)

    def _decode(self, data):
        if self.compressed:
            return codec.unpack(data)
        else:
            return codec.load_text(data)

    def load(self):
        '''
        Read the backing file into the document.

        A missing, unreadable or malformed file, or one nesting deeper than
        `MAX_DEPTH`, yields an empty document.
        '''

        if not os.path.exists(self.path):
            logger.info('no document at "{}", starting empty'.format(self.path))
            self.document.replace({})
            return self.document

        try:
            with open(self.path, 'rb') as f:
                data = self._decode(f.read())
            if not isinstance(data, dict):
                raise ValueError('expected an object at the top level, found {}'.format(type(data).__name__))
            self.document.replace(data)
        except (OSError, ValueError, TypeError, EOFError, RecursionError, zlib.error) as exc:
            logger.error('error loading "{}": {}'.format(self.path, exc))
            self.document.replace({})
        else:
            logger.info('loaded "{}" with {} keys'.format(self.path, len(data)))

        return self.document

    def save(self):
        '''
        Write the whole document to the backing file.

        The content goes to a temporary file beside the target which is
        then renamed over it, so a crash never leaves a partial file.
        Returns `True` on success and `False` if the write failed.
        '''

        tmp_path = self.path + '.tmp'

        try:
            data = self._encode(self.document.data)
            with open(tmp_path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, ValueError, TypeError, RecursionError) as exc:
            logger.error('error saving "{}": {}'.format(self.path, exc))
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            return False

        logger.debug('saved "{}" ({} bytes)'.format(self.path, len(data)))
        return True
