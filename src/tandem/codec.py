'''
JSON encoding and decoding for documents and messages.

Types that JSON cannot represent natively are handled through the
`JSON_ENCODERS` and `JSON_DECODERS` registries. An encoder maps a Python
type to a function returning a JSON-compatible object, conventionally a
single-key dictionary whose key names the type. A decoder maps that key
back to a function rebuilding the value.
'''

from base64 import b64encode, b64decode
import gzip
import json
import zlib

from tornado.escape import to_unicode

JSON_ENCODERS = {}
JSON_DECODERS = {}

def _json_encoder(obj):
    try:
        encode = JSON_ENCODERS[type(obj)]
    except KeyError:
        raise TypeError('cannot serialize {}'.format(type(obj)))
    else:
        return encode(obj)

def _json_decoder(obj):
    if not isinstance(obj, dict):
        return obj

    for k in obj.keys():
        if k in JSON_DECODERS:
            return JSON_DECODERS[k](obj[k])

    return obj

def json_encode(obj, **kwargs):
    kwargs['default'] = _json_encoder
    return json.dumps(obj, **kwargs).replace("</", "<\\/")

def json_decode(data, **kwargs):
    kwargs['object_hook'] = _json_decoder
    return json.loads(to_unicode(data), **kwargs)

def pack(obj):
    '''
    Encode `obj` as gzip-compressed JSON bytes.
    '''

    return gzip.compress(json_encode(obj).encode('utf-8'))

def unpack(data):
    '''
    Decode gzip-compressed JSON bytes produced by `pack`.
    '''

    return json_decode(gzip.decompress(data))

def dump_text(obj):
    '''
    Encode `obj` as human-readable JSON bytes.
    '''

    return (json_encode(obj, indent=2, sort_keys=True) + '\n').encode('utf-8')

def load_text(data):
    '''
    Decode JSON bytes produced by `dump_text`.
    '''

    return json_decode(data)

NUMPY_KEY = '__numpy.ndarray__'
COMPRESS_THRESHOLD = 1024

def register_numpy():
    '''
    Register coders for numpy arrays and scalars.

    Arrays are stored as `{"__numpy.ndarray__": {...}}` holding the dtype,
    the shape and the base64 encoded buffer, zlib compressed when larger
    than `COMPRESS_THRESHOLD` bytes. Documents must not use that key for
    ordinary data. Scalars become plain JSON numbers and booleans.

    Returns `False` if numpy is not available.
    '''

    try:
        import numpy
    except ImportError:
        return False

    def pack_array(array):
        buffer = numpy.ascontiguousarray(array).tobytes()
        spec = {'dtype': array.dtype.str, 'shape': list(array.shape)}

        if len(buffer) > COMPRESS_THRESHOLD:
            buffer = zlib.compress(buffer)
            spec['compress'] = True

        spec['data'] = b64encode(buffer).decode('ascii')
        return {NUMPY_KEY: spec}

    def unpack_array(spec):
        buffer = b64decode(spec['data'])
        if spec.get('compress'):
            buffer = zlib.decompress(buffer)

        # copy so the result owns a writable buffer
        return numpy.frombuffer(buffer, dtype=spec['dtype']).reshape(spec['shape']).copy()

    JSON_ENCODERS[numpy.ndarray] = pack_array
    JSON_DECODERS[NUMPY_KEY] = unpack_array

    for scalar in (numpy.bool_, numpy.int8, numpy.int16, numpy.int32, numpy.int64,
                   numpy.uint8, numpy.uint16, numpy.uint32, numpy.uint64,
                   numpy.float16, numpy.float32, numpy.float64):
        JSON_ENCODERS[scalar] = lambda value: value.item()

    return True
