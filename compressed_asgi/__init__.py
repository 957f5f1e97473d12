"""A gzip/deflate compression ASGI middleware with pooled streaming encoders.

Content-codings are negotiated from the Accept-Encoding header (RFC 2616
section 14.3) and the response body is streamed through a reusable encoder.
"""

from .encoders import (
    DeflateEncoder,
    Encoder,
    EncoderPool,
    GzipEncoder,
    default_pool,
    get_deflate,
    get_gzip,
)
from .exceptions import (
    CompressionError,
    EncoderConstructionError,
    EncoderStateError,
    HijackedError,
    MalformedCodingError,
    UnhijackableError,
)
from .handler import compress_handler
from .headers import DEFAULT_QVALUE, Coding, accepts, parse_coding, parse_encodings
from .middleware import CompressMiddleware
from .writer import (
    ASGIResponseSink,
    CompressingResponseWriter,
    Hijacker,
    ResponseSink,
    StreamResponseSink,
)

__all__ = [
    "ASGIResponseSink",
    "Coding",
    "CompressMiddleware",
    "CompressingResponseWriter",
    "CompressionError",
    "DEFAULT_QVALUE",
    "DeflateEncoder",
    "Encoder",
    "EncoderConstructionError",
    "EncoderPool",
    "EncoderStateError",
    "GzipEncoder",
    "HijackedError",
    "Hijacker",
    "MalformedCodingError",
    "ResponseSink",
    "StreamResponseSink",
    "UnhijackableError",
    "accepts",
    "compress_handler",
    "default_pool",
    "get_deflate",
    "get_gzip",
    "parse_coding",
    "parse_encodings",
]
