"""
Pooled streaming encoders for the gzip and deflate content-codings.

An encoder is checked out of an EncoderPool for the lifetime of one response.
While checked out it writes compressed blocks into the response sink it was
reset onto; it must be closed, which writes any trailer to that sink, before
it goes back to the pool.
"""
import contextlib
import logging
import threading
import zlib
from collections.abc import AsyncIterator
from typing import Any, AsyncContextManager, Protocol

from .exceptions import EncoderConstructionError, EncoderStateError
from .headers import Coding

logger = logging.getLogger(__name__)


class Sink(Protocol):
    async def write(self, data: bytes) -> int: ...


class Encoder:
    """
    A reusable streaming compressor.

    Subclasses pick the zlib framing through WBITS. zlib compressors can't be
    rewound, so reset() swaps in a fresh one built from the settings validated
    at construction time.
    """

    coding: Coding
    WBITS: int

    def __init__(self, level: int = zlib.Z_DEFAULT_COMPRESSION) -> None:
        self.level = level
        self._sink: Sink | None = None
        # Fails early on an invalid level so the pool can report it.
        self._compressor = self._new_compressor()
        self._closed = True

    def _new_compressor(self) -> Any:
        return zlib.compressobj(self.level, zlib.DEFLATED, self.WBITS)

    @property
    def sink(self) -> Sink | None:
        return self._sink

    @property
    def closed(self) -> bool:
        return self._closed

    def reset(self, sink: Sink) -> None:
        """Discards any state and binds the encoder to a new sink."""
        self._compressor = self._new_compressor()
        self._sink = sink
        self._closed = False

    def unbind(self) -> None:
        self._sink = None

    def _check_writable(self) -> Sink:
        if self._closed or self._sink is None:
            raise EncoderStateError(f"{self.coding} encoder is closed or unbound")
        return self._sink

    async def write(self, data: bytes) -> int:
        """Compresses `data`, passing whatever zlib emits on to the sink."""
        sink = self._check_writable()
        if not data:
            return 0
        out = self._compressor.compress(data)
        if out:
            await sink.write(out)
        return len(data)

    async def flush(self) -> None:
        """Pushes all pending output to the sink without ending the stream."""
        sink = self._check_writable()
        out = self._compressor.flush(zlib.Z_SYNC_FLUSH)
        if out:
            await sink.write(out)

    async def close(self) -> None:
        """Finishes the stream, writing the format trailer to the sink.

        Closing an already closed encoder does nothing.
        """
        if self._closed:
            return
        self._closed = True
        out = self._compressor.flush(zlib.Z_FINISH)
        if out and self._sink is not None:
            await self._sink.write(out)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<{type(self).__name__} level={self.level} {state}>"


class GzipEncoder(Encoder):
    coding = Coding.GZIP
    # 16 + 15: zlib writes the gzip header and trailer
    WBITS = 31


class DeflateEncoder(Encoder):
    coding = Coding.DEFLATE
    # -15: raw deflate, no header or checksum
    WBITS = -15


ENCODER_CLASSES: dict[Coding, type[Encoder]] = {
    Coding.GZIP: GzipEncoder,
    Coding.DEFLATE: DeflateEncoder,
}


class EncoderPool:
    """
    Keeps one idle list per non-identity coding.

    Encoders are built lazily on first demand and never destroyed. The pool
    may be shared by request handlers running on several threads or event
    loops; a checked-out encoder belongs to exactly one request.
    """

    def __init__(self, level: int = zlib.Z_DEFAULT_COMPRESSION) -> None:
        self.level = level
        self._lock = threading.Lock()
        self._idle: dict[Coding, list[Encoder]] = {
            coding: [] for coding in ENCODER_CLASSES
        }
        self._created: dict[Coding, int] = {coding: 0 for coding in ENCODER_CLASSES}

    def _new_encoder(self, coding: Coding) -> Encoder:
        encoder_class = ENCODER_CLASSES[coding]
        try:
            encoder = encoder_class(level=self.level)
        except (TypeError, ValueError, zlib.error) as exc:
            raise EncoderConstructionError(
                f"cannot build {coding} encoder with level {self.level!r}: {exc}"
            ) from exc
        with self._lock:
            self._created[coding] += 1
            created = self._created[coding]
        logger.debug("Created %s encoder #%d", coding, created)
        return encoder

    def acquire(self, coding: Coding, sink: Sink) -> Encoder:
        """
        Checks out an encoder for `coding`, reset to write into `sink`.

        Raises EncoderConstructionError if a new encoder was needed and could
        not be built; callers should then serve the response uncompressed.
        """
        if coding not in self._idle:
            raise ValueError(f"no encoder for the {coding} coding")
        with self._lock:
            idle = self._idle[coding]
            encoder = idle.pop() if idle else None
        if encoder is None:
            encoder = self._new_encoder(coding)
        encoder.reset(sink)
        return encoder

    def release(self, encoder: Encoder) -> None:
        """
        Returns a closed encoder to the pool, unbound from its sink.
        """
        if not encoder.closed:
            raise EncoderStateError(
                f"{encoder.coding} encoder must be closed before it is released"
            )
        encoder.unbind()
        with self._lock:
            idle = self._idle[encoder.coding]
            if any(e is encoder for e in idle):
                raise EncoderStateError(f"{encoder!r} was released twice")
            idle.append(encoder)

    @contextlib.asynccontextmanager
    async def holding(self, encoder: Encoder) -> AsyncIterator[Encoder]:
        """
        Closes and releases an acquired encoder however the block exits.
        """
        try:
            yield encoder
        finally:
            try:
                await encoder.close()
            finally:
                # close() marks the encoder closed before touching the sink,
                # so a failing sink can't leak it.
                self.release(encoder)

    def checkout(self, coding: Coding, sink: Sink) -> AsyncContextManager[Encoder]:
        """
        Acquires an encoder for the duration of an `async with` block.
        """
        return self.holding(self.acquire(coding, sink))

    def idle_count(self, coding: Coding) -> int:
        with self._lock:
            return len(self._idle[coding])

    def created_count(self, coding: Coding) -> int:
        with self._lock:
            return self._created[coding]


default_pool = EncoderPool()


def get_gzip(sink: Sink) -> Encoder:
    """Checks a gzip encoder out of the default pool, reset onto `sink`."""
    return default_pool.acquire(Coding.GZIP, sink)


def get_deflate(sink: Sink) -> Encoder:
    """Checks a deflate encoder out of the default pool, reset onto `sink`.

    Its compression level is zlib's default.
    """
    return default_pool.acquire(Coding.DEFLATE, sink)
