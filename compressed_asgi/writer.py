"""
Response sinks and the writer that compresses bytes on their way into one.

A response sink is modelled as a small set of capabilities rather than a class
hierarchy: every sink has a status, headers and a body write, and some sinks
can additionally hand over their raw connection (Hijacker).
"""
import http
from typing import Any, Protocol, runtime_checkable

import anyio.abc
from starlette.datastructures import MutableHeaders
from starlette.types import Send

from .encoders import Encoder
from .exceptions import HijackedError, UnhijackableError


@runtime_checkable
class ResponseSink(Protocol):
    status_code: int

    @property
    def headers(self) -> MutableHeaders: ...

    async def write(self, data: bytes) -> int: ...


@runtime_checkable
class Hijacker(Protocol):
    async def hijack(self) -> Any: ...


class ASGIResponseSink:
    """
    Streams a response through an ASGI `send` callable.

    Status and headers may change until the first body write, which emits
    `http.response.start`. finish() must be called once the body is complete.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status_code = 200
        self._headers = MutableHeaders()
        self.started = False
        self.finished = False
        self.discarded = False
        self.body_allowed = True

    @property
    def headers(self) -> MutableHeaders:
        return self._headers

    async def _start(self) -> None:
        self.started = True
        await self._send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self._headers.raw,
            }
        )

    async def write(self, data: bytes) -> int:
        if self.discarded:
            return len(data)
        if self.finished:
            raise RuntimeError("Response already finished.")
        if not data or not self.body_allowed:
            return len(data)
        if not self.started:
            await self._start()
        await self._send({"type": "http.response.body", "body": data, "more_body": True})
        return len(data)

    async def finish(self) -> None:
        if self.discarded or self.finished:
            return
        self.finished = True
        if not self.started:
            await self._start()
        await self._send({"type": "http.response.body", "body": b"", "more_body": False})

    def discard(self) -> None:
        """Silently drops everything written from now on."""
        self.discarded = True

    def omit_body(self) -> None:
        """Drops body bytes but still sends the start and final messages.

        For HEAD requests and 1xx, 204 and 304 responses.
        """
        self.body_allowed = False


class StreamResponseSink:
    """
    Writes an HTTP/1.1 response straight onto a byte stream.

    The body is delimited by closing the connection, so finish() sends EOF.
    The stream can be taken over with hijack(), e.g. to switch protocols.
    """

    def __init__(self, stream: anyio.abc.ByteStream) -> None:
        self._stream = stream
        self.status_code = 200
        self._headers = MutableHeaders()
        self.started = False
        self.hijacked = False

    @property
    def headers(self) -> MutableHeaders:
        return self._headers

    def _check_connection(self) -> None:
        if self.hijacked:
            raise HijackedError("the connection has been hijacked")

    async def _start(self) -> None:
        self.started = True
        try:
            reason = http.HTTPStatus(self.status_code).phrase
        except ValueError:
            reason = ""
        if "connection" not in self._headers:
            self._headers["connection"] = "close"
        lines = [f"HTTP/1.1 {self.status_code} {reason}".encode("latin-1")]
        lines.extend(name + b": " + value for name, value in self._headers.raw)
        await self._stream.send(b"\r\n".join(lines) + b"\r\n\r\n")

    async def write(self, data: bytes) -> int:
        self._check_connection()
        if not self.started:
            await self._start()
        if data:
            await self._stream.send(data)
        return len(data)

    async def finish(self) -> None:
        self._check_connection()
        if not self.started:
            await self._start()
        await self._stream.send_eof()

    async def hijack(self) -> anyio.abc.ByteStream:
        """Hands over the raw stream; the sink is unusable afterwards."""
        self._check_connection()
        self.hijacked = True
        return self._stream


class CompressingResponseWriter:
    """
    A response sink which compresses bytes before writing them to the
    underlying sink.

    This doesn't set the Content-Encoding header, nor close the encoder, so
    don't forget to do that.
    """

    def __init__(self, sink: ResponseSink, encoder: Encoder) -> None:
        self.sink = sink
        self.encoder = encoder

    @property
    def status_code(self) -> int:
        return self.sink.status_code

    @status_code.setter
    def status_code(self, value: int) -> None:
        self.sink.status_code = value

    @property
    def headers(self) -> MutableHeaders:
        return self.sink.headers

    async def write(self, data: bytes) -> int:
        return await self.encoder.write(data)

    async def flush(self) -> None:
        await self.encoder.flush()

    async def hijack(self) -> Any:
        """
        Hijacks the underlying connection, or raises UnhijackableError when
        (one of) the underlying sinks can't do that.
        """
        if not isinstance(self.sink, Hijacker):
            raise UnhijackableError()
        transport = await self.sink.hijack()
        # The connection isn't ours anymore: closing the encoder must not
        # write a trailer onto it.
        self.encoder.unbind()
        return transport
