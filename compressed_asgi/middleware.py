"""
ASGI middleware compressing response bodies with gzip or deflate, depending
on the client's Accept-Encoding header.
"""
import re
import zlib
from collections.abc import Iterable

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .encoders import EncoderPool
from .handler import add_vary_header, compress_handler
from .writer import ASGIResponseSink, CompressingResponseWriter, ResponseSink

UNRELAYED_EXTENSIONS = frozenset(
    {
        "http.response.pathsend",
        "http.response.zerocopysend",
        "http.response.debug",
        "http.response.trailers",
    }
)


class CompressMiddleware:
    """
    Redirects the body of every HTTP response through a pooled encoder.

    Websocket and lifespan scopes are passed straight through, as are the
    paths matching one of `excluded_handlers` (regular expressions searched
    in the request path).
    """

    def __init__(
        self,
        app: ASGIApp,
        compresslevel: int = zlib.Z_DEFAULT_COMPRESSION,
        excluded_handlers: Iterable[str] | None = None,
        pool: EncoderPool | None = None,
    ) -> None:
        self.app = app
        self.pool = pool if pool is not None else EncoderPool(level=compresslevel)
        self.excluded_handlers = [re.compile(path) for path in excluded_handlers or []]
        self.handler = compress_handler(self.call_app, pool=self.pool)

    def is_excluded(self, scope: Scope) -> bool:
        path = scope.get("path", "")
        return any(pattern.search(path) for pattern in self.excluded_handlers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.is_excluded(scope):
            await self.app(scope, receive, send)
            return

        extensions = scope.get("extensions")
        if extensions:
            # The app must not send messages the sink cannot relay.
            scope = dict(scope)
            scope["extensions"] = {
                key: value
                for key, value in extensions.items()
                if key not in UNRELAYED_EXTENSIONS
            }

        sink = ASGIResponseSink(send)
        await self.handler(Request(scope, receive), sink)
        await sink.finish()

    async def call_app(self, request: Request, writer: ResponseSink) -> None:
        """
        Runs the wrapped ASGI app, turning the messages it sends into calls on
        `writer`.
        """
        if isinstance(writer, CompressingResponseWriter):
            sink = writer.sink
            encoder = writer.encoder
        else:
            sink = writer
            encoder = None
        target = writer

        async def send(message: Message) -> None:
            nonlocal encoder, target
            message_type = message["type"]
            if message_type == "http.response.start":
                status = message["status"]
                headers = [
                    (raw_name.decode("latin-1").lower(), raw_value.decode("latin-1"))
                    for raw_name, raw_value in message.get("headers", [])
                ]
                bodyless = has_no_body(request.method, status)
                if encoder is not None and (
                    bodyless or any(name == "content-encoding" for name, _ in headers)
                ):
                    # Relay the app's response as it is. The encoder is cut
                    # off from the sink, so closing it writes nothing.
                    del sink.headers["content-encoding"]
                    encoder.unbind()
                    encoder = None
                    target = sink
                if bodyless:
                    sink.omit_body()

                sink.status_code = status
                for name, value in headers:
                    if name == "vary":
                        add_vary_header(sink.headers, value)
                    elif encoder is not None and name == "content-length":
                        # The encoded length isn't known up front.
                        continue
                    else:
                        sink.headers.append(name, value)
            elif message_type == "http.response.body":
                await target.write(message.get("body", b""))
                if not message.get("more_body", False):
                    # Complete the response now: the app may still run
                    # background tasks before returning.
                    if encoder is not None:
                        await encoder.close()
                    await sink.finish()
            else:
                raise RuntimeError(f"Unsupported ASGI message type {message_type!r}")

        try:
            await self.app(request.scope, request.receive, send)
        except BaseException:
            # Whatever the encoder flushes while being closed must not go out
            # as part of a response the app never finished.
            sink.discard()
            raise


def has_no_body(method: str, status: int) -> bool:
    """Whether a response must be sent without a body (RFC 9110 section 6.4.1)."""
    return method == "HEAD" or status < 200 or status in (204, 304)
