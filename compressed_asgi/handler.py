"""
Wraps a sink-style handler so its response body is compressed with whatever
content-coding the client accepts.
"""
import functools
import logging
from collections.abc import Awaitable, Callable

from starlette.requests import Request

from .encoders import EncoderPool, default_pool
from .exceptions import EncoderConstructionError
from .headers import Coding, accepts
from .writer import CompressingResponseWriter, ResponseSink

logger = logging.getLogger(__name__)

Handler = Callable[[Request, ResponseSink], Awaitable[None]]


def add_vary_header(headers, value: str = "Accept-Encoding") -> None:
    """Adds each field named in `value` to the Vary header, skipping those
    already listed."""
    for field in value.split(","):
        field = field.strip()
        if not field:
            continue
        existing = headers.get("vary")
        if existing is not None:
            listed = {token.strip().lower() for token in existing.split(",")}
            if field.lower() in listed or "*" in listed:
                continue
        headers.add_vary_header(field)


def compress_handler(handler: Handler, pool: EncoderPool | None = None) -> Handler:
    """
    Returns a handler that calls `handler`, transparently compressing the
    response body if the client supports it (via the Accept-Encoding header).
    """
    if pool is None:
        pool = default_pool

    @functools.wraps(handler)
    async def compressed(request: Request, sink: ResponseSink) -> None:
        add_vary_header(sink.headers)

        coding = accepts(request.headers.get("accept-encoding"))
        if coding is Coding.IDENTITY:
            await handler(request, sink)
            return

        try:
            encoder = pool.acquire(coding, sink)
        except EncoderConstructionError:
            logger.warning(
                "Could not build a %s encoder, sending the response uncompressed",
                coding,
                exc_info=True,
            )
            await handler(request, sink)
            return

        # Bytes written by the handler are redirected through the encoder
        # before reaching the underlying sink.
        async with pool.holding(encoder):
            sink.headers["Content-Encoding"] = coding.value
            await handler(request, CompressingResponseWriter(sink, encoder))

    return compressed
