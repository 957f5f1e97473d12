"""Main tests for the compression middleware.

Some of these tests follow the ones from starlette.tests.middleware.test_gzip,
adapted to pooled gzip/deflate encoders.
"""

import functools
import gzip
import threading
import zlib
from concurrent.futures import ThreadPoolExecutor

import anyio
import anyio.abc
import pytest

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.datastructures import Headers, MutableHeaders
from starlette.requests import Request
from starlette.responses import (
    JSONResponse,
    PlainTextResponse,
    Response,
    StreamingResponse,
)
from starlette.routing import Route, WebSocketRoute
from starlette.testclient import TestClient

from compressed_asgi import (
    ASGIResponseSink,
    Coding,
    CompressingResponseWriter,
    CompressMiddleware,
    DEFAULT_QVALUE,
    EncoderConstructionError,
    EncoderPool,
    EncoderStateError,
    HijackedError,
    MalformedCodingError,
    ResponseSink,
    StreamResponseSink,
    UnhijackableError,
    accepts,
    compress_handler,
    parse_coding,
    parse_encodings,
)


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


class BytesSink:
    """A response sink keeping everything written to it in memory."""

    def __init__(self):
        self.status_code = 200
        self.headers = MutableHeaders()
        self.buffer = bytearray()

    async def write(self, data):
        self.buffer.extend(data)
        return len(data)


class MemoryByteStream(anyio.abc.ByteStream):
    def __init__(self):
        self.sent = bytearray()
        self.eof = False

    async def receive(self, max_bytes=65536):
        raise anyio.EndOfStream

    async def send(self, item):
        self.sent.extend(item)

    async def send_eof(self):
        self.eof = True

    async def aclose(self):
        pass


def make_scope(path="/", headers=None, method="GET", extensions=None):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "extensions": extensions or {},
    }


async def call_asgi(app, path="/", headers=None, method="GET", extensions=None):
    messages = []

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        messages.append(message)

    await app(make_scope(path, headers, method, extensions), receive, send)

    start = messages[0]
    assert start["type"] == "http.response.start"
    assert messages[-1] == {"type": "http.response.body", "body": b"", "more_body": False}
    body = b"".join(message.get("body", b"") for message in messages[1:])
    return start["status"], Headers(raw=start["headers"]), body


# --- Accept-Encoding parsing -------------------------------------------------


@pytest.mark.parametrize(
    "accept_encoding, expected",
    [
        # Examples from RFC 2616
        ("compress, gzip", {"gzip": 1.0}),
        ("", {}),
        ("*", {}),
        ("compress;q=0.5, gzip;q=1.0", {"gzip": 1.0}),
        ("gzip;q=1.0, identity; q=0.5, *;q=0", {"gzip": 1.0, "identity": 0.5}),
        # More random stuff
        ("AAA;q=1", {}),
        ("BBB ; q = 2", {}),
        ("gzip, deflate, sdch", {"gzip": 1.0, "deflate": 1.0}),
        ("GZip ; q=0.3 ,Deflate;q=0.2", {"gzip": 0.3, "deflate": 0.2}),
        ("gzip ; q = 0.5, deflate;Q=0.25", {"gzip": 0.5, "deflate": 0.25}),
    ],
)
def test_parse_encodings(accept_encoding, expected):
    codings, errors = parse_encodings(accept_encoding)
    assert codings == expected
    assert errors == []


def test_parse_encodings_without_header():
    assert parse_encodings(None) == ({}, [])


@pytest.mark.parametrize(
    "accept_encoding, expected_weight",
    [
        ("gzip;q=2", 1.0),
        ("gzip;q=-1", 0.0),
        ("gzip;q=inf", 1.0),
        ("gzip;q=-inf", 0.0),
        ("gzip;q=0.001", 0.001),
        ("gzip;q=0", 0.0),
    ],
)
def test_weights_are_clamped(accept_encoding, expected_weight):
    codings, _ = parse_encodings(accept_encoding)
    assert codings == {"gzip": expected_weight}
    assert 0.0 <= codings["gzip"] <= 1.0


@pytest.mark.parametrize("q_val", ["abc", "", "nan", "0.5.5"])
def test_malformed_qvalue_keeps_default_weight(q_val):
    codings, errors = parse_encodings(f"deflate;q={q_val}")
    assert codings == {"deflate": DEFAULT_QVALUE}
    assert len(errors) == 1
    assert isinstance(errors[0], MalformedCodingError)
    assert errors[0].token == f"deflate;q={q_val}"


def test_empty_coding_names_are_dropped():
    codings, errors = parse_encodings("gzip, , ;q=0.5,deflate")
    assert codings == {"gzip": 1.0, "deflate": 1.0}
    assert len(errors) == 2
    assert all(isinstance(error, MalformedCodingError) for error in errors)


def test_parse_coding():
    assert parse_coding(" GZIP ; q=0.8 ") == ("gzip", 0.8)
    assert parse_coding("deflate") == ("deflate", DEFAULT_QVALUE)
    # Only the first q parameter counts.
    assert parse_coding("gzip;q=0.2;level=1;q=0.9") == ("gzip", 0.2)

    with pytest.raises(MalformedCodingError):
        parse_coding("   ;q=1")


@pytest.mark.parametrize(
    "accept_encoding, expected",
    [
        (None, Coding.IDENTITY),
        ("", Coding.IDENTITY),
        ("*", Coding.IDENTITY),
        ("br, sdch", Coding.IDENTITY),
        ("gzip", Coding.GZIP),
        ("deflate", Coding.DEFLATE),
        ("gzip, deflate, br", Coding.GZIP),
        # Server preference wins over the client's weights.
        ("deflate;q=1.0, gzip;q=0.1", Coding.GZIP),
        ("gzip;q=0, deflate;q=0.5", Coding.DEFLATE),
        ("gzip;q=0, deflate;q=0", Coding.IDENTITY),
        # identity weights are never consulted.
        ("identity;q=0, gzip", Coding.GZIP),
        ("identity;q=1.0, deflate;q=0.1", Coding.DEFLATE),
        ("identity;q=0", Coding.IDENTITY),
        ("gzip;q=oops", Coding.GZIP),
        # Whitespace around "=" is allowed.
        ("gzip;q = 0", Coding.IDENTITY),
        ("gzip; q = 0, deflate", Coding.DEFLATE),
        ("gzip; Q=0", Coding.IDENTITY),
    ],
)
def test_accepts(accept_encoding, expected):
    assert accepts(accept_encoding) is expected


def test_coding_names():
    assert str(Coding.GZIP) == "gzip"
    assert str(Coding.DEFLATE) == "deflate"
    assert str(Coding.IDENTITY) == "identity"


# --- Encoder pool ------------------------------------------------------------


@pytest.mark.anyio
async def test_pool_reuses_encoders():
    pool = EncoderPool()

    first_sink = BytesSink()
    async with pool.checkout(Coding.GZIP, first_sink) as encoder:
        assert encoder.sink is first_sink
        await encoder.write(b"hello world" * 50)
    assert encoder.closed
    assert encoder.sink is None

    second_sink = BytesSink()
    async with pool.checkout(Coding.GZIP, second_sink) as second:
        await second.write(b"goodbye")

    assert second is encoder
    assert pool.created_count(Coding.GZIP) == 1
    assert pool.idle_count(Coding.GZIP) == 1
    assert gzip.decompress(bytes(first_sink.buffer)) == b"hello world" * 50
    assert gzip.decompress(bytes(second_sink.buffer)) == b"goodbye"


@pytest.mark.anyio
async def test_pool_keeps_codings_apart():
    pool = EncoderPool()
    gzip_sink, deflate_sink = BytesSink(), BytesSink()

    async with pool.checkout(Coding.GZIP, gzip_sink) as gzip_encoder:
        async with pool.checkout(Coding.DEFLATE, deflate_sink) as deflate_encoder:
            await gzip_encoder.write(b"aaabbbccc")
            await deflate_encoder.write(b"aaabbbccc")

    assert gzip.decompress(bytes(gzip_sink.buffer)) == b"aaabbbccc"
    assert zlib.decompress(bytes(deflate_sink.buffer), -zlib.MAX_WBITS) == b"aaabbbccc"
    assert pool.idle_count(Coding.GZIP) == 1
    assert pool.idle_count(Coding.DEFLATE) == 1


@pytest.mark.anyio
async def test_flush_emits_decodable_prefix():
    pool = EncoderPool()
    sink = BytesSink()
    async with pool.checkout(Coding.DEFLATE, sink) as encoder:
        await encoder.write(b"partial")
        await encoder.flush()
        decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        assert decompressor.decompress(bytes(sink.buffer)) == b"partial"


@pytest.mark.anyio
async def test_release_requires_closed_encoder():
    pool = EncoderPool()
    encoder = pool.acquire(Coding.GZIP, BytesSink())

    with pytest.raises(EncoderStateError):
        pool.release(encoder)
    assert pool.idle_count(Coding.GZIP) == 0

    await encoder.close()
    await encoder.close()
    pool.release(encoder)
    assert pool.idle_count(Coding.GZIP) == 1

    with pytest.raises(EncoderStateError):
        pool.release(encoder)
    with pytest.raises(EncoderStateError):
        await encoder.write(b"too late")


@pytest.mark.anyio
async def test_checkout_releases_on_error():
    pool = EncoderPool()
    sink = BytesSink()

    with pytest.raises(RuntimeError):
        async with pool.checkout(Coding.GZIP, sink) as encoder:
            await encoder.write(b"half a response")
            raise RuntimeError("handler failed")

    assert encoder.closed
    assert pool.idle_count(Coding.GZIP) == 1
    # The stream was still finished properly.
    assert gzip.decompress(bytes(sink.buffer)) == b"half a response"


@pytest.mark.parametrize("level", [42, -7, "nine"])
def test_invalid_level_fails_acquire(level):
    pool = EncoderPool(level=level)
    with pytest.raises(EncoderConstructionError):
        pool.acquire(Coding.GZIP, BytesSink())
    assert pool.created_count(Coding.GZIP) == 0


def test_identity_has_no_encoder():
    with pytest.raises(ValueError):
        EncoderPool().acquire(Coding.IDENTITY, BytesSink())


def test_pool_hands_out_distinct_encoders_across_threads():
    pool = EncoderPool()
    workers = 8
    barrier = threading.Barrier(workers)

    def checkout(_):
        encoder = pool.acquire(Coding.GZIP, BytesSink())
        # Everyone holds an encoder at the same time.
        barrier.wait()
        anyio.run(encoder.close)
        pool.release(encoder)
        return encoder

    with ThreadPoolExecutor(max_workers=workers) as executor:
        encoders = list(executor.map(checkout, range(workers)))

    assert len({id(encoder) for encoder in encoders}) == workers
    assert pool.created_count(Coding.GZIP) == workers
    assert pool.idle_count(Coding.GZIP) == workers


# --- Response writer ---------------------------------------------------------


@pytest.mark.anyio
async def test_writer_sends_body_through_encoder():
    pool = EncoderPool()
    sink = BytesSink()
    assert isinstance(sink, ResponseSink)

    async with pool.checkout(Coding.GZIP, sink) as encoder:
        writer = CompressingResponseWriter(sink, encoder)
        writer.status_code = 201
        writer.headers["content-type"] = "text/plain"
        await writer.write(b"x" * 4000)

        assert sink.status_code == 201
        assert sink.headers["content-type"] == "text/plain"
        # The writer leaves the coding header to its caller.
        assert "content-encoding" not in sink.headers

    assert len(sink.buffer) < 4000
    assert gzip.decompress(bytes(sink.buffer)) == b"x" * 4000


@pytest.mark.anyio
async def test_hijack_unsupported():
    pool = EncoderPool()
    async with pool.checkout(Coding.GZIP, BytesSink()) as encoder:
        writer = CompressingResponseWriter(BytesSink(), encoder)
        with pytest.raises(UnhijackableError):
            await writer.hijack()


@pytest.mark.anyio
async def test_hijack_unsupported_by_asgi_sink():
    async def send(message):
        pass

    pool = EncoderPool()
    sink = ASGIResponseSink(send)
    async with pool.checkout(Coding.DEFLATE, sink) as encoder:
        writer = CompressingResponseWriter(sink, encoder)
        with pytest.raises(UnhijackableError):
            await writer.hijack()


@pytest.mark.anyio
async def test_hijack_is_forwarded():
    pool = EncoderPool()
    stream = MemoryByteStream()
    sink = StreamResponseSink(stream)

    async with pool.checkout(Coding.GZIP, sink) as encoder:
        writer = CompressingResponseWriter(sink, encoder)
        assert await writer.hijack() is stream
        await stream.send(b"raw bytes")

    # Closing the encoder wrote nothing onto the hijacked connection.
    assert bytes(stream.sent) == b"raw bytes"
    assert pool.idle_count(Coding.GZIP) == 1

    with pytest.raises(HijackedError):
        await sink.write(b"more")
    with pytest.raises(HijackedError):
        await sink.hijack()


@pytest.mark.anyio
async def test_nested_writers_forward_hijack():
    pool = EncoderPool()
    stream = MemoryByteStream()
    sink = StreamResponseSink(stream)

    async with pool.checkout(Coding.GZIP, sink) as inner_encoder:
        inner = CompressingResponseWriter(sink, inner_encoder)
        async with pool.checkout(Coding.DEFLATE, inner) as outer_encoder:
            outer = CompressingResponseWriter(inner, outer_encoder)
            assert await outer.hijack() is stream

    assert stream.sent == b""


# --- Handler -------------------------------------------------------------------


def make_request(accept_encoding=None):
    headers = {} if accept_encoding is None else {"accept-encoding": accept_encoding}
    return Request(make_scope(headers=headers))


async def hello_handler(request, sink):
    sink.headers["content-type"] = "text/plain"
    await sink.write(b"aaabbbccc")


@pytest.mark.anyio
async def test_handler_identity():
    handler = compress_handler(hello_handler, pool=EncoderPool())
    sink = BytesSink()
    await handler(make_request(), sink)

    assert sink.headers["vary"] == "Accept-Encoding"
    assert "content-encoding" not in sink.headers
    assert bytes(sink.buffer) == b"aaabbbccc"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "accept_encoding, coding, decompress",
    [
        ("gzip", "gzip", gzip.decompress),
        ("deflate", "deflate", lambda data: zlib.decompress(data, -zlib.MAX_WBITS)),
    ],
)
async def test_handler_compresses(accept_encoding, coding, decompress):
    pool = EncoderPool()
    handler = compress_handler(hello_handler, pool=pool)
    sink = BytesSink()
    await handler(make_request(accept_encoding), sink)

    assert sink.headers["vary"] == "Accept-Encoding"
    assert sink.headers["content-encoding"] == coding
    assert sink.headers["content-type"] == "text/plain"
    assert decompress(bytes(sink.buffer)) == b"aaabbbccc"
    assert pool.idle_count(Coding(coding)) == 1


@pytest.mark.anyio
async def test_handler_falls_back_to_identity():
    handler = compress_handler(hello_handler, pool=EncoderPool(level=100))
    sink = BytesSink()
    await handler(make_request("gzip"), sink)

    assert sink.headers["vary"] == "Accept-Encoding"
    assert "content-encoding" not in sink.headers
    assert bytes(sink.buffer) == b"aaabbbccc"


@pytest.mark.anyio
async def test_handler_releases_encoder_on_error():
    async def failing_handler(request, sink):
        await sink.write(b"partial")
        raise ValueError("boom")

    pool = EncoderPool()
    handler = compress_handler(failing_handler, pool=pool)
    with pytest.raises(ValueError):
        await handler(make_request("gzip"), BytesSink())

    assert pool.idle_count(Coding.GZIP) == 1
    # The next response doesn't inherit anything from the failed one.
    sink = BytesSink()
    await compress_handler(hello_handler, pool=pool)(make_request("gzip"), sink)
    assert gzip.decompress(bytes(sink.buffer)) == b"aaabbbccc"
    assert pool.created_count(Coding.GZIP) == 1


@pytest.mark.anyio
async def test_handler_over_raw_stream():
    stream = MemoryByteStream()
    sink = StreamResponseSink(stream)
    await compress_handler(hello_handler, pool=EncoderPool())(make_request("gzip"), sink)
    await sink.finish()

    head, _, body = bytes(stream.sent).partition(b"\r\n\r\n")
    lines = head.split(b"\r\n")
    assert lines[0] == b"HTTP/1.1 200 OK"
    assert b"content-encoding: gzip" in lines
    assert b"vary: Accept-Encoding" in lines
    assert b"connection: close" in lines
    assert gzip.decompress(body) == b"aaabbbccc"
    assert stream.eof


# --- ASGI middleware -----------------------------------------------------------


@pytest.mark.anyio
async def test_asgi_without_accept_encoding():
    app = CompressMiddleware(PlainTextResponse("aaabbbccc"))
    status, headers, body = await call_asgi(app)

    assert status == 200
    assert "content-encoding" not in headers
    assert headers["vary"] == "Accept-Encoding"
    assert headers["content-length"] == "9"
    assert body == b"aaabbbccc"


@pytest.mark.anyio
async def test_asgi_gzip():
    app = CompressMiddleware(PlainTextResponse("aaabbbccc"))
    status, headers, body = await call_asgi(app, headers={"Accept-Encoding": "gzip"})

    assert status == 200
    assert headers["content-encoding"] == "gzip"
    assert headers["vary"] == "Accept-Encoding"
    assert "content-length" not in headers
    assert gzip.decompress(body) == b"aaabbbccc"


@pytest.mark.anyio
async def test_asgi_sequential_requests_are_independent():
    pool = EncoderPool()
    first = CompressMiddleware(PlainTextResponse("first " * 100), pool=pool)
    second = CompressMiddleware(PlainTextResponse("second"), pool=pool)

    _, _, first_body = await call_asgi(first, headers={"Accept-Encoding": "gzip"})
    _, _, second_body = await call_asgi(second, headers={"Accept-Encoding": "gzip"})
    _, _, third_body = await call_asgi(first, headers={"Accept-Encoding": "gzip"})

    assert gzip.decompress(first_body) == b"first " * 100
    assert gzip.decompress(second_body) == b"second"
    assert third_body == first_body
    assert pool.created_count(Coding.GZIP) == 1


@pytest.mark.anyio
async def test_asgi_deflate():
    app = CompressMiddleware(PlainTextResponse("x" * 4000))
    _, headers, body = await call_asgi(app, headers={"Accept-Encoding": "deflate, br"})

    assert headers["content-encoding"] == "deflate"
    assert zlib.decompress(body, -zlib.MAX_WBITS) == b"x" * 4000


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [204, 304])
async def test_asgi_bodyless_status(status_code):
    pool = EncoderPool()
    app = CompressMiddleware(Response(status_code=status_code), pool=pool)
    status, headers, body = await call_asgi(app, headers={"Accept-Encoding": "gzip"})

    assert status == status_code
    assert "content-encoding" not in headers
    assert headers["vary"] == "Accept-Encoding"
    assert body == b""
    assert pool.idle_count(Coding.GZIP) == 1


@pytest.mark.anyio
@pytest.mark.parametrize("accept_encoding", ["gzip", "deflate", "identity"])
async def test_asgi_head_request(accept_encoding):
    app = CompressMiddleware(PlainTextResponse("aaabbbccc"))
    status, headers, body = await call_asgi(
        app, headers={"Accept-Encoding": accept_encoding}, method="HEAD"
    )

    assert status == 200
    assert "content-encoding" not in headers
    assert headers["content-length"] == "9"
    assert body == b""


@pytest.mark.anyio
@pytest.mark.parametrize("accept_encoding", ["gzip", "identity"])
async def test_asgi_response_completes_before_background_task(accept_encoding):
    events = []

    async def background():
        events.append("background")

    app = CompressMiddleware(
        PlainTextResponse("aaabbbccc", background=BackgroundTask(background))
    )

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        if message["type"] == "http.response.body" and not message.get("more_body"):
            events.append("response complete")

    scope = make_scope(headers={"Accept-Encoding": accept_encoding})
    await app(scope, receive, send)

    assert events == ["response complete", "background"]


@pytest.mark.anyio
async def test_asgi_avoids_double_encoding():
    pool = EncoderPool()
    body = gzip.compress(b"hello world" * 200)
    app = CompressMiddleware(
        Response(body, headers={"content-encoding": "gzip"}),
        pool=pool,
    )
    status, headers, sent = await call_asgi(app, headers={"Accept-Encoding": "deflate"})

    assert status == 200
    assert headers.getlist("content-encoding") == ["gzip"]
    assert headers["content-length"] == str(len(body))
    assert sent == body
    assert pool.idle_count(Coding.DEFLATE) == 1


@pytest.mark.anyio
async def test_asgi_trailers_are_not_offered():
    seen = {}

    async def app(scope, receive, send):
        seen["extensions"] = dict(scope["extensions"])
        await PlainTextResponse("aaabbbccc")(scope, receive, send)

    extensions = {"http.response.trailers": {}, "http.response.debug": {}, "tls": {}}
    _, headers, body = await call_asgi(
        CompressMiddleware(app),
        headers={"Accept-Encoding": "gzip"},
        extensions=extensions,
    )

    assert seen["extensions"] == {"tls": {}}
    assert headers["content-encoding"] == "gzip"
    assert gzip.decompress(body) == b"aaabbbccc"


def test_gzip_responses(test_client_factory):
    def homepage(request):
        return PlainTextResponse("x" * 4000, status_code=200)

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip"})
    assert response.status_code == 200
    assert response.headers["Content-Encoding"] == "gzip"
    assert response.headers["Vary"] == "Accept-Encoding"
    assert response.text == "x" * 4000
    assert "Content-Length" not in response.headers


def test_deflate_responses(test_client_factory):
    def homepage(request):
        return JSONResponse({"data": "a" * 4000}, status_code=200)

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware, compresslevel=9)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "deflate"})
    assert response.status_code == 200
    assert response.headers["Content-Encoding"] == "deflate"
    assert response.json() == {"data": "a" * 4000}


def test_identity_responses(test_client_factory):
    def homepage(request):
        return PlainTextResponse("x" * 4000, status_code=200)

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "identity"})
    assert response.status_code == 200
    assert response.text == "x" * 4000
    assert "Content-Encoding" not in response.headers
    assert response.headers["Vary"] == "Accept-Encoding"
    assert int(response.headers["Content-Length"]) == 4000


def test_small_responses_are_compressed_too(test_client_factory):
    def homepage(request):
        return PlainTextResponse("OK", status_code=200)

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip"})
    assert response.status_code == 200
    assert response.text == "OK"
    assert response.headers["Content-Encoding"] == "gzip"


def test_streaming_response(test_client_factory):
    def homepage(request):
        async def generator(bytes, count):
            for index in range(count):
                yield bytes

        streaming = generator(bytes=b"x" * 400, count=10)
        return StreamingResponse(streaming, status_code=200)

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip"})
    assert response.status_code == 200
    assert response.headers["Content-Encoding"] == "gzip"
    assert response.content == b"x" * 4000
    assert "Content-Length" not in response.headers


def test_vary_header_is_merged(test_client_factory):
    def homepage(request):
        return PlainTextResponse("x" * 4000, headers={"vary": "Origin"})

    def already_varies(request):
        return PlainTextResponse("x" * 4000, headers={"vary": "accept-encoding"})

    def varies_on_several(request):
        return PlainTextResponse(
            "x" * 4000, headers={"vary": "Accept-Encoding, Cookie, origin"}
        )

    app = Starlette(
        routes=[
            Route("/", homepage),
            Route("/varies", already_varies),
            Route("/several", varies_on_several),
        ]
    )
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip"})
    assert response.headers["Vary"] == "Accept-Encoding, Origin"

    response = client.get("/varies", headers={"accept-encoding": "identity"})
    assert response.headers["Vary"] == "Accept-Encoding"

    response = client.get("/several", headers={"accept-encoding": "gzip"})
    assert response.headers["Vary"] == "Accept-Encoding, Cookie, origin"


def test_avoids_double_encoding(test_client_factory):
    # See https://github.com/encode/starlette/pull/1901
    def homepage(request):
        body = gzip.compress(b"hello world" * 200)
        return Response(
            body,
            headers={
                "content-encoding": "gzip",
                "x-gzipped-content-length": str(len(body)),
            },
        )

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip, deflate"})
    assert response.status_code == 200
    assert response.text == "hello world" * 200
    assert response.headers["Content-Encoding"] == "gzip"
    assert (
        response.headers["Content-Length"]
        == response.headers["x-gzipped-content-length"]
    )


def test_excluded_handlers(test_client_factory):
    def homepage(request):
        return PlainTextResponse("x" * 4000, status_code=200)

    app = Starlette(routes=[Route("/excluded", homepage)])
    app.add_middleware(
        CompressMiddleware,
        excluded_handlers=["^/excluded"],
    )

    client = test_client_factory(app)
    response = client.get("/excluded", headers={"accept-encoding": "gzip"})

    assert response.status_code == 200
    assert response.text == "x" * 4000
    assert "Content-Encoding" not in response.headers
    assert "Vary" not in response.headers
    assert int(response.headers["Content-Length"]) == 4000


def test_invalid_level_serves_identity(test_client_factory):
    def homepage(request):
        return PlainTextResponse("x" * 4000, status_code=200)

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware, compresslevel=12)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip"})
    assert response.status_code == 200
    assert response.text == "x" * 4000
    assert "Content-Encoding" not in response.headers
    assert response.headers["Vary"] == "Accept-Encoding"


def test_encoder_released_when_app_fails(test_client_factory):
    def homepage(request):
        raise RuntimeError("Something went wrong")

    pool = EncoderPool()
    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(CompressMiddleware, pool=pool)

    client = test_client_factory(app)
    with pytest.raises(RuntimeError):
        client.get("/", headers={"accept-encoding": "gzip"})
    assert pool.idle_count(Coding.GZIP) == 1

    client = test_client_factory(app, raise_server_exceptions=False)
    response = client.get("/", headers={"accept-encoding": "gzip"})
    assert response.status_code == 500
    assert "Content-Encoding" not in response.headers
    assert pool.created_count(Coding.GZIP) == 1


def test_websockets_pass_through(test_client_factory):
    async def endpoint(websocket):
        await websocket.accept()
        await websocket.send_text("hello")
        await websocket.close()

    app = Starlette(routes=[WebSocketRoute("/ws", endpoint)])
    app.add_middleware(CompressMiddleware)

    client = test_client_factory(app)
    with client.websocket_connect("/ws", headers={"accept-encoding": "gzip"}) as websocket:
        assert websocket.receive_text() == "hello"
