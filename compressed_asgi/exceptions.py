"""
Errors raised while negotiating and applying content-codings.
"""


class CompressionError(Exception):
    """Base class for every error raised by compressed_asgi."""


class MalformedCodingError(CompressionError, ValueError):
    """A single coding in an Accept-Encoding header could not be parsed.

    Never fatal: the token is dropped and negotiation carries on.
    """

    def __init__(self, token: str, reason: str) -> None:
        super().__init__(f"malformed coding {token!r}: {reason}")
        self.token = token
        self.reason = reason


class EncoderConstructionError(CompressionError):
    """The pool could not build an encoder (e.g. an invalid compression level)."""


class EncoderStateError(CompressionError):
    """An encoder was used outside of its checkout/close/release lifecycle."""


class UnhijackableError(CompressionError):
    """The underlying response sink doesn't support connection hijacking."""

    def __init__(self, message: str = (
        "an underlying response sink doesn't support the Hijacker interface"
    )) -> None:
        super().__init__(message)


class HijackedError(CompressionError):
    """The connection behind a response sink has already been hijacked."""
