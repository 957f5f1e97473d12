"""
HTTP Accept-Encoding header parsing and negotiation utilities.

See: https://tools.ietf.org/html/rfc2616#section-14.3
"""
import enum
import logging

from .exceptions import MalformedCodingError

logger = logging.getLogger(__name__)

# The qvalue assigned to a coding that carries no explicit "q=" parameter.
DEFAULT_QVALUE = 1.0

Codings = dict[str, float]


class Coding(str, enum.Enum):
    """The content-codings this package can apply to a response body."""

    # No transformation.
    IDENTITY = "identity"
    # Raw DEFLATE stream (RFC 1951).
    DEFLATE = "deflate"
    # GNU zip format (RFC 1952).
    GZIP = "gzip"

    def __str__(self) -> str:
        return self.value


# Codings retained by parse_encodings. Anything else, "*" included, is
# parsed and then dropped.
RECOGNIZED_CODINGS = frozenset(coding.value for coding in Coding)


def _clamp(q_val: float) -> float:
    if q_val < 0.0:
        return 0.0
    if q_val > 1.0:
        return 1.0
    return q_val


def parse_coding(
    part: str, errors: list[MalformedCodingError] | None = None
) -> tuple[str, float]:
    """
    Parses a single coding of the 'Accept-Encoding' header (e.g. " gzip ; q=0.8 ").
    Returns a tuple of (coding_name, q-factor).

    Minor formatting errors are forgiven: a q-factor that isn't a number leaves
    the weight at DEFAULT_QVALUE, and the problem is appended to `errors` when
    a list is given. An empty coding name raises MalformedCodingError.
    """
    components = part.split(";")
    coding_name = components[0].strip().lower()
    if not coding_name:
        raise MalformedCodingError(part, "empty coding name")

    q_val = DEFAULT_QVALUE
    for param in components[1:]:
        # Whitespace is allowed around "=", e.g. "gzip; q = 0.5".
        param_name, sep, raw_value = param.partition("=")
        if sep and param_name.strip().lower() == "q":
            raw_value = raw_value.strip()
            try:
                q_val = float(raw_value)
            except ValueError:
                if errors is not None:
                    errors.append(
                        MalformedCodingError(part, f"invalid qvalue {raw_value!r}")
                    )
            else:
                if q_val != q_val:  # NaN
                    q_val = DEFAULT_QVALUE
                    if errors is not None:
                        errors.append(MalformedCodingError(part, "qvalue is NaN"))
            break

    return coding_name, _clamp(q_val)


def parse_encodings(
    accept_encoding: str | None,
) -> tuple[Codings, list[MalformedCodingError]]:
    """
    Parses a list of codings, as might appear in an Accept-Encoding header,
    into a mapping of content-codings to quality values.

    Only "identity", "gzip" and "deflate" are kept. The errors encountered
    along the way are returned next to the mapping; it's probably safe to
    ignore them, because silently ignoring errors is how the internet works.
    """
    codings: Codings = {}
    errors: list[MalformedCodingError] = []
    if not accept_encoding:
        return codings, errors

    for part in accept_encoding.split(","):
        try:
            coding_name, q_val = parse_coding(part, errors)
        except MalformedCodingError as exc:
            errors.append(exc)
            continue
        if coding_name in RECOGNIZED_CODINGS:
            codings[coding_name] = q_val

    return codings, errors


def accepts(accept_encoding: str | None) -> Coding:
    """
    Returns the coding to apply to a response, given the client's
    'Accept-Encoding' header.

    Identity is never looked up explicitly: gzip wins when its weight is above
    zero, then deflate, and anything else means no compression. A header such
    as "identity;q=0, gzip" therefore still yields gzip, while "identity;q=0"
    alone yields identity.
    """
    codings, errors = parse_encodings(accept_encoding)
    for error in errors:
        logger.debug("Ignoring Accept-Encoding token: %s", error)

    if codings.get(Coding.GZIP.value, 0.0) > 0.0:
        return Coding.GZIP
    if codings.get(Coding.DEFLATE.value, 0.0) > 0.0:
        return Coding.DEFLATE
    return Coding.IDENTITY
