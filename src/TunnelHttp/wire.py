"""HTTP/1.1 framing for requests sent through a SOCKS tunnel.

Responsibilities
----------------
- Serialise a request line, headers and body into wire bytes with ``Host``
  first and a ``Content-Length`` when the body needs one.
- Parse the response incrementally with :class:`ResponseParser`, an explicit
  state machine that can be fed arbitrary byte slices, so framing never
  depends on how the peer chunks its writes.

Design Notes
------------
- Bodies are framed by ``Transfer-Encoding: chunked``, then ``Content-Length``,
  then connection close. Chunk extensions and trailers are read and dropped.
- ``1xx`` interim responses (other than ``101``) are discarded and parsing
  restarts on the final response.
- Header bytes are decoded as UTF-8 with a Latin-1 fallback; bodies stay raw.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol
from urllib.parse import quote, urlsplit

from .errors import MalformedResponse, ValidationError

__all__ = (
    "ParserState",
    "ResponseParser",
    "WireResponse",
    "decode_header_bytes",
    "host_header",
    "read_response",
    "request_target",
    "serialize_request",
)

LOGGER = logging.getLogger(__name__)

CRLF = b"\r\n"
HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADER_BYTES = 256 * 1024
DEFAULT_CHUNK_SIZE = 8192

_DEFAULT_PORTS = {"http": 80, "https": 443}
_BODYLESS_STATUS = (204, 304)
_PATH_SAFE = "/%:@!$&'()*+,;=~"
_QUERY_SAFE = "/?%:@!$&'()*+,;=~"


def decode_header_bytes(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


@dataclass
class WireResponse:
    """Framed but undecoded response; ``body`` is exactly what the peer sent
    once chunked framing has been removed."""

    status_code: int
    reason: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    http_version: str = "HTTP/1.1"
    url: str = ""
    history: list["WireResponse"] = field(default_factory=list)
    """Redirect responses that preceded this one, oldest first."""


# ============================================================================
# Request serialisation
# ============================================================================


def request_target(url: str) -> str:
    """Origin-form target (``/path?query``) for ``url``; fragments are dropped."""

    parts = urlsplit(url)
    target = quote(parts.path or "/", safe=_PATH_SAFE)
    if parts.query:
        target = f"{target}?{quote(parts.query, safe=_QUERY_SAFE)}"
    return target


def host_header(url: str) -> str:
    """``Host`` value for ``url``: the host, plus the port when non-default."""

    parts = urlsplit(url)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        return f"{host}:{port}"
    return host


def _check_header(name: str, value: str) -> None:
    if not name or any(ch in name for ch in "\r\n:"):
        raise ValidationError(f"Invalid header name: {name!r}")
    if "\r" in value or "\n" in value:
        raise ValidationError(f"Header {name!r} value contains a line break")


def serialize_request(
    method: str,
    url: str,
    headers: Iterable[tuple[str, str]],
    body: bytes | None = None,
) -> bytes:
    """Build the HTTP/1.1 request bytes.

    Args:
        method: Request method, already upper-cased.
        url: Absolute ``http``/``https`` URL of the destination.
        headers: Caller headers in emission order. A caller ``Host`` is
            ignored because the value derived from ``url`` is always sent first.
        body: Optional request payload.

    Returns:
        Request line, headers, blank line and body as one buffer.

    Raises:
        ValidationError: A header name or value would break the framing.
    """

    lines = [f"{method} {request_target(url)} HTTP/1.1", f"Host: {host_header(url)}"]
    has_length = False
    has_transfer_encoding = False
    for name, value in headers:
        lowered = name.lower()
        if lowered == "host":
            continue
        _check_header(name, value)
        has_length = has_length or lowered == "content-length"
        has_transfer_encoding = has_transfer_encoding or lowered == "transfer-encoding"
        lines.append(f"{name}: {value}")

    if not has_length and not has_transfer_encoding:
        if body:
            lines.append(f"Content-Length: {len(body)}")
        elif method in ("POST", "PUT", "PATCH"):
            lines.append("Content-Length: 0")

    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("utf-8") + (body or b"")


# ============================================================================
# Response parsing
# ============================================================================


class ParserState(enum.Enum):
    STATUS_AND_HEADERS = "status_and_headers"
    BODY_LENGTH = "body_length"
    BODY_CHUNKED = "body_chunked"
    BODY_UNTIL_CLOSE = "body_until_close"
    DONE = "done"


class _ChunkPhase(enum.Enum):
    SIZE = "size"
    DATA = "data"
    DATA_END = "data_end"
    TRAILER = "trailer"


class ResponseParser:
    """Incremental HTTP/1.1 response parser.

    Examples:
        >>> parser = ResponseParser()
        >>> parser.feed(b"HTTP/1.1 200 OK\\r\\nContent-Length: 2\\r\\n\\r\\nhi")
        >>> parser.done, parser.result().body
        (True, b'hi')
    """

    def __init__(self, method: str = "GET"):
        self.method = method.upper()
        self.state = ParserState.STATUS_AND_HEADERS
        self.status_code = 0
        self.reason = ""
        self.http_version = ""
        self.headers: list[tuple[str, str]] = []
        self._buffer = bytearray()
        self._body = bytearray()
        self._remaining = 0
        self._chunk_phase = _ChunkPhase.SIZE

    @property
    def done(self) -> bool:
        return self.state is ParserState.DONE

    def feed(self, data: bytes) -> None:
        """Consume ``data``; bytes after the end of the response are ignored."""

        if self.done or not data:
            return
        self._buffer.extend(data)
        self._advance()

    def feed_eof(self) -> None:
        """Signal that the peer closed the connection.

        Raises:
            MalformedResponse: The stream ended before the header separator,
                inside a ``Content-Length`` body, or inside a chunk.
        """

        if self.state is ParserState.STATUS_AND_HEADERS:
            raise MalformedResponse(
                "Connection closed before the response headers were complete",
                details={"received": len(self._buffer)},
            )
        if self.state is ParserState.BODY_LENGTH:
            raise MalformedResponse(
                f"Connection closed with {self._remaining} body bytes outstanding",
                details={"received": len(self._body), "missing": self._remaining},
            )
        if self.state is ParserState.BODY_CHUNKED:
            if self._chunk_phase is _ChunkPhase.TRAILER:
                self.state = ParserState.DONE
                return
            raise MalformedResponse(
                "Connection closed in the middle of a chunked body",
                details={"received": len(self._body), "phase": self._chunk_phase.value},
            )
        if self.state is ParserState.BODY_UNTIL_CLOSE:
            self._body.extend(self._buffer)
            self._buffer.clear()
            self.state = ParserState.DONE

    def result(self) -> WireResponse:
        if not self.done:
            raise MalformedResponse(
                f"Response is incomplete (parser state {self.state.value})",
                details={"state": self.state.value},
            )
        return WireResponse(
            status_code=self.status_code,
            reason=self.reason,
            headers=list(self.headers),
            body=bytes(self._body),
            http_version=self.http_version,
        )

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _advance(self) -> None:
        while True:
            state = self.state
            if state is ParserState.STATUS_AND_HEADERS:
                if not self._parse_head():
                    return
            elif state is ParserState.BODY_LENGTH:
                take = min(self._remaining, len(self._buffer))
                self._body.extend(self._buffer[:take])
                del self._buffer[:take]
                self._remaining -= take
                if self._remaining:
                    return
                self.state = ParserState.DONE
            elif state is ParserState.BODY_CHUNKED:
                if not self._parse_chunked():
                    return
            elif state is ParserState.BODY_UNTIL_CLOSE:
                self._body.extend(self._buffer)
                self._buffer.clear()
                return
            else:
                return

    def _parse_head(self) -> bool:
        index = self._buffer.find(HEADER_TERMINATOR)
        if index < 0:
            if len(self._buffer) > MAX_HEADER_BYTES:
                raise MalformedResponse(
                    f"Response headers exceed {MAX_HEADER_BYTES} bytes",
                    details={"received": len(self._buffer)},
                )
            return False
        head = bytes(self._buffer[:index])
        del self._buffer[: index + len(HEADER_TERMINATOR)]

        status_line, _, header_block = head.partition(CRLF)
        self._parse_status_line(decode_header_bytes(status_line))
        self.headers = self._parse_headers(header_block)

        if 100 <= self.status_code < 200 and self.status_code != 101:
            LOGGER.debug("Skipping interim response", extra={"status_code": self.status_code})
            self.headers = []
            return True

        self.state = self._body_state()
        return True

    def _parse_status_line(self, line: str) -> None:
        parts = line.strip().split(" ", 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/"):
            raise MalformedResponse(f"Malformed status line: {line[:200]!r}")
        version, code = parts[0], parts[1]
        if len(code) != 3 or not code.isdigit():
            raise MalformedResponse(f"Malformed status code in status line: {line[:200]!r}")
        self.http_version = version
        self.status_code = int(code)
        self.reason = parts[2].strip() if len(parts) > 2 else ""

    @staticmethod
    def _parse_headers(block: bytes) -> list[tuple[str, str]]:
        headers: list[tuple[str, str]] = []
        if not block:
            return headers
        for raw_line in block.split(CRLF):
            if not raw_line:
                continue
            line = decode_header_bytes(raw_line)
            if line[0] in " \t" and headers:
                name, value = headers[-1]
                headers[-1] = (name, f"{value} {line.strip()}")
                continue
            name, sep, value = line.partition(":")
            name = name.strip()
            if not sep or not name:
                LOGGER.debug("Ignoring malformed header line", extra={"line": line[:200]})
                continue
            headers.append((name, value.strip()))
        return headers

    def _header(self, name: str) -> str | None:
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def _body_state(self) -> ParserState:
        if (
            self.method == "HEAD"
            or self.status_code in _BODYLESS_STATUS
            or 100 <= self.status_code < 200
        ):
            return ParserState.DONE

        transfer_encoding = self._header("transfer-encoding")
        if transfer_encoding:
            codings = [item.strip().lower() for item in transfer_encoding.split(",")]
            if codings and codings[-1] == "chunked":
                self._chunk_phase = _ChunkPhase.SIZE
                return ParserState.BODY_CHUNKED

        content_length = self._header("content-length")
        if content_length is not None:
            first = content_length.split(",")[0].strip()
            if not first.isdigit():
                raise MalformedResponse(f"Invalid Content-Length header: {content_length!r}")
            self._remaining = int(first)
            return ParserState.BODY_LENGTH if self._remaining else ParserState.DONE

        return ParserState.BODY_UNTIL_CLOSE

    def _parse_chunked(self) -> bool:
        """Advance the chunk decoder; ``False`` means more input is needed."""

        while True:
            phase = self._chunk_phase
            if phase is _ChunkPhase.SIZE:
                index = self._buffer.find(CRLF)
                if index < 0:
                    return False
                line = bytes(self._buffer[:index])
                del self._buffer[: index + 2]
                size_text = line.split(b";", 1)[0].strip()
                try:
                    size = int(size_text, 16)
                except ValueError as exc:
                    raise MalformedResponse(f"Invalid chunk size line: {line[:64]!r}") from exc
                if size < 0:
                    raise MalformedResponse(f"Invalid chunk size line: {line[:64]!r}")
                if size == 0:
                    self._chunk_phase = _ChunkPhase.TRAILER
                else:
                    self._remaining = size
                    self._chunk_phase = _ChunkPhase.DATA
            elif phase is _ChunkPhase.DATA:
                take = min(self._remaining, len(self._buffer))
                if not take:
                    return False
                self._body.extend(self._buffer[:take])
                del self._buffer[:take]
                self._remaining -= take
                if not self._remaining:
                    self._chunk_phase = _ChunkPhase.DATA_END
            elif phase is _ChunkPhase.DATA_END:
                if len(self._buffer) < 2:
                    return False
                if self._buffer[:2] != CRLF:
                    raise MalformedResponse("Chunk data is not terminated by CRLF")
                del self._buffer[:2]
                self._chunk_phase = _ChunkPhase.SIZE
            else:
                index = self._buffer.find(CRLF)
                if index < 0:
                    return False
                trailer = self._buffer[:index]
                del self._buffer[: index + 2]
                if not trailer:
                    self.state = ParserState.DONE
                    return True


class _Readable(Protocol):
    def read(self, size: int = ...) -> bytes: ...


def read_response(
    stream: _Readable,
    method: str = "GET",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> WireResponse:
    """Read one complete response from ``stream``."""

    parser = ResponseParser(method)
    while not parser.done:
        data = stream.read(chunk_size)
        if not data:
            parser.feed_eof()
            break
        parser.feed(data)
    return parser.result()
