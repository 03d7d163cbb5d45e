"""Normalise transport output into :class:`~TunnelHttp.models.ResponseModel`.

Both transports hand over the status, header pairs and raw body bytes; this
module decodes the body, folds ``Set-Cookie`` headers into the client's jar and
builds the immutable response. Failures are converted into status-0 responses
by :func:`error_response`.
"""

from __future__ import annotations

import codecs
import gzip
import json
import logging
import zlib
from typing import Iterable, Mapping

from .cookies import CookieJar
from .errors import error_payload
from .models import ResponseModel, headers_to_dict

__all__ = (
    "ResponseProcessor",
    "decode_body",
    "error_response",
    "parse_charset",
    "parse_set_cookie",
)

LOGGER = logging.getLogger(__name__)

DEFAULT_CHARSET = "utf-8"


def parse_charset(content_type: str | None) -> str | None:
    """Return the ``charset`` parameter of ``content_type`` when it names a known codec."""

    if not content_type:
        return None
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() != "charset":
            continue
        charset = value.strip().strip("\"'")
        if not charset:
            return None
        try:
            codecs.lookup(charset)
        except LookupError:
            LOGGER.debug("Unknown response charset, using utf-8", extra={"charset": charset})
            return None
        return charset
    return None


def decode_body(raw: bytes, headers: Iterable[tuple[str, str]]) -> str:
    """Decode ``raw`` to text honouring gzip and the declared charset.

    A gzip stream that fails to decompress is logged and the raw bytes are
    decoded as text instead.
    """

    content_encoding = ""
    content_type = None
    for name, value in headers:
        lowered = name.lower()
        if lowered == "content-encoding":
            content_encoding = value.lower()
        elif lowered == "content-type" and content_type is None:
            content_type = value

    payload = raw
    if raw and "gzip" in content_encoding:
        try:
            payload = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as exc:
            LOGGER.debug(
                "Gzip decompression failed, decoding raw bytes as text",
                extra={"reason": str(exc), "raw_bytes": len(raw)},
            )
            payload = raw

    charset = parse_charset(content_type) or DEFAULT_CHARSET
    return payload.decode(charset, errors="replace")


def parse_set_cookie(line: str) -> tuple[str, str] | None:
    """Extract ``(name, value)`` from a ``Set-Cookie`` header value.

    Attributes after the first ``;`` are ignored. Lines without ``=`` or a
    name yield ``None``.

    Examples:
        >>> parse_set_cookie("sid=abc; Path=/; HttpOnly")
        ('sid', 'abc')
    """

    pair = line.split(";", 1)[0]
    name, sep, value = pair.partition("=")
    name = name.strip()
    if not sep or not name:
        return None
    return name, value.strip()


class ResponseProcessor:
    """Turn raw transport results into :class:`ResponseModel` objects.

    Args:
        cookie_jar: Jar updated in place with every ``Set-Cookie`` header.
    """

    def __init__(self, cookie_jar: CookieJar):
        self.cookie_jar = cookie_jar

    def process(
        self,
        status_code: int,
        headers: Iterable[tuple[str, str]],
        raw: bytes,
        *,
        reason: str = "",
        url: str = "",
        request_headers: Mapping[str, str] | None = None,
        elapsed: float = 0.0,
    ) -> ResponseModel:
        header_pairs = list(headers)
        cookie_lines = tuple(value for name, value in header_pairs if name.lower() == "set-cookie")
        self.apply_cookies(cookie_lines)
        return ResponseModel(
            status_code=status_code,
            body=decode_body(raw, header_pairs),
            raw=raw,
            headers=headers_to_dict(header_pairs),
            reason=reason,
            cookie_jar=self.cookie_jar.snapshot(),
            raw_cookie_lines=cookie_lines,
            request_headers=dict(request_headers or {}),
            url=url,
            elapsed=elapsed,
        )

    def apply_cookies(self, lines: Iterable[str]) -> None:
        for line in lines:
            parsed = parse_set_cookie(line)
            if parsed is None:
                LOGGER.debug("Ignoring malformed Set-Cookie header", extra={"line": line[:200]})
                continue
            self.cookie_jar.set(*parsed)


def error_response(
    exc: BaseException,
    *,
    url: str = "",
    request_headers: Mapping[str, str] | None = None,
    elapsed: float = 0.0,
    cookie_jar: CookieJar | None = None,
) -> ResponseModel:
    """Build the status-0 response describing ``exc``."""

    body = json.dumps(error_payload(exc), ensure_ascii=False)
    return ResponseModel(
        status_code=0,
        body=body,
        raw=body.encode("utf-8"),
        reason=type(exc).__name__,
        cookie_jar=cookie_jar.snapshot() if cookie_jar is not None else CookieJar(),
        request_headers=dict(request_headers or {}),
        url=url,
        elapsed=elapsed,
    )
