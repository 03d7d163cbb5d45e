"""Error taxonomy for the TunnelHttp client.

Responsibilities
----------------
- Define the exception hierarchy raised inside the client: eager
  :class:`ValidationError` for caller mistakes, :class:`TransportError` for
  socket-level failures, and :class:`ProtocolError` (with SOCKS, TLS and
  malformed-response subclasses) for peers that misbehave.
- Provide :func:`error_payload` so the client can fold any failure into the
  structured body carried by a status-0 response.

Design Notes
------------
- Only :class:`ValidationError` is meant to escape ``HttpClient.send``; every
  other error is reported as data.
- ``details`` dictionaries default to empty mappings to keep log ``extra``
  payloads and error bodies serialisable.
"""

from __future__ import annotations

from typing import Any

__all__ = (
    "TunnelHttpError",
    "ValidationError",
    "TransportError",
    "RequestTimeout",
    "RequestCancelled",
    "ProtocolError",
    "SocksError",
    "Socks4Error",
    "Socks5Error",
    "Socks5AuthError",
    "TlsHandshakeError",
    "MalformedResponse",
    "error_payload",
)


class TunnelHttpError(Exception):
    """Base class for all errors raised by TunnelHttp."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TunnelHttpError, ValueError):
    """Raised before any I/O when the caller supplied invalid configuration."""


class TransportError(TunnelHttpError):
    """DNS, connect or socket I/O failure."""


class RequestTimeout(TransportError):
    """The request exceeded its overall deadline."""


class RequestCancelled(TransportError):
    """The in-flight call was cancelled and its sockets were closed."""


class ProtocolError(TunnelHttpError):
    """A peer answered with something the protocol does not allow."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details)
        self.code = code


class SocksError(ProtocolError):
    """SOCKS handshake returned a non-success code."""

    version: int = 0


class Socks4Error(SocksError):
    version = 4


class Socks5Error(SocksError):
    version = 5


class Socks5AuthError(Socks5Error):
    """Username/password sub-negotiation was rejected by the proxy."""


class TlsHandshakeError(ProtocolError):
    """TLS could not be established over the tunnel."""


class MalformedResponse(ProtocolError):
    """The peer's reply could not be framed or parsed."""


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Build the structured error body for a status-0 response.

    Args:
        exc: Exception raised while sending the request.

    Returns:
        Mapping with ``error``, ``message`` and ``type`` keys. ``cause`` names
        the underlying exception class when ``exc`` wraps another error, and
        ``code`` is included for protocol errors that carry one.

    Examples:
        >>> payload = error_payload(Socks5Error("SOCKS5 connect failed (code 5)", code=5))
        >>> payload["type"], payload["code"]
        ('Socks5Error', 5)
    """

    payload: dict[str, Any] = {
        "error": True,
        "message": str(exc) or type(exc).__name__,
        "type": type(exc).__name__,
    }
    cause = exc.__cause__
    if cause is not None:
        payload["cause"] = type(cause).__name__
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        payload["code"] = code
    return payload
