"""SOCKS4/SOCKS4a/SOCKS5 client handshakes producing a raw byte tunnel.

Responsibilities
----------------
- Open a TCP connection to the proxy, run the SOCKS handshake for the
  configured protocol, and optionally layer TLS for ``https`` destinations.
- Expose the result as a :class:`TunnelStream`: a plain bidirectional byte
  stream bound to the destination, consumed by :mod:`TunnelHttp.wire`.
- Enforce one :class:`Deadline` across connect, handshake, TLS and the
  tunneled I/O so a request never hangs past its timeout.

Handshake state machine
-----------------------
``CONNECT`` → (SOCKS5) ``GREETING`` → [``AUTH``] → ``CONNECT_REQUEST`` →
[``TLS``] → ``READY``; (SOCKS4) ``CONNECT`` → ``CONNECT_REQUEST`` → [``TLS``]
→ ``READY``. Any failure is terminal: the socket is closed and a typed error
(:class:`~TunnelHttp.errors.Socks4Error`, :class:`~TunnelHttp.errors.Socks5Error`,
:class:`~TunnelHttp.errors.TlsHandshakeError`,
:class:`~TunnelHttp.errors.MalformedResponse`,
:class:`~TunnelHttp.errors.TransportError`) is raised carrying the offending
code. Short reads are never padded.
"""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import socket
import ssl
import struct
import time
from typing import Callable, Iterator

from .errors import (
    MalformedResponse,
    RequestTimeout,
    Socks4Error,
    Socks5AuthError,
    Socks5Error,
    TlsHandshakeError,
    TransportError,
    TunnelHttpError,
    ValidationError,
)
from .models import ProxyConfig, ProxyKind
from .transport import build_ssl_context

__all__ = (
    "Deadline",
    "ProxyTunnel",
    "TunnelStream",
    "SOCKS4_REPLY_CODES",
    "SOCKS5_REPLY_CODES",
    "build_socks4_request",
    "build_socks5_auth",
    "build_socks5_connect",
    "build_socks5_greeting",
    "socks4_handshake",
    "socks5_handshake",
)

LOGGER = logging.getLogger(__name__)

SOCKS4_VERSION = 0x04
SOCKS5_VERSION = 0x05
SOCKS5_AUTH_VERSION = 0x01
CMD_CONNECT = 0x01

METHOD_NO_AUTH = 0x00
METHOD_USER_PASS = 0x02
METHOD_NO_ACCEPTABLE = 0xFF

ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04

SOCKS4_GRANTED = 0x5A
SOCKS4A_MARKER = b"\x00\x00\x00\x01"

SOCKS5_REPLY_CODES = {
    0x01: "general SOCKS server failure",
    0x02: "connection not allowed by ruleset",
    0x03: "network unreachable",
    0x04: "host unreachable",
    0x05: "connection refused",
    0x06: "TTL expired",
    0x07: "command not supported",
    0x08: "address type not supported",
}

SOCKS4_REPLY_CODES = {
    0x5B: "request rejected or failed",
    0x5C: "request rejected: client is not running identd",
    0x5D: "request rejected: identd could not confirm the user id",
}


# ============================================================================
# Deadline
# ============================================================================


class Deadline:
    """Wall-clock budget shared by every blocking step of one request."""

    def __init__(self, timeout: float | None, *, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return self._expires_at - self._clock()

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, phase: str) -> float | None:
        """Return the remaining budget or raise :class:`RequestTimeout`."""

        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise RequestTimeout(
                f"Request timed out after {self.timeout}s during {phase}",
                details={"phase": phase, "timeout": self.timeout},
            )
        return remaining

    def apply(self, sock: socket.socket, phase: str) -> None:
        sock.settimeout(self.check(phase))


@contextlib.contextmanager
def _translate_io_errors(phase: str, deadline: Deadline) -> Iterator[None]:
    try:
        yield
    except TunnelHttpError:
        raise
    except TimeoutError as exc:
        raise RequestTimeout(
            f"Request timed out after {deadline.timeout}s during {phase}",
            details={"phase": phase, "timeout": deadline.timeout},
        ) from exc
    except OSError as exc:
        raise TransportError(f"{phase} failed: {exc}", details={"phase": phase}) from exc


def _close_quietly(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError as exc:
        LOGGER.debug("Error closing tunnel socket: %s", exc)


def _recv_exact(sock: socket.socket, size: int, deadline: Deadline, phase: str) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        deadline.apply(sock, phase)
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise MalformedResponse(
                f"{phase}: expected {size} bytes from proxy, got {len(buffer)}",
                details={"phase": phase, "expected": size, "received": len(buffer)},
            )
        buffer.extend(chunk)
    return bytes(buffer)


def _send_all(sock: socket.socket, payload: bytes, deadline: Deadline, phase: str) -> None:
    deadline.apply(sock, phase)
    sock.sendall(payload)


# ============================================================================
# Message builders
# ============================================================================


def _ip_literal(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def _encode_domain(host: str) -> bytes:
    try:
        encoded = host.encode("idna")
    except UnicodeError:
        encoded = host.encode("utf-8")
    if not encoded or len(encoded) > 255:
        raise ValidationError(f"Destination host name must be 1-255 bytes: {host!r}")
    return encoded


def build_socks5_greeting(offer_auth: bool) -> bytes:
    """``VER NMETHODS METHODS``; user/pass is only offered with credentials."""

    methods = [METHOD_USER_PASS, METHOD_NO_AUTH] if offer_auth else [METHOD_NO_AUTH]
    return bytes([SOCKS5_VERSION, len(methods), *methods])


def build_socks5_auth(username: str, password: str) -> bytes:
    """RFC 1929 username/password request."""

    user = username.encode("utf-8")
    pwd = password.encode("utf-8")
    return bytes([SOCKS5_AUTH_VERSION, len(user)]) + user + bytes([len(pwd)]) + pwd


def build_socks5_connect(host: str, port: int) -> bytes:
    """``VER CMD RSV ATYP DST.ADDR DST.PORT`` for a CONNECT request."""

    address = _ip_literal(host)
    if isinstance(address, ipaddress.IPv4Address):
        target = bytes([ATYP_IPV4]) + address.packed
    elif isinstance(address, ipaddress.IPv6Address):
        target = bytes([ATYP_IPV6]) + address.packed
    else:
        domain = _encode_domain(host)
        target = bytes([ATYP_DOMAIN, len(domain)]) + domain
    return bytes([SOCKS5_VERSION, CMD_CONNECT, 0x00]) + target + struct.pack(">H", port)


def build_socks4_request(host: str, port: int, user_id: str = "") -> bytes:
    """SOCKS4 CONNECT, switching to SOCKS4a addressing for host names."""

    address = _ip_literal(host)
    if isinstance(address, ipaddress.IPv6Address):
        raise ValidationError("SOCKS4 cannot address IPv6 destinations", details={"host": host})
    head = struct.pack(">BBH", SOCKS4_VERSION, CMD_CONNECT, port)
    user = user_id.encode("utf-8") + b"\x00"
    if address is not None:
        return head + address.packed + user
    return head + SOCKS4A_MARKER + user + _encode_domain(host) + b"\x00"


# ============================================================================
# Handshakes
# ============================================================================


def socks5_handshake(
    sock: socket.socket,
    proxy: ProxyConfig,
    host: str,
    port: int,
    deadline: Deadline,
) -> None:
    """Run method negotiation, optional sub-authentication and CONNECT."""

    offer_auth = proxy.has_credentials
    _send_all(sock, build_socks5_greeting(offer_auth), deadline, "SOCKS5 greeting")
    version, method = _recv_exact(sock, 2, deadline, "SOCKS5 greeting")
    if version != SOCKS5_VERSION:
        raise Socks5Error(
            f"SOCKS5 handshake failed: proxy answered with version {version}",
            code=version,
            details={"phase": "greeting"},
        )

    if method == METHOD_USER_PASS and offer_auth:
        LOGGER.debug("SOCKS5 proxy selected username/password authentication")
        _send_all(sock, build_socks5_auth(proxy.username, proxy.password), deadline, "SOCKS5 auth")
        _, status = _recv_exact(sock, 2, deadline, "SOCKS5 auth")
        if status != 0x00:
            raise Socks5AuthError(
                f"SOCKS5 authentication failed with status {status}",
                code=status,
                details={"phase": "auth", "username": proxy.username},
            )
    elif method != METHOD_NO_AUTH:
        reason = "no acceptable methods" if method == METHOD_NO_ACCEPTABLE else "unsupported method"
        raise Socks5Error(
            f"SOCKS5 proxy selected {reason} (0x{method:02X})",
            code=method,
            details={"phase": "greeting"},
        )

    _send_all(sock, build_socks5_connect(host, port), deadline, "SOCKS5 connect")
    reply = _recv_exact(sock, 4, deadline, "SOCKS5 connect")
    if reply[0] != SOCKS5_VERSION:
        raise Socks5Error(
            f"SOCKS5 connect failed: reply version {reply[0]}",
            code=reply[0],
            details={"phase": "connect"},
        )
    code = reply[1]
    if code != 0x00:
        description = SOCKS5_REPLY_CODES.get(code, "unknown error")
        raise Socks5Error(
            f"SOCKS5 connect failed with code {code} ({description})",
            code=code,
            details={"phase": "connect", "destination": f"{host}:{port}"},
        )

    atyp = reply[3]
    if atyp == ATYP_IPV4:
        _recv_exact(sock, 4 + 2, deadline, "SOCKS5 bound address")
    elif atyp == ATYP_IPV6:
        _recv_exact(sock, 16 + 2, deadline, "SOCKS5 bound address")
    elif atyp == ATYP_DOMAIN:
        (length,) = _recv_exact(sock, 1, deadline, "SOCKS5 bound address")
        _recv_exact(sock, length + 2, deadline, "SOCKS5 bound address")
    else:
        raise MalformedResponse(
            f"SOCKS5 connect reply has unknown address type 0x{atyp:02X}",
            code=atyp,
            details={"phase": "connect"},
        )


def socks4_handshake(
    sock: socket.socket,
    proxy: ProxyConfig,
    host: str,
    port: int,
    deadline: Deadline,
) -> None:
    """Send a SOCKS4/4a CONNECT and require the ``0x5A`` grant."""

    _send_all(sock, build_socks4_request(host, port, proxy.username), deadline, "SOCKS4 connect")
    reply = _recv_exact(sock, 8, deadline, "SOCKS4 connect")
    code = reply[1]
    if code != SOCKS4_GRANTED:
        description = SOCKS4_REPLY_CODES.get(code, "unknown error")
        raise Socks4Error(
            f"SOCKS4 connect failed with code 0x{code:02X} ({description})",
            code=code,
            details={"phase": "connect", "destination": f"{host}:{port}"},
        )


# ============================================================================
# Tunnel
# ============================================================================


class TunnelStream:
    """Byte stream to the destination, possibly TLS-wrapped."""

    def __init__(
        self,
        sock: socket.socket,
        deadline: Deadline,
        *,
        host: str,
        port: int,
        tls: bool = False,
    ):
        self._sock = sock
        self._deadline = deadline
        self.host = host
        self.port = port
        self.tls = tls
        self._closed = False

    @property
    def socket(self) -> socket.socket:
        return self._sock

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> None:
        with _translate_io_errors("tunnel write", self._deadline):
            _send_all(self._sock, data, self._deadline, "tunnel write")

    def read(self, size: int = 8192) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means the peer closed the stream."""

        with _translate_io_errors("tunnel read", self._deadline):
            self._deadline.apply(self._sock, "tunnel read")
            try:
                return self._sock.recv(size)
            except ssl.SSLZeroReturnError:
                return b""

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        _close_quietly(self._sock)

    def __enter__(self) -> "TunnelStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ProxyTunnel:
    """Establish tunnels through one SOCKS proxy.

    Args:
        proxy: SOCKS4 or SOCKS5 proxy configuration.
        timeout: Default overall timeout when :meth:`open` gets no deadline.
        verify_peer: Validate the destination certificate for TLS tunnels.
        verify_host: Validate the certificate host name for TLS tunnels.
        ssl_context: Pre-built context overriding ``verify_*``.
    """

    def __init__(
        self,
        proxy: ProxyConfig,
        *,
        timeout: float | None = 15.0,
        verify_peer: bool = True,
        verify_host: bool = True,
        ssl_context: ssl.SSLContext | None = None,
    ):
        if not proxy.is_socks:
            raise ValidationError(f"ProxyTunnel needs a SOCKS proxy, got {proxy.kind.value!r}")
        self.proxy = proxy
        self.timeout = timeout
        self.verify_peer = verify_peer
        self.verify_host = verify_host
        self._ssl_context = ssl_context

    def check_destination(self, host: str, port: int) -> None:
        """Raise :class:`ValidationError` when the proxy protocol cannot address ``host:port``."""

        if self.proxy.kind is ProxyKind.SOCKS4:
            build_socks4_request(host, port, self.proxy.username)
        else:
            build_socks5_connect(host, port)

    def open(
        self,
        host: str,
        port: int,
        *,
        tls: bool = False,
        deadline: Deadline | None = None,
        on_socket: Callable[[socket.socket], None] | None = None,
    ) -> TunnelStream:
        """Connect to ``host:port`` through the proxy.

        Args:
            host: Destination host name or IP literal.
            port: Destination port.
            tls: Wrap the tunnel in TLS addressed to ``host``.
            deadline: Shared request deadline; defaults to ``self.timeout``.
            on_socket: Called with every socket created, so the caller can
                shut it down on cancellation.

        Raises:
            ValidationError: The destination cannot be expressed in the
                proxy protocol (checked before connecting).
            TransportError: The proxy could not be reached or I/O failed.
            ProtocolError: The handshake or TLS negotiation failed.
        """

        self.check_destination(host, port)
        deadline = deadline or Deadline(self.timeout)

        sock = self._connect(deadline)
        if on_socket is not None:
            on_socket(sock)
        try:
            with _translate_io_errors(f"{self.proxy.kind.value.upper()} handshake", deadline):
                if self.proxy.kind is ProxyKind.SOCKS5:
                    socks5_handshake(sock, self.proxy, host, port, deadline)
                else:
                    socks4_handshake(sock, self.proxy, host, port, deadline)
            LOGGER.debug(
                "SOCKS tunnel established",
                extra={
                    "proxy_kind": self.proxy.kind.value,
                    "proxy_address": self.proxy.address,
                    "destination": f"{host}:{port}",
                },
            )
            if tls:
                sock = self._wrap_tls(sock, host, deadline)
                if on_socket is not None:
                    on_socket(sock)
        except BaseException:
            _close_quietly(sock)
            raise
        return TunnelStream(sock, deadline, host=host, port=port, tls=tls)

    def _connect(self, deadline: Deadline) -> socket.socket:
        with _translate_io_errors(f"connect to proxy {self.proxy.address}", deadline):
            remaining = deadline.check("proxy connect")
            return socket.create_connection((self.proxy.host, self.proxy.port), timeout=remaining)

    def _wrap_tls(self, sock: socket.socket, host: str, deadline: Deadline) -> ssl.SSLSocket:
        context = self._ssl_context or build_ssl_context(
            verify_peer=self.verify_peer, verify_host=self.verify_host
        )
        tls_sock = context.wrap_socket(
            sock, server_hostname=host.strip("[]"), do_handshake_on_connect=False
        )
        try:
            with _translate_tls_errors(host, deadline):
                deadline.apply(tls_sock, "TLS handshake")
                tls_sock.do_handshake()
        except BaseException:
            _close_quietly(tls_sock)
            raise
        return tls_sock


@contextlib.contextmanager
def _translate_tls_errors(host: str, deadline: Deadline) -> Iterator[None]:
    try:
        yield
    except TunnelHttpError:
        raise
    except TimeoutError as exc:
        raise RequestTimeout(
            f"Request timed out after {deadline.timeout}s during TLS handshake",
            details={"phase": "tls", "timeout": deadline.timeout},
        ) from exc
    except ssl.SSLError as exc:
        raise TlsHandshakeError(
            f"TLS handshake with {host} failed: {exc}",
            details={"phase": "tls", "host": host, "reason": getattr(exc, "reason", None)},
        ) from exc
    except OSError as exc:
        raise TransportError(f"TLS handshake with {host} failed: {exc}") from exc
