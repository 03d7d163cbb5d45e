"""HTTPX-backed transport for direct and HTTP-proxy requests.

Responsibilities
----------------
- Build the certifi-backed :class:`ssl.SSLContext` shared by the HTTPX path
  and by TLS-over-SOCKS tunnels, honouring the peer/host verification flags.
- Construct a per-call :class:`httpx.Client` with proxy, redirect, timeout
  and TLS settings taken from a :class:`~TunnelHttp.models.RequestModel`.
  Tests inject :class:`httpx.MockTransport` through ``transport=``.
- Execute the request and return the undecoded body, leaving gzip handling to
  :mod:`TunnelHttp.response` so both transports behave identically.

Design Notes
------------
- ``trust_env`` is disabled: the proxy route is decided solely by the request
  model, never by ``HTTP(S)_PROXY`` environment variables.
- HTTPX exceptions are translated into the TunnelHttp taxonomy so the client
  can fold them into status-0 responses uniformly.
"""

from __future__ import annotations

import logging
import ssl
from typing import Sequence

import certifi
import httpx

from .errors import RequestTimeout, TransportError
from .models import ProxyConfig, ProxyKind, RequestModel
from .wire import WireResponse, decode_header_bytes

__all__ = (
    "build_httpx_client",
    "build_proxy",
    "build_ssl_context",
    "send_direct",
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_REDIRECTS = 10


def build_ssl_context(*, verify_peer: bool = True, verify_host: bool = True) -> ssl.SSLContext:
    """Return a client context using the certifi CA bundle.

    ``verify_peer=False`` disables certificate validation entirely and logs a
    warning; ``verify_host=False`` keeps chain validation but skips the host
    name check.
    """

    context = ssl.create_default_context(cafile=certifi.where())
    if not verify_peer:
        LOGGER.warning(
            "SSL certificate validation is disabled; this connection is insecure "
            "and must not be used in production"
        )
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    elif not verify_host:
        LOGGER.warning("SSL host name verification is disabled; this connection is insecure")
        context.check_hostname = False
    return context


def build_proxy(proxy: ProxyConfig) -> httpx.Proxy | None:
    """Translate an HTTP proxy config into :class:`httpx.Proxy`."""

    if proxy.kind is not ProxyKind.HTTP:
        return None
    auth = (proxy.username, proxy.password) if proxy.username else None
    return httpx.Proxy(proxy.url, auth=auth)


def build_httpx_client(
    request: RequestModel,
    *,
    transport: httpx.BaseTransport | None = None,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
) -> httpx.Client:
    """Create the client for one call described by ``request``."""

    kwargs: dict = {
        "timeout": httpx.Timeout(request.timeout),
        "follow_redirects": request.follow_redirects,
        "max_redirects": max_redirects,
        "trust_env": False,
    }
    if transport is not None:
        kwargs["transport"] = transport
    else:
        kwargs["verify"] = build_ssl_context(
            verify_peer=request.verify_peer, verify_host=request.verify_host
        )
        proxy = build_proxy(request.proxy)
        if proxy is not None:
            kwargs["proxy"] = proxy
    client = httpx.Client(**kwargs)
    LOGGER.debug(
        "HTTPX client created",
        extra={
            "timeout": request.timeout,
            "follow_redirects": request.follow_redirects,
            "proxy": request.proxy.url if request.proxy.enabled else None,
        },
    )
    return client


def send_direct(
    client: httpx.Client,
    request: RequestModel,
    headers: Sequence[tuple[str, str]],
    content: bytes | None,
) -> WireResponse:
    """Send ``request`` with ``client`` and return the raw, undecoded response.

    Raises:
        RequestTimeout: Any HTTPX timeout (connect, read, write, pool).
        TransportError: Every other HTTPX failure, proxy errors included.
    """

    encoded_headers = [(name.encode("utf-8"), value.encode("utf-8")) for name, value in headers]
    outgoing = httpx.Request(request.method, request.url, headers=encoded_headers, content=content)
    try:
        response = client.send(outgoing, stream=True)
        try:
            raw = _read_raw(response)
        finally:
            response.close()
    except httpx.TimeoutException as exc:
        raise RequestTimeout(
            f"Request timed out after {request.timeout}s: {exc}",
            details={"url": request.url, "timeout": request.timeout},
        ) from exc
    except httpx.HTTPError as exc:
        raise TransportError(str(exc) or type(exc).__name__, details={"url": request.url}) from exc

    history = [_to_wire(past, b"") for past in response.history]
    return _to_wire(response, raw, history)


def _read_raw(response: httpx.Response) -> bytes:
    # Responses built from in-memory content are read eagerly by httpx; their
    # ByteStream still yields the undecoded bytes.
    if response.is_stream_consumed:
        return b"".join(response.stream)
    return b"".join(response.iter_raw())


def _to_wire(
    response: httpx.Response,
    body: bytes,
    history: list[WireResponse] | None = None,
) -> WireResponse:
    return WireResponse(
        status_code=response.status_code,
        reason=response.reason_phrase,
        headers=[(decode_header_bytes(k), decode_header_bytes(v)) for k, v in response.headers.raw],
        body=body,
        http_version=response.http_version,
        url=str(response.url),
        history=history or [],
    )
