"""Public API for the TunnelHttp client.

The facade re-exports the client, its data models and error types. Attributes
are imported lazily so ``import TunnelHttp`` stays cheap and does not pull in
the CLI stack.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

_EXPORTS = {
    "HttpClient": "client",
    "CallContext": "client",
    "CookieJar": "cookies",
    "ContentEncoder": "content",
    "EncodedBody": "content",
    "ProxyKind": "models",
    "ProxyConfig": "models",
    "UploadFile": "models",
    "RequestModel": "models",
    "ResponseModel": "models",
    "ProxyTunnel": "tunnel",
    "TunnelStream": "tunnel",
    "ClientSettings": "settings",
    "load_settings": "settings",
    "setup_logging": "logging_utils",
    "TunnelHttpError": "errors",
    "ValidationError": "errors",
    "TransportError": "errors",
    "RequestTimeout": "errors",
    "RequestCancelled": "errors",
    "ProtocolError": "errors",
    "SocksError": "errors",
    "Socks4Error": "errors",
    "Socks5Error": "errors",
    "Socks5AuthError": "errors",
    "TlsHandshakeError": "errors",
    "MalformedResponse": "errors",
    "sort_url_parameters": "urls",
    "sort_url_parameters_in_url": "urls",
    "query_string_to_dict": "urls",
    "dict_to_query_string": "urls",
    "get_query_string": "urls",
    "parse_query_string": "urls",
    "to_query_string": "urls",
}

__all__ = [*_EXPORTS, "__version__"]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .client import CallContext, HttpClient
    from .content import ContentEncoder, EncodedBody
    from .cookies import CookieJar
    from .errors import (
        MalformedResponse,
        ProtocolError,
        RequestCancelled,
        RequestTimeout,
        Socks4Error,
        Socks5AuthError,
        Socks5Error,
        SocksError,
        TlsHandshakeError,
        TransportError,
        TunnelHttpError,
        ValidationError,
    )
    from .logging_utils import setup_logging
    from .models import ProxyConfig, ProxyKind, RequestModel, ResponseModel, UploadFile
    from .settings import ClientSettings, load_settings
    from .tunnel import ProxyTunnel, TunnelStream
    from .urls import (
        dict_to_query_string,
        get_query_string,
        parse_query_string,
        query_string_to_dict,
        sort_url_parameters,
        sort_url_parameters_in_url,
        to_query_string,
    )


def __getattr__(name: str) -> Any:
    """Lazily import public exports."""

    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(f".{module_name}", __name__), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
