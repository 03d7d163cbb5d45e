"""
Pytest Configuration

Shared fixtures for the TunnelHttp suite: a factory for scripted SOCKS
proxies, an ``httpx.MockTransport`` recorder for the direct path, a port that
nothing listens on, and environment/logging isolation so tests never see a
developer's ``TUNNELHTTP_*`` variables or a handler left behind by the CLI.
"""

from __future__ import annotations

import logging
import os
import socket
from typing import Any, Callable, Generator

import httpx
import pytest

from tests.fixtures.socks_server import ScriptedSocksProxy


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop ``TUNNELHTTP_*`` variables and reset the package logger."""

    for key in list(os.environ):
        if key.upper().startswith("TUNNELHTTP_"):
            monkeypatch.delenv(key, raising=False)
    yield
    logger = logging.getLogger("TunnelHttp")
    for handler in list(logger.handlers):
        if getattr(handler, "_tunnelhttp_managed", False):
            logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def socks_proxy() -> Generator[Callable[..., ScriptedSocksProxy], None, None]:
    """Factory starting :class:`ScriptedSocksProxy` instances; all are closed on teardown.

    Example:
        def test_tunnel(socks_proxy):
            proxy = socks_proxy(version=5, responses=[http_response(200, b"hi")])
            ...
    """

    started: list[ScriptedSocksProxy] = []

    def _factory(**kwargs: Any) -> ScriptedSocksProxy:
        proxy = ScriptedSocksProxy(**kwargs).start()
        started.append(proxy)
        return proxy

    yield _factory
    for proxy in started:
        proxy.close()


@pytest.fixture
def recording_transport() -> Callable[..., tuple[httpx.MockTransport, list[httpx.Request]]]:
    """Build a ``MockTransport`` that records every request it serves.

    The handler receives the request and returns an ``httpx.Response``; the
    second element of the returned tuple collects the requests in order.
    """

    def _factory(
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> tuple[httpx.MockTransport, list[httpx.Request]]:
        seen: list[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            request.read()
            seen.append(request)
            if handler is None:
                return httpx.Response(200, content=b"ok")
            return handler(request)

        return httpx.MockTransport(_handle), seen

    return _factory


@pytest.fixture
def unused_port() -> int:
    """A local TCP port with no listener (connections are refused)."""

    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    return port
