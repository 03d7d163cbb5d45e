"""Name/value cookie store used by :class:`TunnelHttp.client.HttpClient`.

A jar is either owned privately by one client or handed to several clients as
an explicit shared handle via ``HttpClient.bind_cookie_jar``. Snapshots are
always independent copies; nothing is copied on read.
"""

from __future__ import annotations

import threading
from typing import Iterable, Iterator, Mapping
from urllib.parse import quote_plus

from .errors import ValidationError

__all__ = ("CookieJar", "DELETED_SENTINEL")

DELETED_SENTINEL = "deleted"
"""Value servers send to expire a cookie; storing it removes the entry."""


class CookieJar:
    """Thread-safe ordered mapping of cookie names to values."""

    def __init__(self, cookies: Mapping[str, str] | Iterable[tuple[str, str]] | None = None):
        self._cookies: dict[str, str] = {}
        self._lock = threading.RLock()
        if cookies:
            self.update(cookies)

    def set(self, name: str, value: str | None) -> "CookieJar":
        """Upsert ``name``; an empty or ``"deleted"`` value removes it instead."""

        if not name:
            raise ValidationError("Cookie name must not be empty")
        with self._lock:
            if not value or value == DELETED_SENTINEL:
                self._cookies.pop(name, None)
            else:
                self._cookies[name] = value
        return self

    def update(
        self, cookies: "CookieJar | Mapping[str, str] | Iterable[tuple[str, str]]"
    ) -> "CookieJar":
        """Apply :meth:`set` for every ``(name, value)`` pair."""

        if isinstance(cookies, CookieJar):
            items = cookies.as_dict().items()
        elif isinstance(cookies, Mapping):
            items = cookies.items()
        else:
            items = cookies
        with self._lock:
            for name, value in items:
                self.set(name, value)
        return self

    def set_from_header_string(self, header: str | None) -> "CookieJar":
        """Fold a ``Cookie`` style string (``a=1; b=2``) into the jar.

        Segments without ``=`` are stored with an empty value, which by the
        jar's rules means they are removed. Empty or nameless segments are
        skipped.
        """

        if not header or not header.strip():
            return self
        with self._lock:
            for segment in header.split(";"):
                segment = segment.strip()
                if not segment:
                    continue
                name, sep, value = segment.partition("=")
                name = name.strip()
                if not name:
                    continue
                self.set(name, value.strip() if sep else "")
        return self

    def get(self, name: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._cookies.get(name, default)

    def remove(self, name: str) -> "CookieJar":
        if not name:
            raise ValidationError("Cookie name must not be empty")
        with self._lock:
            self._cookies.pop(name, None)
        return self

    def clear(self) -> "CookieJar":
        with self._lock:
            self._cookies.clear()
        return self

    def to_header_string(self, url_encoded: bool = False) -> str:
        """Render the jar as ``name1=value1; name2=value2``.

        Args:
            url_encoded: Percent-encode names and values using the
                ``application/x-www-form-urlencoded`` rules.
        """

        with self._lock:
            pairs = list(self._cookies.items())
        if url_encoded:
            return "; ".join(f"{quote_plus(name)}={quote_plus(value)}" for name, value in pairs)
        return "; ".join(f"{name}={value}" for name, value in pairs)

    def snapshot(self) -> "CookieJar":
        """Return an independent jar holding the current cookies."""

        with self._lock:
            return CookieJar(dict(self._cookies))

    def as_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(self._cookies)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._cookies

    def __len__(self) -> int:
        with self._lock:
            return len(self._cookies)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._cookies))

    def __repr__(self) -> str:
        return f"CookieJar({self.as_dict()!r})"
