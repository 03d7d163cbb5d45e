"""Query-string helpers used when building signed or canonical request URLs.

Sorting is ordinal (code point order, case-sensitive) and keeps the first
occurrence of a repeated key; dictionary conversion keeps the last.
"""

from __future__ import annotations

from typing import Mapping
from urllib.parse import quote_plus, unquote_plus, urlsplit, urlunsplit

from .errors import ValidationError

__all__ = (
    "dict_to_query_string",
    "get_query_string",
    "parse_query_string",
    "query_string_to_dict",
    "sort_url_parameters",
    "sort_url_parameters_in_url",
    "to_query_string",
)


def _split_pairs(query: str) -> list[tuple[str, str]]:
    pairs = []
    for item in query.split("&"):
        if not item:
            continue
        key, _, value = item.partition("=")
        pairs.append((key, value))
    return pairs


def sort_url_parameters(query: str | None, encode_values: bool = False) -> str:
    """Sort ``k=v&k=v`` by key in ordinal order.

    Examples:
        >>> sort_url_parameters("b=2&a=1&B=3&a=9")
        'B=3&a=1&b=2'
    """

    if not query or not query.strip():
        return ""
    first: dict[str, str] = {}
    for key, value in _split_pairs(query):
        if key not in first:
            first[key] = quote_plus(value) if encode_values else value
    return "&".join(f"{key}={first[key]}" for key in sorted(first))


def sort_url_parameters_in_url(url: str, encode_values: bool = False) -> str:
    """Sort the query of an absolute URL, keeping scheme, host, path and fragment.

    Raises:
        ValidationError: ``url`` is not absolute.
    """

    parts = urlsplit(url or "")
    if not parts.scheme or not parts.netloc:
        raise ValidationError(f"Invalid absolute URL: {url!r}")
    query = sort_url_parameters(parts.query, encode_values)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def query_string_to_dict(query: str | None) -> dict[str, str]:
    """Decode values of ``k=v&k=v`` (optional leading ``?``); later keys overwrite."""

    result: dict[str, str] = {}
    if not query or not query.strip():
        return result
    for key, value in _split_pairs(query.removeprefix("?")):
        result[key] = unquote_plus(value)
    return result


def dict_to_query_string(mapping: Mapping[str, str] | None, encode_values: bool = True) -> str:
    if not mapping:
        return ""
    return "&".join(
        f"{key}={quote_plus(value or '') if encode_values else (value or '')}"
        for key, value in mapping.items()
    )


def get_query_string(url: str) -> str:
    """Everything after the first ``?`` up to any fragment, or ``""``."""

    _, sep, query = url.partition("?")
    if not sep:
        return ""
    return query.split("#", 1)[0]


def parse_query_string(url: str | None) -> dict[str, str]:
    """Decode keys and values of the query part of ``url``."""

    result: dict[str, str] = {}
    if not url or "?" not in url:
        return result
    for item in get_query_string(url).split("&"):
        if not item.strip():
            continue
        key, _, value = item.partition("=")
        result[unquote_plus(key)] = unquote_plus(value)
    return result


def to_query_string(mapping: Mapping[str, str] | None) -> str:
    """Encode keys and values of ``mapping`` as a form query string."""

    if not mapping:
        return ""
    return "&".join(f"{quote_plus(key)}={quote_plus(value or '')}" for key, value in mapping.items())
