"""Turn request body values into wire bytes plus an inferred content type.

Usage:
    from TunnelHttp.content import ContentEncoder

    encoded = ContentEncoder().encode({"q": "hello"})
    encoded.content       # b"q=hello"
    encoded.content_type  # "application/x-www-form-urlencoded"

When upload files are supplied the body is always ``multipart/form-data``;
otherwise the body type decides the encoding (text, form, raw bytes, stream or
JSON).
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING, Any, Iterable, Mapping
from urllib.parse import unquote_plus, urlencode

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type checkers only
    from .models import UploadFile

__all__ = (
    "ContentEncoder",
    "EncodedBody",
    "MIME_TYPES",
    "guess_mime_type",
    "parse_form_data",
)

LOGGER = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
FORM_URLENCODED = "application/x-www-form-urlencoded"
JSON_TYPE = "application/json"
TEXT_PLAIN = "text/plain"

MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".xml": "application/xml",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
}
"""Fixed extension table; anything else is ``application/octet-stream``."""


def guess_mime_type(file_name: str | None) -> str:
    """Return the MIME type for ``file_name`` based on its extension.

    Examples:
        >>> guess_mime_type("scan.PNG")
        'image/png'
        >>> guess_mime_type("archive.7z")
        'application/octet-stream'
    """

    if not file_name:
        return OCTET_STREAM
    return MIME_TYPES.get(PurePath(file_name).suffix.lower(), OCTET_STREAM)


def parse_form_data(text: str | None) -> dict[str, str]:
    """Decode ``k=v&k=v`` into a dict; pairs without ``=`` are skipped."""

    result: dict[str, str] = {}
    if not text or not text.strip():
        return result
    for pair in text.split("&"):
        key, sep, value = pair.partition("=")
        if not sep or not key:
            continue
        result[unquote_plus(key)] = unquote_plus(value)
    return result


def _is_text_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    )


def _quote_disposition(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


@dataclass(frozen=True)
class EncodedBody:
    """Wire body and the content type inferred for it."""

    content: bytes
    content_type: str | None = None

    def __len__(self) -> int:
        return len(self.content)


class ContentEncoder:
    """Encode request bodies the way a browser-like client would.

    Args:
        boundary_factory: Callable returning a multipart boundary string;
            override in tests for deterministic output.
    """

    def __init__(self, boundary_factory=None):
        self._boundary_factory = boundary_factory or (lambda: f"----TunnelHttpBoundary{uuid.uuid4().hex}")

    def encode(self, body: Any, files: Iterable["UploadFile"] = ()) -> EncodedBody | None:
        """Encode ``body`` (and ``files``) for sending.

        Args:
            body: ``None``, ``str``, a ``str -> str`` mapping, a byte buffer, a
                readable stream, or any JSON-serialisable object.
            files: Upload files; when non-empty the result is multipart.

        Returns:
            :class:`EncodedBody`, or ``None`` when there is nothing to send.
        """

        files = list(files)
        if files:
            return self.encode_multipart(body, files)
        return self.encode_regular(body)

    def encode_regular(self, body: Any) -> EncodedBody | None:
        if body is None:
            return None
        if isinstance(body, str):
            stripped = body.lstrip()
            content_type = JSON_TYPE if stripped.startswith(("{", "[")) else TEXT_PLAIN
            return EncodedBody(body.encode("utf-8"), content_type)
        if _is_text_mapping(body):
            return EncodedBody(urlencode(list(body.items())).encode("ascii"), FORM_URLENCODED)
        if isinstance(body, (bytes, bytearray, memoryview)):
            return EncodedBody(bytes(body), OCTET_STREAM)
        if callable(getattr(body, "read", None)):
            chunk = body.read()
            data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk or b"")
            return EncodedBody(data, OCTET_STREAM)
        return EncodedBody(json.dumps(body, ensure_ascii=False).encode("utf-8"), JSON_TYPE)

    def encode_multipart(self, body: Any, files: Iterable["UploadFile"]) -> EncodedBody:
        boundary = self._boundary_factory()
        parts: list[bytes] = []

        for name, value, content_type in self._form_fields(body):
            headers = [f'Content-Disposition: form-data; name="{_quote_disposition(name)}"']
            if content_type:
                headers.append(f"Content-Type: {content_type}")
            parts.append(self._part(boundary, headers, value.encode("utf-8")))

        for upload in files:
            headers = [
                "Content-Disposition: form-data; "
                f'name="{_quote_disposition(upload.field_name)}"; '
                f'filename="{_quote_disposition(upload.file_name)}"',
                f"Content-Type: {upload.content_type or OCTET_STREAM}",
            ]
            parts.append(self._part(boundary, headers, upload.read()))

        content = b"".join(parts) + f"--{boundary}--\r\n".encode("ascii")
        return EncodedBody(content, f"multipart/form-data; boundary={boundary}")

    @staticmethod
    def _form_fields(body: Any) -> list[tuple[str, str, str | None]]:
        if body is None:
            return []
        if isinstance(body, str):
            return [(key, value, None) for key, value in parse_form_data(body).items()]
        if _is_text_mapping(body):
            return [(key, value, None) for key, value in body.items()]
        return [("json_data", json.dumps(body, ensure_ascii=False), "application/json; charset=utf-8")]

    @staticmethod
    def _part(boundary: str, headers: list[str], payload: bytes) -> bytes:
        head = f"--{boundary}\r\n" + "".join(f"{line}\r\n" for line in headers) + "\r\n"
        return head.encode("utf-8") + payload + b"\r\n"
