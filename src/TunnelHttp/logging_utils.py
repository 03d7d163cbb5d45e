"""Structured logging helpers for the TunnelHttp client."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any, Optional

__all__ = ["JSONFormatter", "mask_sensitive_data", "setup_logging"]

LOGGER_NAME = "TunnelHttp"

_SENSITIVE_KEYS = ("password", "authorization", "cookie", "token", "secret")
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


def mask_sensitive_data(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``payload`` with credential-like fields masked."""

    def _mask(key: str, value: Any) -> Any:
        lowered = key.lower()
        if any(marker in lowered for marker in _SENSITIVE_KEYS):
            return "***" if value else value
        if isinstance(value, dict):
            return {sub_key: _mask(str(sub_key), sub_value) for sub_key, sub_value in value.items()}
        return value

    return {key: _mask(key, value) for key, value in payload.items()}


class JSONFormatter(logging.Formatter):
    """Formatter emitting one masked JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    *,
    json_format: bool = False,
    stream: Optional[IO[str]] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Install the managed handler on the ``TunnelHttp`` logger.

    Repeated calls replace the previously managed handler instead of stacking
    another one.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_tunnelhttp_managed", False):
            logger.removeHandler(handler)
            if getattr(handler, "stream", None) not in (sys.stdout, sys.stderr):
                handler.close()

    handler = logging.StreamHandler(stream or sys.stderr)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._tunnelhttp_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = propagate
    return logger
