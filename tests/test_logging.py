"""Tests for structured logging helpers."""

import io
import json
import logging
import sys

from TunnelHttp.logging_utils import JSONFormatter, mask_sensitive_data, setup_logging


def test_mask_sensitive_data():
    payload = {
        "url": "http://example.com",
        "Authorization": "Basic abc",
        "proxy_password": "hunter2",
        "headers": {"Cookie": "sid=1", "Accept": "*/*"},
        "token": "",
    }
    masked = mask_sensitive_data(payload)
    assert masked["url"] == "http://example.com"
    assert masked["Authorization"] == "***"
    assert masked["proxy_password"] == "***"
    assert masked["headers"] == {"Cookie": "***", "Accept": "*/*"}
    assert masked["token"] == ""
    assert payload["Authorization"] == "Basic abc"


def test_setup_logging_is_idempotent():
    setup_logging("INFO")
    logger = setup_logging("WARNING")
    managed = [h for h in logger.handlers if getattr(h, "_tunnelhttp_managed", False)]
    assert len(managed) == 1
    assert logger.level == logging.WARNING
    assert logger.propagate is False


def test_json_output_includes_extra_fields():
    stream = io.StringIO()
    setup_logging("DEBUG", json_format=True, stream=stream)
    logging.getLogger("TunnelHttp.client").info(
        "Request completed", extra={"status_code": 200, "cookie": "sid=1"}
    )
    record = json.loads(stream.getvalue().strip())
    assert record["level"] == "INFO"
    assert record["logger"] == "TunnelHttp.client"
    assert record["message"] == "Request completed"
    assert record["status_code"] == 200
    assert record["cookie"] == "***"
    assert record["timestamp"].endswith("Z")


def test_formatter_includes_exception():
    formatter = JSONFormatter()
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("TunnelHttp", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    payload = json.loads(formatter.format(record))
    assert "RuntimeError: boom" in payload["exc_info"]
