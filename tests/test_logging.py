import json
import logging

from tableside.core.logging_setup import JsonFormatter
from tableside.core.request_context import clear_request_context, set_request_context


def _record(message, **extra):
    record = logging.LogRecord("tableside.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_includes_request_context():
    set_request_context(request_id="req-1", restaurant_id="5", device_id="device-9")
    try:
        payload = json.loads(JsonFormatter("%(message)s").format(_record("session opened", status_code=201)))
    finally:
        clear_request_context()

    assert payload["request_id"] == "req-1"
    assert payload["restaurant_id"] == "5"
    assert payload["device_id"] == "device-9"
    assert payload["status_code"] == 201
    assert payload["level"] == "INFO"
    assert "error_kind" not in payload


def test_formatter_masks_secrets():
    payload = json.loads(
        JsonFormatter("%(message)s").format(_record("login password=hunter22 Authorization: Bearer abc.def"))
    )

    assert "hunter22" not in payload["message"]
    assert "abc.def" not in payload["message"]
    assert "password=***" in payload["message"]
