import json
import logging

from contact_api.core.config import Settings
from contact_api.core.logging_config import JSONFormatter, RequestIDFilter, configure_logging
from contact_api.core.request_context import reset_request_id, set_request_id


def _record(msg="hello", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord("contact_api.test", level, __file__, 1, msg, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_filter_injects_current_request_id():
    token = set_request_id("req-123")
    try:
        record = _record()
        assert RequestIDFilter().filter(record) is True
        assert record.request_id == "req-123"
    finally:
        reset_request_id(token)


def test_filter_keeps_explicit_request_id():
    record = _record(request_id="explicit")
    RequestIDFilter().filter(record)
    assert record.request_id == "explicit"


def test_filter_defaults_to_dash_outside_requests():
    record = _record()
    RequestIDFilter().filter(record)
    assert record.request_id == "-"


def test_json_formatter_shape():
    record = _record(request_id="req-1", metadata={"stage": "delivering"})
    entry = json.loads(JSONFormatter().format(record))

    assert entry["level"] == "INFO"
    assert entry["message"] == "hello"
    assert entry["context"] == "contact_api.test"
    assert entry["requestId"] == "req-1"
    assert entry["metadata"] == {"stage": "delivering"}
    assert entry["timestamp"].endswith("Z")
    assert "error" not in entry


def test_json_formatter_includes_error():
    try:
        raise ValueError("bad value")
    except ValueError:
        import sys

        record = _record(level=logging.ERROR, exc_info=sys.exc_info(), request_id="-")

    entry = json.loads(JSONFormatter().format(record))
    assert entry["error"]["name"] == "ValueError"
    assert entry["error"]["message"] == "bad value"
    assert "Traceback" in entry["error"]["stack"]
    assert "requestId" not in entry


def test_debug_only_when_enabled():
    root = logging.getLogger()
    previous_level = root.level
    try:
        configure_logging(Settings(log_level="DEBUG", debug_logging=False))
        assert root.level == logging.INFO

        configure_logging(Settings(debug_logging=True))
        assert root.level == logging.DEBUG
        assert [h.get_name() for h in root.handlers].count("contact_api") == 1
    finally:
        configure_logging(Settings())
        root.setLevel(previous_level)


def test_json_logs_default_to_production():
    assert Settings(environment="production").use_json_logs is True
    assert Settings(environment="development").use_json_logs is False
    assert Settings(environment="development", log_json=True).use_json_logs is True
