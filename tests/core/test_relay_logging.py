"""Tests for structured log formatting and redaction."""

import json
import logging
import sys

from relay.core.logging import (
    _ConsoleStructuredFormatter,
    _JsonLineErrorFormatter,
    _JsonLineStructuredFormatter,
    _redact_value,
    _rotate_jsonl_namer,
    _sanitize_filename,
    _StructuredLogFilter,
)


def make_record(msg: str = "hello", level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("relay.test", level, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedactValue:
    def test_redacts_provider_payload_fields(self):
        data = {
            "b64_data": "AAAA",
            "botPhoto": "data:image/jpeg;base64,AAAA",
            "Authorization": "Token abcdef123456",
            "meeting_url": "https://meet.example.com/abc",
        }

        result = _redact_value(data)

        assert result["b64_data"] == "<redacted>"
        assert result["botPhoto"] == "<redacted>"
        assert result["Authorization"] == "<redacted>"
        assert result["meeting_url"] == "https://meet.example.com/abc"

    def test_redacts_token_in_string(self):
        result = _redact_value("sent header Token abcdef1234567890")
        assert "abcdef1234567890" not in result
        assert "Token <redacted>" in result

    def test_nested_lists(self):
        result = _redact_value({"items": [{"password": "x"}, ("keep",)]})
        assert result == {"items": [{"password": "<redacted>"}, ("keep",)]}


def test_sanitize_filename():
    assert _sanitize_filename("Meet Transcript Relay") == "meet_transcript_relay"
    assert _sanitize_filename("...") == "relay"


def test_rotated_file_keeps_jsonl_suffix():
    assert _rotate_jsonl_namer("logs/relay_errors_1.jsonl.20240501_000000") == (
        "logs/relay_errors_1_20240501_000000.jsonl"
    )
    assert _rotate_jsonl_namer("logs/plain.log") == "logs/plain.log"


def test_structured_payload_contains_context():
    record = make_record(
        component="session_router",
        operation="deliver",
        item_id="bot-1",
        context_data={"connection_id": "conn-a", "api_key": "k"},
    )

    payload = json.loads(_JsonLineStructuredFormatter().format(record))

    assert payload["component"] == "session_router"
    assert payload["operation"] == "deliver"
    assert payload["item_id"] == "bot-1"
    assert payload["context_data"] == {"connection_id": "conn-a", "api_key": "<redacted>"}


def test_error_payload_includes_exception():
    try:
        raise ValueError("broken sink")
    except ValueError:
        record = make_record("write failed", logging.ERROR, component="persistence")
        record.exc_info = sys.exc_info()

    payload = json.loads(_JsonLineErrorFormatter().format(record))

    assert payload["error_type"] == "ValueError"
    assert payload["error_message"] == "broken sink"
    assert "Traceback" in payload["stack_trace"]


def test_structured_filter_skips_plain_records():
    log_filter = _StructuredLogFilter()

    assert log_filter.filter(make_record()) is False
    assert log_filter.filter(make_record(operation="deliver")) is True


def test_console_formatter_appends_metadata():
    formatter = _ConsoleStructuredFormatter("%(message)s")
    record = make_record(
        "Delivered", component="session_router", item_id="bot-1", context_data={"b64_data": "AAAA"}
    )

    line = formatter.format(record)

    assert line.startswith("Delivered | component=session_router item_id=bot-1")
    assert '"b64_data": "<redacted>"' in line
    assert formatter.format(make_record("plain")) == "plain"
