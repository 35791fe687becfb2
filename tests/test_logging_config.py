"""Tests for logging configuration module.

Verifies that logging configuration:
1. Drops credential fields (BLOCKED_FIELDS)
2. Collapses URLs to their path
3. Produces valid JSON output
"""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator

import pytest

from restcore.logging_config import (
    BLOCKED_FIELDS,
    JsonFormatter,
    SimpleFormatter,
    _filter_log_record,
    _normalize_url,
    _sanitize_text,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str = "test", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestBlockedFields:
    """Test that credential fields are properly blocked."""

    def test_blocked_fields_cover_credentials(self) -> None:
        assert {"api_key", "token", "authorization", "jwt", "credential"} <= BLOCKED_FIELDS

    def test_filter_removes_api_key(self) -> None:
        filtered = _filter_log_record({"api_key": "supersecret123", "msg": "test"})
        assert "api_key" not in filtered
        assert "msg" in filtered

    def test_filter_removes_partial_matches(self) -> None:
        """Fields containing blocked words should be removed."""
        record = {
            "x_api_key_header": "value",
            "refresh_token": "value",
            "jwt_claims": "value",
            "safe_field": "keep",
        }
        filtered = _filter_log_record(record)
        assert set(filtered) == {"safe_field"}

    def test_filter_case_insensitive(self) -> None:
        filtered = _filter_log_record({"Authorization": "Bearer x", "API_KEY": "y"})
        assert filtered == {}


class TestSanitizeText:
    """Tests for _sanitize_text function."""

    def test_url_query_string_removed(self) -> None:
        result = _sanitize_text("GET https://api.example.test/api/1/key/me?api_key=secret")
        assert "secret" not in result
        assert "/api/1/key/me" in result

    def test_bearer_token_redacted(self) -> None:
        result = _sanitize_text("Auth failed: bearer abc123xyz")
        assert "abc123xyz" not in result
        assert "[TOKEN]" in result

    def test_api_key_redacted(self) -> None:
        result = _sanitize_text("Using api_key=sk-secret-12345")
        assert "sk-secret-12345" not in result
        assert "[API_KEY]" in result

    def test_empty_and_safe_text_unchanged(self) -> None:
        assert _sanitize_text("") == ""
        text = "Rate limit hit, waiting for retry"
        assert _sanitize_text(text) == text


class TestPlaceholderFields:
    """URLs become endpoints; bodies and params become placeholders."""

    def test_url_normalized_to_endpoint(self) -> None:
        filtered = _filter_log_record({"url": "https://itch.io/api/1/key/my-games?page=2"})
        assert filtered == {"endpoint": "/api/1/key/my-games"}

    def test_normalize_url(self) -> None:
        assert _normalize_url("https://example.com/a/b?c=d") == "/a/b"
        assert _normalize_url("https://example.com") == "/"

    @pytest.mark.parametrize(
        ("key", "placeholder"),
        [("body", "[BODY]"), ("params", "[PARAMS]"), ("headers", "[HEADERS]")],
    )
    def test_bulky_fields_replaced(self, key: str, placeholder: str) -> None:
        assert _filter_log_record({key: {"game_id": 1}})[key] == placeholder


class TestFilterLogRecord:
    """Test the _filter_log_record function."""

    def test_scalar_fields_preserved(self) -> None:
        record = {"event": "retry", "attempt": 2, "delay_ms": 1000.0, "status": None}
        assert _filter_log_record(record) == record

    def test_list_capped_at_10(self) -> None:
        assert _filter_log_record({"items": list(range(15))})["items"] == "[list:15 items]"
        assert _filter_log_record({"items": [1, 2, 3]})["items"] == [1, 2, 3]

    def test_nested_dict_filtered(self) -> None:
        record = {"config": {"timeout_ms": 30, "api_key": "secret"}}
        assert _filter_log_record(record) == {"config": {"timeout_ms": 30}}

    def test_depth_limit(self) -> None:
        record = {"a": {"b": {"c": {"d": {"e": 1}}}}}
        filtered = _filter_log_record(record)
        assert filtered["a"]["b"]["c"]["d"] == {"_truncated": "max depth exceeded"}


class TestJsonFormatter:
    """Test the JSON log formatter."""

    def test_required_fields(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record("hello world")))
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["msg"] == "hello world"
        assert "ts" in parsed
        assert "file" not in parsed

    def test_warning_includes_location(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record(level=logging.WARNING)))
        assert parsed["file"] == "test.py"
        assert parsed["line"] == 10

    def test_extra_fields_filtered(self) -> None:
        record = _record(request_id=7, api_key="secret123", event="request")
        parsed = json.loads(JsonFormatter().format(record))
        assert parsed["request_id"] == 7
        assert parsed["event"] == "request"
        assert "api_key" not in parsed


class TestSimpleFormatter:
    """Test the simple human-readable formatter."""

    def test_basic_format(self) -> None:
        output = SimpleFormatter().format(_record("hello"))
        assert output.startswith("INFO")
        assert "test: hello" in output

    def test_extra_fields_appended(self) -> None:
        output = SimpleFormatter().format(_record("message", attempt=3))
        assert output.endswith("| attempt=3")


class TestSetupLogging:
    """Test the setup_logging function."""

    def test_setup_logging_json(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        get_logger("test_json").info("test message", extra={"key": "value"})

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["msg"] == "test message"
        assert parsed["key"] == "value"

    def test_setup_logging_simple(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=False, stream=stream)

        get_logger("test_simple").info("simple test")

        output = stream.getvalue()
        assert "simple test" in output
        with pytest.raises(json.JSONDecodeError):
            json.loads(output.strip())

    def test_setup_logging_level(self) -> None:
        stream = io.StringIO()
        setup_logging(level=logging.WARNING, json_format=False, stream=stream)

        logger = get_logger("test_level")
        logger.info("info message")
        logger.warning("warning message")

        output = stream.getvalue()
        assert "info message" not in output
        assert "warning message" in output


class TestSecurityCompliance:
    """End-to-end: credentials never reach the output stream."""

    def test_no_credentials_in_json_output(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        get_logger("security_test").info(
            "Sending request",
            extra={
                "api_key": "sk-secret-key-12345",
                "authorization": "Bearer bearer-token-xyz",
                "url": "https://itch.io/api/1/key/me?token=abc",
                "method": "GET",
            },
        )

        output = stream.getvalue()
        assert "sk-secret-key-12345" not in output
        assert "bearer-token-xyz" not in output
        assert "token=abc" not in output
        parsed = json.loads(output.strip())
        assert parsed["endpoint"] == "/api/1/key/me"
        assert parsed["method"] == "GET"

    def test_url_in_exception_sanitized(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        try:
            raise ValueError("Failed to fetch https://api.example.com/data?api_key=secret123")
        except ValueError:
            get_logger("exc_test").exception("Request failed")

        parsed = json.loads(stream.getvalue().strip())
        assert "secret123" not in parsed["exc"]
        assert "/data" in parsed["exc"]
