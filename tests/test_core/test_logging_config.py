"""
Unit tests for logging configuration
"""
import json
import logging
import uuid

import pytest

from barkpush.core.logging_config import (
    CustomJsonFormatter,
    DispatchIdFilter,
    SanitizingFilter,
    clear_dispatch_id,
    get_dispatch_id,
    get_logger,
    redact_token,
    sanitize_log_value,
    set_dispatch_id,
    setup_logging,
)


def make_record(msg="Test message", args=(), name="test"):
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None
    )


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestDispatchIdContext:
    """Test dispatch ID context variable functionality"""

    def test_set_and_get_dispatch_id(self):
        test_id = str(uuid.uuid4())
        token = set_dispatch_id(test_id)

        assert get_dispatch_id() == test_id

        clear_dispatch_id(token)

    def test_get_dispatch_id_returns_none_when_not_set(self):
        assert get_dispatch_id() is None

    def test_clear_dispatch_id_resets_context(self):
        """clear_dispatch_id should reset to previous value"""
        original_id = str(uuid.uuid4())
        token1 = set_dispatch_id(original_id)

        token2 = set_dispatch_id(str(uuid.uuid4()))
        clear_dispatch_id(token2)
        assert get_dispatch_id() == original_id

        clear_dispatch_id(token1)
        assert get_dispatch_id() is None


class TestDispatchIdFilter:
    """Test dispatch ID logging filter"""

    def test_filter_adds_dispatch_id_to_record(self):
        record = make_record()
        test_id = str(uuid.uuid4())
        token = set_dispatch_id(test_id)

        try:
            assert DispatchIdFilter().filter(record) is True
            assert record.dispatch_id == test_id
        finally:
            clear_dispatch_id(token)

    def test_filter_uses_dash_when_no_dispatch_id(self):
        record = make_record()

        assert DispatchIdFilter().filter(record) is True
        assert record.dispatch_id == "-"


class TestSanitizingFilter:
    """Test log sanitization filter"""

    def test_filter_removes_newlines(self):
        record = make_record("Line 1\nLine 2\r\nLine 3")

        SanitizingFilter().filter(record)

        assert record.msg == "Line 1 Line 2 Line 3"

    def test_filter_sanitizes_args(self):
        """Notification titles passed as args are flattened too"""
        record = make_record("Title: %s", ("Server\ndown",))

        SanitizingFilter().filter(record)

        assert record.args == ("Server down",)


class TestSanitizeLogValue:
    """Test sanitize_log_value helper function"""

    def test_sanitize_removes_newlines(self):
        assert sanitize_log_value("hello\r\nworld\rtest\n") == "hello world test "

    def test_sanitize_truncates_long_strings(self):
        result = sanitize_log_value("a" * 20000)

        assert len(result) < 20000
        assert result.endswith("[truncated]")

    def test_sanitize_handles_non_strings(self):
        assert sanitize_log_value(12345) == "12345"


class TestRedactToken:
    """Test device and provider token redaction"""

    def test_long_token_shortened(self):
        token = "a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6"
        assert redact_token(token) == "a1b2c3d4..."

    @pytest.mark.parametrize("value", [None, "", "short", "12345678"])
    def test_short_or_missing_token_masked(self, value):
        assert redact_token(value) == "****"

    def test_custom_visible_chars(self):
        assert redact_token("abcdefghijkl", show_chars=4) == "abcd..."


class TestCustomJsonFormatter:
    """Test custom JSON log formatter"""

    def test_formatter_produces_valid_json(self):
        formatter = CustomJsonFormatter()
        record = make_record(name="barkpush.services.push.apns_provider")
        record.dispatch_id = "test-uuid"

        parsed = json.loads(formatter.format(record))

        assert "timestamp" in parsed
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Test message"
        assert parsed["logger"] == "barkpush.services.push.apns_provider"
        assert parsed["dispatch_id"] == "test-uuid"

    def test_formatter_includes_extra_fields(self):
        """Fields passed through extra= appear at top level"""
        formatter = CustomJsonFormatter()
        record = make_record("Dispatch complete")
        record.total_devices = 3
        record.failed = 1

        parsed = json.loads(formatter.format(record))

        assert parsed["total_devices"] == 3
        assert parsed["failed"] == 1
        assert parsed["dispatch_id"] == "-"


class TestSetupLogging:
    """Test logging setup function"""

    def test_setup_logging_respects_log_level(self, restore_root_logger):
        logger = setup_logging(log_level="WARNING")

        assert isinstance(logger, logging.Logger)
        assert logger.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_setup_logging_writes_json_file(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "barkpush.log"
        setup_logging(log_level="INFO", log_file=str(log_file))

        token = set_dispatch_id("dispatch-1")
        try:
            logging.getLogger("barkpush.test").info("hello\nworld", extra={"devices": 2})
        finally:
            clear_dispatch_id(token)
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        parsed = json.loads(line)
        assert parsed["message"] == "hello world"
        assert parsed["dispatch_id"] == "dispatch-1"
        assert parsed["devices"] == 2


class TestGetLogger:
    def test_get_logger_returns_logger_instance(self):
        logger = get_logger("test.module")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.module"
