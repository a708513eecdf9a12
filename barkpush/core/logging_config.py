"""
Structured JSON Logging Configuration

Provides centralized logging configuration with:
- JSON formatted output for machine parsing
- Dispatch ID tracking via contextvars, so every log line of one
  multi-device send can be correlated
- Optional file rotation
- Redaction helpers for device and provider tokens
"""
import contextvars
import logging
import logging.handlers
import os
import re
from datetime import datetime, timezone
from typing import Optional

from pythonjsonlogger import jsonlogger

# Context variable for dispatch ID propagation
dispatch_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'dispatch_id', default=None
)


class DispatchIdFilter(logging.Filter):
    """
    Logging filter that adds dispatch_id to all log records.

    Concurrent per-device pushes run as separate tasks that inherit the
    context of the dispatch that spawned them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.dispatch_id = dispatch_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Filter that sanitizes log messages to prevent log injection attacks.

    Notification titles and APNS reasons end up in messages, so newlines
    are flattened before they reach a handler.
    """

    DANGEROUS_PATTERNS = [
        (r'\r\n', ' '),  # CRLF injection
        (r'\n', ' '),    # Newline injection
        (r'\r', ' '),    # Carriage return injection
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.DANGEROUS_PATTERNS:
                record.msg = re.sub(pattern, replacement, record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                sanitize_log_value(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter that adds standard fields to all log entries.

    Output format:
    {
        "timestamp": "2025-11-23T10:30:00.000Z",
        "level": "INFO",
        "message": "APNS notification sent successfully",
        "module": "apns_provider",
        "dispatch_id": "uuid-here",
        "logger": "barkpush.services.push.apns_provider",
        ...extra fields...
    }
    """

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        log_record['level'] = record.levelname
        log_record['module'] = record.module
        log_record['logger'] = record.name
        log_record['dispatch_id'] = getattr(record, 'dispatch_id', '-')

        if record.funcName:
            log_record['function'] = record.funcName

        if 'message' not in log_record:
            log_record['message'] = record.getMessage()


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure application-wide logging with JSON format.

    Library code never calls this; it is for applications embedding
    barkpush that want the same structured output.

    Args:
        log_level: Override log level (default from settings.LOG_LEVEL)
        log_file: Optional path of a rotating log file (default settings.LOG_FILE)

    Returns:
        Root logger configured for the application
    """
    from barkpush.core.config import settings

    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    log_file = log_file or settings.LOG_FILE

    json_formatter = CustomJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(json_formatter)
    console_handler.addFilter(DispatchIdFilter())
    console_handler.addFilter(SanitizingFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(json_formatter)
        file_handler.addFilter(DispatchIdFilter())
        file_handler.addFilter(SanitizingFilter())
        root_logger.addHandler(file_handler)

    # Suppress noisy third-party loggers
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('hpack').setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the application's configuration.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def set_dispatch_id(dispatch_id: Optional[str]) -> contextvars.Token:
    """
    Set the dispatch ID for the current context.

    Args:
        dispatch_id: UUID string for the current dispatch

    Returns:
        Token that can be used to reset the context
    """
    return dispatch_id_var.set(dispatch_id)


def get_dispatch_id() -> Optional[str]:
    """Get the current dispatch ID from context, or None if not set."""
    return dispatch_id_var.get()


def clear_dispatch_id(token: contextvars.Token) -> None:
    """
    Clear the dispatch ID context using the token from set_dispatch_id.

    Args:
        token: Token returned from set_dispatch_id
    """
    dispatch_id_var.reset(token)


def sanitize_log_value(value: str) -> str:
    """
    Sanitize a value for safe logging, preventing log injection.

    Args:
        value: String value to sanitize

    Returns:
        Sanitized string safe for logging
    """
    if not isinstance(value, str):
        return str(value)

    sanitized = value.replace('\r\n', ' ').replace('\n', ' ').replace('\r', ' ')

    # Limit length to prevent log flooding
    max_length = 10000
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + '...[truncated]'

    return sanitized


def redact_token(value: Optional[str], show_chars: int = 8) -> str:
    """
    Shorten a device or provider token for logging.

    Example:
        >>> redact_token("a1b2c3d4e5f6a7b8c9d0")
        'a1b2c3d4...'
        >>> redact_token("short")
        '****'
    """
    if not value or len(value) <= show_chars:
        return "****"
    return value[:show_chars] + "..."
