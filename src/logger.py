"""
Logging Management Module.

Configures application-wide logging with structured (dictionary) messages.
Log records whose message is a dict are rendered as single-line JSON so they
can be shipped to any log collector, while plain string messages pass through
unchanged.

Features:
- Console and rotating file handlers
- JSON rendering of dictionary messages
- Redaction of credentials, tokens and e-mail addresses before output
"""

import json
import logging
import os
import re
from logging.handlers import RotatingFileHandler
from typing import Any, List, Tuple


SENSITIVE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"sk_live_[a-zA-Z0-9_-]+"), "sk_live_[REDACTED]"),
    (re.compile(r"sk_test_[a-zA-Z0-9_-]+"), "sk_test_[REDACTED]"),
    (re.compile(r"whsec_[a-zA-Z0-9_-]+"), "whsec_[REDACTED]"),
    (re.compile(r"sk-[a-zA-Z0-9_-]{20,}"), "sk-[REDACTED]"),
    (re.compile(r"gh[psou]_[a-zA-Z0-9_-]+"), "gh*_[REDACTED]"),
    (
        re.compile(r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"),
        "[JWT_REDACTED]",
    ),
    (re.compile(r"Bearer\s+[a-zA-Z0-9_.-]+", re.IGNORECASE), "Bearer [REDACTED]"),
    (re.compile(r"Basic\s+[a-zA-Z0-9+/=]+", re.IGNORECASE), "Basic [REDACTED]"),
    (
        re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
        "[EMAIL_REDACTED]",
    ),
    (re.compile(r"password['\":\s]+[^\s'\"]+", re.IGNORECASE), "password: [REDACTED]"),
    (re.compile(r"secret['\":\s]+[^\s'\"]+", re.IGNORECASE), "secret: [REDACTED]"),
    (re.compile(r"AKIA[0-9A-Z]{16}"), "[AWS_KEY_REDACTED]"),
]


def sanitize(text: str) -> str:
    """
    Redact sensitive patterns from a string.

    Args:
        text (str): Text to sanitize

    Returns:
        str: Text with credentials and personal data replaced by placeholders
    """
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize strings inside dicts, lists and tuples."""
    if isinstance(value, str):
        return sanitize(value)
    if isinstance(value, dict):
        return {key: sanitize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    return value


class SanitizingFilter(logging.Filter):
    """Scrub secrets from the message and arguments of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_value(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = sanitize_value(record.args)
            else:
                record.args = tuple(sanitize_value(arg) for arg in record.args)
        return True


class StructuredFormatter(logging.Formatter):
    """Render dict messages as JSON, keeping the standard prefix."""

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            record = logging.makeLogRecord(record.__dict__)
            record.msg = json.dumps(record.msg, default=str)
            record.args = None
        return super().format(record)


class LogManager:
    """
    Builds and owns the application logger.

    Attributes:
        logger (logging.Logger): Configured application logger
    """

    FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def __init__(
        self,
        app_name: str,
        log_dir: str = "logs",
        development: bool = False,
        level: int = logging.INFO,
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 3,
    ):
        """
        Initialize logging handlers for the application.

        Args:
            app_name (str): Logger name, also used for the log file name
            log_dir (str): Directory for the rotating log file
            development (bool): Development mode logs everything at DEBUG
            level (int): Logging level outside development mode
            max_bytes (int): Size at which the log file rotates
            backup_count (int): Number of rotated files to keep
        """
        self.logger = logging.getLogger(app_name)
        self.logger.setLevel(logging.DEBUG if development else level)
        self.logger.propagate = False

        # Avoid duplicate handlers when the module is re-imported
        if self.logger.handlers:
            return

        formatter = StructuredFormatter(self.FORMAT)
        sanitizer = SanitizingFilter()

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.addFilter(sanitizer)
        self.logger.addHandler(console)

        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, f"{app_name}.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(sanitizer)
        self.logger.addHandler(file_handler)
