"""
Tests for failure classification, user-facing error messages and log
redaction.
"""

import asyncio
import logging

import pytest

from errors import (
    ErrorKind,
    PayloadTooLargeError,
    RetryableError,
    ServiceUnavailableError,
    classify_error,
    extract_status,
    sanitize_error,
    to_analysis_error,
)
from logger import LogManager, StructuredFormatter, sanitize


class StatusError(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


class ResponseError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.response = type("Response", (), {"status_code": status_code})()


@pytest.mark.parametrize(
    "error, kind",
    [
        (ConnectionError("boom"), ErrorKind.RETRYABLE),
        (Exception("fetch failed"), ErrorKind.RETRYABLE),
        (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
        (Exception("Request timed out"), ErrorKind.TIMEOUT),
        (StatusError("too big", 413), ErrorKind.PAYLOAD_TOO_LARGE),
        (Exception("This model's maximum context length is 128000 tokens"), ErrorKind.PAYLOAD_TOO_LARGE),
        (StatusError("Unauthorized", 401), ErrorKind.CLIENT_ERROR),
        (StatusError("Quota exceeded", 429), ErrorKind.CLIENT_ERROR),
        (ResponseError("Service Unavailable", 503), ErrorKind.SERVER_ERROR),
        (ValueError("boom"), ErrorKind.UNKNOWN),
    ],
)
def test_classify_error(error, kind):
    """Test the classification priority of raw failures."""
    assert classify_error(error) == kind


def test_network_takes_priority_over_status():
    """Test that a connection failure is retryable even with a 4xx status."""
    assert classify_error(StatusError("connection reset", 400)) == ErrorKind.RETRYABLE


def test_retryable_kinds():
    assert ErrorKind.RETRYABLE.retryable
    assert ErrorKind.TIMEOUT.retryable
    assert ErrorKind.SERVER_ERROR.retryable
    assert not ErrorKind.PAYLOAD_TOO_LARGE.retryable
    assert not ErrorKind.CLIENT_ERROR.retryable
    assert not ErrorKind.UNKNOWN.retryable


def test_to_analysis_error():
    """Test that raw failures are wrapped and classified ones pass through."""
    wrapped = to_analysis_error(StatusError("too big", 413), "OpenAI analysis failed")

    assert isinstance(wrapped, PayloadTooLargeError)
    assert wrapped.status == 413
    assert str(wrapped).startswith("OpenAI analysis failed: ")

    already = RetryableError("x")
    assert to_analysis_error(already) is already


def test_extract_status():
    assert extract_status(StatusError("x", 404)) == 404
    assert extract_status(ResponseError("x", 502)) == 502
    assert extract_status(ValueError("x")) is None


@pytest.mark.parametrize(
    "error, status",
    [
        (ServiceUnavailableError("OpenAI analysis unavailable after 4 attempts", attempts=4), 503),
        (PayloadTooLargeError("too big"), 413),
        (Exception("Repository not found"), 404),
        (Exception("API rate limit exceeded for installation"), 429),
        (Exception("sqlite3.OperationalError: database is locked"), 503),
        (Exception("something odd"), 500),
    ],
)
def test_sanitize_error(error, status):
    """Test that failures map to user-safe messages and statuses."""
    message, mapped_status = sanitize_error(error)

    assert mapped_status == status
    assert "sqlite3" not in message
    assert "attempts" not in message


def test_sanitize_redacts_secrets():
    text = (
        "token ghs_abcdef123456 key sk-abcdefghijklmnopqrstuvwxyz "
        "mail dev@example.com Bearer abc.def"
    )

    cleaned = sanitize(text)

    assert "ghs_abcdef123456" not in cleaned
    assert "sk-abcdefghijklmnopqrstuvwxyz" not in cleaned
    assert "dev@example.com" not in cleaned
    assert "Bearer [REDACTED]" in cleaned


def test_structured_formatter_renders_dicts_as_json():
    formatter = StructuredFormatter("%(message)s")
    record = logging.LogRecord(
        "test", logging.INFO, __file__, 1, {"message": "hello", "count": 2}, None, None
    )

    assert formatter.format(record) == '{"message": "hello", "count": 2}'


def test_log_manager_redacts_file_output(tmp_path):
    """Test that secrets never reach the log file."""
    log = LogManager("redaction-test", log_dir=str(tmp_path)).logger

    log.info({"message": "calling GitHub", "token": "ghp_secretsecret"})
    for handler in log.handlers:
        handler.flush()

    content = (tmp_path / "redaction-test.log").read_text()
    assert "ghp_secretsecret" not in content
    assert "calling GitHub" in content
