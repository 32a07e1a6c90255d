"""
Analysis Error Taxonomy.

Classifies failures raised by the VCS host, the language model and the
credit store into a small set of kinds that drive retry decisions, and maps
every failure to a user-safe message. Internal detail (upstream payloads,
stack traces) only ever reaches the log, never the user-facing message.
"""

import asyncio
import re
from enum import Enum
from typing import List, Optional, Tuple

import openai


class ErrorKind(Enum):
    """
    Classification of analysis failures.

    Attributes:
        RETRYABLE: Network or connection failure
        TIMEOUT: The call exceeded its wall-clock budget
        PAYLOAD_TOO_LARGE: Input must be shrunk, never retried as-is
        CLIENT_ERROR: 4xx other than 413, bad credentials or quota
        SERVER_ERROR: Upstream 5xx
        RATE_LIMITED: The VCS host refused further calls
        BUDGET_EXHAUSTED: The outbound call budget of the environment is spent
        SERVICE_UNAVAILABLE: Retries were exhausted
        INSUFFICIENT_CREDITS: The credit debit was refused
        EMPTY_INPUT: Nothing to analyze
        UNKNOWN: Anything else
    """

    RETRYABLE = "retryable"
    TIMEOUT = "timeout"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    BUDGET_EXHAUSTED = "budget_exhausted"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    EMPTY_INPUT = "empty_input"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RETRYABLE, ErrorKind.TIMEOUT, ErrorKind.SERVER_ERROR)


class AnalysisError(Exception):
    """Base class for classified analysis failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_status: Optional[int] = None

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else self.default_status

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class RetryableError(AnalysisError):
    kind = ErrorKind.RETRYABLE


class AnalysisTimeoutError(AnalysisError):
    kind = ErrorKind.TIMEOUT


class PayloadTooLargeError(AnalysisError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
    default_status = 413


class ClientError(AnalysisError):
    kind = ErrorKind.CLIENT_ERROR


class MilestoneParseError(ClientError):
    """The model answered with something that is not a milestone list."""


class ServerError(AnalysisError):
    kind = ErrorKind.SERVER_ERROR


class UnknownAnalysisError(AnalysisError):
    kind = ErrorKind.UNKNOWN


class RateLimitedError(AnalysisError):
    kind = ErrorKind.RATE_LIMITED
    default_status = 429


class SubrequestLimitError(AnalysisError):
    """The execution environment allows no further outbound calls."""

    kind = ErrorKind.BUDGET_EXHAUSTED


class ServiceUnavailableError(AnalysisError):
    kind = ErrorKind.SERVICE_UNAVAILABLE
    default_status = 503

    def __init__(self, message: str, attempts: int, status: Optional[int] = None):
        super().__init__(message, status)
        self.attempts = attempts


class EmptyHistoryError(AnalysisError):
    kind = ErrorKind.EMPTY_INPUT
    default_status = 400


class InsufficientCreditsError(AnalysisError):
    kind = ErrorKind.INSUFFICIENT_CREDITS
    default_status = 402

    def __init__(self, message: str, required: int, available: int):
        super().__init__(message)
        self.required = required
        self.available = available


class PaidOperationError(AnalysisError):
    """
    A paid operation failed after its credits were refunded.

    Carries only the sanitized, user-safe message. The original failure is
    chained as ``__cause__`` for internal logging.
    """

    def __init__(self, message: str, status: int, kind: ErrorKind):
        super().__init__(message, status)
        self.kind = kind


_KIND_TO_CLASS = {
    ErrorKind.RETRYABLE: RetryableError,
    ErrorKind.TIMEOUT: AnalysisTimeoutError,
    ErrorKind.PAYLOAD_TOO_LARGE: PayloadTooLargeError,
    ErrorKind.CLIENT_ERROR: ClientError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.UNKNOWN: UnknownAnalysisError,
}

_NETWORK_MARKERS = (
    "connection error",
    "connection reset",
    "connection refused",
    "econnrefused",
    "econnreset",
    "network",
    "fetch failed",
    "socket",
)
_TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout")
_SIZE_MARKERS = (
    "payload too large",
    "request too large",
    "request entity too large",
    "too large",
    "maximum context length",
    "context_length_exceeded",
)


def extract_status(error: BaseException) -> Optional[int]:
    """
    Find an HTTP status on an exception from any of the supported clients.

    Args:
        error (BaseException): Raised exception

    Returns:
        Optional[int]: HTTP status code if one is present
    """
    for attribute in ("status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify a failure into an ErrorKind.

    Checks run in priority order: network, timeout, payload size, other 4xx,
    5xx and finally unknown. Already classified errors keep their kind.

    Args:
        error (BaseException): Raised exception

    Returns:
        ErrorKind: Classification of the failure
    """
    if isinstance(error, AnalysisError):
        return error.kind

    message = str(error).lower()
    status = extract_status(error)

    if isinstance(error, (openai.APITimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (openai.APIConnectionError, ConnectionError)) or any(
        marker in message for marker in _NETWORK_MARKERS
    ):
        return ErrorKind.RETRYABLE
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if status == 413 or any(marker in message for marker in _SIZE_MARKERS):
        return ErrorKind.PAYLOAD_TOO_LARGE
    if status is not None and 400 <= status < 500:
        return ErrorKind.CLIENT_ERROR
    if status is not None and status >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def to_analysis_error(error: BaseException, context: str = "") -> AnalysisError:
    """
    Wrap any exception in the AnalysisError subclass matching its kind.

    Args:
        error (BaseException): Raised exception
        context (str): Prefix describing the failed operation

    Returns:
        AnalysisError: Classified error, the input itself if already classified
    """
    if isinstance(error, AnalysisError):
        return error
    kind = classify_error(error)
    message = f"{context}: {error}" if context else str(error)
    return _KIND_TO_CLASS[kind](message, extract_status(error))


# Fallback mappings for errors that were never classified, checked in order
ERROR_MAPPINGS: List[Tuple[re.Pattern, str, int]] = [
    (
        re.compile(r"unauthorized|unauthenticated|not authenticated", re.I),
        "Please sign in to continue",
        401,
    ),
    (re.compile(r"forbidden|access denied|permission denied", re.I), "Access denied", 403),
    (
        re.compile(r"rate limit|too many requests", re.I),
        "Too many requests. Please try again later",
        429,
    ),
    (re.compile(r"not found|does not exist", re.I), "Resource not found", 404),
    (re.compile(r"insufficient credits", re.I), "Insufficient credits", 402),
    (
        re.compile(r"openai|ai service|timeout|connection error|econnrefused|etimedout", re.I),
        "Service temporarily unavailable. Please try again",
        503,
    ),
    (
        re.compile(r"github|api rate limit", re.I),
        "GitHub service temporarily unavailable. Please try again later",
        503,
    ),
    (
        re.compile(r"sqlite|database", re.I),
        "Service temporarily unavailable. Please try again",
        503,
    ),
    (
        re.compile(r"network|fetch failed|socket", re.I),
        "Network error. Please check your connection",
        503,
    ),
]

GENERIC_ERROR = ("An error occurred. Please try again", 500)

_KIND_MESSAGES = {
    ErrorKind.RETRYABLE: ("Service temporarily unavailable. Please try again", 503),
    ErrorKind.TIMEOUT: ("Service temporarily unavailable. Please try again", 503),
    ErrorKind.SERVER_ERROR: ("Service temporarily unavailable. Please try again", 503),
    ErrorKind.SERVICE_UNAVAILABLE: (
        "Service temporarily unavailable. Please try again",
        503,
    ),
    ErrorKind.PAYLOAD_TOO_LARGE: (
        "Repository history is too large to analyze at once. Please reduce the input size",
        413,
    ),
    ErrorKind.CLIENT_ERROR: (
        "The analysis service rejected the request. Please try again later",
        502,
    ),
    ErrorKind.RATE_LIMITED: ("Too many requests. Please try again later", 429),
    ErrorKind.BUDGET_EXHAUSTED: ("Too many requests. Please try again later", 429),
    ErrorKind.INSUFFICIENT_CREDITS: ("Insufficient credits", 402),
    ErrorKind.EMPTY_INPUT: ("No commits found in repository", 400),
}


def sanitize_error(error: BaseException) -> Tuple[str, int]:
    """
    Map a failure to a user-safe message and HTTP-style status.

    Args:
        error (BaseException): Raised exception

    Returns:
        Tuple[str, int]: Message safe to show the user and its status
    """
    if isinstance(error, PaidOperationError):
        return error.message, error.status
    if isinstance(error, AnalysisError) and error.kind in _KIND_MESSAGES:
        return _KIND_MESSAGES[error.kind]

    message = str(error)
    for pattern, user_message, status in ERROR_MAPPINGS:
        if pattern.search(message):
            return user_message, status
    return GENERIC_ERROR
