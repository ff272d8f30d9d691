"""Error classification and retry with exponential backoff.

Retry on 429 (rate limit), 5xx (server error) and connection failures only.
Backoff doubles per attempt, is scaled by error type, jittered by up to
12.5% either way and capped at 30s.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from src.messaging.errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    ValidationError,
)
from src.models import ErrorInfo, ErrorType

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
BACKOFF_CAP_SECONDS = 30.0
JITTER_RATIO = 0.125

NETWORK_MULTIPLIER = 1.5
TIMEOUT_MULTIPLIER = 2.0
SERVER_MULTIPLIER = 1.2

LINE_API_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    413: "REQUEST_ENTITY_TOO_LARGE",
    429: "TOO_MANY_REQUESTS",
    500: "INTERNAL_SERVER_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
}

API_SUGGESTIONS = {
    400: "Check the request payload format",
    401: "Check the LINE channel access token",
    403: "Check the channel's API permissions",
    404: "Check the API endpoint path",
    409: "Check for a conflicting resource",
    413: "Reduce the message size",
    429: "Reduce the request rate",
    500: "Retry later or contact LINE support",
    502: "Retry later",
    503: "Retry later, the LINE service is temporarily unavailable",
}

FRIENDLY_MESSAGES = {
    ErrorType.VALIDATION_ERROR: "The input data is not valid",
    ErrorType.API_ERROR: "The LINE API returned an error",
    ErrorType.NETWORK_ERROR: "A network problem occurred",
    ErrorType.AUTHENTICATION_ERROR: "LINE API authentication failed",
    ErrorType.RATE_LIMIT_ERROR: "Messages are being sent too quickly, please try again later",
    ErrorType.CONFIGURATION_ERROR: "LINE messaging is not fully configured",
    ErrorType.UNKNOWN_ERROR: "An unknown error occurred",
}

_NETWORK_KEYWORDS = ("timeout", "timed out", "econnreset", "econnrefused", "enotfound")
_AUTH_KEYWORDS = ("unauthorized", "invalid access token")
_CONFIG_KEYWORDS = ("not configured", "environment variable", "missing line_")


@dataclass(frozen=True)
class RetryAttempt:
    """Details passed to ``on_retry`` before each backoff sleep."""

    attempt: int
    max_attempts: int
    delay: float
    error_info: ErrorInfo


def _info(
    error_type: ErrorType,
    code: str,
    message: str,
    *,
    retryable: bool,
    suggestion: str,
    operation: str,
    details: dict[str, Any] | None = None,
) -> ErrorInfo:
    return ErrorInfo(
        type=error_type,
        code=code,
        message=message,
        friendly_message=FRIENDLY_MESSAGES[error_type],
        is_retryable=retryable,
        suggested_action=suggestion,
        operation=operation,
        details=details or {},
    )


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _classify_api_error(error: ApiError, operation: str) -> ErrorInfo:
    status = error.status_code
    details: dict[str, Any] = {
        "status_code": status,
        "line_error_code": LINE_API_ERROR_CODES.get(status, "UNKNOWN_API_ERROR"),
        "line_error_message": error.line_message or "Unknown API error",
        "request_id": error.request_id or "unknown",
    }
    if error.line_details:
        details["line_details"] = error.line_details
    error_type = ErrorType.RATE_LIMIT_ERROR if status == 429 else ErrorType.API_ERROR
    return _info(
        error_type,
        details["line_error_code"],
        str(error),
        retryable=is_retryable_status(status),
        suggestion=API_SUGGESTIONS.get(status, "Contact technical support"),
        operation=operation,
        details=details,
    )


def _is_network_error(error: BaseException) -> bool:
    if isinstance(error, (NetworkError, httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    text = str(error).lower()
    return any(keyword in text for keyword in _NETWORK_KEYWORDS)


def _network_code(error: BaseException) -> str:
    if isinstance(error, NetworkError):
        return error.code
    if isinstance(error, (httpx.TimeoutException, TimeoutError)) or "timeout" in str(error).lower():
        return "ETIMEDOUT"
    if isinstance(error, (httpx.ConnectError, ConnectionRefusedError)):
        return "ECONNREFUSED"
    return "ECONNRESET"


def classify(error: BaseException, operation: str = "unknown") -> ErrorInfo:
    """Map an exception to an ``ErrorInfo``.

    Order: validation, HTTP response, network, authentication,
    configuration, unknown. Typed errors match by class; errors raised by
    other libraries fall back to message keywords.
    """
    message = str(error) or error.__class__.__name__
    lowered = message.lower()

    if isinstance(error, ValidationError):
        return _info(
            ErrorType.VALIDATION_ERROR, "VALIDATION_FAILED", message,
            retryable=False, suggestion="Check the input data format", operation=operation,
        )
    if isinstance(error, ApiError):
        return _classify_api_error(error, operation)
    if _is_network_error(error):
        code = _network_code(error)
        return _info(
            ErrorType.NETWORK_ERROR, "NETWORK_FAILED", message,
            retryable=True, suggestion="Check the network connection and retry later",
            operation=operation, details={"network_code": code},
        )
    if isinstance(error, AuthenticationError) or any(k in lowered for k in _AUTH_KEYWORDS):
        return _info(
            ErrorType.AUTHENTICATION_ERROR, "AUTH_FAILED", message,
            retryable=False, suggestion="Check the LINE API credentials", operation=operation,
        )
    if isinstance(error, ConfigurationError) or any(k in lowered for k in _CONFIG_KEYWORDS):
        return _info(
            ErrorType.CONFIGURATION_ERROR, "CONFIG_ERROR", message,
            retryable=False, suggestion="Check the LINE environment variables",
            operation=operation,
        )
    return _info(
        ErrorType.UNKNOWN_ERROR, "UNKNOWN", message,
        retryable=False, suggestion="Contact technical support", operation=operation,
    )


def backoff_multiplier(error_info: ErrorInfo) -> float:
    if error_info.type == ErrorType.NETWORK_ERROR:
        if error_info.details.get("network_code") == "ETIMEDOUT":
            return TIMEOUT_MULTIPLIER
        return NETWORK_MULTIPLIER
    status = error_info.details.get("status_code")
    if isinstance(status, int) and status >= 500:
        return SERVER_MULTIPLIER
    return 1.0


def compute_backoff(
    attempt: int,
    error_info: ErrorInfo,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = BACKOFF_CAP_SECONDS,
    rng: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait after failed ``attempt`` (1-based)."""
    delay = base_delay * (2 ** (attempt - 1)) * backoff_multiplier(error_info)
    jitter = delay * JITTER_RATIO * (2 * rng() - 1)
    return max(0.0, min(delay + jitter, max_delay))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    on_retry: Callable[[RetryAttempt, BaseException], None] | None = None,
    deadline: float | None = None,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = BACKOFF_CAP_SECONDS,
    operation_name: str = "unknown",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng: Callable[[], float] = random.random,
) -> T:
    """Run ``operation`` until it succeeds or retrying stops making sense.

    Non-retryable errors propagate at once. After ``max_attempts`` the last
    error is re-raised unchanged. ``deadline`` bounds total wall-clock
    seconds: a backoff that would overrun it ends retrying early.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    started = clock()

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            info = classify(exc, operation_name)
            if not info.is_retryable or attempt == max_attempts:
                raise
            delay = compute_backoff(attempt, info, base_delay, max_delay, rng)
            if deadline is not None and (clock() - started) + delay > deadline:
                logger.warning(
                    "Retry deadline of %.1fs reached for %s after %d attempt(s)",
                    deadline, operation_name, attempt,
                )
                raise
            if on_retry is not None:
                on_retry(RetryAttempt(attempt, max_attempts, delay, info), exc)
            logger.info(
                "Retrying %s (attempt %d/%d) in %.2fs after %s",
                operation_name, attempt + 1, max_attempts, delay, info.code,
            )
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


class ErrorHandler:
    """Classifies an error, logs it at a level matching its severity."""

    def handle(self, error: BaseException, operation: str = "unknown") -> ErrorInfo:
        info = classify(error, operation)
        log_data = {
            "operation": operation,
            "type": info.type.value,
            "code": info.code,
            "message": info.message,
        }
        if info.type in (ErrorType.VALIDATION_ERROR, ErrorType.RATE_LIMIT_ERROR) or info.is_retryable:
            logger.warning("LINE messaging error: %s", log_data)
        else:
            logger.error("LINE messaging error: %s", log_data, exc_info=error)
        return info
