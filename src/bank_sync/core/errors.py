"""
Error classification and retry helpers.

Every failure coming back from the ledger is mapped onto a closed set of
error kinds, each of which is either retryable or not. The reconciler uses
the retryable flag to decide between per-row fallback and failing the
whole batch.
"""

import errno
import logging
import socket
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

import requests
from pydantic import BaseModel, Field

from bank_sync.core.exceptions import BankSyncError, ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Closed taxonomy of sync failures."""

    # Transient
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"

    # Permanent
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    PARSING_ERROR = "PARSING_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK_ERROR,
        ErrorKind.RATE_LIMIT,
        ErrorKind.TIMEOUT,
        ErrorKind.SERVER_ERROR,
    }
)

_NETWORK_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED}
_NETWORK_CODES = {"ECONNRESET", "ETIMEDOUT", "ENOTFOUND", "ECONNREFUSED"}


class ClassifiedError(BankSyncError):
    """An error that has been mapped onto an ErrorKind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: Optional[bool] = None,
        http_status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.retryable = self.kind.retryable if retryable is None else retryable
        self.http_status = http_status
        self.context = context or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view, without the original exception."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "http_status": self.http_status,
            "context": self.context,
        }

    def with_context(self, context: Dict[str, Any]) -> "ClassifiedError":
        """Copy of this error with context added; existing keys win."""
        return ClassifiedError(
            self.kind,
            self.message,
            retryable=self.retryable,
            http_status=self.http_status,
            context={**context, **self.context},
            original_error=self.original_error,
        )

    def __repr__(self) -> str:
        return f"ClassifiedError({self.kind.value}, {self.message!r})"


def _http_status(error: BaseException) -> Optional[int]:
    response = getattr(error, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None) or getattr(response, "status", None)
        if isinstance(status, int):
            return status
    for attr in ("status_code", "http_status", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    return None


def _error_detail(error: BaseException) -> str:
    """Best-effort human readable detail from an HTTP error body."""
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except (ValueError, AttributeError):
            body = None
        if isinstance(body, dict):
            detail = (body.get("error") or {}).get("detail")
            if detail:
                return str(detail)
    return str(error) or error.__class__.__name__


def _is_network_error(error: BaseException) -> bool:
    if isinstance(error, (requests.ConnectionError, ConnectionError, socket.gaierror)):
        return True
    if getattr(error, "errno", None) in _NETWORK_ERRNOS:
        return True
    return getattr(error, "code", None) in _NETWORK_CODES


def _classify_status(
    status: int, error: BaseException, context: Dict[str, Any]
) -> Optional[ClassifiedError]:
    detail = _error_detail(error)

    if status == 429:
        headers = getattr(getattr(error, "response", None), "headers", None) or {}
        retry_after = headers.get("Retry-After") if hasattr(headers, "get") else None
        if retry_after is not None:
            context = {**context, "retry_after": retry_after}
        return ClassifiedError(
            ErrorKind.RATE_LIMIT,
            f"Rate limit exceeded: {detail}",
            http_status=status,
            context=context,
            original_error=error,
        )
    if status in (401, 403):
        return ClassifiedError(
            ErrorKind.AUTHENTICATION_ERROR,
            f"Authentication failed: {detail}",
            http_status=status,
            context=context,
            original_error=error,
        )
    if status == 404:
        return ClassifiedError(
            ErrorKind.NOT_FOUND,
            f"Resource not found: {detail}",
            http_status=status,
            context=context,
            original_error=error,
        )
    if status in (400, 422):
        return ClassifiedError(
            ErrorKind.VALIDATION_ERROR,
            f"Validation error: {detail}",
            http_status=status,
            context=context,
            original_error=error,
        )
    if status >= 500:
        return ClassifiedError(
            ErrorKind.SERVER_ERROR,
            f"Server error ({status}): {detail}",
            http_status=status,
            context=context,
            original_error=error,
        )
    return None


def classify_error(
    error: BaseException, context: Optional[Dict[str, Any]] = None
) -> ClassifiedError:
    """
    Map any exception onto the ErrorKind taxonomy.

    Checks, in order: an HTTP status, known transport failures, message
    text heuristics. Anything left over is UNKNOWN_ERROR.

    Args:
        error: The exception raised by the ledger call or store
        context: Extra key/values attached to the classified error

    Returns:
        ClassifiedError; an already classified input is returned as is,
        and context is ignored for it
    """
    if isinstance(error, ClassifiedError):
        return error

    context = dict(context or {})
    message = str(error) or error.__class__.__name__

    if isinstance(error, ConfigurationError):
        return ClassifiedError(
            ErrorKind.CONFIGURATION_ERROR, message, context=context, original_error=error
        )

    status = _http_status(error)
    if status is not None:
        classified = _classify_status(status, error, context)
        if classified is not None:
            return classified

    if _is_network_error(error):
        return ClassifiedError(
            ErrorKind.NETWORK_ERROR,
            f"Network error: {message}",
            context=context,
            original_error=error,
        )

    lowered = message.lower()
    if isinstance(error, (requests.Timeout, TimeoutError)) or "timeout" in lowered:
        return ClassifiedError(
            ErrorKind.TIMEOUT,
            f"Request timeout: {message}",
            context=context,
            original_error=error,
        )

    if "not found" in lowered or "required" in lowered:
        return ClassifiedError(
            ErrorKind.CONFIGURATION_ERROR, message, context=context, original_error=error
        )

    return ClassifiedError(
        ErrorKind.UNKNOWN_ERROR, message, context=context, original_error=error
    )


def format_error(error: BaseException) -> str:
    """Render an error for logs and the last_error column."""
    if isinstance(error, ClassifiedError):
        parts = [f"[{error.kind.value}] {error.message}"]
        if error.context:
            context = ", ".join(f"{k}={v}" for k, v in error.context.items())
            parts.append(f"Context: {{{context}}}")
        if error.http_status:
            parts.append(f"HTTP {error.http_status}")
        return " | ".join(parts)

    status = _http_status(error)
    if status is not None:
        return f"HTTP {status}: {_error_detail(error)}"

    return str(error) or error.__class__.__name__


class RetryPolicy(BaseModel):
    """Exponential backoff settings for ledger calls."""

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)

    def delay(self, attempt: int) -> float:
        """Delay in seconds before retry number attempt + 1."""
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)


def retry_with_backoff(
    fn: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[Callable[[ClassifiedError, int], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying retryable failures with exponential backoff.

    Args:
        fn: Zero-argument callable to run
        policy: Backoff settings (defaults: 3 retries, 1s, x2, capped at 30s)
        on_retry: Called with (error, attempt_number) before each sleep
        sleep: Sleep function, replaceable in tests

    Returns:
        Whatever fn returns

    Raises:
        ClassifiedError: On a non-retryable failure or once retries run out
    """
    policy = policy or RetryPolicy()

    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            error = classify_error(e)
            if not error.retryable or attempt >= policy.max_retries:
                if error is e:
                    raise
                raise error from e

            if on_retry is not None:
                on_retry(error, attempt + 1)
            else:
                logger.warning(
                    "Retrying after %s (attempt %d/%d)",
                    error.kind.value,
                    attempt + 1,
                    policy.max_retries,
                )
            sleep(policy.delay(attempt))
            attempt += 1
