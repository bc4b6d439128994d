"""
Error taxonomy and classifier for outbound dependency calls.

Every failure raised by a dependency client, whatever its origin (an
``httpx`` transport fault, an upstream HTTP status, an asyncio timeout,
a plain exception), is normalized into a ``DependencyError`` carrying one
of a fixed set of kinds. Retry, circuit breaking and degradation all key
off that kind, never off the raw exception type.
"""

import asyncio
import errno
import socket
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Optional

import httpx

from src.utils import utcnow


class ErrorKind(str, Enum):
    """Normalized failure categories."""

    VALIDATION = "validation"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    EXTERNAL_DEPENDENCY = "external_dependency"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INTERNAL = "internal"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.EXTERNAL_DEPENDENCY: 502,
    ErrorKind.CIRCUIT_OPEN: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.NETWORK: 502,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}

RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.EXTERNAL_DEPENDENCY,
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMIT,
    ErrorKind.SERVICE_UNAVAILABLE,
})

_NETWORK_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT, errno.EHOSTUNREACH, errno.ENETUNREACH}
_NETWORK_CODES = {"ECONNRESET", "ENOTFOUND", "ETIMEDOUT", "EAI_AGAIN"}
_TIMEOUT_MARKERS = ("timeout", "timed out")


class DependencyError(Exception):
    """A classified failure with a kind, a status code and its context."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.INTERNAL,
        *,
        status_code: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
        retry_after: Optional[float] = None,
        field: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
        failure_count: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code or STATUS_CODES[kind]
        self.context = dict(context or {})
        self.retry_after = retry_after
        self.field = field
        self.next_retry_at = next_retry_at
        self.failure_count = failure_count
        self.timestamp = utcnow()

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Serializable view for API responses and logs."""
        payload: dict[str, Any] = {
            "code": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            payload["field"] = self.field
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        if self.next_retry_at is not None:
            payload["next_retry_at"] = self.next_retry_at.isoformat()
        if self.failure_count is not None:
            payload["failure_count"] = self.failure_count
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class CircuitOpenError(DependencyError):
    """Raised without running the operation while a breaker is open."""

    circuit_open = True

    def __init__(
        self,
        dependency: str,
        next_retry_at: Optional[datetime],
        failure_count: int,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            f"{dependency} service temporarily unavailable",
            ErrorKind.CIRCUIT_OPEN,
            context={**(context or {}), "dependency": dependency},
            next_retry_at=next_retry_at,
            failure_count=failure_count,
        )
        self.dependency = dependency


class OrchestratorNotReadyError(DependencyError):
    """Raised for calls made before dependency initialization completes."""

    def __init__(self, message: str = "Dependency orchestrator is not ready") -> None:
        super().__init__(message, ErrorKind.SERVICE_UNAVAILABLE)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (when - utcnow()).total_seconds())


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after_of(exc: BaseException) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        return _parse_retry_after(headers.get("retry-after"))
    return _parse_retry_after(getattr(exc, "retry_after", None))


def _is_connection_refused(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return True
        if getattr(current, "errno", None) == errno.ECONNREFUSED:
            return True
        if getattr(current, "code", None) == "ECONNREFUSED":
            return True
        current = current.__cause__ or current.__context__
    return "connection refused" in str(exc).lower()


def _is_network_fault(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectTimeout, socket.gaierror, ConnectionResetError)):
        return True
    if isinstance(exc, httpx.NetworkError):
        return True
    if getattr(exc, "code", None) in _NETWORK_CODES:
        return True
    return isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS


def _from_status(status: int, message: str, exc: BaseException, context: dict) -> DependencyError:
    ctx = {**context, "upstream_status": status}
    if status == 400:
        return DependencyError(message, ErrorKind.VALIDATION, context=ctx)
    if status == 401:
        return DependencyError(message, ErrorKind.AUTH, context=ctx)
    if status == 403:
        return DependencyError(message, ErrorKind.FORBIDDEN, context=ctx)
    if status == 404:
        return DependencyError("Resource not found", ErrorKind.NOT_FOUND, context=ctx)
    if status == 429:
        return DependencyError(
            message, ErrorKind.RATE_LIMIT, context=ctx, retry_after=_retry_after_of(exc)
        )
    if status in (502, 503, 504):
        return DependencyError(
            f"External service: {message}", ErrorKind.SERVICE_UNAVAILABLE, context=ctx
        )
    return DependencyError(
        f"External service error: {message}", ErrorKind.EXTERNAL_DEPENDENCY, context=ctx
    )


def classify_error(exc: BaseException, context: Optional[dict[str, Any]] = None) -> DependencyError:
    """Map any raised failure onto a ``DependencyError``.

    Rules are applied in priority order: already-classified errors pass
    through; refused connections; network faults; upstream HTTP status;
    circuit-open markers; timeouts; everything else is INTERNAL.
    """
    if isinstance(exc, DependencyError):
        return exc

    ctx = dict(context or {})
    message = str(exc) or type(exc).__name__

    if _is_connection_refused(exc):
        return DependencyError(
            "External service: connection refused",
            ErrorKind.SERVICE_UNAVAILABLE,
            context={**ctx, "code": "ECONNREFUSED"},
        )
    if _is_network_fault(exc):
        return DependencyError(
            f"Network error: {message}",
            ErrorKind.NETWORK,
            context={**ctx, "code": getattr(exc, "code", None) or type(exc).__name__},
        )

    status = _status_of(exc)
    if status is not None and status >= 400:
        return _from_status(status, message, exc, ctx)

    if getattr(exc, "circuit_open", False):
        return DependencyError(
            f"{ctx.get('dependency', 'Unknown')} service temporarily unavailable",
            ErrorKind.CIRCUIT_OPEN,
            context=ctx,
        )

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)) or any(
        marker in message.lower() for marker in _TIMEOUT_MARKERS
    ):
        operation = ctx.get("operation", "Unknown operation")
        return DependencyError(
            f"Operation '{operation}' timed out",
            ErrorKind.TIMEOUT,
            context=ctx,
        )

    return DependencyError(
        message,
        ErrorKind.INTERNAL,
        context={**ctx, "original_error": type(exc).__name__},
    )


USER_FACING_MESSAGES: dict[ErrorKind, dict[str, str]] = {
    ErrorKind.VALIDATION: {
        "title": "Invalid Input",
        "message": "Please check your input and try again.",
        "action": "Correct the highlighted field and resubmit.",
    },
    ErrorKind.AUTH: {
        "title": "Authentication Required",
        "message": "You need to be authenticated to access this resource.",
        "action": "Please log in and try again.",
    },
    ErrorKind.FORBIDDEN: {
        "title": "Access Denied",
        "message": "You don't have permission to perform this action.",
        "action": "Contact support if you believe this is an error.",
    },
    ErrorKind.NOT_FOUND: {
        "title": "Not Found",
        "message": "The requested resource could not be found.",
        "action": "Please check the reference and try again.",
    },
    ErrorKind.RATE_LIMIT: {
        "title": "Too Many Requests",
        "message": "We're receiving a lot of requests right now.",
        "action": "Wait a moment and try again.",
    },
    ErrorKind.EXTERNAL_DEPENDENCY: {
        "title": "Service Temporarily Unavailable",
        "message": "We're experiencing issues with an external service.",
        "action": "Please try again in a few minutes.",
    },
    ErrorKind.CIRCUIT_OPEN: {
        "title": "Service Temporarily Unavailable",
        "message": "This service is paused after repeated errors.",
        "action": "Please try again later.",
    },
    ErrorKind.TIMEOUT: {
        "title": "Request Timeout",
        "message": "The request took too long to complete.",
        "action": "Please try again.",
    },
    ErrorKind.NETWORK: {
        "title": "Connection Problem",
        "message": "We're having trouble connecting to our services.",
        "action": "Please try again shortly.",
    },
    ErrorKind.SERVICE_UNAVAILABLE: {
        "title": "Service Unavailable",
        "message": "This service is temporarily unavailable.",
        "action": "Please try again later.",
    },
    ErrorKind.INTERNAL: {
        "title": "Something Went Wrong",
        "message": "We encountered an unexpected error.",
        "action": "Please try again or contact support if the problem persists.",
    },
}


def user_facing_message(error: DependencyError) -> dict[str, Any]:
    """Friendly error payload for callers, keyed by the error kind."""
    info = USER_FACING_MESSAGES.get(error.kind, USER_FACING_MESSAGES[ErrorKind.INTERNAL])
    payload: dict[str, Any] = {"code": error.kind.value, **info}
    if error.kind == ErrorKind.VALIDATION and error.field:
        payload["field"] = error.field
        payload["message"] = error.message
    if error.kind == ErrorKind.RATE_LIMIT and error.retry_after is not None:
        payload["retry_after"] = error.retry_after
    if error.kind == ErrorKind.CIRCUIT_OPEN and error.next_retry_at is not None:
        payload["next_retry_at"] = error.next_retry_at.isoformat()
    return payload
