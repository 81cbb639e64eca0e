"""
Error taxonomy for outbound calls to media services.

Every failed attempt is turned into exactly one ClassifiedError. The
RETRYABLE_KINDS table below is the only place that decides whether a kind
of failure may be attempted again.
"""
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional

import httpx

DEFAULT_RETRY_AFTER_SECONDS = 1.0


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = {
    ErrorKind.NETWORK: True,
    ErrorKind.TIMEOUT: False,
    ErrorKind.RATE_LIMITED: True,
    ErrorKind.UNAUTHORIZED: False,
    ErrorKind.NOT_FOUND: False,
    ErrorKind.VALIDATION: False,
    ErrorKind.SERVER_ERROR: True,
    ErrorKind.UNKNOWN: True,
}


class ConfigurationError(Exception):
    """Raised at startup when a service cannot be configured."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} configuration error: {message}")


class ClassifiedError(Exception):
    """A failed call, tagged with the kind of failure and its context."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        service: str = "service",
        endpoint: str = "",
        status_code: Optional[int] = None,
        retry_after_seconds: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        transient: bool = True,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.service = service
        self.endpoint = endpoint
        self.status_code = status_code
        self.retry_after_seconds = retry_after_seconds
        self.timeout_ms = timeout_ms
        self.transient = transient

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self.kind.value!r}, service={self.service!r}, "
            f"endpoint={self.endpoint!r}, status_code={self.status_code!r})"
        )

    @property
    def retryable(self) -> bool:
        return is_retryable(self)

    @classmethod
    def network(cls, service: str, endpoint: str, cause: Exception, transient: bool = True) -> "ClassifiedError":
        return cls(
            ErrorKind.NETWORK,
            f"Error connecting to {service} ({endpoint}): {cause}",
            service=service,
            endpoint=endpoint,
            transient=transient,
        )

    @classmethod
    def malformed(cls, service: str, endpoint: str, cause: Exception, status_code: Optional[int] = None) -> "ClassifiedError":
        return cls(
            ErrorKind.NETWORK,
            f"{service} returned a malformed response for {endpoint}: {cause}",
            service=service,
            endpoint=endpoint,
            status_code=status_code,
            transient=False,
        )

    @classmethod
    def timeout(cls, service: str, endpoint: str, timeout_ms: int) -> "ClassifiedError":
        return cls(
            ErrorKind.TIMEOUT,
            f"{service} request to {endpoint} timed out after {timeout_ms} ms",
            service=service,
            endpoint=endpoint,
            timeout_ms=timeout_ms,
        )


def is_retryable(error: ClassifiedError) -> bool:
    if not RETRYABLE_KINDS[error.kind]:
        return False
    # A body that failed to parse will fail the same way again.
    if error.kind is ErrorKind.NETWORK and not error.transient:
        return False
    return True


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> float:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if value is None or not value.strip():
        return DEFAULT_RETRY_AFTER_SECONDS
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def _upstream_message(response: httpx.Response) -> str:
    text = response.text.strip()
    if not text:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if len(text) > 500:
        text = text[:500] + "..."
    return text


def classify_response(response: httpx.Response, service: str, endpoint: str) -> ClassifiedError:
    """Map a non-2xx response to exactly one ClassifiedError."""
    status = response.status_code
    detail = _upstream_message(response)
    context = {"service": service, "endpoint": endpoint, "status_code": status}

    if status == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        return ClassifiedError(
            ErrorKind.RATE_LIMITED,
            f"{service} rate limit exceeded. Retry after {retry_after:g} seconds",
            retry_after_seconds=retry_after,
            **context,
        )
    if status == 401:
        return ClassifiedError(ErrorKind.UNAUTHORIZED, f"{service} authentication error: {detail}", **context)
    if status == 404:
        return ClassifiedError(ErrorKind.NOT_FOUND, f"{service} resource not found: {endpoint}", **context)
    if 400 <= status < 500:
        return ClassifiedError(ErrorKind.VALIDATION, f"{service} rejected the request: {detail}", **context)
    if 500 <= status < 600:
        return ClassifiedError(ErrorKind.SERVER_ERROR, f"{service} server error {status}: {detail}", **context)
    return ClassifiedError(ErrorKind.UNKNOWN, f"{service} unexpected response {status}: {detail}", **context)
