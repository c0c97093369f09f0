"""Error taxonomy for mocha-api.

Every failure an execution can produce is an ExecutionError subclass, so
callers can catch one type or the specific one they care about.
ConfigurationError is raised before anything executes and is never retried.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mocha_api.response import ApiResponse


class MochaApiError(Exception):
    """Base class for all mocha-api errors."""


class ConfigurationError(MochaApiError, ValueError):
    """Raised for malformed builder input, descriptors, or config files."""


class ExecutionError(MochaApiError):
    """Raised when an execution fails.

    Attributes:
        attempts: Number of transport calls made before the failure.
        cause: The underlying error, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.attempts = attempts


class SecurityViolation(ExecutionError):
    """Raised when a URL is rejected before any network activity."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Refusing to request {url!r}: {reason}")
        self.url = url
        self.reason = reason


class TransportErrorKind(str, Enum):
    """Classification of transport failures."""

    CONNECT_TIMEOUT = "connect_timeout"
    READ_TIMEOUT = "read_timeout"
    WRITE_TIMEOUT = "write_timeout"
    CONNECTION_REFUSED = "connection_refused"
    OTHER = "other"


class TransportError(ExecutionError):
    """Raised by a transport when a request cannot be completed."""

    def __init__(
        self,
        message: str,
        kind: TransportErrorKind = TransportErrorKind.OTHER,
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.kind = kind

    @property
    def transient(self) -> bool:
        """True when retrying the same request may succeed."""
        return self.kind is not TransportErrorKind.OTHER


class InterceptorError(ExecutionError):
    """Raised by (or on behalf of) an interceptor to abort an execution.

    Interceptors set ``transient=True`` to ask for the attempt to be retried
    under the retry policy; otherwise the execution aborts immediately.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.transient = transient


class HttpStatusError(InterceptorError):
    """Raised when a response carries an error status."""

    def __init__(self, response: ApiResponse, *, transient: bool = False) -> None:
        super().__init__(
            f"HTTP {response.status} returned by {response.url}",
            transient=transient,
        )
        self.response = response

    @property
    def status(self) -> int:
        return self.response.status


class RetryExhaustedError(ExecutionError):
    """Raised when a transient failure persists through the last attempt.

    ``cause`` is the failure of the final attempt.
    """


class JsonEncodeError(MochaApiError):
    """Raised when a value cannot be serialized to JSON."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message)
        self.value = value


class JsonDecodeError(MochaApiError):
    """Raised when a body is not valid JSON or does not match a shape."""

    def __init__(self, message: str, shape: Any = None) -> None:
        super().__init__(message)
        self.shape = shape


def is_transient(error: BaseException) -> bool:
    """Return True if an attempt that failed with ``error`` may be retried."""
    if isinstance(error, (TransportError, InterceptorError)):
        return error.transient
    return False
