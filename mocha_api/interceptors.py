"""Interceptor Chain - Ordered request and response transformers.

A request interceptor is any callable taking a RequestDescriptor and
returning a RequestDescriptor; a response interceptor takes and returns an
ApiResponse. Both run in registration order, each receiving the previous
one's output, and must not do network I/O.

An interceptor aborts the execution by raising. InterceptorError is passed
through as-is (set ``transient=True`` to ask for a retry); any other
exception is wrapped in a non-transient InterceptorError, and the remaining
interceptors are skipped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Protocol, TypeVar

from mocha_api.errors import HttpStatusError, InterceptorError

if TYPE_CHECKING:
    from mocha_api.models import RequestDescriptor
    from mocha_api.response import ApiResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Header values never written to logs.
REDACTED_HEADERS = frozenset({"authorization", "cookie", "proxy-authorization", "set-cookie"})


class RequestInterceptor(Protocol):
    def __call__(self, request: RequestDescriptor) -> RequestDescriptor: ...


class ResponseInterceptor(Protocol):
    def __call__(self, response: ApiResponse) -> ApiResponse: ...


def _interceptor_name(interceptor: Callable[..., object]) -> str:
    return getattr(interceptor, "__name__", type(interceptor).__name__)


def apply_chain(interceptors: Iterable[Callable[[T], T]], value: T, phase: str) -> T:
    """Fold ``value`` through ``interceptors`` in order.

    Raises:
        InterceptorError: If any interceptor fails or returns None.
    """
    for interceptor in interceptors:
        name = _interceptor_name(interceptor)
        try:
            result = interceptor(value)
        except InterceptorError:
            raise
        except Exception as e:
            raise InterceptorError(
                f"{phase} interceptor {name} failed: {e}", cause=e
            ) from e
        if result is None:
            raise InterceptorError(f"{phase} interceptor {name} returned None")
        value = result
    return value


def apply_request_interceptors(
    interceptors: Iterable[RequestInterceptor],
    request: RequestDescriptor,
) -> RequestDescriptor:
    return apply_chain(interceptors, request, "request")


def apply_response_interceptors(
    interceptors: Iterable[ResponseInterceptor],
    response: ApiResponse,
) -> ApiResponse:
    return apply_chain(interceptors, response, "response")


# =============================================================================
# Built-in Interceptors
# =============================================================================


class HeaderInterceptor:
    """Sets a header on every request, replacing any existing value."""

    def __init__(self, name: str, value: str) -> None:
        self.name = name
        self.value = value

    def __call__(self, request: RequestDescriptor) -> RequestDescriptor:
        return request.with_header(self.name, self.value)


class BearerAuthInterceptor(HeaderInterceptor):
    """Injects ``Authorization: Bearer <token>``."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("token must not be empty")
        super().__init__("Authorization", f"Bearer {token}")


def _redact(headers: Iterable[tuple[str, str]]) -> dict[str, str]:
    return {
        name: "<redacted>" if name.lower() in REDACTED_HEADERS else value
        for name, value in headers
    }


class LoggingRequestInterceptor:
    """Logs each outgoing request at INFO, with credentials redacted."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def __call__(self, request: RequestDescriptor) -> RequestDescriptor:
        self._log.info(
            "--> %s %s headers=%s",
            request.method.value,
            request.full_url(),
            _redact(request.headers.items()),
        )
        return request


class LoggingResponseInterceptor:
    """Logs each response at INFO, with credentials redacted."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def __call__(self, response: ApiResponse) -> ApiResponse:
        self._log.info(
            "<-- %d %s (%.1f ms, %d bytes) headers=%s",
            response.status,
            response.url,
            response.elapsed_ms,
            len(response.raw_body),
            _redact(response.headers.multi_items()),
        )
        return response


class RaiseForStatusInterceptor:
    """Aborts the execution with HttpStatusError for error statuses."""

    def __init__(self, min_status: int = 400) -> None:
        self.min_status = min_status

    def __call__(self, response: ApiResponse) -> ApiResponse:
        if response.status >= self.min_status:
            raise HttpStatusError(response)
        return response


class RetryOnStatusInterceptor:
    """Marks responses with the given statuses as transient failures.

    Status-based retry is opt-in: without this interceptor, a 503 is an
    ordinary response. The retry policy still decides whether (and when)
    the attempt is repeated; once attempts run out, the caller receives
    RetryExhaustedError wrapping the last HttpStatusError.
    """

    def __init__(self, statuses: Iterable[int] = (502, 503, 504)) -> None:
        self.statuses = frozenset(statuses)

    def __call__(self, response: ApiResponse) -> ApiResponse:
        if response.status in self.statuses:
            raise HttpStatusError(response, transient=True)
        return response
