"""mocha-api: a stateless HTTP client with validation, interceptors and retries.

    import mocha_api

    user = mocha_api.get("https://api.example.com/user").query("id", 12).execute().to_map()

The module-level shortcuts use a default client (default configuration),
created on first use. Build an ApiClient for anything else.
"""

from __future__ import annotations

from threading import Lock

from mocha_api.client import ApiClient, ClientBuilder, RequestBuilder
from mocha_api.engine import ExecutionEngine, ExecutionResult
from mocha_api.errors import (
    ConfigurationError,
    ExecutionError,
    HttpStatusError,
    InterceptorError,
    JsonDecodeError,
    JsonEncodeError,
    MochaApiError,
    RetryExhaustedError,
    SecurityViolation,
    TransportError,
    TransportErrorKind,
)
from mocha_api.interceptors import (
    BearerAuthInterceptor,
    HeaderInterceptor,
    LoggingRequestInterceptor,
    LoggingResponseInterceptor,
    RaiseForStatusInterceptor,
    RetryOnStatusInterceptor,
)
from mocha_api.json_map import JsonMap
from mocha_api.models import ClientConfig, HttpMethod, RequestDescriptor, Timeouts
from mocha_api.response import ApiResponse

__version__ = "1.0.0"

_default_client: ApiClient | None = None
_default_client_lock = Lock()


def default_client() -> ApiClient:
    """Return the shared default client, creating it on first use."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = ApiClient()
        return _default_client


def get(url: str) -> RequestBuilder:
    return default_client().get(url)


def post(url: str) -> RequestBuilder:
    return default_client().post(url)


def put(url: str) -> RequestBuilder:
    return default_client().put(url)


def delete(url: str) -> RequestBuilder:
    return default_client().delete(url)


def patch(url: str) -> RequestBuilder:
    return default_client().patch(url)


__all__ = [
    "ApiClient",
    "ApiResponse",
    "BearerAuthInterceptor",
    "ClientBuilder",
    "ClientConfig",
    "ConfigurationError",
    "ExecutionEngine",
    "ExecutionError",
    "ExecutionResult",
    "HeaderInterceptor",
    "HttpMethod",
    "HttpStatusError",
    "InterceptorError",
    "JsonDecodeError",
    "JsonEncodeError",
    "JsonMap",
    "LoggingRequestInterceptor",
    "LoggingResponseInterceptor",
    "MochaApiError",
    "RaiseForStatusInterceptor",
    "RequestBuilder",
    "RequestDescriptor",
    "RetryExhaustedError",
    "RetryOnStatusInterceptor",
    "SecurityViolation",
    "Timeouts",
    "TransportError",
    "TransportErrorKind",
    "default_client",
    "delete",
    "get",
    "patch",
    "post",
    "put",
]
