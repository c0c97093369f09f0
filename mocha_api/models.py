"""Internal data models for mocha-api.

All models use Pydantic v2 and are frozen: builders produce a new value for
every change via model_copy(update=...), so a value handed to the engine can
never change underneath it.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Request Models
# =============================================================================


class HttpMethod(str, Enum):
    """Supported HTTP methods."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class TimeoutOverride(BaseModel):
    """Per-request timeout overrides. None keeps the client's value."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    connect: float | None = Field(default=None, gt=0, description="Connect timeout in seconds")
    read: float | None = Field(default=None, gt=0, description="Read timeout in seconds")
    write: float | None = Field(default=None, gt=0, description="Write timeout in seconds")


class Timeouts(BaseModel):
    """Connect/read/write timeouts, enforced per attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    connect: float = Field(default=10.0, gt=0, description="Connect timeout in seconds")
    read: float = Field(default=30.0, gt=0, description="Read timeout in seconds")
    write: float = Field(default=30.0, gt=0, description="Write timeout in seconds")

    def merged(self, override: TimeoutOverride | None) -> Timeouts:
        """Return these timeouts with any non-None override fields applied."""
        if override is None:
            return self
        return self.model_copy(update=override.model_dump(exclude_none=True))


def _freeze(headers: Mapping[str, str]) -> Mapping[str, str]:
    """Copy ``headers`` into a read-only mapping."""
    return MappingProxyType(dict(headers))


class RequestDescriptor(BaseModel):
    """One HTTP request, described declaratively.

    Query parameters are ordered (key, value) pairs so repeated keys survive.
    Header names are matched case-insensitively when set or looked up.
    The body is None, bytes, str, a structured value (dict, list, pydantic
    model) awaiting JSON encoding, or a stream the engine buffers before
    the first attempt.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    method: HttpMethod = Field(description="HTTP method")
    url: str = Field(description="Target URL, without the extra query pairs")
    query: tuple[tuple[str, str], ...] = Field(
        default=(), description="Query parameters (ordered, duplicates allowed)"
    )
    headers: Mapping[str, str] = Field(
        default_factory=dict, validate_default=True, description="Request headers (read-only)"
    )
    body: Any = Field(default=None, description="Request body")
    timeout: TimeoutOverride | None = Field(default=None, description="Per-request timeouts")

    @field_validator("headers", mode="after")
    @classmethod
    def freeze_headers(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return _freeze(v)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be empty")
        return v

    def header(self, name: str) -> str | None:
        """Look up a header value case-insensitively."""
        lower = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lower:
                return value
        return None

    def with_header(self, name: str, value: str) -> RequestDescriptor:
        """Return a copy with ``name`` set, replacing any case variant of it."""
        lower = name.lower()
        headers = {k: v for k, v in self.headers.items() if k.lower() != lower}
        headers[name] = value
        return self.model_copy(update={"headers": _freeze(headers)})

    def with_query(self, key: str, value: Any) -> RequestDescriptor:
        return self.model_copy(update={"query": self.query + ((key, str(value)),)})

    def with_body(self, body: Any) -> RequestDescriptor:
        return self.model_copy(update={"body": body})

    def with_url(self, url: str) -> RequestDescriptor:
        # Goes through validation again, unlike model_copy.
        return RequestDescriptor.model_validate({**dict(self), "url": url})

    def with_timeout(self, override: TimeoutOverride) -> RequestDescriptor:
        return self.model_copy(update={"timeout": override})

    def full_url(self) -> str:
        """Render the URL with the query pairs appended to any existing query."""
        if not self.query:
            return self.url
        parts = urlsplit(self.url)
        extra = urlencode(list(self.query))
        query = f"{parts.query}&{extra}" if parts.query else extra
        return urlunsplit(parts._replace(query=query))


class TransportResponse(BaseModel):
    """Raw response produced by a transport for one attempt.

    Header pairs keep their wire order and duplicates.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status_code: int = Field(description="HTTP status code")
    headers: list[tuple[str, str]] = Field(default_factory=list, description="Response headers")
    content: bytes = Field(default=b"", description="Fully materialized body")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")


# =============================================================================
# Runtime Configuration Models
# =============================================================================

# The retry loop never makes more than this many transport calls.
MAX_ATTEMPTS = 3


def _check_interceptors(value: Any) -> tuple[Callable[[Any], Any], ...]:
    interceptors = tuple(value)
    for interceptor in interceptors:
        if not callable(interceptor):
            raise ValueError(f"interceptor {interceptor!r} is not callable")
    return interceptors


class ClientConfig(BaseModel):
    """Configuration owned by one client instance, fixed at build time."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    timeouts: Timeouts = Field(default_factory=Timeouts, description="Per-attempt timeouts")
    retry_enabled: bool = Field(default=False, description="Retry transient failures")
    retry_base_delay: float = Field(
        default=1.0, ge=0, description="Backoff base; attempt n waits base * 2^(n-1)"
    )
    max_attempts: int = Field(
        default=MAX_ATTEMPTS, ge=1, le=MAX_ATTEMPTS, description="Transport calls per execution"
    )
    allow_localhost: bool = Field(
        default=False, description="Permit loopback and private-network targets"
    )
    logging_enabled: bool = Field(default=False, description="Log requests and responses")
    default_headers: Mapping[str, str] = Field(
        default_factory=dict,
        validate_default=True,
        description="Headers added to every request unless already set"
    )
    request_interceptors: tuple[Any, ...] = Field(
        default=(), description="Request transformers, in registration order"
    )
    response_interceptors: tuple[Any, ...] = Field(
        default=(), description="Response transformers, in registration order"
    )
    worker: Any = Field(default=None, description="Custom concurrent.futures.Executor")

    @field_validator("request_interceptors", "response_interceptors", mode="before")
    @classmethod
    def check_interceptors(cls, v: Any) -> tuple[Callable[[Any], Any], ...]:
        return _check_interceptors(v)

    @field_validator("default_headers", mode="after")
    @classmethod
    def freeze_default_headers(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return _freeze(v)
