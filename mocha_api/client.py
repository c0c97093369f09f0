"""Client facade - Builders and the ApiClient.

Usage:
    client = (
        ApiClient.builder()
        .connect_timeout(5)
        .retry()
        .add_request_interceptor(BearerAuthInterceptor(token))
        .build()
    )
    user = client.get("https://api.example.com/user").query("id", 12).execute().decode_as(User)

ClientBuilder is a staging object consumed by build(). RequestBuilder is
immutable: every call returns a new builder around a new descriptor, so a
partially built request can be shared and extended safely.
"""

from __future__ import annotations

from concurrent.futures import Future
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from mocha_api.codec import JsonCodec
from mocha_api.config_loader import ClientSettings, load_client_settings
from mocha_api.dispatcher import (
    AsyncDispatcher,
    ErrorCallback,
    SuccessCallback,
    ThreadPoolWorker,
    select_worker,
)
from mocha_api.engine import ExecutionEngine, ExecutionResult
from mocha_api.errors import ConfigurationError
from mocha_api.interceptors import (
    BearerAuthInterceptor,
    LoggingRequestInterceptor,
    LoggingResponseInterceptor,
    RaiseForStatusInterceptor,
    RequestInterceptor,
    ResponseInterceptor,
)
from mocha_api.models import (
    ClientConfig,
    HttpMethod,
    RequestDescriptor,
    TimeoutOverride,
)
from mocha_api.response import ApiResponse
from mocha_api.security import Resolver, resolve_host
from mocha_api.transport import HttpxTransport, Transport

Duration = float | int | timedelta


def _seconds(value: Duration | None) -> float | None:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(part) for part in err["loc"])
    return f"{loc}: {err['msg']}" if loc else err["msg"]


class ClientBuilder:
    """Collects client options; build() turns them into an ApiClient once."""

    def __init__(self) -> None:
        self._timeouts: dict[str, float] = {}
        self._options: dict[str, Any] = {}
        self._default_headers: dict[str, str] = {}
        self._request_interceptors: list[RequestInterceptor] = []
        self._response_interceptors: list[ResponseInterceptor] = []
        self._transport: Transport | None = None
        self._codec: JsonCodec | None = None
        self._resolver: Resolver = resolve_host
        self._built = False

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> ClientBuilder:
        """Start from settings loaded by load_client_settings()."""
        builder = cls()
        builder._timeouts = settings.timeouts.model_dump()
        builder._options.update(
            retry_enabled=settings.retry,
            retry_base_delay=settings.retry_base_delay,
            allow_localhost=settings.allow_localhost,
            logging_enabled=settings.logging,
        )
        builder._default_headers.update(settings.default_headers)
        if settings.bearer_token:
            builder.add_request_interceptor(BearerAuthInterceptor(settings.bearer_token))
        if settings.raise_for_status:
            builder.raise_for_status()
        return builder

    # --- Timeouts ---

    def connect_timeout(self, value: Duration) -> ClientBuilder:
        self._timeouts["connect"] = _seconds(value)
        return self

    def read_timeout(self, value: Duration) -> ClientBuilder:
        self._timeouts["read"] = _seconds(value)
        return self

    def write_timeout(self, value: Duration) -> ClientBuilder:
        self._timeouts["write"] = _seconds(value)
        return self

    def timeout(self, value: Duration) -> ClientBuilder:
        """Set connect, read and write timeouts to the same value."""
        seconds = _seconds(value)
        self._timeouts.update(connect=seconds, read=seconds, write=seconds)
        return self

    # --- Behaviour flags ---

    def retry(self, enabled: bool = True) -> ClientBuilder:
        self._options["retry_enabled"] = enabled
        return self

    def retry_base_delay(self, value: Duration) -> ClientBuilder:
        self._options["retry_base_delay"] = _seconds(value)
        return self

    def max_attempts(self, attempts: int) -> ClientBuilder:
        self._options["max_attempts"] = attempts
        return self

    def allow_localhost(self, allowed: bool = True) -> ClientBuilder:
        self._options["allow_localhost"] = allowed
        return self

    def logging(self, enabled: bool = True) -> ClientBuilder:
        self._options["logging_enabled"] = enabled
        return self

    # --- Headers and interceptors ---

    def default_header(self, name: str, value: str) -> ClientBuilder:
        self._default_headers[name] = value
        return self

    def bearer_token(self, token: str) -> ClientBuilder:
        return self.add_request_interceptor(BearerAuthInterceptor(token))

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> ClientBuilder:
        if not callable(interceptor):
            raise ConfigurationError(f"request interceptor {interceptor!r} is not callable")
        self._request_interceptors.append(interceptor)
        return self

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> ClientBuilder:
        if not callable(interceptor):
            raise ConfigurationError(f"response interceptor {interceptor!r} is not callable")
        self._response_interceptors.append(interceptor)
        return self

    def raise_for_status(self, min_status: int = 400) -> ClientBuilder:
        return self.add_response_interceptor(RaiseForStatusInterceptor(min_status))

    # --- Collaborators ---

    def worker(self, executor: Any) -> ClientBuilder:
        self._options["worker"] = executor
        return self

    def transport(self, transport: Transport) -> ClientBuilder:
        self._transport = transport
        return self

    def codec(self, codec: JsonCodec) -> ClientBuilder:
        self._codec = codec
        return self

    def resolver(self, resolver: Resolver) -> ClientBuilder:
        self._resolver = resolver
        return self

    def build(self) -> ApiClient:
        """Create the client. A builder can be built only once.

        Raises:
            ConfigurationError: If an option is invalid or build() was already called.
        """
        if self._built:
            raise ConfigurationError("ClientBuilder.build() was already called")

        request_interceptors: list[Any] = list(self._request_interceptors)
        response_interceptors: list[Any] = list(self._response_interceptors)
        if self._options.get("logging_enabled"):
            request_interceptors.append(LoggingRequestInterceptor())
            response_interceptors.insert(0, LoggingResponseInterceptor())

        try:
            config = ClientConfig.model_validate({
                **self._options,
                "timeouts": self._timeouts,
                "default_headers": dict(self._default_headers),
                "request_interceptors": tuple(request_interceptors),
                "response_interceptors": tuple(response_interceptors),
            })
        except ValidationError as e:
            raise ConfigurationError(f"Invalid client option {_first_error(e)}") from e

        self._built = True
        return ApiClient(
            config,
            transport=self._transport,
            codec=self._codec,
            resolver=self._resolver,
        )


class ApiClient:
    """A configured client. Clients never share configuration or workers.

    Usage:
        with ApiClient.builder().retry().build() as client:
            response = client.post(url).body({"name": "widget"}).execute()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        codec: JsonCodec | None = None,
        resolver: Resolver = resolve_host,
    ) -> None:
        self._config = config or ClientConfig()
        self._owns_transport = transport is None
        self._engine = ExecutionEngine(transport or HttpxTransport(), codec, resolver)
        self._dispatcher = AsyncDispatcher(self._engine, select_worker(self._config.worker))

    @staticmethod
    def builder() -> ClientBuilder:
        return ClientBuilder()

    @classmethod
    def from_config_file(cls, path: str | Path, **overrides: Any) -> ApiClient:
        """Build a client from a YAML settings file.

        Keyword overrides are applied through ClientBuilder collaborators:
        ``transport``, ``codec``, ``resolver``, ``worker``.
        """
        builder = ClientBuilder.from_settings(load_client_settings(Path(path)))
        for name, value in overrides.items():
            setter = getattr(builder, name, None)
            if name not in {"transport", "codec", "resolver", "worker"} or setter is None:
                raise ConfigurationError(f"Unknown override {name!r}")
            setter(value)
        return builder.build()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Release the default transport and thread pool, if this client made them."""
        try:
            worker = self._dispatcher.worker
            if isinstance(worker, ThreadPoolWorker):
                worker.shutdown(wait=False)
        finally:
            close = getattr(self._engine.transport, "close", None)
            if self._owns_transport and close is not None:
                close()

    # --- Request builders ---

    def request(self, method: HttpMethod | str, url: str) -> RequestBuilder:
        """Start a request.

        Raises:
            ConfigurationError: If ``method`` is unsupported or ``url`` is empty.
        """
        try:
            descriptor = RequestDescriptor(method=method, url=url)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid request {_first_error(e)}") from e
        return RequestBuilder(self, descriptor)

    def get(self, url: str) -> RequestBuilder:
        return self.request(HttpMethod.GET, url)

    def post(self, url: str) -> RequestBuilder:
        return self.request(HttpMethod.POST, url)

    def put(self, url: str) -> RequestBuilder:
        return self.request(HttpMethod.PUT, url)

    def delete(self, url: str) -> RequestBuilder:
        return self.request(HttpMethod.DELETE, url)

    def patch(self, url: str) -> RequestBuilder:
        return self.request(HttpMethod.PATCH, url)

    # --- Execution ---

    def run(self, descriptor: RequestDescriptor) -> ExecutionResult:
        return self._engine.run(descriptor, self._config)

    def execute(self, descriptor: RequestDescriptor) -> ApiResponse:
        return self._engine.execute(descriptor, self._config)

    def execute_async(
        self,
        descriptor: RequestDescriptor,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future[ApiResponse]:
        return self._dispatcher.execute_async(descriptor, self._config, on_success, on_error)

    async def aexecute(self, descriptor: RequestDescriptor) -> ApiResponse:
        return await self._dispatcher.execute_awaitable(descriptor, self._config)


class RequestBuilder:
    """Immutable request builder bound to a client."""

    __slots__ = ("_client", "_descriptor")

    def __init__(self, client: ApiClient, descriptor: RequestDescriptor) -> None:
        self._client = client
        self._descriptor = descriptor

    def _with(self, descriptor: RequestDescriptor) -> RequestBuilder:
        return RequestBuilder(self._client, descriptor)

    @property
    def descriptor(self) -> RequestDescriptor:
        return self._descriptor

    def query(self, key: str, value: Any) -> RequestBuilder:
        return self._with(self._descriptor.with_query(key, value))

    def header(self, name: str, value: str) -> RequestBuilder:
        return self._with(self._descriptor.with_header(name, value))

    def headers(self, headers: Mapping[str, str]) -> RequestBuilder:
        descriptor = self._descriptor
        for name, value in headers.items():
            descriptor = descriptor.with_header(name, value)
        return self._with(descriptor)

    def body(self, value: Any) -> RequestBuilder:
        return self._with(self._descriptor.with_body(value))

    def timeout(
        self,
        connect: Duration | None = None,
        read: Duration | None = None,
        write: Duration | None = None,
    ) -> RequestBuilder:
        """Override the client's timeouts for this request only."""
        try:
            override = TimeoutOverride(
                connect=_seconds(connect), read=_seconds(read), write=_seconds(write)
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid timeout {_first_error(e)}") from e
        return self._with(self._descriptor.with_timeout(override))

    def run(self) -> ExecutionResult:
        return self._client.run(self._descriptor)

    def execute(self) -> ApiResponse:
        return self._client.execute(self._descriptor)

    def execute_async(
        self,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future[ApiResponse]:
        return self._client.execute_async(self._descriptor, on_success, on_error)

    def async_(
        self,
        callback: SuccessCallback,
        on_error: ErrorCallback | None = None,
    ) -> Future[ApiResponse]:
        """Execute in the background and hand the response to ``callback``."""
        if not callable(callback):
            raise ConfigurationError("callback must be callable")
        if on_error is not None and not callable(on_error):
            raise ConfigurationError("on_error must be callable")
        return self.execute_async(callback, on_error)

    async def aexecute(self) -> ApiResponse:
        return await self._client.aexecute(self._descriptor)

    def __repr__(self) -> str:
        return f"<RequestBuilder {self._descriptor.method.value} {self._descriptor.full_url()}>"
