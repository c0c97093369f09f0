"""Execution Engine - Turns a RequestDescriptor into a completed response.

Pipeline for one execution:

1. Validate the URL (scheme, private targets).
2. Apply default headers, then request interceptors in order.
3. Re-validate if an interceptor changed the URL.
4. Buffer the body so every attempt sends identical bytes.
5. Retry loop: transport call, then response interceptors, driven by the
   tenacity controller the RetryPolicy builds; backoff waits block only the
   executing thread.
6. Wrap the final attempt's response in an ApiResponse.

The engine holds no per-execution state: everything mutable lives in local
variables of run(), so one engine (and one ClientConfig) can serve any
number of concurrent executions without locks.
"""

from __future__ import annotations

import io
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel
from tenacity import RetryCallState, RetryError

from mocha_api.codec import JsonCodec, PydanticJsonCodec
from mocha_api.errors import (
    ConfigurationError,
    ExecutionError,
    InterceptorError,
    JsonEncodeError,
    MochaApiError,
    RetryExhaustedError,
    TransportError,
)
from mocha_api.interceptors import apply_request_interceptors, apply_response_interceptors
from mocha_api.models import ClientConfig, RequestDescriptor
from mocha_api.response import ApiResponse
from mocha_api.retry import RetryPolicy, RetryState, RetryStatus
from mocha_api.security import Resolver, check_url, resolve_host
from mocha_api.transport import Transport

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


@dataclass
class ExecutionResult:
    """Outcome of one execution: a response, or the error that ended it."""

    response: ApiResponse | None = None
    error: MochaApiError | None = None
    attempts: int = 0
    waited: float = 0.0
    state: RetryState | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> ApiResponse:
        """Return the response, or raise the error."""
        if self.error is not None:
            raise self.error
        if self.response is None:
            raise RuntimeError("ExecutionResult holds neither a response nor an error")
        return self.response


def prepare_body(
    body: Any,
    headers: dict[str, str],
    codec: JsonCodec,
) -> tuple[bytes | None, dict[str, str]]:
    """Render a descriptor body as bytes, buffering streams.

    Returns the bytes and the headers, with a Content-Type added for text
    and JSON bodies unless the caller already set one.

    Raises:
        JsonEncodeError: If a structured body cannot be encoded.
        OSError: If reading a file-like body fails.
    """
    has_content_type = any(k.lower() == "content-type" for k in headers)

    def with_type(content_type: str) -> dict[str, str]:
        if has_content_type:
            return headers
        return {**headers, "Content-Type": content_type}

    if body is None:
        return None, headers
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body), headers
    if isinstance(body, str):
        return body.encode("utf-8"), with_type(TEXT_CONTENT_TYPE)
    if isinstance(body, (BaseModel, dict, list, tuple, int, float, bool)):
        return codec.encode(body), with_type(JSON_CONTENT_TYPE)
    if isinstance(body, io.IOBase) or hasattr(body, "read"):
        data = body.read()
        return (data.encode("utf-8") if isinstance(data, str) else bytes(data)), headers
    if isinstance(body, Iterable):
        chunks = [c.encode("utf-8") if isinstance(c, str) else bytes(c) for c in body]
        return b"".join(chunks), headers
    return codec.encode(body), with_type(JSON_CONTENT_TYPE)


class ExecutionEngine:
    """Runs descriptors through the pipeline against one transport.

    Usage:
        engine = ExecutionEngine(HttpxTransport())
        response = engine.execute(descriptor, ClientConfig())
    """

    def __init__(
        self,
        transport: Transport,
        codec: JsonCodec | None = None,
        resolver: Resolver = resolve_host,
        sleep: Callable[[float], None] = _sleep,
    ) -> None:
        self._transport = transport
        self._codec = codec or PydanticJsonCodec()
        self._resolver = resolver
        self._sleep = sleep

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def codec(self) -> JsonCodec:
        return self._codec

    def execute(self, descriptor: RequestDescriptor, config: ClientConfig) -> ApiResponse:
        """Execute and return the final response.

        Raises:
            ExecutionError: SecurityViolation, TransportError, InterceptorError,
                or RetryExhaustedError, as described on each type.
            ConfigurationError: If ``descriptor`` is malformed.
        """
        return self.run(descriptor, config).unwrap()

    def run(self, descriptor: RequestDescriptor, config: ClientConfig) -> ExecutionResult:
        """Execute and report the outcome as an ExecutionResult (never raises
        for execution failures)."""
        if not isinstance(descriptor, RequestDescriptor):
            return ExecutionResult(
                error=ConfigurationError(
                    f"Expected a RequestDescriptor, got {type(descriptor).__name__}"
                )
            )

        violation = check_url(
            descriptor.url, allow_localhost=config.allow_localhost, resolver=self._resolver
        )
        if violation is not None:
            return ExecutionResult(error=violation, state=RetryState.ABORTED)

        request = descriptor
        for name, value in config.default_headers.items():
            if request.header(name) is None:
                request = request.with_header(name, value)

        try:
            request = apply_request_interceptors(config.request_interceptors, request)
        except InterceptorError as e:
            return ExecutionResult(error=e, state=RetryState.ABORTED)

        if not isinstance(request, RequestDescriptor):
            return ExecutionResult(
                error=InterceptorError(
                    f"Request interceptors produced {type(request).__name__}, "
                    "not a RequestDescriptor"
                ),
                state=RetryState.ABORTED,
            )

        if request.url != descriptor.url:
            violation = check_url(
                request.url, allow_localhost=config.allow_localhost, resolver=self._resolver
            )
            if violation is not None:
                return ExecutionResult(error=violation, state=RetryState.ABORTED)

        try:
            body, headers = prepare_body(request.body, dict(request.headers), self._codec)
        except (JsonEncodeError, OSError, TypeError, ValueError) as e:
            error = ExecutionError(f"Cannot prepare request body: {e}", cause=e)
            error.__cause__ = e
            return ExecutionResult(error=error, state=RetryState.ABORTED)

        return self._retry_loop(request, headers, body, config)

    def _retry_loop(
        self,
        request: RequestDescriptor,
        headers: dict[str, str],
        body: bytes | None,
        config: ClientConfig,
    ) -> ExecutionResult:
        url = request.full_url()
        method = request.method.value
        timeouts = config.timeouts.merged(request.timeout)
        policy = RetryPolicy.from_config(config)
        status = RetryStatus(policy)

        def attempt() -> ApiResponse:
            number = status.begin_attempt()
            logger.debug("%s %s attempt %d/%d", method, url, number, policy.max_attempts)
            try:
                raw = self._transport.send(method, url, headers, body, timeouts)
                response = ApiResponse.from_transport(
                    raw, url=url, request=request, codec=self._codec
                )
                response = apply_response_interceptors(config.response_interceptors, response)
            except (TransportError, InterceptorError) as e:
                status.record(error=e)
                raise
            status.record(response=response)
            return response

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.debug(
                "%s %s attempt %d failed (%s); retrying in %.2fs",
                method, url, retry_state.attempt_number,
                retry_state.outcome.exception(), retry_state.next_action.sleep,
            )

        try:
            response = policy.retrying(sleep=self._sleep, before_sleep=before_sleep)(attempt)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.warning("%s %s failed after %d attempts: %s", method, url, status.attempt, last)
            exhausted = RetryExhaustedError(
                f"{method} {url} failed after {status.attempt} attempts: {last}",
                cause=last,
                attempts=status.attempt,
            )
            exhausted.__cause__ = last
            return ExecutionResult(
                error=exhausted, attempts=status.attempt, waited=status.waited, state=status.state
            )
        except (TransportError, InterceptorError) as e:
            e.attempts = status.attempt
            return ExecutionResult(
                error=e, attempts=status.attempt, waited=status.waited, state=status.state
            )

        return ExecutionResult(
            response=response, attempts=status.attempt, waited=status.waited, state=status.state
        )
