"""Transport - Sends one HTTP request and returns the raw response.

The engine only depends on the Transport protocol. HttpxTransport is the
default implementation; connection pooling and TLS live inside httpx.
"""

from __future__ import annotations

import time
from typing import Any, Mapping, Protocol

import httpx

from mocha_api.errors import TransportError, TransportErrorKind
from mocha_api.models import Timeouts, TransportResponse


class Transport(Protocol):
    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
        timeouts: Timeouts,
    ) -> TransportResponse: ...


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?'.

    HTTP header values must be ASCII per RFC 7230.
    """
    return value.encode("ascii", errors="replace").decode("ascii")


def classify_httpx_error(error: httpx.HTTPError) -> TransportErrorKind:
    """Map an httpx exception onto a TransportErrorKind."""
    if isinstance(error, (httpx.ConnectTimeout, httpx.PoolTimeout)):
        return TransportErrorKind.CONNECT_TIMEOUT
    if isinstance(error, httpx.ReadTimeout):
        return TransportErrorKind.READ_TIMEOUT
    if isinstance(error, httpx.WriteTimeout):
        return TransportErrorKind.WRITE_TIMEOUT
    if isinstance(error, httpx.ConnectError):
        # Also covers DNS resolution failures.
        return TransportErrorKind.CONNECTION_REFUSED
    return TransportErrorKind.OTHER


class HttpxTransport:
    """Transport backed by a single ``httpx.Client``.

    Redirects are never followed: a redirect target has not been through
    URL validation. Usage:

        with HttpxTransport() as transport:
            raw = transport.send("GET", url, {}, None, Timeouts())
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        verify: bool | str = True,
        **client_kwargs: Any,
    ) -> None:
        """Initialize the transport.

        Args:
            client: Pre-built httpx client (e.g. one using httpx.MockTransport).
                    The transport takes ownership and closes it.
            verify: Server certificate verification, as accepted by httpx.
            client_kwargs: Extra keyword arguments for httpx.Client.
        """
        if client is None:
            client = httpx.Client(verify=verify, follow_redirects=False, **client_kwargs)
        self._client = client

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
        timeouts: Timeouts,
    ) -> TransportResponse:
        """Send one request.

        Raises:
            TransportError: On timeouts, connection failures, or protocol errors.
        """
        timeout = httpx.Timeout(
            connect=timeouts.connect,
            read=timeouts.read,
            write=timeouts.write,
            pool=timeouts.connect,
        )
        safe_headers = {k: _sanitize_header_value(v) for k, v in headers.items()}

        try:
            start_time = time.perf_counter()
            response = self._client.request(
                method=method,
                url=url,
                headers=safe_headers or None,
                content=body,
                timeout=timeout,
                follow_redirects=False,
            )
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.HTTPError as e:
            kind = classify_httpx_error(e)
            raise TransportError(f"{method} {url} failed ({kind.value}): {e}", kind, cause=e) from e
        except httpx.InvalidURL as e:
            raise TransportError(f"{method} {url} invalid URL: {e}", cause=e) from e
        except UnicodeEncodeError as e:
            # Non-ASCII in places we don't sanitize: header names, query, path.
            raise TransportError(
                f"{method} {url} encoding error: non-ASCII character "
                f"{e.object[e.start:e.end]!r} at position {e.start}",
                TransportErrorKind.OTHER,
                cause=e,
            ) from e

        return TransportResponse(
            status_code=response.status_code,
            headers=list(response.headers.multi_items()),
            content=response.content,
            elapsed_ms=elapsed_ms,
            http_version=response.http_version,
        )
