"""Response Wrapper - Read-only view of a completed response.

Decoded views are computed lazily and memoized per shape: the JSON codec is
invoked at most once for each distinct shape a caller asks for, no matter
how many times (or from how many threads) it is asked.
"""

from __future__ import annotations

import re
from threading import Lock
from typing import TYPE_CHECKING, Any, TypeVar, overload

import httpx

from mocha_api.codec import JsonCodec, PydanticJsonCodec
from mocha_api.errors import JsonDecodeError
from mocha_api.json_map import JsonMap

if TYPE_CHECKING:
    from mocha_api.models import RequestDescriptor, TransportResponse

T = TypeVar("T")

_CHARSET = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)


def _shape_key(shape: Any) -> Any:
    try:
        hash(shape)
    except TypeError:
        return repr(shape)
    return shape


class ApiResponse:
    """The final response of an execution.

    Headers are an ``httpx.Headers``: iteration keeps wire order, lookups
    are case-insensitive. Values returned by the decode methods are shared
    between calls; treat them as read-only.
    """

    def __init__(
        self,
        status: int,
        headers: httpx.Headers | list[tuple[str, str]] | dict[str, str] | None = None,
        body: bytes = b"",
        *,
        url: str = "",
        elapsed_ms: float = 0.0,
        http_version: str = "HTTP/1.1",
        request: RequestDescriptor | None = None,
        codec: JsonCodec | None = None,
    ) -> None:
        self._status = status
        self._headers = httpx.Headers(headers or [])
        self._body = bytes(body)
        self._url = url
        self._elapsed_ms = elapsed_ms
        self._http_version = http_version
        self._request = request
        self._codec = codec or PydanticJsonCodec()
        self._decoded: dict[Any, Any] = {}
        self._decode_lock = Lock()

    @classmethod
    def from_transport(
        cls,
        raw: TransportResponse,
        *,
        url: str,
        request: RequestDescriptor | None = None,
        codec: JsonCodec | None = None,
    ) -> ApiResponse:
        return cls(
            raw.status_code,
            raw.headers,
            raw.content,
            url=url,
            elapsed_ms=raw.elapsed_ms,
            http_version=raw.http_version,
            request=request,
            codec=codec,
        )

    # --- Raw access ---

    @property
    def status(self) -> int:
        return self._status

    @property
    def headers(self) -> httpx.Headers:
        """A copy of the response headers; changing it leaves the response as it was."""
        return httpx.Headers(self._headers)

    @property
    def raw_body(self) -> bytes:
        return self._body

    @property
    def url(self) -> str:
        return self._url

    @property
    def elapsed_ms(self) -> float:
        return self._elapsed_ms

    @property
    def http_version(self) -> str:
        return self._http_version

    @property
    def request(self) -> RequestDescriptor | None:
        """The descriptor as sent, after request interceptors ran."""
        return self._request

    @property
    def is_error(self) -> bool:
        return self._status >= 400

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive lookup; repeated headers are joined with ', '."""
        return self._headers.get(name, default)

    def header_values(self, name: str) -> list[str]:
        return self._headers.get_list(name)

    @property
    def charset(self) -> str:
        match = _CHARSET.search(self._headers.get("content-type", ""))
        return match.group(1) if match else "utf-8"

    @property
    def text(self) -> str:
        try:
            return self._body.decode(self.charset, errors="replace")
        except LookupError:
            return self._body.decode("utf-8", errors="replace")

    # --- Decoded views ---

    @overload
    def decode_as(self, shape: type[T]) -> T: ...

    @overload
    def decode_as(self, shape: Any) -> Any: ...

    def decode_as(self, shape: Any) -> Any:
        """Decode the body into ``shape``, memoized per shape.

        Raises:
            JsonDecodeError: If the body is not JSON or does not fit ``shape``.
        """
        key = _shape_key(shape)
        with self._decode_lock:
            if key in self._decoded:
                return self._decoded[key]
            value = self._codec.decode(self._body, shape)
            self._decoded[key] = value
            return value

    def decode_generic(self) -> Any:
        """Decode the body into plain dicts, lists and scalars."""
        return self.decode_as(Any)

    def json(self) -> Any:
        return self.decode_generic()

    def to_map(self) -> dict[str, Any]:
        """Decode a JSON object body into a dict."""
        value = self.decode_generic()
        if not isinstance(value, dict):
            raise JsonDecodeError(
                f"Expected a JSON object, got {type(value).__name__}", dict
            )
        return value

    def to_list(self) -> list[Any]:
        """Decode a JSON array body into a list."""
        value = self.decode_generic()
        if not isinstance(value, list):
            raise JsonDecodeError(
                f"Expected a JSON array, got {type(value).__name__}", list
            )
        return value

    def to_json_map(self) -> JsonMap:
        return JsonMap(self.to_map())

    def __repr__(self) -> str:
        return f"<ApiResponse [{self._status}] {self._url}>"
