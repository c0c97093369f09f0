"""Chainable access to nested JSON objects.

    city = response.to_json_map().get("user").get("address").get("city")
    print(city)          # the scalar's string form
    city.value           # the raw value (None if any key was missing)
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

_MISSING = object()


class JsonMap(Mapping[str, Any]):
    """A JSON object, or a wrapped scalar reached by chaining ``get``.

    ``get`` never raises: a missing key yields a JsonMap wrapping None, so
    long chains can be written without intermediate checks.
    """

    __slots__ = ("_data", "_value")

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(data or {})
        self._value: Any = _MISSING

    @classmethod
    def wrap(cls, value: Any) -> JsonMap:
        """Wrap any decoded JSON value for chaining."""
        if isinstance(value, JsonMap):
            return value
        if isinstance(value, Mapping):
            return cls(value)
        wrapped = cls()
        wrapped._value = value
        return wrapped

    @property
    def is_object(self) -> bool:
        return self._value is _MISSING

    @property
    def value(self) -> Any:
        """The wrapped scalar, or the object as a plain dict."""
        if self.is_object:
            return dict(self._data)
        return self._value

    def get(self, key: str, default: Any = None) -> JsonMap:  # type: ignore[override]
        if not self.is_object:
            return JsonMap.wrap(default)
        return JsonMap.wrap(self._data.get(key, default))

    def __getitem__(self, key: str) -> Any:
        if not self.is_object:
            raise KeyError(key)
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        if self.is_object:
            return bool(self._data)
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, JsonMap):
            return self.value == other.value
        return self.value == other

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        if self.is_object:
            return str(self._data)
        return str(self._value)

    def __repr__(self) -> str:
        return f"JsonMap({self.value!r})"
