"""JSON collaborator - Encodes request bodies and decodes response bodies.

PydanticJsonCodec validates JSON straight into the requested shape with a
pydantic TypeAdapter. Shapes are plain type expressions (a BaseModel
subclass, dict[str, int], list[Item], Any for the generic tree). pydantic
never honours type hints embedded in the payload and never runs code while
decoding.
"""

from __future__ import annotations

from threading import Lock
from typing import Any, Protocol

import pydantic_core
from pydantic import PydanticSchemaGenerationError, TypeAdapter, ValidationError

from mocha_api.errors import JsonDecodeError, JsonEncodeError


class JsonCodec(Protocol):
    def encode(self, value: Any) -> bytes: ...

    def decode(self, data: bytes, shape: Any = Any) -> Any: ...


def shape_name(shape: Any) -> str:
    return getattr(shape, "__name__", None) or repr(shape)


class PydanticJsonCodec:
    """JsonCodec backed by pydantic.

    TypeAdapters are built once per shape and shared by every response
    decoded through this codec.
    """

    def __init__(self) -> None:
        self._adapters: dict[Any, TypeAdapter[Any]] = {}
        self._lock = Lock()

    def _adapter(self, shape: Any) -> TypeAdapter[Any]:
        try:
            hash(shape)
        except TypeError:
            # Unhashable shape; build an adapter without caching it.
            return TypeAdapter(shape)
        with self._lock:
            adapter = self._adapters.get(shape)
            if adapter is None:
                adapter = TypeAdapter(shape)
                self._adapters[shape] = adapter
            return adapter

    def encode(self, value: Any) -> bytes:
        try:
            return pydantic_core.to_json(value)
        except (pydantic_core.PydanticSerializationError, TypeError, ValueError) as e:
            raise JsonEncodeError(f"Cannot encode {type(value).__name__} as JSON: {e}", value) from e

    def decode(self, data: bytes, shape: Any = Any) -> Any:
        try:
            adapter = self._adapter(shape)
        except PydanticSchemaGenerationError as e:
            raise JsonDecodeError(f"Unsupported shape {shape_name(shape)}: {e}", shape) from e
        try:
            return adapter.validate_json(data)
        except ValidationError as e:
            raise JsonDecodeError(
                f"Body does not decode as {shape_name(shape)}: {e}", shape
            ) from e
