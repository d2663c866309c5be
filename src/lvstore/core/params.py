"""Binary encoding of job and task parameters.

Parameters travel inside Job and Task records as an opaque blob. The blob
is a sequence of big-endian fields read back in the order they were
written:

* ``int32`` / ``int64`` / ``float64`` / ``boolean``
* ``string``: int32 byte length, then UTF-8 bytes (length -1 encodes None)
* ``optional_int``: one presence byte, then an int32 when present
* ``int_array`` / ``string_array``: int32 length (-1 encodes None), then items
* ``int_string_map``: int32 length, then (int32 key, string value) pairs
  in ascending key order
* ``value_ranges``: int32 length, then a JSON string per range

Subclasses of :class:`Parameters` declare how to write and read themselves;
``Parameters.from_bytes(p.to_bytes()) == p`` holds for every subclass.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar

from lvstore.core.errors import ParameterEncodingError
from lvstore.core.models import CompressionType, ValueRange

P = TypeVar("P", bound="Parameters")

_INT32 = struct.Struct(">i")
_INT64 = struct.Struct(">q")
_FLOAT64 = struct.Struct(">d")
_BOOL = struct.Struct(">?")


class ParameterWriter:
    """Appends fields to an in-memory buffer."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def int32(self, value: int) -> ParameterWriter:
        self._buf += _INT32.pack(value)
        return self

    def int64(self, value: int) -> ParameterWriter:
        self._buf += _INT64.pack(value)
        return self

    def float64(self, value: float) -> ParameterWriter:
        self._buf += _FLOAT64.pack(value)
        return self

    def boolean(self, value: bool) -> ParameterWriter:
        self._buf += _BOOL.pack(value)
        return self

    def string(self, value: str | None) -> ParameterWriter:
        if value is None:
            return self.int32(-1)
        data = value.encode("utf-8")
        self.int32(len(data))
        self._buf += data
        return self

    def optional_int(self, value: int | None) -> ParameterWriter:
        self.boolean(value is not None)
        if value is not None:
            self.int32(value)
        return self

    def int_array(self, values: list[int] | None) -> ParameterWriter:
        if values is None:
            return self.int32(-1)
        self.int32(len(values))
        for v in values:
            self.int32(v)
        return self

    def string_array(self, values: list[str] | None) -> ParameterWriter:
        if values is None:
            return self.int32(-1)
        self.int32(len(values))
        for v in values:
            self.string(v)
        return self

    def int_string_map(self, values: dict[int, str] | None) -> ParameterWriter:
        if values is None:
            return self.int32(-1)
        self.int32(len(values))
        for key in sorted(values):
            self.int32(key)
            self.string(values[key])
        return self

    def value_ranges(self, ranges: list[ValueRange] | None) -> ParameterWriter:
        if ranges is None:
            return self.int32(-1)
        self.int32(len(ranges))
        for rng in ranges:
            self.string(json.dumps(rng.to_dict()))
        return self

    def compressions(self, values: list[CompressionType] | None) -> ParameterWriter:
        if values is None:
            return self.int32(-1)
        return self.string_array([v.value for v in values])

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class ParameterReader:
    """Reads fields back in write order; raises on truncated input."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    def _take(self, fmt: struct.Struct) -> Any:
        end = self._pos + fmt.size
        if end > len(self._data):
            raise ParameterEncodingError(
                f"parameter blob truncated at byte {self._pos} (need {fmt.size} more)"
            )
        (value,) = fmt.unpack_from(self._data, self._pos)
        self._pos = end
        return value

    def int32(self) -> int:
        return self._take(_INT32)

    def int64(self) -> int:
        return self._take(_INT64)

    def float64(self) -> float:
        return self._take(_FLOAT64)

    def boolean(self) -> bool:
        return self._take(_BOOL)

    def string(self) -> str | None:
        length = self.int32()
        if length < 0:
            return None
        end = self._pos + length
        if end > len(self._data):
            raise ParameterEncodingError(f"string of {length} bytes truncated")
        value = bytes(self._data[self._pos:end]).decode("utf-8")
        self._pos = end
        return value

    def optional_int(self) -> int | None:
        return self.int32() if self.boolean() else None

    def int_array(self) -> list[int] | None:
        length = self.int32()
        if length < 0:
            return None
        return [self.int32() for _ in range(length)]

    def string_array(self) -> list[str] | None:
        length = self.int32()
        if length < 0:
            return None
        return [self.string() for _ in range(length)]

    def int_string_map(self) -> dict[int, str] | None:
        length = self.int32()
        if length < 0:
            return None
        result = {}
        for _ in range(length):
            key = self.int32()
            result[key] = self.string()
        return result

    def value_ranges(self) -> list[ValueRange] | None:
        length = self.int32()
        if length < 0:
            return None
        return [ValueRange.from_dict(json.loads(self.string())) for _ in range(length)]

    def compressions(self) -> list[CompressionType] | None:
        values = self.string_array()
        if values is None:
            return None
        return [CompressionType(v) for v in values]

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos


@dataclass
class Parameters:
    """Base class for job and task parameter records."""

    # bumped when a subclass changes its field layout
    VERSION: ClassVar[int] = 1

    def write(self, writer: ParameterWriter) -> None:
        raise NotImplementedError

    @classmethod
    def read(cls: type[P], reader: ParameterReader) -> P:
        raise NotImplementedError

    def to_bytes(self) -> bytes:
        writer = ParameterWriter().int32(self.VERSION)
        self.write(writer)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls: type[P], data: bytes) -> P:
        reader = ParameterReader(data)
        version = reader.int32()
        if version != cls.VERSION:
            raise ParameterEncodingError(
                f"{cls.__name__} version {version} is not supported (expected {cls.VERSION})"
            )
        params = cls.read(reader)
        if reader.remaining:
            raise ParameterEncodingError(
                f"{cls.__name__}: {reader.remaining} trailing bytes after decode"
            )
        return params


__all__ = ["ParameterWriter", "ParameterReader", "Parameters"]
