"""Reference column codecs.

These codecs exist so column files can be written and read end to end; they
favour being obviously correct over being small or fast. Every codec turns
a list of JSON-representable values (``None`` allowed) into bytes and back.

==========================  =============================================
CompressionType             Encoding
==========================  =============================================
NONE                        JSON array
DICTIONARY                  distinct values plus one code per row
RLE                         ``[value, run_length]`` pairs
NULL_SUPPRESS               null positions plus the non-null values
SNAPPY                      fast deflate (level 1) of the JSON array;
                            not snappy-framed
GZIP_BEST_COMPRESSION       deflate level 9 of the JSON array
==========================  =============================================
"""

from __future__ import annotations

import json
import zlib
from typing import Any, Callable

from lvstore.core.errors import StorageError
from lvstore.core.models import CompressionType


def _dumps(obj: Any) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


def _loads(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


def run_lengths(values: list[Any]) -> list[list[Any]]:
    runs: list[list[Any]] = []
    for v in values:
        if runs and runs[-1][0] == v and type(runs[-1][0]) is type(v):
            runs[-1][1] += 1
        else:
            runs.append([v, 1])
    return runs


def _encode_dictionary(values: list[Any]) -> bytes:
    dictionary: list[Any] = []
    codes: dict[Any, int] = {}
    out = []
    for v in values:
        key = (type(v).__name__, v)
        if key not in codes:
            codes[key] = len(dictionary)
            dictionary.append(v)
        out.append(codes[key])
    return _dumps({"dict": dictionary, "codes": out})


def _decode_dictionary(data: bytes) -> list[Any]:
    obj = _loads(data)
    dictionary = obj["dict"]
    return [dictionary[c] for c in obj["codes"]]


def _decode_rle(data: bytes) -> list[Any]:
    values: list[Any] = []
    for value, run in _loads(data):
        values.extend([value] * run)
    return values


def _encode_null_suppress(values: list[Any]) -> bytes:
    nulls = [i for i, v in enumerate(values) if v is None]
    return _dumps({"n": len(values), "nulls": nulls, "values": [v for v in values if v is not None]})


def _decode_null_suppress(data: bytes) -> list[Any]:
    obj = _loads(data)
    nulls = set(obj["nulls"])
    it = iter(obj["values"])
    return [None if i in nulls else next(it) for i in range(obj["n"])]


_ENCODERS: dict[CompressionType, Callable[[list[Any]], bytes]] = {
    CompressionType.NONE: _dumps,
    CompressionType.DICTIONARY: _encode_dictionary,
    CompressionType.RLE: lambda values: _dumps(run_lengths(values)),
    CompressionType.NULL_SUPPRESS: _encode_null_suppress,
    CompressionType.SNAPPY: lambda values: zlib.compress(_dumps(values), 1),
    CompressionType.GZIP_BEST_COMPRESSION: lambda values: zlib.compress(_dumps(values), 9),
}

_DECODERS: dict[CompressionType, Callable[[bytes], list[Any]]] = {
    CompressionType.NONE: _loads,
    CompressionType.DICTIONARY: _decode_dictionary,
    CompressionType.RLE: _decode_rle,
    CompressionType.NULL_SUPPRESS: _decode_null_suppress,
    CompressionType.SNAPPY: lambda data: _loads(zlib.decompress(data)),
    CompressionType.GZIP_BEST_COMPRESSION: lambda data: _loads(zlib.decompress(data)),
}


def encode_values(values: list[Any], compression: CompressionType) -> bytes:
    try:
        return _ENCODERS[compression](values)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"cannot encode column values with {compression.value}", cause=exc) from exc


def decode_values(data: bytes, compression: CompressionType) -> list[Any]:
    try:
        return _DECODERS[compression](data)
    except (ValueError, KeyError, zlib.error) as exc:
        raise StorageError(f"corrupt {compression.value} column payload", cause=exc) from exc


__all__ = ["encode_values", "decode_values", "run_lengths"]
