"""On-disk column files.

Layout::

    b"LVC1" | uint32 header length | header (JSON) | payload

The header records the column type, compression, tuple count, whether the
values are sorted, and a sampled value index (every ``stride``-th value)
that readers can use to seek by key. The payload is the codec output.
"""

from __future__ import annotations

import json
import shutil
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lvstore.core.errors import StorageError
from lvstore.core.models import ColumnFile, ColumnType, CompressionType
from lvstore.storage.codecs import decode_values, encode_values, run_lengths

MAGIC = b"LVC1"
EXTENSION = ".lvc"
_HEADER_LEN = struct.Struct(">I")


@dataclass
class ColumnData:
    """Decoded contents of one column file."""

    column_type: ColumnType
    compression: CompressionType
    values: list[Any]
    sorted: bool = False
    value_index: list[Any] = field(default_factory=list)

    @property
    def tuple_count(self) -> int:
        return len(self.values)


def column_file_path(base_dir: Path, local_path: str) -> Path:
    """Absolute path of a column file whose ``local_path`` is relative to *base_dir*."""
    return Path(base_dir) / f"{local_path}{EXTENSION}"


def encode_column_file(
    values: list[Any],
    column_type: ColumnType,
    compression: CompressionType,
    *,
    sorted: bool = False,
    value_index_stride: int = 128,
) -> bytes:
    header = {
        "column_type": column_type.value,
        "compression": compression.value,
        "tuple_count": len(values),
        "sorted": sorted,
        "value_index": values[::value_index_stride] if sorted else [],
    }
    header_bytes = json.dumps(header, separators=(",", ":")).encode("utf-8")
    return MAGIC + _HEADER_LEN.pack(len(header_bytes)) + header_bytes + encode_values(values, compression)


def decode_column_file(data: bytes) -> ColumnData:
    if len(data) < 4 + _HEADER_LEN.size or data[:4] != MAGIC:
        raise StorageError("not a column file (bad magic)")
    (header_len,) = _HEADER_LEN.unpack_from(data, 4)
    start = 4 + _HEADER_LEN.size
    try:
        header = json.loads(data[start:start + header_len].decode("utf-8"))
    except ValueError as exc:
        raise StorageError("corrupt column file header", cause=exc) from exc
    compression = CompressionType(header["compression"])
    values = decode_values(data[start + header_len:], compression)
    if len(values) != header["tuple_count"]:
        raise StorageError(
            f"column file holds {len(values)} values, header says {header['tuple_count']}"
        )
    return ColumnData(
        column_type=ColumnType(header["column_type"]),
        compression=compression,
        values=values,
        sorted=header["sorted"],
        value_index=header["value_index"],
    )


def write_column_file(
    path: Path,
    values: list[Any],
    column_type: ColumnType,
    compression: CompressionType,
    *,
    sorted: bool = False,
    value_index_stride: int = 128,
) -> ColumnFile:
    """Write *values* to *path* and return an unregistered descriptor.

    The descriptor has id 0 and no partition; ``local_path`` is left empty
    for the caller to fill in relative to whichever directory it uses.
    """
    data = encode_column_file(
        values, column_type, compression, sorted=sorted, value_index_stride=value_index_stride,
    )
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise StorageError(f"cannot write column file {path}", cause=exc) from exc
    return ColumnFile(
        column_file_id=0,
        partition_id=0,
        column_id=0,
        column_type=column_type,
        compression=compression,
        tuple_count=len(values),
        sorted=sorted,
        checksum=zlib.crc32(data),
        file_size=len(data),
        distinct_values=len({(type(v).__name__, v) for v in values}),
        run_count=len(run_lengths(values)),
    )


def read_column_file(path: Path) -> ColumnData:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise StorageError(f"cannot read column file {path}", cause=exc) from exc
    return decode_column_file(data)


def move_file(src: Path, dest: Path) -> None:
    """Move *src* to *dest*, creating parent directories."""
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dest))
    except OSError as exc:
        raise StorageError(f"cannot move {src} to {dest}", cause=exc) from exc


__all__ = [
    "MAGIC",
    "EXTENSION",
    "ColumnData",
    "column_file_path",
    "encode_column_file",
    "decode_column_file",
    "write_column_file",
    "read_column_file",
    "move_file",
]
