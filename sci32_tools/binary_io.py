"""Little-endian fixed-layout record helpers over owned byte buffers."""
from __future__ import annotations

import os
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, Tuple

from .errors import InvariantViolation, RangeError


@dataclass(frozen=True, slots=True)
class Field:
    """One densely packed field: a ``struct`` code or ``"<n>s"`` for text."""

    name: str
    fmt: str


Layout = Sequence[Field]


def _layout_format(layout: Layout) -> str:
    return "<" + "".join(field.fmt for field in layout)


def record_size(layout: Layout) -> int:
    return struct.calcsize(_layout_format(layout))


def four_cc(text: str) -> int:
    """Pack four ASCII characters into a little-endian u32 tag."""

    raw = text.encode("ascii")
    if len(raw) != 4:
        raise ValueError(f"FourCC must be 4 characters, got {text!r}")
    return struct.unpack("<I", raw)[0]


def read_fixed(buffer: bytes, offset: int, layout: Layout) -> Tuple[Dict[str, Any], int]:
    """Decode ``layout`` at ``offset`` and return ``(values, next_offset)``.

    Text fields come back as raw ``bytes`` with their full fixed width.
    """

    size = record_size(layout)
    if offset < 0 or offset + size > len(buffer):
        raise RangeError(
            f"Need {size} bytes at offset {offset}, buffer holds {len(buffer)}"
        )
    values = struct.unpack_from(_layout_format(layout), buffer, offset)
    record = {field.name: value for field, value in zip(layout, values)}
    return record, offset + size


def _encode_value(field: Field, value: Any) -> Any:
    if field.fmt.endswith("s"):
        if value is None:
            return b""
        if isinstance(value, str):
            return value.encode("ascii")
        return bytes(value)
    return int(value or 0)


def write_fixed(layout: Layout, values: Mapping[str, Any]) -> bytes:
    """Encode ``values`` per ``layout``; text is zero padded or truncated."""

    packed = [_encode_value(field, values.get(field.name)) for field in layout]
    try:
        return struct.pack(_layout_format(layout), *packed)
    except struct.error as exc:
        raise ValueError(f"Cannot pack record: {exc}") from exc


def decode_text(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


class ByteReader:
    """Cursor over an immutable byte buffer."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = bytes(data)
        self._pos = offset

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int) -> None:
        if offset < 0 or offset > len(self._data):
            raise RangeError(f"Seek to {offset} outside buffer of {len(self._data)} bytes")
        self._pos = offset

    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _unpack(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if self._pos + size > len(self._data):
            raise RangeError(
                f"Need {size} bytes at offset {self._pos}, buffer holds {len(self._data)}"
            )
        value = struct.unpack_from(fmt, self._data, self._pos)[0]
        self._pos += size
        return value

    def read_u16(self) -> int:
        return self._unpack("<H")

    def read_u32(self) -> int:
        return self._unpack("<I")

    def peek_u16(self) -> int | None:
        if self.remaining() < 2:
            return None
        return struct.unpack_from("<H", self._data, self._pos)[0]

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or self._pos + count > len(self._data):
            raise RangeError(
                f"Need {count} bytes at offset {self._pos}, buffer holds {len(self._data)}"
            )
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def read_record(self, layout: Layout) -> Dict[str, Any]:
        record, self._pos = read_fixed(self._data, self._pos, layout)
        return record


class ByteWriter:
    """Append-only little-endian writer."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def tell(self) -> int:
        return len(self._buf)

    def write_u16(self, value: int) -> None:
        self._buf += struct.pack("<H", value)

    def write_u32(self, value: int) -> None:
        self._buf += struct.pack("<I", value)

    def write_bytes(self, data: bytes) -> None:
        self._buf += data

    def write_record(self, layout: Layout, values: Mapping[str, Any]) -> None:
        self._buf += write_fixed(layout, values)

    def pad_to(self, offset: int) -> None:
        if len(self._buf) > offset:
            raise InvariantViolation(
                f"Cursor at {len(self._buf)} already past pad target {offset}"
            )
        self._buf += b"\x00" * (offset - len(self._buf))

    def getvalue(self) -> bytes:
        return bytes(self._buf)


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write ``payload`` next to ``path`` and rename it into place."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
