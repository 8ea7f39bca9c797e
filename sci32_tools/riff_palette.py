"""Microsoft RIFF palette (``.pal``) reader and writer."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .binary_io import ByteReader, ByteWriter, Field, atomic_write_bytes, four_cc, record_size
from .errors import FormatError, RangeError
from .palette_ops import EntryTuple, PALETTE_SLOTS, Palette


logger = logging.getLogger(__name__)

RIFF_VERSION = 0x0300

RIFF_HEADER = (Field("riff", "I"), Field("size", "I"), Field("pal", "I"))
DATA_HEADER = (Field("data", "I"), Field("size", "I"))
LOG_PALETTE_HEADER = (Field("version", "H"), Field("count", "H"))
PALETTE_ENTRY = (Field("red", "B"), Field("green", "B"), Field("blue", "B"), Field("flags", "B"))


@dataclass(slots=True)
class RiffPaletteRecord:
    version: int = RIFF_VERSION
    declared_count: int = PALETTE_SLOTS
    entries: List[EntryTuple] = field(default_factory=list)

    def to_palette(self) -> Palette:
        return Palette.from_colors(self.entries)


def read_riff_record(data: bytes) -> RiffPaletteRecord:
    reader = ByteReader(data)
    try:
        header = reader.read_record(RIFF_HEADER)
        if header["riff"] != four_cc("RIFF"):
            raise FormatError("Not a RIFF file (missing 'RIFF' tag)")
        if header["pal"] != four_cc("PAL "):
            raise FormatError("Not a RIFF palette (missing 'PAL ' tag)")

        chunk = reader.read_record(DATA_HEADER)
        if chunk["data"] != four_cc("data"):
            raise FormatError("Missing 'data' chunk")

        sub_header = reader.read_record(LOG_PALETTE_HEADER)
        count = sub_header["count"]
        if count <= 0 or count > PALETTE_SLOTS:
            raise FormatError(f"Unsupported palette entry count {count}")

        entries: List[EntryTuple] = []
        for _ in range(count):
            entry = reader.read_record(PALETTE_ENTRY)
            entries.append((entry["red"], entry["green"], entry["blue"], entry["flags"]))
    except RangeError as exc:
        raise FormatError(f"Truncated RIFF palette: {exc}") from exc

    entries.extend([(0, 0, 0, 0)] * (PALETTE_SLOTS - count))
    logger.debug(
        "riff.read version=0x%04x declared=%s riff_size=%s",
        sub_header["version"],
        count,
        header["size"],
    )
    return RiffPaletteRecord(
        version=sub_header["version"], declared_count=count, entries=entries
    )


def read_riff_palette(data: bytes) -> Palette:
    return read_riff_record(data).to_palette()


def write_riff_palette(palette: Palette, version: int = RIFF_VERSION) -> bytes:
    """Serialize ``palette``; the declared count is always 256."""

    data_size = record_size(LOG_PALETTE_HEADER) + PALETTE_SLOTS * record_size(PALETTE_ENTRY)
    riff_size = 4 + record_size(DATA_HEADER) + data_size

    writer = ByteWriter()
    writer.write_record(
        RIFF_HEADER, {"riff": four_cc("RIFF"), "size": riff_size, "pal": four_cc("PAL ")}
    )
    writer.write_record(DATA_HEADER, {"data": four_cc("data"), "size": data_size})
    writer.write_record(
        LOG_PALETTE_HEADER,
        {"version": version or RIFF_VERSION, "count": PALETTE_SLOTS},
    )
    for r, g, b, flags in palette:
        writer.write_record(PALETTE_ENTRY, {"red": r, "green": g, "blue": b, "flags": flags})
    return writer.getvalue()


def load_riff_palette(path: Path) -> Palette:
    return read_riff_palette(Path(path).read_bytes())


def save_riff_palette(path: Path, palette: Palette) -> None:
    atomic_write_bytes(path, write_riff_palette(palette))
