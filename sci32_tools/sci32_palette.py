"""SCI32 in-engine palette block codec.

Block layout (little endian)::

    tag      u16   0x0300
    size     u32   informational, never cross-checked
    [subtag] u16   0x008B or 0x000B on legacy wrapped blocks
    header   15B   id, header size, name[9], count, reserved
    tail     22B   title[10], start offset, cycles, flags, color count,
                   default, entry type, valid
    entries        type 0: remap,R,G,B  /  other types: R,G,B

Entry ``i`` lands in slot ``start_offset + i``; blocks may cover only part
of the palette, the remaining slots keep the default grayscale ramp.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .binary_io import (
    ByteReader,
    ByteWriter,
    Field,
    atomic_write_bytes,
    decode_text,
    record_size,
)
from .errors import FormatError, RangeError
from .palette_ops import PALETTE_SLOTS, Palette


logger = logging.getLogger(__name__)

PALETTE_TAG = 0x0300
PALPATCH80_TAG = 0x008B
PALPATCH_TAG = 0x000B
SUB_TAGS = frozenset({PALPATCH80_TAG, PALPATCH_TAG})

ENTRY_TYPE_REMAP_RGB = 0

PAL_HEADER = (
    Field("pal_id", "h"),
    Field("header_size", "B"),
    Field("name", "9s"),
    Field("pal_count", "B"),
    Field("reserved", "h"),
)
PAL_TAIL = (
    Field("title", "10s"),
    Field("start_offset", "B"),
    Field("n_cycles", "B"),
    Field("flags", "H"),
    Field("color_count", "H"),
    Field("default", "B"),
    Field("entry_type", "B"),
    Field("valid", "I"),
)
COMP_PAL = PAL_HEADER + PAL_TAIL
ENTRY_REMAP_RGB = (Field("remap", "B"), Field("red", "B"), Field("green", "B"), Field("blue", "B"))
ENTRY_RGB = (Field("red", "B"), Field("green", "B"), Field("blue", "B"))

DEFAULT_NAME = "Custom"
DEFAULT_TITLE = "CustomPal"


@dataclass(slots=True)
class Sci32PaletteBlock:
    palette: Palette
    offset: int
    declared_size: int
    sub_tag: int | None
    name: str
    title: str
    start_offset: int
    entry_count: int
    entry_type: int
    end_offset: int

    @property
    def has_remap(self) -> bool:
        return self.entry_type == ENTRY_TYPE_REMAP_RGB


def read_sci32_block(data: bytes, offset: int = 0) -> Sci32PaletteBlock:
    """Decode the palette block starting at ``offset``."""

    reader = ByteReader(data, offset)
    try:
        tag = reader.read_u16()
        if tag != PALETTE_TAG:
            raise FormatError(f"Missing palette tag 0x0300 at offset {offset} (found 0x{tag:04x})")
        declared_size = reader.read_u32()

        sub_tag = reader.peek_u16()
        if sub_tag in SUB_TAGS:
            reader.read_u16()
        else:
            sub_tag = None

        comp = reader.read_record(COMP_PAL)
        count = comp["color_count"]
        if count <= 0 or count > PALETTE_SLOTS:
            raise FormatError(f"Unsupported palette color count {count}")

        entry_type = comp["entry_type"]
        start = comp["start_offset"]
        palette = Palette.create_default()
        for i in range(count):
            slot = start + i
            if entry_type == ENTRY_TYPE_REMAP_RGB:
                entry = reader.read_record(ENTRY_REMAP_RGB)
                remap = entry["remap"]
            else:
                entry = reader.read_record(ENTRY_RGB)
                remap = 0
            if 0 <= slot < PALETTE_SLOTS:
                palette.set_slot(slot, entry["red"], entry["green"], entry["blue"], remap)
    except RangeError as exc:
        raise FormatError(f"Truncated SCI32 palette block at offset {offset}: {exc}") from exc

    return Sci32PaletteBlock(
        palette=palette,
        offset=offset,
        declared_size=declared_size,
        sub_tag=sub_tag,
        name=decode_text(comp["name"]),
        title=decode_text(comp["title"]),
        start_offset=start,
        entry_count=count,
        entry_type=entry_type,
        end_offset=reader.tell(),
    )


def try_read_sci32_block(data: bytes, offset: int) -> Sci32PaletteBlock | None:
    """Return the block at ``offset`` or ``None`` when it does not decode."""

    try:
        return read_sci32_block(data, offset)
    except FormatError:
        return None


def read_sci32_palette(data: bytes) -> Palette:
    return read_sci32_block(data).palette


def write_sci32_palette(palette: Palette) -> bytes:
    """Serialize a full 256-entry type-0 block.

    The remap byte is always written as 0, so remap metadata read from other
    blocks is not reproduced.
    """

    block_size = record_size(COMP_PAL) + PALETTE_SLOTS * record_size(ENTRY_REMAP_RGB)
    writer = ByteWriter()
    writer.write_u16(PALETTE_TAG)
    writer.write_u32(block_size)
    writer.write_record(
        COMP_PAL,
        {
            "pal_id": 0,
            "header_size": 15,
            "name": DEFAULT_NAME,
            "pal_count": 1,
            "reserved": 0,
            "title": DEFAULT_TITLE,
            "start_offset": 0,
            "n_cycles": 0,
            "flags": 0,
            "color_count": PALETTE_SLOTS,
            "default": 1,
            "entry_type": ENTRY_TYPE_REMAP_RGB,
            "valid": 0,
        },
    )
    for r, g, b, _meta in palette:
        writer.write_record(ENTRY_REMAP_RGB, {"remap": 0, "red": r, "green": g, "blue": b})
    return writer.getvalue()


def load_sci32_palette(path: Path) -> Palette:
    block = read_sci32_block(Path(path).read_bytes())
    logger.debug(
        "sci32.load path=%s name=%s count=%s start=%s type=%s subtag=%s",
        path,
        block.name,
        block.entry_count,
        block.start_offset,
        block.entry_type,
        block.sub_tag,
    )
    return block.palette


def save_sci32_palette(path: Path, palette: Palette) -> None:
    atomic_write_bytes(path, write_sci32_palette(palette))
