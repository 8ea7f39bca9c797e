"""Recover the palette embedded in a V56 view resource.

View files carry no reliable absolute palette offset. Every occurrence of the
``00 03`` tag is tried as the start of a palette block; the tag also shows up
by chance in pixel and cel data, so only the candidate with the highest
decoded color count is trusted.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

from .errors import NotFoundError
from .palette_ops import PALETTE_SLOTS, Palette
from .sci32_palette import Sci32PaletteBlock, try_read_sci32_block


logger = logging.getLogger(__name__)

_TAG_LO = 0x00
_TAG_HI = 0x03


def iter_palette_candidates(data: bytes) -> Iterator[Sci32PaletteBlock]:
    """Yield every position that decodes as a palette block, in file order."""

    data = bytes(data)
    for pos in range(len(data) - 6):
        if data[pos] != _TAG_LO or data[pos + 1] != _TAG_HI:
            continue
        block = try_read_sci32_block(data, pos)
        if block is None:
            continue
        yield block


def find_best_palette_block(data: bytes) -> Sci32PaletteBlock:
    best: Sci32PaletteBlock | None = None
    attempts = 0
    for block in iter_palette_candidates(data):
        attempts += 1
        if best is None or block.entry_count > best.entry_count:
            best = block
            if block.entry_count == PALETTE_SLOTS:
                break
    if best is None:
        raise NotFoundError("No usable palette found in V56 data")
    logger.debug(
        "v56.scan size=%s attempts=%s best_offset=%s best_count=%s",
        len(data),
        attempts,
        best.offset,
        best.entry_count,
    )
    return best


def extract_best_palette(data: bytes) -> Palette:
    return find_best_palette_block(data).palette


def load_v56_palette(path: Path) -> Palette:
    return extract_best_palette(Path(path).read_bytes())
