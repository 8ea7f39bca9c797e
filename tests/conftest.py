"""Shared fixtures: synthetic palette blocks and Pillow images."""
from __future__ import annotations

import random
import struct
from typing import Callable, List, Sequence, Tuple

import pytest
from PIL import Image

ColorTuple = Tuple[int, int, int]


def _sci32_block(
    colors: Sequence[ColorTuple],
    *,
    start_offset: int = 0,
    entry_type: int = 0,
    sub_tag: int | None = None,
    remaps: Sequence[int] | None = None,
    color_count: int | None = None,
) -> bytes:
    count = len(colors) if color_count is None else color_count
    header = struct.pack("<hB9sBh", 0, 15, b"Test", 1, 0)
    tail = struct.pack("<10sBBHHBBI", b"TestPal", start_offset, 0, 0, count, 1, entry_type, 0)
    body = bytearray()
    for i, (r, g, b) in enumerate(colors):
        if entry_type == 0:
            remap = remaps[i] if remaps else 0
            body += bytes((remap, r, g, b))
        else:
            body += bytes((r, g, b))
    prefix = struct.pack("<HI", 0x0300, len(header) + len(tail) + len(body))
    if sub_tag is not None:
        prefix += struct.pack("<H", sub_tag)
    return prefix + header + tail + bytes(body)


@pytest.fixture
def sci32_block() -> Callable[..., bytes]:
    return _sci32_block


@pytest.fixture
def rainbow_colors() -> List[ColorTuple]:
    return [((i * 7) % 256, (i * 13 + 5) % 256, (255 - i) % 256) for i in range(256)]


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


def _indexed_image(width: int, height: int, max_index: int = 254, palette_size: int = 256) -> Image.Image:
    data = bytes((x + y * 3) % (max_index + 1) for y in range(height) for x in range(width))
    image = Image.frombytes("P", (width, height), data)
    flat: List[int] = []
    for i in range(palette_size):
        flat.extend((i, (i * 5) % 256, 255 - i))
    image.putpalette(flat)
    return image


@pytest.fixture
def indexed_image() -> Callable[..., Image.Image]:
    return _indexed_image


@pytest.fixture
def gradient_image() -> Image.Image:
    data = bytearray()
    for y in range(48):
        for x in range(64):
            data += bytes((x * 4, y * 5, (x * y) % 256))
    image = Image.frombytes("RGB", (64, 48), bytes(data))
    return image
