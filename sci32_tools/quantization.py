"""Median-cut palette extraction and perceptual palette merging."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image

from .palette_ops import ColorTuple


logger = logging.getLogger(__name__)

BLACK: ColorTuple = (0, 0, 0)
WHITE: ColorTuple = (255, 255, 255)


@dataclass(slots=True)
class QuantizedPalette:
    """Representative colors with the pixel population behind each one."""

    colors: List[ColorTuple]
    populations: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.colors)


class _ColorBox:
    __slots__ = ("colors", "counts", "ranges")

    def __init__(self, colors: np.ndarray, counts: np.ndarray) -> None:
        self.colors = colors
        self.counts = counts
        if len(colors):
            self.ranges = tuple(int(v) for v in colors.max(axis=0) - colors.min(axis=0))
        else:
            self.ranges = (0, 0, 0)

    @property
    def widest_range(self) -> int:
        return max(self.ranges)

    def split_channel(self) -> int:
        r, g, b = self.ranges
        if r >= g and r >= b:
            return 0
        if g >= r and g >= b:
            return 1
        return 2

    def representative(self) -> ColorTuple:
        n = len(self.colors)
        if n == 0:
            return BLACK
        sums = self.colors.sum(axis=0, dtype=np.int64)
        return (int(sums[0]) // n, int(sums[1]) // n, int(sums[2]) // n)


def _distinct_colors(image: Image.Image) -> Tuple[np.ndarray, np.ndarray]:
    """Distinct RGB colors of ``image`` in first-seen order, with pixel counts."""

    pixels = np.asarray(image.convert("RGB"), dtype=np.uint8).reshape(-1, 3)
    if pixels.size == 0:
        return np.zeros((0, 3), dtype=np.int32), np.zeros(0, dtype=np.int64)
    unique, first_index, counts = np.unique(
        pixels, axis=0, return_index=True, return_counts=True
    )
    order = np.argsort(first_index, kind="stable")
    return unique[order].astype(np.int32), counts[order].astype(np.int64)


def median_cut(image: Image.Image, max_colors: int) -> QuantizedPalette:
    """Median-cut ``image`` into exactly ``max_colors`` entries.

    Boxes split at the median member (balanced population), not the middle of
    the value range. Missing entries are padded with black and the last entry
    is always white.
    """

    if max_colors < 1:
        raise ValueError("max_colors must be at least 1")

    colors, counts = _distinct_colors(image)
    boxes = [_ColorBox(colors, counts)]

    while len(boxes) < max_colors:
        box = max(boxes, key=lambda b: b.widest_range)
        if len(box.colors) <= 1:
            break
        channel = box.split_channel()
        order = np.argsort(box.colors[:, channel], kind="stable")
        ordered_colors = box.colors[order]
        ordered_counts = box.counts[order]
        mid = len(ordered_colors) // 2
        boxes.remove(box)
        boxes.append(_ColorBox(ordered_colors[:mid], ordered_counts[:mid]))
        boxes.append(_ColorBox(ordered_colors[mid:], ordered_counts[mid:]))

    palette = [box.representative() for box in boxes]
    populations = [int(box.counts.sum()) for box in boxes]
    logger.debug(
        "median_cut distinct=%s boxes=%s max_colors=%s",
        len(colors),
        len(boxes),
        max_colors,
    )

    while len(palette) < max_colors:
        palette.append(BLACK)
        populations.append(0)
    del palette[max_colors:]
    del populations[max_colors:]

    # placeholder, not an analyzed color
    palette[-1] = WHITE
    return QuantizedPalette(colors=palette, populations=populations)


def extract_palette(image: Image.Image, max_colors: int = 256) -> List[ColorTuple]:
    return median_cut(image, max_colors).colors


def rgb_to_ycbcr(color: Sequence[int]) -> Tuple[int, int, int]:
    """Integer BT.601-style luma/chroma."""

    r, g, b = int(color[0]), int(color[1]), int(color[2])
    y = (77 * r + 150 * g + 29 * b) >> 8
    cb = ((-43 * r - 85 * g + 128 * b) >> 8) + 128
    cr = ((128 * r - 107 * g - 21 * b) >> 8) + 128
    return (y, cb, cr)


def srgb_to_linear(value: int) -> float:
    s = value / 255.0
    if s <= 0.04045:
        return s / 12.92
    return ((s + 0.055) / 1.055) ** 2.4


def linear_to_srgb(linear: float) -> int:
    if linear <= 0.0031308:
        s = 12.92 * linear
    else:
        s = 1.055 * math.pow(linear, 1.0 / 2.4) - 0.055
    return max(0, min(255, round(s * 255.0)))


def _ycbcr_distance2(a: Tuple[int, int, int], b: Tuple[int, int, int]) -> int:
    dy = a[0] - b[0]
    dcb = a[1] - b[1]
    dcr = a[2] - b[2]
    return dy * dy + dcb * dcb + dcr * dcr


def _merge_pair(colors: List[ColorTuple], pops: List[int], keep: int, drop: int) -> None:
    """Merge entry ``drop`` into ``keep`` in linear light, then remove ``drop``."""

    pop_sum = pops[keep] + pops[drop]
    if pop_sum <= 0:
        pop_sum = 1
    merged = []
    for channel in range(3):
        weighted = (
            pops[keep] * srgb_to_linear(colors[keep][channel])
            + pops[drop] * srgb_to_linear(colors[drop][channel])
        )
        merged.append(linear_to_srgb(weighted / pop_sum))
    colors[keep] = (merged[0], merged[1], merged[2])
    pops[keep] = pop_sum
    del colors[drop]
    del pops[drop]


def dedupe_palette_ycbcr(
    palette: Sequence[ColorTuple],
    populations: Sequence[int] | None = None,
    desired_count: int = 256,
    merge_radius: int = 6,
) -> List[ColorTuple]:
    """Merge perceptually close entries and return exactly ``desired_count`` colors.

    Entries within ``merge_radius`` in luma/chroma space are merged (the higher
    index folds into the lower one). If the palette is still too large the
    globally closest pair is merged repeatedly. A short palette is padded by
    repeating its last entry.
    """

    colors: List[ColorTuple] = [(int(c[0]), int(c[1]), int(c[2])) for c in palette]
    if not colors:
        return colors
    if populations is None or len(populations) != len(colors):
        pops = [1] * len(colors)
    else:
        pops = [int(p) for p in populations]

    radius2 = merge_radius * merge_radius
    keys = [rgb_to_ycbcr(c) for c in colors]
    merges = 0

    i = 0
    while i < len(colors):
        j = i + 1
        while j < len(colors):
            if _ycbcr_distance2(keys[i], keys[j]) <= radius2:
                _merge_pair(colors, pops, i, j)
                keys[i] = rgb_to_ycbcr(colors[i])
                del keys[j]
                merges += 1
                # the next entry has shifted into position j
                continue
            j += 1
        i += 1

    while len(colors) > desired_count:
        best_i = best_j = -1
        best_d2 = None
        for a in range(len(colors)):
            for b in range(a + 1, len(colors)):
                d2 = _ycbcr_distance2(keys[a], keys[b])
                if best_d2 is None or d2 < best_d2:
                    best_d2 = d2
                    best_i, best_j = a, b
        if best_i < 0:
            break
        _merge_pair(colors, pops, best_i, best_j)
        keys[best_i] = rgb_to_ycbcr(colors[best_i])
        del keys[best_j]
        merges += 1

    while len(colors) < desired_count:
        colors.append(colors[-1])

    logger.debug(
        "dedupe_ycbcr input=%s merges=%s output=%s radius=%s",
        len(palette),
        merges,
        len(colors),
        merge_radius,
    )
    return colors


def quantize_palette(
    image: Image.Image,
    desired_count: int = 256,
    *,
    dedupe: bool = True,
    merge_radius: int = 6,
    weighted: bool = False,
) -> List[ColorTuple]:
    """Median-cut ``image`` and optionally merge near-duplicate entries.

    ``weighted`` feeds the median-cut box populations into the merge; by
    default every entry weighs the same.
    """

    quantized = median_cut(image, desired_count)
    if not dedupe:
        return quantized.colors
    populations = quantized.populations if weighted else None
    return dedupe_palette_ycbcr(
        quantized.colors,
        populations=populations,
        desired_count=desired_count,
        merge_radius=merge_radius,
    )
