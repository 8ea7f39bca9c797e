"""Canonical 256-slot palette and indexed-image palette helpers."""
from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from PIL import Image

from .errors import PaletteError, RangeError


ColorTuple = Tuple[int, int, int]
EntryTuple = Tuple[int, int, int, int]

PALETTE_SLOTS = 256


def _check_channel(name: str, value: int) -> int:
    value = int(value)
    if not 0 <= value <= 255:
        raise ValueError(f"{name} must be between 0 and 255, got {value}")
    return value


class Palette:
    """Exactly 256 ``(red, green, blue, meta)`` slots.

    ``meta`` is the RIFF flag byte or the SCI32 remap byte, carried opaquely.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[EntryTuple] | None = None) -> None:
        if entries is None:
            self._entries: List[EntryTuple] = [(i, i, i, 0) for i in range(PALETTE_SLOTS)]
            return
        items = [tuple(int(v) for v in entry) for entry in entries]
        if len(items) != PALETTE_SLOTS:
            raise ValueError(f"Palette needs {PALETTE_SLOTS} entries, got {len(items)}")
        for entry in items:
            if len(entry) != 4:
                raise ValueError(f"Palette entry must have 4 channels, got {entry!r}")
            for name, value in zip(("red", "green", "blue", "meta"), entry):
                _check_channel(name, value)
        self._entries = items  # type: ignore[assignment]

    @classmethod
    def create_default(cls) -> "Palette":
        """Identity grayscale ramp, the same as ``Palette()``."""

        return cls()

    @classmethod
    def from_colors(
        cls, colors: Sequence[Sequence[int]], fill: ColorTuple = (0, 0, 0)
    ) -> "Palette":
        """Place up to 256 colors positionally and pad the rest with ``fill``."""

        entries: List[EntryTuple] = []
        for color in list(colors)[:PALETTE_SLOTS]:
            meta = color[3] if len(color) > 3 else 0
            entries.append((color[0], color[1], color[2], meta))
        while len(entries) < PALETTE_SLOTS:
            entries.append((fill[0], fill[1], fill[2], 0))
        return cls(entries)

    def __len__(self) -> int:
        return PALETTE_SLOTS

    def __iter__(self):
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Palette):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"Palette(first={self._entries[0]}, last={self._entries[-1]})"

    def get_slot(self, index: int) -> EntryTuple:
        if not 0 <= index < PALETTE_SLOTS:
            raise RangeError(f"Palette slot {index} outside 0..255")
        return self._entries[index]

    def get_color(self, index: int) -> ColorTuple:
        r, g, b, _meta = self.get_slot(index)
        return (r, g, b)

    def set_slot(self, index: int, red: int, green: int, blue: int, meta: int = 0) -> None:
        if not 0 <= index < PALETTE_SLOTS:
            raise RangeError(f"Palette slot {index} outside 0..255")
        self._entries[index] = (
            _check_channel("red", red),
            _check_channel("green", green),
            _check_channel("blue", blue),
            _check_channel("meta", meta),
        )

    def entries(self) -> List[EntryTuple]:
        return list(self._entries)

    def colors(self) -> List[ColorTuple]:
        return [(r, g, b) for r, g, b, _meta in self._entries]

    def with_meta(self, meta: int) -> "Palette":
        """Same colors with every meta byte set to ``meta`` (e.g. a default remap)."""

        meta = _check_channel("meta", meta)
        return Palette((r, g, b, meta) for r, g, b, _old in self._entries)

    def without_meta(self) -> "Palette":
        return self.with_meta(0)

    def to_flat_rgb(self, count: int = PALETTE_SLOTS) -> List[int]:
        flat: List[int] = []
        for r, g, b, _meta in self._entries[:count]:
            flat.extend((r, g, b))
        return flat



def ensure_indexed(image: Image.Image) -> Image.Image:
    """Return ``image`` unchanged if it is indexed (mode "P")."""

    if image.mode != "P":
        raise PaletteError(
            "Expected indexed image (mode 'P'). Convert/quantize before processing."
        )
    return image


def extract_palette(image: Image.Image) -> List[ColorTuple]:
    """RGB triples of an indexed image's palette, in slot order."""

    ensure_indexed(image)
    palette = image.getpalette()
    if not palette:
        raise PaletteError("Image does not contain palette data")
    return [
        (palette[i], palette[i + 1], palette[i + 2])
        for i in range(0, len(palette) - 2, 3)
    ]
