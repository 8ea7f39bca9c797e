"""Exception hierarchy shared by the palette and picture codecs."""
from __future__ import annotations


class PaletteError(RuntimeError):
    """Raised when palette or picture processing fails."""


class FormatError(PaletteError):
    """Input bytes do not match the expected layout (tag, count or offset)."""


class NotFoundError(PaletteError):
    """A heuristic scan found no usable palette block."""


class RangeError(PaletteError, IndexError):
    """Slot index outside 0..255 or a record read past the end of a buffer."""


class InvariantViolation(PaletteError):
    """An internal layout constraint was broken while writing."""
