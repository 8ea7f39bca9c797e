"""File-level palette and picture conversion workflows."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from PIL import Image

from .palette_ops import Palette
from .picture import Picture, export_picture_image, load_picture, save_picture
from .quantization import quantize_palette
from .riff_palette import read_riff_palette, save_riff_palette
from .sci32_palette import read_sci32_block, save_sci32_palette
from .v56_extractor import find_best_palette_block


logger = logging.getLogger(__name__)

PaletteSource = Literal["riff", "sci32", "v56"]
PaletteTarget = Literal["riff", "sci32"]


@dataclass(slots=True)
class ConvertOptions:
    input_path: Path
    output_dir: Path
    fill_mode: bool = False
    write_palette: bool = False


@dataclass(slots=True)
class ConvertResult:
    input_path: Path
    output_path: Path
    palette_path: Path | None
    palette: Palette


def detect_palette_source(path: Path, data: bytes) -> PaletteSource:
    if data[:4] == b"RIFF" or path.suffix.lower() == ".pal":
        return "riff"
    if path.suffix.lower() == ".v56":
        return "v56"
    return "sci32"


def read_palette_bytes(data: bytes, source: PaletteSource) -> Palette:
    if source == "riff":
        return read_riff_palette(data)
    if source == "v56":
        block = find_best_palette_block(data)
        logger.debug("palette from v56 offset=%s count=%s", block.offset, block.entry_count)
        return block.palette
    return read_sci32_block(data).palette


def load_palette(path: Path) -> Palette:
    """Read a RIFF ``.pal``, a V56 view or a bare SCI32 palette block."""

    path = Path(path)
    data = path.read_bytes()
    source = detect_palette_source(path, data)
    logger.debug("load_palette path=%s source=%s size=%s", path, source, len(data))
    return read_palette_bytes(data, source)


def convert_palette(palette: Palette, target: PaletteTarget, remap: int = 0) -> Palette:
    """Carry ``palette`` over to ``target``'s metadata convention.

    RIFF flags do not survive into SCI32 and SCI32 remap bytes do not survive
    into RIFF; SCI32 targets get ``remap`` stamped on every slot.
    """

    if target == "sci32":
        return palette.with_meta(remap)
    return palette.without_meta()


def save_palette(path: Path, palette: Palette, target: PaletteTarget) -> Path:
    path = Path(path)
    if target == "riff":
        save_riff_palette(path, palette)
    elif target == "sci32":
        save_sci32_palette(path, palette)
    else:
        raise ValueError(f"Unknown palette format {target!r}")
    logger.debug("save_palette path=%s target=%s", path, target)
    return path


def palette_from_image(
    path: Path, max_colors: int = 256, *, dedupe: bool = False, merge_radius: int = 6
) -> Palette:
    with Image.open(path) as img:
        colors = quantize_palette(
            img, max_colors, dedupe=dedupe, merge_radius=merge_radius
        )
    return Palette.from_colors(colors)


def convert_image(options: ConvertOptions) -> ConvertResult:
    """Encode one image file as ``<output_dir>/<stem>.p56``."""

    output_dir = options.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / (options.input_path.stem + ".p56")

    with Image.open(options.input_path) as img:
        img.load()
        save_picture(img, output_path, fill_mode=options.fill_mode)

    picture = load_picture(output_path)
    palette_path: Path | None = None
    if options.write_palette:
        palette_path = output_path.with_suffix(".pal")
        save_riff_palette(palette_path, picture.palette)

    logger.debug(
        "convert_image input=%s output=%s fill=%s",
        options.input_path,
        output_path,
        options.fill_mode,
    )
    return ConvertResult(
        input_path=options.input_path,
        output_path=output_path,
        palette_path=palette_path,
        palette=picture.palette,
    )


def export_picture(path: Path, out_path: Path) -> Picture:
    """Decode a ``.p56`` and save it through Pillow (format from the suffix)."""

    picture = load_picture(path)
    export_picture_image(picture, out_path)
    return picture
