"""SCI32 single-cel picture (``.p56``) reader and writer.

Only the canonical layout written by the engine tools is accepted::

    0     tag 0x00008181
    4     picture header (14 bytes, palette offset 62)
    18    cel record (42 bytes, control offset -> raw pixels)
    60    2 zero bytes
    62    palette block: wrapper, named sub-header, tail, 255 x RGB
    870   640 x 480 index bytes

Index 255 is transparent; only 255 colors are stored, slot 255 is
synthesized from slot 0 on read.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import numpy as np
from PIL import Image

from .binary_io import ByteReader, ByteWriter, Field, atomic_write_bytes, read_fixed
from .errors import FormatError, InvariantViolation, PaletteError, RangeError
from .palette_ops import PALETTE_SLOTS, Palette, extract_palette
from .quantization import quantize_palette
from .sci32_palette import PAL_TAIL


logger = logging.getLogger(__name__)

CANVAS_WIDTH = 640
CANVAS_HEIGHT = 480
PICTURE_TAG = 0x00008181
PICTURE_HEADER_SIZE = 14
CEL_HEADER_SIZE = 42
PALETTE_OFFSET = 62
PALETTE_DATA_SKIP = 41
CONTROL_OFFSET = 870
TRANSPARENT_INDEX = 255
USABLE_COLORS = 255
LEGACY_WRAPPER_TAG = 0x0322
PALETTE_NAME = "GENPAL"
PALETTE_TITLE = bytes((0x00, 0x34, 0x00, 0x00, 0x02, 0x00, 0x5A, 0x0E, 0x00, 0x00))
MIN_FILE_SIZE = 64
MERGE_RADIUS = 6

PICTURE_HEADER = (
    Field("header_size", "H"),
    Field("cel_count", "B"),
    Field("split_flag", "B"),
    Field("cel_header_size", "H"),
    Field("palette_offset", "I"),
    Field("res_x", "H"),
    Field("res_y", "H"),
)
CEL_HEADER = (
    Field("width", "H"),
    Field("height", "H"),
    Field("x_shift", "h"),
    Field("y_shift", "h"),
    Field("transparent", "B"),
    Field("compress_type", "B"),
    Field("data_flags", "H"),
    Field("data_byte_count", "i"),
    Field("control_byte_count", "i"),
    Field("palette_offset", "i"),
    Field("control_offset", "i"),
    Field("color_offset", "i"),
    Field("row_table_offset", "i"),
    Field("priority", "h"),
    Field("x_pos", "h"),
    Field("y_pos", "h"),
)
PALETTE_SUBHEADER = (
    Field("header_size", "B"),
    Field("name", "9s"),
    Field("pal_count", "B"),
    Field("reserved", "h"),
    Field("sub_tag", "H"),
)

_MAP_CHUNK = 2048


@dataclass(slots=True)
class Picture:
    width: int
    height: int
    palette: Palette
    indices: bytes
    palette_offset: int = PALETTE_OFFSET
    pixel_offset: int = CONTROL_OFFSET

    def to_image(self) -> Image.Image:
        image = Image.frombytes("P", (self.width, self.height), self.indices)
        image.putpalette(self.palette.to_flat_rgb())
        return image


def read_picture(data: bytes) -> Picture:
    data = bytes(data)
    if len(data) < 4 or data[:4] != PICTURE_TAG.to_bytes(4, "little"):
        raise FormatError("Not a SCI32 P56 picture (missing 81 81 00 00 tag)")
    if len(data) < MIN_FILE_SIZE:
        raise FormatError("File too small to be a SCI32 P56 picture")

    try:
        header, cel_start = read_fixed(data, 4, PICTURE_HEADER)
        cel, _ = read_fixed(data, cel_start, CEL_HEADER)
    except RangeError as exc:
        raise FormatError(f"Truncated P56 header: {exc}") from exc

    if header["header_size"] != PICTURE_HEADER_SIZE:
        raise FormatError(
            f"Unexpected picture header size {header['header_size']}; not a standard P56"
        )
    palette_offset = header["palette_offset"]
    if palette_offset != PALETTE_OFFSET:
        raise FormatError(f"Unexpected palette offset {palette_offset}; not a standard P56")

    width = header["res_x"]
    height = header["res_y"]
    if width == 0 or height == 0:
        raise FormatError("Invalid image dimensions in P56")

    pixel_offset = cel["control_offset"]
    pixel_count = width * height
    if pixel_offset < 0 or pixel_offset + pixel_count > len(data):
        raise FormatError("Invalid image data offset/length in P56")

    color_start = palette_offset + PALETTE_DATA_SKIP
    if color_start + USABLE_COLORS * 3 > len(data):
        raise FormatError("Palette block out of range in P56")

    reader = ByteReader(data, color_start)
    raw_colors = reader.read_bytes(USABLE_COLORS * 3)
    palette = Palette()
    for slot in range(USABLE_COLORS):
        palette.set_slot(slot, *raw_colors[slot * 3 : slot * 3 + 3])
    r, g, b = palette.get_color(0)
    palette.set_slot(TRANSPARENT_INDEX, r, g, b)

    reader.seek(pixel_offset)
    indices = reader.read_bytes(pixel_count)
    logger.debug(
        "p56.read size=%sx%s palette_offset=%s pixel_offset=%s",
        width,
        height,
        palette_offset,
        pixel_offset,
    )
    return Picture(
        width=width,
        height=height,
        palette=palette,
        indices=indices,
        palette_offset=palette_offset,
        pixel_offset=pixel_offset,
    )


def map_to_palette(image: Image.Image, palette: Palette) -> bytes:
    """Nearest palette index (0..254) for every pixel, row-major.

    Squared RGB distance; the lowest index wins ties so an exact match is
    always taken first.
    """

    rgb = np.asarray(image.convert("RGB"), dtype=np.int32).reshape(-1, 3)
    if rgb.size == 0:
        return b""
    candidates = np.asarray(palette.colors()[:USABLE_COLORS], dtype=np.int32)
    unique, inverse = np.unique(rgb, axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    best = np.empty(len(unique), dtype=np.uint8)
    for start in range(0, len(unique), _MAP_CHUNK):
        chunk = unique[start : start + _MAP_CHUNK]
        diff = chunk[:, None, :] - candidates[None, :, :]
        distance = (diff * diff).sum(axis=2)
        best[start : start + len(chunk)] = distance.argmin(axis=1)
    return best[inverse].tobytes()


def _check_source_size(image: Image.Image) -> Tuple[int, int]:
    width, height = image.size
    if width <= 0 or height <= 0:
        raise FormatError("Source image has no pixels")
    return width, height


def make_canvas(image: Image.Image, fill_index: int = TRANSPARENT_INDEX) -> Image.Image:
    """Center an indexed image on a 640x480 canvas filled with ``fill_index``."""

    width, height = image.size
    canvas = Image.new("P", (CANVAS_WIDTH, CANVAS_HEIGHT), fill_index)
    place_x = (CANVAS_WIDTH - width) // 2
    place_y = (CANVAS_HEIGHT - height) // 2
    logger.debug(
        "make_canvas src=%sx%s place=(%s,%s) fill=%s",
        width,
        height,
        place_x,
        place_y,
        fill_index,
    )
    canvas.paste(image, (place_x, place_y))
    return canvas


def scale_to_cover(image: Image.Image) -> Image.Image:
    """Scale uniformly to cover 640x480 (upscaling allowed) and center-crop."""

    width, height = _check_source_size(image)
    scale = max(CANVAS_WIDTH / width, CANVAS_HEIGHT / height)
    scaled_w = round(width * scale)
    scaled_h = round(height * scale)
    # truncate toward zero when the scaled image overflows the frame
    dx = int((CANVAS_WIDTH - scaled_w) / 2)
    dy = int((CANVAS_HEIGHT - scaled_h) / 2)

    # resample only the part of the source that lands inside the frame
    visible_w = min(CANVAS_WIDTH, scaled_w)
    visible_h = min(CANVAS_HEIGHT, scaled_h)
    x_ratio = width / scaled_w
    y_ratio = height / scaled_h
    left = max(-dx, 0) * x_ratio
    top = max(-dy, 0) * y_ratio
    box = (
        left,
        top,
        min(float(width), left + visible_w * x_ratio),
        min(float(height), top + visible_h * y_ratio),
    )
    logger.debug(
        "scale_to_cover src=%sx%s scaled=%sx%s box=%s",
        width,
        height,
        scaled_w,
        scaled_h,
        box,
    )
    visible = image.convert("RGB").resize((visible_w, visible_h), Image.NEAREST, box=box)
    frame = Image.new("RGB", (CANVAS_WIDTH, CANVAS_HEIGHT), (0, 0, 0))
    frame.paste(visible, (max(dx, 0), max(dy, 0)))
    return frame


def scale_to_fit(image: Image.Image) -> Image.Image:
    """Scale down (never up) to fit inside 640x480."""

    width, height = _check_source_size(image)
    scale = min(1.0, CANVAS_WIDTH / width, CANVAS_HEIGHT / height)
    fit_w = max(1, round(width * scale))
    fit_h = max(1, round(height * scale))
    rgb = image.convert("RGB")
    if (fit_w, fit_h) == (width, height):
        return rgb
    return rgb.resize((fit_w, fit_h), Image.NEAREST)


def _indexed_image(indices: bytes, size: Tuple[int, int]) -> Image.Image:
    return Image.frombytes("P", size, indices)


def _exact_fit(image: Image.Image) -> Tuple[bytes, Palette]:
    source = np.asarray(image, dtype=np.uint8)
    if (source == TRANSPARENT_INDEX).any():
        raise FormatError(
            "Indexed image uses palette index 255; cannot pack without altering data"
        )
    try:
        colors = extract_palette(image)
    except PaletteError as exc:
        raise FormatError(str(exc)) from exc
    if len(colors) < USABLE_COLORS:
        raise FormatError(
            f"Indexed image palette has {len(colors)} entries; at least 255 are required"
        )
    canvas = make_canvas(image.copy())
    return canvas.tobytes(), Palette.from_colors(colors)


def _quantized(frame: Image.Image) -> Tuple[bytes, Palette]:
    colors = quantize_palette(frame, PALETTE_SLOTS, dedupe=True, merge_radius=MERGE_RADIUS)
    palette = Palette.from_colors(colors)
    return map_to_palette(frame, palette), palette


def build_picture(pixels: bytes, palette: Palette) -> bytes:
    """Emit the fixed 640x480 skeleton around ``pixels`` and ``palette``."""

    pixel_count = CANVAS_WIDTH * CANVAS_HEIGHT
    if len(pixels) != pixel_count:
        raise InvariantViolation(f"Expected {pixel_count} pixels, got {len(pixels)}")

    writer = ByteWriter()
    writer.write_u32(PICTURE_TAG)
    writer.write_record(
        PICTURE_HEADER,
        {
            "header_size": PICTURE_HEADER_SIZE,
            "cel_count": 1,
            "split_flag": 0,
            "cel_header_size": CEL_HEADER_SIZE,
            "palette_offset": PALETTE_OFFSET,
            "res_x": CANVAS_WIDTH,
            "res_y": CANVAS_HEIGHT,
        },
    )
    writer.write_record(
        CEL_HEADER,
        {
            "width": CANVAS_WIDTH,
            "height": CANVAS_HEIGHT,
            "transparent": TRANSPARENT_INDEX,
            "compress_type": 0,
            "data_byte_count": pixel_count,
            "control_offset": CONTROL_OFFSET,
        },
    )
    writer.pad_to(PALETTE_OFFSET)

    writer.write_u16(LEGACY_WRAPPER_TAG)
    writer.write_u16(0)
    writer.write_record(
        PALETTE_SUBHEADER,
        {"header_size": 14, "name": PALETTE_NAME, "pal_count": 1, "reserved": 0, "sub_tag": 0},
    )
    writer.write_record(
        PAL_TAIL,
        {
            "title": PALETTE_TITLE,
            "start_offset": 0,
            "n_cycles": 0,
            "flags": 0,
            "color_count": USABLE_COLORS,
            "default": 1,
            "entry_type": 1,
            "valid": 0,
        },
    )
    if writer.tell() != PALETTE_OFFSET + PALETTE_DATA_SKIP:
        raise InvariantViolation(f"Palette preamble ends at {writer.tell()}")
    writer.write_bytes(bytes(palette.to_flat_rgb(USABLE_COLORS)))
    writer.pad_to(CONTROL_OFFSET)
    writer.write_bytes(pixels)
    return writer.getvalue()


def write_picture(image: Image.Image, fill_mode: bool = False) -> bytes:
    """Encode ``image`` as a 640x480 P56 picture.

    * ``fill_mode`` true: scale to cover the frame, crop, quantize.
    * indexed source that already fits: indices passed through unchanged and
      centered on a transparent canvas.
    * anything else: scale down to fit, quantize, center on a transparent
      canvas.
    """

    width, height = _check_source_size(image)
    fits = width <= CANVAS_WIDTH and height <= CANVAS_HEIGHT

    if not fill_mode and fits and image.mode == "P":
        policy = "exact"
        pixels, palette = _exact_fit(image)
    elif fill_mode:
        policy = "cover"
        pixels, palette = _quantized(scale_to_cover(image))
    else:
        policy = "contain"
        fitted = scale_to_fit(image)
        indices, palette = _quantized(fitted)
        pixels = make_canvas(_indexed_image(indices, fitted.size)).tobytes()

    logger.debug("p56.write policy=%s source=%sx%s mode=%s", policy, width, height, image.mode)
    return build_picture(pixels, palette)


def load_picture(path: Path) -> Picture:
    return read_picture(Path(path).read_bytes())


def save_picture(image: Image.Image, path: Path, fill_mode: bool = False) -> None:
    atomic_write_bytes(path, write_picture(image, fill_mode=fill_mode))


def export_picture_image(picture: Picture, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    picture.to_image().save(path)
