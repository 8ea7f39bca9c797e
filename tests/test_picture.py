import struct

import numpy as np
import pytest
from PIL import Image

from sci32_tools.errors import FormatError, InvariantViolation
from sci32_tools.palette_ops import Palette
from sci32_tools.picture import (
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    CONTROL_OFFSET,
    build_picture,
    export_picture_image,
    load_picture,
    make_canvas,
    map_to_palette,
    read_picture,
    save_picture,
    scale_to_cover,
    scale_to_fit,
    write_picture,
)

FILE_SIZE = CONTROL_OFFSET + CANVAS_WIDTH * CANVAS_HEIGHT


def _frame(picture):
    return np.frombuffer(picture.indices, dtype=np.uint8).reshape(picture.height, picture.width)


class TestExactFit:
    def test_indices_are_centered(self, indexed_image):
        source = indexed_image(320, 200)
        picture = read_picture(write_picture(source))
        assert (picture.width, picture.height) == (640, 480)

        frame = _frame(picture)
        left, top = (640 - 320) // 2, (480 - 200) // 2
        inner = frame[top : top + 200, left : left + 320]
        assert inner.tobytes() == source.tobytes()
        assert (frame[:top] == 255).all()
        assert (frame[:, :left] == 255).all()
        assert (frame[top + 200 :] == 255).all()

    def test_palette_survives(self, indexed_image):
        source = indexed_image(16, 16)
        picture = read_picture(write_picture(source))
        assert picture.palette.get_color(0) == (0, 0, 255)
        assert picture.palette.get_color(254) == (254, (254 * 5) % 256, 1)
        # slot 255 is not stored; it mirrors slot 0
        assert picture.palette.get_color(255) == picture.palette.get_color(0)

    def test_odd_size_rounds_down(self, indexed_image):
        picture = read_picture(write_picture(indexed_image(3, 3)))
        frame = _frame(picture)
        assert frame[238, 318] == 0
        assert frame[237, 318] == 255
        assert frame[238, 317] == 255

    def test_index_255_rejected(self):
        image = Image.new("P", (4, 4), 255)
        image.putpalette([i % 256 for i in range(768)])
        with pytest.raises(FormatError):
            write_picture(image)


class TestScaled:
    def test_cover_fills_frame(self, gradient_image):
        picture = read_picture(write_picture(gradient_image, fill_mode=True))
        assert len(picture.indices) == 640 * 480
        assert 255 not in picture.indices

    def test_contain_letterboxes(self, gradient_image):
        picture = read_picture(write_picture(gradient_image))
        frame = _frame(picture)
        top, left = (480 - 48) // 2, (640 - 64) // 2
        assert (frame[:top] == 255).all()
        assert (frame[:, :left] == 255).all()
        assert (frame[top : top + 48, left : left + 64] != 255).all()

    def test_large_image_scaled_down(self):
        image = Image.new("RGB", (1280, 960), (10, 20, 30))
        picture = read_picture(write_picture(image))
        assert set(picture.indices) == {0}
        assert picture.palette.get_color(0) == (10, 20, 30)

    def test_large_indexed_image_is_quantized(self, indexed_image):
        frame = _frame(read_picture(write_picture(indexed_image(700, 500))))
        assert (frame[0] == 255).all()
        assert (frame[240] != 255).all()

    def test_cover_geometry(self):
        scaled = scale_to_cover(Image.new("RGB", (100, 50)))
        assert scaled.size == (640, 480)
        fitted = scale_to_fit(Image.new("RGB", (1000, 300)))
        assert fitted.size == (640, 192)
        assert scale_to_fit(Image.new("RGB", (10, 10))).size == (10, 10)

    def test_cover_resamples_only_visible_box(self, monkeypatch):
        sizes = []
        original_resize = Image.Image.resize

        def recording_resize(self, size, *args, **kwargs):
            sizes.append(tuple(size))
            return original_resize(self, size, *args, **kwargs)

        monkeypatch.setattr(Image.Image, "resize", recording_resize)
        raw = write_picture(Image.new("RGB", (4000, 1), (30, 60, 90)), fill_mode=True)
        assert sizes
        assert all(w <= CANVAS_WIDTH and h <= CANVAS_HEIGHT for w, h in sizes)
        picture = read_picture(raw)
        assert 255 not in picture.indices
        assert picture.palette.get_color(picture.indices[0]) == (30, 60, 90)

    def test_cover_crops_wide_source_evenly(self):
        image = Image.new("RGB", (2, 1), (255, 0, 0))
        image.putpixel((1, 0), (0, 0, 255))
        frame = scale_to_cover(image)
        assert frame.getpixel((0, 0)) == (255, 0, 0)
        assert frame.getpixel((319, 479)) == (255, 0, 0)
        assert frame.getpixel((320, 0)) == (0, 0, 255)
        assert frame.getpixel((639, 479)) == (0, 0, 255)

    def test_cover_crops_tall_source_evenly(self):
        image = Image.new("RGB", (1, 3), (255, 0, 0))
        image.putpixel((0, 1), (0, 255, 0))
        image.putpixel((0, 2), (0, 0, 255))
        frame = scale_to_cover(image)
        assert frame.getpixel((0, 0)) == (0, 255, 0)
        assert frame.getpixel((639, 479)) == (0, 255, 0)

    def test_empty_image(self):
        with pytest.raises(FormatError):
            write_picture(Image.new("RGB", (0, 0)))


class TestLayout:
    def test_canonical_offsets(self, indexed_image):
        raw = write_picture(indexed_image(8, 8))
        assert len(raw) == FILE_SIZE
        assert raw[:4] == b"\x81\x81\x00\x00"
        assert struct.unpack_from("<HBBHIHH", raw, 4) == (14, 1, 0, 42, 62, 640, 480)
        width, height = struct.unpack_from("<HH", raw, 18)
        assert (width, height) == (640, 480)
        assert struct.unpack_from("<i", raw, 18 + 24)[0] == CONTROL_OFFSET
        assert raw[60:62] == b"\x00\x00"
        assert raw[62:66] == b"\x22\x03\x00\x00"
        assert raw[66] == 14
        assert raw[67:76] == b"GENPAL\x00\x00\x00"
        assert struct.unpack_from("<H", raw, 95)[0] == 255
        assert raw[97:99] == b"\x01\x01"

    def test_palette_region(self, indexed_image):
        raw = write_picture(indexed_image(8, 8))
        assert raw[103:106] == bytes((0, 0, 255))
        assert raw[103 + 3 * 254 : 103 + 3 * 255] == bytes((254, (254 * 5) % 256, 1))
        assert raw[103 + 3 * 255 : CONTROL_OFFSET] == bytes(CONTROL_OFFSET - 868)

    def test_build_rejects_wrong_pixel_count(self):
        with pytest.raises(InvariantViolation):
            build_picture(b"\x00" * 10, Palette())


class TestReject:
    @pytest.mark.parametrize(
        "data",
        [b"", b"\x81\x81", b"RIFF" + bytes(100), b"\x81\x81\x00\x00" + bytes(20)],
        ids=["empty", "short-tag", "wrong-tag", "too-small"],
    )
    def test_not_a_picture(self, data):
        with pytest.raises(FormatError):
            read_picture(data)

    @pytest.mark.parametrize(
        "offset, value",
        [(4, 20), (10, 64), (14, 0), (16, 0), (18 + 24, 900_000)],
        ids=["header-size", "palette-offset", "width", "height", "pixel-offset"],
    )
    def test_header_checks(self, indexed_image, offset, value):
        raw = bytearray(write_picture(indexed_image(8, 8)))
        if offset in (10, 18 + 24):
            struct.pack_into("<I", raw, offset, value)
        else:
            struct.pack_into("<H", raw, offset, value)
        with pytest.raises(FormatError):
            read_picture(bytes(raw))

    def test_truncated_pixels(self, indexed_image):
        raw = write_picture(indexed_image(8, 8))
        with pytest.raises(FormatError):
            read_picture(raw[:-1])


def test_map_to_palette_prefers_lowest_index():
    palette = Palette.from_colors([(9, 9, 9), (0, 0, 0), (0, 0, 0)])
    image = Image.new("RGB", (2, 1), (0, 0, 0))
    image.putpixel((1, 0), (8, 8, 8))
    assert map_to_palette(image, palette) == bytes((1, 0))


def test_map_to_palette_skips_slot_255():
    palette = Palette.from_colors([(0, 0, 0)] * 255 + [(200, 100, 50)])
    image = Image.new("RGB", (1, 1), (200, 100, 50))
    assert map_to_palette(image, palette) == bytes((0,))


def test_make_canvas_fill():
    canvas = make_canvas(Image.new("P", (2, 2), 7), fill_index=3)
    assert canvas.size == (640, 480)
    assert canvas.getpixel((0, 0)) == 3
    assert canvas.getpixel((319, 239)) == 7


def test_save_load_export(tmp_path, indexed_image):
    path = tmp_path / "100.p56"
    save_picture(indexed_image(32, 32), path)
    assert path.stat().st_size == FILE_SIZE
    picture = load_picture(path)
    out = tmp_path / "png" / "100.png"
    export_picture_image(picture, out)
    with Image.open(out) as img:
        assert img.size == (640, 480)
        assert img.mode == "P"
