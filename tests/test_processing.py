from pathlib import Path

import pytest

from sci32_tools.errors import FormatError
from sci32_tools.palette_ops import Palette
from sci32_tools.processing import (
    ConvertOptions,
    convert_image,
    convert_palette,
    detect_palette_source,
    export_picture,
    load_palette,
    palette_from_image,
    save_palette,
)
from sci32_tools.riff_palette import load_riff_palette, write_riff_palette
from sci32_tools.sci32_palette import load_sci32_palette


@pytest.mark.parametrize(
    "name, head, expected",
    [
        ("a.pal", b"\x00\x03", "riff"),
        ("a.bin", b"RIFF", "riff"),
        ("0.V56", b"\x00\x00", "v56"),
        ("999.pal32", b"\x00\x03", "sci32"),
    ],
)
def test_detect_palette_source(name, head, expected):
    assert detect_palette_source(Path(name), head + bytes(8)) == expected


def test_load_each_source(tmp_path, sci32_block, rainbow_colors):
    palette = Palette.from_colors(rainbow_colors)
    riff = tmp_path / "game.pal"
    riff.write_bytes(write_riff_palette(palette))
    block = tmp_path / "999.bin"
    block.write_bytes(sci32_block(rainbow_colors))
    view = tmp_path / "0.v56"
    view.write_bytes(b"\xaa" * 40 + sci32_block(rainbow_colors) + b"\xaa" * 40)

    assert load_palette(riff) == palette
    assert load_palette(block) == palette
    assert load_palette(view) == palette


def test_convert_palette_meta():
    palette = Palette.from_colors([(1, 2, 3, 4)])
    assert convert_palette(palette, "sci32", remap=9).get_slot(0) == (1, 2, 3, 9)
    assert convert_palette(palette, "sci32").get_slot(0) == (1, 2, 3, 0)
    assert convert_palette(palette, "riff").get_slot(0) == (1, 2, 3, 0)


def test_save_palette_targets(tmp_path, rainbow_colors):
    palette = Palette.from_colors(rainbow_colors)
    save_palette(tmp_path / "x.pal", palette, "riff")
    save_palette(tmp_path / "x.pal32", palette, "sci32")
    assert load_riff_palette(tmp_path / "x.pal") == palette
    assert load_sci32_palette(tmp_path / "x.pal32") == palette
    with pytest.raises(ValueError):
        save_palette(tmp_path / "x.act", palette, "act")


def test_palette_from_image(tmp_path, gradient_image):
    path = tmp_path / "grad.png"
    gradient_image.save(path)
    palette = palette_from_image(path, 32)
    assert palette.get_color(31) == (255, 255, 255)
    assert palette.get_color(32) == (0, 0, 0)
    deduped = palette_from_image(path, 256, dedupe=True)
    assert len(deduped.entries()) == 256


def test_convert_and_export(tmp_path, indexed_image):
    source = tmp_path / "room.png"
    indexed_image(64, 40).save(source)
    result = convert_image(
        ConvertOptions(input_path=source, output_dir=tmp_path / "out", write_palette=True)
    )
    assert result.output_path == tmp_path / "out" / "room.p56"
    assert result.palette_path == tmp_path / "out" / "room.pal"
    assert load_riff_palette(result.palette_path) == result.palette

    picture = export_picture(result.output_path, tmp_path / "back" / "room.png")
    assert (picture.width, picture.height) == (640, 480)
    assert (tmp_path / "back" / "room.png").exists()


def test_export_rejects_non_picture(tmp_path):
    path = tmp_path / "bad.p56"
    path.write_bytes(b"not a picture")
    with pytest.raises(FormatError):
        export_picture(path, tmp_path / "bad.png")
