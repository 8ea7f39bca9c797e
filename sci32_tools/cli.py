"""Command-line interface for SCI32 palette and picture conversion."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List

from .errors import PaletteError
from .file_scanner import PICTURE_EXTENSIONS, expand_inputs
from .processing import (
    ConvertOptions,
    convert_image,
    convert_palette,
    export_picture,
    load_palette,
    palette_from_image,
    save_palette,
)


logger = logging.getLogger(__name__)
DEBUG_LOG_PATH: Path | None = None
_VERBOSE_HANDLER: logging.Handler | None = None

_TARGET_SUFFIX = {"riff": ".pal", "sci32": ".pal32"}


def _setup_debug_logging(verbose: bool = False) -> None:
    global DEBUG_LOG_PATH, _VERBOSE_HANDLER
    root_logger = logging.getLogger()
    if verbose and _VERBOSE_HANDLER is None:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(logging.Formatter("%(levelname)s [%(name)s] %(message)s"))
        root_logger.addHandler(stream)
        root_logger.setLevel(logging.DEBUG)
        _VERBOSE_HANDLER = stream
    if not os.environ.get("SCI32TOOLS_DEBUG"):
        if not any(isinstance(h, logging.NullHandler) for h in logger.handlers):
            logger.addHandler(logging.NullHandler())
        return
    log_path = Path(os.environ.get("SCI32TOOLS_DEBUG_LOG", "sci32_tools_debug.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root_logger.setLevel(logging.DEBUG)
    # remove existing file handlers to avoid duplicates
    root_logger.handlers = [h for h in root_logger.handlers if not isinstance(h, logging.FileHandler)]
    root_logger.addHandler(handler)
    DEBUG_LOG_PATH = log_path
    root_logger.info("sci32-tools debug logging enabled at %s", log_path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert SCI32 palettes and P56 pictures"
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    pal = sub.add_parser("palette", help="Convert between RIFF .pal, SCI32 blocks and V56 views")
    pal.add_argument("input", type=Path, help="RIFF .pal, SCI32 palette block or .v56 view")
    pal.add_argument(
        "--to",
        choices=("riff", "sci32"),
        default="riff",
        help="Output palette format",
    )
    pal.add_argument("--out", type=Path, default=None, help="Output file")

    extract = sub.add_parser("extract", help="Build a 256-color palette from an image")
    extract.add_argument("input", type=Path, help="Source image")
    extract.add_argument("--to", choices=("riff", "sci32"), default="riff")
    extract.add_argument("--max-colors", type=int, default=256)
    extract.add_argument(
        "--dedupe",
        action="store_true",
        help="Merge perceptually close colors after median cut",
    )
    extract.add_argument("--merge-radius", type=int, default=6)
    extract.add_argument("--out", type=Path, default=None, help="Output file")

    to_p56 = sub.add_parser("to-p56", help="Encode images as 640x480 P56 pictures")
    to_p56.add_argument("inputs", nargs="+", type=Path, help="Input files or folders")
    to_p56.add_argument(
        "--fill",
        action="store_true",
        help="Scale to cover the whole frame instead of letterboxing",
    )
    to_p56.add_argument("--recursive", action="store_true", help="Descend into subfolders")
    to_p56.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Destination folder (defaults to <input>/out)",
    )
    to_p56.add_argument(
        "--write-pal",
        action="store_true",
        help="Also write the picture palette as a RIFF .pal",
    )

    from_p56 = sub.add_parser("from-p56", help="Decode P56 pictures to standard images")
    from_p56.add_argument("inputs", nargs="+", type=Path, help="P56 files or folders")
    from_p56.add_argument("--recursive", action="store_true")
    from_p56.add_argument("--format", default="png", help="Output image extension")
    from_p56.add_argument("--out", type=Path, default=None, help="Destination folder")
    return parser


def _output_path(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Path:
    out = args.out or args.input.with_suffix(_TARGET_SUFFIX[args.to])
    if out.resolve() == args.input.resolve():
        parser.error(f"Refusing to overwrite the input file {args.input}; pass --out")
    return out


def _run_palette(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    try:
        palette = load_palette(args.input)
    except (OSError, PaletteError) as exc:
        parser.error(f"Failed to read palette: {exc}")
    out = _output_path(args, parser)
    try:
        save_palette(out, convert_palette(palette, args.to), args.to)
    except (OSError, PaletteError) as exc:
        print(f"[FAIL] {args.input}: {exc}")
        return 1
    print(f"[OK] {args.input.name} -> {out}")
    return 0


def _run_extract(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    if not 1 <= args.max_colors <= 256:
        parser.error("--max-colors must be between 1 and 256")
    try:
        palette = palette_from_image(
            args.input,
            args.max_colors,
            dedupe=args.dedupe,
            merge_radius=args.merge_radius,
        )
    except (OSError, PaletteError) as exc:
        parser.error(f"Failed to quantize image: {exc}")
    out = _output_path(args, parser)
    try:
        save_palette(out, convert_palette(palette, args.to), args.to)
    except (OSError, PaletteError) as exc:
        print(f"[FAIL] {args.input}: {exc}")
        return 1
    print(f"[OK] {args.input.name} -> {out}")
    return 0


def _collect(args: argparse.Namespace, parser: argparse.ArgumentParser, exts=None) -> List[Path]:
    try:
        files = expand_inputs(args.inputs, args.recursive, exts)
    except FileNotFoundError as exc:
        parser.error(f"Input path not found: {exc}")
    if not files:
        parser.error("No input files found")
    return files


def _run_to_p56(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    successes = 0
    failures = 0
    for file_path in _collect(args, parser):
        out_dir = args.out or (file_path.parent / "out")
        options = ConvertOptions(
            input_path=file_path,
            output_dir=out_dir,
            fill_mode=args.fill,
            write_palette=args.write_pal,
        )
        try:
            result = convert_image(options)
        except (PaletteError, OSError) as exc:
            failures += 1
            print(f"[FAIL] {file_path}: {exc}")
            continue
        successes += 1
        print(f"[OK] {file_path.name} -> {result.output_path}")

    print(f"Completed {successes} file(s), {failures} failure(s).")
    return 0 if failures == 0 else 1


def _run_from_p56(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    suffix = "." + args.format.lstrip(".").lower()
    successes = 0
    failures = 0
    for file_path in _collect(args, parser, exts=PICTURE_EXTENSIONS):
        out_dir = args.out or file_path.parent
        out_path = out_dir / (file_path.stem + suffix)
        try:
            picture = export_picture(file_path, out_path)
        except (PaletteError, OSError, ValueError) as exc:
            failures += 1
            print(f"[FAIL] {file_path}: {exc}")
            continue
        successes += 1
        print(f"[OK] {file_path.name} -> {out_path} ({picture.width}x{picture.height})")

    print(f"Completed {successes} file(s), {failures} failure(s).")
    return 0 if failures == 0 else 1


_COMMANDS = {
    "palette": _run_palette,
    "extract": _run_extract,
    "to-p56": _run_to_p56,
    "from-p56": _run_from_p56,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_debug_logging(args.verbose)
    return _COMMANDS[args.command](args, parser)


if __name__ == "__main__":
    raise SystemExit(main())
