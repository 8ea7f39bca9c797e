"""Directory scanning helpers for batch conversion."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Sequence

_IMAGE_EXTENSIONS = {
    ".png",
    ".bmp",
    ".gif",
    ".jpg",
    ".jpeg",
    ".pcx",
    ".tga",
    ".webp",
}
PICTURE_EXTENSIONS = (".p56",)


@dataclass(slots=True)
class ScanOptions:
    roots: Sequence[Path]
    recursive: bool = True
    allowed_exts: Iterable[str] | None = None


def iter_image_files(options: ScanOptions) -> Iterator[Path]:
    """Yield files matching extensions under the given roots, sorted per root."""

    allowed = {
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in (options.allowed_exts or _IMAGE_EXTENSIONS)
    }
    for root in options.roots:
        root = root.expanduser()
        candidates = root.rglob("*") if options.recursive else root.glob("*")
        for path in sorted(candidates):
            if path.is_file() and path.suffix.lower() in allowed:
                yield path


def expand_inputs(
    inputs: Iterable[Path], recursive: bool, allowed_exts: Iterable[str] | None = None
) -> list[Path]:
    files: list[Path] = []
    for path in inputs:
        if path.is_file():
            files.append(path)
        elif path.is_dir():
            options = ScanOptions(roots=[path], recursive=recursive, allowed_exts=allowed_exts)
            files.extend(iter_image_files(options))
        else:
            raise FileNotFoundError(path)
    return files
