"""Filesystem helpers shared by the queue, the window and the CLI."""

import math
import shutil
from pathlib import Path

from .errors import IoError
from .logger import get_logger

_logger = get_logger("file_operations")

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def get_file_size(path: str | Path) -> int:
    """Size in bytes, or 0 when the file cannot be stat'ed."""
    try:
        return Path(path).stat().st_size
    except OSError as e:
        _logger.debug("stat failed for %s: %s", path, e)
        return 0


def format_size(size_bytes: int) -> str:
    if size_bytes == 0:
        return "0 B"
    if size_bytes < 0:
        raise ValueError("size_bytes must be non-negative")
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(SIZE_UNITS) - 1)
    s = round(size_bytes / math.pow(1024, i), 1)
    return f"{s:g} {SIZE_UNITS[i]}"


def default_save_name(name: str) -> str:
    """`IMG_0001.HEIC` -> `IMG_0001.jpg`."""
    p = Path(name)
    if p.suffix.lower() in (".heic", ".heif"):
        return f"{p.stem}.jpg"
    return f"{p.name or 'converted'}.jpg"


def generate_unique_filename(dest_dir: str | Path, filename: str) -> Path:
    """Return `dest_dir/filename`, or `stem (N)suffix` if that already exists."""
    dest = Path(dest_dir) / filename
    stem = dest.stem
    suffix = dest.suffix
    counter = 1
    while dest.exists():
        dest = Path(dest_dir) / f"{stem} ({counter}){suffix}"
        counter += 1
    return dest


def save_output(src: str | Path, dest: str | Path) -> Path:
    """Copy a converted file to the user's chosen location.

    Parent directories are created as needed; an existing destination is
    overwritten (the save dialog already confirmed it).

    Raises:
        IoError: op="save" if the source is gone or the copy fails
    """
    src_path = Path(src)
    dest_path = Path(dest)
    if not src_path.is_file():
        raise IoError("save", str(src_path), "converted file not found")
    _logger.debug("saving: %s -> %s", src_path, dest_path)
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src_path, dest_path)
    except OSError as e:
        _logger.error("save failed: %s -> %s, error: %s", src_path, dest_path, e)
        raise IoError("save", str(dest_path), e.strerror or str(e)) from e
    _logger.info("saved: %s", dest_path)
    return dest_path
