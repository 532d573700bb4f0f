"""Input checks run before any external tool sees a file.

Two groups live here:

- content checks (size limit and HEIC/HEIF magic bytes) used by the queue
  before conversion starts, and
- path/name safety checks used by the converter and the temp file manager so
  nothing unexpected reaches an external command line or the temp directory.

All checks are read-only; the magic check reads a 12 byte prefix at most.
"""

from __future__ import annotations

from pathlib import Path

from .errors import FileTooLarge, InvalidFormat, InvalidPath, IoError
from .logger import get_logger
from .models import BytesRef, FileRef, PathRef

_logger = get_logger("validation")

SUPPORTED_EXTENSIONS = (".heic", ".heif")

# ISO base media file: [size:4]["ftyp":4][major brand:4]
HEADER_SIZE = 12
MAGIC_OFFSET = 4
MAGIC_BYTES = b"ftyp"
BRAND_OFFSET = 8
HEIC_BRANDS = (b"heic", b"heix", b"hevc", b"hevx", b"mif1")

MB = 1024 * 1024
MAX_FILE_NAME_LENGTH = 255

SHELL_METACHARACTERS = frozenset(";&|$`<>*?\"\n\r\x00")
_RESERVED_NAME_CHARS = frozenset('/\\:*?"<>|\x00')


def validate(file_ref: FileRef, max_bytes: int) -> None:
    """Raise FileTooLarge or InvalidFormat if `file_ref` must not be converted."""
    size = _actual_size(file_ref)
    validate_size(size, max_bytes)
    header = read_header(file_ref)
    validate_magic(header)


def validate_size(size: int, max_bytes: int) -> None:
    if size > max_bytes:
        _logger.warning("file too large: %d bytes > %d", size, max_bytes)
        raise FileTooLarge(actual=size // MB, max=max_bytes // MB)


def validate_magic(header: bytes) -> None:
    if len(header) < HEADER_SIZE:
        raise InvalidFormat("file too small or unreadable")
    if header[MAGIC_OFFSET : MAGIC_OFFSET + len(MAGIC_BYTES)] != MAGIC_BYTES:
        raise InvalidFormat("invalid HEIC/HEIF magic bytes")
    brand = header[BRAND_OFFSET:HEADER_SIZE]
    if brand not in HEIC_BRANDS:
        raise InvalidFormat(f"unsupported brand {brand!r}")


def validate_extension(path: str | Path) -> None:
    suffix = Path(path).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        supported = ", ".join(e.lstrip(".") for e in SUPPORTED_EXTENSIONS)
        raise InvalidFormat(f"unsupported extension '{suffix.lstrip('.')}'. Supported: {supported}")


def read_header(file_ref: FileRef) -> bytes:
    if isinstance(file_ref, BytesRef):
        return file_ref.content[:HEADER_SIZE]
    try:
        with open(file_ref.path, "rb") as f:
            return f.read(HEADER_SIZE)
    except OSError as e:
        raise IoError("read", str(file_ref.path), e.strerror or str(e)) from e


def _actual_size(file_ref: FileRef) -> int:
    if isinstance(file_ref, PathRef):
        # the picker-reported size may be stale or a best-effort 0
        try:
            return file_ref.path.stat().st_size
        except OSError as e:
            raise IoError("stat", str(file_ref.path), e.strerror or str(e)) from e
    return file_ref.size


def validate_path_safety(path: str | Path) -> Path:
    """Return the canonical form of `path` or raise InvalidPath.

    Rejects shell metacharacters and `..` segments before resolving, then
    requires the result to be an existing regular file.
    """
    raw = str(path)
    if not raw:
        raise InvalidPath(raw, "path is empty")
    bad = sorted({c for c in raw if c in SHELL_METACHARACTERS})
    if bad:
        raise InvalidPath(raw, f"path contains disallowed characters {''.join(bad)!r}")
    if ".." in Path(raw).parts:
        raise InvalidPath(raw, "path traversal not allowed")
    try:
        canonical = Path(raw).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise InvalidPath(raw, "cannot resolve path") from e
    if not canonical.is_file():
        raise InvalidPath(raw, "not a regular file")
    return canonical


def validate_file_name(name: str) -> None:
    if not name:
        raise InvalidPath(name, "file name cannot be empty")
    if name in (".", ".."):
        raise InvalidPath(name, "file name is reserved")
    if any(c in _RESERVED_NAME_CHARS for c in name):
        raise InvalidPath(name, "file name contains invalid characters")
    if len(name) > MAX_FILE_NAME_LENGTH:
        raise InvalidPath(name, f"file name too long (max {MAX_FILE_NAME_LENGTH} characters)")
