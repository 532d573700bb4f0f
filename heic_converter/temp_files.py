from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
import threading
import time
import uuid
from pathlib import Path

from .errors import IoError
from .logger import get_logger
from .validation import SHELL_METACHARACTERS, validate_file_name

_logger = get_logger("temp_files")

SESSION_PREFIX = "heic_converter_"
_MAX_TEMP_NAME_TAIL = 200


class TempFileManager:
    """Owns every intermediate file the converter produces or consumes.

    Files live in a per-process directory under the system temp location and
    are registered to an owner (a queue item id). Each registered path is
    deleted exactly once: `cleanup()` forgets the path before unlinking it, and
    unlinking an already missing file is not an error.
    """

    def __init__(self, base_dir: str | os.PathLike[str] | None = None):
        self._base_dir = Path(base_dir) if base_dir is not None else None
        self._session_dir: Path | None = None
        self._owners: dict[Path, str | None] = {}
        self._lock = threading.RLock()

    @property
    def session_dir(self) -> Path:
        with self._lock:
            if self._session_dir is None or not self._session_dir.is_dir():
                prefix = f"{SESSION_PREFIX}{os.getpid()}_"
                self._session_dir = Path(tempfile.mkdtemp(prefix=prefix, dir=self._base_dir))
                _logger.debug("temp session dir: %s", self._session_dir)
            return self._session_dir

    def materialize(self, raw: bytes, suggested_name: str, owner: str | None = None) -> Path:
        """Write in-memory content to a new uniquely named temp file."""
        validate_file_name(suggested_name)
        # the temp path is passed to external tools, so it must clear path safety checks
        tail = "".join("_" if c in SHELL_METACHARACTERS else c for c in suggested_name[-_MAX_TEMP_NAME_TAIL:])
        path = self.session_dir / f"{uuid.uuid4().hex}_{tail}"
        try:
            with open(path, "xb") as f:
                f.write(raw)
        except OSError as e:
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)
            _logger.error("temp write failed: %s -> %s", path, e)
            raise IoError("write", str(path), e.strerror or str(e)) from e
        self.register(path, owner)
        _logger.debug("materialized %d bytes: %s", len(raw), path)
        return path

    def new_output_path(self, suffix: str = ".jpg") -> Path:
        """Reserve a fresh, not yet existing output path in the session dir."""
        return self.session_dir / f"{uuid.uuid4().hex}_converted{suffix}"

    def register(self, path: Path, owner: str | None = None) -> None:
        with self._lock:
            self._owners[Path(path)] = owner

    def owned(self, owner: str) -> list[Path]:
        with self._lock:
            return [p for p, o in self._owners.items() if o == owner]

    def is_tracked(self, path: Path) -> bool:
        with self._lock:
            return Path(path) in self._owners

    def cleanup(self, path: str | os.PathLike[str]) -> None:
        """Delete `path` if it exists. Calling it again is a no-op."""
        p = Path(path)
        with self._lock:
            self._owners.pop(p, None)
        try:
            p.unlink(missing_ok=True)
        except OSError as e:
            raise IoError("delete", str(p), e.strerror or str(e)) from e
        _logger.debug("cleaned up: %s", p)

    def cleanup_owner(self, owner: str) -> list[IoError]:
        """Release every artifact registered to `owner`; failures are returned, not raised."""
        return self._cleanup_many(self.owned(owner))

    def cleanup_all(self) -> list[IoError]:
        with self._lock:
            paths = list(self._owners)
            session = self._session_dir
            self._session_dir = None
        errors = self._cleanup_many(paths)
        if session is not None and session.is_dir():
            try:
                shutil.rmtree(session)
            except OSError as e:
                errors.append(IoError("delete", str(session), e.strerror or str(e)))
        for err in errors:
            _logger.warning("cleanup failed: %s", err)
        return errors

    def _cleanup_many(self, paths: list[Path]) -> list[IoError]:
        errors: list[IoError] = []
        for p in paths:
            try:
                self.cleanup(p)
            except IoError as e:
                errors.append(e)
        return errors


def sweep_stale(retention_hours: int, base_dir: str | os.PathLike[str] | None = None, now: float | None = None) -> int:
    """Remove session directories left behind by earlier runs.

    Directories belonging to the current process are never touched. Returns
    the number of directories removed.
    """
    root = Path(base_dir) if base_dir is not None else Path(tempfile.gettempdir())
    current = time.time() if now is None else now
    cutoff = current - retention_hours * 3600
    own_prefix = f"{SESSION_PREFIX}{os.getpid()}_"
    removed = 0
    try:
        candidates = list(root.glob(f"{SESSION_PREFIX}*"))
    except OSError as e:
        _logger.warning("temp sweep failed to list %s: %s", root, e)
        return 0
    for d in candidates:
        if not d.is_dir() or d.name.startswith(own_prefix):
            continue
        try:
            if d.stat().st_mtime > cutoff:
                continue
            shutil.rmtree(d)
            removed += 1
            _logger.debug("removed stale temp dir: %s", d)
        except OSError as e:
            _logger.warning("failed to remove stale temp dir %s: %s", d, e)
    if removed:
        _logger.info("removed %d stale temp dir(s)", removed)
    return removed
