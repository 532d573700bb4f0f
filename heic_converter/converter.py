"""HEIC/HEIF -> JPEG conversion through an external image tool.

The converter never decodes pixels itself. It canonicalizes the input path,
builds an argument list for one of the supported tools, runs it without a
shell and checks that exactly one non-empty output file was produced.

Backends, in `auto` preference order:

- ``sips`` (macOS built-in)
- ``heif-convert`` (libheif)
- ``vips`` CLI (libvips built with libheif)
- ``pyvips`` in-process binding, used when none of the commands is on PATH
"""

from __future__ import annotations

import contextlib
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any

from .errors import ConversionFailed
from .logger import get_logger
from .metrics import metrics
from .temp_files import TempFileManager
from .validation import validate_path_safety

_logger = get_logger("converter")

_STDERR_TAIL = 500
# libvips rejects Q=0
_VIPS_MIN_QUALITY = 1


class ConverterBackend:
    name = "backend"

    def available(self) -> bool:
        raise NotImplementedError

    def run(self, input_path: Path, output_path: Path, quality: int, timeout: float) -> None:
        """Write a JPEG at `output_path` or raise ConversionFailed."""
        raise NotImplementedError


class CommandBackend(ConverterBackend):
    executable = ""

    def build_args(self, input_path: Path, output_path: Path, quality: int) -> list[str]:
        raise NotImplementedError

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def run(self, input_path: Path, output_path: Path, quality: int, timeout: float) -> None:
        args = self.build_args(input_path, output_path, quality)
        _logger.debug("executing %s with quality %d", self.name, quality)
        try:
            completed = subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired as e:
            raise ConversionFailed(f"{self.name} timed out after {timeout:g}s") from e
        except OSError as e:
            raise ConversionFailed(f"failed to execute {self.name}: {e}") from e
        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()[-_STDERR_TAIL:]
            _logger.error("%s command failed (%d): %s", self.name, completed.returncode, stderr)
            detail = f": {stderr}" if stderr else ""
            raise ConversionFailed(f"{self.name} exited with status {completed.returncode}{detail}")


class SipsBackend(CommandBackend):
    name = "sips"
    executable = "sips"

    def build_args(self, input_path: Path, output_path: Path, quality: int) -> list[str]:
        return [
            self.executable,
            "-s",
            "format",
            "jpeg",
            "-s",
            "formatOptions",
            str(quality),
            str(input_path),
            "--out",
            str(output_path),
        ]


class HeifConvertBackend(CommandBackend):
    name = "heif-convert"
    executable = "heif-convert"

    def build_args(self, input_path: Path, output_path: Path, quality: int) -> list[str]:
        return [self.executable, "-q", str(quality), str(input_path), str(output_path)]


class VipsBackend(CommandBackend):
    name = "vips"
    executable = "vips"

    def build_args(self, input_path: Path, output_path: Path, quality: int) -> list[str]:
        q = max(_VIPS_MIN_QUALITY, quality)
        return [self.executable, "copy", str(input_path), f"{output_path}[Q={q}]"]


_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        import pyvips  # type: ignore

        _pyvips = pyvips
    return _pyvips


class PyvipsBackend(ConverterBackend):
    name = "pyvips"

    def available(self) -> bool:
        try:
            _get_pyvips_module()
        except (ImportError, OSError):
            return False
        return True

    def run(self, input_path: Path, output_path: Path, quality: int, timeout: float) -> None:  # noqa: ARG002
        try:
            pyvips = _get_pyvips_module()
        except (ImportError, OSError) as e:
            raise ConversionFailed(f"no conversion tool available ({e})") from e
        try:
            image = pyvips.Image.new_from_file(str(input_path), access="sequential")
            if image.interpretation != "srgb":
                image = image.colourspace("srgb")
            if image.hasalpha():
                image = image.flatten(background=[255, 255, 255])
            image.write_to_file(str(output_path), Q=max(_VIPS_MIN_QUALITY, quality))
        except pyvips.Error as e:
            raise ConversionFailed(f"pyvips: {e}") from e


BACKENDS: dict[str, type[ConverterBackend]] = {
    SipsBackend.name: SipsBackend,
    HeifConvertBackend.name: HeifConvertBackend,
    VipsBackend.name: VipsBackend,
    PyvipsBackend.name: PyvipsBackend,
}


def select_backend(name: str = "auto") -> ConverterBackend:
    """Return the backend called `name`, or the first available one for `auto`."""
    if name != "auto":
        try:
            return BACKENDS[name]()
        except KeyError:
            raise ValueError(f"unknown converter backend: {name}") from None
    order: list[type[ConverterBackend]] = [HeifConvertBackend, VipsBackend, PyvipsBackend]
    if sys.platform == "darwin":
        order.insert(0, SipsBackend)
    for cls in order:
        backend = cls()
        if backend.available():
            _logger.debug("using converter backend: %s", backend.name)
            return backend
    _logger.warning("no HEIC conversion tool found; conversions will fail")
    return PyvipsBackend()


class ConverterInvoker:
    def __init__(
        self,
        backend: ConverterBackend,
        temp_files: TempFileManager,
        quality: int = 90,
        timeout: float = 120,
    ):
        self.backend = backend
        self.temp_files = temp_files
        self.quality = quality
        self.timeout = timeout

    def convert(self, input_path: str | Path) -> Path:
        """Convert `input_path` to a new JPEG and return its path.

        Raises InvalidPath for unsafe or unresolvable inputs and
        ConversionFailed for any tool failure; no partial output survives a
        failure.
        """
        source = validate_path_safety(input_path)
        output = self.temp_files.new_output_path()
        _logger.info("converting %s via %s", source.name, self.backend.name)
        try:
            with metrics.timed("converter.duration"):
                self.backend.run(source, output, self.quality, self.timeout)
            self._verify_output(output)
        except ConversionFailed:
            metrics.inc("converter.failures")
            with contextlib.suppress(OSError):
                output.unlink(missing_ok=True)
            raise
        _logger.info("conversion completed: %s", output)
        return output

    def _verify_output(self, output: Path) -> None:
        try:
            size = output.stat().st_size
        except FileNotFoundError:
            raise ConversionFailed(f"{self.backend.name} produced no output file") from None
        except OSError as e:
            raise ConversionFailed(f"cannot read output file: {e}") from e
        if size == 0:
            raise ConversionFailed(f"{self.backend.name} produced an empty output file")
