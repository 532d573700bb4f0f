"""Pytest configuration.

The window tests use PySide6 widgets. A single offscreen `QApplication` is
created for the whole session before collection and shut down at the end.

Conversion is exercised through two fake tools:

- `ScriptBackend` runs the current interpreter as the external command, so
  the real subprocess path (argument list, exit status, stderr) is covered.
- `RecordingBackend` runs in-process and records every call, for queue tests
  that need to count invocations or hold a conversion open.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import Any

import pytest

from heic_converter.config import AppConfig
from heic_converter.conversion_queue import ConversionQueue
from heic_converter.converter import CommandBackend, ConverterBackend
from heic_converter.errors import ConversionFailed
from heic_converter.logger import setup_logger
from heic_converter.temp_files import TempFileManager

_APP: Any | None = None

MB = 1024 * 1024

JPEG_SCRIPT = (
    "import sys; "
    "open(sys.argv[2], 'wb').write(b'\\xff\\xd8\\xff\\xe0' + ('q=' + sys.argv[3]).encode())"
)
FAILING_SCRIPT = "import sys; sys.stderr.write('cannot decode image'); sys.exit(3)"
SILENT_SCRIPT = "pass"
SLOW_SCRIPT = "import time; time.sleep(10)"


def pytest_configure(config) -> None:  # noqa: ARG001
    """Ensure a QApplication exists before collecting/running tests."""
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

    # Import lazily so non-Qt environments can still import this conftest.
    try:
        from PySide6.QtWidgets import QApplication
    except ImportError:
        return

    global _APP

    app = QApplication.instance()
    # Keep a strong ref so it isn't GC'd mid-session.
    _APP = QApplication([]) if app is None else app


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    try:
        from PySide6.QtWidgets import QApplication
    except ImportError:
        return

    app = QApplication.instance()
    if app is None:
        return
    app.quit()
    app.processEvents()


class ScriptBackend(CommandBackend):
    name = "script"
    executable = sys.executable

    def __init__(self, script: str = JPEG_SCRIPT):
        self.script = script

    def build_args(self, input_path: Path, output_path: Path, quality: int) -> list[str]:
        return [self.executable, "-c", self.script, str(input_path), str(output_path), str(quality)]


class RecordingBackend(ConverterBackend):
    name = "recording"

    def __init__(self, fail: bool = False, gate: threading.Event | None = None):
        self.fail = fail
        self.gate = gate
        self.started = threading.Event()
        self.calls: list[Path] = []
        self._lock = threading.Lock()

    def available(self) -> bool:
        return True

    def run(self, input_path: Path, output_path: Path, quality: int, timeout: float) -> None:
        with self._lock:
            self.calls.append(input_path)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.fail:
            raise ConversionFailed("recording backend told to fail")
        output_path.write_bytes(b"\xff\xd8\xff\xe0" + f"q={quality}".encode())


def heic_header(brand: bytes = b"heic") -> bytes:
    return (24).to_bytes(4, "big") + b"ftyp" + brand + b"\x00\x00\x00\x00" + b"mif1heic"


PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


def write_sparse(path: Path, header: bytes, size: int) -> Path:
    """Write `header` and extend the file to `size` bytes without filling it."""
    with open(path, "wb") as f:
        f.write(header)
        f.truncate(size)
    return path


@pytest.fixture
def make_heic(tmp_path: Path):
    def _make(name: str = "photo.heic", size: int = 4096, header: bytes | None = None) -> Path:
        return write_sparse(tmp_path / name, heic_header() if header is None else header, size)

    return _make


@pytest.fixture
def temp_files(tmp_path: Path):
    base = tmp_path / "tmp"
    base.mkdir()
    manager = TempFileManager(base)
    yield manager
    manager.cleanup_all()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def make_queue(config: AppConfig, temp_files: TempFileManager):
    queues: list[ConversionQueue] = []

    def _make(backend: ConverterBackend | None = None, **kwargs) -> ConversionQueue:
        q = ConversionQueue.from_config(config, temp_files=temp_files, backend=backend or ScriptBackend(), **kwargs)
        queues.append(q)
        return q

    yield _make
    for q in queues:
        q.shutdown()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "HEIC_CONVERTER_CONFIG",
        "HEIC_JPEG_QUALITY",
        "HEIC_MAX_FILE_SIZE_MB",
        "HEIC_CONVERTER_BACKEND",
        "HEIC_MAX_CONCURRENT_CONVERSIONS",
        "HEIC_CONVERTER_LOG_LEVEL",
        "HEIC_CONVERTER_LOG_CATS",
    ):
        monkeypatch.delenv(var, raising=False)
    # re-point the shared handler at this test's stderr with the cleaned env
    setup_logger()
