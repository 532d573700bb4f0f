from __future__ import annotations

import json
import os
from pathlib import Path

from conftest import PNG_HEADER, RecordingBackend
from heic_converter.config import AppConfig
from heic_converter.main import run, run_headless


def _no_sweep_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"storage": {"cleanupTempFiles": False}}), encoding="utf-8")
    return path


def test_run_headless_converts_into_out_dir(tmp_path: Path, make_heic, capsys) -> None:
    out = tmp_path / "out"
    files = [str(make_heic("IMG_0001.heic")), str(make_heic("IMG_0002.HEIC"))]

    assert run_headless(files, out, AppConfig(), backend=RecordingBackend()) == 0

    assert sorted(p.name for p in out.iterdir()) == ["IMG_0001.jpg", "IMG_0002.jpg"]
    printed = capsys.readouterr().out
    assert "[✓] IMG_0001.heic" in printed


def test_run_headless_does_not_overwrite_existing_output(tmp_path: Path, make_heic) -> None:
    out = tmp_path / "out"
    out.mkdir()
    (out / "photo.jpg").write_bytes(b"keep")

    assert run_headless([str(make_heic())], out, AppConfig(), backend=RecordingBackend()) == 0
    assert (out / "photo.jpg").read_bytes() == b"keep"
    assert (out / "photo (1).jpg").is_file()


def test_run_headless_reports_failures(tmp_path: Path, make_heic, capsys) -> None:
    out = tmp_path / "out"
    files = [str(make_heic("ok.heic")), str(make_heic("bad.heic", header=PNG_HEADER))]

    assert run_headless(files, out, AppConfig(), backend=RecordingBackend()) == 1
    assert [p.name for p in out.iterdir()] == ["ok.jpg"]
    assert "[X] bad.heic: Invalid HEIC/HEIF file" in capsys.readouterr().out


def test_run_config_error_exits_2(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HEIC_JPEG_QUALITY", "500")
    assert run(["heic-converter", "--out", str(tmp_path / "out"), "x.heic"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_run_out_without_files_exits_2(tmp_path: Path, capsys) -> None:
    config = _no_sweep_config(tmp_path)
    assert run(["heic-converter", "--config", str(config), "--out", str(tmp_path / "out")]) == 2
    assert "no input files given" in capsys.readouterr().err


def test_run_log_options_are_exported(tmp_path: Path, monkeypatch) -> None:
    config = _no_sweep_config(tmp_path)
    monkeypatch.setenv("HEIC_CONVERTER_LOG_LEVEL", "")
    monkeypatch.setenv("HEIC_CONVERTER_LOG_CATS", "")
    run(["heic-converter", "--log-level", "debug", "--log-cats", "queue", "--config", str(config), "--out", str(tmp_path)])
    assert os.environ["HEIC_CONVERTER_LOG_LEVEL"] == "debug"
    assert os.environ["HEIC_CONVERTER_LOG_CATS"] == "queue"


def test_run_headless_skips_unsupported_extensions(tmp_path: Path, make_heic, capsys) -> None:
    out = tmp_path / "out"
    png = tmp_path / "scan.png"
    png.write_bytes(b"\x89PNG")
    backend = RecordingBackend()

    assert run_headless([str(png), str(make_heic())], out, AppConfig(), backend=backend) == 1
    assert len(backend.calls) == 1
    assert "[X] scan.png: Invalid HEIC/HEIF file: unsupported extension 'png'" in capsys.readouterr().out
