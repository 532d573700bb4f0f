"""Application entry point.

    heic-converter [--log-level LEVEL] [--log-cats CATS] [--config FILE] [FILE ...]
    heic-converter --out DIR FILE [FILE ...]

Without `--out` the window opens with the given files already queued. With
`--out` the files are converted without a GUI and the JPEGs copied into DIR.
"""

import argparse
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from heic_converter.config import AppConfig
from heic_converter.conversion_queue import ConversionQueue
from heic_converter.converter import ConverterBackend
from heic_converter.errors import ConfigError, HeicConverterError, InvalidFormat
from heic_converter.file_operations import default_save_name, generate_unique_filename
from heic_converter.logger import get_logger
from heic_converter.models import QueueStatus
from heic_converter.temp_files import sweep_stale
from heic_converter.validation import validate_extension


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="heic-converter", description="Convert HEIC/HEIF images to JPEG")
    parser.add_argument("--log-level", help="Set log level")
    parser.add_argument("--log-cats", help="Set log categories")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--out", help="Convert without a window and write JPEGs into this folder")
    parser.add_argument("files", nargs="*", help="HEIC/HEIF files to queue")
    return parser


def _apply_cli_logging_options(args: argparse.Namespace) -> None:
    # reflected into env so every later get_logger() call picks them up
    if args.log_level:
        os.environ["HEIC_CONVERTER_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["HEIC_CONVERTER_LOG_CATS"] = args.log_cats


def run_headless(
    files: Sequence[str],
    out_dir: Path,
    config: AppConfig,
    backend: ConverterBackend | None = None,
) -> int:
    """Convert `files` into `out_dir`; 0 if every file converted, else 1."""
    logger = get_logger("main")
    failures = 0
    accepted = []
    for f in files:
        try:
            validate_extension(f)
        except InvalidFormat as e:
            failures += 1
            print(f"[X] {Path(f).name}: {e}")
            continue
        accepted.append(f)
    with ConversionQueue.from_config(config, backend=backend) as queue:
        queue.submit_paths(accepted)
        queue.wait_idle()
        for item in queue.snapshot():
            if item.status is not QueueStatus.COMPLETED:
                failures += 1
                print(f"[X] {item.name}: {item.error_message}")
                continue
            dest = generate_unique_filename(out_dir, default_save_name(item.name))
            try:
                queue.download(item.id, dest)
            except HeicConverterError as e:
                failures += 1
                print(f"[X] {item.name}: {e}")
                continue
            print(f"[✓] {item.name} -> {dest}")
    logger.info("converted %d/%d file(s)", len(files) - failures, len(files))
    return 0 if failures == 0 else 1


def run_gui(files: Sequence[str], config: AppConfig, qt_argv: list[str]) -> int:
    from PySide6.QtWidgets import QApplication

    from heic_converter.ui_main import ConverterWindow

    app = QApplication(qt_argv)
    window = ConverterWindow(ConversionQueue.from_config(config), config)
    if files:
        window.add_paths(list(files))
    window.show()
    rc = app.exec()
    window.queue.shutdown()
    return rc


def _report_config_error(err: ConfigError, gui: bool, qt_argv: list[str]) -> None:
    print(str(err), file=sys.stderr)
    if not gui:
        return
    from PySide6.QtWidgets import QApplication, QMessageBox

    _app = QApplication.instance() or QApplication(qt_argv)
    QMessageBox.critical(None, "HEIC Converter", str(err))


def run(argv: list[str] | None = None) -> int:
    """Application entrypoint (packaging-friendly)."""
    if argv is None:
        argv = sys.argv

    args, qt_args = _build_parser().parse_known_args(argv[1:])
    _apply_cli_logging_options(args)
    logger = get_logger("main")
    qt_argv = [argv[0], *qt_args]
    gui = not args.out

    try:
        config = AppConfig.load(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        _report_config_error(e, gui, qt_argv)
        return 2

    if config.storage.cleanup_temp_files:
        sweep_stale(config.storage.temp_file_retention_hours)

    if not gui:
        if not args.files:
            print("no input files given", file=sys.stderr)
            return 2
        return run_headless(args.files, Path(args.out), config)

    logger.info("starting HEIC Converter")
    return run_gui(args.files, config, qt_argv)


if __name__ == "__main__":
    sys.exit(run())
