import logging
import sys

from heic_converter import logger as hc_logger


def _stderr_handlers(base: logging.Logger) -> list[logging.Handler]:
    return [
        h
        for h in base.handlers
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
    ]


def test_setup_logger_idempotent_handlers():
    """Calling setup_logger() repeatedly should leave exactly one stderr StreamHandler."""
    base = hc_logger.setup_logger(level=logging.DEBUG)
    _ = hc_logger.setup_logger(level=logging.DEBUG)
    _ = hc_logger.get_logger("queue")

    assert len(_stderr_handlers(base)) == 1
    assert base.propagate is False


def test_setup_logger_follows_swapped_stderr(monkeypatch):
    """If stderr is replaced between calls, the existing handler is pointed at the new stream."""
    base = hc_logger.setup_logger(level=logging.DEBUG)

    class DummyStream:
        def __init__(self, orig):
            self._orig = orig

        def write(self, s):
            return self._orig.write(s)

        def flush(self):
            return getattr(self._orig, "flush", lambda: None)()

    monkeypatch.setattr(sys, "stderr", DummyStream(sys.stderr))
    _ = hc_logger.setup_logger(level=logging.DEBUG)

    assert len(_stderr_handlers(base)) == 1


def test_env_level_override(monkeypatch):
    monkeypatch.setenv("HEIC_CONVERTER_LOG_LEVEL", "warning")
    base = hc_logger.setup_logger(level=logging.DEBUG)
    assert base.level == logging.WARNING
    monkeypatch.delenv("HEIC_CONVERTER_LOG_LEVEL")
    hc_logger.setup_logger()


def test_category_filter(monkeypatch):
    monkeypatch.setenv("HEIC_CONVERTER_LOG_CATS", "queue, converter")
    base = hc_logger.setup_logger(level=logging.DEBUG)
    [handler] = _stderr_handlers(base)

    def _record(name: str) -> logging.LogRecord:
        return logging.LogRecord(name, logging.INFO, __file__, 1, "msg", None, None)

    assert handler.filter(_record("heic_converter.queue"))
    assert handler.filter(_record("heic_converter.converter"))
    assert not handler.filter(_record("heic_converter.temp_files"))

    monkeypatch.delenv("HEIC_CONVERTER_LOG_CATS")
    hc_logger.setup_logger()
    assert handler.filter(_record("heic_converter.temp_files"))
