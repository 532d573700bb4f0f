import logging
import os
import sys

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class _CategoryFilter(logging.Filter):
    def __init__(self, allowed: set[str]):
        super().__init__()
        self.allowed = allowed

    def filter(self, record: logging.LogRecord) -> bool:
        # record.name like: heic_converter.queue, heic_converter.converter
        parts = (record.name or "").split(".")
        suffix = parts[-1] if parts else record.name
        return suffix in self.allowed


def setup_logger(level: int = logging.INFO, name: str = "heic_converter") -> logging.Logger:
    """Create or update the project logger.

    - Respects env overrides HEIC_CONVERTER_LOG_LEVEL/HEIC_CONVERTER_LOG_CATS on
      every call, so options parsed after the first import still apply.
    - Keeps exactly one stderr StreamHandler on the base logger and refreshes
      its formatter/filters instead of adding another one.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("HEIC_CONVERTER_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVELS.get(env_level, level)
    logger.setLevel(level)

    stream_handler: logging.StreamHandler | None = None
    for h in list(logger.handlers):
        if isinstance(h, logging.StreamHandler) and getattr(h, "_heic_converter_handler", False):
            stream_handler = h
            break

    if stream_handler is None:
        stream_handler = logging.StreamHandler(stream=sys.stderr)
        stream_handler._heic_converter_handler = True  # type: ignore[attr-defined]
        logger.addHandler(stream_handler)
    else:
        # stderr may have been swapped (pytest capture, IDE consoles)
        stream_handler.stream = sys.stderr

    stream_handler.setFormatter(
        logging.Formatter(
            fmt="[%(asctime)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )

    stream_handler.filters.clear()
    cats = (os.getenv("HEIC_CONVERTER_LOG_CATS") or "").strip()
    if cats:
        allowed = {c.strip() for c in cats.split(",") if c.strip()}
        stream_handler.addFilter(_CategoryFilter(allowed))

    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = setup_logger()
    return base if not name else base.getChild(name)
