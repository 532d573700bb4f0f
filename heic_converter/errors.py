"""Structured failure kinds surfaced to the queue and, ultimately, the user.

Every error carries an :class:`ErrorKind` so a failed queue item can record
*what* went wrong separately from the human readable message shown in the UI.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_FORMAT = "InvalidFormat"
    FILE_TOO_LARGE = "FileTooLarge"
    INVALID_PATH = "InvalidPath"
    CONVERSION_FAILED = "ConversionFailed"
    IO_ERROR = "IoError"
    CONFIG_ERROR = "ConfigError"


class HeicConverterError(Exception):
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(HeicConverterError):
    """Raised before conversion when the input is rejected."""


class ConversionError(HeicConverterError):
    """Raised by the converter invoker."""


class InvalidFormat(ValidationError):
    kind = ErrorKind.INVALID_FORMAT

    def __init__(self, reason: str):
        super().__init__(f"Invalid HEIC/HEIF file: {reason}")
        self.reason = reason


class FileTooLarge(ValidationError):
    kind = ErrorKind.FILE_TOO_LARGE

    def __init__(self, actual: int, max: int):  # noqa: A002
        super().__init__(f"File size {actual}MB exceeds maximum {max}MB")
        self.actual = actual
        self.max = max


class InvalidPath(ConversionError):
    kind = ErrorKind.INVALID_PATH

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid file path: {reason}")
        self.path = path
        self.reason = reason


class ConversionFailed(ConversionError):
    kind = ErrorKind.CONVERSION_FAILED

    def __init__(self, reason: str):
        super().__init__(f"Conversion failed: {reason}")
        self.reason = reason


class IoError(HeicConverterError):
    kind = ErrorKind.IO_ERROR

    def __init__(self, op: str, path: str, detail: str = ""):
        msg = f"I/O error during {op}: {path}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
        self.op = op
        self.path = path
        self.detail = detail


class ConfigError(HeicConverterError):
    kind = ErrorKind.CONFIG_ERROR

    def __init__(self, reason: str):
        super().__init__(f"Configuration error: {reason}")
        self.reason = reason
