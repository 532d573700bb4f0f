from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import ErrorKind


class QueueStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


@dataclass(frozen=True)
class PathRef:
    """Input the caller can reference directly on disk (picker, CLI)."""

    path: Path
    size: int

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class BytesRef:
    """In-memory input (drag-and-drop, clipboard); converted via a temp file."""

    content: bytes
    name: str

    @property
    def size(self) -> int:
        return len(self.content)


FileRef = PathRef | BytesRef


@dataclass(frozen=True)
class QueueItem:
    """Immutable snapshot of one submitted file.

    The queue replaces the stored snapshot on every transition; readers never
    see a partially updated item.
    """

    id: str
    name: str
    size_bytes: int
    status: QueueStatus = QueueStatus.QUEUED
    progress: int = 0
    output_path: Path | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    temp_path: Path | None = None
