"""Conversion queue: per-file state machine driven by a bounded worker pool.

Each submitted file becomes a :class:`QueueItem` that moves through

    queued -> processing -> completed | failed

The queue owns the id -> item and id -> FileRef mappings; both are guarded by
a single lock and items are replaced (never mutated) so snapshots handed to
listeners and the UI stay consistent. Work runs on a ThreadPoolExecutor whose
size is the configured `maxConcurrentConversions`; completion order across
items is not defined, so readers key on the item id.

Removing an item that is mid-conversion is deferred until its worker
finishes. Items in a terminal state are destroyed immediately, and every
temp/output file they own is released first.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import replace
from pathlib import Path

from . import validation
from .config import AppConfig
from .converter import ConverterBackend, ConverterInvoker, select_backend
from .errors import ConversionFailed, HeicConverterError
from .file_operations import get_file_size, save_output
from .logger import get_logger
from .metrics import metrics
from .models import BytesRef, FileRef, PathRef, QueueItem, QueueStatus
from .temp_files import TempFileManager

_logger = get_logger("queue")

PROGRESS_STARTED = 10
PROGRESS_VALIDATED = 30
PROGRESS_INPUT_READY = 60
PROGRESS_DONE = 100

ItemListener = Callable[[QueueItem], None]
RemovalListener = Callable[[str], None]


class ItemNotReady(Exception):
    """Raised when an operation needs a state the item is not in."""


class ConversionQueue:
    def __init__(
        self,
        converter: ConverterInvoker,
        temp_files: TempFileManager,
        max_file_size_bytes: int,
        max_workers: int = 5,
        auto_start: bool = True,
    ):
        self._converter = converter
        self._temp_files = temp_files
        self._max_file_size_bytes = max_file_size_bytes
        self._auto_start = auto_start
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="heic-convert")
        self._lock = threading.RLock()
        self._items: dict[str, QueueItem] = {}
        self._refs: dict[str, FileRef] = {}
        self._futures: dict[str, Future] = {}
        self._pending_removal: set[str] = set()
        self._listeners: list[ItemListener] = []
        self._removal_listeners: list[RemovalListener] = []
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        temp_files: TempFileManager | None = None,
        backend: ConverterBackend | None = None,
        auto_start: bool = True,
    ) -> ConversionQueue:
        temp = temp_files or TempFileManager()
        converter = ConverterInvoker(
            backend or select_backend(config.conversion.backend),
            temp,
            quality=config.conversion.jpeg_quality,
            timeout=config.conversion.timeout_seconds,
        )
        return cls(
            converter,
            temp,
            max_file_size_bytes=config.max_file_size_bytes,
            max_workers=config.ui.max_concurrent_conversions,
            auto_start=auto_start,
        )

    # -- listeners -----------------------------------------------------------

    def add_listener(self, callback: ItemListener) -> None:
        """`callback(item)` runs on the mutating thread after every change."""
        self._listeners.append(callback)

    def add_removal_listener(self, callback: RemovalListener) -> None:
        self._removal_listeners.append(callback)

    def _notify(self, item: QueueItem) -> None:
        for cb in list(self._listeners):
            try:
                cb(item)
            except Exception:
                _logger.exception("queue listener failed for %s", item.id)

    def _notify_removed(self, item_id: str) -> None:
        for cb in list(self._removal_listeners):
            try:
                cb(item_id)
            except Exception:
                _logger.exception("removal listener failed for %s", item_id)

    # -- submission ------------------------------------------------------------

    def submit(self, file_ref: FileRef) -> str:
        item_id = uuid.uuid4().hex
        item = QueueItem(id=item_id, name=file_ref.name, size_bytes=file_ref.size)
        with self._lock:
            if self._closed:
                raise RuntimeError("queue is shut down")
            self._items[item_id] = item
            self._refs[item_id] = file_ref
        metrics.inc("queue.submitted")
        _logger.debug("submitted %s (%s, %d bytes)", item_id, item.name, item.size_bytes)
        self._notify(item)
        if self._auto_start:
            self.schedule(item_id)
        return item_id

    def submit_paths(self, paths: Iterable[str | Path]) -> list[str]:
        return [self.submit(PathRef(Path(p), get_file_size(p))) for p in paths]

    def schedule(self, item_id: str) -> Future:
        """Run `start(item_id)` on the worker pool."""
        with self._lock:
            if self._closed:
                raise RuntimeError("queue is shut down")
            fut = self._executor.submit(self.start, item_id)
            self._futures[item_id] = fut
        fut.add_done_callback(lambda f, i=item_id: self._forget_future(i, f))
        return fut

    def _forget_future(self, item_id: str, fut: Future) -> None:
        with self._lock:
            if self._futures.get(item_id) is fut:
                del self._futures[item_id]
        if fut.cancelled():
            return
        err = fut.exception()
        if err is not None:
            _logger.error("worker for %s failed: %r", item_id, err)

    # -- processing ------------------------------------------------------------

    def start(self, item_id: str) -> QueueItem | None:
        """Drive one queued item to a terminal state.

        Returns the final snapshot, or None if the item was removed before it
        could start (or was removed right after finishing).
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                _logger.debug("skip start of removed item %s", item_id)
                return None
            if item.status is not QueueStatus.QUEUED:
                raise ItemNotReady(f"item {item_id} is {item.status.value}, expected queued")
            file_ref = self._refs[item_id]
            item = replace(item, status=QueueStatus.PROCESSING, progress=PROGRESS_STARTED)
            self._items[item_id] = item
        self._notify(item)

        try:
            return self._process(item_id, file_ref)
        finally:
            with self._lock:
                removed = self._detach(item_id) if item_id in self._pending_removal else None
            if removed is not None:
                _logger.debug("ran deferred removal of %s", item_id)
                self._release(removed)

    def _process(self, item_id: str, file_ref: FileRef) -> QueueItem:
        try:
            validation.validate(file_ref, self._max_file_size_bytes)
            self._update(item_id, progress=PROGRESS_VALIDATED)
            input_path = self._usable_path(item_id, file_ref)
            self._update(item_id, progress=PROGRESS_INPUT_READY)
            output = self._converter.convert(input_path)
        except HeicConverterError as e:
            _logger.warning("%s failed: %s", file_ref.name, e)
            return self._fail(item_id, e)
        except Exception as e:
            _logger.exception("unexpected error converting %s", file_ref.name)
            return self._fail(item_id, ConversionFailed(f"unexpected error: {e}"))

        self._temp_files.register(output, item_id)
        self._release_temp_input(item_id)
        metrics.inc("queue.completed")
        return self._update(
            item_id,
            status=QueueStatus.COMPLETED,
            progress=PROGRESS_DONE,
            output_path=output,
            temp_path=None,
        )

    def _usable_path(self, item_id: str, file_ref: FileRef) -> Path:
        if isinstance(file_ref, PathRef):
            return file_ref.path
        assert isinstance(file_ref, BytesRef)
        temp_path = self._temp_files.materialize(file_ref.content, file_ref.name, owner=item_id)
        self._update(item_id, temp_path=temp_path)
        return temp_path

    def _fail(self, item_id: str, error: HeicConverterError) -> QueueItem:
        self._release_temp_input(item_id)
        metrics.inc("queue.failed")
        return self._update(
            item_id,
            status=QueueStatus.FAILED,
            progress=0,
            output_path=None,
            error_kind=error.kind,
            error_message=str(error),
            temp_path=None,
        )

    def _release_temp_input(self, item_id: str) -> None:
        with self._lock:
            item = self._items.get(item_id)
        if item is None or item.temp_path is None:
            return
        try:
            self._temp_files.cleanup(item.temp_path)
        except HeicConverterError as e:
            _logger.warning("temp cleanup failed for %s: %s", item_id, e)

    def _update(self, item_id: str, **changes) -> QueueItem:
        with self._lock:
            current = self._items[item_id]
            new_progress = changes.get("progress", current.progress)
            if (
                current.status is QueueStatus.PROCESSING
                and changes.get("status", current.status) is QueueStatus.PROCESSING
                and new_progress < current.progress
            ):
                raise ValueError(f"progress must not decrease ({current.progress} -> {new_progress})")
            item = replace(current, **changes)
            self._items[item_id] = item
        self._notify(item)
        return item

    # -- readers ---------------------------------------------------------------

    def get(self, item_id: str) -> QueueItem | None:
        with self._lock:
            return self._items.get(item_id)

    def snapshot(self) -> list[QueueItem]:
        """Current items in submission order."""
        with self._lock:
            return list(self._items.values())

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no scheduled work remains; False on timeout."""
        with self._lock:
            pending = list(self._futures.values())
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    # -- user actions ----------------------------------------------------------

    def download(self, item_id: str, destination: str | Path) -> Path:
        """Copy a completed item's JPEG to `destination`."""
        item = self.get(item_id)
        if item is None:
            raise KeyError(item_id)
        if item.status is not QueueStatus.COMPLETED or item.output_path is None:
            raise ItemNotReady(f"item {item_id} is {item.status.value}, expected completed")
        return save_output(item.output_path, destination)

    def remove(self, item_id: str) -> bool:
        """Remove an item and release its files.

        Returns True if the item is gone, False if removal was deferred
        because the item is still processing.
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise KeyError(item_id)
            if item.status is QueueStatus.PROCESSING:
                self._pending_removal.add(item_id)
                _logger.debug("deferring removal of %s until it finishes", item_id)
                return False
            self._detach(item_id)
            fut = self._futures.pop(item_id, None)
        if fut is not None:
            fut.cancel()
        self._release(item)
        return True

    def clear_finished(self) -> int:
        finished = [i.id for i in self.snapshot() if i.status.is_terminal]
        for item_id in finished:
            self.remove(item_id)
        return len(finished)

    def _detach(self, item_id: str) -> QueueItem | None:
        # caller holds self._lock
        item = self._items.pop(item_id, None)
        self._refs.pop(item_id, None)
        self._pending_removal.discard(item_id)
        return item

    def _release(self, item: QueueItem) -> None:
        for err in self._temp_files.cleanup_owner(item.id):
            _logger.warning("cleanup failed while removing %s: %s", item.id, err)
        metrics.inc("queue.removed")
        _logger.debug("removed %s (%s)", item.id, item.name)
        self._notify_removed(item.id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the pool and release every outstanding temp/output file."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
        with self._lock:
            ids = list(self._items)
            self._items.clear()
            self._refs.clear()
            self._pending_removal.clear()
            self._futures.clear()
        for item_id in ids:
            for err in self._temp_files.cleanup_owner(item_id):
                _logger.warning("cleanup failed at shutdown for %s: %s", item_id, err)
        self._temp_files.cleanup_all()
        _logger.debug("queue shut down, %d item(s) released", len(ids))

    def __enter__(self) -> ConversionQueue:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
