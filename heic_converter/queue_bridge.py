from __future__ import annotations

from PySide6.QtCore import QObject, Signal

from .conversion_queue import ConversionQueue
from .models import QueueItem


class QueueBridge(QObject):
    """Re-emits queue callbacks as Qt signals.

    Queue listeners fire on worker threads; widgets connected to these
    signals receive them on the GUI thread through queued connections.
    """

    item_changed = Signal(object)  # QueueItem
    item_removed = Signal(str)  # item id

    def __init__(self, queue: ConversionQueue, parent: QObject | None = None) -> None:
        super().__init__(parent)
        queue.add_listener(self._on_item_changed)
        queue.add_removal_listener(self.item_removed.emit)

    def _on_item_changed(self, item: QueueItem) -> None:
        self.item_changed.emit(item)
