"""Main window: file queue table with add/save/remove actions."""

from __future__ import annotations

from pathlib import Path

from PySide6.QtCore import Qt
from PySide6.QtGui import QCloseEvent
from PySide6.QtWidgets import (
    QAbstractItemView,
    QFileDialog,
    QHBoxLayout,
    QHeaderView,
    QMainWindow,
    QMessageBox,
    QProgressBar,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from .config import AppConfig
from .conversion_queue import ConversionQueue, ItemNotReady
from .errors import HeicConverterError
from .file_operations import default_save_name, format_size
from .logger import get_logger
from .models import QueueItem, QueueStatus
from .queue_bridge import QueueBridge

_logger = get_logger("ui")

OPEN_FILTER = "HEIC/HEIF Images (*.heic *.heif *.HEIC *.HEIF)"
SAVE_FILTER = "JPEG Images (*.jpg *.jpeg)"

COL_NAME, COL_SIZE, COL_STATUS, COL_PROGRESS = range(4)

_STATUS_TEXT = {
    QueueStatus.QUEUED: "Queued",
    QueueStatus.PROCESSING: "Processing...",
    QueueStatus.COMPLETED: "✓ Completed",
    QueueStatus.FAILED: "✗ Failed",
}


class ConverterWindow(QMainWindow):
    def __init__(self, queue: ConversionQueue, config: AppConfig, parent=None):
        super().__init__(parent)
        self.setWindowTitle("HEIC Converter")
        self.resize(config.ui.window_width, config.ui.window_height)

        self.queue = queue
        self._last_dir = ""
        self._bridge = QueueBridge(queue, self)
        self._bridge.item_changed.connect(self._on_item_changed)
        self._bridge.item_removed.connect(self._on_item_removed)

        self.table = QTableWidget(0, 4)
        self.table.setHorizontalHeaderLabels(["Name", "Size", "Status", "Progress"])
        self.table.setSelectionBehavior(QAbstractItemView.SelectionBehavior.SelectRows)
        self.table.setEditTriggers(QAbstractItemView.EditTrigger.NoEditTriggers)
        self.table.verticalHeader().setVisible(False)
        header = self.table.horizontalHeader()
        header.setSectionResizeMode(COL_NAME, QHeaderView.ResizeMode.Stretch)
        self.table.itemSelectionChanged.connect(self._update_buttons)

        self.add_btn = QPushButton("Add Files...")
        self.save_btn = QPushButton("Save...")
        self.remove_btn = QPushButton("Remove")
        self.clear_btn = QPushButton("Clear Finished")
        self.add_btn.clicked.connect(self._choose_files)
        self.save_btn.clicked.connect(self._save_selected)
        self.remove_btn.clicked.connect(self._remove_selected)
        self.clear_btn.clicked.connect(self._clear_finished)

        btns = QHBoxLayout()
        btns.addWidget(self.add_btn)
        btns.addStretch()
        btns.addWidget(self.save_btn)
        btns.addWidget(self.remove_btn)
        btns.addWidget(self.clear_btn)

        layout = QVBoxLayout()
        layout.addWidget(self.table)
        layout.addLayout(btns)
        central = QWidget(self)
        central.setLayout(layout)
        self.setCentralWidget(central)
        self._update_buttons()

    # -- actions ---------------------------------------------------------------

    def _choose_files(self) -> None:
        paths, _ = QFileDialog.getOpenFileNames(self, "Select HEIC images", self._last_dir, OPEN_FILTER)
        if paths:
            self._last_dir = str(Path(paths[0]).parent)
            self.add_paths(paths)

    def add_paths(self, paths: list[str]) -> list[str]:
        ids = self.queue.submit_paths(paths)
        self.statusBar().showMessage(f"Added {len(ids)} file(s)", 3000)
        return ids

    def _save_selected(self) -> None:
        for item_id in self.selected_ids():
            item = self.queue.get(item_id)
            if item is None or item.status is not QueueStatus.COMPLETED:
                continue
            start = default_save_name(item.name)
            if self._last_dir:
                start = str(Path(self._last_dir) / start)
            dest, _ = QFileDialog.getSaveFileName(self, "Save JPEG", start, SAVE_FILTER)
            if not dest:
                continue
            try:
                saved = self.queue.download(item_id, dest)
            except (HeicConverterError, ItemNotReady) as e:
                _logger.error("save failed for %s: %s", item.name, e)
                QMessageBox.warning(self, "Save failed", str(e))
                continue
            self.statusBar().showMessage(f"Saved {saved.name}", 3000)

    def _remove_selected(self) -> None:
        deferred = 0
        for item_id in self.selected_ids():
            try:
                if not self.queue.remove(item_id):
                    deferred += 1
            except KeyError:
                continue
        if deferred:
            self.statusBar().showMessage(f"{deferred} file(s) will be removed when conversion finishes", 3000)

    def _clear_finished(self) -> None:
        self.queue.clear_finished()

    def selected_ids(self) -> list[str]:
        rows = sorted({idx.row() for idx in self.table.selectedIndexes()})
        return [self.table.item(r, COL_NAME).data(Qt.ItemDataRole.UserRole) for r in rows]

    def _update_buttons(self) -> None:
        selected = [self.queue.get(i) for i in self.selected_ids()]
        self.save_btn.setEnabled(any(i is not None and i.status is QueueStatus.COMPLETED for i in selected))
        self.remove_btn.setEnabled(bool(selected))

    # -- queue events ------------------------------------------------------------

    def row_of(self, item_id: str) -> int:
        for r in range(self.table.rowCount()):
            cell = self.table.item(r, COL_NAME)
            if cell is not None and cell.data(Qt.ItemDataRole.UserRole) == item_id:
                return r
        return -1

    def _on_item_changed(self, item: QueueItem) -> None:
        row = self.row_of(item.id)
        if row < 0:
            if self.queue.get(item.id) is None:
                # late signal for an item that is already gone
                return
            row = self.table.rowCount()
            self.table.insertRow(row)
            name_cell = QTableWidgetItem(item.name)
            name_cell.setData(Qt.ItemDataRole.UserRole, item.id)
            self.table.setItem(row, COL_NAME, name_cell)
            self.table.setItem(row, COL_SIZE, QTableWidgetItem(format_size(item.size_bytes)))
            self.table.setItem(row, COL_STATUS, QTableWidgetItem())
            bar = QProgressBar()
            bar.setRange(0, 100)
            self.table.setCellWidget(row, COL_PROGRESS, bar)

        status = self.table.item(row, COL_STATUS)
        text = _STATUS_TEXT[item.status]
        if item.status is QueueStatus.FAILED and item.error_message:
            text = f"{text}: {item.error_message}"
        status.setText(text)
        status.setToolTip(item.error_message or "")
        bar = self.table.cellWidget(row, COL_PROGRESS)
        if isinstance(bar, QProgressBar):
            bar.setValue(item.progress)
        self._update_buttons()

    def _on_item_removed(self, item_id: str) -> None:
        row = self.row_of(item_id)
        if row >= 0:
            self.table.removeRow(row)
        self._update_buttons()

    def status_text(self, item_id: str) -> str:
        row = self.row_of(item_id)
        return self.table.item(row, COL_STATUS).text() if row >= 0 else ""

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802
        _logger.debug("window closing; releasing queue")
        self.queue.shutdown()
        super().closeEvent(event)
