"""Poster grid widget showing catalog entries as icons."""

from typing import Dict, List, Optional

from PyQt6.QtCore import QSize, Qt, pyqtSignal
from PyQt6.QtGui import QAction, QColor, QIcon, QImage, QPixmap
from PyQt6.QtWidgets import QListWidget, QListWidgetItem, QMenu, QMessageBox

from mediashelf.database.models import CatalogEntry, MatchStatus
from mediashelf.utils.image_loader import THUMB_HEIGHT, THUMB_WIDTH


class PosterGrid(QListWidget):
    """Icon-mode list of entries, keyed by entry id."""

    entry_activated = pyqtSignal(int)
    match_requested = pyqtSignal(int)
    reset_requested = pyqtSignal(int)
    ignore_requested = pyqtSignal(int)
    delete_requested = pyqtSignal(int)
    refresh_requested = pyqtSignal()

    def __init__(self, parent=None):
        """Initialize poster grid."""
        super().__init__(parent)

        self.setViewMode(QListWidget.ViewMode.IconMode)
        self.setResizeMode(QListWidget.ResizeMode.Adjust)
        self.setMovement(QListWidget.Movement.Static)
        self.setIconSize(QSize(THUMB_WIDTH, THUMB_HEIGHT))
        self.setGridSize(QSize(THUMB_WIDTH + 20, THUMB_HEIGHT + 50))
        self.setWordWrap(True)
        self.setUniformItemSizes(True)
        self.setSelectionMode(QListWidget.SelectionMode.SingleSelection)

        self.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)
        self.customContextMenuRequested.connect(self.show_context_menu)
        self.itemDoubleClicked.connect(self._on_double_click)

        self.entries: Dict[int, CatalogEntry] = {}
        self._items: Dict[int, QListWidgetItem] = {}
        self._placeholder = self._make_placeholder()

    @staticmethod
    def _make_placeholder() -> QIcon:
        pixmap = QPixmap(THUMB_WIDTH, THUMB_HEIGHT)
        pixmap.fill(QColor(60, 60, 60))
        return QIcon(pixmap)

    def clear_entries(self):
        """Remove every entry; late thumbnails for them are ignored."""
        self.clear()
        self.entries.clear()
        self._items.clear()

    def append_entries(self, entries: List[CatalogEntry]):
        """Append a page of entries in delivery order."""
        for entry in entries:
            if entry.id in self._items:
                continue
            label = entry.title or entry.file_path
            if entry.year:
                label = f"{label} ({entry.year})"
            item = QListWidgetItem(self._placeholder, label)
            item.setData(Qt.ItemDataRole.UserRole, entry.id)
            item.setToolTip(entry.file_path)
            if entry.match_status == MatchStatus.UNMATCHED:
                item.setForeground(QColor(200, 120, 0))
            self.addItem(item)
            self.entries[entry.id] = entry
            self._items[entry.id] = item

    def set_thumbnail(self, entry_id: int, image: Optional[QImage]):
        """Show a decoded poster; entries no longer shown are a no-op."""
        item = self._items.get(entry_id)
        if item is None:
            return
        if image is None or image.isNull():
            item.setIcon(self._placeholder)
            return
        item.setIcon(QIcon(QPixmap.fromImage(image)))

    def get_selected_entry(self) -> Optional[CatalogEntry]:
        """Get the currently selected entry."""
        item = self.currentItem()
        if item is None:
            return None
        return self.entries.get(item.data(Qt.ItemDataRole.UserRole))

    def _on_double_click(self, item):
        """Handle double-click event."""
        entry_id = item.data(Qt.ItemDataRole.UserRole)
        if entry_id is not None:
            self.entry_activated.emit(entry_id)

    def show_context_menu(self, position):
        """Show context menu on right-click."""
        entry = self.get_selected_entry()
        if not entry:
            return

        menu = QMenu(self)

        details_action = QAction("Details", self)
        details_action.triggered.connect(lambda: self.entry_activated.emit(entry.id))
        menu.addAction(details_action)

        match_action = QAction("Match Manually...", self)
        match_action.triggered.connect(lambda: self.match_requested.emit(entry.id))
        menu.addAction(match_action)

        if entry.match_status in (MatchStatus.AUTO, MatchStatus.MANUAL):
            reset_action = QAction("Reject Match", self)
            reset_action.triggered.connect(lambda: self.reset_requested.emit(entry.id))
            menu.addAction(reset_action)

        if entry.match_status != MatchStatus.IGNORED:
            ignore_action = QAction("Ignore", self)
            ignore_action.triggered.connect(lambda: self.ignore_requested.emit(entry.id))
            menu.addAction(ignore_action)

        menu.addSeparator()

        delete_action = QAction("Remove from Library", self)
        delete_action.triggered.connect(lambda: self._confirm_delete(entry))
        menu.addAction(delete_action)

        menu.addSeparator()

        refresh_action = QAction("Refresh", self)
        refresh_action.triggered.connect(lambda: self.refresh_requested.emit())
        menu.addAction(refresh_action)

        menu.exec(self.viewport().mapToGlobal(position))

    def _confirm_delete(self, entry: CatalogEntry):
        """Confirm before removing an entry."""
        reply = QMessageBox.question(
            self,
            'Confirm Remove',
            f'Remove "{entry.title}" from the library?\n\nFiles on disk are not touched.',
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
            QMessageBox.StandardButton.No
        )

        if reply == QMessageBox.StandardButton.Yes:
            self.delete_requested.emit(entry.id)
