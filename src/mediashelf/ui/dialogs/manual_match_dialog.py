"""Manual match dialog for choosing TMDB metadata for an entry."""

from typing import Dict, List, Optional

from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import (
    QComboBox, QDialog, QGroupBox, QHBoxLayout, QHeaderView, QLabel, QLineEdit,
    QMessageBox, QPushButton, QTableWidget, QTableWidgetItem, QVBoxLayout,
)

from mediashelf.database.models import CatalogEntry, MediaType
from mediashelf.library.sync import LibrarySync
from mediashelf.utils.filename_parser import clean_search_query


class ManualMatchDialog(QDialog):
    """Dialog for searching TMDB and picking the match for one entry."""

    def __init__(self, parent, sync: LibrarySync, entry: CatalogEntry):
        """
        Initialize manual match dialog.

        Args:
            parent: Parent widget
            sync: Library operations used for the background search
            entry: Entry being matched
        """
        super().__init__(parent)
        self.sync = sync
        self.entry = entry
        self.results: List[Dict] = []
        self.selected_match: Optional[Dict] = None
        self._request_id = None
        self._search_media_type: Optional[MediaType] = None

        self.setWindowTitle(f"Manual Match - {entry.title or entry.file_path}")
        self.setModal(True)
        self.resize(800, 600)

        self.setup_ui()
        self.populate_search_field()
        self.sync.search_finished.connect(self.on_search_finished)

    def setup_ui(self):
        """Set up the user interface."""
        layout = QVBoxLayout()
        self.setLayout(layout)

        info_group = QGroupBox("Entry")
        info_layout = QVBoxLayout()
        info_group.setLayout(info_layout)

        path_label = QLabel(f"File: {self.entry.file_path}")
        path_label.setWordWrap(True)
        info_layout.addWidget(path_label)

        layout.addWidget(info_group)

        search_group = QGroupBox("Search")
        search_layout = QVBoxLayout()
        search_group.setLayout(search_layout)

        search_input_layout = QHBoxLayout()
        search_input_layout.addWidget(QLabel("Search for:"))

        self.search_input = QLineEdit()
        self.search_input.setPlaceholderText("Enter search term...")
        self.search_input.returnPressed.connect(self.search)
        search_input_layout.addWidget(self.search_input)

        self.search_button = QPushButton("Search")
        self.search_button.clicked.connect(self.search)
        search_input_layout.addWidget(self.search_button)

        search_layout.addLayout(search_input_layout)

        options_layout = QHBoxLayout()
        options_layout.addWidget(QLabel("Year (optional):"))
        self.year_input = QLineEdit()
        self.year_input.setPlaceholderText("YYYY")
        self.year_input.setMaximumWidth(100)
        options_layout.addWidget(self.year_input)

        options_layout.addWidget(QLabel("Type:"))
        self.type_combo = QComboBox()
        self.type_combo.addItem("Film", MediaType.FILM)
        self.type_combo.addItem("TV Season", MediaType.TV_SEASON)
        self.type_combo.setCurrentIndex(1 if self.entry.is_tv_season else 0)
        options_layout.addWidget(self.type_combo)
        options_layout.addStretch()
        search_layout.addLayout(options_layout)

        layout.addWidget(search_group)

        results_group = QGroupBox("Search Results")
        results_layout = QVBoxLayout()
        results_group.setLayout(results_layout)

        self.status_label = QLabel("Enter a search term and click 'Search'")
        results_layout.addWidget(self.status_label)

        self.results_table = QTableWidget()
        self.results_table.setColumnCount(4)
        self.results_table.setHorizontalHeaderLabels(["Title", "Year", "Rating", "Overview"])
        self.results_table.setSelectionBehavior(QTableWidget.SelectionBehavior.SelectRows)
        self.results_table.setSelectionMode(QTableWidget.SelectionMode.SingleSelection)
        self.results_table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        header = self.results_table.horizontalHeader()
        header.setSectionResizeMode(0, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(1, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(2, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(3, QHeaderView.ResizeMode.Stretch)
        self.results_table.itemDoubleClicked.connect(lambda _item: self.accept_match())
        results_layout.addWidget(self.results_table)

        layout.addWidget(results_group)

        button_layout = QHBoxLayout()
        button_layout.addStretch()

        self.apply_button = QPushButton("Apply Match")
        self.apply_button.clicked.connect(self.accept_match)
        self.apply_button.setEnabled(False)
        button_layout.addWidget(self.apply_button)

        cancel_button = QPushButton("Cancel")
        cancel_button.clicked.connect(self.reject)
        button_layout.addWidget(cancel_button)

        layout.addLayout(button_layout)

    def populate_search_field(self):
        """Pre-populate search fields from the entry."""
        self.search_input.setText(clean_search_query(self.entry.title or self.entry.file_path))
        if self.entry.year:
            self.year_input.setText(str(self.entry.year))

    def selected_media_type(self) -> MediaType:
        """Type the shown results belong to; the combo only steers the next search."""
        if self._search_media_type is not None:
            return self._search_media_type
        return self.type_combo.currentData()

    def search(self):
        """Start a background search."""
        search_term = self.search_input.text().strip()
        if not search_term:
            QMessageBox.warning(self, "Empty Search", "Please enter a search term.")
            return

        year_text = self.year_input.text().strip()
        year = int(year_text) if year_text.isdigit() else None

        self.search_button.setEnabled(False)
        self.apply_button.setEnabled(False)
        self.status_label.setText("Searching...")
        self.results_table.setRowCount(0)
        self._search_media_type = self.type_combo.currentData()
        self._request_id = self.sync.search(search_term, year, self._search_media_type)

    def on_search_finished(self, request_id: int, results: list):
        """Show results of the latest search; older searches are ignored."""
        if request_id != self._request_id:
            return
        self.search_button.setEnabled(True)
        self.results = results

        if not results:
            self.status_label.setText("No matches found. Try a different search term.")
            return

        self.results_table.setRowCount(len(results))
        for i, match in enumerate(results):
            self.results_table.setItem(i, 0, QTableWidgetItem(match.get('title') or 'Unknown'))
            self.results_table.setItem(i, 1, QTableWidgetItem(str(match.get('year') or 'N/A')))
            self.results_table.setItem(i, 2, QTableWidgetItem(f"{match.get('vote_average') or 0:.1f}"))
            overview = QTableWidgetItem((match.get('overview') or '')[:200])
            overview.setToolTip(match.get('overview') or '')
            self.results_table.setItem(i, 3, overview)
            self.results_table.item(i, 0).setData(Qt.ItemDataRole.UserRole, match)

        self.status_label.setText(f"Found {len(results)} match(es). Select one to apply.")
        self.apply_button.setEnabled(True)

    def accept_match(self):
        """Accept the selected match and close dialog."""
        row = self.results_table.currentRow()
        if row < 0:
            QMessageBox.warning(self, "No Selection", "Please select a match to apply.")
            return
        self.selected_match = self.results_table.item(row, 0).data(Qt.ItemDataRole.UserRole)
        if self.selected_match:
            self.accept()

    def done(self, result):
        self.sync.search_finished.disconnect(self.on_search_finished)
        super().done(result)
