"""Main application window."""

import logging
import os

from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QAction
from PyQt6.QtWidgets import (
    QComboBox, QFileDialog, QHBoxLayout, QInputDialog, QLabel, QLineEdit,
    QMainWindow, QMessageBox, QPushButton, QSpinBox, QToolBar, QVBoxLayout, QWidget,
)

from mediashelf.api.tmdb_client import TMDBClient
from mediashelf.database.db_manager import DatabaseManager
from mediashelf.database.models import FilterSpec
from mediashelf.library.delivery import DeliveryQueue
from mediashelf.library.loader import PaginatedLoader
from mediashelf.library.sync import LibrarySync
from mediashelf.ui.dialogs.manual_match_dialog import ManualMatchDialog
from mediashelf.ui.poster_grid import PosterGrid
from mediashelf.ui.settings_dialog import SettingsDialog
from mediashelf.utils.config_manager import ConfigManager
from mediashelf.utils.filename_parser import format_runtime
from mediashelf.utils.image_loader import ImageLoader

logger = logging.getLogger(__name__)

SORT_OPTIONS = [("Title", "title"), ("Year", "year"), ("Rating", "rating"), ("Date Added", "added")]


class MainWindow(QMainWindow):
    """Main application window with the poster grid and filter bar."""

    def __init__(self, config: ConfigManager, db: DatabaseManager):
        """Initialize main window."""
        super().__init__()
        self.config = config
        self.db = db

        self.setWindowTitle("MediaShelf")
        self.setGeometry(100, 100, config.get('window_width', 1200),
                         config.get('window_height', 700))

        self.queue = DeliveryQueue()
        self.queue.notifier.pending.connect(
            self.drain_deliveries, Qt.ConnectionType.QueuedConnection
        )

        self.image_loader = ImageLoader(
            self.queue, config.get('poster_cache_dir', 'data/posters'),
            config.get('thumbnail_workers', 4), on_ready=self.on_thumbnail_ready
        )
        self.loader = PaginatedLoader(
            db, self.queue, config.get('first_page_size'), config.get('page_size'), parent=self
        )
        self.sync = LibrarySync(
            db, self.queue, self.create_tmdb_client,
            config.get('poster_cache_dir', 'data/posters'),
            config.get('match_request_delay'), parent=self
        )

        # Debounce filter edits
        self.filter_timer = QTimer(self)
        self.filter_timer.setSingleShot(True)
        self.filter_timer.setInterval(300)
        self.filter_timer.timeout.connect(self.apply_filter)
        self.shown_generation = 0

        self.setup_ui()
        self.connect_signals()
        self.refresh_genres()
        self.loader.refresh()

    def create_tmdb_client(self) -> TMDBClient:
        """New client per background operation; sessions are not shared across threads."""
        return TMDBClient(self.config.get_api_key())

    def setup_ui(self):
        """Set up the user interface."""
        central_widget = QWidget()
        self.setCentralWidget(central_widget)

        main_layout = QVBoxLayout()
        central_widget.setLayout(main_layout)

        self.create_toolbar()
        main_layout.addLayout(self.create_filter_bar())

        self.grid = PosterGrid()
        main_layout.addWidget(self.grid)

        self.counts_label = QLabel()
        self.statusBar().addPermanentWidget(self.counts_label)
        self.statusBar().showMessage("Ready")

    def create_toolbar(self):
        """Create application toolbar."""
        toolbar = QToolBar()
        toolbar.setMovable(False)
        self.addToolBar(toolbar)

        add_folder_action = QAction("Add Folder", self)
        add_folder_action.triggered.connect(self.add_library_folder)
        toolbar.addAction(add_folder_action)

        self.scan_action = QAction("Scan", self)
        self.scan_action.triggered.connect(self.start_scan)
        toolbar.addAction(self.scan_action)

        toolbar.addSeparator()

        self.match_action = QAction("Match All", self)
        self.match_action.triggered.connect(self.start_match)
        toolbar.addAction(self.match_action)

        self.stop_match_action = QAction("Stop Matching", self)
        self.stop_match_action.triggered.connect(self.sync.stop_match)
        self.stop_match_action.setEnabled(False)
        toolbar.addAction(self.stop_match_action)

        toolbar.addSeparator()

        refresh_action = QAction("Refresh", self)
        refresh_action.triggered.connect(self.loader.refresh)
        toolbar.addAction(refresh_action)

        toolbar.addSeparator()

        settings_action = QAction("Settings", self)
        settings_action.triggered.connect(self.open_settings)
        toolbar.addAction(settings_action)

        api_action = QAction("TMDB API Key", self)
        api_action.triggered.connect(self.configure_tmdb)
        toolbar.addAction(api_action)

    def create_filter_bar(self) -> QHBoxLayout:
        """Search, genre, year range and sort controls."""
        layout = QHBoxLayout()

        layout.addWidget(QLabel("Search:"))
        self.search_input = QLineEdit()
        self.search_input.setPlaceholderText("Title...")
        layout.addWidget(self.search_input)

        self.actor_input = QLineEdit()
        self.actor_input.setPlaceholderText("Actor...")
        layout.addWidget(self.actor_input)

        self.director_input = QLineEdit()
        self.director_input.setPlaceholderText("Director...")
        layout.addWidget(self.director_input)

        self.plot_input = QLineEdit()
        self.plot_input.setPlaceholderText("Plot...")
        layout.addWidget(self.plot_input)

        self.genre_combo = QComboBox()
        layout.addWidget(self.genre_combo)

        layout.addWidget(QLabel("Years:"))
        self.year_from_spin = QSpinBox()
        self.year_to_spin = QSpinBox()
        for spin in (self.year_from_spin, self.year_to_spin):
            spin.setRange(0, 2100)
            spin.setSpecialValueText("Any")
            layout.addWidget(spin)

        layout.addWidget(QLabel("Sort:"))
        self.sort_combo = QComboBox()
        for label, key in SORT_OPTIONS:
            self.sort_combo.addItem(label, key)
        layout.addWidget(self.sort_combo)

        self.order_combo = QComboBox()
        self.order_combo.addItem("Ascending", True)
        self.order_combo.addItem("Descending", False)
        layout.addWidget(self.order_combo)

        clear_button = QPushButton("Clear")
        clear_button.clicked.connect(self.clear_filters)
        layout.addWidget(clear_button)

        for line_edit in (self.search_input, self.actor_input, self.director_input, self.plot_input):
            line_edit.textChanged.connect(self.schedule_filter)
        for spin in (self.year_from_spin, self.year_to_spin):
            spin.valueChanged.connect(self.schedule_filter)
        for combo in (self.genre_combo, self.sort_combo, self.order_combo):
            combo.currentIndexChanged.connect(self.schedule_filter)

        return layout

    def connect_signals(self):
        self.loader.page_delivered.connect(self.on_page_delivered)
        self.loader.counts_updated.connect(self.on_counts_updated)
        self.loader.load_failed.connect(self.on_load_failed)

        self.sync.scan_progress.connect(self.on_scan_progress)
        self.sync.scan_finished.connect(self.on_scan_finished)
        self.sync.match_progress.connect(self.on_match_progress)
        self.sync.match_done.connect(self.on_match_done)
        self.sync.apply_finished.connect(self.on_apply_finished)
        self.sync.operation_failed.connect(self.on_operation_failed)

        self.grid.verticalScrollBar().valueChanged.connect(self.check_scroll)
        self.grid.verticalScrollBar().rangeChanged.connect(lambda _min, _max: self.check_scroll())
        self.grid.entry_activated.connect(self.show_details)
        self.grid.match_requested.connect(self.match_entry)
        self.grid.reset_requested.connect(self.reset_entry)
        self.grid.ignore_requested.connect(self.ignore_entry)
        self.grid.delete_requested.connect(self.delete_entry)
        self.grid.refresh_requested.connect(self.loader.refresh)

    def drain_deliveries(self):
        self.queue.drain()

    # Loading

    def current_filter(self) -> FilterSpec:
        """Build a filter from the filter bar."""
        return FilterSpec(
            genre=self.genre_combo.currentData(),
            year_from=self.year_from_spin.value() or None,
            year_to=self.year_to_spin.value() or None,
            search_text=self.search_input.text().strip() or None,
            actor=self.actor_input.text().strip() or None,
            director=self.director_input.text().strip() or None,
            plot_text=self.plot_input.text().strip() or None,
            sort_by=self.sort_combo.currentData(),
            sort_ascending=self.order_combo.currentData(),
        )

    def schedule_filter(self, *_args):
        self.filter_timer.start()

    def apply_filter(self):
        self.loader.set_filter(self.current_filter())

    def clear_filters(self):
        """Clear every filter and reload."""
        for line_edit in (self.search_input, self.actor_input, self.director_input, self.plot_input):
            line_edit.blockSignals(True)
            line_edit.clear()
            line_edit.blockSignals(False)
        self.year_from_spin.setValue(0)
        self.year_to_spin.setValue(0)
        self.genre_combo.setCurrentIndex(0)
        self.filter_timer.stop()
        self.apply_filter()

    def refresh_genres(self):
        """Reload genre choices, keeping the current selection."""
        current = self.genre_combo.currentData()
        self.genre_combo.blockSignals(True)
        self.genre_combo.clear()
        self.genre_combo.addItem("All Genres", None)
        for genre in self.db.get_all_genres():
            self.genre_combo.addItem(genre, genre)
        index = self.genre_combo.findData(current)
        self.genre_combo.setCurrentIndex(max(index, 0))
        self.genre_combo.blockSignals(False)

    def on_page_delivered(self, rows: list, generation: int):
        """Show a page; the first page of a session replaces the grid."""
        if generation != self.shown_generation:
            self.shown_generation = generation
            self.grid.clear_entries()
        self.grid.append_entries(rows)
        for entry in rows:
            if entry.poster_path:
                self.image_loader.request_thumbnail(entry.id, entry.poster_path)
        # The grid may still be too short to scroll.
        QTimer.singleShot(0, self.check_scroll)

    def check_scroll(self):
        scroll_bar = self.grid.verticalScrollBar()
        self.loader.maybe_request_next_page(scroll_bar.value(), scroll_bar.maximum())

    def on_counts_updated(self, total: int, unmatched: int, generation: int):
        self.counts_label.setText(f"{total} titles | {unmatched} unmatched")

    def on_load_failed(self, message: str, generation: int):
        self.statusBar().showMessage(f"Loading failed: {message}", 5000)

    def on_thumbnail_ready(self, entry_id, image):
        self.grid.set_thumbnail(entry_id, image)

    # Library operations

    def add_library_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Select Library Folder")
        if folder:
            self.config.add_library_path(folder)
            self.statusBar().showMessage(f"Added folder: {folder}", 3000)
            self.start_scan()

    def start_scan(self):
        roots = self.config.get_library_paths()
        if not roots:
            QMessageBox.information(self, "No Folders", "Add a library folder first.")
            return
        if self.sync.start_scan(roots):
            self.scan_action.setEnabled(False)
            self.statusBar().showMessage("Scanning...")

    def on_scan_progress(self, path: str):
        self.statusBar().showMessage(f"Scanning: {path}")

    def on_scan_finished(self, added: int):
        self.scan_action.setEnabled(True)
        self.statusBar().showMessage(f"Scan complete: {added} new item(s)", 5000)
        self.loader.refresh()

    def start_match(self):
        if not self.config.get_api_key():
            QMessageBox.warning(self, "No API Key", "Configure a TMDB API key first.")
            return
        if self.sync.start_match():
            self.match_action.setEnabled(False)
            self.stop_match_action.setEnabled(True)

    def on_match_progress(self, current: int, total: int, title: str, matched: bool):
        result = "matched" if matched else "no match"
        self.statusBar().showMessage(f"Matching {current}/{total}: {title} ({result})")

    def on_match_done(self, canceled: bool):
        self.match_action.setEnabled(True)
        self.stop_match_action.setEnabled(False)
        self.statusBar().showMessage("Matching canceled" if canceled else "Matching complete", 5000)
        self.refresh_genres()
        self.loader.refresh()

    def on_operation_failed(self, message: str):
        self.scan_action.setEnabled(not self.sync.is_scanning)
        self.match_action.setEnabled(not self.sync.is_matching)
        self.stop_match_action.setEnabled(self.sync.is_matching)
        QMessageBox.warning(self, "Error", message)

    # Entry actions

    def match_entry(self, entry_id: int):
        entry = self.db.get_entry(entry_id)
        if entry is None:
            return
        if not self.config.get_api_key():
            QMessageBox.warning(self, "No API Key", "Configure a TMDB API key first.")
            return
        dialog = ManualMatchDialog(self, self.sync, entry)
        if dialog.exec() and dialog.selected_match:
            self.sync.apply_match(entry.id, dialog.selected_match['id'], dialog.selected_media_type())
            self.statusBar().showMessage(f"Applying match: {dialog.selected_match.get('title')}")

    def on_apply_finished(self, entry_id: int, ok: bool, error: str):
        if ok:
            self.statusBar().showMessage("Match applied", 3000)
            self.refresh_genres()
            self.loader.refresh()
        else:
            QMessageBox.warning(self, "Match Failed", error or "Could not apply match.")

    def reset_entry(self, entry_id: int):
        if self.sync.reset_to_unmatched(entry_id):
            self.loader.refresh()

    def ignore_entry(self, entry_id: int):
        if self.sync.mark_ignored(entry_id):
            self.loader.refresh()

    def delete_entry(self, entry_id: int):
        if self.sync.delete_entry(entry_id):
            self.statusBar().showMessage("Removed from library", 3000)
            self.loader.refresh()

    def show_details(self, entry_id: int):
        """Show metadata, credits and episodes of an entry."""
        entry = self.db.get_entry(entry_id)
        if entry is None:
            return

        lines = [
            f"{entry.title} ({entry.year or 'N/A'})",
            f"Runtime: {format_runtime(entry.runtime_minutes)}",
            f"Rating: {entry.rating:.1f}" if entry.rating else "Rating: N/A",
            f"Genres: {', '.join(self.db.get_genres_for_entry(entry.id)) or 'N/A'}",
        ]
        directors = [d.name for d in self.db.get_directors_for_entry(entry.id)]
        if directors:
            lines.append(f"Directed by: {', '.join(directors)}")
        cast = [f"{c.name} ({c.role})" if c.role else c.name
                for c in self.db.get_cast_for_entry(entry.id)[:5]]
        if cast:
            lines.append(f"Cast: {', '.join(cast)}")
        if entry.plot:
            lines += ["", entry.plot]

        if entry.is_tv_season:
            lines.append("")
            for episode in self.db.get_episodes_for_season(entry.id):
                number = episode.episode_number if episode.episode_number is not None else '?'
                lines.append(f"{number}. {episode.title}")
        else:
            for attached in self.db.get_attached_files(entry.id):
                lines.append(f"Also: {attached.label or os.path.basename(attached.file_path)}")

        QMessageBox.information(self, entry.title or "Details", "\n".join(lines))

    # Settings

    def open_settings(self):
        dialog = SettingsDialog(self.config, parent=self)
        if dialog.exec():
            dialog.save()
            self.statusBar().showMessage("Settings saved", 3000)

    def configure_tmdb(self):
        """Configure TMDB API key."""
        current_key = self.config.get('tmdb_api_key', '')

        api_key, ok = QInputDialog.getText(
            self,
            "TMDB API Key",
            "Enter your TMDB API key:\n\n"
            "Get a free key at:\nhttps://www.themoviedb.org/settings/api\n\n"
            "API Key:",
            text=current_key
        )

        if ok and api_key.strip():
            self.config.set('tmdb_api_key', api_key.strip())
            QMessageBox.information(self, "Success", "TMDB API key configured!")

    def closeEvent(self, event):
        self.statusBar().showMessage("Waiting for background tasks...")
        self.sync.shutdown()
        self.image_loader.wait_for_done()
        self.loader.pool.waitForDone()
        super().closeEvent(event)
