"""Main entry point for MediaShelf application."""

import logging
import sqlite3
import sys
from pathlib import Path

from PyQt6.QtWidgets import QApplication, QMessageBox

from mediashelf import __version__
from mediashelf.database.db_manager import DatabaseManager
from mediashelf.ui.main_window import MainWindow
from mediashelf.utils.config_manager import ConfigManager
from mediashelf.utils.logger import setup_logging

logger = logging.getLogger(__name__)


def main():
    """Initialize and run the application."""
    setup_logging(Path("data/mediashelf.log"), verbose='--verbose' in sys.argv)

    app = QApplication(sys.argv)

    # Set application metadata
    app.setApplicationName("MediaShelf")
    app.setOrganizationName("MediaShelf")
    app.setApplicationVersion(__version__)

    config = ConfigManager()
    try:
        db = DatabaseManager(config.get('db_path', 'data/library.db'))
    except (sqlite3.Error, OSError) as e:
        logger.critical("Cannot open catalog database: %s", e)
        QMessageBox.critical(None, "Database Error", f"Cannot open the catalog database:\n{e}")
        sys.exit(1)

    # Create and show main window
    window = MainWindow(config, db)
    window.show()

    status = app.exec()
    db.close()
    sys.exit(status)


if __name__ == '__main__':
    main()
