"""Settings dialog for library folders and loading preferences."""

from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import (
    QDialog, QDoubleSpinBox, QFileDialog, QFormLayout, QGroupBox, QHBoxLayout,
    QLabel, QListWidget, QPushButton, QSpinBox, QVBoxLayout,
)

from mediashelf.utils.config_manager import ConfigManager


class SettingsDialog(QDialog):
    """Dialog for configuring application settings."""

    def __init__(self, config: ConfigManager, parent=None):
        """Initialize settings dialog."""
        super().__init__(parent)
        self.config = config

        self.setWindowTitle("Settings")
        self.setMinimumWidth(500)

        self.setup_ui()

    def setup_ui(self):
        """Set up the user interface."""
        layout = QVBoxLayout()

        folders_group = QGroupBox("Library Folders")
        folders_layout = QVBoxLayout()

        self.folders_list = QListWidget()
        self.folders_list.addItems(self.config.get_library_paths())
        folders_layout.addWidget(self.folders_list)

        folder_buttons = QHBoxLayout()
        add_button = QPushButton("Add...")
        add_button.clicked.connect(self.add_folder)
        folder_buttons.addWidget(add_button)
        remove_button = QPushButton("Remove")
        remove_button.clicked.connect(self.remove_folder)
        folder_buttons.addWidget(remove_button)
        folder_buttons.addStretch()
        folders_layout.addLayout(folder_buttons)

        folders_group.setLayout(folders_layout)
        layout.addWidget(folders_group)

        loading_group = QGroupBox("Loading")
        loading_layout = QFormLayout()

        self.first_page_spin = QSpinBox()
        self.first_page_spin.setRange(10, 1000)
        self.first_page_spin.setValue(self.config.get('first_page_size', 80))
        loading_layout.addRow("First page:", self.first_page_spin)

        self.page_size_spin = QSpinBox()
        self.page_size_spin.setRange(10, 5000)
        self.page_size_spin.setValue(self.config.get('page_size', 250))
        loading_layout.addRow("Page size:", self.page_size_spin)

        self.workers_spin = QSpinBox()
        self.workers_spin.setRange(1, 16)
        self.workers_spin.setValue(self.config.get('thumbnail_workers', 4))
        loading_layout.addRow("Thumbnail workers:", self.workers_spin)

        self.delay_spin = QDoubleSpinBox()
        self.delay_spin.setRange(0.0, 5.0)
        self.delay_spin.setSingleStep(0.05)
        self.delay_spin.setValue(self.config.get('match_request_delay', 0.25))
        self.delay_spin.setSuffix(" s")
        loading_layout.addRow("Delay between matches:", self.delay_spin)

        help_label = QLabel("Loading and matching settings apply after a restart.")
        help_label.setWordWrap(True)
        help_label.setStyleSheet("color: gray; font-size: 10px;")
        loading_layout.addRow("", help_label)

        loading_group.setLayout(loading_layout)
        layout.addWidget(loading_group)

        button_layout = QHBoxLayout()
        button_layout.addStretch()

        self.save_button = QPushButton("Save")
        self.save_button.clicked.connect(self.accept)
        self.save_button.setDefault(True)

        self.cancel_button = QPushButton("Cancel")
        self.cancel_button.clicked.connect(self.reject)

        button_layout.addWidget(self.save_button)
        button_layout.addWidget(self.cancel_button)

        layout.addLayout(button_layout)
        self.setLayout(layout)

    def add_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Select Library Folder")
        if folder and not self.folders_list.findItems(folder, Qt.MatchFlag.MatchExactly):
            self.folders_list.addItem(folder)

    def remove_folder(self):
        for item in self.folders_list.selectedItems():
            self.folders_list.takeItem(self.folders_list.row(item))

    def get_library_paths(self):
        return [self.folders_list.item(i).text() for i in range(self.folders_list.count())]

    def save(self):
        """Write the dialog values back to the configuration."""
        self.config.config['library_paths'] = self.get_library_paths()
        self.config.config['first_page_size'] = self.first_page_spin.value()
        self.config.config['page_size'] = self.page_size_spin.value()
        self.config.config['thumbnail_workers'] = self.workers_spin.value()
        self.config.config['match_request_delay'] = self.delay_spin.value()
        self.config.save()
