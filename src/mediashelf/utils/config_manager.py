"""Configuration manager for saving and loading application settings."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages application configuration settings."""

    API_KEY_ENV = 'TMDB_API_KEY'

    def __init__(self, config_file: str = "data/config.json"):
        """Initialize config manager."""
        self.config_file = Path(config_file)
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        self.config: Dict[str, Any] = self.load()

    def load(self) -> Dict[str, Any]:
        """Load configuration from file, filling in missing defaults."""
        config = self.get_defaults()
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    stored = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.error("Error loading config %s: %s", self.config_file, e)
                return config
            if isinstance(stored, dict):
                config.update(stored)
            else:
                logger.error("Ignoring malformed config %s", self.config_file)
        return config

    def save(self):
        """Save configuration to file."""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=4)
        except IOError as e:
            logger.error("Error saving config %s: %s", self.config_file, e)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any):
        """Set a configuration value and save."""
        self.config[key] = value
        self.save()

    @staticmethod
    def get_defaults() -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            'tmdb_api_key': '',
            'library_paths': [],
            'db_path': 'data/library.db',
            'poster_cache_dir': 'data/posters',
            'first_page_size': 80,
            'page_size': 250,
            'thumbnail_workers': 4,
            'match_request_delay': 0.25,
            'window_width': 1200,
            'window_height': 700,
        }

    def get_api_key(self) -> str:
        """TMDB key, with the environment taking precedence."""
        return os.environ.get(self.API_KEY_ENV) or self.get('tmdb_api_key', '')

    def get_library_paths(self) -> List[str]:
        """Get the list of library root folders."""
        return list(self.get('library_paths', []))

    def add_library_path(self, path: str):
        """Add a library root folder."""
        paths = self.get_library_paths()
        if path not in paths:
            paths.append(path)
            self.set('library_paths', paths)

    def remove_library_path(self, path: str):
        """Remove a library root folder."""
        paths = self.get_library_paths()
        if path in paths:
            paths.remove(path)
            self.set('library_paths', paths)
