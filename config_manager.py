"""
Configuration management for the palette tools.
Handles loading, saving, and managing user defaults.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

__all__ = [
    'ConfigManager',
]

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages persisted defaults and user preferences."""

    DEFAULT_CONFIG = {
        # Default processing settings, used when a job file leaves them out
        "defaults": {
            "palette_source": "median_cut",  # "median_cut", "popularity", "custom:<name>", ...
            "num_colors": 16,
            "dither_mode": "floyd_steinberg",
            "dithering_enabled": True,
            "final_resize_multiplier": 2,
        },

        # Where custom palettes are stored
        "palette_file": "palette.json",

        # Last used paths
        "paths": {
            "last_image_dir": None,
            "last_save_dir": None,
        },

        # Recent files (keep last 10)
        "recent_files": [],
    }

    def __init__(self, config_file: str = "palette_pie.json", create: bool = True):
        """
        Initialize config manager.

        Args:
            config_file: Path to config file
            create: Write the defaults to disk when the file does not exist yet
        """
        self.config_file = config_file
        self._create = create
        self.config = self._load_config()

    def _load_config(self) -> Dict:
        """Load config from file, or create default if not exists."""
        defaults = copy.deepcopy(self.DEFAULT_CONFIG)
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Error loading config {self.config_file}: {e}")
                return defaults
            if not isinstance(loaded, dict):
                logger.warning(f"Ignoring config {self.config_file}: top level is not an object")
                return defaults
            # Merge with defaults to handle new settings
            return self._merge_configs(defaults, loaded)

        self.config = defaults
        if self._create:
            self.save()
        return defaults

    def _merge_configs(self, default: Dict, loaded: Dict) -> Dict:
        """
        Recursively merge loaded config with defaults.
        Ensures all default keys exist even if not in loaded config.
        """
        for key, value in default.items():
            if key in loaded:
                if isinstance(value, dict) and isinstance(loaded[key], dict):
                    default[key] = self._merge_configs(value, loaded[key])
                else:
                    default[key] = loaded[key]
        return default

    def save(self):
        """Save current config to file."""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=4)
        except OSError as e:
            logger.warning(f"Error saving config {self.config_file}: {e}")

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get config value by nested keys.

        Example:
            config.get("defaults", "num_colors")  # Returns 16
        """
        value = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, *keys: str, value: Any):
        """
        Set config value by nested keys.

        Example:
            config.set("defaults", "num_colors", value=32)
        """
        if len(keys) == 0:
            return

        current = self.config
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def update_last_path(self, path_type: str, filepath: str):
        """
        Update last used directory for a path type ("image" or "save").
        """
        if filepath:
            directory = str(Path(filepath).parent)
            self.set("paths", f"last_{path_type}_dir", value=directory)

    def add_recent_file(self, filepath: str, max_recent: int = 10):
        """
        Add file to the front of the recent files list.
        """
        recent = list(self.get("recent_files", default=[]))
        if filepath in recent:
            recent.remove(filepath)
        recent.insert(0, filepath)
        self.set("recent_files", value=recent[:max_recent])
