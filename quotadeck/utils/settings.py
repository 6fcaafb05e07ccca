"""Settings persistence manager.

Each key is persisted on set() and loaded from settings.json when the
SettingsManager is created.
"""
import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

from .log import log_with_timestamp

# Registry of all persisted config keys
CONFIG_KEYS = {
    # Connection
    "apiBase",
    "installedServerVersion",
    "serverExecutablePath",
    # Dashboard
    "activeProviderTab",
    "autoRefreshEnabled",
    "autoRefreshIntervalMinutes",
}


def get_config_dir(app_name: str = "quotadeck") -> Path:
    """Platform config directory, shared by settings and log files."""
    system = platform.system()
    if system == "Darwin":  # macOS
        return Path.home() / "Library" / "Application Support" / app_name
    if system == "Windows":
        return Path.home() / "AppData" / "Local" / app_name
    return Path.home() / ".config" / app_name


class SettingsManager:
    """Manages application settings persistence."""

    def __init__(self, app_name: str = "quotadeck", config_dir: Optional[Path] = None):
        config_dir = Path(config_dir) if config_dir else get_config_dir(app_name)
        config_dir.mkdir(parents=True, exist_ok=True)
        self.settings_file = config_dir / "settings.json"
        self._settings: dict[str, Any] = {}
        self._load()

    def _load(self):
        """Load settings from file."""
        if not self.settings_file.exists():
            self._settings = {}
            return
        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log_with_timestamp(f"Ignoring unreadable settings file: {e}", "[Settings]")
            data = {}
        self._settings = data if isinstance(data, dict) else {}

    def _save(self):
        """Save settings to file."""
        old_umask = os.umask(0o077)
        try:
            with open(self.settings_file, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=2)
            os.chmod(self.settings_file, 0o600)
        except OSError as e:
            log_with_timestamp(f"Could not save settings: {e}", "[Settings]")
        finally:
            os.umask(old_umask)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any):
        """Set a setting value."""
        if key not in CONFIG_KEYS:
            log_with_timestamp(f"Unregistered setting key: {key}", "[Settings]")
        self._settings[key] = value
        self._save()

    def delete(self, key: str):
        """Delete a setting."""
        if key in self._settings:
            del self._settings[key]
            self._save()

    def clear(self):
        self._settings = {}
        self._save()
