"""Settings persistence manager.

All config keys used across the app. Each key is persisted on set() and loaded
from settings.json at startup (when SettingsManager is first created).
"""
import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

# Registry of all persisted config keys (for documentation and validation)
CONFIG_KEYS = {
    # Management API connection
    "managementBaseURL",
    "managementKey",
    "operatingMode",
    # Feature flags
    "feature.enhancedUILayout",
    "feature.enhancedObservability",
    "feature.accessibilityHardening",
    # Logs screen
    "logsPollingIntervalSeconds",
    "evidenceRefreshThrottleSeconds",
    "requestLog",
    "loggingToFile",
    # Usage statistics screen
    "usagePollingIntervalSeconds",
    "realtimeAutoScroll",
}

DEFAULT_MANAGEMENT_BASE_URL = "http://127.0.0.1:8317/v0/management"


def default_config_dir(app_name: str = "Quotio") -> Path:
    """Platform config directory shared by settings and log files."""
    system = platform.system()
    if system == "Darwin":  # macOS
        return Path.home() / "Library" / "Preferences"
    elif system == "Windows":
        return Path.home() / "AppData" / "Local" / app_name
    # Linux
    return Path.home() / ".config" / app_name


class SettingsManager:
    """Manages application settings persistence."""

    def __init__(self, app_name: str = "Quotio", config_dir: Optional[Path] = None):
        """Initialize settings manager."""
        config_dir = config_dir or default_config_dir(app_name)
        config_dir.mkdir(parents=True, exist_ok=True)
        self.settings_file = config_dir / "settings.json"
        self._settings: dict[str, Any] = {}
        self._load()

    def _load(self):
        """Load settings from file."""
        if self.settings_file.exists():
            try:
                with open(self.settings_file, "r") as f:
                    self._settings = json.load(f)
            except (OSError, ValueError):
                self._settings = {}
        else:
            self._settings = {}

    def _save(self):
        """Save settings to file."""
        # Set restrictive permissions
        old_umask = os.umask(0o077)
        try:
            with open(self.settings_file, "w") as f:
                json.dump(self._settings, f, indent=2)
            os.chmod(self.settings_file, 0o600)
        except OSError:
            pass
        finally:
            os.umask(old_umask)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any):
        """Set a setting value."""
        self._settings[key] = value
        self._save()

    def delete(self, key: str):
        """Delete a setting."""
        if key in self._settings:
            del self._settings[key]
            self._save()

    def snapshot(self, keys: Optional[set] = None) -> dict[str, str]:
        """String snapshot of the given keys (all registered keys by default)."""
        keys = keys if keys is not None else CONFIG_KEYS
        return {key: str(self._settings.get(key, "unknown")) for key in sorted(keys)}

    @property
    def management_base_url(self) -> str:
        return self.get("managementBaseURL") or DEFAULT_MANAGEMENT_BASE_URL

    @property
    def management_key(self) -> str:
        return self.get("managementKey") or ""
