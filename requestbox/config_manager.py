"""
Configuration management using in-memory storage seeded from the environment.

Provides access to configuration values with defaults and type conversion.
Every key can be overridden with an environment variable named
REQUESTBOX_<KEY> (e.g. REQUESTBOX_YOUTUBE_API_KEY). Nothing is written to disk:
runtime changes live only as long as the process.
The CONFIG_SCHEMA provides rich metadata for building user-friendly configuration UIs.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "REQUESTBOX_"

# Configuration groups define the logical sections in the config UI
CONFIG_GROUPS = {
    "security": {"label": "Security", "order": 1},
    "api": {"label": "API & Backups", "order": 2},
}

# Schema defining metadata for each editable configuration key
# This drives the configuration UI - the frontend reads this to render appropriate controls.
# Only keys that take effect at runtime are listed; the rest come from the environment.
CONFIG_SCHEMA = {
    # Security
    "operator_password": {
        "group": "security",
        "label": "Operator Password",
        "description": "Shared password required for admin controls (playback, backups, restart).",
        "control": "password",
    },
    # API & Backups
    "youtube_api_key": {
        "group": "api",
        "label": "YouTube API Key",
        "description": "Your YouTube Data API v3 key for titles, durations and playlists.",
        "control": "password",
    },
    "backup_path": {
        "group": "api",
        "label": "Backup Directory",
        "description": "Where snapshot and full-archive backups are written.",
        "control": "text",
        "placeholder": "./backups",
    },
}


class ConfigManager:
    """Manages configuration held in memory."""

    # Default configuration values
    DEFAULTS = {
        "host": "0.0.0.0",
        "port": "5000",
        "youtube_api_key": None,
        "operator_password": None,  # Operator login is refused until this is set
        "session_secret": None,  # Random per process when unset
        "backup_path": "./backups",
        "deployment_root": ".",  # Directory archived by full backups
        "default_header_color": "#212529",
        "default_title": "Music Request Platform",
        "song_history_limit": "200",
        "chat_history_limit": "500",
        "chat_sync_limit": "50",
        "playlist_limit": "1000",
        "restart_delay_seconds": "2",
        "drain_timeout_seconds": "5",
    }

    def __init__(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize ConfigManager.

        Args:
            overrides: Explicit values, applied after the environment
            environ: Environment mapping (defaults to os.environ)
        """
        self.logger = logging.getLogger(__name__)
        self._values: Dict[str, Optional[str]] = dict(self.DEFAULTS)

        environ = os.environ if environ is None else environ
        for key in self.DEFAULTS:
            env_value = environ.get(ENV_PREFIX + key.upper())
            if env_value is not None:
                self._values[key] = env_value

        for key, value in (overrides or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Optional[str]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found or empty (uses DEFAULTS if None)

        Returns:
            Configuration value as string, or None if not found
        """
        if default is None:
            default = self.DEFAULTS.get(key)

        value = self._values.get(key)
        return value if value else default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            self.logger.warning("Invalid integer value for %s: %s", key, value)
            return default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Get configuration value as float."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s", key, value)
            return default

    def set(self, key: str, value: Any) -> bool:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Value to set (converted to string; None clears it)

        Returns:
            True if successful
        """
        self._values[key] = None if value is None else str(value)
        return True

    def get_all(self) -> dict:
        """Get all configuration values, defaults included."""
        result = dict(self.DEFAULTS)
        result.update(self._values)
        return result

    def get_config_schema(self) -> Dict[str, dict]:
        """Get the configuration schema (copied, safe to mutate)."""
        return {key: dict(key_def) for key, key_def in CONFIG_SCHEMA.items()}

    def get_config_groups(self) -> Dict[str, dict]:
        """Get the configuration group definitions."""
        return CONFIG_GROUPS.copy()

    def get_full_config(self) -> dict:
        """
        Get complete configuration data for the UI.

        Password-controlled values are masked: only whether they are set is exposed.

        Returns:
            Dictionary with 'values', 'schema', and 'groups' keys.
        """
        values = self.get_all()
        for key, key_def in CONFIG_SCHEMA.items():
            if key_def.get("control") == "password":
                values[key] = "********" if values.get(key) else None
        values.pop("session_secret", None)
        return {
            "values": values,
            "schema": self.get_config_schema(),
            "groups": self.get_config_groups(),
        }
