"""Configuration management for substrate."""

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_HOME = "~/.substrate"
DEFAULT_API_URL = "https://substrate.heavystack.io"
DEFAULT_TIMEOUT = 10.0

PROJECT_DIR_NAME = ".substrate"
CONFIG_FILE_NAME = "config.json"
AUTH_FILE_NAME = "auth.json"


def get_home() -> Path:
    """Return the substrate home directory ($SUBSTRATE_HOME or ~/.substrate)."""
    return Path(os.environ.get("SUBSTRATE_HOME") or DEFAULT_HOME).expanduser()


def _read_json(path: Path) -> dict[str, Any]:
    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}
    return {}


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


class ConfigManager:
    """Manages configuration for substrate.

    This service handles the global config.json and auth.json in the
    substrate home directory, and the per-project pin file
    ``.substrate/config.json`` inside a project directory.
    """

    def __init__(self, base_path: Path) -> None:
        """Initialize the configuration manager.

        Args:
            base_path: Substrate home directory.
        """
        self.base_path = base_path
        self.config_path = base_path / CONFIG_FILE_NAME
        self.auth_path = base_path / AUTH_FILE_NAME

    def load_config(self) -> dict[str, Any]:
        """Load configuration from config.json.

        Returns:
            Configuration dictionary, empty if missing or unreadable.
        """
        return _read_json(self.config_path)

    def save_config(self, config: dict[str, Any]) -> None:
        """Save configuration to config.json.

        Args:
            config: Configuration dictionary to save.
        """
        _write_json(self.config_path, config)

    def get(self, key: str, default: Any = None) -> Any:
        return self.load_config().get(key, default)

    def set(self, key: str, value: Any) -> None:
        config = self.load_config()
        config[key] = value
        self.save_config(config)

    def get_api_url(self) -> str:
        """Get the remote API base URL.

        Returns:
            $SUBSTRATE_API_URL, else the configured api_url, else the default.
        """
        url = os.environ.get("SUBSTRATE_API_URL") or self.get("api_url") or DEFAULT_API_URL
        return url.rstrip("/")

    def get_api_key(self) -> str | None:
        """Get the API key stored by the login flow.

        Returns:
            $SUBSTRATE_API_KEY, else auth.json's api_key, else None.
        """
        env_key = os.environ.get("SUBSTRATE_API_KEY")
        if env_key:
            return env_key
        return _read_json(self.auth_path).get("api_key")

    def get_timeout(self) -> float:
        try:
            return float(self.get("timeout", DEFAULT_TIMEOUT))
        except (TypeError, ValueError):
            return DEFAULT_TIMEOUT

    # Project pinning

    @staticmethod
    def project_config_path(project_dir: str | Path) -> Path:
        return Path(project_dir) / PROJECT_DIR_NAME / CONFIG_FILE_NAME

    def find_project_config(self, start: str | Path) -> Path | None:
        """Find the nearest project pin file at or above ``start``.

        Args:
            start: Directory to begin searching from.

        Returns:
            Path of the pin file, or None if no ancestor is pinned.
        """
        current = Path(start).expanduser().resolve()
        for directory in (current, *current.parents):
            candidate = self.project_config_path(directory)
            if candidate.exists():
                return candidate
        return None

    def get_project_id(self, start: str | Path) -> str | None:
        """Get the pinned project id for a directory, if any."""
        path = self.find_project_config(start)
        if path is None:
            return None
        return _read_json(path).get("project_id")

    def get_local_pin(self, project_dir: str | Path) -> str | None:
        """Get the project id pinned in ``project_dir`` itself, ignoring ancestors."""
        return _read_json(self.project_config_path(project_dir)).get("project_id")


    def pin_project(self, project_dir: str | Path, project_id: str) -> Path:
        """Write the project pin file in ``project_dir``.

        Returns:
            Path of the written pin file.
        """
        path = self.project_config_path(project_dir)
        data = _read_json(path)
        data["project_id"] = project_id
        _write_json(path, data)
        return path

    def unpin_project(self, project_dir: str | Path) -> bool:
        """Remove the project pin from ``project_dir``.

        Returns:
            True if a pin was removed.
        """
        path = self.project_config_path(project_dir)
        data = _read_json(path)
        if "project_id" not in data:
            return False
        del data["project_id"]
        if data:
            _write_json(path, data)
        else:
            path.unlink()
        return True
