"""
Configuration manager for awt.

Merges JSON config files from the system, the user and the repository, in
that order of increasing precedence, then applies ``AWT_*`` environment
variables on top.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from pydantic import ValidationError
from pydantic_settings import EnvSettingsSource

from ..utils.status_codes import InvalidInputError
from .settings import Settings

SYSTEM_CONFIG_FILE = Path("/etc/awt/config.json")


class ConfigError(InvalidInputError):
    default_hint = "Fix or remove the offending config file, or the AWT_* environment variable."


def default_user_config_file() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "awt" / "config.json"


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(
        self,
        git_common_dir: Optional[Union[str, Path]] = None,
        system_config: Optional[Path] = SYSTEM_CONFIG_FILE,
        user_config: Optional[Path] = None,
    ):
        """Initialize the configuration manager.

        Args:
            git_common_dir: The repository's git common dir. Repository config
                is read from <git_common_dir>/awt/config.json when given.
            system_config: System-wide config file, None to skip.
            user_config: Per-user config file. Defaults to
                $XDG_CONFIG_HOME/awt/config.json.
        """
        self.git_common_dir = Path(git_common_dir) if git_common_dir else None
        self.system_config = system_config
        self.user_config = user_config if user_config is not None else default_user_config_file()
        self._settings: Optional[Settings] = None

    @property
    def repo_config(self) -> Optional[Path]:
        if self.git_common_dir is None:
            return None
        return self.git_common_dir / "awt" / "config.json"

    def config_files(self) -> List[Path]:
        """Config files in increasing order of precedence."""
        return [p for p in (self.system_config, self.user_config, self.repo_config) if p is not None]

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except PermissionError:
            logger.warning("Cannot read config file {}", path)
            return {}

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON in config file {path}: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a JSON object")
        return data

    def load_config(self) -> Settings:
        """Load and merge configuration.

        Raises:
            ConfigError: a config file is unreadable JSON or a value is invalid
        """
        if self._settings is not None:
            return self._settings

        merged: Dict[str, Any] = {}
        for path in self.config_files():
            values = self._read_file(path)
            if values:
                logger.debug("Loaded config from {}", path)
            merged.update(values)

        try:
            merged.update(EnvSettingsSource(Settings)())
            self._settings = Settings(**merged)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ConfigError(f"invalid configuration ({fields})", cause=e) from e
        return self._settings

    def get_config(self) -> Settings:
        if self._settings is None:
            return self.load_config()
        return self._settings

    def reload_config(self) -> Settings:
        self._settings = None
        return self.load_config()
