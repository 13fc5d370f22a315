"""
Configuration management for awt.
"""

from .config_manager import ConfigError, ConfigManager
from .settings import Settings, generate_project_id

__all__ = ["ConfigError", "ConfigManager", "Settings", "generate_project_id"]
