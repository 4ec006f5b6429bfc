"""Configuration management."""

from .config_manager import ConfigManager, validate_config
from .models import AppConfig

__all__ = ["ConfigManager", "AppConfig", "validate_config"]
