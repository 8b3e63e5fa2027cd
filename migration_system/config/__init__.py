"""
Configuration Module

Environment-aware settings for migration targets.
"""

from .manager import DEFAULT_ENVIRONMENT, DEFAULT_TARGET, ConfigManager, MigrationSettings

__all__ = [
    "ConfigManager",
    "MigrationSettings",
    "DEFAULT_ENVIRONMENT",
    "DEFAULT_TARGET",
]
