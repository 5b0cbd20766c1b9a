"""Configuration module."""

from .settings import Settings, StorageSettings, ToolSettings, get_settings, settings

__all__ = [
    "Settings",
    "StorageSettings",
    "ToolSettings",
    "get_settings",
    "settings",
]
