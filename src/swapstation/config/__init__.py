"""Configuration for the swap station engine."""

from swapstation.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
