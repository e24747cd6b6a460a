"""Configuration module for the GenBook backend."""

from genbook.config.settings import (
    DEFAULT_PLANS_PATH,
    Settings,
    get_settings,
    reset_settings,
)

__all__ = [
    "DEFAULT_PLANS_PATH",
    "Settings",
    "get_settings",
    "reset_settings",
]
