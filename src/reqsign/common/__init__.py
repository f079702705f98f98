"""Common utilities for reqsign."""

from reqsign.common.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
