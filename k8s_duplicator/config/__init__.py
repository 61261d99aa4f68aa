"""
Configuration - Controller settings from YAML, a master JSON key and env vars.
"""

from .loader import (
    ControllerSettings,
    load_settings,
    parse_bind_address,
)

__all__ = [
    "ControllerSettings",
    "load_settings",
    "parse_bind_address",
]
