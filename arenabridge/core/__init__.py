"""Core module for arenabridge."""

from arenabridge.core.config import ArenaSettings, get_settings, load_settings
from arenabridge.core.errors import (
    ActionNotFoundError,
    ArenaError,
    ConfigError,
    DereferenceError,
    ModelNotFoundError,
    RootMissingError,
    TransportError,
    UploadError,
)

__all__ = [
    "ActionNotFoundError",
    "ArenaError",
    "ArenaSettings",
    "ConfigError",
    "DereferenceError",
    "ModelNotFoundError",
    "RootMissingError",
    "TransportError",
    "UploadError",
    "get_settings",
    "load_settings",
]
