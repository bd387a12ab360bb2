"""
Exception hierarchy for arenabridge.

Protocol decode failures and misuse raise; recoverable remote rejections are
turned into synthesized stream events by the orchestrator instead.
"""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for arenabridge errors."""

    def __init__(self, message: str, original: Exception | None = None):
        self.original = original
        super().__init__(message)


class DereferenceError(ArenaError):
    """A reference-linked payload could not be decoded."""


class RootMissingError(DereferenceError):
    """The payload has no root record with id ``0``."""

    def __init__(self):
        super().__init__("Could not find the root object with ID '0'.")


class TransportError(ArenaError):
    """A bridged request failed inside the browser or while relaying."""


class ActionNotFoundError(ArenaError):
    """No server-action id could be located for a logical action key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Failed to locate server action for key: {key}")


class UploadError(ArenaError):
    """The attachment upload handshake failed."""


class ModelNotFoundError(ArenaError):
    """The requested model is not in the catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Model with name '{name}' not found.")


class ConfigError(ArenaError):
    """The settings file is invalid, with a user-friendly message."""

    def __init__(self, source: str, issues: list[str]):
        self.source = source
        self.issues = issues
        msg = f"Invalid configuration in {source}:\n" + "\n".join(
            f"  - {issue}" for issue in issues
        )
        super().__init__(msg)
