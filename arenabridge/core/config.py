"""
Settings for the browser identity and the remote service.

Settings are read from ~/.arenabridge/config.yaml when it exists, and
environment variables take precedence over the file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from arenabridge.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".arenabridge" / "config.yaml"

# Environment variable -> settings field
ENV_OVERRIDES = {
    "ARENABRIDGE_BASE_URL": "base_url",
    "ARENABRIDGE_HEADLESS": "headless",
    "ARENABRIDGE_PROFILE_DIR": "profile_dir",
    "ARENABRIDGE_PROTOCOL": "protocol",
    "ARENABRIDGE_BROWSER": "browser_executable",
}

# Older deployments only knew this one
LEGACY_ENV_OVERRIDES = {
    "LMARENA_HEADLESS": "headless",
}

_FALSE_VALUES = {"0", "false", "no", "off"}


class ArenaSettings(BaseModel):
    """Runtime settings."""

    base_url: str = "https://lmarena.ai"
    headless: bool = True
    profile_dir: str | None = None
    browser_executable: str | None = None
    protocol: Literal["v2", "legacy"] = "v2"

    # Model catalog polling after a page load
    model_fetch_attempts: int = Field(default=30, ge=1)
    model_fetch_delay: float = Field(default=1.0, ge=0)

    # Direct uploads to the storage bucket
    upload_timeout: float = Field(default=120.0, gt=0)
    upload_chunk_size: int = Field(default=64 * 1024, gt=0)

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    # ── Service URLs ──────────────────────────────────────────────────

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @property
    def script_chunk_prefix(self) -> str:
        return self.url("/_next/static/chunks/")

    @property
    def terms_url(self) -> str:
        return self.url("/terms-of-use")


def _coerce_env(field: str, value: str) -> Any:
    if field == "headless":
        return value.strip().lower() not in _FALSE_VALUES
    return value


def _friendly_validation_errors(source: str, exc: ValidationError) -> ConfigError:
    """Convert a pydantic ValidationError to a ConfigError."""
    issues: list[str] = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"]) or "(root)"
        issues.append(f"{loc}: {error['msg']}")
    return ConfigError(source, issues)


def load_settings(path: Path | None = None, env: dict[str, str] | None = None) -> ArenaSettings:
    """
    Load settings from a YAML file and the environment.

    Args:
        path: Settings file (default: ~/.arenabridge/config.yaml). A missing
              file is not an error.
        env: Environment mapping (default: os.environ)

    Returns:
        Validated ArenaSettings

    Raises:
        ConfigError: If the file is not valid YAML or fails validation
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH
    if env is None:
        env = dict(os.environ)

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(str(path), [f"not valid YAML: {e}"]) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(str(path), ["top level must be a mapping"])
        data.update(loaded or {})
        logger.debug(f"Loaded settings from {path}")

    for mapping in (LEGACY_ENV_OVERRIDES, ENV_OVERRIDES):
        for name, field in mapping.items():
            if name in env:
                data[field] = _coerce_env(field, env[name])

    try:
        return ArenaSettings(**data)
    except ValidationError as e:
        raise _friendly_validation_errors(str(path), e) from e


# Global settings instance
_settings: ArenaSettings | None = None


def get_settings() -> ArenaSettings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
