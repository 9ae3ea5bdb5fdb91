"""
Settings loader — reads berets.yml into the Settings model.

The settings file is optional: when none is found every field keeps its
default.  An explicit path (``--config`` or ``BERETS_CONFIG``) that does
not exist is an error, since the operator asked for that file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from berets.core.models.settings import Settings

logger = logging.getLogger(__name__)

# Default config filename
SETTINGS_FILE = "berets.yml"
CONFIG_ENV_VAR = "BERETS_CONFIG"


class ConfigError(Exception):
    """Raised when the settings file is invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for berets.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to berets.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def resolve_config_path(path: Path | None = None) -> Path | None:
    """Explicit path, else ``$BERETS_CONFIG``, else the nearest berets.yml."""
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path)
    return find_config_file()


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate engine settings.

    Args:
        path: Explicit path to berets.yml. If None, uses BERETS_CONFIG or
            searches upward from the working directory.

    Returns:
        Validated Settings model (defaults when no file is found).

    Raises:
        ConfigError: If an explicit file is missing, or the file is invalid.
    """
    explicit = path is not None or bool(os.environ.get(CONFIG_ENV_VAR, "").strip())
    path = resolve_config_path(path)

    if path is None:
        logger.debug("No %s found, using defaults", SETTINGS_FILE)
        return Settings()

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return Settings()

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "settings" key or be flat
    settings_data = data.get("settings", data)

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings
