"""Per-user treehouse directory management."""

from __future__ import annotations

import os
from pathlib import Path

from treehouse.constants import SETTINGS_FILE_NAME, TRUST_DB_NAME, USER_HOOKS_DIR_NAME

ENV_VAR_NAME = "TREEHOUSE_CONFIG_DIR"
XDG_ENV_VAR_NAME = "XDG_CONFIG_HOME"
APP_DIR_NAME = "treehouse"


class TreehouseHomeError(Exception):
    """Error related to the treehouse config directory."""

    pass


def get_config_dir(override: str | Path | None = None) -> Path:
    """Get the per-user treehouse config directory.

    Resolution order:
    1. Explicit override parameter
    2. TREEHOUSE_CONFIG_DIR environment variable
    3. $XDG_CONFIG_HOME/treehouse
    4. ~/.config/treehouse

    Raises:
        TreehouseHomeError: If no home directory can be determined.
    """
    if override:
        return Path(override)

    env_dir = os.environ.get(ENV_VAR_NAME)
    if env_dir:
        return Path(env_dir)

    xdg = os.environ.get(XDG_ENV_VAR_NAME)
    if xdg:
        return Path(xdg) / APP_DIR_NAME

    try:
        return Path.home() / ".config" / APP_DIR_NAME
    except RuntimeError as e:
        raise TreehouseHomeError(
            f"Cannot determine config directory and {ENV_VAR_NAME} not set: {e}"
        ) from e


def get_trust_db_path(config_dir: Path | None = None) -> Path:
    """Path to the trust database."""
    return (config_dir or get_config_dir()) / TRUST_DB_NAME


def get_user_hooks_dir(config_dir: Path | None = None) -> Path:
    """Directory of the user's own hook scripts, shared by all repositories."""
    return (config_dir or get_config_dir()) / USER_HOOKS_DIR_NAME


def get_settings_path(config_dir: Path | None = None) -> Path:
    """Path to the user settings file."""
    return (config_dir or get_config_dir()) / SETTINGS_FILE_NAME
