"""User settings for the hook engine.

Provides layered settings with precedence:
1. Environment variables (highest)
2. Global settings (<config dir>/config.json)
3. Hardcoded defaults (lowest)

Repository hook definitions are not read here; they live in YAML files
inside the repository and are loaded by ``treehouse.hooks.loader``.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from treehouse.constants import (
    ABORT_BY_DEFAULT,
    DEFAULT_JOB_TIMEOUT,
    HOOK_NAMES,
)
from treehouse.home import get_settings_path

logger = logging.getLogger(__name__)

VALID_FAIL_MODES = ("abort", "warn")

# Environment variable names
ENV_HOOKS_ENABLED = "TREEHOUSE_HOOKS_ENABLED"
ENV_HOOK_TIMEOUT = "TREEHOUSE_HOOK_TIMEOUT"
ENV_MAX_PARALLEL = "TREEHOUSE_MAX_PARALLEL"


class ConfigError(Exception):
    """Base class for configuration problems."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    pass


class ConfigLoadError(ConfigError):
    """Raised when a configuration file cannot be loaded."""

    pass


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass
class HookSettings:
    """Per-hook user overrides."""

    enabled: bool = True
    fail_mode: str | None = None

    def validate(self, hook_name: str) -> None:
        if self.fail_mode is not None and self.fail_mode not in VALID_FAIL_MODES:
            raise ConfigValidationError(
                f"Invalid fail_mode '{self.fail_mode}' for hook '{hook_name}'. "
                f"Must be one of: {', '.join(VALID_FAIL_MODES)}"
            )

    def to_dict(self, exclude_none: bool = False) -> dict[str, Any]:
        result = {"enabled": self.enabled, "fail_mode": self.fail_mode}
        if exclude_none:
            return {k: v for k, v in result.items() if v is not None}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], strict: bool = False) -> "HookSettings":
        known_fields = {f.name for f in fields(cls)}
        unknown = set(data.keys()) - known_fields
        if unknown:
            if strict:
                raise ConfigValidationError(
                    f"Unknown fields in hook settings: {', '.join(sorted(unknown))}"
                )
            logger.warning(f"Ignoring unknown hook settings fields: {', '.join(sorted(unknown))}")

        return cls(
            enabled=data.get("enabled", True),
            fail_mode=data.get("fail_mode"),
        )


@dataclass
class TreehouseConfig:
    """Complete user settings."""

    hooks_enabled: bool = True
    hook_timeout: int = DEFAULT_JOB_TIMEOUT
    max_parallel: int | None = None
    hooks: dict[str, HookSettings] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate all settings."""
        if self.hook_timeout <= 0:
            raise ConfigValidationError(
                f"hook_timeout must be positive, got {self.hook_timeout}"
            )
        if self.max_parallel is not None and self.max_parallel <= 0:
            raise ConfigValidationError(
                f"max_parallel must be positive, got {self.max_parallel}"
            )
        for hook_name, settings in self.hooks.items():
            if hook_name not in HOOK_NAMES:
                raise ConfigValidationError(
                    f"Unknown hook '{hook_name}'. "
                    f"Must be one of: {', '.join(HOOK_NAMES)}"
                )
            settings.validate(hook_name)

    def to_dict(self, exclude_none: bool = False) -> dict[str, Any]:
        result: dict[str, Any] = {
            "hooks_enabled": self.hooks_enabled,
            "hook_timeout": self.hook_timeout,
            "max_parallel": self.max_parallel,
            "hooks": {
                name: settings.to_dict(exclude_none)
                for name, settings in self.hooks.items()
            },
        }
        if exclude_none:
            return {k: v for k, v in result.items() if v is not None}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], strict: bool = False) -> "TreehouseConfig":
        known_fields = {f.name for f in fields(cls)}
        unknown = set(data.keys()) - known_fields
        if unknown:
            if strict:
                raise ConfigValidationError(
                    f"Unknown fields in config: {', '.join(sorted(unknown))}"
                )
            logger.warning(f"Ignoring unknown config fields: {', '.join(sorted(unknown))}")

        hooks = {
            name: HookSettings.from_dict(hook_data or {}, strict)
            for name, hook_data in (data.get("hooks") or {}).items()
        }
        return cls(
            hooks_enabled=data.get("hooks_enabled", True),
            hook_timeout=data.get("hook_timeout", DEFAULT_JOB_TIMEOUT),
            max_parallel=data.get("max_parallel"),
            hooks=hooks,
        )

    def hook_enabled(self, hook_name: str) -> bool:
        if not self.hooks_enabled:
            return False
        settings = self.hooks.get(hook_name)
        return settings.enabled if settings else True

    def fail_mode_for(self, hook_name: str) -> str:
        """Fail mode from settings, falling back to the per-hook default."""
        settings = self.hooks.get(hook_name)
        if settings and settings.fail_mode:
            return settings.fail_mode
        return default_fail_mode(hook_name)


def default_fail_mode(hook_name: str) -> str:
    return "abort" if hook_name in ABORT_BY_DEFAULT else "warn"


def load_config_file(path: Path, strict: bool = False) -> TreehouseConfig:
    """Load settings from a JSON file.

    Args:
        path: Path to the settings file
        strict: If True, fail on unknown fields

    Returns:
        TreehouseConfig instance (defaults if the file does not exist)

    Raises:
        ConfigLoadError: If file cannot be read or parsed
        ConfigValidationError: If strict=True and unknown fields found
    """
    if not path.exists():
        return TreehouseConfig()

    try:
        content = path.read_text()
    except PermissionError as e:
        raise ConfigLoadError(f"Permission denied reading {path}: {e}")
    except OSError as e:
        raise ConfigLoadError(f"Error reading {path}: {e}")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigLoadError(f"Invalid JSON in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Expected a JSON object in {path}")

    return TreehouseConfig.from_dict(data, strict=strict)


def merge_configs(*configs: TreehouseConfig) -> TreehouseConfig:
    """Merge multiple configs with later configs taking precedence.

    Default values in later configs do NOT override earlier values.
    """
    if not configs:
        return TreehouseConfig()

    result = copy.deepcopy(configs[0])

    for config in configs[1:]:
        if not config.hooks_enabled:  # non-default
            result.hooks_enabled = False
        if config.hook_timeout != DEFAULT_JOB_TIMEOUT:
            result.hook_timeout = config.hook_timeout
        if config.max_parallel is not None:
            result.max_parallel = config.max_parallel

        for hook_name, settings in config.hooks.items():
            if hook_name not in result.hooks:
                result.hooks[hook_name] = HookSettings()
            if not settings.enabled:
                result.hooks[hook_name].enabled = False
            if settings.fail_mode is not None:
                result.hooks[hook_name].fail_mode = settings.fail_mode

    return result


def apply_env_overrides(config: TreehouseConfig) -> TreehouseConfig:
    """Apply environment variable overrides to config.

    Raises:
        ConfigValidationError: If env var value is invalid
    """
    result = copy.deepcopy(config)

    if enabled := os.environ.get(ENV_HOOKS_ENABLED):
        result.hooks_enabled = _truthy(enabled)

    if timeout_str := os.environ.get(ENV_HOOK_TIMEOUT):
        try:
            result.hook_timeout = int(timeout_str)
        except ValueError:
            raise ConfigValidationError(
                f"{ENV_HOOK_TIMEOUT} must be an integer, got '{timeout_str}'"
            )

    if parallel_str := os.environ.get(ENV_MAX_PARALLEL):
        try:
            result.max_parallel = int(parallel_str)
        except ValueError:
            raise ConfigValidationError(
                f"{ENV_MAX_PARALLEL} must be an integer, got '{parallel_str}'"
            )

    return result


def get_config(config_dir: Path | None = None) -> TreehouseConfig:
    """Load and merge settings from all sources.

    Loads in order (later sources override earlier):
    1. Hardcoded defaults
    2. Global settings file
    3. Environment variables
    """
    base_config = TreehouseConfig()
    global_config = load_config_file(get_settings_path(config_dir))
    merged = apply_env_overrides(merge_configs(base_config, global_config))
    merged.validate()
    return merged
