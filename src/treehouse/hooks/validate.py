"""Whole-configuration checks run before any job executes."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from treehouse import __version__
from treehouse.config import VALID_FAIL_MODES, ConfigValidationError
from treehouse.hooks.graph import JobGraph
from treehouse.hooks.model import GroupAction, HookDef, HooksFile, ScriptAction

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?")


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``1``, ``1.2`` or ``1.2.3`` (optionally ``v``-prefixed)."""
    match = VERSION_PATTERN.match(version.strip())
    if not match:
        raise ValueError(f"Invalid version '{version}'")
    return tuple(int(part or 0) for part in match.groups())  # type: ignore[return-value]


def version_satisfies(current: str, minimum: str) -> bool:
    return parse_version(current) >= parse_version(minimum)


def _validate_hook(hook: HookDef, where: str, result: ValidationResult) -> None:
    flags = hook.mode_flags()
    if len(flags) > 1:
        result.errors.append(
            f"{where}: only one of parallel, piped or follow may be set (got {', '.join(flags)})"
        )
    if hook.fail_mode is not None and hook.fail_mode not in VALID_FAIL_MODES:
        result.errors.append(
            f"{where}: invalid fail_mode '{hook.fail_mode}'. "
            f"Must be one of: {', '.join(VALID_FAIL_MODES)}"
        )
    if hook.timeout is not None and hook.timeout <= 0:
        result.errors.append(f"{where}: timeout must be positive, got {hook.timeout}")

    for job in hook.jobs:
        if isinstance(job.action, ScriptAction) and job.action.runner is None:
            result.warnings.append(
                f"{where}: script job '{job.label}' has no runner; "
                "the script must be executable"
            )
        if isinstance(job.action, GroupAction):
            group_where = f"{where} > {job.label}"
            if not job.action.hook.jobs:
                result.warnings.append(f"{group_where}: group has no jobs")
            _validate_hook(job.action.hook, group_where, result)

    try:
        JobGraph(hook.jobs)
    except ConfigValidationError as e:
        result.errors.append(f"{where}: {e}")


def validate_config(config: HooksFile, current_version: str = __version__) -> ValidationResult:
    """Check mode flags, needs resolution, cycles and the version gate."""
    result = ValidationResult()

    if config.min_version is not None:
        try:
            if not version_satisfies(current_version, config.min_version):
                result.errors.append(
                    f"Configuration requires treehouse >= {config.min_version} "
                    f"(running {current_version})"
                )
        except ValueError as e:
            result.errors.append(f"min_version: {e}")

    for hook_name, hook in config.hooks.items():
        _validate_hook(hook, hook_name, result)

    for warning in result.warnings:
        logger.debug("Config warning: %s", warning)
    return result


def ensure_valid(config: HooksFile, current_version: str = __version__) -> ValidationResult:
    """Validate config and raise listing every error.

    Raises:
        ConfigValidationError: If any error was found.
    """
    result = validate_config(config, current_version)
    if result.errors:
        raise ConfigValidationError(
            "Invalid hooks configuration:\n"
            + "\n".join(f"  - {err}" for err in result.errors)
        )
    return result
