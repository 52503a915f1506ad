# Copyright 2026 Pennyworth Technologies, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Discover, parse and merge the hooks files of a worktree.

Sources, lowest to highest precedence:
1. The primary file (first existing candidate from CONFIG_CANDIDATES)
2. Each file named in the primary's ``extends`` list, in order
3. Per-hook files ``<hook-name>.yml`` holding a single hook definition
4. The local override ``<primary-stem>-local.yml`` (not version controlled)

Every source is parsed into a HooksFile and folded left to right through
merge_hooks_files().
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from treehouse.config import ConfigLoadError
from treehouse.constants import (
    CONFIG_CANDIDATES,
    CONFIG_EXTENSIONS,
    HOOK_NAMES,
    LOCAL_SUFFIX,
    XDG_HOOKS_DIR,
)
from treehouse.hooks.model import HookDef, HooksFile, JobDef

logger = logging.getLogger(__name__)

MODE_FLAGS = ("parallel", "piped", "follow")
HOOK_SCALARS = ("skip", "only", "exclude_tags", "exclude", "timeout", "fail_mode")
FILE_SCALARS = (
    "min_version",
    "colors",
    "no_tty",
    "rc",
    "output",
    "source_dir",
    "source_dir_local",
)


@dataclass
class LoadedConfig:
    """A merged hooks configuration and where it came from."""

    config: HooksFile
    root: Path
    primary: Path
    sources: list[Path] = field(default_factory=list)


def find_config_file(root: Path) -> Path | None:
    """Return the first existing primary config candidate under root."""
    for candidate in CONFIG_CANDIDATES:
        path = root / candidate
        if path.is_file():
            return path
    return None


def _stem(path: Path) -> str:
    return path.name.rsplit(".", 1)[0]


def find_local_config(primary: Path) -> Path | None:
    """Return the ``-local`` override beside primary, if any."""
    stem = _stem(primary) + LOCAL_SUFFIX
    for ext in CONFIG_EXTENSIONS:
        path = primary.parent / f"{stem}.{ext}"
        if path.is_file():
            return path
    return None


def find_per_hook_configs(root: Path, primary: Path) -> list[tuple[str, Path]]:
    """Return (hook name, path) for every per-hook file present.

    Per-hook files sit in the repository root, or in ``.config/treehouse/``
    when the primary file itself lives under ``.config/``.
    """
    if primary.parent.name == ".config":
        hook_dir = root / XDG_HOOKS_DIR
    else:
        hook_dir = root
    found = []
    for hook_name in HOOK_NAMES:
        for ext in CONFIG_EXTENSIONS:
            path = hook_dir / f"{hook_name}.{ext}"
            if path.is_file():
                found.append((hook_name, path))
                break
    return found


def read_yaml(path: Path) -> Any:
    """Read and parse one YAML file.

    Raises:
        ConfigLoadError: If the file cannot be read or is not valid YAML.
    """
    try:
        content = path.read_text()
    except PermissionError as e:
        raise ConfigLoadError(f"Permission denied reading {path}: {e}")
    except OSError as e:
        raise ConfigLoadError(f"Error reading {path}: {e}")

    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}: {e}")


def load_hooks_file(path: Path) -> HooksFile:
    logger.debug("Loading hooks file %s", path)
    return HooksFile.from_dict(read_yaml(path), source=str(path))


def load_hook_file(path: Path, hook_name: str) -> HookDef:
    logger.debug("Loading %s override from %s", hook_name, path)
    return HookDef.from_dict(read_yaml(path), where=f"{path}: {hook_name}")


def merge_jobs(base: list[JobDef], overlay: list[JobDef]) -> list[JobDef]:
    """Fold overlay jobs into base.

    A named overlay job replaces the base job of the same name in place;
    every other overlay job is appended.
    """
    result = copy.deepcopy(base)
    positions = {job.name: i for i, job in enumerate(result) if job.name is not None}
    for job in overlay:
        job = copy.deepcopy(job)
        if job.name is not None and job.name in positions:
            result[positions[job.name]] = job
            continue
        if job.name is not None:
            positions[job.name] = len(result)
        result.append(job)
    return result


def merge_hook_defs(base: HookDef, overlay: HookDef) -> HookDef:
    result = copy.deepcopy(base)
    # Mode flags are replaced as a set so layers never combine two modes
    if any(getattr(overlay, flag) is not None for flag in MODE_FLAGS):
        for flag in MODE_FLAGS:
            setattr(result, flag, getattr(overlay, flag))
    for key in HOOK_SCALARS:
        value = getattr(overlay, key)
        if value is not None:
            setattr(result, key, copy.deepcopy(value))
    result.jobs = merge_jobs(base.jobs, overlay.jobs)
    return result


def merge_hooks_files(base: HooksFile, overlay: HooksFile) -> HooksFile:
    """Merge overlay onto base. Merging with an empty HooksFile is a no-op."""
    result = copy.deepcopy(base)
    for key in FILE_SCALARS:
        value = getattr(overlay, key)
        if value is not None:
            setattr(result, key, copy.deepcopy(value))
    if overlay.extends:
        result.extends = list(overlay.extends)
    for hook_name, hook in overlay.hooks.items():
        if hook_name in result.hooks:
            result.hooks[hook_name] = merge_hook_defs(result.hooks[hook_name], hook)
        else:
            result.hooks[hook_name] = copy.deepcopy(hook)
    return result


def load_merged_config(root: Path) -> LoadedConfig | None:
    """Load every hooks source under root and merge them.

    Returns None when the worktree has no primary hooks file.

    Raises:
        ConfigLoadError: If a file is unreadable, malformed or missing.
        ConfigValidationError: If a file has unknown keys or bad values.
    """
    primary = find_config_file(root)
    if primary is None:
        logger.debug("No hooks file under %s", root)
        return None

    config = load_hooks_file(primary)
    sources = [primary]

    for entry in list(config.extends):
        path = primary.parent / entry
        if not path.is_file():
            raise ConfigLoadError(f"{primary}: extended file not found: {entry}")
        config = merge_hooks_files(config, load_hooks_file(path))
        sources.append(path)

    for hook_name, path in find_per_hook_configs(root, primary):
        overlay = HooksFile(hooks={hook_name: load_hook_file(path, hook_name)})
        config = merge_hooks_files(config, overlay)
        sources.append(path)

    local = find_local_config(primary)
    if local is not None:
        config = merge_hooks_files(config, load_hooks_file(local))
        sources.append(local)

    logger.debug("Merged hooks config from %s", ", ".join(str(s) for s in sources))
    return LoadedConfig(config=config, root=root, primary=primary, sources=sources)
