"""Executable hook scripts, the fallback when no YAML config defines a hook.

A script named exactly after the hook is looked up in the repository's
``.treehouse/hooks/`` and then in the user's ``<config dir>/hooks/``. Every
script found runs, repository first; the first failure stops the rest.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from treehouse.constants import HOOK_SCRIPTS_DIR
from treehouse.hooks.model import HookDef, JobDef, ScriptAction


@dataclass(frozen=True)
class HookScript:
    path: Path
    from_repository: bool

    @property
    def label(self) -> str:
        return f"{'repository' if self.from_repository else 'user'} {self.path.name}"


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def find_hook_scripts(hook_name: str, root: Path, user_dir: Path | None) -> list[HookScript]:
    """Executable scripts for hook_name; files without the exec bit are ignored."""
    found = []
    project = root / HOOK_SCRIPTS_DIR / hook_name
    if is_executable(project):
        found.append(HookScript(project.resolve(), from_repository=True))
    if user_dir is not None:
        user = user_dir / hook_name
        if is_executable(user):
            found.append(HookScript(user.resolve(), from_repository=False))
    return found


def script_hook(scripts: list[HookScript]) -> HookDef:
    return HookDef(
        piped=True,
        jobs=[
            JobDef(action=ScriptAction(str(s.path)), name=s.label)
            for s in scripts
        ],
    )
