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

"""Thin git subprocess wrapper."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Error from a git command."""


def _run(args: list[str], cwd: Path) -> str:
    """Run a git command and return stdout."""
    logger.debug("git %s", " ".join(args))
    try:
        result = subprocess.run(
            ["git"] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitError(f"git {' '.join(args)}: {e.stderr.strip()}") from e
    except (FileNotFoundError, NotADirectoryError) as e:
        raise GitError(f"git {' '.join(args)}: {e}") from e


def git_toplevel(cwd: Path | None = None) -> Path:
    """Return the root of the worktree containing cwd."""
    return Path(_run(["rev-parse", "--show-toplevel"], cwd or Path.cwd()))


def git_dir(cwd: Path) -> Path:
    """Return the worktree-specific git directory (absolute)."""
    out = _run(["rev-parse", "--git-dir"], cwd)
    path = Path(out)
    return (path if path.is_absolute() else cwd / path).resolve()


def git_common_dir(cwd: Path) -> Path:
    """Return the git directory shared by every worktree of the repository."""
    out = _run(["rev-parse", "--git-common-dir"], cwd)
    path = Path(out)
    return (path if path.is_absolute() else cwd / path).resolve()


def git_current_branch(cwd: Path) -> str:
    return _run(["rev-parse", "--abbrev-ref", "HEAD"], cwd)


def git_ref_exists(ref: str, cwd: Path) -> bool:
    try:
        _run(["rev-parse", "--verify", "--quiet", ref], cwd)
        return True
    except GitError:
        return False


def git_is_merging(cwd: Path) -> bool:
    """True if the worktree at cwd is in the middle of a merge."""
    try:
        if (git_dir(cwd) / "MERGE_HEAD").exists():
            return True
    except GitError:
        return False
    return git_ref_exists("MERGE_HEAD", cwd)


def git_is_rebasing(cwd: Path) -> bool:
    """True if the worktree at cwd is in the middle of a rebase."""
    try:
        gdir = git_dir(cwd)
    except GitError:
        return False
    if (gdir / "rebase-merge").exists() or (gdir / "rebase-apply").exists():
        return True
    return git_ref_exists("REBASE_HEAD", cwd)


def git_remote_url(remote: str, cwd: Path) -> str | None:
    try:
        return _run(["remote", "get-url", remote], cwd) or None
    except GitError:
        return None
