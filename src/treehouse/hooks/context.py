"""Immutable description of one hook firing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from treehouse import constants as c

TOKEN_PATTERN = re.compile(r"\{(\w+)\}")


class RemovalReason(Enum):
    REMOTE_DELETED = "remote-deleted"
    MANUAL = "manual"


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a job may learn about the event that triggered it.

    Caller-supplied; the engine never mutates it. Fields that do not apply
    to the firing hook stay None and are left out of the job environment.
    """

    hook_name: str
    command: str
    project_root: Path
    git_dir: Path
    source_worktree: Path
    remote: str = "origin"
    worktree_path: Path | None = None
    branch_name: str | None = None
    is_new_branch: bool | None = None
    base_branch: str | None = None
    repository_url: str | None = None
    default_branch: str | None = None
    removal_reason: RemovalReason | None = None

    @property
    def runs_from_source(self) -> bool:
        return self.hook_name in c.RUNS_FROM_SOURCE or self.worktree_path is None

    @property
    def working_directory(self) -> Path:
        """Directory jobs run in: the target worktree unless it does not exist."""
        if self.runs_from_source:
            return self.source_worktree
        return self.worktree_path  # type: ignore[return-value]

    @property
    def config_root(self) -> Path:
        """Worktree whose hooks files define this firing."""
        return self.working_directory

    def to_env(self) -> dict[str, str]:
        env = {
            c.ENV_HOOK: self.hook_name,
            c.ENV_COMMAND: self.command,
            c.ENV_PROJECT_ROOT: str(self.project_root),
            c.ENV_GIT_DIR: str(self.git_dir),
            c.ENV_REMOTE: self.remote,
            c.ENV_SOURCE_WORKTREE: str(self.source_worktree),
        }
        if self.worktree_path is not None:
            env[c.ENV_WORKTREE_PATH] = str(self.worktree_path)
        if self.branch_name is not None:
            env[c.ENV_BRANCH_NAME] = self.branch_name
        if self.is_new_branch is not None:
            env[c.ENV_IS_NEW_BRANCH] = "true" if self.is_new_branch else "false"
        if self.base_branch is not None:
            env[c.ENV_BASE_BRANCH] = self.base_branch
        if self.repository_url is not None:
            env[c.ENV_REPOSITORY_URL] = self.repository_url
        if self.default_branch is not None:
            env[c.ENV_DEFAULT_BRANCH] = self.default_branch
        if self.removal_reason is not None:
            env[c.ENV_REMOVAL_REASON] = self.removal_reason.value
        return env

    def to_variables(self, job_name: str | None = None) -> dict[str, str]:
        """Template token values; unset fields are omitted."""
        values = {
            "worktree_path": self.worktree_path,
            "worktree_branch": self.branch_name,
            "branch": self.branch_name,
            "worktree_root": self.project_root,
            "source_worktree": self.source_worktree,
            "git_dir": self.git_dir,
            "remote": self.remote,
            "job_name": job_name,
            "base_branch": self.base_branch,
            "repository_url": self.repository_url,
            "default_branch": self.default_branch,
        }
        return {k: str(v) for k, v in values.items() if v is not None}

    def substitute(self, text: str, job_name: str | None = None) -> str:
        """Expand ``{token}`` placeholders.

        Unknown tokens, and tokens whose value is unset for this firing,
        are left unchanged.

        Example:
            >>> ctx.substitute("echo {branch} > {worktree_path}/.branch")
            "echo feature/x > /work/feature-x/.branch"
        """
        variables = self.to_variables(job_name)

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            if var_name in variables:
                return variables[var_name]
            return match.group(0)

        return TOKEN_PATTERN.sub(replace_var, text)
