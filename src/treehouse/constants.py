"""Fixed names shared across the hook engine."""

from __future__ import annotations

# Lifecycle hooks, in the order a worktree's life runs through them
POST_CLONE = "post-clone"
POST_INIT = "post-init"
WORKTREE_PRE_CREATE = "worktree-pre-create"
WORKTREE_POST_CREATE = "worktree-post-create"
WORKTREE_PRE_REMOVE = "worktree-pre-remove"
WORKTREE_POST_REMOVE = "worktree-post-remove"

HOOK_NAMES = (
    POST_CLONE,
    POST_INIT,
    WORKTREE_PRE_CREATE,
    WORKTREE_POST_CREATE,
    WORKTREE_PRE_REMOVE,
    WORKTREE_POST_REMOVE,
)

# Hooks whose failure cancels the triggering operation by default
ABORT_BY_DEFAULT = frozenset({WORKTREE_PRE_CREATE})

# Hooks that run before the target worktree exists or after it is gone
RUNS_FROM_SOURCE = frozenset({WORKTREE_PRE_CREATE, WORKTREE_POST_REMOVE})

# Primary config candidates, first match wins
CONFIG_CANDIDATES = (
    "treehouse.yml",
    "treehouse.yaml",
    ".treehouse.yml",
    ".treehouse.yaml",
    ".config/treehouse.yml",
    ".config/treehouse.yaml",
)
CONFIG_EXTENSIONS = ("yml", "yaml")
# Per-hook override files live here when the primary config is under .config/
XDG_HOOKS_DIR = ".config/treehouse"
LOCAL_SUFFIX = "-local"

DEFAULT_SOURCE_DIR = ".treehouse"
# Executable scripts named after a hook, used when no YAML config defines it
HOOK_SCRIPTS_DIR = ".treehouse/hooks"
USER_HOOKS_DIR_NAME = "hooks"
DEFAULT_JOB_TIMEOUT = 300

# Trust database filename inside the user config directory
TRUST_DB_NAME = "trust.json"
SETTINGS_FILE_NAME = "config.json"

# Environment variables handed to every job
ENV_HOOK = "TREEHOUSE_HOOK"
ENV_COMMAND = "TREEHOUSE_COMMAND"
ENV_PROJECT_ROOT = "TREEHOUSE_PROJECT_ROOT"
ENV_GIT_DIR = "TREEHOUSE_GIT_DIR"
ENV_REMOTE = "TREEHOUSE_REMOTE"
ENV_SOURCE_WORKTREE = "TREEHOUSE_SOURCE_WORKTREE"
ENV_WORKTREE_PATH = "TREEHOUSE_WORKTREE_PATH"
ENV_BRANCH_NAME = "TREEHOUSE_BRANCH_NAME"
ENV_IS_NEW_BRANCH = "TREEHOUSE_IS_NEW_BRANCH"
ENV_BASE_BRANCH = "TREEHOUSE_BASE_BRANCH"
ENV_REPOSITORY_URL = "TREEHOUSE_REPOSITORY_URL"
ENV_DEFAULT_BRANCH = "TREEHOUSE_DEFAULT_BRANCH"
ENV_REMOVAL_REASON = "TREEHOUSE_REMOVAL_REASON"
