"""Pytest configuration and shared fixtures for treehouse tests."""

import subprocess
import textwrap
from pathlib import Path

import pytest

from treehouse.hooks.context import ExecutionContext

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def _guard_project_repo(tmp_path, monkeypatch):
    """Prevent tests from touching the project repo or the user's config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TREEHOUSE_CONFIG_DIR", str(tmp_path / "treehouse-config"))
    for var in ("TREEHOUSE_HOOKS_ENABLED", "TREEHOUSE_HOOK_TIMEOUT", "TREEHOUSE_MAX_PARALLEL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def git_repo(tmp_path):
    """Create a fresh git repo in an isolated temp directory."""
    repo_dir = tmp_path / "test-repo"
    repo_dir.mkdir()
    subprocess.run(["git", "init", str(repo_dir)], check=True, capture_output=True)
    subprocess.run(["git", "config", "user.email", "test@test.com"],
                   cwd=repo_dir, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.name", "Test"],
                   cwd=repo_dir, check=True, capture_output=True)
    # Create initial commit so main exists
    (repo_dir / "README.md").write_text("# Test Repo\n")
    subprocess.run(["git", "add", "."], cwd=repo_dir, check=True, capture_output=True)
    subprocess.run(["git", "commit", "-m", "initial commit"],
                   cwd=repo_dir, check=True, capture_output=True)
    # Ensure branch is called main
    subprocess.run(["git", "branch", "-M", "main"],
                   cwd=repo_dir, check=True, capture_output=True)
    # Sanity: confirm this is NOT the project repo
    assert str(repo_dir) != str(PROJECT_ROOT)
    assert not (repo_dir / "pyproject.toml").exists()
    return repo_dir


def write_yaml(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).lstrip())
    return path


def make_ctx(worktree: Path, hook_name: str = "worktree-post-create", **kwargs) -> ExecutionContext:
    fields = dict(
        hook_name=hook_name,
        command="checkout",
        project_root=worktree.parent,
        git_dir=worktree / ".git",
        source_worktree=worktree,
        worktree_path=worktree,
        branch_name="feature/test",
    )
    fields.update(kwargs)
    return ExecutionContext(**fields)
