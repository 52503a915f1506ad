"""Treehouse - hook orchestration for git worktree workflows."""

__version__ = "0.4.0"
