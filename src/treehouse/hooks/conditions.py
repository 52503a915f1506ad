"""Evaluate ``skip`` and ``only`` conditions."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Mapping

from treehouse.git.repo import GitError, git_current_branch, git_is_merging, git_is_rebasing
from treehouse.hooks.model import Condition, EnvRule, NamedRule, RefRule, Rule, RunRule

logger = logging.getLogger(__name__)

RUN_RULE_TIMEOUT = 60
FALSY_VALUES = ("", "0", "false")


@dataclass
class SkipInfo:
    reason: str
    ran_command: bool = False


def is_truthy(value: str | None) -> bool:
    """Set, non-empty, and not ``0`` or ``false`` (any case)."""
    if value is None:
        return False
    return value.lower() not in FALSY_VALUES


def describe_rule(rule: Rule) -> str:
    if isinstance(rule, NamedRule):
        return f"{rule.name} in progress"
    if isinstance(rule, RefRule):
        return f"branch matches '{rule.pattern}'"
    if isinstance(rule, EnvRule):
        return f"${rule.var} is set"
    return f"`{rule.command}` succeeded"


class ConditionEvaluator:
    """Answers skip/only questions for one worktree.

    ``environ`` is both what env rules inspect and the environment run
    rules execute with. ``branch`` is looked up from git when not given.
    """

    def __init__(
        self,
        cwd: Path,
        branch: str | None = None,
        environ: Mapping[str, str] | None = None,
        run_timeout: int = RUN_RULE_TIMEOUT,
    ):
        self.cwd = cwd
        self.environ = dict(os.environ if environ is None else environ)
        self.run_timeout = run_timeout
        self._branch = branch
        self._branch_resolved = branch is not None

    @property
    def branch(self) -> str | None:
        if not self._branch_resolved:
            try:
                self._branch = git_current_branch(self.cwd)
            except GitError as e:
                logger.debug("Cannot determine branch in %s: %s", self.cwd, e)
                self._branch = None
            self._branch_resolved = True
        return self._branch

    def rule_holds(self, rule: Rule) -> bool:
        if isinstance(rule, NamedRule):
            if rule.name == "merge":
                return git_is_merging(self.cwd)
            return git_is_rebasing(self.cwd)
        if isinstance(rule, RefRule):
            branch = self.branch
            return branch is not None and fnmatchcase(branch, rule.pattern)
        if isinstance(rule, EnvRule):
            return is_truthy(self.environ.get(rule.var))
        return self._run_succeeds(rule)

    def _run_succeeds(self, rule: RunRule) -> bool:
        logger.debug("Evaluating condition command: %s", rule.command)
        try:
            result = subprocess.run(
                rule.command,
                shell=True,
                cwd=self.cwd,
                env=self.environ,
                capture_output=True,
                text=True,
                timeout=self.run_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                "Condition command timed out after %ss: %s", self.run_timeout, rule.command
            )
            return False
        except OSError as e:
            logger.warning("Condition command failed to start: %s: %s", rule.command, e)
            return False
        return result.returncode == 0

    def should_skip(self, condition: Condition | None) -> SkipInfo | None:
        """A skip condition matches if any of its rules holds."""
        if condition is None:
            return None
        if condition.literal is not None:
            return SkipInfo("skip: true") if condition.literal else None
        for rule in condition.rules:
            if self.rule_holds(rule):
                return SkipInfo(
                    rule.desc or f"skipped: {describe_rule(rule)}",
                    ran_command=isinstance(rule, RunRule),
                )
        return None

    def should_only_skip(self, condition: Condition | None) -> SkipInfo | None:
        """An only condition lets the job run only if every rule holds."""
        if condition is None:
            return None
        if condition.literal is not None:
            return None if condition.literal else SkipInfo("only: false")
        for rule in condition.rules:
            if not self.rule_holds(rule):
                return SkipInfo(
                    rule.desc or f"only condition not met: {describe_rule(rule)}",
                    ran_command=isinstance(rule, RunRule),
                )
        return None

    def check(self, skip: Condition | None, only: Condition | None) -> SkipInfo | None:
        return self.should_skip(skip) or self.should_only_skip(only)
