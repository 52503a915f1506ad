"""Tests for hooks/conditions.py."""

import os
import subprocess

import pytest

from treehouse.hooks.conditions import ConditionEvaluator, is_truthy
from treehouse.hooks.model import Condition


def cond(raw):
    return Condition.parse(raw, "test")


@pytest.fixture
def evaluator(tmp_path):
    environ = {"CI": "true", "PATH": os.environ["PATH"]}
    return ConditionEvaluator(tmp_path, branch="feature/login", environ=environ)


class TestTruthy:
    @pytest.mark.parametrize("value", [None, "", "0", "false", "FALSE"])
    def test_falsy(self, value):
        assert not is_truthy(value)

    @pytest.mark.parametrize("value", ["1", "true", "yes", "anything", " 0 ", " false", " "])
    def test_truthy(self, value):
        assert is_truthy(value)


class TestSkip:
    def test_none_and_literals(self, evaluator):
        assert evaluator.should_skip(None) is None
        assert evaluator.should_skip(cond(False)) is None
        assert evaluator.should_skip(cond(True)).reason == "skip: true"

    def test_env_shorthand(self, evaluator):
        info = evaluator.should_skip(cond("CI"))
        assert info.reason == "skipped: $CI is set"
        assert evaluator.should_skip(cond("NOT_SET")) is None

    def test_env_falsy_value(self, tmp_path):
        ev = ConditionEvaluator(tmp_path, branch="main", environ={"CI": "0"})
        assert ev.should_skip(cond("CI")) is None

    def test_ref_glob(self, evaluator):
        assert evaluator.should_skip(cond([{"ref": "feature/*"}])) is not None
        assert evaluator.should_skip(cond([{"ref": "main"}])) is None

    def test_any_rule_matches(self, evaluator):
        info = evaluator.should_skip(cond([{"ref": "main"}, {"env": "CI", "desc": "on CI"}]))
        assert info.reason == "on CI"

    def test_run_rule(self, evaluator):
        info = evaluator.should_skip(cond([{"run": "test 1 -eq 1"}]))
        assert info.ran_command
        assert evaluator.should_skip(cond([{"run": "exit 3"}])) is None

    def test_run_rule_sees_environ(self, evaluator):
        assert evaluator.should_skip(cond([{"run": 'test "$CI" = true'}])) is not None

    def test_run_rule_timeout_is_false(self, tmp_path):
        ev = ConditionEvaluator(tmp_path, branch="main", environ=dict(os.environ), run_timeout=1)
        assert ev.should_skip(cond([{"run": "sleep 3"}])) is None


class TestOnly:
    def test_literals(self, evaluator):
        assert evaluator.should_only_skip(cond(True)) is None
        assert evaluator.should_only_skip(cond(False)).reason == "only: false"

    def test_all_rules_must_hold(self, evaluator):
        assert evaluator.should_only_skip(cond([{"ref": "feature/*"}, {"env": "CI"}])) is None
        info = evaluator.should_only_skip(cond([{"ref": "feature/*"}, {"env": "DEPLOY"}]))
        assert info.reason == "only condition not met: $DEPLOY is set"

    def test_check_combines(self, evaluator):
        assert evaluator.check(None, None) is None
        assert evaluator.check(cond(True), None).reason == "skip: true"
        assert evaluator.check(None, cond([{"ref": "main"}])) is not None


class TestRepositoryState:
    def test_branch_from_git(self, git_repo):
        ev = ConditionEvaluator(git_repo, environ={})
        assert ev.branch == "main"
        assert ev.should_only_skip(cond([{"ref": "main"}])) is None

    def test_branch_unknown_outside_repo(self, tmp_path):
        ev = ConditionEvaluator(tmp_path, environ={})
        assert ev.branch is None
        assert ev.should_skip(cond([{"ref": "*"}])) is None

    def test_merge_and_rebase(self, git_repo):
        ev = ConditionEvaluator(git_repo, environ={})
        assert ev.should_skip(cond(["merge"])) is None
        assert ev.should_skip(cond(["rebase"])) is None

        head = subprocess.run(
            ["git", "rev-parse", "HEAD"], cwd=git_repo,
            check=True, capture_output=True, text=True,
        ).stdout.strip()
        (git_repo / ".git" / "MERGE_HEAD").write_text(head + "\n")
        (git_repo / ".git" / "rebase-merge").mkdir()
        assert ev.should_skip(cond(["merge"])).reason == "skipped: merge in progress"
        assert ev.should_skip(cond(["rebase"])).reason == "skipped: rebase in progress"
