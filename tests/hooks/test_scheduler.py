"""Tests for hooks/scheduler.py."""

import io
import os

import pytest
from rich.console import Console

from tests.conftest import make_ctx
from treehouse.hooks.conditions import ConditionEvaluator
from treehouse.hooks.executor import JobExecutor, RunSettings
from treehouse.hooks.graph import JobState
from treehouse.hooks.model import ExecutionMode, HookDef
from treehouse.hooks.output import OutputSink
from treehouse.hooks.scheduler import (
    JobFilter,
    JobNotFoundError,
    Scheduler,
    excluded_by_hook,
    select_jobs,
)


@pytest.fixture
def worktree(tmp_path):
    wt = tmp_path / "wt"
    wt.mkdir()
    return wt


def make_scheduler(worktree, max_workers=4, sink=None, has_tty=lambda: False):
    executor = JobExecutor(RunSettings(ctx=make_ctx(worktree)), has_tty=has_tty)
    evaluator = ConditionEvaluator(worktree, branch="feature/test", environ=dict(os.environ))
    return Scheduler(executor, evaluator, sink=sink, max_workers=max_workers)


def hook(jobs, **kwargs):
    return HookDef.from_dict({"jobs": jobs, **kwargs})


def states(result):
    return {r.name: r.state for r in result.results}


class TestSelection:
    def test_exclusions(self):
        h = hook(
            [
                {"name": "lint", "run": "true", "tags": ["slow"]},
                {"name": "docs-build", "run": "true"},
                {"name": "test", "run": "true"},
                {"run": "true", "tags": ["slow"]},
            ],
            exclude_tags=["slow"],
            exclude=["docs-*"],
        )
        assert [excluded_by_hook(h, j) for j in h.jobs] == [True, True, False, True]
        kept, dropped = select_jobs(h)
        assert [j.name for j in kept] == ["test"]
        assert dropped == {"lint", "docs-build"}

    def test_filter_by_name(self):
        h = hook([{"name": "a", "run": "true"}, {"name": "b", "run": "true"}])
        kept, dropped = select_jobs(h, JobFilter(job_name="b"))
        assert [j.name for j in kept] == ["b"]
        assert dropped == {"a"}

    def test_filter_by_tag(self):
        h = hook([
            {"name": "a", "run": "true", "tags": ["fast"]},
            {"name": "b", "run": "true", "tags": ["slow"]},
        ])
        kept, _ = select_jobs(h, JobFilter(tags=("slow", "other")))
        assert [j.name for j in kept] == ["b"]

    def test_unknown_job(self):
        h = hook([{"name": "a", "run": "true"}, {"run": "true"}])
        with pytest.raises(JobNotFoundError, match="No job named 'zzz'. Available: a"):
            select_jobs(h, JobFilter(job_name="zzz"))


class TestParallel:
    def test_all_succeed_in_declared_order(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook([
            {"name": "a", "run": "true"},
            {"name": "b", "run": "true"},
        ]))
        assert [r.name for r in result.results] == ["a", "b"]
        assert result.success
        assert result.mode is ExecutionMode.PARALLEL

    def test_needs_waits_for_dependency(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook([
            {"name": "check", "run": "test -f a.done", "needs": ["a"]},
            {"name": "a", "run": "sleep 0.3 && touch a.done"},
        ]))
        assert states(result) == {"check": JobState.SUCCESS, "a": JobState.SUCCESS}

    def test_failure_cascades_to_dependents(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook([
            {"name": "a", "run": "exit 1"},
            {"name": "b", "run": "touch b.ran", "needs": ["a"]},
            {"name": "c", "run": "touch c.ran", "needs": ["b"]},
            {"name": "d", "run": "true"},
        ]))
        assert states(result) == {
            "a": JobState.FAILED,
            "b": JobState.DEP_FAILED,
            "c": JobState.DEP_FAILED,
            "d": JobState.SUCCESS,
        }
        assert result.results[1].error == "Job 'b' skipped: dependency 'a' failed"
        assert not (worktree / "b.ran").exists()
        assert not (worktree / "c.ran").exists()
        assert [r.name for r in result.failures] == ["a", "b", "c"]
        assert not result.success

    def test_priority_breaks_ties(self, worktree):
        make_scheduler(worktree, max_workers=1).run("worktree-post-create", hook([
            {"name": "a", "run": "echo a >> order", "priority": 2},
            {"name": "b", "run": "echo b >> order"},
            {"name": "c", "run": "echo c >> order", "priority": 1},
        ]))
        assert (worktree / "order").read_text().split() == ["b", "c", "a"]

    def test_skipped_job_satisfies_dependents(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook([
            {"name": "a", "run": "touch a.ran", "skip": True},
            {"name": "b", "run": "true", "needs": ["a"]},
        ]))
        assert states(result) == {"a": JobState.SKIPPED, "b": JobState.SUCCESS}
        assert result.results[0].skip_reason == "skip: true"
        assert not (worktree / "a.ran").exists()
        assert result.success

    def test_excluded_dependency_counts_as_met(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook(
            [
                {"name": "a", "run": "true", "tags": ["slow"]},
                {"name": "b", "run": "true", "needs": ["a"]},
            ],
            exclude_tags=["slow"],
        ))
        assert states(result) == {"b": JobState.SUCCESS}

    def test_manual_filter_runs_one_job(self, worktree):
        result = make_scheduler(worktree).run(
            "worktree-post-create",
            hook([
                {"name": "a", "run": "touch a.ran"},
                {"name": "b", "run": "true", "needs": ["a"]},
            ]),
            job_filter=JobFilter(job_name="b"),
        )
        assert states(result) == {"b": JobState.SUCCESS}
        assert not (worktree / "a.ran").exists()

    def test_job_error_becomes_failure(self, worktree, monkeypatch):
        scheduler = make_scheduler(worktree)

        def boom(*args, **kwargs):
            raise ValueError("broken")

        monkeypatch.setattr(scheduler.executor, "execute", boom)
        result = scheduler.run("worktree-post-create", hook([{"name": "a", "run": "true"}]))
        assert result.results[0].state is JobState.FAILED
        assert result.results[0].error == "Job 'a' raised ValueError: broken"

    def test_interactive_job_runs_alone(self, worktree):
        scheduler = make_scheduler(worktree, has_tty=lambda: True)
        result = scheduler.run("worktree-post-create", hook([
            {"name": "bg", "run": "sleep 0.3 && touch bg.done"},
            {"name": "ask", "run": "test -f bg.done", "interactive": True},
        ]))
        assert states(result) == {"bg": JobState.SUCCESS, "ask": JobState.SUCCESS}

    def test_hook_timeout(self, worktree):
        result = make_scheduler(worktree).run(
            "worktree-post-create",
            hook([{"name": "slow", "run": "sleep 10"}], timeout=1),
        )
        assert result.results[0].error == "Job 'slow' timed out after 1s"


class TestSequential:
    def test_piped_stops_after_failure(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook(
            [
                {"name": "x", "run": "exit 1"},
                {"name": "y", "run": "touch y.ran"},
            ],
            piped=True,
        ))
        assert states(result) == {"x": JobState.FAILED, "y": JobState.DEP_FAILED}
        assert result.results[1].error == "not started: job 'x' failed"
        assert not (worktree / "y.ran").exists()

    def test_parallel_false_is_piped(self, worktree):
        h = hook([{"name": "x", "run": "exit 1"}, {"name": "y", "run": "true"}], parallel=False)
        result = make_scheduler(worktree).run("worktree-post-create", h)
        assert result.mode is ExecutionMode.PIPED
        assert states(result)["y"] is JobState.DEP_FAILED

    def test_follow_keeps_going(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook(
            [
                {"name": "x", "run": "exit 1"},
                {"name": "y", "run": "touch y.ran"},
                {"name": "z", "run": "true", "needs": ["x"]},
            ],
            follow=True,
        ))
        assert states(result) == {
            "x": JobState.FAILED,
            "y": JobState.SUCCESS,
            "z": JobState.DEP_FAILED,
        }
        assert (worktree / "y.ran").exists()

    def test_sequential_runs_in_declared_order(self, worktree):
        make_scheduler(worktree).run("worktree-post-create", hook(
            [
                {"name": "a", "run": "sleep 0.2 && echo a >> order"},
                {"name": "b", "run": "echo b >> order", "skip": True},
                {"name": "c", "run": "echo c >> order"},
            ],
            follow=True,
        ))
        assert (worktree / "order").read_text().split() == ["a", "c"]

    def test_priority_orders_ready_jobs(self, worktree):
        make_scheduler(worktree).run("worktree-post-create", hook(
            [
                {"name": "root", "run": "echo root >> order"},
                {"name": "b", "run": "echo b >> order", "needs": ["root"], "priority": 5},
                {"name": "c", "run": "echo c >> order", "needs": ["root"], "priority": 1},
            ],
            piped=True,
        ))
        assert (worktree / "order").read_text().split() == ["root", "c", "b"]


class TestInterrupt:
    def test_running_job_fails_and_waiting_jobs_skip(self, worktree):
        def interrupt():
            raise KeyboardInterrupt

        result = make_scheduler(worktree, has_tty=interrupt).run("worktree-post-create", hook([
            {"name": "a", "run": "true", "interactive": True},
            {"name": "b", "run": "touch b.ran"},
        ]))
        assert result.interrupted
        assert states(result) == {"a": JobState.FAILED, "b": JobState.SKIPPED}
        assert result.results[0].error == "Job 'a' interrupted"
        assert result.results[1].skip_reason == "interrupted"
        assert not (worktree / "b.ran").exists()


class TestHookConditions:
    def test_hook_skip(self, worktree):
        result = make_scheduler(worktree).run(
            "worktree-post-create",
            hook([{"name": "a", "run": "touch a.ran"}], skip=True),
        )
        assert result.skipped
        assert result.skipped_reason == "skip: true"
        assert result.results == []
        assert not (worktree / "a.ran").exists()

    def test_hook_only_by_ref(self, worktree):
        result = make_scheduler(worktree).run(
            "worktree-post-create",
            hook([{"name": "a", "run": "true"}], only=[{"ref": "release/*"}]),
        )
        assert result.skipped_reason == "only condition not met: branch matches 'release/*'"


class TestBeforeDispatch:
    def test_decline_skips_everything(self, worktree):
        calls = []

        def decline():
            calls.append(True)
            return False

        result = make_scheduler(worktree).run(
            "worktree-post-create",
            hook([{"name": "a", "run": "touch a.ran"}, {"name": "b", "run": "true"}]),
            before_dispatch=decline,
        )
        assert calls == [True]
        assert result.skipped_reason == "declined"
        assert states(result) == {"a": JobState.SKIPPED, "b": JobState.SKIPPED}
        assert not (worktree / "a.ran").exists()

    def test_accept_runs(self, worktree):
        calls = []
        result = make_scheduler(worktree).run(
            "worktree-post-create",
            hook([{"name": "a", "run": "true"}, {"name": "b", "run": "true"}]),
            before_dispatch=lambda: calls.append(True) or True,
        )
        assert calls == [True]
        assert result.success

    def test_not_asked_when_nothing_runs(self, worktree):
        calls = []
        make_scheduler(worktree).run(
            "worktree-post-create",
            hook([{"name": "a", "run": "true", "skip": True}]),
            before_dispatch=lambda: calls.append(True) or True,
        )
        assert calls == []


class TestGroups:
    def test_group_failure_blocks_dependents(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook([
            {
                "name": "checks",
                "group": {"piped": True, "jobs": [
                    {"name": "lint", "run": "exit 1"},
                    {"name": "types", "run": "true"},
                ]},
            },
            {"name": "deploy", "run": "true", "needs": ["checks"]},
        ]))
        checks = result.results[0]
        assert checks.state is JobState.FAILED
        assert checks.error == "Group 'checks' failed: lint, types"
        assert checks.group.mode is ExecutionMode.PIPED
        assert states(checks.group) == {"lint": JobState.FAILED, "types": JobState.DEP_FAILED}
        assert result.results[1].state is JobState.DEP_FAILED

    def test_group_success(self, worktree):
        result = make_scheduler(worktree).run("worktree-post-create", hook([
            {"name": "setup", "group": {"jobs": [
                {"name": "one", "run": "touch one"},
                {"name": "two", "run": "test -f one", "needs": ["one"]},
            ]}},
        ]))
        assert result.success
        assert states(result.results[0].group) == {
            "one": JobState.SUCCESS,
            "two": JobState.SUCCESS,
        }

    def test_group_output_is_prefixed(self, worktree):
        buf = io.StringIO()
        sink = OutputSink(Console(file=buf, width=200), colors=False)
        make_scheduler(worktree, sink=sink).run("worktree-post-create", hook([
            {"name": "setup", "group": {"jobs": [{"name": "inner", "run": "echo hi"}]}},
        ]))
        out = buf.getvalue()
        assert "✓ setup > inner" in out
        assert "  [setup > inner] hi" in out
        assert "worktree-post-create: running 1 job(s) (parallel)" in out


class TestPlan:
    def test_plan_follows_dependencies(self, worktree):
        plan = make_scheduler(worktree).plan(hook([
            {"name": "build", "run": "make", "needs": ["install"]},
            {"name": "install", "run": "npm ci", "tags": ["deps"]},
            {"name": "checks", "group": {"piped": True, "jobs": [{"run": "lint"}]}},
        ]))
        assert [p.name for p in plan] == ["install", "build", "checks"]
        assert plan[1].needs == ["install"]
        assert plan[2].mode is ExecutionMode.PIPED
        assert [c.action for c in plan[2].children] == ["lint"]

    def test_plan_runs_nothing(self, worktree):
        make_scheduler(worktree).plan(hook([{"name": "a", "run": "touch a.ran"}]))
        assert not (worktree / "a.ran").exists()
