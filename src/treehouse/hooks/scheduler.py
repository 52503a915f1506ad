"""Drive one hook's jobs to completion.

A single coordinator (the calling thread) owns all job state. Workers in a
thread pool run one job each and post ``(index, JobResult)`` onto a queue;
the coordinator reads completions, updates states, and decides what to
dispatch next. Ready jobs go out lowest ``priority`` first, then in declared
order.

- PARALLEL: every ready job, up to ``max_workers``. A job that needs the
  terminal waits for in-flight work to drain and then runs alone.
- PIPED: one job at a time; after the first failure nothing else starts
  and the remaining jobs end DEP_FAILED.
- FOLLOW: one job at a time; a failure only blocks the jobs that depend
  on it.
"""

from __future__ import annotations

import logging
import os
import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Callable

from treehouse.hooks.conditions import ConditionEvaluator
from treehouse.hooks.executor import JobExecutor
from treehouse.hooks.graph import JobGraph, JobState
from treehouse.hooks.model import ExecutionMode, GroupAction, HookDef, JobDef
from treehouse.hooks.output import NullSink, OutputSink
from treehouse.hooks.results import HookRunResult, JobResult

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


class JobNotFoundError(Exception):
    """Raised when a manual run names a job the hook does not define."""


@dataclass(frozen=True)
class JobFilter:
    """Manual-run selection: one job by name and/or jobs carrying any tag."""

    job_name: str | None = None
    tags: tuple[str, ...] = ()

    def matches(self, job: JobDef) -> bool:
        if self.job_name is not None and job.name != self.job_name:
            return False
        if self.tags and not set(self.tags) & set(job.tags):
            return False
        return True


@dataclass
class PlannedJob:
    name: str
    action: str
    needs: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    description: str | None = None
    interactive: bool = False
    children: list[PlannedJob] = field(default_factory=list)
    mode: ExecutionMode | None = None


def excluded_by_hook(hook: HookDef, job: JobDef) -> bool:
    if hook.exclude_tags and set(hook.exclude_tags) & set(job.tags):
        return True
    if hook.exclude and job.name is not None:
        return any(fnmatchcase(job.name, pattern) for pattern in hook.exclude)
    return False


def select_jobs(
    hook: HookDef, job_filter: JobFilter | None = None
) -> tuple[list[JobDef], set[str]]:
    """Apply exclusions and the manual filter.

    Returns the jobs to run, in declared order, and the names of the jobs
    that were filtered out.

    Raises:
        JobNotFoundError: If the filter names a job the hook does not have.
    """
    if job_filter and job_filter.job_name is not None:
        if not any(job.name == job_filter.job_name for job in hook.jobs):
            available = ", ".join(j.name for j in hook.jobs if j.name) or "(no named jobs)"
            raise JobNotFoundError(
                f"No job named '{job_filter.job_name}'. Available: {available}"
            )

    kept: list[JobDef] = []
    dropped: set[str] = set()
    for job in hook.jobs:
        keep = not excluded_by_hook(hook, job)
        if keep and job_filter is not None:
            keep = job_filter.matches(job)
        if keep:
            kept.append(job)
        elif job.name is not None:
            dropped.add(job.name)
    return kept, dropped


class Scheduler:
    def __init__(
        self,
        executor: JobExecutor,
        evaluator: ConditionEvaluator,
        sink: OutputSink | None = None,
        max_workers: int | None = None,
        prefix: str = "",
    ):
        self.executor = executor
        self.evaluator = evaluator
        self.sink = sink or NullSink()
        self.max_workers = max_workers or os.cpu_count() or 4
        self.prefix = prefix

    def plan(self, hook: HookDef, job_filter: JobFilter | None = None) -> list[PlannedJob]:
        """What a run would do, in dependency order, without running anything."""
        jobs, dropped = select_jobs(hook, job_filter)
        graph = JobGraph(jobs, satisfied=dropped)
        planned = []
        for i in graph.topological_order():
            job = jobs[i]
            children: list[PlannedJob] = []
            mode = None
            if isinstance(job.action, GroupAction):
                children = self.plan(job.action.hook)
                mode = job.action.hook.mode
            planned.append(PlannedJob(
                name=job.label,
                action=job.action.summary(),
                needs=list(job.needs),
                tags=list(job.tags),
                description=job.description,
                interactive=job.interactive,
                children=children,
                mode=mode,
            ))
        return planned

    def run(
        self,
        hook_name: str,
        hook: HookDef,
        job_filter: JobFilter | None = None,
        timeout: int | None = None,
        before_dispatch: Callable[[], bool] | None = None,
    ) -> HookRunResult:
        """Run hook's jobs and return every job's outcome.

        ``before_dispatch`` is called once, right before the first job
        starts; returning False skips everything not yet finished.
        """
        mode = hook.mode
        info = self.evaluator.check(hook.skip, hook.only)
        if info is not None:
            logger.info("Hook %s skipped: %s", hook_name, info.reason)
            self.sink.hook_skipped(f"{self.prefix}{hook_name}", info.reason)
            return HookRunResult(hook_name=hook_name, mode=mode, skipped_reason=info.reason)

        jobs, dropped = select_jobs(hook, job_filter)
        graph = JobGraph(jobs, satisfied=dropped)
        timeout = hook.timeout or timeout

        if not self.prefix:
            self.sink.hook_started(hook_name, len(jobs), mode.value)
        logger.info("Running %s: %d job(s), %s", hook_name, len(jobs), mode.value)

        run = _Run(self, hook_name, mode, jobs, graph, timeout, before_dispatch)
        result = run.execute()
        if not self.prefix:
            self.sink.hook_finished(result)
        return result

    def run_group(
        self, job: JobDef, hook: HookDef, timeout: int | None = None
    ) -> HookRunResult:
        child = Scheduler(
            self.executor,
            self.evaluator,
            self.sink,
            self.max_workers,
            prefix=f"{self.prefix}{job.label} > ",
        )
        return child.run(job.label, hook, timeout=timeout or self.executor.settings.timeout)


class _Run:
    """State of one Scheduler.run() call."""

    def __init__(
        self,
        scheduler: Scheduler,
        hook_name: str,
        mode: ExecutionMode,
        jobs: list[JobDef],
        graph: JobGraph,
        timeout: int | None,
        before_dispatch: Callable[[], bool] | None,
    ):
        self.scheduler = scheduler
        self.hook_name = hook_name
        self.mode = mode
        self.jobs = jobs
        self.graph = graph
        self.timeout = timeout
        self.before_dispatch = before_dispatch
        self.states = [JobState.PENDING] * len(jobs)
        self.results: list[JobResult | None] = [None] * len(jobs)
        self.completions: queue.Queue[tuple[int, JobResult]] = queue.Queue()
        self.in_flight = 0
        self.exclusive_index: int | None = None
        self.halted_by: str | None = None
        self.confirmed = before_dispatch is None
        self.declined = False
        self.interrupted = False

    @property
    def limit(self) -> int:
        if self.mode is ExecutionMode.PARALLEL:
            return self.scheduler.max_workers
        return 1

    def execute(self) -> HookRunResult:
        with ThreadPoolExecutor(
            max_workers=self.limit, thread_name_prefix=f"hook-{self.hook_name}"
        ) as pool:
            try:
                self._loop(pool)
            except KeyboardInterrupt:
                logger.warning("Interrupted; cancelling %d running job(s)", self.in_flight)
                self.interrupted = True
                self.scheduler.executor.cancel_all()
                if self.exclusive_index is not None:
                    job = self.jobs[self.exclusive_index]
                    self._complete(self.exclusive_index, JobResult(
                        name=job.label,
                        state=JobState.FAILED,
                        error=f"Job '{job.label}' interrupted",
                        fail_text=job.fail_text,
                    ))
                    self.exclusive_index = None
                while self.in_flight:
                    self._complete(*self.completions.get())
                self._finish_remaining(JobState.SKIPPED, "interrupted")

        if self.scheduler.executor.cancelled:
            self.interrupted = True
        skipped_reason = "declined" if self.declined else None
        return HookRunResult(
            hook_name=self.hook_name,
            mode=self.mode,
            results=[r for r in self.results if r is not None],
            skipped_reason=skipped_reason,
            interrupted=self.interrupted,
        )

    def _loop(self, pool: ThreadPoolExecutor) -> None:
        while True:
            progressed = self._advance(pool)
            if self.in_flight == 0:
                if progressed:
                    continue
                break
            try:
                index, result = self.completions.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            self._complete(index, result)

    def _advance(self, pool: ThreadPoolExecutor) -> bool:
        """Promote, cascade and dispatch. Returns True if any state changed."""
        changed = self._promote()
        if self.halted_by is not None:
            changed |= self._finish_remaining(
                JobState.DEP_FAILED,
                f"not started: job '{self.halted_by}' failed",
            )
            return changed
        if self.declined:
            return changed

        for i in self._dispatch_order():
            if self.in_flight >= self.limit:
                break
            job = self.jobs[i]
            if job.requires_exclusive() and self.in_flight:
                # Nothing else starts until running jobs drain
                break
            info = self.scheduler.evaluator.check(job.skip, job.only)
            if info is not None:
                logger.info("Job %s skipped: %s", job.label, info.reason)
                self._record(i, JobResult(
                    name=job.label, state=JobState.SKIPPED, skip_reason=info.reason
                ))
                changed = True
                if self.mode is not ExecutionMode.PARALLEL:
                    # Re-promote so dispatch order holds among newly ready jobs
                    return True
                continue
            if not self._confirm():
                return True
            if job.requires_exclusive():
                self.states[i] = JobState.RUNNING
                self.exclusive_index = i
                self.in_flight += 1
                result = self._execute(job)
                self.exclusive_index = None
                self._complete(i, result)
                return True
            self.states[i] = JobState.RUNNING
            self.in_flight += 1
            pool.submit(self._worker, i, job)
            changed = True
            if self.mode is not ExecutionMode.PARALLEL:
                break
        return changed

    def _promote(self) -> bool:
        changed = False
        progress = True
        while progress:
            progress = False
            for i, state in enumerate(self.states):
                if state is not JobState.PENDING:
                    continue
                dep = self.graph.failed_dependency(i, self.states)
                if dep is not None:
                    job = self.jobs[i]
                    self._record(i, JobResult(
                        name=job.label,
                        state=JobState.DEP_FAILED,
                        error=f"Job '{job.label}' skipped: dependency "
                              f"'{self.jobs[dep].label}' failed",
                    ))
                    progress = changed = True
                elif self.graph.is_ready(i, self.states):
                    self.states[i] = JobState.READY
                    progress = changed = True
        return changed

    def _dispatch_order(self) -> list[int]:
        ready = [i for i, s in enumerate(self.states) if s is JobState.READY]
        ready.sort(key=lambda i: (self.jobs[i].priority or 0, i))
        return ready

    def _confirm(self) -> bool:
        if self.confirmed:
            return True
        self.confirmed = True
        if self.before_dispatch is not None and not self.before_dispatch():
            logger.info("Hook %s declined before dispatch", self.hook_name)
            self.declined = True
            self._finish_remaining(JobState.SKIPPED, "declined")
            return False
        return True

    def _execute(self, job: JobDef) -> JobResult:
        try:
            return self.scheduler.executor.execute(
                job, timeout=self.timeout, run_group=self._run_group
            )
        except Exception as e:
            logger.exception("Job %s raised", job.label)
            return JobResult(
                name=job.label,
                state=JobState.FAILED,
                error=f"Job '{job.label}' raised {type(e).__name__}: {e}",
                fail_text=job.fail_text,
            )

    def _run_group(self, job: JobDef, hook: HookDef) -> HookRunResult:
        return self.scheduler.run_group(job, hook, self.timeout)

    def _worker(self, i: int, job: JobDef) -> None:
        self.completions.put((i, self._execute(job)))

    def _complete(self, i: int, result: JobResult) -> None:
        self.in_flight -= 1
        self._record(i, result)
        if result.state is JobState.FAILED and self.mode is ExecutionMode.PIPED:
            if self.halted_by is None:
                self.halted_by = result.name

    def _record(self, i: int, result: JobResult) -> None:
        self.states[i] = result.state
        self.results[i] = result
        self.scheduler.sink.job_finished(result, prefix=self.scheduler.prefix)

    def _finish_remaining(self, state: JobState, reason: str) -> bool:
        changed = False
        for i, current in enumerate(self.states):
            if current in (JobState.PENDING, JobState.READY):
                job = self.jobs[i]
                if state is JobState.SKIPPED:
                    result = JobResult(name=job.label, state=state, skip_reason=reason)
                else:
                    result = JobResult(name=job.label, state=state, error=reason)
                self._record(i, result)
                changed = True
        return changed
