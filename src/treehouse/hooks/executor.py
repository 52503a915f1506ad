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

"""Run a single job: a shell command, a script, or a nested group."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

from treehouse.constants import DEFAULT_JOB_TIMEOUT
from treehouse.hooks.context import ExecutionContext
from treehouse.hooks.graph import JobState
from treehouse.hooks.model import GroupAction, HookDef, JobDef, RunAction, ScriptAction
from treehouse.hooks.results import HookRunResult, JobResult

logger = logging.getLogger(__name__)

GroupRunner = Callable[[JobDef, HookDef], HookRunResult]


def stdin_is_tty() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except ValueError:
        # stdin closed
        return False


@dataclass(frozen=True)
class RunSettings:
    """Per-firing inputs shared by every job of one hook run.

    ``source_dirs`` are searched in order when resolving script paths;
    ``rc`` is a file sourced before each command.
    """

    ctx: ExecutionContext
    timeout: int = DEFAULT_JOB_TIMEOUT
    rc: Path | None = None
    source_dirs: tuple[Path, ...] = ()
    base_env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))


class JobExecutor:
    def __init__(self, settings: RunSettings, has_tty: Callable[[], bool] = stdin_is_tty):
        self.settings = settings
        self.has_tty = has_tty
        self._lock = threading.Lock()
        # process -> whether it leads its own process group
        self._live: dict[subprocess.Popen, bool] = {}
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def execute(
        self,
        job: JobDef,
        timeout: int | None = None,
        run_group: GroupRunner | None = None,
    ) -> JobResult:
        """Run job to completion and report its outcome.

        Execution problems (bad exit status, missing script, timeout, no
        terminal for an interactive job) become FAILED results; they are
        never raised.
        """
        start = time.monotonic()
        label = job.label

        if self.cancelled:
            return JobResult(name=label, state=JobState.SKIPPED, skip_reason="interrupted")

        if isinstance(job.action, GroupAction):
            if run_group is None:
                raise RuntimeError("group jobs need a scheduler to run them")
            return self._execute_group(job, job.action.hook, run_group, start)

        if job.interactive and not self.has_tty():
            return self._failed(
                job, start,
                f"Job '{label}' is interactive but no terminal is available",
            )

        cwd = self.working_directory(job)
        if not cwd.is_dir():
            return self._failed(job, start, f"Working directory not found: {cwd}")

        if isinstance(job.action, RunAction):
            command = self.settings.ctx.substitute(job.action.command, job.name)
        else:
            command, error = self._script_command(job, job.action)
            if error:
                return self._failed(job, start, error)
        command = self._with_rc(command)

        return self._run_process(
            job, command, cwd, self.job_env(job), timeout or self.settings.timeout, start
        )

    def working_directory(self, job: JobDef) -> Path:
        base = self.settings.ctx.working_directory
        if job.root:
            return base / self.settings.ctx.substitute(job.root, job.name)
        return base

    def job_env(self, job: JobDef) -> dict[str, str]:
        """Fresh environment map for one job."""
        env = dict(self.settings.base_env)
        env.update(self.settings.ctx.to_env())
        for key, value in job.env.items():
            env[key] = self.settings.ctx.substitute(value, job.name)
        return env

    def resolve_script(self, path: str) -> Path | None:
        if Path(path).is_absolute():
            return Path(path) if Path(path).is_file() else None
        for source_dir in self.settings.source_dirs:
            candidate = source_dir / path
            if candidate.is_file():
                return candidate
        return None

    def _script_command(self, job: JobDef, action: ScriptAction) -> tuple[str, str | None]:
        script = self.resolve_script(action.path)
        if script is None:
            searched = ", ".join(str(d) for d in self.settings.source_dirs) or "(none)"
            return "", f"Script not found: {action.path} (searched: {searched})"
        parts = []
        if action.runner:
            parts.append(self.settings.ctx.substitute(action.runner, job.name))
        elif not os.access(script, os.X_OK):
            return "", f"Script is not executable: {script}"
        parts.append(shlex.quote(str(script)))
        if action.args:
            parts.append(self.settings.ctx.substitute(action.args, job.name))
        return " ".join(parts), None

    def _with_rc(self, command: str) -> str:
        if self.settings.rc is None:
            return command
        return f". {shlex.quote(str(self.settings.rc))} && {command}"

    def _execute_group(
        self, job: JobDef, hook: HookDef, run_group: GroupRunner, start: float
    ) -> JobResult:
        run = run_group(job, hook)
        duration = time.monotonic() - start
        if run.skipped and not run.results:
            return JobResult(
                name=job.label,
                state=JobState.SKIPPED,
                duration_seconds=duration,
                skip_reason=run.skipped_reason,
                group=run,
            )
        if run.success:
            return JobResult(
                name=job.label,
                state=JobState.SUCCESS,
                duration_seconds=duration,
                group=run,
            )
        failed = ", ".join(r.name for r in run.failures) or run.summary()
        return JobResult(
            name=job.label,
            state=JobState.FAILED,
            duration_seconds=duration,
            error=f"Group '{job.label}' failed: {failed}",
            fail_text=job.fail_text,
            group=run,
        )

    def _failed(self, job: JobDef, start: float, error: str, **kwargs) -> JobResult:
        logger.debug("Job %s failed: %s", job.label, error)
        return JobResult(
            name=job.label,
            state=JobState.FAILED,
            duration_seconds=time.monotonic() - start,
            error=error,
            fail_text=job.fail_text,
            **kwargs,
        )

    def _run_process(
        self,
        job: JobDef,
        command: str,
        cwd: Path,
        env: dict[str, str],
        timeout: int,
        start: float,
    ) -> JobResult:
        label = job.label
        logger.debug("Executing job %s: %s", label, command)
        logger.debug("Working directory: %s", cwd)

        capture = not job.interactive
        own_group = capture and os.name == "posix"
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.PIPE if capture else None,
                text=True,
                # Own process group so the whole shell pipeline can be killed;
                # interactive jobs stay in the foreground group for the terminal
                start_new_session=own_group,
            )
        except OSError as e:
            return self._failed(job, start, f"Job '{label}' could not start: {e}")

        with self._lock:
            self._live[proc] = own_group
        timed_out = False
        try:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                self._kill(proc, own_group)
                stdout, stderr = proc.communicate()
        finally:
            with self._lock:
                self._live.pop(proc, None)

        stdout = (stdout or "").rstrip()
        stderr = (stderr or "").rstrip()
        if timed_out:
            return self._failed(
                job, start, f"Job '{label}' timed out after {timeout}s",
                exit_code=proc.returncode, stdout=stdout, stderr=stderr,
            )
        if self.cancelled:
            return self._failed(
                job, start, f"Job '{label}' interrupted",
                exit_code=proc.returncode, stdout=stdout, stderr=stderr,
            )
        if proc.returncode != 0:
            return self._failed(
                job, start, f"Job '{label}' failed (exit code: {proc.returncode})",
                exit_code=proc.returncode, stdout=stdout, stderr=stderr,
            )
        return JobResult(
            name=label,
            state=JobState.SUCCESS,
            exit_code=0,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.monotonic() - start,
        )

    @staticmethod
    def _kill(proc: subprocess.Popen, own_group: bool, terminate: bool = False) -> None:
        if proc.poll() is not None:
            return
        if not own_group:
            if terminate:
                proc.terminate()
            else:
                proc.kill()
            return
        sig = signal.SIGTERM if terminate else signal.SIGKILL
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass

    def cancel_all(self) -> None:
        """Terminate every running job and refuse to start new ones."""
        self._cancelled.set()
        with self._lock:
            live = list(self._live.items())
        for proc, own_group in live:
            logger.debug("Terminating pid %s", proc.pid)
            self._kill(proc, own_group, terminate=True)
