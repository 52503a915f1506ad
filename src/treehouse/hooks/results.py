"""Result records for jobs and hook runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from treehouse.hooks.graph import JobState
from treehouse.hooks.model import ExecutionMode


@dataclass
class JobResult:
    """Outcome of one job.

    ``error`` holds the engine's description of a failure; ``fail_text`` is
    the job's own failure message from the config, if it has one.
    """

    name: str
    state: JobState
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error: str | None = None
    fail_text: str | None = None
    skip_reason: str | None = None
    # Set for group jobs
    group: HookRunResult | None = None

    @property
    def success(self) -> bool:
        return self.state.satisfies_dependents

    @property
    def message(self) -> str | None:
        """What to tell the user about a failed or skipped job."""
        if self.state is JobState.SKIPPED:
            return self.skip_reason
        return self.fail_text or self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
            "fail_text": self.fail_text,
            "skip_reason": self.skip_reason,
            "group": self.group.to_dict() if self.group else None,
        }


@dataclass
class HookRunResult:
    hook_name: str
    mode: ExecutionMode
    results: list[JobResult] = field(default_factory=list)
    skipped_reason: str | None = None
    interrupted: bool = False

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def success(self) -> bool:
        return not self.interrupted and all(r.success for r in self.results)

    @property
    def failures(self) -> list[JobResult]:
        return [r for r in self.results if r.state.is_failure]

    def count(self, state: JobState) -> int:
        return sum(1 for r in self.results if r.state is state)

    def summary(self) -> str:
        parts = []
        for state, label in (
            (JobState.FAILED, "failed"),
            (JobState.DEP_FAILED, "blocked by a failed dependency"),
            (JobState.SKIPPED, "skipped"),
            (JobState.SUCCESS, "succeeded"),
        ):
            n = self.count(state)
            if n:
                parts.append(f"{n} {label}")
        if self.interrupted:
            parts.insert(0, "interrupted")
        return ", ".join(parts) if parts else "no jobs"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hook_name": self.hook_name,
            "mode": self.mode.value,
            "success": self.success,
            "skipped_reason": self.skipped_reason,
            "interrupted": self.interrupted,
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
