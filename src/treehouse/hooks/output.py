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

"""Per-job attributed output.

Jobs run concurrently, so the sink is the one piece of shared mutable
state in a hook run. Each write takes the lock and emits a whole block,
so lines from two jobs never interleave.
"""

from __future__ import annotations

import threading

from rich.console import Console
from rich.markup import escape

from treehouse.hooks.graph import JobState
from treehouse.hooks.results import HookRunResult, JobResult

STATE_MARKS = {
    JobState.SUCCESS: ("✓", "green"),
    JobState.FAILED: ("✗", "red"),
    JobState.DEP_FAILED: ("⊘", "red"),
    JobState.SKIPPED: ("-", "yellow"),
}


def make_console(colors: bool = True, no_tty: bool = False) -> Console:
    """Console for hook output, on stderr so stdout stays clean for callers."""
    return Console(
        stderr=True,
        no_color=not colors,
        force_terminal=False if no_tty else None,
        highlight=False,
    )


class OutputSink:
    def __init__(
        self,
        console: Console | None = None,
        show_output: bool = True,
        colors: bool = True,
    ):
        self.console = console or make_console(colors=colors)
        self.show_output = show_output
        self.colors = colors
        self._lock = threading.Lock()

    def _print(self, text: str, style: str | None = None) -> None:
        if self.colors and style:
            self.console.print(f"[{style}]{escape(text)}[/{style}]", highlight=False)
        else:
            self.console.print(text, markup=False, highlight=False)

    def hook_started(self, hook_name: str, job_count: int, mode: str) -> None:
        with self._lock:
            self._print(f"{hook_name}: running {job_count} job(s) ({mode})", "bold")

    def hook_skipped(self, hook_name: str, reason: str) -> None:
        with self._lock:
            self._print(f"{hook_name}: skipped ({reason})", "dim")

    def job_finished(self, result: JobResult, prefix: str = "") -> None:
        mark, style = STATE_MARKS.get(result.state, ("?", "white"))
        label = f"{prefix}{result.name}"
        line = f"{mark} {label}"
        if result.state is JobState.SUCCESS:
            line += f" ({result.duration_seconds:.1f}s)"
        elif result.message:
            line += f": {result.message}"

        with self._lock:
            self._print(line, style)
            if self.show_output or result.state is JobState.FAILED:
                for stream in (result.stdout, result.stderr):
                    for out_line in stream.splitlines():
                        self._print(f"  [{label}] {out_line}")

    def hook_finished(self, run: HookRunResult) -> None:
        style = "green" if run.success else "red"
        with self._lock:
            self._print(f"{run.hook_name}: {run.summary()}", style)

    def message(self, text: str) -> None:
        with self._lock:
            self._print(text)


class NullSink(OutputSink):
    """Discards everything."""

    def __init__(self):
        super().__init__(console=Console(quiet=True), show_output=False, colors=False)

    def _print(self, text: str, style: str | None = None) -> None:
        pass
