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

"""Job dependency graph built from ``needs``."""

from __future__ import annotations

import heapq
from enum import Enum
from typing import Iterable, Sequence

from treehouse.config import ConfigValidationError
from treehouse.hooks.model import JobDef


class JobState(Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEP_FAILED = "dep_failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def satisfies_dependents(self) -> bool:
        return self in (JobState.SUCCESS, JobState.SKIPPED)

    @property
    def is_failure(self) -> bool:
        return self in (JobState.FAILED, JobState.DEP_FAILED)


_TERMINAL = frozenset({
    JobState.SUCCESS,
    JobState.FAILED,
    JobState.SKIPPED,
    JobState.DEP_FAILED,
})


class DependencyCycleError(ConfigValidationError):
    """Raised when ``needs`` relations form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


def find_cycle(dependencies: Sequence[Sequence[int]]) -> list[int] | None:
    """Return one cycle as a list of indices (first == last), or None."""
    white, grey, black = 0, 1, 2
    color = [white] * len(dependencies)
    stack: list[int] = []

    def visit(node: int) -> list[int] | None:
        color[node] = grey
        stack.append(node)
        for dep in dependencies[node]:
            if color[dep] == grey:
                return stack[stack.index(dep):] + [dep]
            if color[dep] == white:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[node] = black
        return None

    for start in range(len(dependencies)):
        if color[start] == white:
            found = visit(start)
            if found:
                return found
    return None


class JobGraph:
    """Directed graph from each job to the sibling jobs it needs.

    Indices follow the declared order of ``jobs``. Names listed in
    ``satisfied`` belong to jobs that were filtered out of this run; a
    dependency on one of them counts as already met.
    """

    def __init__(self, jobs: Sequence[JobDef], satisfied: Iterable[str] = ()):
        self.jobs = list(jobs)
        self.index: dict[str, int] = {}
        for i, job in enumerate(self.jobs):
            if job.name is not None:
                self.index[job.name] = i
        satisfied = set(satisfied)

        self.dependencies: list[list[int]] = [[] for _ in self.jobs]
        self.dependents: list[list[int]] = [[] for _ in self.jobs]
        for i, job in enumerate(self.jobs):
            if job.needs and job.name is None:
                raise ConfigValidationError(
                    f"Job '{job.label}' has needs but no name"
                )
            seen: set[str] = set()
            for dep_name in job.needs:
                if dep_name in seen:
                    raise ConfigValidationError(
                        f"Job '{job.name}' lists '{dep_name}' in needs more than once"
                    )
                seen.add(dep_name)
                if dep_name in self.index:
                    dep = self.index[dep_name]
                    self.dependencies[i].append(dep)
                    self.dependents[dep].append(i)
                elif dep_name not in satisfied:
                    raise ConfigValidationError(
                        f"Job '{job.name}' needs unknown job '{dep_name}'"
                    )

        cycle = find_cycle(self.dependencies)
        if cycle:
            raise DependencyCycleError([self.jobs[i].name for i in cycle])

    def __len__(self) -> int:
        return len(self.jobs)

    def is_ready(self, i: int, states: Sequence[JobState]) -> bool:
        """All dependencies finished and every one of them succeeded or skipped."""
        return all(states[d].satisfies_dependents for d in self.dependencies[i])

    def failed_dependency(self, i: int, states: Sequence[JobState]) -> int | None:
        """Index of the first dependency that failed, if any."""
        for d in self.dependencies[i]:
            if states[d].is_failure:
                return d
        return None

    def topological_order(self) -> list[int]:
        """Kahn's algorithm; ties go to the lowest priority, then declared order."""
        in_degree = [len(deps) for deps in self.dependencies]
        heap = [(self.jobs[i].priority or 0, i) for i, deg in enumerate(in_degree) if deg == 0]
        heapq.heapify(heap)
        order: list[int] = []
        while heap:
            _, i = heapq.heappop(heap)
            order.append(i)
            for child in self.dependents[i]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    heapq.heappush(heap, (self.jobs[child].priority or 0, child))
        return order
