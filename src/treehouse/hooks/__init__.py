"""Hook orchestration engine.

Lifecycle hooks run jobs defined in a repository's hooks files when a
worktree is cloned, initialized, created or removed.

Execution Modes:
- parallel: ready jobs run concurrently (default)
- piped: one job at a time, stop at the first failure
- follow: one job at a time, failures only block their dependents

Job Actions:
- run: inline shell command with {placeholder} substitution
- script: file from the source directory, run with an optional runner
- group: nested set of jobs with its own mode and conditions
"""

from treehouse.hooks.conditions import ConditionEvaluator, SkipInfo, is_truthy
from treehouse.hooks.context import ExecutionContext, RemovalReason
from treehouse.hooks.executor import JobExecutor, RunSettings
from treehouse.hooks.graph import DependencyCycleError, JobGraph, JobState
from treehouse.hooks.loader import LoadedConfig, load_merged_config
from treehouse.hooks.model import (
    Condition,
    ExecutionMode,
    FailMode,
    GroupAction,
    HookDef,
    HooksFile,
    JobDef,
    RunAction,
    ScriptAction,
)
from treehouse.hooks.orchestrator import HookOrchestrator, HookVerdict, VerdictKind
from treehouse.hooks.results import HookRunResult, JobResult
from treehouse.hooks.scheduler import JobFilter, JobNotFoundError, Scheduler
from treehouse.hooks.validate import ValidationResult, ensure_valid, validate_config

__all__ = [
    # Model
    "Condition",
    "ExecutionMode",
    "FailMode",
    "GroupAction",
    "HookDef",
    "HooksFile",
    "JobDef",
    "RunAction",
    "ScriptAction",
    # Loading and validation
    "LoadedConfig",
    "ValidationResult",
    "ensure_valid",
    "load_merged_config",
    "validate_config",
    # Execution
    "ConditionEvaluator",
    "DependencyCycleError",
    "ExecutionContext",
    "HookRunResult",
    "JobExecutor",
    "JobFilter",
    "JobGraph",
    "JobNotFoundError",
    "JobResult",
    "JobState",
    "RemovalReason",
    "RunSettings",
    "Scheduler",
    "SkipInfo",
    "is_truthy",
    # Orchestration
    "HookOrchestrator",
    "HookVerdict",
    "VerdictKind",
]
