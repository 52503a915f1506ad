"""Entry point for worktree commands: fire a hook and get a verdict.

``fire()`` is the lifecycle path and is gated by the trust store.
``run_manual()`` and ``plan()`` serve explicit user requests and bypass
trust entirely.

A hook comes from the merged YAML config when it defines one, otherwise
from executable hook scripts (see ``treehouse.hooks.scripts``). Scripts
from the user's own config directory are not gated by trust.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from rich.console import Console

from treehouse.config import ConfigError, TreehouseConfig
from treehouse.home import get_user_hooks_dir
from treehouse.hooks.conditions import ConditionEvaluator
from treehouse.hooks.context import ExecutionContext
from treehouse.hooks.executor import JobExecutor, RunSettings, stdin_is_tty
from treehouse.hooks.loader import LoadedConfig, load_merged_config
from treehouse.hooks.model import FailMode, HookDef, HooksFile
from treehouse.hooks.output import OutputSink, make_console
from treehouse.hooks.results import HookRunResult, JobResult
from treehouse.hooks.scheduler import JobFilter, PlannedJob, Scheduler
from treehouse.hooks.scripts import find_hook_scripts, script_hook
from treehouse.hooks.validate import ensure_valid
from treehouse.trust import TrustLevel, TrustStore, TrustStoreError

logger = logging.getLogger(__name__)

PromptCallback = Callable[[str], bool]


class VerdictKind(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    WARN = "warn"
    ABORT = "abort"


@dataclass
class HookVerdict:
    """What the calling worktree command should do next.

    Only ABORT asks the caller to cancel its operation; WARN means report
    the failures and carry on.
    """

    kind: VerdictKind
    hook_name: str
    reason: str | None = None
    failures: list[JobResult] = field(default_factory=list)
    run: HookRunResult | None = None

    @property
    def should_abort(self) -> bool:
        return self.kind is VerdictKind.ABORT

    @property
    def failed(self) -> bool:
        return self.kind in (VerdictKind.WARN, VerdictKind.ABORT)

    def describe(self) -> str:
        if self.reason:
            return f"{self.hook_name}: {self.kind.value} ({self.reason})"
        return f"{self.hook_name}: {self.kind.value}"


@dataclass
class ResolvedHook:
    """The jobs to run for one firing and how to run them."""

    hook: HookDef
    settings: RunSettings
    config: HooksFile
    needs_trust: bool = True


def trust_identity(ctx: ExecutionContext) -> str:
    """Trust is keyed by the repository's shared git directory."""
    return str(Path(ctx.git_dir).resolve())


class HookOrchestrator:
    def __init__(
        self,
        trust_store: TrustStore,
        settings: TreehouseConfig | None = None,
        prompt: PromptCallback | None = None,
        console: Console | None = None,
        has_tty: Callable[[], bool] = stdin_is_tty,
        user_hooks_dir: Path | None = None,
    ):
        self.trust_store = trust_store
        self.settings = settings or TreehouseConfig()
        self.prompt = prompt
        self.console = console
        self.has_tty = has_tty
        self.user_hooks_dir = user_hooks_dir

    def fire(self, ctx: ExecutionContext) -> HookVerdict:
        """Run ctx.hook_name as part of a lifecycle command."""
        hook_name = ctx.hook_name
        if not self.settings.hook_enabled(hook_name):
            logger.info("Hook %s disabled in settings", hook_name)
            return HookVerdict(VerdictKind.SKIPPED, hook_name, reason="hooks disabled")
        return self._run(ctx, None, self.trust_level(ctx))

    def run_manual(
        self, ctx: ExecutionContext, job_filter: JobFilter | None = None
    ) -> HookVerdict:
        """Run a hook on explicit user request, regardless of trust.

        Raises:
            JobNotFoundError: If job_filter names a job the hook lacks.
        """
        return self._run(ctx, job_filter, None)

    def trust_level(self, ctx: ExecutionContext) -> TrustLevel:
        """Stored level for the repository; an unreadable store means DENY."""
        identity = trust_identity(ctx)
        try:
            return self.trust_store.get_level(identity)
        except TrustStoreError as e:
            logger.warning("Treating %s as untrusted: %s", identity, e)
            return TrustLevel.DENY

    def load(self, root: Path) -> LoadedConfig | None:
        """Load and validate the merged hooks config under root."""
        loaded = load_merged_config(root)
        if loaded is not None:
            ensure_valid(loaded.config)
        return loaded

    def resolve(
        self, ctx: ExecutionContext, loaded: LoadedConfig | None
    ) -> ResolvedHook | None:
        """The YAML hook if the config defines one, else the hook scripts."""
        hook_name = ctx.hook_name
        if loaded is not None and hook_name in loaded.config.hooks:
            return ResolvedHook(
                hook=loaded.config.hooks[hook_name],
                settings=self._run_settings(ctx, loaded),
                config=loaded.config,
            )

        scripts = find_hook_scripts(hook_name, ctx.config_root, self._user_hooks_dir())
        if not scripts:
            return None
        logger.info(
            "Hook %s runs script(s): %s", hook_name, ", ".join(str(s.path) for s in scripts)
        )
        return ResolvedHook(
            hook=script_hook(scripts),
            settings=RunSettings(ctx=ctx, timeout=self.settings.hook_timeout),
            config=loaded.config if loaded is not None else HooksFile(),
            needs_trust=any(s.from_repository for s in scripts),
        )

    def plan(
        self, ctx: ExecutionContext, job_filter: JobFilter | None = None
    ) -> list[PlannedJob]:
        """Dry run: the jobs a manual run would execute, in order.

        Raises:
            ConfigError: If the configuration is invalid.
            JobNotFoundError: If job_filter names a job the hook lacks.
        """
        resolved = self.resolve(ctx, self.load(ctx.config_root))
        if resolved is None:
            return []
        scheduler = Scheduler(
            JobExecutor(resolved.settings, self.has_tty),
            self._evaluator(ctx),
        )
        return scheduler.plan(resolved.hook, job_filter)

    def fail_mode(self, hook_name: str, hook: HookDef | None = None) -> str:
        if hook is not None and hook.fail_mode:
            return hook.fail_mode
        return self.settings.fail_mode_for(hook_name)

    def _run(
        self,
        ctx: ExecutionContext,
        job_filter: JobFilter | None,
        level: TrustLevel | None,
    ) -> HookVerdict:
        # level is None for manual runs
        hook_name = ctx.hook_name
        try:
            loaded = self.load(ctx.config_root)
        except ConfigError as e:
            if level is TrustLevel.DENY:
                return self._untrusted(ctx)
            logger.error("Hooks configuration error in %s: %s", ctx.config_root, e)
            return self._failure(hook_name, self.fail_mode(hook_name), f"configuration error: {e}")

        resolved = self.resolve(ctx, loaded)
        if resolved is None:
            if loaded is None:
                return HookVerdict(VerdictKind.SKIPPED, hook_name, reason="no hooks configured")
            return HookVerdict(VerdictKind.SKIPPED, hook_name, reason=f"no {hook_name} hook defined")

        before_dispatch = None
        if level is not None and resolved.needs_trust:
            if level is TrustLevel.DENY:
                return self._untrusted(ctx)
            if level is TrustLevel.PROMPT:
                def before_dispatch() -> bool:
                    if self.prompt is None:
                        logger.info("Trust level is prompt and no prompt is available")
                        return False
                    return self.prompt(
                        f"Run {hook_name} hooks from {ctx.config_root}?"
                    )

        config = resolved.config
        sink = OutputSink(
            self.console or make_console(
                colors=config.colors is not False, no_tty=bool(config.no_tty)
            ),
            show_output=config.output_enabled(hook_name),
            colors=config.colors is not False,
        )
        scheduler = Scheduler(
            JobExecutor(resolved.settings, self.has_tty),
            self._evaluator(ctx),
            sink,
            self.settings.max_parallel,
        )
        run = scheduler.run(
            hook_name,
            resolved.hook,
            job_filter,
            timeout=self.settings.hook_timeout,
            before_dispatch=before_dispatch,
        )
        return self._verdict(run, self.fail_mode(hook_name, resolved.hook))

    def _untrusted(self, ctx: ExecutionContext) -> HookVerdict:
        logger.info("Skipping %s: %s is not trusted", ctx.hook_name, trust_identity(ctx))
        return HookVerdict(VerdictKind.SKIPPED, ctx.hook_name, reason="repository not trusted")

    def _user_hooks_dir(self) -> Path:
        return self.user_hooks_dir or get_user_hooks_dir()

    def _run_settings(self, ctx: ExecutionContext, loaded: LoadedConfig) -> RunSettings:
        config = loaded.config
        root = loaded.root
        source_dirs = []
        if config.source_dir_local:
            source_dirs.append(root / config.source_dir_local)
        source_dirs.append(root / config.effective_source_dir)
        return RunSettings(
            ctx=ctx,
            timeout=self.settings.hook_timeout,
            rc=root / config.rc if config.rc else None,
            source_dirs=tuple(source_dirs),
        )

    def _evaluator(self, ctx: ExecutionContext) -> ConditionEvaluator:
        return ConditionEvaluator(
            ctx.working_directory,
            branch=ctx.branch_name,
            environ={**os.environ, **ctx.to_env()},
        )

    def _verdict(self, run: HookRunResult, fail_mode: str) -> HookVerdict:
        if run.success:
            if run.skipped:
                return HookVerdict(
                    VerdictKind.SKIPPED, run.hook_name, reason=run.skipped_reason, run=run
                )
            return HookVerdict(VerdictKind.SUCCESS, run.hook_name, run=run)
        names = ", ".join(f.name for f in run.failures)
        reason = run.summary() + (f": {names}" if names else "")
        return self._failure(run.hook_name, fail_mode, reason, run)

    def _failure(
        self,
        hook_name: str,
        fail_mode: str,
        reason: str,
        run: HookRunResult | None = None,
    ) -> HookVerdict:
        kind = VerdictKind.ABORT if FailMode(fail_mode) is FailMode.ABORT else VerdictKind.WARN
        if kind is VerdictKind.WARN:
            logger.warning("Hook %s failed (continuing): %s", hook_name, reason)
        else:
            logger.error("Hook %s failed: %s", hook_name, reason)
        return HookVerdict(
            kind,
            hook_name,
            reason=reason,
            failures=run.failures if run else [],
            run=run,
        )
