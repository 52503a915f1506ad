"""Treehouse CLI - hook management and trust commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import NoReturn

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from treehouse import __version__
from treehouse.config import ConfigError, get_config
from treehouse.constants import HOOK_NAMES
from treehouse.git.repo import (
    GitError,
    git_common_dir,
    git_current_branch,
    git_remote_url,
    git_toplevel,
)
from treehouse.hooks.context import ExecutionContext
from treehouse.hooks.loader import LoadedConfig, load_merged_config
from treehouse.hooks.orchestrator import HookOrchestrator, VerdictKind
from treehouse.hooks.scheduler import JobFilter, JobNotFoundError, PlannedJob
from treehouse.hooks.validate import validate_config
from treehouse.trust import TrustLevel, TrustStore, TrustStoreError, repository_identity

console = Console()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise SystemExit(1)


def _worktree_root(path: str | None) -> Path:
    try:
        return git_toplevel(Path(path) if path else Path.cwd())
    except GitError as e:
        _fail(f"Not inside a git worktree: {e}")


def manual_context(hook_name: str, root: Path) -> ExecutionContext:
    """Execution context for running a hook by hand in the worktree at root."""
    common = git_common_dir(root)
    try:
        branch = git_current_branch(root)
    except GitError:
        branch = None
    return ExecutionContext(
        hook_name=hook_name,
        command="hooks-run",
        project_root=common.parent,
        git_dir=common,
        source_worktree=root,
        worktree_path=root,
        branch_name=branch,
        repository_url=git_remote_url("origin", root),
    )


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    envvar="TREEHOUSE_LOG_LEVEL",
    help="Logging verbosity (default: WARNING)",
)
@click.pass_context
def main(ctx: click.Context, quiet: bool, log_level: str) -> None:
    """Treehouse - hooks for git worktree workflows."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@main.command()
def version() -> None:
    """Show version."""
    console.print(f"treehouse {__version__}")


# -----------------------------------------------------------------------------
# Hooks commands
# -----------------------------------------------------------------------------


@main.group()
def hooks() -> None:
    """Inspect and run repository hooks."""
    pass


def _load_or_fail(root: Path) -> LoadedConfig:
    try:
        loaded = load_merged_config(root)
    except ConfigError as e:
        _fail(str(e))
    if loaded is None:
        _fail(f"No hooks file found in {root}")
    return loaded


@hooks.command("list")
@click.option("--path", "path", type=click.Path(exists=True, file_okay=False), help="Worktree to inspect")
def hooks_list(path: str | None) -> None:
    """List configured hooks and their jobs."""
    root = _worktree_root(path)
    loaded = _load_or_fail(root)

    table = Table(title=f"Hooks in {loaded.primary.name}")
    table.add_column("Hook", style="cyan")
    table.add_column("Mode")
    table.add_column("Job")
    table.add_column("Action")
    table.add_column("Needs")
    table.add_column("Tags")

    for hook_name in HOOK_NAMES:
        hook = loaded.config.hooks.get(hook_name)
        if hook is None:
            continue
        if not hook.jobs:
            table.add_row(hook_name, hook.mode.value, "[dim](none)[/dim]", "", "", "")
        for i, job in enumerate(hook.jobs):
            table.add_row(
                hook_name if i == 0 else "",
                hook.mode.value if i == 0 else "",
                escape(job.name or "-"),
                escape(job.description or job.action.summary()),
                ", ".join(job.needs),
                ", ".join(job.tags),
            )
    console.print(table)


@hooks.command("validate")
@click.option("--path", "path", type=click.Path(exists=True, file_okay=False), help="Worktree to inspect")
def hooks_validate(path: str | None) -> None:
    """Validate the merged hooks configuration."""
    root = _worktree_root(path)
    loaded = _load_or_fail(root)
    result = validate_config(loaded.config)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    if not result.is_valid:
        for error in result.errors:
            console.print(f"[red]Validation error:[/red] {escape(error)}")
        raise SystemExit(1)

    n_hooks = len(loaded.config.hooks)
    n_jobs = sum(len(h.jobs) for h in loaded.config.hooks.values())
    console.print("[green]✓[/green] Hooks configuration is valid")
    console.print(f"  {n_hooks} hook(s), {n_jobs} job(s)")
    console.print(f"  sources: {', '.join(str(s.relative_to(root)) for s in loaded.sources)}")


@hooks.command("dump")
@click.option("--path", "path", type=click.Path(exists=True, file_okay=False), help="Worktree to inspect")
def hooks_dump(path: str | None) -> None:
    """Print the merged hooks configuration as YAML."""
    root = _worktree_root(path)
    loaded = _load_or_fail(root)
    click.echo(yaml.safe_dump(loaded.config.to_dict(), sort_keys=False), nl=False)


def _print_plan(planned: list[PlannedJob], indent: int = 0) -> None:
    pad = "  " * indent
    for job in planned:
        extra = []
        if job.needs:
            extra.append(f"needs: {', '.join(job.needs)}")
        if job.tags:
            extra.append(f"tags: {', '.join(job.tags)}")
        if job.interactive:
            extra.append("interactive")
        suffix = f" [dim]({escape('; '.join(extra))})[/dim]" if extra else ""
        console.print(f"{pad}- [cyan]{escape(job.name)}[/cyan]: {escape(job.action)}{suffix}")
        if job.children:
            _print_plan(job.children, indent + 1)


@hooks.command("run")
@click.argument("hook_name", type=click.Choice(HOOK_NAMES))
@click.option("--job", "job_name", help="Run only the named job")
@click.option("--tag", "tags", multiple=True, help="Run only jobs with this tag (repeatable)")
@click.option("--dry-run", is_flag=True, help="Show what would run without running it")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON")
@click.option("--path", "path", type=click.Path(exists=True, file_okay=False), help="Worktree to run in")
@click.pass_context
def hooks_run(
    click_ctx: click.Context,
    hook_name: str,
    job_name: str | None,
    tags: tuple[str, ...],
    dry_run: bool,
    as_json: bool,
    path: str | None,
) -> None:
    """Run a hook by hand in the current worktree.

    Manual runs do not consult the trust store.
    """
    root = _worktree_root(path)
    try:
        settings = get_config()
    except ConfigError as e:
        _fail(str(e))

    ctx = manual_context(hook_name, root)
    job_filter = JobFilter(job_name=job_name, tags=tags) if (job_name or tags) else None
    quiet = click_ctx.obj.get("quiet", False) or as_json
    hook_console = Console(stderr=True, quiet=True) if quiet else None
    orchestrator = HookOrchestrator(TrustStore(), settings, console=hook_console)

    try:
        if dry_run:
            planned = orchestrator.plan(ctx, job_filter)
            if not planned:
                console.print(f"[dim]{hook_name}: nothing to run[/dim]")
                return
            console.print(f"[bold]{hook_name}[/bold] would run:")
            _print_plan(planned)
            return
        verdict = orchestrator.run_manual(ctx, job_filter)
    except (ConfigError, JobNotFoundError) as e:
        _fail(str(e))

    if as_json:
        if verdict.run is not None:
            click.echo(verdict.run.to_json())
        else:
            click.echo(json.dumps({
                "hook_name": hook_name,
                "verdict": verdict.kind.value,
                "reason": verdict.reason,
            }))
        if verdict.failed:
            raise SystemExit(1)
        return

    if verdict.kind is VerdictKind.SKIPPED:
        console.print(f"[yellow]{hook_name} skipped:[/yellow] {escape(verdict.reason or '')}")
        return
    if verdict.kind is VerdictKind.SUCCESS:
        if not quiet:
            console.print(f"[green]✓[/green] {hook_name} succeeded")
        return

    for failure in verdict.failures:
        console.print(f"[red]✗ {escape(failure.name)}:[/red] {escape(failure.message or 'failed')}")
    if not verdict.failures:
        console.print(f"[red]✗ {hook_name}:[/red] {escape(verdict.reason or 'failed')}")
    raise SystemExit(1)


# -----------------------------------------------------------------------------
# Trust commands
# -----------------------------------------------------------------------------


@main.group()
def trust() -> None:
    """Control which repositories may run hooks automatically."""
    pass


def _identity(path: str | None) -> str:
    return repository_identity(Path(path) if path else Path.cwd())


def _set_trust(path: str | None, level: TrustLevel) -> None:
    identity = _identity(path)
    try:
        TrustStore().set_level(identity, level)
    except TrustStoreError as e:
        _fail(str(e))
    console.print(f"[green]Trust set to {level.value}[/green] for {escape(identity)}")


@trust.command("allow")
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False))
def trust_allow(path: str | None) -> None:
    """Run hooks of this repository without asking."""
    _set_trust(path, TrustLevel.ALLOW)


@trust.command("prompt")
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False))
def trust_prompt(path: str | None) -> None:
    """Ask before running hooks of this repository."""
    _set_trust(path, TrustLevel.PROMPT)


@trust.command("deny")
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False))
def trust_deny(path: str | None) -> None:
    """Never run hooks of this repository automatically."""
    _set_trust(path, TrustLevel.DENY)


@trust.command("reset")
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False))
@click.option("--all", "reset_all", is_flag=True, help="Forget every repository")
def trust_reset(path: str | None, reset_all: bool) -> None:
    """Forget the stored trust decision."""
    store = TrustStore()
    try:
        if reset_all:
            count = store.reset_all()
            console.print(f"Removed {count} trust entr{'y' if count == 1 else 'ies'}")
            return
        identity = _identity(path)
        if store.reset(identity):
            console.print(f"Trust reset for {escape(identity)}")
        else:
            console.print(f"[dim]No trust entry for {escape(identity)}[/dim]")
    except TrustStoreError as e:
        _fail(str(e))


@trust.command("status")
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False))
def trust_status(path: str | None) -> None:
    """Show the trust level of this repository."""
    identity = _identity(path)
    try:
        status = TrustStore().status(identity)
    except TrustStoreError as e:
        _fail(str(e))
    console.print(f"Repository: {escape(identity)}")
    if status.explicit and status.entry is not None:
        source = f"set {status.entry.granted_at} by {status.entry.granted_by}"
    elif status.pattern is not None:
        source = f"pattern {status.pattern}"
    else:
        source = "default"
    console.print(f"Trust level: [bold]{status.level.value}[/bold] ({escape(source)})")


@trust.command("list")
def trust_list() -> None:
    """List repositories with a stored trust decision."""
    store = TrustStore()
    try:
        entries = store.list_entries()
        patterns = store.list_patterns()
    except TrustStoreError as e:
        _fail(str(e))

    if not entries and not patterns:
        console.print("[dim]No trusted repositories[/dim]")
        return

    table = Table()
    table.add_column("Repository")
    table.add_column("Level")
    table.add_column("Granted")
    for identity, entry in entries:
        table.add_row(escape(identity), entry.level.value, entry.granted_at)
    for rule in patterns:
        table.add_row(escape(rule.pattern), rule.level.value, escape(rule.comment or "pattern"))
    console.print(table)


@trust.group("pattern")
def trust_pattern() -> None:
    """Glob rules that set the trust level of matching repositories."""
    pass


@trust_pattern.command("add")
@click.argument("pattern")
@click.argument("level", type=click.Choice([lvl.value for lvl in TrustLevel]))
@click.option("--comment", help="Note shown by 'trust list'")
def trust_pattern_add(pattern: str, level: str, comment: str | None) -> None:
    """Apply LEVEL to every repository whose git directory matches PATTERN."""
    try:
        TrustStore().add_pattern(pattern, TrustLevel(level), comment)
    except TrustStoreError as e:
        _fail(str(e))
    console.print(f"[green]Pattern {escape(pattern)} set to {level}[/green]")


@trust_pattern.command("remove")
@click.argument("pattern")
def trust_pattern_remove(pattern: str) -> None:
    """Delete a glob rule."""
    try:
        removed = TrustStore().remove_pattern(pattern)
    except TrustStoreError as e:
        _fail(str(e))
    if not removed:
        _fail(f"No pattern {pattern}")
    console.print(f"Pattern {escape(pattern)} removed")


if __name__ == "__main__":
    main()
