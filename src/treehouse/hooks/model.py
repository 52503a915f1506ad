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

"""Hook definitions - dataclasses for the YAML hooks file.

A hooks file maps lifecycle hook names to a HookDef. Each HookDef holds an
ordered list of JobDef, and every job carries exactly one action:

    hooks:
      worktree-post-create:
        parallel: true
        jobs:
          - name: install
            run: npm ci
          - name: build
            run: npm run build
            needs: [install]
          - name: lint
            group:
              piped: true
              jobs:
                - run: npm run lint
                - run: npm run typecheck

Parsing is strict: unknown keys, unknown hook names and malformed values
raise ConfigValidationError. Cross-job checks (needs resolution, cycles,
mode exclusivity) live in ``treehouse.hooks.validate``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from treehouse.config import ConfigValidationError
from treehouse.constants import DEFAULT_SOURCE_DIR, HOOK_NAMES

FILE_KEYS = (
    "min_version",
    "colors",
    "no_tty",
    "rc",
    "output",
    "extends",
    "source_dir",
    "source_dir_local",
    "hooks",
)
HOOK_KEYS = (
    "parallel",
    "piped",
    "follow",
    "skip",
    "only",
    "exclude_tags",
    "exclude",
    "timeout",
    "fail_mode",
    "jobs",
    "commands",
)
JOB_KEYS = (
    "name",
    "description",
    "run",
    "script",
    "runner",
    "args",
    "group",
    "root",
    "tags",
    "skip",
    "only",
    "env",
    "fail_text",
    "interactive",
    "priority",
    "needs",
)
# Legacy ``commands:`` entries accept a subset of the job keys
COMMAND_KEYS = ("run", "script", "runner", "args", "root", "tags", "skip", "only", "env", "fail_text")
ACTION_KEYS = ("run", "script", "group")
NAMED_CONDITIONS = ("merge", "rebase")
RULE_KEYS = ("ref", "env", "run", "desc")


class ExecutionMode(Enum):
    PARALLEL = "parallel"
    PIPED = "piped"
    FOLLOW = "follow"


class FailMode(Enum):
    ABORT = "abort"
    WARN = "warn"


def _check_keys(data: Any, allowed: tuple[str, ...], where: str) -> dict:
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{where}: expected a mapping, got {type(data).__name__}")
    unknown = set(data) - set(allowed)
    if unknown:
        raise ConfigValidationError(
            f"Unknown fields in {where}: {', '.join(sorted(map(str, unknown)))}"
        )
    return data


def _opt(data: dict, key: str, types: type | tuple[type, ...], where: str) -> Any:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (types if isinstance(types, tuple) else (types,)):
        raise ConfigValidationError(f"{where}.{key}: expected {_type_names(types)}, got bool")
    if not isinstance(value, types):
        raise ConfigValidationError(
            f"{where}.{key}: expected {_type_names(types)}, got {type(value).__name__}"
        )
    return value


def _type_names(types: type | tuple[type, ...]) -> str:
    if isinstance(types, tuple):
        return " or ".join(t.__name__ for t in types)
    return types.__name__


def _str_list(data: dict, key: str, where: str) -> list[str] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigValidationError(f"{where}.{key}: expected a list of strings")
    return list(value)


def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NamedRule:
    """Repository-state condition: ``merge`` or ``rebase``."""

    name: str
    desc: str | None = None


@dataclass(frozen=True)
class RefRule:
    """Glob matched against the current branch name."""

    pattern: str
    desc: str | None = None


@dataclass(frozen=True)
class EnvRule:
    """Environment variable that must be truthy."""

    var: str
    desc: str | None = None


@dataclass(frozen=True)
class RunRule:
    """Shell command whose exit status 0 means the condition holds."""

    command: str
    desc: str | None = None


Rule = Union[NamedRule, RefRule, EnvRule, RunRule]


@dataclass(frozen=True)
class Condition:
    """A parsed ``skip`` or ``only`` value.

    Either a boolean literal or a tuple of rules. A bare string is shorthand
    for a single env rule.
    """

    literal: bool | None = None
    rules: tuple[Rule, ...] = ()
    raw: Any = field(default=None, compare=False)

    @classmethod
    def parse(cls, raw: Any, where: str) -> Condition:
        if isinstance(raw, bool):
            return cls(literal=raw, raw=raw)
        if isinstance(raw, str):
            return cls(rules=(EnvRule(raw),), raw=raw)
        if isinstance(raw, list):
            rules: list[Rule] = []
            for i, item in enumerate(raw):
                rules.extend(_parse_rule(item, f"{where}[{i}]"))
            return cls(rules=tuple(rules), raw=raw)
        raise ConfigValidationError(
            f"{where}: expected a bool, an environment variable name or a list of rules"
        )

    def to_raw(self) -> Any:
        return self.raw


def _parse_rule(item: Any, where: str) -> list[Rule]:
    if isinstance(item, str):
        if item not in NAMED_CONDITIONS:
            raise ConfigValidationError(
                f"{where}: unknown condition '{item}'. "
                f"Must be one of: {', '.join(NAMED_CONDITIONS)}"
            )
        return [NamedRule(item)]
    data = _check_keys(item, RULE_KEYS, where)
    desc = _opt(data, "desc", str, where)
    rules: list[Rule] = []
    if (ref := _opt(data, "ref", str, where)) is not None:
        rules.append(RefRule(ref, desc))
    if (env := _opt(data, "env", str, where)) is not None:
        rules.append(EnvRule(env, desc))
    if (run := _opt(data, "run", str, where)) is not None:
        rules.append(RunRule(run, desc))
    if not rules:
        raise ConfigValidationError(f"{where}: rule needs one of ref, env or run")
    return rules


def _condition(data: dict, key: str, where: str) -> Condition | None:
    if data.get(key) is None:
        return None
    return Condition.parse(data[key], f"{where}.{key}")


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass
class RunAction:
    command: str

    def summary(self) -> str:
        return self.command


@dataclass
class ScriptAction:
    path: str
    runner: str | None = None
    args: str | None = None

    def summary(self) -> str:
        parts = [p for p in (self.runner, self.path, self.args) if p]
        return " ".join(parts)


@dataclass
class GroupAction:
    hook: HookDef

    def summary(self) -> str:
        return f"group of {len(self.hook.jobs)} job(s), {self.hook.mode.value}"


Action = Union[RunAction, ScriptAction, GroupAction]


# ---------------------------------------------------------------------------
# Jobs and hooks
# ---------------------------------------------------------------------------


@dataclass
class JobDef:
    action: Action
    name: str | None = None
    description: str | None = None
    root: str | None = None
    tags: list[str] = field(default_factory=list)
    skip: Condition | None = None
    only: Condition | None = None
    env: dict[str, str] = field(default_factory=dict)
    fail_text: str | None = None
    interactive: bool = False
    priority: int | None = None
    needs: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        """Name used in output: the job name, else the action summary."""
        return self.name or self.action.summary()

    def requires_exclusive(self) -> bool:
        """True if this job, or any job nested inside it, needs the terminal."""
        if self.interactive:
            return True
        if isinstance(self.action, GroupAction):
            return any(j.requires_exclusive() for j in self.action.hook.jobs)
        return False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.name is not None:
            result["name"] = self.name
        if self.description is not None:
            result["description"] = self.description
        if isinstance(self.action, RunAction):
            result["run"] = self.action.command
        elif isinstance(self.action, ScriptAction):
            result["script"] = self.action.path
            if self.action.runner is not None:
                result["runner"] = self.action.runner
            if self.action.args is not None:
                result["args"] = self.action.args
        else:
            result["group"] = self.action.hook.to_dict()
        if self.root is not None:
            result["root"] = self.root
        if self.tags:
            result["tags"] = list(self.tags)
        if self.skip is not None:
            result["skip"] = self.skip.to_raw()
        if self.only is not None:
            result["only"] = self.only.to_raw()
        if self.env:
            result["env"] = dict(self.env)
        if self.fail_text is not None:
            result["fail_text"] = self.fail_text
        if self.interactive:
            result["interactive"] = True
        if self.priority is not None:
            result["priority"] = self.priority
        if self.needs:
            result["needs"] = list(self.needs)
        return result

    @classmethod
    def from_dict(
        cls, data: Any, where: str = "job", name: str | None = None,
        allowed: tuple[str, ...] = JOB_KEYS,
    ) -> JobDef:
        data = _check_keys(data, allowed, where)

        present = [k for k in ACTION_KEYS if data.get(k) is not None]
        if len(present) != 1:
            found = ", ".join(present) if present else "none"
            raise ConfigValidationError(
                f"{where}: a job needs exactly one of run, script or group (found: {found})"
            )

        action: Action
        if "run" in present:
            action = RunAction(_opt(data, "run", str, where))
        elif "script" in present:
            action = ScriptAction(
                path=_opt(data, "script", str, where),
                runner=_opt(data, "runner", str, where),
                args=_opt(data, "args", str, where),
            )
        else:
            action = GroupAction(HookDef.from_dict(data["group"], f"{where}.group"))
        if not isinstance(action, ScriptAction):
            stray = [k for k in ("runner", "args") if data.get(k) is not None]
            if stray:
                raise ConfigValidationError(
                    f"{where}: {', '.join(stray)} only apply to script jobs"
                )

        env_raw = data.get("env") or {}
        if not isinstance(env_raw, dict):
            raise ConfigValidationError(f"{where}.env: expected a mapping")
        env = {str(k): _env_value(v) for k, v in env_raw.items()}

        job_name = name if name is not None else _opt(data, "name", str, where)
        if job_name is not None and not job_name.strip():
            raise ConfigValidationError(f"{where}.name: must not be empty")

        return cls(
            action=action,
            name=job_name,
            description=_opt(data, "description", str, where),
            root=_opt(data, "root", str, where),
            tags=_str_list(data, "tags", where) or [],
            skip=_condition(data, "skip", where),
            only=_condition(data, "only", where),
            env=env,
            fail_text=_opt(data, "fail_text", str, where),
            interactive=bool(_opt(data, "interactive", bool, where)),
            priority=_opt(data, "priority", int, where),
            needs=_str_list(data, "needs", where) or [],
        )


@dataclass
class HookDef:
    parallel: bool | None = None
    piped: bool | None = None
    follow: bool | None = None
    skip: Condition | None = None
    only: Condition | None = None
    exclude_tags: list[str] | None = None
    exclude: list[str] | None = None
    timeout: int | None = None
    fail_mode: str | None = None
    jobs: list[JobDef] = field(default_factory=list)

    @property
    def mode(self) -> ExecutionMode:
        if self.piped:
            return ExecutionMode.PIPED
        if self.follow:
            return ExecutionMode.FOLLOW
        # parallel: false on its own means one job at a time, stop on failure
        if self.parallel is False:
            return ExecutionMode.PIPED
        return ExecutionMode.PARALLEL

    def mode_flags(self) -> list[str]:
        """Names of the mode flags explicitly set to true."""
        return [
            flag for flag in ("parallel", "piped", "follow")
            if getattr(self, flag) is True
        ]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for flag in ("parallel", "piped", "follow"):
            if getattr(self, flag) is not None:
                result[flag] = getattr(self, flag)
        if self.skip is not None:
            result["skip"] = self.skip.to_raw()
        if self.only is not None:
            result["only"] = self.only.to_raw()
        if self.exclude_tags is not None:
            result["exclude_tags"] = list(self.exclude_tags)
        if self.exclude is not None:
            result["exclude"] = list(self.exclude)
        if self.timeout is not None:
            result["timeout"] = self.timeout
        if self.fail_mode is not None:
            result["fail_mode"] = self.fail_mode
        result["jobs"] = [job.to_dict() for job in self.jobs]
        return result

    @classmethod
    def from_dict(cls, data: Any, where: str = "hook") -> HookDef:
        if data is None:
            data = {}
        data = _check_keys(data, HOOK_KEYS, where)

        jobs_raw = data.get("jobs") or []
        if not isinstance(jobs_raw, list):
            raise ConfigValidationError(f"{where}.jobs: expected a list")
        jobs = [JobDef.from_dict(j, f"{where}.jobs[{i}]") for i, j in enumerate(jobs_raw)]

        commands_raw = data.get("commands") or {}
        if not isinstance(commands_raw, dict):
            raise ConfigValidationError(f"{where}.commands: expected a mapping")
        for cmd_name, body in commands_raw.items():
            jobs.append(JobDef.from_dict(
                body or {}, f"{where}.commands.{cmd_name}",
                name=str(cmd_name), allowed=COMMAND_KEYS,
            ))

        seen: set[str] = set()
        for job in jobs:
            if job.name is None:
                continue
            if job.name in seen:
                raise ConfigValidationError(f"{where}: duplicate job name '{job.name}'")
            seen.add(job.name)

        return cls(
            parallel=_opt(data, "parallel", bool, where),
            piped=_opt(data, "piped", bool, where),
            follow=_opt(data, "follow", bool, where),
            skip=_condition(data, "skip", where),
            only=_condition(data, "only", where),
            exclude_tags=_str_list(data, "exclude_tags", where),
            exclude=_str_list(data, "exclude", where),
            timeout=_opt(data, "timeout", int, where),
            fail_mode=_opt(data, "fail_mode", str, where),
            jobs=jobs,
        )


@dataclass
class HooksFile:
    """One hooks file, or the result of merging several."""

    min_version: str | None = None
    colors: bool | None = None
    no_tty: bool | None = None
    rc: str | None = None
    output: bool | list[str] | None = None
    extends: list[str] = field(default_factory=list)
    source_dir: str | None = None
    source_dir_local: str | None = None
    hooks: dict[str, HookDef] = field(default_factory=dict)

    @property
    def effective_source_dir(self) -> str:
        return self.source_dir or DEFAULT_SOURCE_DIR

    def output_enabled(self, hook_name: str) -> bool:
        """Whether job output of hook_name is shown."""
        if self.output is None or self.output is True:
            return True
        if self.output is False:
            return False
        return hook_name in self.output

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in ("min_version", "colors", "no_tty", "rc", "output"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.extends:
            result["extends"] = list(self.extends)
        for key in ("source_dir", "source_dir_local"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result["hooks"] = {name: hook.to_dict() for name, hook in self.hooks.items()}
        return result

    @classmethod
    def from_dict(cls, data: Any, source: str = "config") -> HooksFile:
        if data is None:
            data = {}
        data = _check_keys(data, FILE_KEYS, source)

        output = data.get("output")
        if output is not None and not isinstance(output, bool):
            output = _str_list(data, "output", source)

        hooks_raw = data.get("hooks") or {}
        if not isinstance(hooks_raw, dict):
            raise ConfigValidationError(f"{source}.hooks: expected a mapping")
        hooks = {}
        for hook_name, hook_data in hooks_raw.items():
            if hook_name not in HOOK_NAMES:
                raise ConfigValidationError(
                    f"{source}: unknown hook '{hook_name}'. "
                    f"Must be one of: {', '.join(HOOK_NAMES)}"
                )
            hooks[hook_name] = HookDef.from_dict(hook_data, f"{source}: {hook_name}")

        min_version = data.get("min_version")
        if min_version is not None and not isinstance(min_version, str):
            # YAML reads 1.2 as a float
            min_version = str(min_version)

        return cls(
            min_version=min_version,
            colors=_opt(data, "colors", bool, source),
            no_tty=_opt(data, "no_tty", bool, source),
            rc=_opt(data, "rc", str, source),
            output=output,
            extends=_str_list(data, "extends", source) or [],
            source_dir=_opt(data, "source_dir", str, source),
            source_dir_local=_opt(data, "source_dir_local", str, source),
            hooks=hooks,
        )
