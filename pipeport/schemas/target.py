"""
Target model - a converted GitHub Actions workflow, prior to YAML emission.

TargetWorkflow -> TargetJob -> TargetStep | UnsupportedStep

TargetStep.from_mapping() is the structural contract every transformer
result must satisfy: a mapping with exactly one of "uses"/"run", plus the
optional GitHub step keys listed in STEP_KEYS.
"""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from pipeport.errors import InvalidTransformResultError


# GitHub-hosted runner used when a job has no runner labels
DEFAULT_RUNS_ON = "ubuntu-latest"

# Allowed step keys, in emission order
STEP_KEYS = (
    "name",
    "id",
    "if",
    "uses",
    "run",
    "shell",
    "working-directory",
    "with",
    "env",
    "continue-on-error",
    "timeout-minutes",
)


def _scalar_to_str(identifier: str, key: str, value: Any) -> str:
    """Stringify a with/env value the way GitHub reads it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (list, tuple)) and all(
        isinstance(v, (str, int, float)) and not isinstance(v, bool) for v in value
    ):
        return "\n".join(str(v) for v in value)
    raise InvalidTransformResultError(
        identifier, f"'{key}' values must be scalars, got {type(value).__name__}"
    )


def _string_mapping(identifier: str, key: str, value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise InvalidTransformResultError(
            identifier, f"'{key}' must be a mapping, got {type(value).__name__}"
        )
    result = {}
    for k, v in value.items():
        if not isinstance(k, str) or not k:
            raise InvalidTransformResultError(identifier, f"'{key}' keys must be non-empty strings")
        result[k] = _scalar_to_str(identifier, f"{key}.{k}", v)
    return result


@dataclass(frozen=True)
class TargetStep:
    """
    A converted GitHub Actions step.

    Exactly one of uses/run is set.

    Attributes:
        source_identifier: Identifier of the source step this came from
        name, id, if_, uses, run, shell, working_directory, with_, env,
        continue_on_error, timeout_minutes: GitHub step keys
    """
    source_identifier: str
    uses: Optional[str] = None
    run: Optional[str] = None
    name: Optional[str] = None
    id: Optional[str] = None
    if_: Optional[str] = None
    shell: Optional[str] = None
    working_directory: Optional[str] = None
    with_: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False
    timeout_minutes: Optional[int] = None

    def __post_init__(self):
        if (self.uses is None) == (self.run is None):
            raise InvalidTransformResultError(
                self.source_identifier, "step must have exactly one of 'uses' or 'run'"
            )

    @classmethod
    def from_mapping(cls, identifier: str, value: Any) -> "TargetStep":
        """
        Validate a transformer result and build a TargetStep.

        Args:
            identifier: Identifier of the step being converted (for errors)
            value: The transformer's return value

        Returns:
            The validated TargetStep

        Raises:
            InvalidTransformResultError: If value does not have a step's shape
        """
        if not isinstance(value, Mapping):
            raise InvalidTransformResultError(
                identifier, f"expected a mapping, got {type(value).__name__}"
            )

        for key in value:
            if not isinstance(key, str):
                raise InvalidTransformResultError(identifier, f"step keys must be strings, got {key!r}")
        unknown = [k for k in value if k not in STEP_KEYS]
        if unknown:
            raise InvalidTransformResultError(identifier, f"unknown step keys: {sorted(unknown)}")

        has_uses = "uses" in value
        has_run = "run" in value
        if has_uses == has_run:
            raise InvalidTransformResultError(identifier, "step must have exactly one of 'uses' or 'run'")

        action_key = "uses" if has_uses else "run"
        action = value[action_key]
        if not isinstance(action, str) or not action.strip():
            raise InvalidTransformResultError(identifier, f"'{action_key}' must be a non-empty string")

        for key in ("name", "id", "if", "shell", "working-directory"):
            if key in value and not isinstance(value[key], str):
                raise InvalidTransformResultError(identifier, f"'{key}' must be a string")

        continue_on_error = value.get("continue-on-error", False)
        if not isinstance(continue_on_error, bool):
            raise InvalidTransformResultError(identifier, "'continue-on-error' must be a boolean")

        timeout = value.get("timeout-minutes")
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0):
            raise InvalidTransformResultError(identifier, "'timeout-minutes' must be a positive integer")

        return cls(
            source_identifier=identifier,
            uses=value.get("uses"),
            run=value.get("run"),
            name=value.get("name"),
            id=value.get("id"),
            if_=value.get("if"),
            shell=value.get("shell"),
            working_directory=value.get("working-directory"),
            with_=_string_mapping(identifier, "with", value["with"]) if "with" in value else {},
            env=_string_mapping(identifier, "env", value["env"]) if "env" in value else {},
            continue_on_error=continue_on_error,
            timeout_minutes=timeout,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a GitHub step mapping (fixed key order)."""
        values = {
            "name": self.name,
            "id": self.id,
            "if": self.if_,
            "uses": self.uses,
            "run": self.run,
            "shell": self.shell,
            "working-directory": self.working_directory,
            "with": dict(self.with_) or None,
            "env": dict(self.env) or None,
            "continue-on-error": self.continue_on_error or None,
            "timeout-minutes": self.timeout_minutes,
        }
        return {k: values[k] for k in STEP_KEYS if values[k] is not None}


@dataclass(frozen=True)
class UnsupportedStep:
    """
    Placeholder for a construct no rule could convert.

    Rendered as a comment by the emitter; never aborts a run.
    """
    identifier: str
    raw_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"unsupported": self.identifier}


AnyTargetStep = Union[TargetStep, UnsupportedStep]


@dataclass(frozen=True)
class TargetJob:
    """
    A converted GitHub Actions job.

    Attributes:
        job_id: GitHub job id (key under "jobs")
        name: Display name (the source job name)
        runner: runs-on labels; empty means the default runner
        steps: Converted steps in source order
        env: Job env after overrides
        needs: Job ids this job depends on
        timeout_minutes: Job timeout
        concurrency: Concurrency group
        container: Container image
        continue_on_error: Allow failure
    """
    job_id: str
    name: str
    runner: tuple[str, ...] = field(default_factory=tuple)
    steps: tuple[AnyTargetStep, ...] = field(default_factory=tuple)
    env: dict[str, str] = field(default_factory=dict)
    needs: tuple[str, ...] = field(default_factory=tuple)
    timeout_minutes: Optional[int] = None
    concurrency: Optional[str] = None
    container: Optional[str] = None
    continue_on_error: bool = False

    @property
    def uses_default_runner(self) -> bool:
        return not self.runner

    def runs_on(self, default_runner: str = DEFAULT_RUNS_ON) -> Union[str, list[str]]:
        """runs-on value: a single label, a label list, or the default runner."""
        if self.uses_default_runner:
            return default_runner
        if len(self.runner) == 1:
            return self.runner[0]
        return list(self.runner)

    def get_step(self, identifier: str) -> Optional[AnyTargetStep]:
        """Get a converted step by its source identifier."""
        for step in self.steps:
            source = step.identifier if isinstance(step, UnsupportedStep) else step.source_identifier
            if source == identifier:
                return step
        return None

    def to_dict(
        self,
        default_runner: str = DEFAULT_RUNS_ON,
        render_step: Optional[Callable[[AnyTargetStep], Any]] = None,
    ) -> dict[str, Any]:
        """Serialize to a GitHub job mapping (fixed key order)."""
        render_step = render_step or (lambda s: s.to_dict())
        data: dict[str, Any] = {"name": self.name, "runs-on": self.runs_on(default_runner)}
        if self.needs:
            data["needs"] = list(self.needs)
        if self.container:
            data["container"] = self.container
        if self.concurrency:
            data["concurrency"] = {"group": self.concurrency}
        if self.timeout_minutes is not None:
            data["timeout-minutes"] = self.timeout_minutes
        if self.continue_on_error:
            data["continue-on-error"] = True
        if self.env:
            data["env"] = dict(self.env)
        data["steps"] = [render_step(s) for s in self.steps]
        return data


@dataclass(frozen=True)
class TargetWorkflow:
    """
    A converted GitHub Actions workflow.

    Attributes:
        name: Workflow name
        triggers: GitHub events ("on")
        env: Workflow-level env
        jobs: Jobs in source order
    """
    name: str
    triggers: tuple[str, ...] = field(default_factory=tuple)
    env: dict[str, str] = field(default_factory=dict)
    jobs: tuple[TargetJob, ...] = field(default_factory=tuple)

    def get_job(self, job_id: str) -> Optional[TargetJob]:
        """Get a job by GitHub job id."""
        for job in self.jobs:
            if job.job_id == job_id:
                return job
        return None

    def to_dict(
        self,
        default_runner: str = DEFAULT_RUNS_ON,
        render_step: Optional[Callable[[AnyTargetStep], Any]] = None,
    ) -> dict[str, Any]:
        """Serialize to a GitHub workflow mapping (fixed key order)."""
        data: dict[str, Any] = {"name": self.name, "on": list(self.triggers)}
        if self.env:
            data["env"] = dict(self.env)
        data["jobs"] = {
            job.job_id: job.to_dict(default_runner, render_step) for job in self.jobs
        }
        return data

    def fingerprint(self) -> str:
        """
        SHA256 of the workflow content.

        Uses canonical JSON (sorted keys, compact) so identical conversions
        hash identically.
        """
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
