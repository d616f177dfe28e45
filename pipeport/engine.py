"""
Conversion engine - Transform a Pipeline into a TargetWorkflow.

For each job, in source order:
1. Remap the runner through the runner overrides (DEFAULT_RUNNER for untagged jobs)
2. Rewrite env values that have an env override (never adds variables)
3. For each step, in order: resolve its rule, invoke it on a copy of the
   raw payload, validate the result into a TargetStep

Unsupported constructs degrade to an UnsupportedStep placeholder plus a
notice. A rule that raises, or returns something that is not a step,
aborts the whole run: no partial workflow is returned.

The workflow is a pure function of (pipeline, registry, overrides);
converting twice yields identical content.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pipeport.errors import TransformExecutionError
from pipeport.overrides import OverrideTables
from pipeport.registry import ConstructRegistry, RuleKind
from pipeport.schemas import (
    DEFAULT_RUNNER,
    AnyTargetStep,
    Job,
    Pipeline,
    TargetJob,
    TargetStep,
    TargetWorkflow,
    UnsupportedStep,
)

logger = logging.getLogger(__name__)


# GitLab $CI_PIPELINE_SOURCE -> GitHub event
TRIGGER_EVENTS = {
    "push": "push",
    "merge_request_event": "pull_request",
    "web": "workflow_dispatch",
    "api": "workflow_dispatch",
    "trigger": "workflow_dispatch",
}

# Used when no source trigger maps to a GitHub event
FALLBACK_TRIGGER = "workflow_dispatch"

# Notice events
UNSUPPORTED_CONSTRUCT = "unsupported_construct"
OVERRIDE_APPLIED = "override_applied"
ENV_OVERRIDE_APPLIED = "env_override_applied"
RUNNER_OVERRIDE_APPLIED = "runner_override_applied"
UNSUPPORTED_TRIGGER = "unsupported_trigger"

JOB_ID_INVALID = re.compile(r"[^A-Za-z0-9_-]")


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Notice:
    """
    A non-fatal diagnostic recorded during conversion.

    Attributes:
        event: One of the notice event names above
        message: Human-readable description
        job: Source job name, if job-scoped
        identifier: Step identifier, env name or runner label involved
        timestamp: When the notice was recorded
    """
    event: str
    message: str
    job: Optional[str] = None
    identifier: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ConversionResult:
    """
    Output of a successful conversion run.

    Attributes:
        workflow: The converted workflow
        notices: Diagnostics in the order they were recorded
    """
    workflow: TargetWorkflow
    notices: tuple[Notice, ...] = field(default_factory=tuple)

    @property
    def unsupported(self) -> tuple[Notice, ...]:
        """Notices for constructs that became placeholders."""
        return tuple(n for n in self.notices if n.event == UNSUPPORTED_CONSTRUCT)

    def notices_for(self, event: str) -> tuple[Notice, ...]:
        return tuple(n for n in self.notices if n.event == event)


def make_job_ids(names: list[str]) -> dict[str, str]:
    """
    Map source job names to unique GitHub job ids.

    Invalid characters become "_", ids that do not start with a letter or
    "_" get a "job_" prefix, and collisions get a numeric suffix.
    """
    ids: dict[str, str] = {}
    used: set[str] = set()
    for name in names:
        base = JOB_ID_INVALID.sub("_", name) or "job"
        if not (base[0].isalpha() or base[0] == "_"):
            base = f"job_{base}"
        job_id = base
        n = 2
        while job_id in used:
            job_id = f"{base}_{n}"
            n += 1
        used.add(job_id)
        ids[name] = job_id
    return ids


class ConversionEngine:
    """
    Engine converting a Pipeline with a registry and override tables.

    Usage:
        registry = ConstructRegistry.create_default()
        tables = load_overrides(registry, ["transformers.py"])
        engine = ConversionEngine(registry, tables)
        result = engine.convert(pipeline)
    """

    def __init__(self, registry: ConstructRegistry, overrides: Optional[OverrideTables] = None):
        """
        Initialize the engine.

        Args:
            registry: Registry with default and custom rules
            overrides: Env/runner tables from a finished load phase
        """
        self._registry = registry
        self._overrides = overrides or OverrideTables()

    def convert(self, pipeline: Pipeline) -> ConversionResult:
        """
        Convert a pipeline.

        Args:
            pipeline: The parsed source pipeline (not modified)

        Returns:
            ConversionResult with the workflow and notices

        Raises:
            TransformExecutionError: If any rule raises
            InvalidTransformResultError: If any rule returns a non-step value
        """
        logger.info(
            f"Converting pipeline: {pipeline.name} ({len(pipeline.jobs)} jobs)",
            extra={"event": "conversion.start", "metadata": {"pipeline": pipeline.name}},
        )
        notices: list[Notice] = []

        job_ids = make_job_ids([job.name for job in pipeline.jobs])
        stage_jobs = self._jobs_by_stage(pipeline)

        jobs = tuple(
            self._convert_job(job, job_ids, stage_jobs, notices)
            for job in pipeline.jobs
        )

        workflow = TargetWorkflow(
            name=pipeline.name,
            triggers=self._convert_triggers(pipeline.triggers, notices),
            env=self._apply_env(pipeline.env, None, notices),
            jobs=jobs,
        )

        result = ConversionResult(workflow=workflow, notices=tuple(notices))
        logger.info(
            f"Converted pipeline: {pipeline.name} "
            f"({len(jobs)} jobs, {len(result.unsupported)} unsupported constructs)",
            extra={
                "event": "conversion.end",
                "metadata": {
                    "pipeline": pipeline.name,
                    "jobs": len(jobs),
                    "unsupported": len(result.unsupported),
                    "fingerprint": workflow.fingerprint(),
                },
            },
        )
        return result

    def _jobs_by_stage(self, pipeline: Pipeline) -> list[list[str]]:
        """Job names grouped by stage, in stage order (empty stages skipped)."""
        order = (".pre",) + pipeline.stages + (".post",)
        groups = []
        for stage in order:
            names = [job.name for job in pipeline.jobs if job.stage == stage]
            if names:
                groups.append(names)
        return groups

    def _convert_job(
        self,
        job: Job,
        job_ids: dict[str, str],
        stage_jobs: list[list[str]],
        notices: list[Notice],
    ) -> TargetJob:
        steps = tuple(self._convert_step(job, step.identifier, step.raw_value, notices) for step in job.steps)

        return TargetJob(
            job_id=job_ids[job.name],
            name=job.name,
            runner=self._apply_runner(job, notices),
            steps=steps,
            env=self._apply_env(job.env, job.name, notices),
            needs=self._resolve_needs(job, job_ids, stage_jobs),
            timeout_minutes=job.timeout_minutes,
            concurrency=job.concurrency,
            container=job.image,
            continue_on_error=job.allow_failure,
        )

    def _convert_step(
        self,
        job: Job,
        identifier: str,
        raw_value: Any,
        notices: list[Notice],
    ) -> AnyTargetStep:
        rule = self._registry.resolve(identifier)

        # Rules get a private copy so they cannot alter the source pipeline
        payload = copy.deepcopy(raw_value)
        try:
            result = rule.apply(identifier, payload)
        except (Exception, SystemExit) as e:
            logger.error(
                f"Transformer for '{identifier}' failed in job '{job.name}': {e}",
                extra={
                    "event": "transform.failed",
                    "metadata": {"job": job.name, "identifier": identifier, "kind": rule.kind.value},
                },
            )
            raise TransformExecutionError(identifier, e, job=job.name) from e

        if isinstance(result, UnsupportedStep):
            message = f"'{identifier}' in job '{job.name}' has no transformer; left as a placeholder"
            logger.warning(
                message,
                extra={
                    "event": "construct.unsupported",
                    "metadata": {"job": job.name, "identifier": identifier},
                },
            )
            notices.append(Notice(UNSUPPORTED_CONSTRUCT, message, job=job.name, identifier=identifier))
            return result

        step = TargetStep.from_mapping(identifier, result)

        if rule.kind == RuleKind.CUSTOM:
            message = f"Custom transformer applied to '{identifier}' in job '{job.name}'"
            logger.info(
                message,
                extra={
                    "event": "override.applied",
                    "metadata": {"job": job.name, "identifier": identifier, "origin": rule.origin},
                },
            )
            notices.append(Notice(OVERRIDE_APPLIED, message, job=job.name, identifier=identifier))
        return step

    def _apply_env(
        self,
        env: dict[str, str],
        job_name: Optional[str],
        notices: list[Notice],
    ) -> dict[str, str]:
        """New env mapping with overridden values; never adds names."""
        result: dict[str, str] = {}
        scope = f"job '{job_name}'" if job_name else "workflow env"
        for name, value in env.items():
            if name in self._overrides.env:
                result[name] = self._overrides.env[name]
                message = f"Env override applied to {name} in {scope}"
                logger.info(
                    message,
                    extra={
                        "event": "env_override.applied",
                        "metadata": {"job": job_name, "name": name},
                    },
                )
                notices.append(Notice(ENV_OVERRIDE_APPLIED, message, job=job_name, identifier=name))
            else:
                result[name] = value
        return result

    def _apply_runner(self, job: Job, notices: list[Notice]) -> tuple[str, ...]:
        """Remapped runner labels; empty tuple keeps the default runner."""
        table = self._overrides.runner
        selector = job.runner_selector

        if selector is DEFAULT_RUNNER:
            if DEFAULT_RUNNER not in table:
                return ()
            target = table[DEFAULT_RUNNER]
            self._runner_notice(job, "default runner", target, notices)
            return (target,)

        labels: list[str] = []
        for label in selector:
            target = table.get(label)
            if target is None:
                target = label
            else:
                self._runner_notice(job, label, target, notices)
            if target not in labels:
                labels.append(target)
        return tuple(labels)

    def _runner_notice(self, job: Job, source: str, target: str, notices: list[Notice]) -> None:
        message = f"Runner override applied in job '{job.name}': {source} -> {target}"
        logger.info(
            message,
            extra={
                "event": "runner_override.applied",
                "metadata": {"job": job.name, "source": source, "target": target},
            },
        )
        notices.append(Notice(RUNNER_OVERRIDE_APPLIED, message, job=job.name, identifier=source))

    def _resolve_needs(
        self,
        job: Job,
        job_ids: dict[str, str],
        stage_jobs: list[list[str]],
    ) -> tuple[str, ...]:
        """Explicit needs, else every job of the nearest earlier stage."""
        if job.needs is not None:
            needs = []
            for name in job.needs:
                if name in job_ids:
                    needs.append(job_ids[name])
                else:
                    logger.warning(f"Job '{job.name}' needs unknown job '{name}'; dropping it")
            return tuple(needs)

        previous: list[str] = []
        for names in stage_jobs:
            if job.name in names:
                return tuple(job_ids[n] for n in previous)
            previous = names
        return ()

    def _convert_triggers(self, triggers: tuple[str, ...], notices: list[Notice]) -> tuple[str, ...]:
        events: list[str] = []
        for trigger in triggers:
            event = TRIGGER_EVENTS.get(trigger)
            if event is None:
                message = f"Pipeline trigger '{trigger}' has no GitHub Actions equivalent"
                logger.warning(message, extra={"event": "trigger.unsupported", "metadata": {"trigger": trigger}})
                notices.append(Notice(UNSUPPORTED_TRIGGER, message, identifier=trigger))
            elif event not in events:
                events.append(event)
        return tuple(events) or (FALLBACK_TRIGGER,)


def convert_pipeline(
    pipeline: Pipeline,
    registry: Optional[ConstructRegistry] = None,
    overrides: Optional[OverrideTables] = None,
) -> ConversionResult:
    """
    Convenience function to convert with a fresh default registry.

    Args:
        pipeline: The parsed source pipeline
        registry: Registry to use; defaults to ConstructRegistry.create_default()
        overrides: Env/runner override tables

    Returns:
        The ConversionResult
    """
    registry = registry or ConstructRegistry.create_default()
    return ConversionEngine(registry, overrides).convert(pipeline)
