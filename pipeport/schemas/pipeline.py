"""
Pipeline model - the parsed source pipeline.

Pipeline -> Job -> Step. All three are frozen; the conversion engine reads
them and builds a separate target model, so the source stays intact for
diagnostics after a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pipeport.errors import DuplicateIdentifierError, ParseError


class RunnerMarker(Enum):
    """Special runner selectors."""
    DEFAULT = "default"

    def __repr__(self) -> str:
        return f"<runner {self.value}>"


# Selector for jobs with no tags (the shared/untagged runner)
DEFAULT_RUNNER = RunnerMarker.DEFAULT

RunnerLabel = Union[str, RunnerMarker]


@dataclass(frozen=True)
class Step:
    """
    One convertible construct within a job.

    Attributes:
        identifier: Lookup key for transformers (e.g. "script", "artifacts.terraform")
        raw_value: Source payload, handed to transformers as-is
        position: Order within the job
    """
    identifier: str
    raw_value: Any = None
    position: int = 0

    def __post_init__(self):
        if not isinstance(self.identifier, str) or not self.identifier.strip():
            raise ParseError("Step identifier must be a non-empty string", construct=repr(self.identifier))


@dataclass(frozen=True)
class Job:
    """
    A source job: ordered steps plus job-level metadata.

    Attributes:
        name: Job name as written in the source pipeline
        stage: Stage the job belongs to
        steps: Steps ordered by position
        env: Job variables (name -> value)
        runner: Runner tags; empty means the default runner
        timeout_minutes: Job timeout, if set
        concurrency: Concurrency group (GitLab resource_group)
        needs: Explicit job dependencies; None means "use stage order"
        image: Container image
        allow_failure: Whether the job may fail without failing the pipeline
    """
    name: str
    stage: str = "test"
    steps: tuple[Step, ...] = field(default_factory=tuple)
    env: dict[str, str] = field(default_factory=dict)
    runner: tuple[str, ...] = field(default_factory=tuple)
    timeout_minutes: Optional[int] = None
    concurrency: Optional[str] = None
    needs: Optional[tuple[str, ...]] = None
    image: Optional[str] = None
    allow_failure: bool = False

    def __post_init__(self):
        identifiers = [s.identifier for s in self.steps]
        if len(identifiers) != len(set(identifiers)):
            duplicates = {i for i in identifiers if identifiers.count(i) > 1}
            raise DuplicateIdentifierError(self.name, duplicates)

    @property
    def runner_selector(self) -> Union[tuple[str, ...], RunnerMarker]:
        """Runner tags, or DEFAULT_RUNNER for untagged jobs."""
        return DEFAULT_RUNNER if not self.runner else self.runner

    def get_step(self, identifier: str) -> Optional[Step]:
        """Get a step by identifier."""
        for step in self.steps:
            if step.identifier == identifier:
                return step
        return None


@dataclass(frozen=True)
class Pipeline:
    """
    Top-level source pipeline.

    Attributes:
        name: Pipeline name (used for the workflow name and file name)
        stages: Declared stage order
        triggers: Source trigger names (e.g. "push", "merge_request_event")
        env: Pipeline-wide variables
        jobs: Jobs in source order
    """
    name: str
    stages: tuple[str, ...] = field(default_factory=tuple)
    triggers: tuple[str, ...] = field(default_factory=tuple)
    env: dict[str, str] = field(default_factory=dict)
    jobs: tuple[Job, ...] = field(default_factory=tuple)

    def get_job(self, name: str) -> Optional[Job]:
        """Get a job by name."""
        for job in self.jobs:
            if job.name == name:
                return job
        return None
