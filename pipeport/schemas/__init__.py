"""
pipeport.schemas - Data structures for the conversion layer.

Pipeline -> (ConversionEngine) -> TargetWorkflow

Lifecycle:
1. Pipeline: Parsed GitLab CI pipeline (jobs, steps, variables, runner tags)
2. TargetWorkflow: Converted GitHub Actions workflow, ready for the emitter

Both trees are immutable; conversion never edits the source pipeline.
"""

from .pipeline import (
    DEFAULT_RUNNER,
    Job,
    Pipeline,
    RunnerLabel,
    RunnerMarker,
    Step,
)
from .target import (
    DEFAULT_RUNS_ON,
    STEP_KEYS,
    AnyTargetStep,
    TargetJob,
    TargetStep,
    TargetWorkflow,
    UnsupportedStep,
)

__all__ = [
    # Pipeline
    "DEFAULT_RUNNER",
    "Job",
    "Pipeline",
    "RunnerLabel",
    "RunnerMarker",
    "Step",
    # Target
    "DEFAULT_RUNS_ON",
    "STEP_KEYS",
    "AnyTargetStep",
    "TargetJob",
    "TargetStep",
    "TargetWorkflow",
    "UnsupportedStep",
]
