"""
pipeport - GitLab CI to GitHub Actions pipeline converter

Converts .gitlab-ci.yml pipelines into GitHub Actions workflows, with
custom transformers to override how steps, env values and runner labels
are converted.
"""

__version__ = "0.1.0"


__all__ = [
    "ConstructRegistry",
    "ConversionEngine",
    "ConversionResult",
    "OverrideLoader",
    "PipeportConfig",
    "convert_pipeline",
    "load_config",
    "load_overrides",
    "load_pipeline",
    "parse_pipeline",
    "render_workflow",
]

from .config import PipeportConfig, load_config
from .emitter import render_workflow
from .engine import ConversionEngine, ConversionResult, convert_pipeline
from .overrides import OverrideLoader, load_overrides
from .parser import load_pipeline, parse_pipeline
from .registry import ConstructRegistry
