"""
GitLab CI parser - Load a .gitlab-ci.yml into the pipeline model.

The parser resolves:
- !reference tags
- extends (single or list, recursive, deep-merged)
- default: and legacy global keywords
- workflow:rules into trigger names

Each remaining job keyword becomes a Step whose identifier is the keyword
(artifacts reports become "artifacts.<kind>"), so transformers can target
any construct by name. Metadata keywords (stage, variables, tags, timeout,
needs, ...) land on the Job itself.
"""

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml

from pipeport.errors import ParseError
from pipeport.schemas import Job, Pipeline, Step
from pipeport.utils import parse_duration_minutes

logger = logging.getLogger(__name__)


# Top-level keywords that are never jobs
GLOBAL_KEYWORDS = {
    "stages",
    "variables",
    "default",
    "workflow",
    "include",
    "image",
    "services",
    "before_script",
    "after_script",
    "cache",
    "tags",
    "timeout",
}

# Keywords a job inherits from default: (or legacy globals) when unset
DEFAULT_KEYWORDS = (
    "image",
    "services",
    "before_script",
    "after_script",
    "cache",
    "artifacts",
    "tags",
    "timeout",
    "interruptible",
    "retry",
)

# Job keywords consumed as job metadata, never steps
METADATA_KEYWORDS = {
    "stage",
    "variables",
    "tags",
    "timeout",
    "resource_group",
    "needs",
    "image",
    "extends",
    "allow_failure",
    "interruptible",
    "dependencies",
    "inherit",
}

# Step keywords emitted first, in this order; others follow in source order
CANONICAL_STEP_ORDER = ("services", "cache", "before_script", "script", "after_script", "artifacts")

# Keywords an empty value switches off (e.g. `cache: []` to drop an inherited cache)
DISABLEABLE_KEYWORDS = ("services", "cache", "before_script", "after_script", "artifacts")

DEFAULT_STAGES = ("build", "test", "deploy")
DEFAULT_TRIGGERS = ("push", "merge_request_event")

PIPELINE_SOURCE_PATTERN = re.compile(r"\$CI_PIPELINE_SOURCE\s*==\s*[\"']([a-z_]+)[\"']")

MAX_REFERENCE_DEPTH = 10


class _Reference:
    """Unresolved !reference [job, key, ...] tag."""

    def __init__(self, path: tuple[str, ...]):
        self.path = path


class GitLabLoader(yaml.SafeLoader):
    """SafeLoader that understands GitLab's !reference tag."""
    pass


def _construct_reference(loader: yaml.SafeLoader, node: yaml.Node) -> _Reference:
    path = loader.construct_sequence(node)
    return _Reference(tuple(str(p) for p in path))


GitLabLoader.add_constructor("!reference", _construct_reference)


def _resolve_references(value: Any, document: dict, location: str, depth: int = 0) -> Any:
    """Replace every !reference in value with the referenced content."""
    if depth > MAX_REFERENCE_DEPTH:
        raise ParseError("!reference nesting too deep", location=location)

    if isinstance(value, _Reference):
        target: Any = document
        for part in value.path:
            if not isinstance(target, Mapping) or part not in target:
                raise ParseError(
                    "!reference target not found",
                    construct="!reference " + str(list(value.path)),
                    location=location,
                )
            target = target[part]
        return _resolve_references(target, document, location, depth + 1)
    if isinstance(value, dict):
        return {k: _resolve_references(v, document, location, depth) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_references(v, document, location, depth) for v in value]
    return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge mappings recursively; non-mapping values in override win."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _parse_variables(value: Any, construct: str, location: str) -> dict[str, str]:
    """Parse a variables: block (scalars or {value: ...} mappings)."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ParseError("variables must be a mapping", construct=construct, location=location)

    env: dict[str, str] = {}
    for name, raw in value.items():
        if isinstance(raw, Mapping):
            raw = raw.get("value", "")
        elif isinstance(raw, (list, tuple)):
            raise ParseError(
                f"variable '{name}' must be a scalar", construct=construct, location=location
            )
        env[str(name)] = _stringify(raw)
    return env


def _parse_triggers(workflow: Any) -> tuple[str, ...]:
    """Collect $CI_PIPELINE_SOURCE values from workflow:rules."""
    if not isinstance(workflow, Mapping) or not workflow.get("rules"):
        return DEFAULT_TRIGGERS

    triggers: list[str] = []
    for rule in workflow["rules"]:
        if not isinstance(rule, Mapping) or rule.get("when") == "never":
            continue
        for source in PIPELINE_SOURCE_PATTERN.findall(str(rule.get("if", ""))):
            if source not in triggers:
                triggers.append(source)
    return tuple(triggers) or DEFAULT_TRIGGERS


class _JobBuilder:
    """Turns one resolved job mapping into a Job."""

    def __init__(self, stages: tuple[str, ...], location: str):
        self._stages = stages
        self._location = location

    def build(self, name: str, data: dict) -> Job:
        stage = str(data.get("stage", "test"))
        if stage not in self._stages:
            raise ParseError(
                f"stage '{stage}' is not declared in stages",
                construct=name,
                location=self._location,
            )

        return Job(
            name=name,
            stage=stage,
            steps=self._build_steps(name, data),
            env=_parse_variables(data.get("variables"), f"{name}.variables", self._location),
            runner=self._parse_tags(name, data.get("tags")),
            timeout_minutes=self._parse_timeout(name, data.get("timeout")),
            concurrency=str(data["resource_group"]) if data.get("resource_group") else None,
            needs=self._parse_needs(name, data),
            image=self._parse_image(name, data.get("image")),
            allow_failure=bool(data.get("allow_failure", False)),
        )

    def _parse_tags(self, name: str, tags: Any) -> tuple[str, ...]:
        if tags is None:
            return ()
        if isinstance(tags, str):
            return (tags,)
        if not isinstance(tags, list):
            raise ParseError("tags must be a list", construct=f"{name}.tags", location=self._location)
        return tuple(str(t) for t in tags)

    def _parse_timeout(self, name: str, timeout: Any) -> Optional[int]:
        if timeout is None:
            return None
        try:
            return parse_duration_minutes(str(timeout))
        except ValueError as e:
            raise ParseError(str(e), construct=f"{name}.timeout", location=self._location)

    def _parse_needs(self, name: str, data: dict) -> Optional[tuple[str, ...]]:
        if "needs" not in data:
            return None
        needs = data["needs"] or []
        if not isinstance(needs, list):
            raise ParseError("needs must be a list", construct=f"{name}.needs", location=self._location)

        result: list[str] = []
        for need in needs:
            if isinstance(need, str):
                result.append(need)
            elif isinstance(need, Mapping) and "job" in need:
                result.append(str(need["job"]))
            else:
                # Cross-project and parent-pipeline needs have no GitHub equivalent
                logger.warning(f"Job '{name}': ignoring unsupported needs entry {need!r}")
        return tuple(result)

    def _parse_image(self, name: str, image: Any) -> Optional[str]:
        if image is None:
            return None
        if isinstance(image, Mapping):
            if "name" not in image:
                raise ParseError("image mapping needs a name", construct=f"{name}.image", location=self._location)
            return str(image["name"])
        return str(image)

    def _build_steps(self, name: str, data: dict) -> tuple[Step, ...]:
        entries: list[tuple[str, Any]] = []
        keys = [k for k in CANONICAL_STEP_ORDER if k in data]
        keys += [k for k in data if k not in METADATA_KEYWORDS and k not in CANONICAL_STEP_ORDER]

        for key in keys:
            if key in DISABLEABLE_KEYWORDS and data[key] in (None, "", [], {}):
                logger.debug(f"Job '{name}': {key} is disabled; no step emitted")
                continue
            if key == "artifacts":
                entries.extend(self._split_artifacts(name, data[key]))
            else:
                entries.append((str(key), data[key]))

        return tuple(
            Step(identifier=identifier, raw_value=raw, position=position)
            for position, (identifier, raw) in enumerate(entries)
        )

    def _split_artifacts(self, name: str, artifacts: Any) -> list[tuple[str, Any]]:
        if not isinstance(artifacts, Mapping):
            raise ParseError("artifacts must be a mapping", construct=f"{name}.artifacts", location=self._location)

        entries: list[tuple[str, Any]] = []
        plain = {k: v for k, v in artifacts.items() if k != "reports"}
        # Nothing to upload without paths or untracked
        if plain.get("paths") or plain.get("untracked"):
            entries.append(("artifacts", plain))

        reports = artifacts.get("reports") or {}
        if not isinstance(reports, Mapping):
            raise ParseError(
                "artifacts:reports must be a mapping",
                construct=f"{name}.artifacts.reports",
                location=self._location,
            )
        for kind, value in reports.items():
            entries.append((f"artifacts.{kind}", value))
        return entries


def _resolve_extends(
    name: str,
    definitions: dict[str, dict],
    location: str,
    stack: tuple[str, ...] = (),
) -> dict:
    """Resolve a job's extends chain into one merged mapping."""
    if name in stack:
        raise ParseError(
            "circular extends: " + " -> ".join(stack + (name,)),
            construct=name,
            location=location,
        )
    if name not in definitions:
        raise ParseError(f"extends unknown job '{name}'", construct=stack[-1] if stack else name, location=location)

    data = definitions[name]
    parents = data.get("extends") or []
    if isinstance(parents, str):
        parents = [parents]

    merged: dict = {}
    for parent in parents:
        merged = _deep_merge(merged, _resolve_extends(str(parent), definitions, location, stack + (name,)))
    merged = _deep_merge(merged, {k: v for k, v in data.items() if k != "extends"})
    return merged


def _apply_defaults(data: dict, defaults: dict) -> dict:
    inherit = data.get("inherit") or {}
    inherit_default = inherit.get("default", True) if isinstance(inherit, Mapping) else True
    if inherit_default is False:
        return data
    allowed = DEFAULT_KEYWORDS if inherit_default is True else tuple(inherit_default)

    result = dict(data)
    for key in allowed:
        if key in defaults and key not in result:
            result[key] = defaults[key]
    return result


def parse_pipeline(text: str, name: str = "ci", location: str = "<string>") -> Pipeline:
    """
    Parse GitLab CI YAML text into a Pipeline.

    Args:
        text: The .gitlab-ci.yml content
        name: Pipeline name when workflow:name is not set
        location: Source description for error messages

    Returns:
        The parsed Pipeline

    Raises:
        ParseError: If the YAML is invalid or a construct is malformed
    """
    try:
        document = yaml.load(text, Loader=GitLabLoader)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML syntax: {e}", location=location)

    if not isinstance(document, dict):
        raise ParseError("pipeline must be a YAML mapping", location=location)

    document = _resolve_references(document, document, location)

    if "include" in document:
        logger.warning(f"{location}: include is not resolved; included jobs will be missing")

    stages_raw = document.get("stages") or list(DEFAULT_STAGES)
    if not isinstance(stages_raw, list):
        raise ParseError("stages must be a list", construct="stages", location=location)
    stages = (".pre",) + tuple(str(s) for s in stages_raw) + (".post",)

    defaults = {k: document[k] for k in DEFAULT_KEYWORDS if k in document}
    default_section = document.get("default") or {}
    if not isinstance(default_section, Mapping):
        raise ParseError("default must be a mapping", construct="default", location=location)
    defaults.update(default_section)

    definitions = {
        str(key): value
        for key, value in document.items()
        if key not in GLOBAL_KEYWORDS and isinstance(value, dict)
    }
    for key, value in document.items():
        # Hidden keys may hold anchored lists/scalars
        if key in GLOBAL_KEYWORDS or str(key).startswith("."):
            continue
        if not isinstance(value, dict):
            raise ParseError("job definition must be a mapping", construct=str(key), location=location)

    builder = _JobBuilder(stages, location)
    jobs = []
    for job_name in definitions:
        if job_name.startswith("."):
            continue
        data = _apply_defaults(_resolve_extends(job_name, definitions, location), defaults)
        jobs.append(builder.build(job_name, data))

    workflow = document.get("workflow") or {}
    workflow_name = workflow.get("name") if isinstance(workflow, Mapping) else None

    pipeline = Pipeline(
        name=str(workflow_name or name),
        stages=tuple(str(s) for s in stages_raw),
        triggers=_parse_triggers(workflow),
        env=_parse_variables(document.get("variables"), "variables", location),
        jobs=tuple(jobs),
    )
    logger.debug(
        f"Parsed {location}: {len(pipeline.jobs)} jobs",
        extra={"event": "pipeline.parsed", "metadata": {"jobs": [j.name for j in pipeline.jobs]}},
    )
    return pipeline


def load_pipeline(path: Path | str, name: Optional[str] = None) -> Pipeline:
    """
    Load and parse a .gitlab-ci.yml file.

    Args:
        path: Path to the pipeline file
        name: Pipeline name; defaults to the file stem without leading dots

    Raises:
        ParseError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ParseError(f"Cannot read pipeline file: {e}", location=str(path))

    return parse_pipeline(text, name=name or path.stem.lstrip(".") or "ci", location=str(path))
