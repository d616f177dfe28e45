"""
Built-in transformers for common GitLab CI constructs.

Each function takes the raw payload of one step and returns a GitHub step
mapping (validated by TargetStep.from_mapping in the engine). Constructs
with no entry here convert to an unsupported placeholder unless a custom
transformer covers them.
"""

import math
from collections.abc import Mapping
from typing import Any

from pipeport.utils import parse_duration_minutes


UPLOAD_ARTIFACT_ACTION = "actions/upload-artifact@v4"
CACHE_ACTION = "actions/cache@v4"


def _flatten_lines(value: Any) -> list[str]:
    """Flatten a GitLab script value (str or nested lists) into lines."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        lines: list[str] = []
        for item in value:
            lines.extend(_flatten_lines(item))
        return lines
    return [str(value)]


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _script_step(name: str, value: Any) -> dict[str, Any]:
    lines = _flatten_lines(value)
    if not lines:
        raise ValueError(f"{name} has no commands")
    return {"name": name, "run": "\n".join(lines)}


def convert_before_script(raw: Any) -> dict[str, Any]:
    return _script_step("before_script", raw)


def convert_script(raw: Any) -> dict[str, Any]:
    return _script_step("script", raw)


def convert_after_script(raw: Any) -> dict[str, Any]:
    """after_script runs even when script fails."""
    step = _script_step("after_script", raw)
    step["if"] = "always()"
    return step


def convert_artifacts(raw: Any) -> dict[str, Any]:
    """
    Convert artifacts:paths/untracked (plus name/when/expire_in) to upload-artifact.

    Reports are split into their own artifacts.<kind> steps by the parser.
    """
    if not isinstance(raw, Mapping):
        raise ValueError(f"artifacts must be a mapping, got {type(raw).__name__}")

    paths = [str(p) for p in _as_list(raw.get("paths"))]
    if raw.get("untracked") and "." not in paths:
        # untracked uploads the working tree; exclude patterns still apply
        paths.append(".")
    if not paths:
        raise ValueError("artifacts has no paths")

    with_: dict[str, Any] = {
        "name": str(raw.get("name", "artifacts")),
        "path": "\n".join(paths),
    }
    if raw.get("exclude"):
        # upload-artifact takes exclusions as !patterns in path
        with_["path"] += "\n" + "\n".join(f"!{p}" for p in _as_list(raw["exclude"]))
    if raw.get("expire_in") and str(raw["expire_in"]).strip() != "never":
        minutes = parse_duration_minutes(str(raw["expire_in"]))
        with_["retention-days"] = max(1, math.ceil(minutes / (60 * 24)))

    step: dict[str, Any] = {"name": "Upload artifacts", "uses": UPLOAD_ARTIFACT_ACTION, "with": with_}
    when = raw.get("when", "on_success")
    if when == "always":
        step["if"] = "always()"
    elif when == "on_failure":
        step["if"] = "failure()"
    return step


def convert_junit_report(raw: Any) -> dict[str, Any]:
    paths = [str(p) for p in _as_list(raw)]
    if not paths:
        raise ValueError("artifacts:reports:junit has no paths")
    return {
        "name": "Upload JUnit report",
        "if": "always()",
        "uses": UPLOAD_ARTIFACT_ACTION,
        "with": {"name": "junit-report", "path": "\n".join(paths)},
    }


def _cache_key(key: Any) -> str:
    if key is None:
        return "${{ github.job }}"
    if isinstance(key, Mapping):
        files = [str(f) for f in _as_list(key.get("files"))]
        hashed = ", ".join(f"'{f}'" for f in files)
        prefix = key.get("prefix")
        digest = f"${{{{ hashFiles({hashed}) }}}}" if files else "${{ github.job }}"
        return f"{prefix}-{digest}" if prefix else digest
    return str(key)


def convert_cache(raw: Any) -> dict[str, Any]:
    """
    Convert cache to actions/cache.

    A list of caches collapses into one step: paths are merged and the
    first entry's key wins.
    """
    entries = _as_list(raw)
    if not entries or not all(isinstance(e, Mapping) for e in entries):
        raise ValueError("cache must be a mapping or a list of mappings")

    paths: list[str] = []
    for entry in entries:
        for p in _as_list(entry.get("paths")):
            if str(p) not in paths:
                paths.append(str(p))
    if not paths:
        raise ValueError("cache has no paths")

    return {
        "name": "Cache",
        "uses": CACHE_ACTION,
        "with": {"path": "\n".join(paths), "key": _cache_key(entries[0].get("key"))},
    }


# Identifier -> rule body
DEFAULT_TRANSFORMERS = {
    "before_script": convert_before_script,
    "script": convert_script,
    "after_script": convert_after_script,
    "artifacts": convert_artifacts,
    "artifacts.junit": convert_junit_report,
    "cache": convert_cache,
}
