"""
Emitter - Render a TargetWorkflow as GitHub Actions YAML.

Unsupported placeholders are rendered in place as YAML comments, so the
output shows exactly which constructs still need a custom transformer.
Output is byte-deterministic for a given workflow.
"""

import re

import yaml

from pipeport.schemas import DEFAULT_RUNS_ON, AnyTargetStep, TargetWorkflow, UnsupportedStep


PLACEHOLDER_PREFIX = "__pipeport_unsupported__"

_PLACEHOLDER_LINE = re.compile(
    r"^(?P<indent>\s*)- (?P<quote>['\"]?)" + PLACEHOLDER_PREFIX + r"(?P<identifier>.*?)(?P=quote)$"
)


def unsupported_comment(identifier: str) -> str:
    return (
        f"# '{identifier}' was not transformed because there is no suitable "
        f"equivalent in GitHub Actions"
    )


class _WorkflowDumper(yaml.SafeDumper):
    """SafeDumper that indents block sequences under their key."""

    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def _str_presenter(dumper: yaml.SafeDumper, data: str) -> yaml.Node:
    # Multi-line run scripts read better as literal blocks
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_WorkflowDumper.add_representer(str, _str_presenter)


def _render_step(step: AnyTargetStep):
    if isinstance(step, UnsupportedStep):
        return PLACEHOLDER_PREFIX + step.identifier
    return step.to_dict()


def render_workflow(workflow: TargetWorkflow, default_runner: str = DEFAULT_RUNS_ON) -> str:
    """
    Render a workflow to YAML text.

    Args:
        workflow: The converted workflow
        default_runner: runs-on label for jobs on the default runner

    Returns:
        The workflow YAML
    """
    data = workflow.to_dict(default_runner=default_runner, render_step=_render_step)
    text = yaml.dump(
        data,
        Dumper=_WorkflowDumper,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=120,
    )

    lines = []
    for line in text.splitlines():
        match = _PLACEHOLDER_LINE.match(line)
        if match:
            line = match.group("indent") + unsupported_comment(match.group("identifier"))
        lines.append(line)
    return "\n".join(lines) + "\n"
