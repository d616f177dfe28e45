"""
CLI interface for pipeport.

Provides commands to convert GitLab CI pipelines to GitHub Actions
workflows, preview conversions, and inspect the transformer catalog.

Custom transformers (--custom-transformers, repeatable) are Python files
declaring transform/env/runner overrides; see pipeport.overrides.
"""

import re
import sys
from pathlib import Path

import click
import yaml
from rich.table import Table

from pipeport import __version__
from pipeport.utils import console


def _workflow_filename(name: str) -> str:
    return (re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-") or "ci") + ".yml"


@click.group()
@click.version_option(version=__version__, prog_name="pipeport")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: $PIPEPORT_HOME/config.yaml)",
)
@click.pass_context
def main(ctx, config_path: Path | None):
    """
    pipeport - GitLab CI to GitHub Actions converter.

    Converts .gitlab-ci.yml pipelines into GitHub Actions workflows.
    """
    from pipeport.config import ConfigError, PipeportConfig, load_config
    from pipeport.utils import setup_logging

    ctx.ensure_object(dict)
    if ctx.invoked_subcommand == "init":
        # init must work even when the existing config is broken
        return

    try:
        config = load_config(config_path)
    except FileNotFoundError:
        if config_path is not None:
            click.echo(f"✗ Config file not found: {config_path}", err=True)
            raise SystemExit(1)
        # No config yet: run with defaults
        config = PipeportConfig()
    except ConfigError as e:
        click.echo(f"✗ Invalid config: {e}", err=True)
        raise SystemExit(1)

    ctx.obj["config"] = config
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        console_output=config.console,
    )


def _convert_impl(ctx, source: Path, custom_transformers: tuple[Path, ...], default_runner: str | None):
    """Run the full load -> parse -> convert -> render flow."""
    from pipeport.emitter import render_workflow
    from pipeport.engine import ConversionEngine
    from pipeport.errors import PipeportError
    from pipeport.overrides import load_overrides
    from pipeport.parser import load_pipeline
    from pipeport.registry import ConstructRegistry

    config = ctx.obj["config"]
    paths = config.get_custom_transformer_paths() + list(custom_transformers)

    try:
        pipeline = load_pipeline(source)
        registry = ConstructRegistry.create_default()
        tables = load_overrides(registry, paths)
        result = ConversionEngine(registry, tables).convert(pipeline)
    except PipeportError as e:
        click.echo(f"✗ Conversion failed: {e}", err=True)
        raise SystemExit(1)

    text = render_workflow(result.workflow, default_runner=default_runner or config.default_runner)
    return result, text


def _print_notices(result) -> None:
    """Summary table of conversion notices."""
    if not result.notices:
        return
    table = Table(title="Conversion notices")
    table.add_column("Event")
    table.add_column("Job")
    table.add_column("Construct")
    table.add_column("Message")
    for notice in result.notices:
        table.add_row(notice.event, notice.job or "-", notice.identifier or "-", notice.message)
    console.print(table)


_source_argument = click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
_custom_option = click.option(
    "--custom-transformers",
    "-c",
    "custom_transformers",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Custom transformers file (repeatable; later files win)",
)


@main.command("convert")
@_source_argument
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Repository root to write the workflow under",
)
@_custom_option
@click.option("--default-runner", default=None, help="runs-on label for untagged jobs")
@click.pass_context
def convert(ctx, source: Path, output_dir: Path, custom_transformers: tuple[Path, ...], default_runner: str | None):
    """
    Convert a GitLab CI pipeline and write the workflow file.

    SOURCE is the path to a .gitlab-ci.yml file.

    Examples:

        pipeport convert .gitlab-ci.yml

        pipeport convert .gitlab-ci.yml -o ../github-repo

        pipeport convert .gitlab-ci.yml -c transformers.py
    """
    result, text = _convert_impl(ctx, source, custom_transformers, default_runner)

    config = ctx.obj["config"]
    out_path = output_dir / config.workflow_dir / _workflow_filename(result.workflow.name)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text)

    _print_notices(result)
    click.echo(f"✓ Wrote {out_path}")
    if result.unsupported:
        click.echo(f"  {len(result.unsupported)} construct(s) need a custom transformer")


@main.command("dry-run")
@_source_argument
@_custom_option
@click.option("--default-runner", default=None, help="runs-on label for untagged jobs")
@click.pass_context
def dry_run(ctx, source: Path, custom_transformers: tuple[Path, ...], default_runner: str | None):
    """
    Convert a GitLab CI pipeline and print the workflow (no files written).

    SOURCE is the path to a .gitlab-ci.yml file.
    """
    result, text = _convert_impl(ctx, source, custom_transformers, default_runner)

    click.echo(text, nl=False)
    for notice in result.unsupported:
        click.echo(f"! {notice.message}", err=True)


@main.group("transformers")
def transformers_group():
    """Inspect the transformer catalog."""
    pass


@transformers_group.command("list")
@_custom_option
@click.pass_context
def list_transformers(ctx, custom_transformers: tuple[Path, ...]):
    """List construct identifiers with a transformer (default or custom)."""
    from pipeport.errors import PipeportError
    from pipeport.overrides import load_overrides
    from pipeport.registry import ConstructRegistry

    config = ctx.obj["config"]
    registry = ConstructRegistry.create_default()
    try:
        load_overrides(registry, config.get_custom_transformer_paths() + list(custom_transformers))
    except PipeportError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    for identifier in registry.identifiers():
        kind = registry.resolve(identifier).kind.value
        if registry.has_override(identifier) and registry.has_default(identifier):
            kind += " (replaces default)"
        click.echo(f"  {identifier:<30} {kind}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize pipeport configuration."""
    from pipeport.config import PipeportConfig, get_pipeport_home

    home = get_pipeport_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(PipeportConfig().to_dict(), sort_keys=False))
    click.echo(f"Initialized pipeport config at {cfg_path}")


if __name__ == "__main__":
    sys.exit(main())
