"""
Override loader - Evaluate custom transformer files.

A custom transformers file is a Python script run once, before conversion,
in a namespace exposing three declarations:

    runner(DEFAULT, "custom-runner")          # runner label remap
    env("PLAN_JSON", "custom_plan.json")      # env value rewrite

    @transform("artifacts.terraform")         # step transform
    def upload_plan(item):
        return {"uses": "actions/upload-artifact@v3", "with": {"path": item}}

transform() only registers the function. It is called later by the engine,
once per matching step, with that step's raw payload. Duplicate keys follow
last-declared-wins, across one file or several loaded in order.

Load phase:
1. OverrideLoader(registry) - transforms go straight into the registry
2. load_file()/load_source() - any number of files, in order
3. finish() - closes the load phase and returns the OverrideTables the
   engine consumes
"""

import builtins
import inspect
import logging
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from pipeport.errors import OverrideLoadError
from pipeport.registry import ConstructRegistry, custom_rule
from pipeport.schemas import DEFAULT_RUNNER, RunnerLabel, RunnerMarker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideTables:
    """
    Env and runner overrides collected during the load phase.

    Attributes:
        env: Variable name -> replacement value
        runner: Source label (or DEFAULT_RUNNER) -> target label
    """
    env: dict[str, str] = field(default_factory=dict)
    runner: dict[RunnerLabel, str] = field(default_factory=dict)


class _DeclarationError(Exception):
    """A declaration was called with invalid arguments."""
    pass


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise _DeclarationError(f"env value must be a string or number, got {type(value).__name__}")


def _check_identifier(identifier: Any) -> str:
    if not isinstance(identifier, str) or not identifier.strip():
        raise _DeclarationError(f"transform identifier must be a non-empty string, got {identifier!r}")
    return identifier


def _check_rule_signature(identifier: str, fn: Any) -> None:
    if not callable(fn):
        raise _DeclarationError(f"transform '{identifier}' needs a function, got {fn!r}")
    try:
        inspect.signature(fn).bind(None)
    except TypeError:
        raise _DeclarationError(
            f"transform '{identifier}' function must accept exactly one argument (the step payload)"
        )
    except ValueError:
        # Builtins without a signature; trust them
        pass


def _script_location(exc: BaseException, filename: str) -> str:
    """file:line of the innermost traceback frame inside the script."""
    lineno = getattr(exc, "lineno", None) if isinstance(exc, SyntaxError) else None
    if lineno is None:
        for frame in traceback.extract_tb(exc.__traceback__):
            if frame.filename == filename:
                lineno = frame.lineno
    return f"{filename}:{lineno}" if lineno else filename


class OverrideLoader:
    """
    Loader for custom transformer files.

    Usage:
        registry = ConstructRegistry.create_default()
        loader = OverrideLoader(registry)
        loader.load_file("transformers.py")
        tables = loader.finish()

        engine = ConversionEngine(registry, tables)
    """

    def __init__(self, registry: ConstructRegistry):
        """
        Initialize the loader.

        Args:
            registry: Registry that receives transform declarations
        """
        self._registry = registry
        self._env: dict[str, str] = {}
        self._runner: dict[RunnerLabel, str] = {}
        self._transforms: list[str] = []
        self._sources: list[str] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def sources(self) -> list[str]:
        """Files (or source names) loaded so far, in order."""
        return list(self._sources)

    def load_file(self, path: Path | str) -> None:
        """
        Load one custom transformers file.

        Raises:
            OverrideLoadError: If the file is unreadable, invalid or raises
        """
        path = Path(path)
        try:
            source = path.read_text()
        except OSError as e:
            raise OverrideLoadError(f"Cannot read custom transformers file: {e}", location=str(path))
        self.load_source(source, filename=str(path))

    def load_source(self, source: str, filename: str = "<overrides>") -> None:
        """
        Evaluate custom transformer source text once.

        Args:
            source: Python source using transform/env/runner
            filename: Name used in error locations

        Raises:
            OverrideLoadError: On syntax errors, invalid declarations or
                any exception raised while evaluating the script
            RuntimeError: If the load phase was already finished
        """
        if self._finished:
            raise RuntimeError("Override load phase is finished; create a new loader for another run")

        logger.info(
            f"Loading custom transformers: {filename}",
            extra={"event": "overrides.load.start", "metadata": {"source": filename}},
        )
        counts = {"transform": 0, "env": 0, "runner": 0}

        try:
            code = compile(source, filename, "exec")
        except SyntaxError as e:
            raise OverrideLoadError(f"Syntax error: {e.msg}", location=_script_location(e, filename)) from e

        namespace = self._namespace(filename, counts)
        try:
            exec(code, namespace)
        except _DeclarationError as e:
            raise OverrideLoadError(str(e), location=_script_location(e, filename)) from e
        except (Exception, SystemExit) as e:
            raise OverrideLoadError(
                f"{type(e).__name__}: {e}", location=_script_location(e, filename)
            ) from e

        self._sources.append(filename)
        logger.info(
            f"Loaded {filename}: {counts['transform']} transforms, "
            f"{counts['env']} env overrides, {counts['runner']} runner overrides",
            extra={"event": "overrides.load.end", "metadata": {"source": filename, **counts}},
        )

    def finish(self) -> OverrideTables:
        """
        Close the load phase.

        Returns:
            Snapshot of the env and runner override tables
        """
        self._finished = True
        return OverrideTables(env=dict(self._env), runner=dict(self._runner))

    def _namespace(self, filename: str, counts: dict[str, int]) -> dict[str, Any]:
        """Globals for one script: the three declarations plus DEFAULT."""

        def transform(identifier: Any, fn: Optional[Callable[[Any], Any]] = None):
            identifier = _check_identifier(identifier)

            def register(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
                _check_rule_signature(identifier, func)
                code = getattr(func, "__code__", None)
                origin = f"{filename}:{code.co_firstlineno}" if code else filename
                self._registry.register_override(identifier, custom_rule(func, origin=origin))
                self._transforms.append(identifier)
                counts["transform"] += 1
                logger.debug(f"Registered transform for '{identifier}' ({origin})")
                return func

            if fn is not None:
                return register(fn)
            return register

        def env(name: Any, value: Any) -> None:
            if not isinstance(name, str) or not name:
                raise _DeclarationError(f"env name must be a non-empty string, got {name!r}")
            self._env[name] = _literal(value)
            counts["env"] += 1

        def runner(source_label: Any, target_label: Any) -> None:
            if not isinstance(source_label, RunnerMarker) and (
                not isinstance(source_label, str) or not source_label
            ):
                raise _DeclarationError(
                    f"runner source must be a label string or DEFAULT, got {source_label!r}"
                )
            if not isinstance(target_label, str) or not target_label:
                raise _DeclarationError(f"runner target must be a non-empty string, got {target_label!r}")
            self._runner[source_label] = target_label
            counts["runner"] += 1

        return {
            "__builtins__": builtins,
            "__name__": "pipeport_overrides",
            "__file__": filename,
            "transform": transform,
            "env": env,
            "runner": runner,
            "DEFAULT": DEFAULT_RUNNER,
        }


def load_overrides(
    registry: ConstructRegistry,
    paths: list[Path | str] | tuple[Path | str, ...] = (),
) -> OverrideTables:
    """
    Load custom transformer files in order and close the load phase.

    Args:
        registry: Registry that receives transform declarations
        paths: Custom transformer files

    Returns:
        The collected OverrideTables
    """
    loader = OverrideLoader(registry)
    for path in paths:
        loader.load_file(path)
    return loader.finish()
