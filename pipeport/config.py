"""
Configuration management for pipeport.

Loads ~/.config/pipeport/config.yaml (or $PIPEPORT_HOME/config.yaml).
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Configuration validation error."""
    pass


def get_pipeport_home() -> Path:
    """Get the pipeport home directory ($PIPEPORT_HOME or ~/.config/pipeport)."""
    home = os.environ.get("PIPEPORT_HOME")
    if home:
        return Path(home)
    return Path("~/.config/pipeport").expanduser()


@dataclass
class PipeportConfig:
    """
    pipeport settings.

    Attributes:
        default_runner: runs-on label for jobs without runner tags
        workflow_dir: Directory (under the output dir) workflows are written to
        custom_transformers: Custom transformer files always loaded first
        log_level: Logging level
        log_format: "pretty" (rich console) or "structured" (JSON)
        log_file: Optional structured log file
        console: Log to console
    """
    default_runner: str = "ubuntu-latest"
    workflow_dir: str = ".github/workflows"
    custom_transformers: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    console: bool = True

    def __post_init__(self):
        if not isinstance(self.default_runner, str) or not self.default_runner:
            raise ConfigError("default_runner must be a non-empty string")
        if not isinstance(self.workflow_dir, str) or not self.workflow_dir:
            raise ConfigError("workflow_dir must be a non-empty string")
        if not isinstance(self.custom_transformers, list) or not all(
            isinstance(p, str) for p in self.custom_transformers
        ):
            raise ConfigError("custom_transformers must be a list of file paths")
        if str(self.log_level).upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log_level: {self.log_level}")
        if self.log_format not in ("pretty", "structured"):
            raise ConfigError(f"Invalid log_format: {self.log_format} (expected pretty or structured)")
        if not isinstance(self.console, bool):
            raise ConfigError("console must be true or false")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipeportConfig":
        """Build from a parsed config mapping; unknown keys are errors."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def get_log_file_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    def get_custom_transformer_paths(self) -> list[Path]:
        return [Path(p).expanduser() for p in self.custom_transformers]


def load_config(config_path: Optional[Path] = None) -> PipeportConfig:
    """
    Load pipeport configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to <pipeport home>/config.yaml

    Returns:
        PipeportConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_pipeport_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"pipeport config.yaml not found at {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    return PipeportConfig.from_dict(data)
