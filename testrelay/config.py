"""
Configuration loading and validation for testrelay.

A testrelay.yaml file tunes how runner processes are captured and how their
output is interpreted:

    max_buffer_mb: 50          # per-stream capture cap
    session_env_var: TESTRELAY_SESSION_ID
    force_color: false         # export FORCE_COLOR to the runner
    shell: false               # run the command through the shell
    output_format: auto        # auto | structured | json | junit | tap
    mode: auto                 # standard | fast | auto
    reporter_dir: null         # where helper reporters are written
    env:                       # extra environment for every run
      NODE_OPTIONS: --no-warnings
    fallback:
      pass_indicators: [PASS, passed]
      fail_indicators: [FAIL, "Error:"]

Every key is optional. Without a file, RunnerConfig() holds the defaults.
"""
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from testrelay.exceptions import ConfigError
from testrelay.parsers import OUTPUT_FORMATS
from testrelay.reconcile.fallback import (
    DEFAULT_FAIL_INDICATORS,
    DEFAULT_PASS_INDICATORS,
    TextIndicators,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "testrelay.yaml"
DEFAULT_SESSION_ENV_VAR = "TESTRELAY_SESSION_ID"
DEFAULT_MAX_BUFFER_MB = 50

_ENV_VAR_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class RunMode(str, Enum):
    """How a run is executed and interpreted."""
    STANDARD = "standard"  # capture, parse and reconcile
    FAST = "fast"          # exit code only
    AUTO = "auto"          # fast when exactly one test is requested


class FallbackConfig(BaseModel):
    """Indicator substrings for the raw-text fallback."""
    model_config = ConfigDict(extra="forbid")

    pass_indicators: List[str] = Field(default_factory=lambda: list(DEFAULT_PASS_INDICATORS))
    fail_indicators: List[str] = Field(default_factory=lambda: list(DEFAULT_FAIL_INDICATORS))

    @field_validator("pass_indicators", "fail_indicators")
    @classmethod
    def validate_indicators(cls, v: List[str]) -> List[str]:
        """Empty strings would match every line."""
        if any(not indicator for indicator in v):
            raise ValueError("Indicators must be non-empty strings")
        return v

    def to_indicators(self) -> TextIndicators:
        return TextIndicators(
            pass_indicators=list(self.pass_indicators),
            fail_indicators=list(self.fail_indicators),
        )


class RunnerConfig(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(extra="forbid")

    max_buffer_mb: float = Field(default=DEFAULT_MAX_BUFFER_MB, description="Per-stream capture cap in MiB")
    session_env_var: str = Field(default=DEFAULT_SESSION_ENV_VAR, description="Env var carrying the session id")
    force_color: bool = Field(default=False, description="Export FORCE_COLOR to the runner")
    shell: bool = Field(default=False, description="Run the command through the shell")
    output_format: str = Field(default="auto", description="Parser to use, or auto")
    mode: RunMode = Field(default=RunMode.STANDARD, description="standard, fast or auto")
    reporter_dir: Optional[Path] = Field(default=None, description="Directory for helper reporters")
    env: Dict[str, str] = Field(default_factory=dict, description="Extra environment for every run")
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)

    @field_validator("max_buffer_mb")
    @classmethod
    def validate_max_buffer(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"max_buffer_mb must be positive, got {v}")
        return v

    @field_validator("session_env_var")
    @classmethod
    def validate_session_env_var(cls, v: str) -> str:
        if not _ENV_VAR_RE.fullmatch(v):
            raise ValueError(f"'{v}' is not a valid environment variable name")
        return v

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        if v not in OUTPUT_FORMATS:
            raise ValueError(f"Unknown output format '{v}'. Available: {list(OUTPUT_FORMATS)}")
        return v

    @field_validator("reporter_dir", mode="before")
    @classmethod
    def validate_reporter_dir(cls, v: Any) -> Optional[Path]:
        """Ensure paths are Path objects."""
        if v is None or isinstance(v, Path):
            return v
        return Path(v)

    @field_validator("env", mode="before")
    @classmethod
    def validate_env(cls, v: Any) -> Any:
        """YAML scalars (numbers, booleans) become strings."""
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v

    @property
    def max_buffer_bytes(self) -> int:
        return int(self.max_buffer_mb * 1024 * 1024)


def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find testrelay.yaml in current or parent directories.

    Args:
        start_path: Starting directory (defaults to current working directory)

    Returns:
        Path to config file, or None if not found
    """
    current = start_path or Path.cwd()

    # Search up to 5 levels
    for _ in range(5):
        config_path = current / CONFIG_FILE_NAME
        if config_path.exists():
            return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_config(config_path: Path) -> RunnerConfig:
    """
    Load and validate configuration from YAML file.

    Relative reporter_dir paths are resolved against the config file's
    directory.

    Args:
        config_path: Path to testrelay.yaml

    Returns:
        Validated RunnerConfig instance

    Raises:
        ConfigError: If the file is missing, empty, not YAML, or invalid
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not raw_config or not isinstance(raw_config, dict):
        raise ConfigError(f"Empty or invalid config file: {config_path}")

    reporter_dir = raw_config.get("reporter_dir")
    if reporter_dir and not Path(reporter_dir).is_absolute():
        raw_config["reporter_dir"] = str(config_path.parent / reporter_dir)

    try:
        config = RunnerConfig(**raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e

    logger.debug(f"Loaded configuration from {config_path}")
    return config


def resolve_config(config_path: Optional[Path] = None) -> RunnerConfig:
    """Load an explicit config file, else a discovered one, else defaults."""
    path = config_path or find_config_file()
    if path is None:
        return RunnerConfig()
    return load_config(path)
