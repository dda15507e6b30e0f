# pyright: reportExplicitAny=false, reportAny=false
"""Orchestrator settings.

Settings are the knobs of the orchestrator itself (timeouts, retry counts,
logging), as opposed to the node configuration handed to Cassandra. They are
merged from defaults, an optional TOML file, ``EMBEDDED_CASSANDRA_*``
environment variables and explicit overrides, in that order.
"""

from enum import StrEnum
from pathlib import Path, PurePath
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, ValidationError, field_validator

from embedded_cassandra.exceptions import ConfigError

from ._loader import ENV_PREFIX, deep_merge, parse_env_vars, read_toml_file


class LogLevel(StrEnum):
    """Log level threshold values."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class LoggingSettings(BaseModel):
    """Logging section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
        max_bytes: Rotate the log file after this many bytes.
        backup_count: Number of rotated files to keep.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.TEXT
    file: str = ""
    max_bytes: PositiveInt | None = None
    backup_count: PositiveInt | None = None


class Settings(BaseModel):
    """Orchestrator settings.

    Attributes:
        startup_timeout: Seconds to wait for the node to become ready.
        shutdown_timeout: Seconds to wait after a graceful stop request.
        kill_timeout: Seconds to wait after a forced kill.
        port_attempts: Probes per port before allocation gives up.
        output_lines: Number of recent output lines kept for error messages.
        delete_working_directory: Remove temporary working directories on stop.
        delete_only: Paths inside the working directory removed on stop when
            the directory itself is kept.
        logging: Logging section.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    startup_timeout: PositiveFloat = 90.0
    shutdown_timeout: PositiveFloat = 10.0
    kill_timeout: PositiveFloat = 5.0
    port_attempts: PositiveInt = 32
    output_lines: PositiveInt = 20
    delete_working_directory: bool = True
    delete_only: tuple[str, ...] = ()
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("delete_only")
    @classmethod
    def check_delete_only(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for path in value:
            pure = PurePath(path)
            if not pure.parts or pure.is_absolute() or ".." in pure.parts:
                msg = f"'{path}' is not a path inside the working directory"
                raise ValueError(msg)
        return value


def load_settings(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    *,
    include_env: bool = True,
) -> Settings:
    """Load settings from all sources.

    Args:
        path: Optional TOML file. It must exist when given.
        overrides: Highest-precedence values, nested like the TOML layout.
        include_env: Read ``EMBEDDED_CASSANDRA_*`` environment variables.

    Returns:
        Validated settings.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ConfigLoadError: If the TOML file cannot be parsed.
        ConfigError: If a merged value is invalid.
    """
    merged: dict[str, Any] = {}
    if path is not None:
        merged = deep_merge(merged, read_toml_file(path))
    if include_env:
        merged = deep_merge(merged, parse_env_vars(ENV_PREFIX))
    if overrides:
        merged = deep_merge(merged, overrides)

    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        error = e.errors()[0]
        key = ".".join(str(loc) for loc in error["loc"])
        msg = f"Invalid setting '{key}': {error['msg']}"
        raise ConfigError(msg, key=key) from e
