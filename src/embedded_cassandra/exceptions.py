"""Embedded Cassandra exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class EmbeddedCassandraError(Exception):
    """Base exception for embedded Cassandra errors."""


class FormatError(EmbeddedCassandraError, ValueError):
    """Raised when a version string does not match ``major.minor[.patch][-label]``.

    Attributes:
        version_text: The text that failed to parse.
    """

    def __init__(self, message: str, *, version_text: str) -> None:
        """Initialize with error message and the rejected text."""
        super().__init__(message)
        self.version_text: str = version_text


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(EmbeddedCassandraError):
    """Raised when a node configuration or the orchestrator settings are invalid.

    Attributes:
        key: The offending setting, if a single one can be named.
    """

    def __init__(self, message: str, *, key: str | None = None) -> None:
        """Initialize with error message and optional setting name."""
        super().__init__(message)
        self.key: str | None = key


class ConfigLoadError(ConfigError):
    """Raised when a settings file cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class PortAllocationError(EmbeddedCassandraError):
    """Raised when no free, non-colliding port is found within the retry budget.

    Attributes:
        port_name: The port that could not be allocated.
        attempts: Number of probes made before giving up.
    """

    def __init__(self, message: str, *, port_name: str, attempts: int) -> None:
        """Initialize with error message and allocation context."""
        super().__init__(message)
        self.port_name: str = port_name
        self.attempts: int = attempts


# =============================================================================
# File Exceptions
# =============================================================================


class FileError(EmbeddedCassandraError):
    """Raised when a distribution file cannot be read, patched or replaced.

    Attributes:
        path: The file involved.
        customizer: Name of the customizer that failed, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Path,
        customizer: str | None = None,
    ) -> None:
        """Initialize with error message and file context."""
        super().__init__(message)
        self.path: Path = path
        self.customizer: str | None = customizer


# =============================================================================
# Process Exceptions
# =============================================================================


class ProcessError(EmbeddedCassandraError):
    """Base exception for Cassandra process lifecycle errors.

    Attributes:
        node: Name of the node the error relates to.
    """

    def __init__(self, message: str, *, node: str) -> None:
        """Initialize with error message and node name."""
        super().__init__(message)
        self.node: str = node


class StartError(ProcessError):
    """Raised when the process cannot be spawned or does not become ready.

    Attributes:
        exit_code: Exit code of the process, if it exited.
        output: Last lines of process output, oldest first.
    """

    def __init__(
        self,
        message: str,
        *,
        node: str,
        exit_code: int | None = None,
        output: tuple[str, ...] = (),
    ) -> None:
        """Initialize with error message and startup context."""
        super().__init__(message, node=node)
        self.exit_code: int | None = exit_code
        self.output: tuple[str, ...] = output


class StopError(ProcessError):
    """Raised when the process cannot be signalled or refuses to die.

    Attributes:
        pid: Process ID of the process that could not be stopped.
    """

    def __init__(self, message: str, *, node: str, pid: int | None = None) -> None:
        """Initialize with error message and process context."""
        super().__init__(message, node=node)
        self.pid: int | None = pid
