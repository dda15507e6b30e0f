"""Data models for the process lifecycle.

This module defines the core data types for a managed Cassandra process:
- LifecycleState: States of a process handle
- NodeEventType: Types of lifecycle events
- NodeEvent: Immutable event records
- LaunchSpec: How the server process is spawned
"""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations

import pendulum


class LifecycleState(StrEnum):
    """Process handle lifecycle states.

    - NOT_STARTED: No process has been spawned
    - STARTING: Process spawned, readiness not yet resolved
    - RUNNING: Readiness confirmed
    - STOPPING: Termination in progress
    - STOPPED: Process exited after a stop request
    - FAILED: Startup failed or the process exited unexpectedly
    """

    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class NodeEventType(StrEnum):
    """Types of lifecycle events emitted to output sinks."""

    SPAWNED = "spawned"
    READY = "ready"
    FAILED = "failed"
    STOPPING = "stopping"
    KILLED = "killed"
    STOPPED = "stopped"
    EXITED = "exited"


def timestamp() -> str:
    """Get current timestamp in ISO 8601 format."""
    return pendulum.now("UTC").to_iso8601_string()


@dataclass(frozen=True, slots=True)
class NodeEvent:
    """Immutable lifecycle event.

    Attributes:
        node: Name of the node that generated the event.
        event_type: Type of lifecycle event.
        timestamp: ISO 8601 formatted timestamp.
        pid: Process ID if applicable.
        exit_code: Exit code if the process terminated.
        message: Optional human-readable message.
    """

    node: str
    event_type: NodeEventType
    timestamp: str = field(default_factory=timestamp)
    pid: int | None = None
    exit_code: int | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class LaunchSpec:
    """How the server process is spawned.

    Attributes:
        command: Program and arguments.
        cwd: Working directory of the process.
        env: Complete environment of the process.
    """

    command: tuple[str, ...]
    cwd: Path
    env: dict[str, str] = field(default_factory=dict)
