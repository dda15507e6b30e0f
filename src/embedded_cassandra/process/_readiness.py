"""Readiness detection from process output.

The detector consumes output lines in order and reports the first decisive
outcome. Which lines mean "ready" depends on the server version and on the
transports the node starts, so the default rules are built per node.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, final

from embedded_cassandra.enums import PortName
from embedded_cassandra.version import Version

if TYPE_CHECKING:
    from collections.abc import Iterable

    from embedded_cassandra.config import NodeConfig

_V4 = Version.of(4, 0)

NATIVE_TRANSPORT_READY = r"Starting listening for CQL clients"
RPC_READY = r"Listening for thrift clients"
NO_CLIENT_TRANSPORT_READY = (
    r"Not starting (?:native transport|client transports)",
    r"Starting Messaging Service",
    r"Startup complete",
)

FAILURE_PATTERNS = (
    r"encountered during startup",
    r"Missing required",
    r"Address already in use",
    r"Port already in use",
    r"ConfigurationException",
    r"syntax error near unexpected",
    r"Error occurred during initialization",
    r"Cassandra 3\.0 and later require Java",
    r"You must set the CASSANDRA_CONF and CLASSPATH vars",
    r"Failed to bind port",
)

_CLIENT_PORTS = (PortName.NATIVE_TRANSPORT, PortName.NATIVE_TRANSPORT_SSL, PortName.RPC)


class Readiness(StrEnum):
    """Outcome of a readiness wait."""

    READY = "ready"
    FAILED = "failed"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"


def _compile(patterns: Iterable[str | re.Pattern[str]]) -> tuple[re.Pattern[str], ...]:
    return tuple(p if isinstance(p, re.Pattern) else re.compile(p, re.IGNORECASE) for p in patterns)


@final
@dataclass(frozen=True, slots=True)
class ReadinessRules:
    """Patterns and probes that decide readiness.

    Attributes:
        ready_patterns: A line matching any of these means the node is ready.
        failure_patterns: A line matching any of these means startup failed.
        probe_ports: Client ports that must accept connections after the
            ready marker before the node counts as running.
    """

    ready_patterns: tuple[re.Pattern[str], ...]
    failure_patterns: tuple[re.Pattern[str], ...] = _compile(FAILURE_PATTERNS)
    probe_ports: tuple[int, ...] = ()

    @classmethod
    def of(
        cls,
        ready: Iterable[str | re.Pattern[str]],
        failure: Iterable[str | re.Pattern[str]] = FAILURE_PATTERNS,
        probe_ports: Iterable[int] = (),
    ) -> ReadinessRules:
        """Build rules from pattern strings, compiled case-insensitively."""
        return cls(
            ready_patterns=_compile(ready),
            failure_patterns=_compile(failure),
            probe_ports=tuple(probe_ports),
        )

    @classmethod
    def for_node(cls, version: Version, config: NodeConfig, *, probe: bool = False) -> ReadinessRules:
        """Return the default rules for a node.

        Args:
            version: Server version.
            config: Frozen node configuration.
            probe: Also require enabled client ports to accept connections.

        Returns:
            The rules.
        """
        if config.start_native_transport:
            ready: tuple[str, ...] = (NATIVE_TRANSPORT_READY,)
        elif config.start_rpc and not version.is_at_least(_V4):
            ready = (RPC_READY,)
        else:
            ready = NO_CLIENT_TRANSPORT_READY

        ports: tuple[int, ...] = ()
        if probe:
            enabled = config.ports
            ports = tuple(enabled[name] for name in _CLIENT_PORTS if name in enabled)
        return cls.of(ready, FAILURE_PATTERNS, ports)


@final
class ReadinessDetector:
    """Line-by-line readiness state machine.

    Once an outcome is reached, further lines are ignored.
    """

    __slots__: tuple[str, ...] = ("_outcome", "_reason", "_rules")

    def __init__(self, rules: ReadinessRules) -> None:
        """Initialize the detector.

        Args:
            rules: Patterns deciding readiness.
        """
        self._rules: ReadinessRules = rules
        self._outcome: Readiness | None = None
        self._reason: str | None = None

    @property
    def outcome(self) -> Readiness | None:
        """Return the decided outcome, or None while undecided."""
        return self._outcome

    @property
    def reason(self) -> str | None:
        """Return the line that decided the outcome."""
        return self._reason

    def feed(self, line: str) -> Readiness | None:
        """Consume one output line.

        Failure patterns are checked before ready patterns, so a line
        matching both counts as a failure.

        Returns:
            The outcome decided by this line, or None if it decided nothing
            (including when an outcome was already reached).
        """
        if self._outcome is not None:
            return None
        if any(p.search(line) for p in self._rules.failure_patterns):
            return self._decide(Readiness.FAILED, line)
        if any(p.search(line) for p in self._rules.ready_patterns):
            return self._decide(Readiness.READY, line)
        return None

    def process_exited(self, exit_code: int | None) -> Readiness | None:
        """Record that the process exited; undecided means failed."""
        if self._outcome is not None:
            return None
        return self._decide(Readiness.FAILED, f"process exited with code {exit_code} before becoming ready")

    def _decide(self, outcome: Readiness, reason: str) -> Readiness:
        self._outcome = outcome
        self._reason = reason
        return outcome
