"""Server process lifecycle management.

This package provides:
- ProcessHandle: spawns one server process and drives its lifecycle
- ReadinessDetector / ReadinessRules: decide readiness from output lines
- build_launch: command line and environment of the server
- OutputSink implementations for logs and the console
"""

from ._handle import MAX_LINE_BYTES, ProcessHandle, read_lines
from ._launch import JAVA_HOME, JVM_EXTRA_OPTS, build_command, build_launch, jvm_extra_options
from ._models import LaunchSpec, LifecycleState, NodeEvent, NodeEventType
from ._output import ConsoleOutputSink, LoggerOutputSink, OutputTail
from ._protocol import OutputSink
from ._readiness import (
    FAILURE_PATTERNS,
    NATIVE_TRANSPORT_READY,
    NO_CLIENT_TRANSPORT_READY,
    RPC_READY,
    Readiness,
    ReadinessDetector,
    ReadinessRules,
)

__all__ = [
    "FAILURE_PATTERNS",
    "JAVA_HOME",
    "JVM_EXTRA_OPTS",
    "MAX_LINE_BYTES",
    "NATIVE_TRANSPORT_READY",
    "NO_CLIENT_TRANSPORT_READY",
    "RPC_READY",
    "ConsoleOutputSink",
    "LaunchSpec",
    "LifecycleState",
    "LoggerOutputSink",
    "NodeEvent",
    "NodeEventType",
    "OutputSink",
    "OutputTail",
    "ProcessHandle",
    "Readiness",
    "ReadinessDetector",
    "ReadinessRules",
    "build_command",
    "build_launch",
    "jvm_extra_options",
    "read_lines",
]
