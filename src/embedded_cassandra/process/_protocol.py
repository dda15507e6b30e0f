"""Protocol definitions for process output consumers.

This module defines the interface that decouples the process handle from
output and UI implementations:
- OutputSink: Protocol for consuming process output and lifecycle events
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ._models import NodeEvent


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for consuming process output lines.

    The protocol is async so implementations may write to files or update
    UIs without blocking. A sink is awaited before the next line is read
    from the process, so a slow sink slows the process down instead of
    growing a buffer.
    """

    async def write_line(self, node: str, pid: int, line: str) -> None:
        """Write a line of process output.

        Args:
            node: Name of the node that produced the output.
            pid: Process ID of the node.
            line: The output line (without trailing newline).
        """
        ...

    async def write_event(self, event: NodeEvent) -> None:
        """Write a lifecycle event.

        Args:
            event: The lifecycle event to record.
        """
        ...
