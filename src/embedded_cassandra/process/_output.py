"""Output sink implementations.

This module provides concrete implementations of the OutputSink protocol
and the tail buffer used to attach recent output to startup errors.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, final

from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import NodeEventType

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from ._models import NodeEvent


@final
class ConsoleOutputSink:
    """Output sink that writes to the console with formatted prefixes.

    Formats process output as `[node:pid] line` and lifecycle events with a
    color per event type.
    """

    __slots__: tuple[str, ...] = ("_console", "_event_styles", "_prefix_style")

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the output sink.

        Args:
            console: Rich Console instance for output. If None, creates a new one.
        """
        self._console: Console = console or Console()
        self._prefix_style: Style = Style(color="blue", bold=True)
        self._event_styles: dict[NodeEventType, Style] = {
            NodeEventType.SPAWNED: Style(color="cyan"),
            NodeEventType.READY: Style(color="green", bold=True),
            NodeEventType.FAILED: Style(color="red", bold=True),
            NodeEventType.STOPPING: Style(color="yellow"),
            NodeEventType.KILLED: Style(color="red"),
            NodeEventType.STOPPED: Style(color="yellow"),
            NodeEventType.EXITED: Style(color="red", dim=True),
        }

    async def write_line(self, node: str, pid: int, line: str) -> None:
        """Write a line of process output with prefix."""
        text = Text()
        _ = text.append(f"[{node}:{pid}]", style=self._prefix_style)
        _ = text.append(" ")
        _ = text.append(line)
        self._console.print(text)

    async def write_event(self, event: NodeEvent) -> None:
        """Write a lifecycle event with special formatting."""
        style = self._event_styles.get(event.event_type, Style())

        text = Text()
        _ = text.append(f"[{event.node}]", style=self._prefix_style)
        _ = text.append(" ")
        _ = text.append(event.event_type.value.upper(), style=style)

        if event.pid is not None:
            _ = text.append(f" (pid={event.pid})", style=Style(dim=True))

        if event.exit_code is not None:
            _ = text.append(f" exit_code={event.exit_code}", style=Style(dim=True))

        if event.message:
            _ = text.append(f" - {event.message}", style=style)

        self._console.print(text)


@final
class LoggerOutputSink:
    """Output sink that forwards output and events to a structlog logger.

    Output lines are logged at debug level, events at info level.
    """

    __slots__: tuple[str, ...] = ("_logger",)

    def __init__(self, logger: FilteringBoundLogger) -> None:
        """Initialize the output sink.

        Args:
            logger: Logger receiving the entries.
        """
        self._logger: FilteringBoundLogger = logger

    async def write_line(self, node: str, pid: int, line: str) -> None:
        """Log a line of process output."""
        self._logger.debug("output", node=node, pid=pid, line=line)

    async def write_event(self, event: NodeEvent) -> None:
        """Log a lifecycle event."""
        self._logger.info(
            event.event_type.value,
            node=event.node,
            pid=event.pid,
            exit_code=event.exit_code,
            message=event.message,
        )


@final
class OutputTail:
    """Bounded buffer of the most recent output lines."""

    __slots__: tuple[str, ...] = ("_lines",)

    def __init__(self, size: int) -> None:
        """Initialize the buffer.

        Args:
            size: Number of lines kept.
        """
        self._lines: deque[str] = deque(maxlen=size)

    def append(self, line: str) -> None:
        """Record a line, dropping the oldest one when full."""
        self._lines.append(line)

    def lines(self) -> tuple[str, ...]:
        """Return the kept lines, oldest first."""
        return tuple(self._lines)

    def render(self) -> str:
        """Return the kept lines as an indented block for error messages."""
        return "\n".join(f"  {line}" for line in self._lines)
