"""Process handle managing one Cassandra server process.

This module provides the ProcessHandle class that spawns the server, streams
its combined output to a sink and a readiness detector, and drives the
lifecycle state machine. All state transitions happen under a per-handle
lock. The lock is never held while waiting for readiness, so stop() can
interrupt a start() in progress.
"""

from __future__ import annotations

import os
import signal
import subprocess
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc
import anyio.to_thread

from embedded_cassandra.config import Settings
from embedded_cassandra.exceptions import ProcessError, StartError, StopError
from embedded_cassandra.utils import LOOPBACK, create_logger, is_port_busy

from ._models import LifecycleState, NodeEvent, NodeEventType
from ._output import LoggerOutputSink, OutputTail
from ._readiness import Readiness, ReadinessDetector

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from structlog.typing import FilteringBoundLogger

    from embedded_cassandra.config import NodeConfig
    from embedded_cassandra.version import Version

    from ._models import LaunchSpec
    from ._protocol import OutputSink
    from ._readiness import ReadinessRules

MAX_LINE_BYTES = 64 * 1024

_WINDOWS = os.name == "nt"
_DRAIN_TIMEOUT = 2.0
_PROBE_INTERVAL = 0.2
_WILDCARD_ADDRESSES = frozenset({"0.0.0.0", "::"})  # noqa: S104


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r")


async def read_lines(stream: anyio.abc.ByteReceiveStream) -> AsyncIterator[str]:
    """Yield decoded lines from a byte stream.

    Lines longer than MAX_LINE_BYTES are split. Undecodable bytes are
    replaced. Only one chunk plus one partial line is buffered at a time.
    """
    pending = bytearray()
    split = False
    try:
        async for chunk in stream:
            pending.extend(chunk)
            while True:
                newline = pending.find(b"\n")
                if split and newline == 0:
                    # Terminator of a line already emitted at the length limit
                    del pending[:1]
                    split = False
                    continue
                if 0 <= newline <= MAX_LINE_BYTES:
                    raw = bytes(pending[:newline])
                    del pending[: newline + 1]
                    split = False
                elif len(pending) >= MAX_LINE_BYTES:
                    raw = bytes(pending[:MAX_LINE_BYTES])
                    del pending[:MAX_LINE_BYTES]
                    split = True
                else:
                    break
                yield _decode(raw)
    except (anyio.ClosedResourceError, anyio.BrokenResourceError):
        # Stream closed underneath us, which happens on kill
        pass
    if pending:
        yield _decode(bytes(pending))


@final
class _StartAttempt:
    """Bookkeeping of one spawned process."""

    __slots__: tuple[str, ...] = (
        "detector",
        "drained",
        "error",
        "exit_code",
        "exited",
        "interrupted",
        "process",
        "settled",
        "tail",
        "wake",
    )

    def __init__(self, process: anyio.abc.Process, detector: ReadinessDetector, tail: OutputTail) -> None:
        self.process: anyio.abc.Process = process
        self.detector: ReadinessDetector = detector
        self.tail: OutputTail = tail
        self.wake: anyio.Event = anyio.Event()
        self.drained: anyio.Event = anyio.Event()
        self.exited: anyio.Event = anyio.Event()
        self.settled: anyio.Event = anyio.Event()
        self.exit_code: int | None = None
        self.interrupted: bool = False
        self.error: str | None = None


@final
class ProcessHandle:
    """Manages the lifecycle of one server process.

    Output is pumped by a task in the caller-provided task group. Each line
    goes to the output sink, the tail buffer and the readiness detector
    before the next read, so a slow consumer slows the child down instead
    of growing a buffer.
    """

    __slots__: tuple[str, ...] = (
        "_attempt",
        "_closed",
        "_config",
        "_launch",
        "_lock",
        "_logger",
        "_name",
        "_output_sink",
        "_rules",
        "_settings",
        "_state",
        "_task_group",
        "_version",
    )

    def __init__(  # noqa: PLR0913
        self,
        launch: LaunchSpec,
        *,
        version: Version,
        config: NodeConfig,
        rules: ReadinessRules,
        task_group: anyio.abc.TaskGroup,
        settings: Settings | None = None,
        output_sink: OutputSink | None = None,
        logger: FilteringBoundLogger | None = None,
        name: str = "cassandra",
    ) -> None:
        """Initialize the handle. Nothing is spawned until start().

        Args:
            launch: Command, working directory and environment.
            version: Server version.
            config: Frozen node configuration.
            rules: Readiness rules.
            task_group: Task group running the output pump and exit watcher.
            settings: Timeouts and tail size.
            output_sink: Sink for output and events; logs through ``logger``
                when None.
            logger: Logger for lifecycle events.
            name: Node name used in events and errors.
        """
        self._launch: LaunchSpec = launch
        self._version: Version = version
        self._config: NodeConfig = config
        self._rules: ReadinessRules = rules
        self._task_group: anyio.abc.TaskGroup = task_group
        self._settings: Settings = settings if settings is not None else Settings()
        self._name: str = name
        self._logger: FilteringBoundLogger = (
            logger if logger is not None else create_logger(node=name, version=str(version))
        )
        self._output_sink: OutputSink = output_sink if output_sink is not None else LoggerOutputSink(self._logger)
        self._lock: anyio.Lock = anyio.Lock()
        self._state: LifecycleState = LifecycleState.NOT_STARTED
        self._attempt: _StartAttempt | None = None
        self._closed: bool = False

    @property
    def name(self) -> str:
        """Return the node name."""
        return self._name

    @property
    def state(self) -> LifecycleState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def pid(self) -> int | None:
        """Return the process ID of the latest process, None if never spawned."""
        return self._attempt.process.pid if self._attempt is not None else None

    @property
    def exit_code(self) -> int | None:
        """Return the exit code of the latest process, None while it runs."""
        return self._attempt.exit_code if self._attempt is not None else None

    @property
    def bound_config(self) -> NodeConfig:
        """Return the configuration the process was launched with."""
        return self._config

    @property
    def version(self) -> Version:
        """Return the server version."""
        return self._version

    def is_running(self) -> bool:
        """Check if the node is ready and its process alive."""
        return (
            self._state is LifecycleState.RUNNING
            and self._attempt is not None
            and not self._attempt.exited.is_set()
        )

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code.

        Raises:
            ProcessError: If no process has been spawned.
        """
        attempt = self._attempt
        if attempt is None:
            msg = f"Cassandra node '{self._name}' has not been started"
            raise ProcessError(msg, node=self._name)
        await attempt.exited.wait()
        return attempt.exit_code if attempt.exit_code is not None else -1

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def _emit(
        self,
        event_type: NodeEventType,
        *,
        message: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        event = NodeEvent(
            node=self._name,
            event_type=event_type,
            pid=self.pid,
            exit_code=exit_code,
            message=message,
        )
        try:
            await self._output_sink.write_event(event)
        except Exception as e:  # noqa: BLE001
            # Output sink errors must not break the lifecycle
            self._logger.warning("output_sink_failed", error=str(e))

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the node and wait until it is ready.

        Idempotent: concurrent callers share one startup attempt and observe
        the same outcome, and calls in RUNNING, STOPPING or STOPPED return
        immediately. A FAILED handle spawns a new process.

        Raises:
            StartError: If the process cannot be spawned, reports a failure,
                exits early, times out or is stopped while starting.
        """
        async with self._lock:
            if self._closed:
                return
            if self._state in (LifecycleState.NOT_STARTED, LifecycleState.FAILED):
                attempt = await self._spawn()
                owner = True
            elif self._state is LifecycleState.STARTING and self._attempt is not None:
                attempt = self._attempt
                owner = False
            else:
                return

        if owner:
            await self._settle(attempt)
        else:
            await attempt.settled.wait()

        if attempt.error is not None:
            raise StartError(
                attempt.error,
                node=self._name,
                exit_code=attempt.exit_code,
                output=attempt.tail.lines(),
            )

    async def _spawn(self) -> _StartAttempt:
        launch = self._launch
        self._logger.info("node_starting", command=list(launch.command), cwd=str(launch.cwd))
        try:
            process = await anyio.open_process(
                list(launch.command),
                cwd=launch.cwd,
                env=launch.env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=not _WINDOWS,
            )
        except OSError as e:
            self._state = LifecycleState.FAILED
            self._logger.error("node_spawn_failed", error=str(e))
            await self._emit(NodeEventType.FAILED, message=str(e))
            msg = f"Cassandra node '{self._name}' could not be spawned: {e}"
            raise StartError(msg, node=self._name) from e

        attempt = _StartAttempt(
            process,
            ReadinessDetector(self._rules),
            OutputTail(self._settings.output_lines),
        )
        self._attempt = attempt
        self._state = LifecycleState.STARTING
        self._task_group.start_soon(self._pump_output, attempt)
        self._task_group.start_soon(self._watch_exit, attempt)
        await self._emit(NodeEventType.SPAWNED, message=" ".join(launch.command))
        return attempt

    async def _settle(self, attempt: _StartAttempt) -> None:
        timeout = self._settings.startup_timeout
        try:
            ports_open = False
            with anyio.move_on_after(timeout):
                await attempt.wake.wait()
                if attempt.detector.outcome is Readiness.READY and not attempt.interrupted:
                    ports_open = await self._wait_for_ports(attempt)

            async with self._lock:
                outcome, reason = self._decide(attempt, ports_open=ports_open)
                if outcome is Readiness.READY:
                    self._state = LifecycleState.RUNNING
                    self._logger.info(
                        "node_ready",
                        pid=attempt.process.pid,
                        ports={name.value: port for name, port in self._config.ports.items()},
                    )
                    await self._emit(NodeEventType.READY, message=reason)
                elif outcome is Readiness.INTERRUPTED:
                    # stop() already killed the process and set the state
                    attempt.error = self._start_error_message(attempt, reason)
                else:
                    await self._kill_quietly(attempt)
                    self._state = LifecycleState.FAILED
                    attempt.error = self._start_error_message(attempt, reason)
                    self._logger.error(
                        "node_start_failed",
                        outcome=outcome.value,
                        reason=reason,
                        exit_code=attempt.exit_code,
                    )
                    await self._emit(NodeEventType.FAILED, message=reason, exit_code=attempt.exit_code)
        except anyio.get_cancelled_exc_class():
            with anyio.CancelScope(shield=True):
                async with self._lock:
                    if self._attempt is attempt and self._state is LifecycleState.STARTING:
                        await self._kill_quietly(attempt)
                        self._state = LifecycleState.FAILED
                        self._logger.warning("node_start_cancelled", pid=attempt.process.pid)
                if attempt.error is None:
                    attempt.error = self._start_error_message(attempt, "startup was cancelled")
            raise
        finally:
            attempt.settled.set()

    def _decide(self, attempt: _StartAttempt, *, ports_open: bool) -> tuple[Readiness, str]:
        detector = attempt.detector
        if attempt.interrupted:
            return Readiness.INTERRUPTED, "startup was interrupted by stop()"
        if detector.outcome is Readiness.FAILED:
            return Readiness.FAILED, detector.reason or "startup failed"
        if attempt.exited.is_set():
            return Readiness.FAILED, f"process exited with code {attempt.exit_code} before becoming ready"
        if detector.outcome is Readiness.READY and (ports_open or not self._rules.probe_ports):
            return Readiness.READY, detector.reason or "ready"
        if detector.outcome is Readiness.READY:
            ports = ", ".join(str(port) for port in self._rules.probe_ports)
            timeout = self._settings.startup_timeout
            return Readiness.TIMEOUT, f"ports {ports} not accepting connections within {timeout:g} s"
        return Readiness.TIMEOUT, f"not ready within {self._settings.startup_timeout:g} s"

    def _start_error_message(self, attempt: _StartAttempt, reason: str) -> str:
        msg = f"Cassandra node '{self._name}' failed to start: {reason}"
        tail = attempt.tail.render()
        if tail:
            msg = f"{msg}\nLast output:\n{tail}"
        return msg

    async def _wait_for_ports(self, attempt: _StartAttempt) -> bool:
        if not self._rules.probe_ports:
            return True
        host = self._config.rpc_address
        if host in _WILDCARD_ADDRESSES:
            host = LOOPBACK
        ports = self._rules.probe_ports
        while not (attempt.interrupted or attempt.exited.is_set()):
            results = [await anyio.to_thread.run_sync(is_port_busy, host, port) for port in ports]
            if all(results):
                return True
            await anyio.sleep(_PROBE_INTERVAL)
        return False

    # -------------------------------------------------------------------------
    # Output and exit
    # -------------------------------------------------------------------------

    async def _pump_output(self, attempt: _StartAttempt) -> None:
        stream = attempt.process.stdout
        pid = attempt.process.pid
        try:
            if stream is None:
                return
            async for line in read_lines(stream):
                try:
                    await self._output_sink.write_line(self._name, pid, line)
                except Exception as e:  # noqa: BLE001
                    # Output sink errors must not stop the pump
                    self._logger.warning("output_sink_failed", error=str(e))
                attempt.tail.append(line)
                if attempt.detector.feed(line) is not None:
                    attempt.wake.set()
        finally:
            attempt.drained.set()

    async def _watch_exit(self, attempt: _StartAttempt) -> None:
        exit_code = await attempt.process.wait()
        # Let the pump deliver the last lines so a failure marker wins over the bare exit
        with anyio.move_on_after(_DRAIN_TIMEOUT):
            await attempt.drained.wait()
        await attempt.process.aclose()
        attempt.exit_code = exit_code
        attempt.exited.set()
        _ = attempt.detector.process_exited(exit_code)
        attempt.wake.set()

        async with self._lock:
            if self._attempt is attempt and self._state is LifecycleState.RUNNING:
                self._state = LifecycleState.FAILED
                self._logger.error("node_exited_unexpectedly", pid=attempt.process.pid, exit_code=exit_code)
                await self._emit(NodeEventType.EXITED, exit_code=exit_code, message="exited unexpectedly")

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Stop the node and make every later start() a no-op.

        Raises:
            StopError: If the process cannot be signalled or survives the kill.
        """
        async with self._lock:
            self._closed = True
        await self.stop()

    async def stop(self) -> None:
        """Stop the node.

        No-op in NOT_STARTED, STOPPED and FAILED. During STARTING the
        readiness wait is interrupted and the process killed at once.
        Otherwise a termination signal is sent, and the process is killed if
        it outlives the shutdown timeout.

        Raises:
            StopError: If the process cannot be signalled or survives the kill.
        """
        async with self._lock:
            attempt = self._attempt
            if attempt is None or self._state in (
                LifecycleState.NOT_STARTED,
                LifecycleState.STOPPED,
                LifecycleState.FAILED,
            ):
                return

            if self._state is LifecycleState.STARTING:
                attempt.interrupted = True
                attempt.wake.set()
                self._state = LifecycleState.STOPPING
                self._logger.info("node_start_interrupted", pid=attempt.process.pid)
                await self._emit(NodeEventType.STOPPING, message="interrupting startup")
                await self._kill_or_raise(attempt)
            else:
                self._state = LifecycleState.STOPPING
                self._logger.info("node_stopping", pid=attempt.process.pid)
                await self._emit(NodeEventType.STOPPING)
                self._signal(attempt, kill=False)
                with anyio.move_on_after(self._settings.shutdown_timeout):
                    await attempt.exited.wait()
                if not attempt.exited.is_set():
                    self._logger.warning(
                        "node_stop_timed_out",
                        pid=attempt.process.pid,
                        timeout=self._settings.shutdown_timeout,
                    )
                    await self._kill_or_raise(attempt)

            self._state = LifecycleState.STOPPED
            self._logger.info("node_stopped", exit_code=attempt.exit_code)
            await self._emit(NodeEventType.STOPPED, exit_code=attempt.exit_code)

    async def _kill_or_raise(self, attempt: _StartAttempt) -> None:
        await self._emit(NodeEventType.KILLED)
        if not await self._kill(attempt):
            msg = (
                f"Cassandra node '{self._name}' (pid {attempt.process.pid}) "
                f"did not exit within {self._settings.kill_timeout:g} s of being killed"
            )
            raise StopError(msg, node=self._name, pid=attempt.process.pid)

    async def _kill_quietly(self, attempt: _StartAttempt) -> None:
        try:
            if not await self._kill(attempt):
                self._logger.error("node_kill_timed_out", pid=attempt.process.pid)
        except StopError as e:
            self._logger.error("node_kill_failed", pid=attempt.process.pid, error=str(e))

    async def _kill(self, attempt: _StartAttempt) -> bool:
        self._signal(attempt, kill=True)
        with anyio.move_on_after(self._settings.kill_timeout):
            await attempt.exited.wait()
        return attempt.exited.is_set()

    def _signal(self, attempt: _StartAttempt, *, kill: bool) -> None:
        process = attempt.process
        try:
            if _WINDOWS:
                if process.returncode is None:
                    if kill:
                        process.kill()
                    else:
                        process.terminate()
            else:
                # The process leads its own session, so its group id is its pid
                os.killpg(process.pid, signal.SIGKILL if kill else signal.SIGTERM)
        except ProcessLookupError:
            # Process already exited
            return
        except OSError as e:
            msg = f"Cannot signal Cassandra node '{self._name}' (pid {process.pid}): {e}"
            raise StopError(msg, node=self._name, pid=process.pid) from e
