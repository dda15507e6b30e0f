"""Integration tests for ProcessHandle against short-lived Python child processes."""

import os
import sys
import textwrap
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import anyio
import anyio.abc
import pytest

from embedded_cassandra.config import ConfigBuilder, NodeConfig, PortName, Settings
from embedded_cassandra.exceptions import ProcessError, StartError
from embedded_cassandra.process import (
    LaunchSpec,
    LifecycleState,
    NodeEvent,
    NodeEventType,
    ProcessHandle,
    ReadinessRules,
)
from embedded_cassandra.version import Version

pytestmark = pytest.mark.anyio

READY_THEN_WAIT = """
import signal, sys, time
signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
print("booting", flush=True)
print("node is READY", flush=True)
while True:
    time.sleep(0.1)
"""

SLOW_READY = """
import signal, sys, time
signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
time.sleep(0.5)
print("node is READY", flush=True)
while True:
    time.sleep(0.1)
"""

FAIL_THEN_WAIT = """
import time
print("FATAL: cannot start", flush=True)
while True:
    time.sleep(0.1)
"""

FAIL_THEN_EXIT = """
import sys
print("FATAL: cannot start", flush=True)
sys.exit(2)
"""

EXIT_EARLY = """
import sys
print("one", flush=True)
sys.exit(3)
"""

HANG = """
import time
print("loading", flush=True)
while True:
    time.sleep(0.1)
"""

IGNORE_TERM = """
import signal, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("node is READY", flush=True)
while True:
    time.sleep(0.1)
"""

MANY_LINES = """
import signal, sys, time
signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
for i in range(50):
    print("line %d" % i, flush=True)
print("FATAL: done", flush=True)
while True:
    time.sleep(0.1)
"""


class RecordingSink:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self.events: list[NodeEvent] = []

    async def write_line(self, node: str, pid: int, line: str) -> None:
        self.lines.append(line)

    async def write_event(self, event: NodeEvent) -> None:
        self.events.append(event)

    @property
    def event_types(self) -> list[NodeEventType]:
        return [event.event_type for event in self.events]


def _config() -> NodeConfig:
    return (
        ConfigBuilder()
        .set_port(PortName.NATIVE_TRANSPORT, 9042)
        .set_port(PortName.STORAGE, 7000)
        .set_port(PortName.JMX, 7199)
        .freeze()
    )


def _launch(script: str, cwd: Path) -> LaunchSpec:
    return LaunchSpec(
        command=(sys.executable, "-c", textwrap.dedent(script)),
        cwd=cwd,
        env=dict(os.environ),
    )


HandleFactory = Callable[..., ProcessHandle]


@asynccontextmanager
async def _handles(tmp_path: Path) -> AsyncIterator[tuple[HandleFactory, anyio.abc.TaskGroup]]:
    handles: list[ProcessHandle] = []
    async with anyio.create_task_group() as tg:

        def factory(
            script: str,
            *,
            settings: Settings | None = None,
            sink: RecordingSink | None = None,
            rules: ReadinessRules | None = None,
        ) -> ProcessHandle:
            handle = ProcessHandle(
                _launch(script, tmp_path),
                version=Version.parse("4.1.3"),
                config=_config(),
                rules=rules or ReadinessRules.of(["READY"], failure=["FATAL"]),
                task_group=tg,
                settings=settings or Settings(startup_timeout=10, shutdown_timeout=5, kill_timeout=5),
                output_sink=sink or RecordingSink(),
                name="test-node",
            )
            handles.append(handle)
            return handle

        try:
            yield factory, tg
        finally:
            with anyio.CancelScope(shield=True):
                for handle in handles:
                    await handle.close()
            tg.cancel_scope.cancel()


async def _wait_for_state(handle: ProcessHandle, state: LifecycleState) -> None:
    with anyio.fail_after(10):
        while handle.state is not state:
            await anyio.sleep(0.01)


class TestStart:
    async def test_reaches_running(self, tmp_path: Path) -> None:
        sink = RecordingSink()
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT, sink=sink)

            await handle.start()

            assert handle.state is LifecycleState.RUNNING
            assert handle.is_running()
            assert handle.pid is not None
            assert sink.lines[:2] == ["booting", "node is READY"]
            assert sink.event_types == [NodeEventType.SPAWNED, NodeEventType.READY]

    async def test_start_is_idempotent(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT)
            await handle.start()
            pid = handle.pid

            await handle.start()

            assert handle.pid == pid

    async def test_concurrent_starts_share_one_process(self, tmp_path: Path) -> None:
        sink = RecordingSink()
        async with _handles(tmp_path) as (make, _):
            handle = make(SLOW_READY, sink=sink)

            async with anyio.create_task_group() as starters:
                for _ in range(3):
                    starters.start_soon(handle.start)

            assert handle.state is LifecycleState.RUNNING
            assert sink.event_types.count(NodeEventType.SPAWNED) == 1

    async def test_concurrent_starts_share_one_failure(self, tmp_path: Path) -> None:
        errors: list[StartError] = []
        async with _handles(tmp_path) as (make, _):
            handle = make(FAIL_THEN_WAIT)

            async def start() -> None:
                try:
                    await handle.start()
                except StartError as e:
                    errors.append(e)

            async with anyio.create_task_group() as starters:
                for _ in range(3):
                    starters.start_soon(start)

        assert len(errors) == 3
        assert len({str(e) for e in errors}) == 1

    async def test_failure_marker_fails_and_kills(self, tmp_path: Path) -> None:
        sink = RecordingSink()
        async with _handles(tmp_path) as (make, _):
            handle = make(FAIL_THEN_WAIT, sink=sink)

            with pytest.raises(StartError, match="FATAL: cannot start") as exc_info:
                await handle.start()

            assert handle.state is LifecycleState.FAILED
            assert handle.exit_code is not None
            assert exc_info.value.node == "test-node"
            assert exc_info.value.output == ("FATAL: cannot start",)
            assert NodeEventType.FAILED in sink.event_types

    async def test_failure_marker_wins_over_exit(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(FAIL_THEN_EXIT)

            with pytest.raises(StartError, match="FATAL") as exc_info:
                await handle.start()

            assert "before becoming ready" not in str(exc_info.value)
            assert handle.state is LifecycleState.FAILED

    async def test_early_exit_fails(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(EXIT_EARLY)

            with pytest.raises(StartError, match="exited with code 3") as exc_info:
                await handle.start()

            assert exc_info.value.exit_code == 3
            assert exc_info.value.output == ("one",)
            assert handle.state is LifecycleState.FAILED

    async def test_timeout_fails_and_kills(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(HANG, settings=Settings(startup_timeout=0.5))

            with pytest.raises(StartError, match="not ready within 0.5 s"):
                await handle.start()

            assert handle.state is LifecycleState.FAILED
            assert await handle.wait() != 0

    async def test_error_keeps_only_recent_output(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(MANY_LINES, settings=Settings(output_lines=3))

            with pytest.raises(StartError) as exc_info:
                await handle.start()

            assert exc_info.value.output == ("line 48", "line 49", "FATAL: done")
            assert "line 10" not in str(exc_info.value)

    async def test_failed_handle_can_start_again(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(EXIT_EARLY)
            with pytest.raises(StartError):
                await handle.start()
            first_pid = handle.pid

            with pytest.raises(StartError):
                await handle.start()

            assert handle.pid != first_pid

    async def test_spawn_failure(self, tmp_path: Path) -> None:
        async with anyio.create_task_group() as tg:
            handle = ProcessHandle(
                LaunchSpec(command=(str(tmp_path / "missing"),), cwd=tmp_path, env={}),
                version=Version.parse("4.1.3"),
                config=_config(),
                rules=ReadinessRules.of(["READY"]),
                task_group=tg,
                output_sink=RecordingSink(),
            )

            with pytest.raises(StartError, match="could not be spawned"):
                await handle.start()

            assert handle.state is LifecycleState.FAILED
            assert handle.pid is None

    async def test_waits_for_probe_ports(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(
                READY_THEN_WAIT,
                settings=Settings(startup_timeout=0.5),
                rules=ReadinessRules.of(["READY"], probe_ports=[1]),
            )

            with pytest.raises(StartError, match="not accepting connections"):
                await handle.start()


class TestStop:
    async def test_graceful_stop(self, tmp_path: Path) -> None:
        sink = RecordingSink()
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT, sink=sink)
            await handle.start()

            await handle.stop()

            assert handle.state is LifecycleState.STOPPED
            assert handle.exit_code == 0
            assert not handle.is_running()
            assert sink.event_types[-2:] == [NodeEventType.STOPPING, NodeEventType.STOPPED]

    async def test_stop_is_idempotent(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT)
            await handle.start()

            await handle.stop()
            await handle.stop()

            assert handle.state is LifecycleState.STOPPED

    async def test_stop_before_start_is_a_no_op(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT)

            await handle.stop()

            assert handle.state is LifecycleState.NOT_STARTED

    async def test_kills_after_shutdown_timeout(self, tmp_path: Path) -> None:
        sink = RecordingSink()
        async with _handles(tmp_path) as (make, _):
            handle = make(IGNORE_TERM, sink=sink, settings=Settings(shutdown_timeout=0.5))
            await handle.start()

            await handle.stop()

            assert handle.state is LifecycleState.STOPPED
            assert handle.exit_code is not None
            assert handle.exit_code < 0
            assert NodeEventType.KILLED in sink.event_types

    async def test_stop_interrupts_start(self, tmp_path: Path) -> None:
        errors: list[StartError] = []
        async with _handles(tmp_path) as (make, tg):
            handle = make(HANG)

            async def start() -> None:
                try:
                    await handle.start()
                except StartError as e:
                    errors.append(e)

            tg.start_soon(start)
            await _wait_for_state(handle, LifecycleState.STARTING)

            with anyio.fail_after(5):
                await handle.stop()

            assert handle.state is LifecycleState.STOPPED
            with anyio.fail_after(5):
                while not errors:
                    await anyio.sleep(0.01)

        assert "interrupted by stop()" in str(errors[0])

    async def test_close_makes_start_a_no_op(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT)
            await handle.start()
            await handle.close()

            await handle.start()

            assert handle.state is LifecycleState.STOPPED


class TestUnexpectedExit:
    async def test_running_node_that_dies_becomes_failed(self, tmp_path: Path) -> None:
        sink = RecordingSink()
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT, sink=sink)
            await handle.start()
            assert handle.pid is not None

            os.kill(handle.pid, 9)
            exit_code = await handle.wait()

            await _wait_for_state(handle, LifecycleState.FAILED)
            assert exit_code == -9
            assert not handle.is_running()
            assert sink.event_types[-1] is NodeEventType.EXITED

    async def test_wait_before_start_raises(self, tmp_path: Path) -> None:
        async with _handles(tmp_path) as (make, _):
            handle = make(READY_THEN_WAIT)

            with pytest.raises(ProcessError, match="has not been started"):
                _ = await handle.wait()
