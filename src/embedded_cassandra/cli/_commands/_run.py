# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""Run command - starts one node and keeps it running until interrupted."""

from __future__ import annotations

import signal
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import anyio
from cyclopts import App, Parameter
from rich.table import Table

from embedded_cassandra._cassandra import AsyncCassandra
from embedded_cassandra.config import ConfigBuilder, PortName, Settings, load_settings
from embedded_cassandra.distribution import Distribution
from embedded_cassandra.exceptions import (
    ConfigError,
    EmbeddedCassandraError,
    FileError,
    FormatError,
    PortAllocationError,
    StartError,
    StopError,
)
from embedded_cassandra.process import ConsoleOutputSink
from embedded_cassandra.utils import LOOPBACK
from embedded_cassandra.version import Version

from ._shared import ExitCode, exit_with_error, get_console

if TYPE_CHECKING:
    from rich.console import Console

    from embedded_cassandra.config import NodeConfig

app = App(name="run", help="Start a Cassandra node and stream its output.", help_on_error=True)


def parse_env_assignments(assignments: list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` assignments.

    Raises:
        ConfigError: If an assignment has no ``=`` or an empty key.
    """
    env: dict[str, str] = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key:
            msg = f"Invalid environment assignment '{assignment}', expected KEY=VALUE"
            raise ConfigError(msg, key="environment")
        env[key] = value
    return env


def ports_table(config: NodeConfig) -> Table:
    """Render the bound ports of a node."""
    table = Table(title="Bound ports")
    table.add_column("Port")
    table.add_column("Address")
    table.add_column("Number", justify="right")
    for name, port in config.ports.items():
        if name in (PortName.STORAGE, PortName.STORAGE_SSL):
            address = config.listen_address
        elif name is PortName.JMX:
            address = LOOPBACK
        else:
            address = config.rpc_address
        table.add_row(name.value, address, str(port))
    return table


async def _run_node(cassandra: AsyncCassandra, console: Console) -> int | None:
    async with cassandra:
        await cassandra.start()
        if cassandra.bound_config is not None:
            console.print(ports_table(cassandra.bound_config))

        exit_code: int | None = None
        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async with anyio.create_task_group() as tg:

                async def watch_exit() -> None:
                    nonlocal exit_code
                    exit_code = await cassandra.wait()
                    tg.cancel_scope.cancel()

                tg.start_soon(watch_exit)
                async for signum in signals:
                    console.print(f"Received {signal.Signals(signum).name}, stopping")
                    break
                tg.cancel_scope.cancel()
        return exit_code


@app.default
def run(  # noqa: PLR0913
    distribution: Path,
    server_version: str,
    /,
    *,
    port: Annotated[
        int | None,
        Parameter(help="Native transport (CQL) port. Allocated when omitted."),
    ] = None,
    jmx_port: Annotated[
        int | None,
        Parameter(help="JMX port. Allocated when omitted."),
    ] = None,
    jvm_option: Annotated[
        list[str] | None,
        Parameter(help="Extra JVM option; repeat for several.", allow_leading_hyphen=True),
    ] = None,
    env: Annotated[
        list[str] | None,
        Parameter(help="Environment variable as KEY=VALUE; repeat for several."),
    ] = None,
    working_directory: Annotated[
        Path | None,
        Parameter(help="Working directory. A temporary one is used when omitted."),
    ] = None,
    settings: Annotated[
        Path | None,
        Parameter(help="TOML settings file."),
    ] = None,
    startup_timeout: Annotated[
        float | None,
        Parameter(help="Seconds to wait for the node to become ready."),
    ] = None,
) -> None:
    """Start a node from DISTRIBUTION and keep it running until interrupted.

    Args:
        distribution: Unpacked Cassandra distribution directory.
        server_version: Version of the distribution, such as 4.1.3.
        port: Native transport port.
        jmx_port: JMX port.
        jvm_option: Extra JVM options.
        env: Environment variables for the server process.
        working_directory: Working directory for the node.
        settings: TOML settings file.
        startup_timeout: Startup timeout in seconds.
    """
    console = get_console()

    try:
        version = Version.parse(server_version)
    except FormatError as e:
        exit_with_error(str(e), ExitCode.VALIDATION_ERROR)

    overrides: dict[str, object] = {}
    if startup_timeout is not None:
        overrides["startup_timeout"] = startup_timeout

    try:
        loaded: Settings = load_settings(settings, overrides)
        builder = ConfigBuilder(working_directory=working_directory)
        builder.set_port(PortName.NATIVE_TRANSPORT, port)
        builder.set_port(PortName.JMX, jmx_port)
        builder.add_jvm_options(*(jvm_option or []))
        for key, value in parse_env_assignments(env or []).items():
            builder.set_environment(key, value)
        cassandra = AsyncCassandra(
            Distribution.from_directory(distribution),
            version,
            config=builder,
            settings=loaded,
            output_sink=ConsoleOutputSink(console),
        )
    except (FileNotFoundError, ConfigError, FileError) as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR)

    try:
        exit_code = anyio.run(_run_node, cassandra, console)
    except (StartError, PortAllocationError, ConfigError, FileError) as e:
        exit_with_error(str(e), ExitCode.START_ERROR)
    except StopError as e:
        exit_with_error(str(e), ExitCode.STOP_ERROR)
    except EmbeddedCassandraError as e:
        exit_with_error(str(e), ExitCode.INTERNAL_ERROR)

    if exit_code is not None:
        exit_with_error(f"Cassandra exited with code {exit_code}", ExitCode.START_ERROR)
