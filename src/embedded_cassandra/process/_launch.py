"""Launch command and environment for the server process."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from embedded_cassandra.customizers import JVM_OPTIONS, JVM_SERVER_OPTIONS
from embedded_cassandra.enums import PortName
from embedded_cassandra.version import Version

from ._models import LaunchSpec

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from embedded_cassandra.config import NodeConfig
    from embedded_cassandra.distribution import Distribution

_V21 = Version.of(2, 1)
_V31 = Version.of(3, 1)
_V4 = Version.of(4, 0)

JVM_EXTRA_OPTS = "JVM_EXTRA_OPTS"
JAVA_HOME = "JAVA_HOME"

_PORT_PROPERTIES: dict[PortName, str] = {
    PortName.NATIVE_TRANSPORT: "cassandra.native_transport_port",
    PortName.NATIVE_TRANSPORT_SSL: "cassandra.native_transport_port_ssl",
    PortName.STORAGE: "cassandra.storage_port",
    PortName.STORAGE_SSL: "cassandra.ssl_storage_port",
    PortName.RPC: "cassandra.rpc_port",
    PortName.JMX: "cassandra.jmx.local.port",
}


def build_command(
    distribution: Distribution,
    version: Version,
    config: NodeConfig,
    working_directory: Path,
) -> tuple[str, ...]:
    """Return the command line starting the server in the foreground."""
    script = working_directory / distribution.launch_script
    if distribution.platform.is_windows:
        command = ["powershell", "-ExecutionPolicy", "Unrestricted", str(script), "-f"]
        if version > _V21:
            command.append("-a")
        return tuple(command)

    command = [str(script), "-f"]
    if config.allow_root and version > _V31:
        command.append("-R")
    return tuple(command)


def jvm_extra_options(version: Version, config: NodeConfig, working_directory: Path) -> list[str]:
    """Return the options passed to the JVM through ``JVM_EXTRA_OPTS``.

    Port properties come first, then system properties. Caller JVM options
    are included only when the distribution has no JVM options file to hold
    them.
    """
    options = [f"-D{_PORT_PROPERTIES[name]}={port}" for name, port in config.ports.items()]
    options.extend(f"-D{key}={value}" for key, value in config.system_properties.items())

    options_file = JVM_SERVER_OPTIONS if version.is_at_least(_V4) else JVM_OPTIONS
    if not (working_directory / options_file).is_file():
        options.extend(config.jvm_options)
    return options


def build_launch(
    distribution: Distribution,
    version: Version,
    config: NodeConfig,
    working_directory: Path,
    base_env: Mapping[str, str] | None = None,
) -> LaunchSpec:
    """Build the command, working directory and environment of the server.

    The environment is layered: ``base_env`` (the current environment by
    default), then ``JAVA_HOME`` and ``JVM_EXTRA_OPTS``, then
    ``config.environment``. Later layers win.

    Args:
        distribution: Distribution being launched.
        version: Server version.
        config: Frozen node configuration.
        working_directory: Prepared working directory.
        base_env: Base environment; ``os.environ`` when None.

    Returns:
        The launch spec.
    """
    env = dict(os.environ if base_env is None else base_env)
    if config.java_home is not None:
        env[JAVA_HOME] = str(config.java_home)

    extra = jvm_extra_options(version, config, working_directory)
    existing = env.get(JVM_EXTRA_OPTS, "").strip()
    env[JVM_EXTRA_OPTS] = " ".join([existing, *extra] if existing else extra)

    env.update(config.environment)

    return LaunchSpec(
        command=build_command(distribution, version, config, working_directory),
        cwd=working_directory,
        env=env,
    )
