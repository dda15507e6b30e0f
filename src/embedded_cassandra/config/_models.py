# pyright: reportExplicitAny=false, reportAny=false
"""Node configuration models.

This module provides the two halves of a node configuration:

- ConfigBuilder: mutable, caller-facing builder. Setters only mutate.
- NodeConfig: frozen Pydantic snapshot produced by ``ConfigBuilder.freeze()``
  after ports have been allocated. Everything downstream of the allocator
  (customizers, launch, process handle) reads a NodeConfig.
"""

import copy
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Annotated, Any, ClassVar, Protocol, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from embedded_cassandra.enums import PortName
from embedded_cassandra.exceptions import ConfigError

PortNumber = Annotated[int, Field(ge=1, le=65535)]

DEFAULT_ADDRESS = "127.0.0.1"


class FeatureFlags(Protocol):
    """Anything exposing the transport switches that decide required ports."""

    @property
    def start_native_transport(self) -> bool: ...

    @property
    def native_transport_ssl(self) -> bool: ...

    @property
    def storage_ssl(self) -> bool: ...

    @property
    def start_rpc(self) -> bool: ...


def required_ports(flags: FeatureFlags) -> tuple[PortName, ...]:
    """Return the ports the enabled feature set needs, in allocation order.

    Storage and JMX are always required. Native transport, its SSL variant,
    SSL storage and RPC depend on their feature switches.
    """
    names: list[PortName] = []
    if flags.start_native_transport:
        names.append(PortName.NATIVE_TRANSPORT)
        if flags.native_transport_ssl:
            names.append(PortName.NATIVE_TRANSPORT_SSL)
    names.append(PortName.STORAGE)
    if flags.storage_ssl:
        names.append(PortName.STORAGE_SSL)
    if flags.start_rpc:
        names.append(PortName.RPC)
    names.append(PortName.JMX)
    return tuple(names)


def _port_problems(ports: dict[PortName, int | None]) -> list[tuple[PortName, str]]:
    problems: list[tuple[PortName, str]] = []
    seen: dict[int, PortName] = {}
    for name, port in ports.items():
        if port is None:
            problems.append((name, f"Required port '{name}' is not set"))
            continue
        if not 1 <= port <= 65535:
            problems.append((name, f"Port '{name}' must be in [1, 65535], got {port}"))
            continue
        other = seen.get(port)
        if other is not None:
            problems.append((name, f"Port {port} is used by both '{other}' and '{name}'"))
            continue
        seen[port] = name
    return problems


@dataclass(slots=True)
class ConfigBuilder:
    """Mutable configuration for one node.

    Attributes:
        listen_address: Address for internode communication.
        broadcast_address: Address advertised to other nodes, if different.
        rpc_address: Address client transports bind to.
        native_transport_port: CQL port.
        native_transport_port_ssl: Dedicated encrypted CQL port.
        storage_port: Internode port.
        ssl_storage_port: Encrypted internode port.
        rpc_port: Thrift port (versions before 4.0).
        jmx_port: JMX port.
        start_native_transport: Whether the CQL transport is started.
        native_transport_ssl: Whether a dedicated encrypted CQL port is used.
        storage_ssl: Whether encrypted internode communication is used.
        start_rpc: Whether the Thrift transport is started.
        jvm_options: Extra JVM options, in order.
        system_properties: JVM system properties passed as ``-Dkey=value``.
        config_properties: ``cassandra.yaml`` overrides; dotted keys are nested.
        environment: Environment variables for the server process.
        working_directory: Runtime directory; a temporary one when None.
        java_home: JAVA_HOME for the server process.
        allow_root: Pass ``-R`` so the server may run as root.
    """

    listen_address: str = DEFAULT_ADDRESS
    broadcast_address: str | None = None
    rpc_address: str = DEFAULT_ADDRESS
    native_transport_port: int | None = None
    native_transport_port_ssl: int | None = None
    storage_port: int | None = None
    ssl_storage_port: int | None = None
    rpc_port: int | None = None
    jmx_port: int | None = None
    start_native_transport: bool = True
    native_transport_ssl: bool = False
    storage_ssl: bool = False
    start_rpc: bool = False
    jvm_options: list[str] = field(default_factory=list)
    system_properties: dict[str, str] = field(default_factory=dict)
    config_properties: dict[str, Any] = field(default_factory=dict)
    environment: dict[str, str] = field(default_factory=dict)
    working_directory: Path | None = None
    java_home: Path | None = None
    allow_root: bool = False

    def get_port(self, name: PortName) -> int | None:
        """Return the configured value of a port."""
        return getattr(self, name.value)

    def set_port(self, name: PortName, port: int | None) -> Self:
        """Fix a port, or unset it with None so the allocator picks one."""
        setattr(self, name.value, port)
        return self

    def add_jvm_options(self, *options: str) -> Self:
        """Append JVM options."""
        self.jvm_options.extend(options)
        return self

    def set_system_property(self, key: str, value: object) -> Self:
        """Set a JVM system property."""
        self.system_properties[key] = str(value)
        return self

    def set_config_property(self, key: str, value: Any) -> Self:
        """Set a ``cassandra.yaml`` property; dotted keys address nested mappings."""
        self.config_properties[key] = value
        return self

    def set_environment(self, key: str, value: str) -> Self:
        """Set an environment variable for the server process."""
        self.environment[key] = value
        return self

    def copy(self) -> Self:
        """Return an independent copy of this builder."""
        return copy.deepcopy(self)

    def required_ports(self) -> tuple[PortName, ...]:
        """Return the ports the enabled feature set needs."""
        return required_ports(self)

    def validate(self) -> None:
        """Check that every required port is set and unique.

        Raises:
            ConfigError: If a required port is unset, out of range or collides.
        """
        problems = _port_problems({name: self.get_port(name) for name in self.required_ports()})
        if problems:
            name, _ = problems[0]
            msg = "; ".join(message for _, message in problems)
            raise ConfigError(msg, key=name.value)

    def freeze(self) -> "NodeConfig":  # noqa: UP037
        """Validate and return an immutable snapshot.

        Returns:
            The frozen configuration.

        Raises:
            ConfigError: If validation fails.
        """
        self.validate()
        data = {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}
        data["jvm_options"] = tuple(self.jvm_options)
        try:
            return NodeConfig.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            key = ".".join(str(loc) for loc in error["loc"]) or None
            msg = f"Invalid configuration: {error['msg']}"
            raise ConfigError(msg, key=key) from e


class NodeConfig(BaseModel):
    """Frozen node configuration with all required ports concrete.

    Field meanings match ConfigBuilder. Ports of disabled features may still
    carry a value but are ignored by ``ports`` and by validation.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    listen_address: str = DEFAULT_ADDRESS
    broadcast_address: str | None = None
    rpc_address: str = DEFAULT_ADDRESS
    native_transport_port: PortNumber | None = None
    native_transport_port_ssl: PortNumber | None = None
    storage_port: PortNumber | None = None
    ssl_storage_port: PortNumber | None = None
    rpc_port: PortNumber | None = None
    jmx_port: PortNumber | None = None
    start_native_transport: bool = True
    native_transport_ssl: bool = False
    storage_ssl: bool = False
    start_rpc: bool = False
    jvm_options: tuple[str, ...] = ()
    system_properties: dict[str, str] = Field(default_factory=dict)
    config_properties: dict[str, Any] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)
    working_directory: Path | None = None
    java_home: Path | None = None
    allow_root: bool = False

    @model_validator(mode="after")
    def _check_ports(self) -> Self:
        problems = _port_problems(
            {name: getattr(self, name.value) for name in required_ports(self)}
        )
        if problems:
            raise ValueError("; ".join(message for _, message in problems))
        return self

    @property
    def ports(self) -> dict[PortName, int]:
        """Return every enabled port with its concrete value."""
        return {name: getattr(self, name.value) for name in required_ports(self)}

    def get_port(self, name: PortName) -> int | None:
        """Return a port if its feature is enabled, None otherwise."""
        return self.ports.get(name)

    def to_builder(self) -> ConfigBuilder:
        """Return a mutable builder with the same values."""
        data = self.model_dump()
        data["jvm_options"] = list(self.jvm_options)
        return ConfigBuilder(**data)
