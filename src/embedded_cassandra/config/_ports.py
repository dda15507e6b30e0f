"""Port allocation for node configurations.

Unset ports are resolved by binding port 0 on the address the node will use,
reading the assigned number and releasing the socket. The port is therefore
only known to be free at probe time: another process on the host can take it
before the node binds it. Within this process, a shared PortRegistry keeps
concurrent runs from being handed the same numbers.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from embedded_cassandra.enums import PortName
from embedded_cassandra.exceptions import ConfigError, PortAllocationError
from embedded_cassandra.utils import LOOPBACK, find_open_port

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from ._models import ConfigBuilder

_STORAGE_PORTS = frozenset({PortName.STORAGE, PortName.STORAGE_SSL})
_CLIENT_PORTS = frozenset({PortName.NATIVE_TRANSPORT, PortName.NATIVE_TRANSPORT_SSL, PortName.RPC})


class PortRegistry:
    """Process-wide record of ports reserved by live runs."""

    __slots__: tuple[str, ...] = ("_lock", "_reserved")

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._reserved: dict[int, list[object]] = {}

    @property
    def lock(self) -> threading.Lock:
        """Lock serializing allocate-and-reserve."""
        return self._lock

    def is_reserved(self, port: int) -> bool:
        """Return True if a live run holds ``port``."""
        return port in self._reserved

    def reserve(self, owner: object, ports: dict[PortName, int]) -> None:
        """Record ``ports`` as held by ``owner``. Caller must hold ``lock``.

        A fixed port may be held by several owners at once. It stays reserved
        until the last of them releases it.
        """
        for port in ports.values():
            owners = self._reserved.setdefault(port, [])
            if not any(held_by is owner for held_by in owners):
                owners.append(owner)

    def release(self, owner: object) -> list[int]:
        """Drop every reservation held by ``owner``.

        Returns:
            The released port numbers.
        """
        with self._lock:
            released: list[int] = []
            for port, owners in list(self._reserved.items()):
                remaining = [held_by for held_by in owners if held_by is not owner]
                if len(remaining) == len(owners):
                    continue
                released.append(port)
                if remaining:
                    self._reserved[port] = remaining
                else:
                    del self._reserved[port]
        return released

    def reserved(self) -> frozenset[int]:
        """Return a snapshot of reserved port numbers."""
        with self._lock:
            return frozenset(self._reserved)


PORT_REGISTRY = PortRegistry()


def probe_address(builder: ConfigBuilder, name: PortName) -> str:
    """Return the address a port is probed on."""
    if name in _STORAGE_PORTS:
        return builder.listen_address
    if name in _CLIENT_PORTS:
        return builder.rpc_address
    return LOOPBACK


def _check_fixed_ports(builder: ConfigBuilder) -> dict[int, PortName]:
    fixed: dict[int, PortName] = {}
    for name in builder.required_ports():
        port = builder.get_port(name)
        if port is None:
            continue
        if not 1 <= port <= 65535:
            msg = f"Port '{name}' must be in [1, 65535], got {port}"
            raise ConfigError(msg, key=name.value)
        other = fixed.get(port)
        if other is not None:
            msg = f"Port {port} is used by both '{other}' and '{name}'"
            raise ConfigError(msg, key=name.value)
        fixed[port] = name
    return fixed


def allocate(
    builder: ConfigBuilder,
    *,
    attempts: int = 32,
    registry: PortRegistry | None = None,
    owner: object | None = None,
    logger: FilteringBoundLogger | None = None,
) -> ConfigBuilder:
    """Return a copy of ``builder`` with every required port concrete.

    Fixed ports are kept as given. Each unset required port is probed on its
    address and the number is rejected if it is already used by this
    configuration or reserved in ``registry``.

    Args:
        builder: Configuration to allocate ports for. Not modified.
        attempts: Probes per port before giving up.
        registry: Registry of ports held by live runs.
        owner: When given, the resulting ports are reserved under this owner
            until ``registry.release(owner)``.
        logger: Logger for allocation events.

    Returns:
        A new builder with all required ports set.

    Raises:
        ConfigError: If two fixed ports collide or a fixed port is out of range.
        PortAllocationError: If a port could not be found within ``attempts``.
    """
    registry = registry if registry is not None else PORT_REGISTRY
    result = builder.copy()
    used = _check_fixed_ports(result)

    with registry.lock:
        for name in result.required_ports():
            if result.get_port(name) is not None:
                continue
            port = _probe(result, name, attempts=attempts, used=used, registry=registry)
            _ = result.set_port(name, port)
            used[port] = name
            if logger is not None:
                logger.debug("port_allocated", port_name=name.value, port=port)

        if owner is not None:
            registry.reserve(owner, {name: port for port, name in used.items()})

    return result


def _probe(
    builder: ConfigBuilder,
    name: PortName,
    *,
    attempts: int,
    used: dict[int, PortName],
    registry: PortRegistry,
) -> int:
    host = probe_address(builder, name)
    last_error: OSError | None = None
    for _ in range(attempts):
        try:
            port = find_open_port(host)
        except OSError as e:
            last_error = e
            continue
        if port in used or registry.is_reserved(port):
            continue
        return port

    msg = f"Could not find a free port for '{name}' on {host} after {attempts} attempts"
    raise PortAllocationError(msg, port_name=name.value, attempts=attempts) from last_error
