"""Enumeration types for embedded Cassandra."""

import sys
from enum import StrEnum
from typing import Self


class Platform(StrEnum):
    """Operating system family a distribution is launched on.

    The platform decides which launch script and environment script a
    distribution uses (``cassandra``/``cassandra-env.sh`` versus
    ``cassandra.ps1``/``cassandra-env.ps1``).
    """

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @classmethod
    def current(cls) -> Self:
        """Return the platform of the running interpreter."""
        if sys.platform == "win32":
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        return cls.LINUX

    @property
    def is_windows(self) -> bool:
        """Return True for Windows."""
        return self is Platform.WINDOWS


class PortName(StrEnum):
    """Network listeners a node may need.

    Values match the ``cassandra.yaml`` keys, except ``jmx_port`` which lives
    in the environment script.
    """

    NATIVE_TRANSPORT = "native_transport_port"
    NATIVE_TRANSPORT_SSL = "native_transport_port_ssl"
    STORAGE = "storage_port"
    STORAGE_SSL = "ssl_storage_port"
    RPC = "rpc_port"
    JMX = "jmx_port"
