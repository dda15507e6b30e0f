"""Run Apache Cassandra from an unpacked distribution as a managed child process.

Example:
    >>> from embedded_cassandra import Cassandra, ConfigBuilder
    >>> config = ConfigBuilder().add_jvm_options("-Xmx512m")
    >>> with Cassandra("/opt/apache-cassandra-4.1.3", "4.1.3", config=config) as cassandra:
    ...     port = cassandra.bound_config.native_transport_port
"""

from ._cassandra import AsyncCassandra, Cassandra
from .config import ConfigBuilder, NodeConfig, PortName, Settings, load_settings
from .customizers import Customizer, default_customizers
from .distribution import Distribution
from .enums import Platform
from .exceptions import (
    ConfigError,
    ConfigLoadError,
    EmbeddedCassandraError,
    FileError,
    FormatError,
    PortAllocationError,
    ProcessError,
    StartError,
    StopError,
)
from .process import LifecycleState, ReadinessRules
from .version import Version

__all__ = [
    "AsyncCassandra",
    "Cassandra",
    "ConfigBuilder",
    "ConfigError",
    "ConfigLoadError",
    "Customizer",
    "Distribution",
    "EmbeddedCassandraError",
    "FileError",
    "FormatError",
    "LifecycleState",
    "NodeConfig",
    "Platform",
    "PortAllocationError",
    "PortName",
    "ProcessError",
    "ReadinessRules",
    "Settings",
    "StartError",
    "StopError",
    "Version",
    "default_customizers",
    "load_settings",
]
