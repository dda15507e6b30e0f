"""Node configuration, port allocation and orchestrator settings.

Example:
    >>> from embedded_cassandra.config import ConfigBuilder, allocate
    >>> builder = ConfigBuilder().add_jvm_options("-Xmx512m")
    >>> config = allocate(builder).freeze()
    >>> len(config.ports)
    3
"""

from embedded_cassandra.enums import PortName
from embedded_cassandra.utils import is_port_busy

from ._loader import ENV_PREFIX, deep_merge, parse_env_vars, parse_string_value, read_toml_file, set_nested_key
from ._models import ConfigBuilder, FeatureFlags, NodeConfig, required_ports
from ._ports import PORT_REGISTRY, PortRegistry, allocate, probe_address
from ._settings import LogFormat, LoggingSettings, LogLevel, Settings, load_settings

__all__ = [
    "ENV_PREFIX",
    "PORT_REGISTRY",
    "ConfigBuilder",
    "FeatureFlags",
    "LogFormat",
    "LogLevel",
    "LoggingSettings",
    "NodeConfig",
    "PortName",
    "PortRegistry",
    "Settings",
    "allocate",
    "deep_merge",
    "is_port_busy",
    "load_settings",
    "parse_env_vars",
    "parse_string_value",
    "probe_address",
    "read_toml_file",
    "required_ports",
    "set_nested_key",
]
