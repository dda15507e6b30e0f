"""Utility helpers shared across embedded Cassandra."""

from ._files import atomic_write_bytes, atomic_write_text, read_text
from ._logging import DEBUG_ENV_VAR, LogFormatType, create_logger
from ._net import LOOPBACK, find_open_port, is_port_busy

__all__ = [
    "DEBUG_ENV_VAR",
    "LOOPBACK",
    "LogFormatType",
    "atomic_write_bytes",
    "atomic_write_text",
    "create_logger",
    "find_open_port",
    "is_port_busy",
    "read_text",
]
