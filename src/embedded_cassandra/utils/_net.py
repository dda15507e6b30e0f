"""Socket helpers for port probing."""

import contextlib
import socket
from typing import cast

LOOPBACK = "127.0.0.1"


def _family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def find_open_port(host: str = LOOPBACK) -> int:
    """Find an available port by binding to port 0.

    The socket is closed before returning, so the port is only known to have
    been free at the time of the probe.

    Args:
        host: Address to bind the probe socket to.

    Returns:
        The port number the operating system assigned.
    """
    with socket.socket(_family(host), socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        addr = cast("tuple[str, int]", s.getsockname()[:2])
        return addr[1]


def is_port_busy(host: str, port: int, timeout: float = 0.5) -> bool:
    """Return True if something accepts TCP connections on ``host:port``."""
    with contextlib.suppress(OSError), socket.create_connection((host, port), timeout=timeout):
        return True
    return False
