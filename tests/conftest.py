"""Shared test fixtures for embedded Cassandra tests."""

import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest
from rich.console import Console

from embedded_cassandra.cli import create_app
from embedded_cassandra.config import ConfigBuilder

FAKE_SERVER = '''\
"""Stand-in for the Cassandra server used by the tests.

Behaviour is selected with FAKE_MODE:
    ready        bind the native transport port, print the ready marker, wait for SIGTERM
    stubborn     like ready, but ignore SIGTERM
    fail         print a startup failure and hang
    exit         print a line and exit with code 3
    hang         print a line and never become ready
"""

import os
import re
import signal
import socket
import sys
import time


def say(line):
    sys.stdout.write(line + "\\n")
    sys.stdout.flush()


def native_port():
    match = re.search(r"-Dcassandra\\.native_transport_port=(\\d+)", os.environ.get("JVM_EXTRA_OPTS", ""))
    return int(match.group(1)) if match else None


def main():
    mode = os.environ.get("FAKE_MODE", "ready")
    if mode == "stubborn":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    else:
        signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
    say("INFO  Loading settings from " + os.path.join(os.getcwd(), "conf", "cassandra.yaml"))

    if mode == "exit":
        say("INFO  Giving up")
        sys.exit(3)
    if mode == "fail":
        say("ERROR Exception encountered during startup: bad things")
    elif mode in ("ready", "stubborn"):
        port = native_port()
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(("127.0.0.1", port))
        server.listen(8)
        say("INFO  Starting listening for CQL clients on /127.0.0.1:%d" % port)

    while True:
        time.sleep(0.1)


main()
'''

LAUNCH_SCRIPT = """\
#!/bin/sh
exec "$FAKE_PYTHON" "$(dirname "$0")/fake_server.py" "$@"
"""

CASSANDRA_YAML = """\
cluster_name: Test Cluster
num_tokens: 16
native_transport_port: 9042
storage_port: 7000
listen_address: localhost
rpc_address: localhost
seed_provider:
  - class_name: org.apache.cassandra.locator.SimpleSeedProvider
    parameters:
      - seeds: "127.0.0.1:7000"
"""

CASSANDRA_ENV_SH = """\
#!/bin/sh
JMX_PORT="7199"
JVM_OPTS="$JVM_OPTS -Xloggc:${CASSANDRA_LOG_DIR}/gc.log"
JVM_OPTS="$JVM_OPTS -Dcassandra.jmx.local.port=$JMX_PORT"
"""

JVM_SERVER_OPTIONS = """\
# server options
-ea
-Xss256k
-XX:+UseThreadPriorities
"""

JVM_OPTIONS = """\
-ea
-Xss256k
-XX:+UseThreadPriorities
-XX:+PrintGCDetails
"""


@dataclass(frozen=True, slots=True)
class FakeDistribution:
    """Paths of an unpacked fake distribution."""

    root: Path
    bin_dir: Path
    conf_dir: Path


def make_distribution(root: Path, *, jvm_options: bool = True) -> FakeDistribution:
    """Create a distribution layout whose launch script runs the fake server.

    Structure:
        root/
            bin/
                cassandra           # sh wrapper exec'ing $FAKE_PYTHON
                fake_server.py
            conf/
                cassandra.yaml
                cassandra-env.sh
                jvm-server.options  # only when jvm_options
                jvm.options         # only when jvm_options
    """
    bin_dir = root / "bin"
    conf_dir = root / "conf"
    bin_dir.mkdir(parents=True)
    conf_dir.mkdir()

    launch_script = bin_dir / "cassandra"
    _ = launch_script.write_text(LAUNCH_SCRIPT)
    launch_script.chmod(0o644)
    _ = (bin_dir / "fake_server.py").write_text(FAKE_SERVER)

    _ = (conf_dir / "cassandra.yaml").write_text(CASSANDRA_YAML)
    _ = (conf_dir / "cassandra-env.sh").write_text(CASSANDRA_ENV_SH)
    if jvm_options:
        _ = (conf_dir / "jvm-server.options").write_text(JVM_SERVER_OPTIONS)
        _ = (conf_dir / "jvm.options").write_text(JVM_OPTIONS)

    return FakeDistribution(root=root, bin_dir=bin_dir, conf_dir=conf_dir)


@pytest.fixture
def fake_distribution(tmp_path: Path) -> FakeDistribution:
    """Create a fake distribution under tmp_path/dist."""
    return make_distribution(tmp_path / "dist")


@pytest.fixture
def fake_config() -> ConfigBuilder:
    """Create a node config pointing the launch script at this interpreter."""
    return ConfigBuilder().set_environment("FAKE_PYTHON", sys.executable)


@pytest.fixture
def console() -> Console:
    """Create a Rich console suitable for capturing test output."""
    return Console(
        width=70,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def cli_with_exit_code(console: Console) -> Callable[..., int]:
    """Create CLI app for testing that returns the exit code.

    Commands print through their own consoles, so use capsys for output.
    """
    app = create_app(console=console, error_console=console)

    def _run(*args: str) -> int:
        """Run CLI app and return exit code (0 if no SystemExit)."""
        try:
            app(args)
        except SystemExit as e:
            return e.code if isinstance(e.code, int) else 1
        else:
            return 0

    return _run
