"""Embedded Cassandra CLI commands."""
# pyright: reportUnusedCallResult=false

from __future__ import annotations

from typing import TYPE_CHECKING

from ._check_version import app as check_version_app
from ._run import app as run_app
from ._shared import ExitCode, exit_with_error, get_console, get_error_console

if TYPE_CHECKING:
    from cyclopts import App

__all__ = [
    "ExitCode",
    "check_version_app",
    "exit_with_error",
    "get_console",
    "get_error_console",
    "run_app",
]


def register_commands(app: App) -> None:
    app.command(check_version_app)
    app.command(run_app)
