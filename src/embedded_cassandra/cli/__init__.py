"""Command-line interface for embedded Cassandra."""

from ._app import app, create_app, main

__all__ = ["app", "create_app", "main"]
