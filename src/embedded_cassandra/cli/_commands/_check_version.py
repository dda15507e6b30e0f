"""Version check command."""

from cyclopts import App
from rich.table import Table

from embedded_cassandra.exceptions import FormatError
from embedded_cassandra.version import Version

from ._shared import ExitCode, exit_with_error, get_console

app = App(name="check-version", help="Parse a Cassandra version string.", help_on_error=True)


@app.default
def check_version(text: str, /) -> None:
    """Parse a version and print its canonical form and components.

    Args:
        text: Version string such as ``4.1.3`` or ``5.0-beta1``.
    """
    try:
        version = Version.parse(text)
    except FormatError as e:
        exit_with_error(str(e), ExitCode.VALIDATION_ERROR)

    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("version", str(version))
    table.add_row("major", str(version.major))
    table.add_row("minor", str(version.minor))
    table.add_row("patch", "-" if version.patch is None else str(version.patch))
    table.add_row("pre-release", version.pre_release or "-")
    get_console().print(table)
