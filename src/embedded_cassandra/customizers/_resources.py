"""Files added to the working directory before the customizers run.

A resource is copied byte for byte from a file or package data into the
working directory, replacing any file already at its destination. Typical
uses are a complete ``cassandra.yaml``, a logback configuration or the
keystores referenced by SSL settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, final

from embedded_cassandra.distribution import resolve_inside
from embedded_cassandra.exceptions import FileError
from embedded_cassandra.utils import atomic_write_bytes

if TYPE_CHECKING:
    from collections.abc import Iterable
    from importlib.resources.abc import Traversable

    from structlog.typing import FilteringBoundLogger


@final
@dataclass(frozen=True, slots=True)
class Resource:
    """A file placed into the working directory.

    Attributes:
        source: File or package resource providing the content.
        path: Destination relative to the working directory.
    """

    source: Path | Traversable
    path: PurePath

    def install(self, root: Path) -> Path:
        """Copy the resource into ``root``, creating parent directories.

        Returns:
            The destination path.

        Raises:
            FileError: If the destination is outside ``root`` or a directory,
                or the content cannot be read or written.
        """
        target = resolve_inside(root, self.path)
        if target.is_dir():
            msg = f"Resource destination is a directory: {target}"
            raise FileError(msg, path=target)

        try:
            content = self.source.read_bytes()
        except OSError as e:
            msg = f"Cannot read resource {self.source}: {e}"
            raise FileError(msg, path=target) from e

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_bytes(target, content)
        except OSError as e:
            msg = f"Cannot write resource to {target}: {e}"
            raise FileError(msg, path=target) from e
        return target


def add_resource(source: Path | str | Traversable, path: PurePath | str) -> Resource:
    """Describe a file copied from ``source`` to ``path`` in the working directory.

    Example:
        >>> from importlib.resources import files
        >>> add_resource(files("myapp.testing") / "cassandra.yaml", "conf/cassandra.yaml")
    """
    return Resource(source=Path(source) if isinstance(source, str) else source, path=PurePath(path))


def install_resources(
    resources: Iterable[Resource],
    root: Path,
    *,
    logger: FilteringBoundLogger | None = None,
) -> list[Path]:
    """Install resources into ``root`` in order; a later one wins on the same path.

    Raises:
        FileError: If a resource cannot be installed.
    """
    installed: list[Path] = []
    for resource in resources:
        target = resource.install(root)
        installed.append(target)
        if logger is not None:
            logger.debug("resource_installed", source=str(resource.source), path=str(target))
    return installed
