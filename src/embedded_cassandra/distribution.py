"""Cassandra distributions and working directories.

A distribution is an unpacked Cassandra directory. It is never modified:
every run copies it into a working directory, and all customization happens
on the copy.
"""

from __future__ import annotations

import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, final

from embedded_cassandra.enums import Platform
from embedded_cassandra.exceptions import FileError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import PurePath

    from structlog.typing import FilteringBoundLogger

POSIX_LAUNCH_SCRIPT = Path("bin/cassandra")
WINDOWS_LAUNCH_SCRIPT = Path("bin/cassandra.ps1")

_EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


@final
@dataclass(frozen=True, slots=True)
class Distribution:
    """An unpacked Cassandra directory.

    Attributes:
        root: Distribution root.
        platform: Platform the distribution is launched on.
        launch_script: Launch script path relative to ``root``.
    """

    root: Path
    platform: Platform
    launch_script: Path

    @classmethod
    def from_directory(
        cls,
        root: Path | str,
        platform: Platform | None = None,
        launch_script: Path | str | None = None,
    ) -> Distribution:
        """Describe the distribution unpacked at ``root``.

        Args:
            root: Distribution root.
            platform: Platform to launch on; defaults to the current one.
            launch_script: Launch script relative to ``root``; defaults to
                ``bin/cassandra`` or ``bin/cassandra.ps1``.

        Returns:
            The distribution.

        Raises:
            FileError: If the root, ``conf/`` or the launch script is missing.
        """
        root = Path(root).expanduser().resolve()
        platform = platform if platform is not None else Platform.current()
        if launch_script is None:
            launch_script = WINDOWS_LAUNCH_SCRIPT if platform.is_windows else POSIX_LAUNCH_SCRIPT
        launch_script = Path(launch_script)

        if not root.is_dir():
            msg = f"Distribution directory does not exist: {root}"
            raise FileError(msg, path=root)
        conf = root / "conf"
        if not conf.is_dir():
            msg = f"Distribution has no conf directory: {conf}"
            raise FileError(msg, path=conf)
        script = root / launch_script
        if not script.is_file():
            msg = f"Distribution has no launch script: {script}"
            raise FileError(msg, path=script)

        return cls(root=root, platform=platform, launch_script=launch_script)


def _make_executable(directory: Path) -> None:
    if not directory.is_dir():
        return
    for path in directory.iterdir():
        if path.is_file():
            mode = path.stat().st_mode
            path.chmod(mode | _EXECUTABLE_BITS)


def prepare_working_directory(distribution: Distribution, target: Path | None = None) -> tuple[Path, bool]:
    """Copy a distribution into a working directory.

    Args:
        distribution: Distribution to copy.
        target: Directory to copy into; a new temporary directory when None.
            An existing directory is merged into.

    Returns:
        Tuple of (working directory, whether it was created as temporary).

    Raises:
        FileError: If the copy fails.
    """
    is_temporary = target is None
    if target is None:
        target = Path(tempfile.mkdtemp(prefix="embedded-cassandra-"))
    target = target.expanduser().resolve()

    try:
        _ = shutil.copytree(distribution.root, target, symlinks=True, dirs_exist_ok=True)
        if not distribution.platform.is_windows:
            _make_executable(target / "bin")
    except OSError as e:
        if is_temporary:
            shutil.rmtree(target, ignore_errors=True)
        msg = f"Cannot copy distribution {distribution.root} to {target}: {e}"
        raise FileError(msg, path=target) from e

    return target, is_temporary


def remove_working_directory(path: Path, *, logger: FilteringBoundLogger | None = None) -> bool:
    """Delete a working directory, logging instead of raising on failure.

    Returns:
        True if the directory no longer exists.
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError as e:
        if logger is not None:
            logger.warning("working_directory_not_removed", path=str(path), error=str(e))
        return False
    if logger is not None:
        logger.debug("working_directory_removed", path=str(path))
    return True


def resolve_inside(root: Path, relative: str | PurePath) -> Path:
    """Join ``relative`` onto ``root`` and check the result stays inside it.

    The path is normalized lexically; symlinks are not followed, so a link
    inside the working directory names the link itself.

    Raises:
        FileError: If the path is ``root`` itself or lies outside it.
    """
    base = Path(os.path.normpath(root))
    path = Path(os.path.normpath(base / relative))
    if path == base or not path.is_relative_to(base):
        msg = f"Path '{relative}' is not inside the working directory {root}"
        raise FileError(msg, path=path)
    return path


def remove_paths(root: Path, paths: Iterable[str], *, logger: FilteringBoundLogger | None = None) -> list[Path]:
    """Delete files or directories inside a working directory.

    Missing paths count as removed. Other failures are logged, not raised.

    Returns:
        The paths that no longer exist.

    Raises:
        FileError: If a path lies outside ``root``.
    """
    removed: list[Path] = []
    for relative in paths:
        path = resolve_inside(root, relative)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            if logger is not None:
                logger.warning("working_directory_path_not_removed", path=str(path), error=str(e))
            continue
        removed.append(path)
    if removed and logger is not None:
        logger.debug("working_directory_paths_removed", paths=[str(p) for p in removed])
    return removed
