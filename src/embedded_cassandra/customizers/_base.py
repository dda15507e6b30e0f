"""Customizer model and the pipeline that applies customizers to a directory.

A customizer rewrites one file of the working directory. The pipeline reads
the target fully, passes the content through the customizer and replaces the
file atomically when the content changed. Files are never edited in place.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, final

from embedded_cassandra.exceptions import FileError
from embedded_cassandra.utils import atomic_write_text, read_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from structlog.typing import FilteringBoundLogger

    from embedded_cassandra.config import NodeConfig
    from embedded_cassandra.enums import Platform
    from embedded_cassandra.version import Version


@final
@dataclass(frozen=True, slots=True)
class CustomizerContext:
    """What a customizer may look at.

    Attributes:
        root: Working directory being customized.
        version: Version of the distribution.
        platform: Platform the node is launched on.
        config: Frozen node configuration.
    """

    root: Path
    version: Version
    platform: Platform
    config: NodeConfig


def always(_context: CustomizerContext) -> bool:
    """Predicate accepting every context."""
    return True


@final
@dataclass(frozen=True, slots=True)
class Customizer:
    """A named, pure rewrite of one file.

    Attributes:
        name: Identifier used in logs and errors.
        target: Maps the context to a path relative to the working directory.
        transform: Maps the current content to the new content.
        applies: Decides whether the customizer runs at all.
    """

    name: str
    target: Callable[[CustomizerContext], Path | str]
    transform: Callable[[str, CustomizerContext], str]
    applies: Callable[[CustomizerContext], bool] = always

    def path(self, context: CustomizerContext) -> Path:
        """Return the absolute path of the target file."""
        return context.root / self.target(context)


def apply_customizers(
    customizers: Iterable[Customizer],
    root: Path,
    version: Version,
    platform: Platform,
    config: NodeConfig,
    *,
    logger: FilteringBoundLogger | None = None,
) -> list[Path]:
    """Apply customizers to ``root`` in order.

    Stops at the first failure. Files rewritten by earlier customizers keep
    their new content.

    Args:
        customizers: Customizers to apply, in order.
        root: Working directory.
        version: Version of the distribution.
        platform: Platform the node is launched on.
        config: Frozen node configuration.
        logger: Logger for customization events.

    Returns:
        Paths that were rewritten, in order.

    Raises:
        FileError: If a target cannot be read, transformed or written.
    """
    context = CustomizerContext(root=root, version=version, platform=platform, config=config)
    changed: list[Path] = []

    for customizer in customizers:
        if not customizer.applies(context):
            if logger is not None:
                logger.debug("customizer_skipped", customizer=customizer.name)
            continue

        path = customizer.path(context)
        if _apply_one(customizer, path, context):
            changed.append(path)
            if logger is not None:
                logger.debug("customizer_applied", customizer=customizer.name, path=str(path))
        elif logger is not None:
            logger.debug("customizer_unchanged", customizer=customizer.name, path=str(path))

    return changed


def _apply_one(customizer: Customizer, path: Path, context: CustomizerContext) -> bool:
    try:
        content = read_text(path)
    except (OSError, UnicodeDecodeError) as e:
        msg = f"Customizer '{customizer.name}' cannot read {path}: {e}"
        raise FileError(msg, path=path, customizer=customizer.name) from e

    try:
        updated = customizer.transform(content, context)
    except (ValueError, TypeError) as e:
        msg = f"Customizer '{customizer.name}' cannot transform {path}: {e}"
        raise FileError(msg, path=path, customizer=customizer.name) from e

    if updated == content:
        return False

    try:
        atomic_write_text(path, updated)
    except OSError as e:
        msg = f"Customizer '{customizer.name}' cannot write {path}: {e}"
        raise FileError(msg, path=path, customizer=customizer.name) from e
    return True
