"""File utilities for rewriting distribution files in place.

All writes go through a temporary file in the target's directory followed by
a rename, so a crash mid-write never leaves a half-written launch script.
"""

import os
import shutil
import tempfile
from pathlib import Path

__all__ = ["atomic_write_bytes", "atomic_write_text", "read_text"]


def read_text(path: Path) -> str:
    """Read a text file fully, keeping its line endings untouched.

    Args:
        path: File to read.

    Returns:
        The file content.

    Raises:
        OSError: If the file cannot be read.
        UnicodeDecodeError: If the file is not valid UTF-8.
    """
    with path.open(encoding="utf-8", newline="") as f:
        return f.read()


def atomic_write_text(path: Path, content: str) -> None:
    """Replace a text file atomically.

    The content is written as UTF-8 without newline translation.

    Raises:
        OSError: If the temporary file cannot be written or renamed.
    """
    atomic_write_bytes(path, content.encode("utf-8"))


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Replace a file atomically.

    Writes to a temporary file in the same directory, flushes it to disk and
    renames it over ``path``. Permission bits of an existing target are
    carried over to the replacement.

    Args:
        path: Destination file path.
        content: New file content.

    Raises:
        OSError: If the temporary file cannot be written or renamed.
    """
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            temp_path = Path(f.name)
            _ = f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if path.exists():
            shutil.copymode(path, temp_path)

        # Path.replace() is atomic on both POSIX and Windows
        _ = temp_path.replace(path)
    except OSError:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise
