"""
Filesystem adapter — file writes and removals used by actions.

Writes are atomic (write to temp file in the same directory, then rename)
so an interrupted run never leaves a half-written profile snippet.

Text is UTF-8 with ``surrogateescape``: bytes that are not UTF-8 (a
Latin-1 comment in a .bashrc) survive a read-modify-write unchanged.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


def read_text(path: Path) -> str | None:
    """Read a text file, or None if it does not exist."""
    try:
        return path.read_text(encoding=ENCODING, errors=ENCODING_ERRORS)
    except FileNotFoundError:
        return None


def write_text_atomic(path: Path, content: str, mode: int | None = None) -> None:
    """Write ``content`` to ``path`` atomically.

    Args:
        path: Target file. Parent directories are created.
        content: Full file content.
        mode: Optional permission bits (e.g. 0o755 for wrapper scripts).
            When None, an existing file keeps its mode.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    if mode is None:
        # mkstemp creates 0600; keep the existing mode or use a world-readable one
        mode = path.stat().st_mode & 0o7777 if path.exists() else 0o644

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=ENCODING, errors=ENCODING_ERRORS) as f:
            f.write(content)
        tmp.chmod(mode)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    logger.debug("Wrote %d bytes to %s", len(content), path)


def remove_path(path: Path) -> bool:
    """Remove a file, symlink or directory tree.

    Returns:
        True if something was removed, False if the path was already absent.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False
