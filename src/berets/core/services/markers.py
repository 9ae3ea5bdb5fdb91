"""
Sentinel-marked text blocks.

Generated shell snippets are inserted into shared files (``.bashrc``,
``/etc/profile``) between a begin and an end marker line::

    # >>> berets:starship-init >>>
    ...
    # <<< berets:starship-init <<<

The markers make insertion idempotent (present = skip) and removal exact
(only the marked lines go).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from berets.adapters.filesystem import read_text, write_text_atomic

logger = logging.getLogger(__name__)

MARKER_NAMESPACE = "berets"

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def begin_marker(name: str) -> str:
    return f"# >>> {MARKER_NAMESPACE}:{name} >>>"


def end_marker(name: str) -> str:
    return f"# <<< {MARKER_NAMESPACE}:{name} <<<"


def _check_name(name: str) -> None:
    if not _NAME_RE.match(name):
        raise ValueError(f"Invalid block name: {name!r}")


def has_block(text: str, name: str) -> bool:
    """Whether ``text`` contains the begin marker for ``name``."""
    _check_name(name)
    return begin_marker(name) in text.splitlines()


def insert_block(text: str, name: str, body: str) -> tuple[str, bool]:
    """Append a marked block unless one with that name is already present.

    Returns:
        (new_text, changed)
    """
    if has_block(text, name):
        return text, False

    block = "\n".join([begin_marker(name), body.rstrip("\n"), end_marker(name)])
    if text and not text.endswith("\n"):
        text += "\n"
    if text:
        text += "\n"
    return text + block + "\n", True


def remove_block(text: str, name: str) -> tuple[str, bool]:
    """Remove every marked block named ``name``.

    An unterminated block (begin without end) is left untouched so a
    hand-edited file never loses everything after the marker.

    Returns:
        (new_text, changed)
    """
    _check_name(name)
    begin, end = begin_marker(name), end_marker(name)
    lines = text.splitlines(keepends=True)
    out: list[str] = []
    changed = False
    i = 0
    while i < len(lines):
        if lines[i].rstrip("\n") == begin:
            for j in range(i + 1, len(lines)):
                if lines[j].rstrip("\n") == end:
                    # drop the blank separator line insert_block added
                    if out and out[-1].strip() == "":
                        out.pop()
                    i = j + 1
                    changed = True
                    break
            else:
                logger.warning("Unterminated block %r, leaving it in place", name)
                out.extend(lines[i:])
                break
            continue
        out.append(lines[i])
        i += 1
    return "".join(out), changed


# ── File helpers ────────────────────────────────────────────────


def file_has_block(path: Path, name: str) -> bool:
    text = read_text(path)
    return text is not None and has_block(text, name)


def ensure_block(path: Path, name: str, body: str, mode: int | None = None) -> bool:
    """Insert a marked block into ``path`` (created if missing).

    Returns:
        True if the file changed.
    """
    text = read_text(path) or ""
    new_text, changed = insert_block(text, name, body)
    if changed:
        write_text_atomic(path, new_text, mode=mode)
        logger.info("Inserted block %s into %s", name, path)
    return changed


def strip_block(path: Path, name: str) -> bool:
    """Remove a marked block from ``path``; missing file is a no-op.

    Returns:
        True if the file changed.
    """
    text = read_text(path)
    if text is None:
        return False
    new_text, changed = remove_block(text, name)
    if changed:
        write_text_atomic(path, new_text)
        logger.info("Removed block %s from %s", name, path)
    return changed
