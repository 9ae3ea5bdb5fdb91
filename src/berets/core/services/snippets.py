"""
Snippet rendering for generated shell files.

Snippets are real shell/TOML files under ``berets/core/data/snippets/``
that editors can syntax-highlight.  Values are injected with
``__PLACEHOLDER__`` substitution; any placeholder left unresolved is an
error so a half-rendered wrapper script is never written.
"""

from __future__ import annotations

import re

from berets.core.data import read_snippet

_PLACEHOLDER_RE = re.compile(r"__([A-Z][A-Z0-9_]*)__")


class SnippetError(Exception):
    """Raised when a snippet is missing or cannot be fully rendered."""


def render_snippet(name: str, values: dict[str, str] | None = None) -> str:
    """Render a named snippet.

    Args:
        name: Snippet file name (e.g. ``just-alias.sh``).
        values: Placeholder values keyed by lower- or upper-case name.

    Raises:
        SnippetError: Unknown snippet or unresolved placeholder.
    """
    try:
        template = read_snippet(name)
    except FileNotFoundError as e:
        raise SnippetError(f"Unknown snippet: {name}") from e
    return render_text(template, values or {})


def render_text(template: str, values: dict[str, str]) -> str:
    lookup = {k.upper(): str(v) for k, v in values.items()}
    missing: list[str] = []

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in lookup:
            return lookup[key]
        missing.append(key)
        return match.group(0)

    rendered = _PLACEHOLDER_RE.sub(_sub, template)
    if missing:
        raise SnippetError(f"Unresolved placeholders: {', '.join(sorted(set(missing)))}")
    return rendered
