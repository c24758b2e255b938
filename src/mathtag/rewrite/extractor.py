"""Pull the LaTeX source out of a decoded plist and make it render as math."""

from __future__ import annotations

from typing import Any

from mathtag.rewrite.config import DEFAULT_SOURCE_KEY

_DELIMITER_PAIRS: tuple[tuple[str, str], ...] = (
    ("$", "$"),
    ("\\(", "\\)"),
    ("\\[", "\\]"),
)


def is_delimited(source: str) -> bool:
    """Return True when the text is already wrapped in math delimiters."""

    for opening, closing in _DELIMITER_PAIRS:
        if len(source) >= len(opening) + len(closing) and source.startswith(opening) and source.endswith(closing):
            return True
    return False


def normalize_math(source: str) -> str:
    """Wrap LaTeX as inline or block math unless it already carries delimiters."""

    if is_delimited(source):
        return source
    if "\n" in source:
        return f"$$\n{source}\n$$"
    return f"${source}$"


def extract_source(root: Any, *, key: str = DEFAULT_SOURCE_KEY) -> str | None:
    """Return normalized math for ``root[key]``, or None when there is none."""

    if not isinstance(root, dict):
        return None
    value = root.get(key)
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return normalize_math(trimmed)
