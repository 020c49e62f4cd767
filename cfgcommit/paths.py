"""Helpers for configuration path strings."""

from __future__ import annotations

from typing import Optional

_ESCAPED_SLASH = "%2F"
_VALUE_PREFIX = "value:"


def path_string_to_path_comps(path_str: str) -> list[str]:
    """Split a slash-separated path into its non-empty components."""
    return [comp for comp in path_str.split("/") if comp]


def escape_slashes(text: str) -> str:
    """Escape every '/' so the text can be one path component."""
    return text.replace("/", _ESCAPED_SLASH)


def unescape(text: str) -> str:
    """Undo :func:`escape_slashes`."""
    return text.replace(_ESCAPED_SLASH, "/")


def process_script_path(path: Optional[str]) -> Optional[str]:
    """Turn a data path into the space separated form shown to scripts.

    Every component followed by a slash becomes a word followed by a
    space; a final ``value:<v>`` component contributes ``<v>`` verbatim.
    """
    if path is None:
        return None
    *leading, last = path.split("/")
    words = "".join(f"{comp} " for comp in leading) if leading else path
    result = unescape(words)
    if last.startswith(_VALUE_PREFIX) and len(last) > len(_VALUE_PREFIX):
        result += last[len(_VALUE_PREFIX):] + " "
    return result