"""Map file paths to content kinds by extension."""

from __future__ import annotations

import posixpath
from collections.abc import Mapping

from ..models import ContentKind

DEFAULT_KIND_TABLE: Mapping[str, ContentKind] = {
    ".js": ContentKind.SCRIPT,
    ".jsx": ContentKind.SCRIPT,
    ".mjs": ContentKind.SCRIPT,
    ".cjs": ContentKind.SCRIPT,
    ".ts": ContentKind.SCRIPT,
    ".tsx": ContentKind.SCRIPT,
    ".css": ContentKind.STYLESHEET,
    ".scss": ContentKind.STYLESHEET,
    ".sass": ContentKind.STYLESHEET,
    ".less": ContentKind.STYLESHEET,
    ".html": ContentKind.MARKUP,
    ".htm": ContentKind.MARKUP,
    ".json": ContentKind.STRUCTURED_DATA,
    ".md": ContentKind.PROSE,
    ".txt": ContentKind.PLAIN_TEXT,
}

# Extension -> tree-sitter grammar; anything else parses as JavaScript
_SCRIPT_LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "tsx",
}


def _extension(path: str) -> str:
    # URLs may carry a query string or fragment after the file name
    path = path.split("?", 1)[0].split("#", 1)[0]
    return posixpath.splitext(path.replace("\\", "/"))[1].lower()


def classify(
    path: str, table: Mapping[str, ContentKind] | None = None
) -> ContentKind:
    """Return the content kind for *path*.

    Args:
        path: File path or URL. Only the extension is inspected and the
            lookup is case-insensitive.
        table: Optional extension table replacing the default one. Keys
            are extensions including the leading dot.

    Returns:
        The matching ``ContentKind``, or ``ContentKind.UNSUPPORTED``.
    """
    lookup = DEFAULT_KIND_TABLE if table is None else table
    ext = _extension(path)
    if not ext:
        return ContentKind.UNSUPPORTED
    kind = lookup.get(ext)
    if kind is None:
        kind = lookup.get(ext.lower(), ContentKind.UNSUPPORTED)
    return ContentKind(kind)


def script_language(path: str) -> str:
    """Return the tree-sitter grammar name used to parse the script at *path*."""
    return _SCRIPT_LANGUAGES.get(_extension(path), "javascript")
