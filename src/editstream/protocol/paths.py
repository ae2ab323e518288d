"""Path normalization shared by tag extraction and the overlay filesystem."""

from __future__ import annotations

import posixpath

__all__ = ["normalize_path"]


def normalize_path(path: str) -> str:
    """Return ``path`` with forward slashes and redundant segments collapsed.

    Backslashes are treated as separators so paths emitted on Windows hosts
    match the ones emitted elsewhere. A leading ``./`` is dropped, ``a//b`` and
    ``a/./b`` collapse, and ``a/x/../b`` resolves to ``a/b``. Leading ``..``
    segments are preserved because they cannot be resolved without a root.
    """

    if not path:
        return ""
    candidate = path.strip().replace("\\", "/")
    if not candidate:
        return ""
    normalized = posixpath.normpath(candidate)
    if normalized == ".":
        return ""
    # posixpath keeps a double leading slash per POSIX; one is enough here.
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized
