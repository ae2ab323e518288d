"""Codebase context formatting for the prompt's codebase message."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from pathlib import Path
from typing import Iterable, Protocol, Sequence, runtime_checkable

from .overlay import OverlayFileSystem

__all__ = ["CodebaseContextProvider", "CodebaseExtractor"]

LOGGER = logging.getLogger(__name__)

_DEFAULT_INCLUDE: tuple[str, ...] = ("*.py", "*.ts", "*.tsx", "*.js", "*.jsx", "*.json", "*.md", "*.toml", "*.css", "*.html", "*.sql")
_DEFAULT_EXCLUDE_DIRS: frozenset[str] = frozenset(
    {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", ".mypy_cache", ".pytest_cache"}
)


@runtime_checkable
class CodebaseContextProvider(Protocol):
    """Renders the codebase text embedded in the first user message."""

    async def extract_codebase(self, app_root: Path, overlay: OverlayFileSystem | None = None) -> str:
        ...


class CodebaseExtractor:
    """Collects source files under ``app_root`` and renders them for the model.

    When an overlay is supplied the rendered contents reflect pending edits:
    paths written by the overlay are added, deleted paths are dropped.
    """

    def __init__(
        self,
        *,
        include: Sequence[str] = _DEFAULT_INCLUDE,
        exclude_dirs: Iterable[str] = _DEFAULT_EXCLUDE_DIRS,
        max_file_chars: int = 40_000,
    ) -> None:
        self._include = tuple(include)
        self._exclude_dirs = frozenset(exclude_dirs)
        self._max_file_chars = max(1, int(max_file_chars))

    async def extract_codebase(self, app_root: Path, overlay: OverlayFileSystem | None = None) -> str:
        root = Path(app_root)
        paths = set(await asyncio.to_thread(self._list_files, root))
        view = overlay or OverlayFileSystem(root)
        if overlay is not None:
            paths.update(path for path in overlay.changed_paths() if self._matches(path))
            paths.difference_update(overlay.deleted_paths())

        sections: list[str] = []
        for relative in sorted(paths):
            try:
                content = await view.read_file(relative)
            except (OSError, UnicodeDecodeError) as exc:
                LOGGER.debug("Skipping %s while extracting codebase: %s", relative, exc)
                continue
            if len(content) > self._max_file_chars:
                content = f"{content[: self._max_file_chars]}\n... (truncated)"
            sections.append(f"<file path=\"{relative}\">\n{content}\n</file>")
        LOGGER.debug("Extracted %d file(s) from %s", len(sections), root)
        return "\n\n".join(sections)

    def _list_files(self, root: Path) -> list[str]:
        if not root.is_dir():
            return []
        found: list[str] = []
        for path in root.rglob("*"):
            relative = path.relative_to(root)
            if any(part in self._exclude_dirs for part in relative.parts[:-1]):
                continue
            if path.is_file() and self._matches(relative.as_posix()):
                found.append(relative.as_posix())
        return found

    def _matches(self, relative: str) -> bool:
        name = relative.rsplit("/", 1)[-1]
        return any(fnmatch.fnmatch(name, pattern) for pattern in self._include)
