"""Overlay filesystem: pending edits projected over the real tree in memory."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from ..protocol.paths import normalize_path
from ..protocol.tags import Delete, Rename, WriteFile, get_delete_tags, get_rename_tags, get_write_tags

__all__ = [
    "FileSystemReader",
    "LocalFileSystem",
    "OverlayFileSystem",
]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class FileSystemReader(Protocol):
    """Read capabilities the overlay resolves untouched paths against."""

    async def file_exists(self, path: Path) -> bool:
        ...

    async def read_file(self, path: Path) -> str:
        ...


class LocalFileSystem:
    """Reads the real filesystem without blocking the event loop."""

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self._encoding = encoding

    async def file_exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.is_file)

    async def read_file(self, path: Path) -> str:
        return await asyncio.to_thread(path.read_text, encoding=self._encoding, errors="replace")


class OverlayFileSystem:
    """Read-through projection of ``root`` with pending edits applied.

    Paths may be given relative to ``root`` or absolute inside it; both are
    keyed by their normalized relative form. Nothing is ever written to disk.
    Renames are resolved lazily so applying changes never performs I/O.
    """

    def __init__(self, root: Path | str, reader: FileSystemReader | None = None) -> None:
        self._root = Path(root)
        self._reader = reader or LocalFileSystem()
        self._writes: dict[str, str] = {}
        self._deleted: set[str] = set()
        self._redirects: dict[str, str] = {}

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Mutation (in memory only)
    # ------------------------------------------------------------------
    def apply_changes(
        self,
        *,
        delete_paths: Iterable[str | Delete] = (),
        rename_tags: Iterable[Rename] = (),
        write_tags: Iterable[WriteFile] = (),
    ) -> None:
        """Apply deletes, then renames, then writes to the overlay."""

        for entry in delete_paths:
            key = self._key(entry.path if isinstance(entry, Delete) else entry)
            self._writes.pop(key, None)
            self._redirects.pop(key, None)
            self._deleted.add(key)
        for rename in rename_tags:
            self._rename(self._key(rename.from_path), self._key(rename.to_path))
        for write in write_tags:
            key = self._key(write.path)
            self._writes[key] = write.content
            self._deleted.discard(key)
            self._redirects.pop(key, None)

    def apply_response_changes(self, transcript: str) -> None:
        """Extract write/rename/delete tags from ``transcript`` and apply them."""

        self.apply_changes(
            delete_paths=get_delete_tags(transcript),
            rename_tags=get_rename_tags(transcript),
            write_tags=get_write_tags(transcript),
        )

    def _rename(self, source: str, target: str) -> None:
        if source == target:
            return
        if source in self._writes:
            self._writes[target] = self._writes.pop(source)
            self._redirects.pop(target, None)
        elif source in self._deleted:
            LOGGER.debug("Rename source %s was deleted in the overlay; ignoring", source)
            return
        else:
            self._writes.pop(target, None)
            self._redirects[target] = self._redirects.pop(source, source)
        self._deleted.discard(target)
        self._deleted.add(source)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def file_exists(self, path: str | Path) -> bool:
        key = self._key(path)
        if key in self._writes:
            return True
        if key in self._deleted:
            return False
        return await self._reader.file_exists(self._absolute(self._redirects.get(key, key)))

    async def read_file(self, path: str | Path) -> str:
        key = self._key(path)
        if key in self._writes:
            return self._writes[key]
        if key in self._deleted:
            raise FileNotFoundError(f"{key} is deleted in the overlay")
        return await self._reader.read_file(self._absolute(self._redirects.get(key, key)))

    def changed_paths(self) -> tuple[str, ...]:
        """Relative paths whose content differs from the real tree."""

        return tuple(sorted(set(self._writes) | set(self._redirects)))

    def deleted_paths(self) -> tuple[str, ...]:
        return tuple(sorted(self._deleted))

    def pending_paths(self) -> tuple[str, ...]:
        """Every path the overlay shadows, written or deleted."""

        return tuple(sorted(set(self._writes) | set(self._redirects) | self._deleted))

    def _key(self, path: str | Path) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.relative_to(self._root)
            except ValueError:
                LOGGER.debug("Path %s is outside overlay root %s", candidate, self._root)
        return normalize_path(candidate.as_posix())

    def _absolute(self, key: str) -> Path:
        return self._root / key
