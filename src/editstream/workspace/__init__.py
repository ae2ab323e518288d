"""Workspace views used while analysing hypothetical edits."""

from .codebase import CodebaseContextProvider, CodebaseExtractor
from .overlay import FileSystemReader, LocalFileSystem, OverlayFileSystem

__all__ = [
    "CodebaseContextProvider",
    "CodebaseExtractor",
    "FileSystemReader",
    "LocalFileSystem",
    "OverlayFileSystem",
]
