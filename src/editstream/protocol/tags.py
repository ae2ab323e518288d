"""Tag extraction for the edit protocol embedded in model responses.

The model interleaves prose with a small tag grammar::

    <write path="src/app.py" description="...">body</write>
    <rename from="a.py" to="b.py"></rename>
    <delete path="old.py"></delete>
    <add-dependency packages="httpx rich"></add-dependency>
    <execute-sql description="...">body</execute-sql>
    <command type="rebuild"></command>
    <chat-summary>text</chat-summary>

Every function here is pure: it takes the full transcript and returns fresh
immutable records. Tags are matched left to right without overlap, tag names
are case-insensitive and attributes may appear in any order. Malformed tags
are logged and skipped.

Scanning is regex based. Tag-like text inside a write body (for example a
file that itself contains ``</write>``) ends the body early; a tokenizer with
explicit outside-tag / inside-tag / inside-attribute / inside-body states
would remove that ambiguity.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator

from .paths import normalize_path

__all__ = [
    "TAG_WRITE",
    "TAG_RENAME",
    "TAG_DELETE",
    "TAG_ADD_DEPENDENCY",
    "TAG_EXECUTE_SQL",
    "TAG_COMMAND",
    "TAG_CHAT_SUMMARY",
    "TAG_PROBLEM_REPORT",
    "TAG_PROBLEM",
    "PROTOCOL_TAGS",
    "WriteFile",
    "Rename",
    "Delete",
    "AddDependency",
    "ExecuteSql",
    "Command",
    "ChatSummary",
    "ResponseEdits",
    "parse_attributes",
    "strip_code_fence",
    "get_write_tags",
    "get_rename_tags",
    "get_delete_tags",
    "get_add_dependency_tags",
    "get_dependency_packages",
    "get_execute_sql_tags",
    "get_command_tags",
    "get_chat_summary_tag",
    "has_unclosed_write",
    "extract_edit_records",
]

LOGGER = logging.getLogger(__name__)

TAG_WRITE = "write"
TAG_RENAME = "rename"
TAG_DELETE = "delete"
TAG_ADD_DEPENDENCY = "add-dependency"
TAG_EXECUTE_SQL = "execute-sql"
TAG_COMMAND = "command"
TAG_CHAT_SUMMARY = "chat-summary"
TAG_PROBLEM_REPORT = "problem-report"
TAG_PROBLEM = "problem"

PROTOCOL_TAGS: tuple[str, ...] = (
    TAG_WRITE,
    TAG_RENAME,
    TAG_DELETE,
    TAG_ADD_DEPENDENCY,
    TAG_EXECUTE_SQL,
    TAG_COMMAND,
    TAG_CHAT_SUMMARY,
    TAG_PROBLEM_REPORT,
    TAG_PROBLEM,
)

_ATTRIBUTE_RE = re.compile(r'([A-Za-z_][\w-]*)\s*=\s*"([^"]*)"')
_FENCE = "```"
_PATTERN_CACHE: dict[str, re.Pattern[str]] = {}


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class WriteFile:
    path: str
    content: str
    description: str | None = None


@dataclass(slots=True, frozen=True)
class Rename:
    from_path: str
    to_path: str


@dataclass(slots=True, frozen=True)
class Delete:
    path: str


@dataclass(slots=True, frozen=True)
class AddDependency:
    packages: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class ExecuteSql:
    content: str
    description: str | None = None


@dataclass(slots=True, frozen=True)
class Command:
    type: str


@dataclass(slots=True, frozen=True)
class ChatSummary:
    text: str


@dataclass(slots=True, frozen=True)
class ResponseEdits:
    """Every structured record found in one extraction pass."""

    writes: tuple[WriteFile, ...] = ()
    renames: tuple[Rename, ...] = ()
    deletes: tuple[Delete, ...] = ()
    dependencies: tuple[AddDependency, ...] = ()
    sql: tuple[ExecuteSql, ...] = ()
    commands: tuple[Command, ...] = ()
    summary: ChatSummary | None = None
    unclosed_write: bool = False

    @property
    def packages(self) -> tuple[str, ...]:
        return tuple(pkg for dep in self.dependencies for pkg in dep.packages)

    @property
    def has_file_changes(self) -> bool:
        return bool(self.writes or self.renames or self.deletes)


# -----------------------------------------------------------------------------
# Scanning helpers
# -----------------------------------------------------------------------------


def _tag_pattern(kind: str) -> re.Pattern[str]:
    pattern = _PATTERN_CACHE.get(kind)
    if pattern is None:
        name = re.escape(kind)
        # Either an explicit closing tag or a self-closing opening tag.
        pattern = re.compile(
            rf"<{name}(?![\w-])(?P<attrs>[^>]*?)(?:/>|>(?P<body>.*?)</{name}\s*>)",
            re.IGNORECASE | re.DOTALL,
        )
        _PATTERN_CACHE[kind] = pattern
    return pattern


def _iter_tags(text: str, kind: str) -> Iterator[tuple[dict[str, str], str, str]]:
    if not text:
        return
    for match in _tag_pattern(kind).finditer(text):
        yield parse_attributes(match.group("attrs") or ""), match.group("body") or "", match.group(0)


def parse_attributes(raw: str) -> dict[str, str]:
    """Parse ``name="value"`` pairs; names are lower-cased, first one wins."""

    attributes: dict[str, str] = {}
    for name, value in _ATTRIBUTE_RE.findall(raw or ""):
        attributes.setdefault(name.lower(), value)
    return attributes


def strip_code_fence(body: str) -> str:
    """Trim ``body`` and drop a leading/trailing fenced-code line if present."""

    lines = body.strip().split("\n")
    if lines and lines[0].startswith(_FENCE):
        lines.pop(0)
    if lines and lines[-1].startswith(_FENCE):
        lines.pop()
    return "\n".join(lines)


def _snippet(raw: str, limit: int = 160) -> str:
    return raw if len(raw) <= limit else f"{raw[:limit]}…"


# -----------------------------------------------------------------------------
# Extractors
# -----------------------------------------------------------------------------


def get_write_tags(transcript: str) -> list[WriteFile]:
    tags: list[WriteFile] = []
    for attrs, body, raw in _iter_tags(transcript, TAG_WRITE):
        path = normalize_path(attrs.get("path", ""))
        if not path:
            LOGGER.warning("Found <%s> tag without a valid 'path' attribute: %s", TAG_WRITE, _snippet(raw))
            continue
        tags.append(WriteFile(path=path, content=strip_code_fence(body), description=attrs.get("description") or None))
    return tags


def get_rename_tags(transcript: str) -> list[Rename]:
    tags: list[Rename] = []
    for attrs, _body, raw in _iter_tags(transcript, TAG_RENAME):
        source = normalize_path(attrs.get("from", ""))
        target = normalize_path(attrs.get("to", ""))
        if not source or not target:
            LOGGER.warning("Skipping <%s> tag missing 'from' or 'to': %s", TAG_RENAME, _snippet(raw))
            continue
        tags.append(Rename(from_path=source, to_path=target))
    return tags


def get_delete_tags(transcript: str) -> list[Delete]:
    tags: list[Delete] = []
    for attrs, _body, raw in _iter_tags(transcript, TAG_DELETE):
        path = normalize_path(attrs.get("path", ""))
        if not path:
            LOGGER.warning("Skipping <%s> tag without a 'path' attribute: %s", TAG_DELETE, _snippet(raw))
            continue
        tags.append(Delete(path=path))
    return tags


def get_add_dependency_tags(transcript: str) -> list[AddDependency]:
    tags: list[AddDependency] = []
    for attrs, _body, raw in _iter_tags(transcript, TAG_ADD_DEPENDENCY):
        packages = tuple(attrs.get("packages", "").split())
        if not packages:
            LOGGER.warning("Skipping <%s> tag without packages: %s", TAG_ADD_DEPENDENCY, _snippet(raw))
            continue
        tags.append(AddDependency(packages=packages))
    return tags


def get_dependency_packages(transcript: str) -> list[str]:
    """Flattened package names across every add-dependency tag."""

    return [pkg for tag in get_add_dependency_tags(transcript) for pkg in tag.packages]


def get_execute_sql_tags(transcript: str) -> list[ExecuteSql]:
    return [
        ExecuteSql(content=strip_code_fence(body), description=attrs.get("description") or None)
        for attrs, body, _raw in _iter_tags(transcript, TAG_EXECUTE_SQL)
    ]


def get_command_tags(transcript: str) -> list[Command]:
    tags: list[Command] = []
    for attrs, _body, raw in _iter_tags(transcript, TAG_COMMAND):
        command_type = attrs.get("type", "").strip()
        if not command_type:
            LOGGER.warning("Skipping <%s> tag without a 'type' attribute: %s", TAG_COMMAND, _snippet(raw))
            continue
        tags.append(Command(type=command_type))
    return tags


def get_chat_summary_tag(transcript: str) -> ChatSummary | None:
    for _attrs, body, _raw in _iter_tags(transcript, TAG_CHAT_SUMMARY):
        text = body.strip()
        return ChatSummary(text=text) if text else None
    return None


_WRITE_OPEN_RE = re.compile(rf"<{TAG_WRITE}(?![\w-])[^>]*>", re.IGNORECASE)
_WRITE_CLOSE_RE = re.compile(rf"</{TAG_WRITE}\s*>", re.IGNORECASE)


def has_unclosed_write(transcript: str) -> bool:
    """Return ``True`` when the last write opening tag is never closed."""

    last_open = -1
    for match in _WRITE_OPEN_RE.finditer(transcript or ""):
        last_open = match.end()
    if last_open == -1:
        return False
    return _WRITE_CLOSE_RE.search(transcript, last_open) is None


def extract_edit_records(transcript: str) -> ResponseEdits:
    """Run every extractor over ``transcript`` and bundle the results."""

    return ResponseEdits(
        writes=tuple(get_write_tags(transcript)),
        renames=tuple(get_rename_tags(transcript)),
        deletes=tuple(get_delete_tags(transcript)),
        dependencies=tuple(get_add_dependency_tags(transcript)),
        sql=tuple(get_execute_sql_tags(transcript)),
        commands=tuple(get_command_tags(transcript)),
        summary=get_chat_summary_tag(transcript),
        unclosed_write=has_unclosed_write(transcript),
    )
