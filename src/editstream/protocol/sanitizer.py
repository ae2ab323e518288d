"""Neutralizes protocol-looking text where it must not be interpreted.

Two independent passes:

* :func:`escape_protocol_tags` runs on reasoning ("thinking") deltas and swaps
  the ``<`` of any protocol tag opener or closer for a full-width look-alike,
  so nothing the model muses about is ever executed.
* :func:`clean_full_response` runs on the whole transcript and rewrites ``<``
  and ``>`` that sit inside double-quoted attribute values of protocol tags.
  HTML in a ``description`` would otherwise end the opening tag early for the
  extractors and for markdown renderers.

Both passes are idempotent and only ever replace characters based on the text
before them, so a transcript that grows by appending keeps a stable prefix.
"""

from __future__ import annotations

import re

from .tags import PROTOCOL_TAGS, TAG_PROBLEM_REPORT

__all__ = [
    "SUBSTITUTE_LT",
    "SUBSTITUTE_GT",
    "THINK_OPEN",
    "THINK_CLOSE",
    "escape_protocol_tags",
    "clean_full_response",
    "remove_thinking_tags",
    "remove_problem_report_tags",
    "remove_non_essential_tags",
    "remove_protocol_tags",
]

SUBSTITUTE_LT = "\uff1c"  # FULLWIDTH LESS-THAN SIGN
SUBSTITUTE_GT = "\uff1e"  # FULLWIDTH GREATER-THAN SIGN
THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

_TAG_NAMES = "|".join(re.escape(name) for name in PROTOCOL_TAGS)
_TAG_LEXEME_RE = re.compile(rf"<(/?)((?:{_TAG_NAMES})(?![\w-]))", re.IGNORECASE)
_TAG_OPEN_RE = re.compile(rf"<(?:{_TAG_NAMES})(?![\w-])", re.IGNORECASE)
_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_PROBLEM_REPORT_RE = re.compile(
    rf"<{re.escape(TAG_PROBLEM_REPORT)}(?![\w-])[^>]*>.*?</{re.escape(TAG_PROBLEM_REPORT)}\s*>",
    re.IGNORECASE | re.DOTALL,
)
_PROTOCOL_BLOCK_RE = re.compile(
    rf"<(?P<name>{_TAG_NAMES})(?![\w-])[^>]*?(?:/>|>.*?</(?P=name)\s*>)",
    re.IGNORECASE | re.DOTALL,
)


def escape_protocol_tags(text: str) -> str:
    """Replace ``<kind`` / ``</kind`` with a non-parsing look-alike."""

    if not text:
        return text
    return _TAG_LEXEME_RE.sub(lambda m: f"{SUBSTITUTE_LT}{m.group(1)}{m.group(2)}", text)


def clean_full_response(text: str) -> str:
    """Rewrite ``<`` and ``>`` inside quoted attribute values of protocol tags.

    The opening tag is scanned character by character from its name: outside
    quotes a ``>`` ends the tag, inside quotes angle brackets are substituted.
    A quoted value that reaches a newline is not an attribute, so the scan
    gives up there. An opening tag that is still streaming is cleaned up to
    the end of the text. Once a tag is open its body is copied verbatim until
    the matching closer, so code that mentions protocol tags is never touched.
    """

    if not text or "<" not in text:
        return text
    pieces: list[str] = []
    cursor = 0
    body_tag: str | None = None
    for match in _TAG_LEXEME_RE.finditer(text):
        if match.start() < cursor:
            # Lexeme sits inside an attribute of the previous tag.
            continue
        closing, name = match.group(1), match.group(2).lower()
        if body_tag is not None:
            if closing and name == body_tag:
                body_tag = None
            continue
        if closing:
            continue
        start = match.end()
        pieces.append(text[cursor:start])
        cursor, opened = _clean_opening_tag(text, start, pieces)
        if opened:
            body_tag = name
    if not pieces:
        return text
    pieces.append(text[cursor:])
    return "".join(pieces)


def _clean_opening_tag(text: str, start: int, pieces: list[str]) -> tuple[int, bool]:
    """Append the cleaned attribute section; return the resume index and
    whether a tag body follows."""

    in_quotes = False
    previous = ""
    index = start
    length = len(text)
    while index < length:
        char = text[index]
        if char == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            if char == "\n":
                return index, False
            if char == "<":
                char = SUBSTITUTE_LT
            elif char == ">":
                char = SUBSTITUTE_GT
        elif char == ">":
            pieces.append(char)
            return index + 1, previous != "/"
        pieces.append(char)
        previous = char
        index += 1
    return index, False


def remove_thinking_tags(text: str) -> str:
    return _THINK_BLOCK_RE.sub("", text).strip()


def remove_problem_report_tags(text: str) -> str:
    return _PROBLEM_REPORT_RE.sub("", text).strip()


def remove_non_essential_tags(text: str) -> str:
    """Strip reasoning and problem-report blocks before replaying history."""

    return remove_problem_report_tags(remove_thinking_tags(text))


def remove_protocol_tags(text: str) -> str:
    """Strip every complete protocol tag; used for read-only chat modes."""

    return _PROTOCOL_BLOCK_RE.sub("", text).strip()
