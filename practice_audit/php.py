"""Lexical helpers for pattern-matching PHP sources.

PHP files are never fully parsed. Instead comments and string literal
contents are blanked out ("masked") so that structural regexes and bracket
matching only ever see code. Masking preserves offsets and newlines, so an
offset in the masked text is also an offset in the original source.
"""

from __future__ import annotations

import re
import time
from bisect import bisect_right
from dataclasses import dataclass

_HEREDOC_RE = re.compile(r"<<<[ \t]*([\"']?)([A-Za-z_]\w*)\1\r?\n")
_INTERPOLATION_RE = re.compile(r"\$[A-Za-z_{]|\{\$")
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}
_DEADLINE_STRIDE = 4096


class ParseError(ValueError):
    """Raised when a source unit cannot be structurally understood."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        super().__init__(f"{message} (line {line})" if line is not None else message)


class ScanTimeout(ParseError):
    """Raised when a source unit exceeds its parse time budget."""


@dataclass(frozen=True, slots=True)
class Deadline:
    """Cooperative per-file time budget."""

    expires_at: float | None = None

    @classmethod
    def after(cls, seconds: float | None) -> Deadline:
        if seconds is None:
            return cls()
        return cls(time.monotonic() + seconds)

    def check(self) -> None:
        if self.expires_at is not None and time.monotonic() > self.expires_at:
            raise ScanTimeout("parse time budget exceeded")


class LineIndex:
    """Offset to 1-based line number lookup."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        self._starts.extend(match.end() for match in re.finditer("\n", text))

    def line_of(self, offset: int) -> int:
        return bisect_right(self._starts, offset)


@dataclass(frozen=True, slots=True)
class MaskedSource:
    """Original PHP text plus its masked twin."""

    original: str
    text: str
    interpolated: tuple[tuple[int, int], ...]
    lines: LineIndex

    def has_interpolation_within(self, start: int, end: int) -> bool:
        """True when an interpolated string literal lies inside ``[start, end)``."""
        return any(start <= s and e <= end for s, e in self.interpolated)


def mask_php(source: str, deadline: Deadline | None = None) -> MaskedSource:
    """Blank comments, inline HTML, and string contents of a PHP source."""
    deadline = deadline or Deadline()
    lines = LineIndex(source)
    out = list(source)
    interpolated: list[tuple[int, int]] = []
    length = len(source)
    index = 0
    in_php = False
    next_check = _DEADLINE_STRIDE

    def blank(start: int, end: int) -> None:
        for pos in range(start, end):
            if out[pos] != "\n":
                out[pos] = " "

    while index < length:
        if index >= next_check:
            deadline.check()
            next_check = index + _DEADLINE_STRIDE

        if not in_php:
            open_at = source.find("<?", index)
            if open_at == -1:
                blank(index, length)
                break
            blank(index, open_at)
            if source.startswith("<?php", open_at):
                index = open_at + 5
            elif source.startswith("<?=", open_at):
                index = open_at + 3
            else:
                index = open_at + 2
            in_php = True
            continue

        char = source[index]
        if char == "?" and source.startswith("?>", index):
            in_php = False
            index += 2
        elif (char == "#" and not source.startswith("#[", index)) or source.startswith(
            "//", index
        ):
            end = _line_comment_end(source, index)
            blank(index, end)
            index = end
        elif source.startswith("/*", index):
            end = source.find("*/", index + 2)
            if end == -1:
                raise ParseError("unterminated block comment", lines.line_of(index))
            blank(index, end + 2)
            index = end + 2
        elif char in {"'", '"', "`"}:
            end = _quoted_end(source, index, char)
            if end == -1:
                raise ParseError("unterminated string literal", lines.line_of(index))
            blank(index + 1, end)
            if char != "'" and _INTERPOLATION_RE.search(source, index + 1, end):
                interpolated.append((index, end + 1))
            index = end + 1
        elif char == "<" and source.startswith("<<<", index):
            heredoc = _HEREDOC_RE.match(source, index)
            if heredoc is None:
                index += 3
                continue
            body_start = heredoc.end()
            closing = re.compile(rf"^[ \t]*{heredoc.group(2)}\b", re.MULTILINE).search(
                source, body_start
            )
            if closing is None:
                raise ParseError("unterminated heredoc", lines.line_of(index))
            blank(body_start, closing.start())
            if heredoc.group(1) != "'" and _INTERPOLATION_RE.search(
                source, body_start, closing.start()
            ):
                interpolated.append((index, closing.end()))
            index = closing.end()
        else:
            index += 1

    return MaskedSource(
        original=source,
        text="".join(out),
        interpolated=tuple(interpolated),
        lines=lines,
    )


def find_closing(text: str, open_index: int) -> int:
    """Return the offset of the bracket closing the one at ``open_index``."""
    stack = [_OPENERS[text[open_index]]]
    for index in range(open_index + 1, len(text)):
        char = text[index]
        if char in _OPENERS:
            stack.append(_OPENERS[char])
        elif char in _CLOSERS:
            if char != stack.pop():
                raise ParseError("mismatched bracket", text.count("\n", 0, index) + 1)
            if not stack:
                return index
    raise ParseError("unbalanced bracket", text.count("\n", 0, open_index) + 1)


def statement_end(text: str, start: int) -> int:
    """Return the offset of the ``;`` ending the statement that begins at ``start``."""
    index = start
    length = len(text)
    while index < length:
        char = text[index]
        if char in _OPENERS:
            index = find_closing(text, index) + 1
            continue
        if char in _CLOSERS:
            raise ParseError("mismatched bracket", text.count("\n", 0, index) + 1)
        if char == ";":
            return index
        index += 1
    raise ParseError("unterminated statement", text.count("\n", 0, start) + 1)


def _line_comment_end(source: str, start: int) -> int:
    newline = source.find("\n", start)
    end = len(source) if newline == -1 else newline
    close_tag = source.find("?>", start, end)
    return end if close_tag == -1 else close_tag


def _quoted_end(source: str, start: int, quote: str) -> int:
    index = start + 1
    length = len(source)
    while index < length:
        char = source[index]
        if char == "\\":
            index += 2
            continue
        if char == quote:
            return index
        index += 1
    return -1
