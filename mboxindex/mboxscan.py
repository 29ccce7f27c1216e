"""Locating messages inside an mbox file and checking stored messages are intact.

Messages are separated by ``From `` lines at the start of a line.  A ``From``
line only counts as a separator if it has the usual shape::

    From [return-path] weekday month day time [timezone] year

A message span starts just after its ``From`` line and runs up to the start
of the next separator (or the end of the file).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from .md5 import md5_digest

__all__ = [
    "MessageSpan",
    "StoredMessage",
    "compute_checksum",
    "looks_like_from_separator",
    "find_next_from",
    "scan_messages",
    "is_message_intact",
    "find_number_intact",
]

_WEEKDAY = rb"(?:mon|tue|wed|thu|fri|sat|sun)"
_MONTH = rb"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)"
_SEPARATOR_TAIL = re.compile(
    rb"(?:\S+[ \t]+)?"
    + _WEEKDAY
    + rb"[ \t]+"
    + _MONTH
    + rb"[ \t]+\d{1,2}[ \t]+\d{1,2}:\d{2}(?::\d{2})?[ \t]+"
    rb"(?:[A-Za-z0-9+\-]+[ \t]+){0,2}\d{4}[ \t]*\r?\n",
    re.IGNORECASE,
)

_FROM = b"From "
_LINE_FROM = b"\nFrom "


@dataclass(frozen=True)
class MessageSpan:
    """A newly found message: offset and length of its text in the mbox."""

    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass(frozen=True)
class StoredMessage:
    """A message already indexed: its span and the checksum of its text."""

    start: int
    length: int
    checksum: bytes

    @property
    def end(self) -> int:
        return self.start + self.length


def compute_checksum(data: bytes | bytearray | memoryview) -> bytes:
    """Return the 16-byte MD5 checksum of ``data``."""
    return md5_digest(data)


def looks_like_from_separator(data: bytes, pos: int) -> bool:
    """True if the ``From `` at ``pos`` begins a genuine message separator line.

    A line running into the end of the data is not a separator.
    """
    return _SEPARATOR_TAIL.match(data, pos + len(_FROM)) is not None


def find_next_from(data: bytes, pos: int) -> int | None:
    """Return the offset of the next separator ``From`` at or after ``pos``.

    Only a ``From `` preceded by a newline at or after ``pos`` is considered,
    except at offset 0, where a leading ``From `` is accepted unchecked.
    """
    if pos == 0 and data.startswith(_FROM):
        return 0
    search = pos
    while True:
        newline = data.find(_LINE_FROM, search)
        if newline < 0:
            return None
        if looks_like_from_separator(data, newline + 1):
            return newline + 1
        search = newline + 1


def _start_of_next_line(data: bytes, pos: int) -> int | None:
    newline = data.find(b"\n", pos)
    if newline < 0 or newline + 1 >= len(data):
        return None
    return newline + 1


def scan_messages(data: bytes, start: int = 0) -> list[MessageSpan]:
    """Find the messages whose separators lie at or after ``start``.

    To pick up a separator directly after an earlier message, ``start``
    should point at the newline that ends that message.
    """
    spans: list[MessageSpan] = []
    size = len(data)
    separator = find_next_from(data, start)
    while separator is not None:
        body = _start_of_next_line(data, separator)
        if body is None:
            break
        following = find_next_from(data, body)
        end = size if following is None else following
        spans.append(MessageSpan(body, end - body))
        separator = following
    return spans


def is_message_intact(message: StoredMessage, data: bytes) -> bool:
    """True if ``message`` still lies within ``data`` with the same checksum."""
    if message.end > len(data):
        return False
    return compute_checksum(data[message.start:message.end]) == message.checksum


def find_number_intact(messages: Sequence[StoredMessage], data: bytes) -> int:
    """Return how many leading stored messages are still intact in ``data``.

    Everything before an intact message is assumed intact too, so a binary
    search finds the last one that survives.
    """
    count = len(messages)
    if count == 0:
        return 0
    if is_message_intact(messages[-1], data):
        return count
    if not is_message_intact(messages[0], data):
        return 0
    low, high = 0, count
    # Invariant: messages[low] is intact, messages[high] is not.
    while low < high:
        mid = (low + high) >> 1
        if mid == low:
            break
        if is_message_intact(messages[mid], data):
            low = mid
        else:
            high = mid
    return low + 1