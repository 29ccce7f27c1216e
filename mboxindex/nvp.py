"""Parsing of structured mail header values into name/value entries.

A header such as ``Content-Type: text/plain; charset="us-ascii"`` is broken
into an ordered list of entries: bare names (``attachment``), major/minor
pairs (``text/plain``) and name/value pairs (``charset=us-ascii``).
Continued parameters (``name*0=...; name*1=...``) are joined into a single
name/value entry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

__all__ = ["EntryKind", "NvpEntry", "NvpParseError", "Nvp", "parse_nvp"]

_CONTINUATION = re.compile(r"([^*]+)\*(\d+)\*?")
_FORBIDDEN_IN_TOKEN = set('"=/;')


class NvpParseError(ValueError):
    """Raised when a header value cannot be parsed."""


class EntryKind(Enum):
    NAME = "name"
    MAJORMINOR = "majorminor"
    NAMEVALUE = "namevalue"


@dataclass
class NvpEntry:
    """One element of a parsed header value."""

    kind: EntryKind
    lhs: str
    rhs: str | None = None


@dataclass
class Nvp:
    """Ordered collection of entries parsed from one header value."""

    entries: list[NvpEntry] = field(default_factory=list)

    def __iter__(self) -> Iterator[NvpEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def _values(self) -> Iterator[NvpEntry]:
        return (e for e in self.entries if e.kind is EntryKind.NAMEVALUE)

    def lookup(self, name: str) -> str | None:
        """Return the value of the first parameter called exactly ``name``."""
        return next((e.rhs for e in self._values() if e.lhs == name), None)

    def lookup_case(self, name: str) -> str | None:
        """Return the value of the first parameter matching ``name`` ignoring case."""
        wanted = name.lower()
        return next((e.rhs for e in self._values() if e.lhs.lower() == wanted), None)

    def _first_of(self, kind: EntryKind) -> NvpEntry | None:
        if self.entries and self.entries[0].kind is kind:
            return self.entries[0]
        return None

    def major(self) -> str | None:
        """Major part of a leading ``major/minor`` entry, if there is one."""
        entry = self._first_of(EntryKind.MAJORMINOR)
        return entry.lhs if entry else None

    def minor(self) -> str | None:
        """Minor part of a leading ``major/minor`` entry, if there is one."""
        entry = self._first_of(EntryKind.MAJORMINOR)
        return entry.rhs if entry else None

    def first(self) -> str | None:
        """The leading bare name, if the first entry is one."""
        entry = self._first_of(EntryKind.NAME)
        return entry.lhs if entry else None

    def dump(self) -> str:
        """Return a human-readable listing of the entries."""
        lines = ["----"]
        for entry in self.entries:
            if entry.kind is EntryKind.NAME:
                lines.append(f"NAME: {entry.lhs}")
            elif entry.kind is EntryKind.MAJORMINOR:
                lines.append(f"MAJORMINOR: {entry.lhs}/{entry.rhs}")
            else:
                lines.append(f"NAMEVALUE: {entry.lhs}={entry.rhs}")
        return "\n".join(lines) + "\n"

    def _combine(self, name: str, value: str) -> None:
        for entry in self._values():
            if entry.lhs == name:
                entry.rhs = (entry.rhs or "") + value
                return
        self.entries.append(NvpEntry(EntryKind.NAMEVALUE, name, value))


def _split_items(text: str) -> list[str]:
    items: list[str] = []
    current: list[str] = []
    in_quote = False
    for ch in text:
        if ch == '"':
            in_quote = not in_quote
            current.append(ch)
        elif ch == ";" and not in_quote:
            items.append("".join(current))
            current = []
        else:
            current.append(ch)
    if in_quote:
        raise NvpParseError("unterminated quoted string")
    items.append("".join(current))
    return items


def _find_unquoted(text: str, target: str) -> int:
    in_quote = False
    for pos, ch in enumerate(text):
        if ch == '"':
            in_quote = not in_quote
        elif ch == target and not in_quote:
            return pos
    return -1


def _check_token(token: str) -> str:
    if not token or any(
        ch.isspace() or ch in _FORBIDDEN_IN_TOKEN or ord(ch) < 32 for ch in token
    ):
        raise NvpParseError(f"invalid token {token!r}")
    return token


def _unquote(value: str) -> str:
    value = value.strip()
    if not value:
        return ""
    if value[0] == '"':
        inner = value[1:-1]
        if len(value) >= 2 and value[-1] == '"' and '"' not in inner:
            return inner
        raise NvpParseError(f"badly quoted value {value!r}")
    if '"' in value:
        raise NvpParseError(f"stray quote in value {value!r}")
    return value


def _parse_item(result: Nvp, item: str) -> None:
    stripped = item.strip()
    if not stripped:
        return
    eq = _find_unquoted(stripped, "=")
    if eq >= 0:
        name = stripped[:eq].strip()
        value = _unquote(stripped[eq + 1:])
        match = _CONTINUATION.fullmatch(name)
        if match:
            result._combine(_check_token(match.group(1)), value)
            return
        if name.endswith("*"):
            name = name[:-1]
        result.entries.append(NvpEntry(EntryKind.NAMEVALUE, _check_token(name), value))
    elif '"' in stripped:
        raise NvpParseError(f"unexpected quoted text {stripped!r}")
    elif "/" in stripped:
        major, _, minor = stripped.partition("/")
        result.entries.append(
            NvpEntry(
                EntryKind.MAJORMINOR,
                _check_token(major.strip()),
                _check_token(minor.strip()),
            )
        )
    else:
        result.entries.append(NvpEntry(EntryKind.NAME, _check_token(stripped)))


def parse_nvp(text: str, prefix: str = "") -> Nvp | None:
    """Parse ``text`` if it starts with ``prefix`` (compared ignoring case).

    Returns ``None`` when the prefix does not match and raises
    :class:`NvpParseError` when the remainder cannot be parsed.
    """
    if text[: len(prefix)].lower() != prefix.lower():
        return None
    body = text[len(prefix):]
    result = Nvp()
    try:
        for item in _split_items(body):
            _parse_item(result, item)
    except NvpParseError as exc:
        raise NvpParseError(f"Header '{prefix}{body}' could not be parsed: {exc}") from exc
    return result