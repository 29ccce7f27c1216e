"""Expansion of configured folder paths, wildcards and recursive specs."""

from __future__ import annotations

import logging
import os
import re
import stat
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

__all__ = [
    "TraverseCheck",
    "TraverseMethods",
    "MBOX_TRAVERSE_METHODS",
    "split_on_colons",
    "is_wild",
    "glob_match",
    "glob_and_expand_paths",
]

logger = logging.getLogger(__name__)


class TraverseCheck(Enum):
    FINISH = "finish"
    IGNORE = "ignore"
    PROCESS = "process"


@dataclass(frozen=True)
class TraverseMethods:
    """Hooks deciding which paths are kept and which entries are descended into."""

    filter: Callable[[str, os.stat_result], bool]
    scrutinize: Callable[[bool, str], TraverseCheck]


def _filter_is_file(path: str, st: os.stat_result) -> bool:
    return stat.S_ISREG(st.st_mode)


def _scrutinize_mbox_entry(parent_matched: bool, name: str) -> TraverseCheck:
    return TraverseCheck.PROCESS


MBOX_TRAVERSE_METHODS = TraverseMethods(_filter_is_file, _scrutinize_mbox_entry)


def split_on_colons(text: str) -> list[str]:
    """Split a colon-separated list, dropping empty components."""
    return [part for part in text.split(":") if part]


def is_wild(text: str) -> bool:
    """True if ``text`` contains any wildcard metacharacter."""
    return any(ch in "[*?" for ch in text)


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    pos = 0
    while pos < len(pattern):
        ch = pattern[pos]
        if ch == "*":
            parts.append(".+")
        elif ch == "?":
            parts.append(".")
        elif ch == "[":
            end = pattern.find("]", pos + 2 if pattern[pos + 1:pos + 2] == "^" else pos + 1)
            if end < 0:
                parts.append(re.escape(ch))
            else:
                body = pattern[pos + 1:end]
                negate = body.startswith("^")
                if negate:
                    body = body[1:]
                escaped = body.replace("\\", "\\\\").replace("[", "\\[").replace("^", "\\^")
                parts.append(f"[{'^' if negate else ''}{escaped}]")
                pos = end
        else:
            parts.append(re.escape(ch))
        pos += 1
    return re.compile("".join(parts), re.DOTALL)


def glob_match(pattern: str, name: str) -> bool:
    """Match ``name`` against a shell-like pattern.

    ``*`` matches one or more characters, ``?`` exactly one, ``[a-z]`` a
    character class and ``[^a-z]`` a negated class.
    """
    return _glob_to_regex(pattern).fullmatch(name) is not None


class _Expander:
    def __init__(self, methods: TraverseMethods, omit_globs: Iterable[str]) -> None:
        self.methods = methods
        self.omit = [_glob_to_regex(p) for p in omit_globs]
        self.found: list[str] = []

    def omitted(self, relative: str) -> bool:
        return any(rx.fullmatch(relative) for rx in self.omit)

    def shallow(self, path: str, base_len: int, st: os.stat_result) -> bool:
        if self.methods.filter(path, st) and not self.omitted(path[base_len:]):
            self.found.append(path)
            return True
        return False

    def deep(self, path: str, base_len: int, st: os.stat_result) -> bool:
        matched = self.shallow(path, base_len, st)
        appended_any = matched
        if not stat.S_ISDIR(st.st_mode):
            return appended_any
        try:
            names = sorted(os.listdir(path))
        except OSError:
            return appended_any
        for name in names:
            xpath = f"{path}/{name}"
            if self.omitted(xpath[base_len:]):
                continue
            status = self.methods.scrutinize(matched, name)
            if status is TraverseCheck.FINISH:
                break
            if status is TraverseCheck.IGNORE:
                continue
            try:
                sub = os.stat(xpath)
            except OSError:
                continue
            if stat.S_ISREG(sub.st_mode):
                appended_any |= self.shallow(xpath, base_len, sub)
            elif stat.S_ISDIR(sub.st_mode):
                appended_any |= self.deep(xpath, base_len, sub)
        return appended_any

    def handle_wild(self, full_path: str, base_len: int, comp_start: int, deep: bool) -> None:
        last_comp = full_path[comp_start:]
        matcher = _glob_to_regex(last_comp)
        parent = full_path[:comp_start - 1] if comp_start > 0 else "."
        append = self.deep if deep else self.shallow
        try:
            names = sorted(os.listdir(parent))
        except OSError:
            logger.warning("Folder path %s does not exist", parent)
            return
        had_matches = False
        for name in names:
            if not matcher.fullmatch(name):
                continue
            xpath = f"{parent}/{name}"
            if self.omitted(xpath[base_len:]):
                continue
            had_matches = True
            try:
                st = os.stat(xpath)
            except OSError:
                continue
            append(xpath, base_len, st)
        if not had_matches:
            logger.warning('Wildcard "%s" matched nothing in %s', last_comp, parent)

    def handle_single(self, full_path: str, base_len: int, deep: bool) -> None:
        try:
            st = os.stat(full_path)
        except OSError:
            logger.warning("Folder path %s does not exist", full_path)
            return
        (self.deep if deep else self.shallow)(full_path, base_len, st)

    def handle_one_path(self, folder_base: str, path: str) -> None:
        if path.startswith("/"):
            full_path, base_len = path, 0
        else:
            full_path = f"{folder_base}/{path}"
            base_len = len(folder_base) + 1
        deep = len(full_path) >= 4 and full_path.endswith("...")
        if deep:
            full_path = full_path[:-3]
        comp_start = full_path.rfind("/") + 1
        if is_wild(full_path[comp_start:]):
            self.handle_wild(full_path, base_len, comp_start, deep)
        else:
            self.handle_single(full_path, base_len, deep)


def glob_and_expand_paths(
    folder_base: str,
    paths: Iterable[str],
    methods: TraverseMethods | None = None,
    omit_globs: Iterable[str] | None = None,
) -> list[str]:
    """Expand folder specs into the list of paths they name.

    Each spec is ``[dir/]name`` (a single path), ``[dir/]wild`` (every entry
    matching the wildcard) or either of those followed by ``...`` to include
    everything below a directory.  Relative specs are taken from
    ``folder_base``; ``omit_globs`` are matched against paths relative to it.
    """
    expander = _Expander(methods or MBOX_TRAVERSE_METHODS, omit_globs or ())
    for path in paths:
        expander.handle_one_path(folder_base, path)
    return expander.found