"""Tracking of mbox folders in the index and indexing of their messages."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .mboxscan import (
    MessageSpan,
    StoredMessage,
    compute_checksum,
    find_number_intact,
    scan_messages,
)
from .paths import MBOX_TRAVERSE_METHODS, glob_and_expand_paths, split_on_colons
from .rfc822 import BadHeadersError, Message, MsgSource, ParseStatus, data_to_rfc822, read_mapping

__all__ = [
    "Mbox",
    "MboxMessageRecord",
    "MboxDatabase",
    "DuplicateMboxError",
    "MboxLimitError",
    "MAX_MBOXEN",
    "MAX_MESSAGES_PER_MBOX",
    "rescan_mbox",
    "build_mbox_lists",
    "add_mbox_messages",
    "cull_dead_mboxen",
    "encode_mbox_indices",
    "decode_mbox_indices",
    "verify_mbox_size_constraints",
]

logger = logging.getLogger(__name__)

MAX_MBOXEN = 65536
MAX_MESSAGES_PER_MBOX = 65536
_MAX_COALESCE_TRIALS = 100


class DuplicateMboxError(ValueError):
    """Raised when the same mbox is listed more than once in the configuration."""


class MboxLimitError(ValueError):
    """Raised when there are more mboxes or mbox messages than the index can number."""


@dataclass
class Mbox:
    """An mbox known to the index.  A dead mbox has ``path`` set to ``None``."""

    path: str | None
    current_mtime: int = 0
    current_size: int = 0
    file_mtime: int = 0
    file_size: int = 0
    messages: list[StoredMessage] = field(default_factory=list)
    n_old_msgs_valid: int = 0
    new_msgs: list[MessageSpan] = field(default_factory=list)

    @property
    def n_msgs(self) -> int:
        return len(self.messages)

    def deaden(self) -> None:
        """Mark the mbox as gone and forget its messages."""
        self.path = None
        self.messages = []
        self.n_old_msgs_valid = 0


@dataclass
class MboxMessageRecord:
    """An indexed message that lives in an mbox."""

    file_index: int
    msg_index: int
    date: int | None = None
    seen: bool = False
    replied: bool = False
    flagged: bool = False


@dataclass
class MboxDatabase:
    """The mbox part of the index.

    ``messages`` may also hold records of other kinds; only
    :class:`MboxMessageRecord` entries are touched here.  ``tokeniser`` is
    called with the index of each new record and its parsed message.
    """

    mboxen: list[Mbox] = field(default_factory=list)
    messages: list[Any] = field(default_factory=list)
    tokeniser: Callable[[int, Message], None] | None = None


def rescan_mbox(mbox: Mbox, data: bytes) -> None:
    """Work out how many stored messages survive in ``data`` and find the new ones."""
    mbox.n_old_msgs_valid = find_number_intact(mbox.messages, data)
    valid = mbox.n_old_msgs_valid
    if valid == 0:
        start = 0
    else:
        # Point at the newline ending the last good message so that the
        # separator right after it is seen.
        start = mbox.messages[valid - 1].end - 1
    mbox.new_msgs = scan_messages(data, start)


def _extant_mboxen(
    folder_base: str, mboxen_paths: str | None, omit_globs: Iterable[str] | None
) -> list[tuple[str, int, int]]:
    if not mboxen_paths:
        return []
    paths = glob_and_expand_paths(
        folder_base, split_on_colons(mboxen_paths), MBOX_TRAVERSE_METHODS, omit_globs or ()
    )
    extant: list[tuple[str, int, int]] = []
    for path in paths:
        try:
            st = os.lstat(path)
        except OSError:
            continue
        if stat.S_ISLNK(st.st_mode):
            logger.debug("%s is a link - skipping", path)
            continue
        extant.append((path, int(st.st_mtime), st.st_size))
    extant.sort(key=lambda item: item[0])
    return extant


def _check_duplicates(extant: list[tuple[str, int, int]]) -> None:
    duplicates = sorted({a[0] for a, b in zip(extant, extant[1:]) if a[0] == b[0]})
    if duplicates:
        listed = ", ".join(duplicates)
        raise DuplicateMboxError(
            f"mbox {listed} is listed twice in the configuration; it needs fixing"
        )


def _marry_up(db: MboxDatabase, extant: list[tuple[str, int, int]]) -> None:
    by_path = {path: (mtime, size) for path, mtime, size in extant}
    known: set[str] = set()
    for mbox in db.mboxen:
        if mbox.path is not None and mbox.path in by_path:
            mbox.current_mtime, mbox.current_size = by_path[mbox.path]
            known.add(mbox.path)
        else:
            mbox.deaden()
    for path, mtime, size in extant:
        if path not in known:
            db.mboxen.append(Mbox(path=path, current_mtime=mtime, current_size=size))


def build_mbox_lists(
    db: MboxDatabase,
    folder_base: str,
    mboxen_paths: str | None,
    omit_globs: Iterable[str] | None = None,
) -> None:
    """Bring ``db.mboxen`` up to date with the mboxes named in ``mboxen_paths``.

    ``mboxen_paths`` is a colon-separated list of folder specs relative to
    ``folder_base``.  Vanished mboxes are marked dead, new ones are added,
    and changed ones are rescanned so that ``n_old_msgs_valid`` and
    ``new_msgs`` say what is still valid and what needs indexing.
    """
    extant = _extant_mboxen(folder_base, mboxen_paths, omit_globs)
    _check_duplicates(extant)
    _marry_up(db, extant)

    for mbox in db.mboxen:
        mbox.new_msgs = []
        if mbox.path is None:
            continue
        if mbox.current_mtime == mbox.file_mtime and mbox.current_size == mbox.file_size:
            mbox.n_old_msgs_valid = mbox.n_msgs
            continue
        data = read_mapping(mbox.path)
        if data:
            rescan_mbox(mbox, data)
        elif data is not None:
            mbox.messages = []
            mbox.n_old_msgs_valid = 0
        else:
            mbox.deaden()


def _parse(data: bytes, source: MsgSource) -> tuple[Message | None, ParseStatus]:
    try:
        message = data_to_rfc822(data, source)
    except BadHeadersError:
        return None, ParseStatus.BAD_HEADERS
    return message, message.status


def _index_new_messages(db: MboxDatabase, file_index: int, mbox: Mbox, data: bytes) -> None:
    path = mbox.path or ""
    spans = mbox.new_msgs
    del mbox.messages[mbox.n_old_msgs_valid:]
    pos = 0
    while pos < len(spans):
        here = spans[pos]
        next_pos = pos + 1
        last = pos
        trials = 0
        message: Message | None = None
        coalesced = False
        # A chunk whose multipart body is unterminated probably contains a
        # false separator; keep adding chunks until the message parses.
        while True:
            length = spans[last].end - here.start
            source = MsgSource(path, here.start, length)
            message, status = _parse(data[here.start:here.start + length], source)
            if status is not ParseStatus.MISSING_END:
                coalesced = True
                next_pos = last + 1
                break
            message = None
            last += 1
            trials += 1
            if last >= len(spans) or trials >= _MAX_COALESCE_TRIALS:
                break

        if not coalesced:
            length = here.length
            source = MsgSource(path, here.start, length)
            message, status = _parse(data[here.start:here.end], source)
            if status is ParseStatus.MISSING_END:
                logger.warning(
                    "Can't find end boundary in multipart message %s", source.format()
                )

        start = here.start
        mbox.messages.append(
            StoredMessage(start, length, compute_checksum(data[start:start + length]))
        )
        record = MboxMessageRecord(file_index=file_index, msg_index=mbox.n_msgs - 1)
        index = len(db.messages)
        db.messages.append(record)
        if message is not None:
            logger.debug("Scanning %s[%d] at [%d,%d)", path, record.msg_index, start, start + length)
            headers = message.headers
            record.date = headers.date
            record.seen = headers.seen
            record.replied = headers.replied
            record.flagged = headers.flagged
            if db.tokeniser is not None:
                db.tokeniser(index, message)
        else:
            logger.warning("Message in %s at [%d,%d) is misformatted", path, start, start + length)
        pos = next_pos
    mbox.new_msgs = []


def add_mbox_messages(db: MboxDatabase) -> bool:
    """Parse and record every new message found by :func:`build_mbox_lists`.

    Returns True if any message was added.  Raises :class:`OSError` if an
    mbox with new messages can no longer be read.
    """
    any_new = False
    for file_index, mbox in enumerate(db.mboxen):
        if not mbox.new_msgs:
            continue
        data = read_mapping(mbox.path) if mbox.path is not None else None
        if not data:
            raise OSError(f"Couldn't create mapping of file {mbox.path}")
        _index_new_messages(db, file_index, mbox, data)
        any_new = True
    return any_new


def cull_dead_mboxen(db: MboxDatabase) -> None:
    """Drop dead mboxes and renumber the messages that refer to the others."""
    if all(mbox.path is not None for mbox in db.mboxen):
        return
    old_to_new: dict[int, int] = {}
    alive: list[Mbox] = []
    for old, mbox in enumerate(db.mboxen):
        if mbox.path is not None:
            old_to_new[old] = len(alive)
            logger.info("Copying mbox[%d] to [%d], path=%s", old, len(alive), mbox.path)
            alive.append(mbox)
        else:
            logger.info("Pruning old mbox[%d], dead", old)

    for record in db.messages:
        if isinstance(record, MboxMessageRecord):
            if record.file_index not in old_to_new:
                raise ValueError(
                    f"message refers to dead mbox {record.file_index}"
                )
            record.file_index = old_to_new[record.file_index]
    db.mboxen = alive


def encode_mbox_indices(mbox: int, msg: int) -> int:
    """Pack an mbox index and a message index into one 32-bit value."""
    return ((mbox & 0xFFFF) << 16) | (msg & 0xFFFF)


def decode_mbox_indices(index: int) -> tuple[int, int]:
    """Unpack a value from :func:`encode_mbox_indices` into (mbox, message)."""
    return (index >> 16) & 0xFFFF, index & 0xFFFF


def verify_mbox_size_constraints(db: MboxDatabase) -> None:
    """Raise :class:`MboxLimitError` if the mboxes cannot be numbered in 16 bits."""
    if len(db.mboxen) > MAX_MBOXEN:
        raise MboxLimitError(
            f"Too many mboxes (max {MAX_MBOXEN}, you have {len(db.mboxen)})"
        )
    problems = [
        f"Too many messages in mbox {mbox.path} "
        f"(max {MAX_MESSAGES_PER_MBOX}, you have {mbox.n_msgs})"
        for mbox in db.mboxen
        if mbox.n_msgs > MAX_MESSAGES_PER_MBOX
    ]
    if problems:
        raise MboxLimitError("; ".join(problems))