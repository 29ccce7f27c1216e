"""Read-only access to an on-disk message index database.

The file starts with a header of 32-bit words in the byte order of the
machine that wrote it.  The header records the message count, the offsets of
the per-message and per-mbox tables and the location of each token table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

__all__ = [
    "DatabaseFormatError",
    "TokTable",
    "TokTable2",
    "ReadDb",
    "read_increment",
    "open_db",
    "HEADER_MAGIC",
    "UI_ENDIAN",
    "UI_N_MSGS",
    "UI_MSG_TYPE_AND_FLAGS",
    "UI_MSG_CDATA",
    "UI_MSG_MTIME",
    "UI_MSG_OFFSET",
    "UI_MSG_SIZE",
    "UI_MSG_START",
    "UI_MSG_DATE",
    "UI_MSG_TID",
    "UI_MBOX_N",
    "UI_MBOX_PATHS",
    "UI_MBOX_ENTRIES",
    "UI_MBOX_MTIME",
    "UI_MBOX_SIZE",
    "UI_MBOX_CKSUM",
    "UI_HASH_KEY",
    "UI_TO_BASE",
    "UI_CC_BASE",
    "UI_FROM_BASE",
    "UI_SUBJECT_BASE",
    "UI_BODY_BASE",
    "UI_ATTACHMENT_NAME_BASE",
    "UI_MSGID_BASE",
    "UI_HEADER_LEN",
    "UC_HEADER_LEN",
    "UI_N_OFFSET",
    "UI_TOK_OFFSET",
    "UI_ENC_OFFSET",
    "DB_MSG_DEAD",
    "DB_MSG_FILE",
    "DB_MSG_MBOX",
    "FLAG_SEEN",
    "FLAG_REPLIED",
    "FLAG_FLAGGED",
    "ENDIAN_MARKER",
    "REVERSED_ENDIAN_MARKER",
]

# "MX", a high byte, then the format version.
HEADER_MAGIC = bytes([ord("M"), ord("X"), 0xA5, 0x03])

UI_ENDIAN = 1
UI_N_MSGS = 2
UI_MSG_TYPE_AND_FLAGS = 3
UI_MSG_CDATA = 4
UI_MSG_MTIME = 5
UI_MSG_OFFSET = 5
UI_MSG_SIZE = 6
UI_MSG_START = 6
UI_MSG_DATE = 7
UI_MSG_TID = 8
UI_MBOX_N = 9
UI_MBOX_PATHS = 10
UI_MBOX_ENTRIES = 11
UI_MBOX_MTIME = 12
UI_MBOX_SIZE = 13
UI_MBOX_CKSUM = 14
UI_HASH_KEY = 15
UI_TO_BASE = 16
UI_CC_BASE = 19
UI_FROM_BASE = 22
UI_SUBJECT_BASE = 25
UI_BODY_BASE = 28
UI_ATTACHMENT_NAME_BASE = 31
UI_MSGID_BASE = 34
UI_HEADER_LEN = 40
UC_HEADER_LEN = UI_HEADER_LEN << 2

UI_N_OFFSET = 0
UI_TOK_OFFSET = 1
UI_ENC_OFFSET = 2

DB_MSG_DEAD = 0
DB_MSG_FILE = 1
DB_MSG_MBOX = 2

FLAG_SEEN = 1 << 3
FLAG_REPLIED = 1 << 4
FLAG_FLAGGED = 1 << 5

ENDIAN_MARKER = 0x44332211
REVERSED_ENDIAN_MARKER = 0x11223344


class DatabaseFormatError(ValueError):
    """Raised when a database file is missing its header or has the wrong format."""


@dataclass(eq=False)
class TokTable:
    """A token table: entry count, token offsets and encoding offsets."""

    n: int
    tok_offsets: memoryview
    enc_offsets: memoryview


@dataclass(eq=False)
class TokTable2:
    """A token table with two encoding chains per token."""

    n: int
    tok_offsets: memoryview
    enc0_offsets: memoryview
    enc1_offsets: memoryview


@dataclass(eq=False)
class ReadDb:
    """An opened database; tables are views into the file's contents."""

    data: bytes
    size: int
    words: memoryview
    n_msgs: int
    msg_type_and_flags: memoryview
    path_offsets: memoryview
    mtime_table: memoryview
    size_table: memoryview
    date_table: memoryview
    tid_table: memoryview
    n_mboxen: int
    mbox_paths_table: memoryview
    mbox_entries_table: memoryview
    mbox_mtime_table: memoryview
    mbox_size_table: memoryview
    mbox_checksum_table: memoryview
    hash_key: int
    to: TokTable
    cc: TokTable
    from_: TokTable
    subject: TokTable
    body: TokTable
    attachment_name: TokTable
    msg_ids: TokTable2
    closed: bool = field(default=False)

    def msg_type(self, index: int) -> int:
        """Return the message type (one of the ``DB_MSG_*`` values) of message ``index``."""
        if self.closed:
            raise ValueError("database is closed")
        return self.msg_type_and_flags[index] & 0x7

    def close(self) -> None:
        """Drop the file contents; further table access is an error."""
        if self.closed:
            return
        self.closed = True
        self.data = b""

    def __enter__(self) -> "ReadDb":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def read_increment(data: bytes | bytearray | memoryview, pos: int) -> tuple[int, int]:
    """Decode one variable-length increment at ``pos``.

    Returns the value and the position just after it.  Values use one byte
    (top bit clear), two bytes (top bits ``10``) or four bytes (top bits
    ``11``), most significant byte first.
    """
    x0 = data[pos]
    if (x0 & 0xC0) == 0xC0:
        x1, x2, x3 = data[pos + 1], data[pos + 2], data[pos + 3]
        return ((x0 & 0x3F) << 24) + (x1 << 16) + (x2 << 8) + x3, pos + 4
    if x0 & 0x80:
        return ((x0 & 0x7F) << 8) + data[pos + 1], pos + 2
    return x0, pos + 1


def _toktable(words: memoryview, start: int) -> TokTable:
    return TokTable(
        n=words[start],
        tok_offsets=words[words[start + 1]:],
        enc_offsets=words[words[start + 2]:],
    )


def _toktable2(words: memoryview, start: int) -> TokTable2:
    return TokTable2(
        n=words[start],
        tok_offsets=words[words[start + 1]:],
        enc0_offsets=words[words[start + 2]:],
        enc1_offsets=words[words[start + 3]:],
    )


def _check_magic(data: bytes) -> None:
    # A match on any of the first three bytes is taken as "ours"; only then
    # does the version byte decide between compatible and incompatible.
    if any(data[i] == HEADER_MAGIC[i] for i in range(3)):
        if data[3] != HEADER_MAGIC[3]:
            raise DatabaseFormatError(
                "Another version of this program produced the existing database!  "
                "Please rebuild."
            )
    else:
        raise DatabaseFormatError(
            "The existing database wasn't produced by this program!  Please rebuild."
        )


def _parse_db(data: bytes) -> ReadDb:
    if not data:
        raise DatabaseFormatError("database file is empty")
    if len(data) < UC_HEADER_LEN:
        raise DatabaseFormatError("database file is too short to hold a header")
    _check_magic(data)

    words = memoryview(data)[: len(data) - len(data) % 4].cast("I")
    marker = words[UI_ENDIAN]
    if marker == REVERSED_ENDIAN_MARKER:
        raise DatabaseFormatError(
            "The endianness of the database is reversed for this machine"
        )
    if marker != ENDIAN_MARKER:
        raise DatabaseFormatError(
            "The endianness of this machine is strange (or database is corrupt)"
        )

    def table(slot: int) -> memoryview:
        return words[words[slot]:]

    return ReadDb(
        data=data,
        size=len(data),
        words=words,
        n_msgs=words[UI_N_MSGS],
        msg_type_and_flags=memoryview(data)[words[UI_MSG_TYPE_AND_FLAGS]:],
        path_offsets=table(UI_MSG_CDATA),
        mtime_table=table(UI_MSG_MTIME),
        size_table=table(UI_MSG_SIZE),
        date_table=table(UI_MSG_DATE),
        tid_table=table(UI_MSG_TID),
        n_mboxen=words[UI_MBOX_N],
        mbox_paths_table=table(UI_MBOX_PATHS),
        mbox_entries_table=table(UI_MBOX_ENTRIES),
        mbox_mtime_table=table(UI_MBOX_MTIME),
        mbox_size_table=table(UI_MBOX_SIZE),
        mbox_checksum_table=table(UI_MBOX_CKSUM),
        hash_key=words[UI_HASH_KEY],
        to=_toktable(words, UI_TO_BASE),
        cc=_toktable(words, UI_CC_BASE),
        from_=_toktable(words, UI_FROM_BASE),
        subject=_toktable(words, UI_SUBJECT_BASE),
        body=_toktable(words, UI_BODY_BASE),
        attachment_name=_toktable(words, UI_ATTACHMENT_NAME_BASE),
        msg_ids=_toktable2(words, UI_MSGID_BASE),
    )


def open_db(filename: str | Path) -> ReadDb:
    """Open and validate the database at ``filename``.

    Raises :class:`OSError` if the file cannot be read and
    :class:`DatabaseFormatError` if its header is not acceptable.
    """
    return _parse_db(Path(filename).read_bytes())