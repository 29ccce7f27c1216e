"""Parsing of RFC 822 messages into headers and decoded attachments.

Header lines are handled as ``str`` with one character per byte (latin-1);
bodies and attachment data stay ``bytes``.
"""

from __future__ import annotations

import bz2
import gzip
import logging
import os
import re
import stat
import time
import zlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .nvp import Nvp, NvpParseError, parse_nvp
from .transfer import decode_header_value, unencode_data

__all__ = [
    "MsgSource",
    "ContentType",
    "ParseStatus",
    "BadHeadersError",
    "Attachment",
    "Headers",
    "Message",
    "parse_rfc822_date",
    "data_to_rfc822",
    "read_mapping",
    "make_rfc822",
]

logger = logging.getLogger(__name__)

_SPACE = " \t\n\v\f\r"
_DIGITS = re.compile(r"[0-9]+")
_MONTHS = {
    name: index
    for index, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
    )
}


@dataclass(frozen=True)
class MsgSource:
    """Where a message came from: a whole file, or a span inside an mbox."""

    filename: str
    start: int | None = None
    length: int | None = None

    def format(self) -> str:
        """Describe the source for messages: ``path`` or ``path[start,end)``."""
        if self.start is None:
            return self.filename
        return f"{self.filename}[{self.start},{self.start + (self.length or 0)})"


class ContentType(Enum):
    TEXT_PLAIN = "text/plain"
    TEXT_HTML = "text/html"
    TEXT_OTHER = "text/other"
    MESSAGE_RFC822 = "message/rfc822"
    OTHER = "other"


class ParseStatus(Enum):
    OK = "ok"
    BAD_HEADERS = "bad-headers"
    MISSING_END = "missing-end"
    MULTIPART_SANS_BOUNDARY = "multipart-sans-boundary"


class BadHeadersError(ValueError):
    """Raised when a message's header block is malformed."""


@dataclass
class Attachment:
    """One body part; ``message`` is set for message/rfc822 parts, ``data`` otherwise."""

    content_type: ContentType
    filename: str | None = None
    data: bytes = b""
    message: "Message | None" = None


@dataclass
class Headers:
    """The headers that are indexed, with their raw (decoded) values."""

    to: str | None = None
    cc: str | None = None
    from_: str | None = None
    subject: str | None = None
    message_id: str | None = None
    in_reply_to: str | None = None
    references: str | None = None
    date: int | None = None
    seen: bool = False
    replied: bool = False
    flagged: bool = False


@dataclass
class Message:
    """A parsed message and the status of parsing its body."""

    headers: Headers = field(default_factory=Headers)
    attachments: list[Attachment] = field(default_factory=list)
    status: ParseStatus = ParseStatus.OK


def _split_header(data: bytes, start: int, source: MsgSource) -> tuple[list[str], int] | None:
    """Collect header lines up to the first blank line; return them and the body offset."""
    lines: list[str] = []
    size = len(data)
    pos = start
    while pos < size and data[pos] != 0:
        newline = data.find(b"\n", pos)
        limit = newline if newline >= 0 else size
        if newline < 0 or data.find(b"\0", pos, limit) >= 0:
            logger.warning("Got null character whilst processing header of %s", source.format())
            return None
        line = data[pos:newline]
        pos = newline + 1
        if not line.strip():
            break
        lines.append(line.decode("latin-1"))
    return lines, pos


def _has_word_colon(text: str) -> bool:
    for index, ch in enumerate(text):
        if ch == ":":
            return index > 0
        if ch in _SPACE:
            return False
    return False


def _audit_header(lines: list[str]) -> bool:
    first = True
    for text in lines:
        if text.startswith("From ") or text.startswith(">From "):
            continue
        leading_space = text[0] in _SPACE
        word_colon = _has_word_colon(text)
        if first:
            if leading_space or not word_colon:
                return False
        elif not (leading_space or word_colon):
            return False
        first = False
    return True


def _splice(lines: list[str]) -> list[str]:
    """Join continuation lines onto the previous line, keeping one whitespace char."""
    spliced: list[str] = []
    for text in lines:
        if text[0] in _SPACE and spliced:
            rest = text.lstrip(_SPACE)
            spliced[-1] += text[len(text) - len(rest) - 1:]
        else:
            spliced.append(text)
    return spliced


def _split_and_splice(data: bytes, start: int, source: MsgSource) -> tuple[list[str], int] | None:
    split = _split_header(data, start, source)
    if split is None:
        return None
    lines, body_start = split
    if not _audit_header(lines):
        return None
    return _splice(lines), body_start


def _match(ref: str, text: str) -> bool:
    return text[: len(ref)].lower() == ref


def _header_value(text: str) -> str | None:
    colon = text.find(":")
    if colon < 0:
        return None
    return decode_header_value(text[colon + 1:])


def _concat(previous: str | None, value: str | None) -> str | None:
    if previous is None:
        return value
    if value is None:
        return previous
    return f"{previous}, {value}"


def _try_nvp(text: str, prefix: str, source: MsgSource) -> Nvp | None:
    try:
        return parse_nvp(text, prefix)
    except NvpParseError as exc:
        logger.warning("%s in %s", exc, source.format())
        return None


def _scan_status_flags(flags: str, headers: Headers) -> None:
    headers.seen = headers.seen or "R" in flags
    headers.replied = headers.replied or "A" in flags
    headers.flagged = headers.flagged or "F" in flags


def _content_type_parts(ct: Nvp) -> tuple[str | None, str | None, str | None]:
    major = ct.major()
    minor = ct.minor() if major else None
    if not major:
        major = ct.first()
    return major, minor, ct.lookup_case("boundary")


def _classify(major: str | None, minor: str | None) -> ContentType:
    major_l = major.lower() if major else None
    minor_l = minor.lower() if minor else None
    if major_l == "text":
        if minor_l == "plain":
            return ContentType.TEXT_PLAIN
        if minor_l == "html":
            return ContentType.TEXT_HTML
        return ContentType.TEXT_OTHER
    if major_l == "message" and minor_l == "rfc822":
        return ContentType.MESSAGE_RFC822
    return ContentType.OTHER


def _do_body(
    source: MsgSource,
    body: bytes,
    ct: Nvp | None,
    cte: Nvp | None,
    cd: Nvp | None,
    attachments: list[Attachment],
) -> ParseStatus:
    encoding = None
    if cte is not None:
        encoding = cte.first()
        if encoding is None:
            logger.warning(
                "Giving up on %s, content_transfer_encoding header not parseable",
                source.format(),
            )
            return ParseStatus.OK

    decoded = unencode_data(body, encoding, source)

    if ct is None:
        attachments.append(Attachment(ContentType.TEXT_PLAIN, data=decoded))
        return ParseStatus.OK

    major, minor, boundary = _content_type_parts(ct)
    if major and major.lower() == "multipart":
        return _do_multipart(source, decoded, boundary, attachments)

    filename = None
    disposition = cd.first() if cd is not None else None
    if disposition and disposition.lower() == "attachment":
        filename = cd.lookup_case("filename") if cd is not None else None
        if filename is None:
            filename = ct.lookup("name")

    kind = _classify(major, minor)
    if kind is ContentType.MESSAGE_RFC822:
        try:
            nested = data_to_rfc822(decoded, source)
        except BadHeadersError:
            attachments.append(Attachment(kind, filename))
            return ParseStatus.BAD_HEADERS
        attachments.append(Attachment(kind, filename, message=nested))
        return nested.status

    attachments.append(Attachment(kind, filename, data=decoded))
    return ParseStatus.OK


def _do_attachment(
    source: MsgSource, data: bytes, start: int, end: int, attachments: list[Attachment]
) -> None:
    split = _split_and_splice(data, start, source)
    if split is None:
        logger.warning("Giving up on attachment with bad header in %s", source.format())
        return
    lines, body_start = split

    ct = cte = cd = None
    for text in lines:
        nvp = _try_nvp(text, "content-type:", source)
        if nvp is not None:
            ct = nvp
            continue
        nvp = _try_nvp(text, "content-transfer-encoding:", source)
        if nvp is not None:
            cte = nvp
            continue
        nvp = _try_nvp(text, "content-disposition:", source)
        if nvp is not None:
            cd = nvp

    if body_start > end:
        logger.debug(
            "Message %s contains an invalid attachment, length=%d bytes",
            source.format(),
            end - start,
        )
        return
    # Errors inside nested body parts are ignored.
    _do_body(source, data[body_start:end], ct, cte, cd, attachments)


def _do_multipart(
    source: MsgSource, data: bytes, boundary: str | None, attachments: list[Attachment]
) -> ParseStatus:
    if boundary is None:
        logger.warning(
            "Can't process multipart message %s with no boundary string", source.format()
        )
        return ParseStatus.MULTIPART_SANS_BOUNDARY

    marker = boundary.encode("latin-1")
    needle = b"--" + marker
    blen = len(marker)
    size = len(data)
    seen_first = False
    line_after_b0 = 0

    while True:
        search = line_after_b0
        while True:
            b1 = data.find(needle, search, size - 3)
            if b1 < 0:
                return ParseStatus.MISSING_END
            at_end = data[b1 + blen + 2:b1 + blen + 4] == b"--"
            ok = not (b1 > 0 and data[b1 - 1] != 0x0A)
            after = b1 + blen + 2
            if not at_end and after < size and data[after] != 0x0A:
                ok = False
            if ok:
                break
            eol = data.find(b"\n", b1)
            if eol < 0:
                logger.warning(
                    "Oops, didn't find another normal boundary in %s", source.format()
                )
                return ParseStatus.OK
            search = eol + 1

        if seen_first:
            # The preamble before the first boundary is not an attachment.
            _do_attachment(source, data, line_after_b0, b1, attachments)
        seen_first = True
        newline = data.find(b"\n", b1)
        line_after_b0 = newline + 1 if newline >= 0 else size
        if at_end:
            return ParseStatus.OK


def parse_rfc822_date(text: str) -> int | None:
    """Parse ``[weekday,] day month year hh:mm:ss zone`` to local midnight of that day.

    Only the date is used; the time of day must be present but is ignored.
    Returns a Unix time, or ``None`` if the text is not understood.
    """
    comma = text.find(",")
    s = text[comma + 1:] if comma >= 0 else text

    def skip_space(pos: int) -> int:
        while pos < len(s) and s[pos] in _SPACE:
            pos += 1
        return pos

    match = _DIGITS.match(s, skip_space(0))
    if not match:
        return None
    mday = int(match.group())
    if mday > 31:
        return None

    pos = skip_space(match.end())
    if pos >= len(s):
        return None
    month = _MONTHS.get(s[pos:pos + 3].lower())
    if month is None:
        return None
    while pos < len(s) and s[pos] not in _SPACE:
        pos += 1
    if pos >= len(s):
        return None

    match = _DIGITS.match(s, skip_space(pos))
    if not match:
        return None
    year = int(match.group())
    if year < 70:
        year += 100
    elif year >= 1900:
        year -= 1900

    if skip_space(match.end()) >= len(s):
        return None

    try:
        return int(time.mktime((year + 1900, month + 1, mday, 0, 0, 0, 0, 0, 0)))
    except (OverflowError, ValueError):
        return None


def data_to_rfc822(
    data: bytes | bytearray | memoryview, source: MsgSource | None = None
) -> Message:
    """Parse one message.

    Raises :class:`BadHeadersError` if the header block is malformed.  Body
    problems are reported through ``Message.status``; a status of
    ``MISSING_END`` means a multipart body ran out before its end boundary.
    """
    raw = bytes(data)
    src = source if source is not None else MsgSource("<data>")

    split = _split_and_splice(raw, 0, src)
    if split is None:
        logger.debug("Giving up on message %s with bad header", src.format())
        raise BadHeadersError(f"message {src.format()} has bad headers")
    lines, body_start = split

    headers = Headers()
    ct = cte = cd = None
    date_seen = False
    for text in lines:
        if _match("to", text):
            headers.to = _concat(headers.to, _header_value(text))
        elif _match("cc", text):
            headers.cc = _concat(headers.cc, _header_value(text))
        elif headers.from_ is None and _match("from", text):
            headers.from_ = _header_value(text)
        elif headers.subject is None and _match("subject", text):
            headers.subject = _header_value(text)
        elif ct is None and (nvp := _try_nvp(text, "content-type:", src)) is not None:
            ct = nvp
        elif cte is None and (nvp := _try_nvp(text, "content-transfer-encoding:", src)) is not None:
            cte = nvp
        elif cd is None and (nvp := _try_nvp(text, "content-disposition:", src)) is not None:
            cd = nvp
        elif not date_seen and _match("date", text):
            date_seen = True
            value = _header_value(text)
            headers.date = parse_rfc822_date(value) if value is not None else None
        elif headers.message_id is None and _match("message-id", text):
            headers.message_id = _header_value(text)
        elif headers.in_reply_to is None and _match("in-reply-to", text):
            headers.in_reply_to = _header_value(text)
        elif headers.references is None and _match("references", text):
            headers.references = _header_value(text)
        elif _match("status", text):
            _scan_status_flags(text[len("status: "):], headers)
        elif _match("x-status", text):
            _scan_status_flags(text[len("x-status: "):], headers)

    attachments: list[Attachment] = []
    status = _do_body(src, raw[body_start:], ct, cte, cd, attachments)
    return Message(headers, attachments, status)


def _compressed_opener(name: str):
    lower = name.lower()
    if len(name) > 3 and lower.endswith(".gz"):
        return gzip.open
    if len(name) > 3 and lower.endswith(".bz2"):
        return bz2.open
    return None


def read_mapping(path: str | os.PathLike[str]) -> bytes | None:
    """Return the contents of a message file, decompressing ``.gz``/``.bz2`` files.

    An empty file gives ``b""``; a file that is missing, unreadable or not a
    regular file gives ``None`` and a logged error.
    """
    name = os.fspath(path)
    try:
        st = os.stat(name)
    except OSError as exc:
        logger.error("stat: %s: %s", name, exc.strerror)
        return None

    opener = _compressed_opener(name)
    if opener is not None:
        logger.debug("Decompressing %s...", name)
        try:
            with opener(name, "rb") as handle:
                return handle.read()
        except (OSError, EOFError, zlib.error) as exc:
            logger.error("Could not open %s: %s", name, exc)
            return None

    if st.st_size == 0:
        return b""
    if not stat.S_ISREG(st.st_mode):
        return None
    try:
        return Path(name).read_bytes()
    except OSError as exc:
        logger.error("open: %s: %s", name, exc.strerror)
        return None


def make_rfc822(path: str | os.PathLike[str]) -> Message | None:
    """Parse the single message stored in ``path``.

    Returns ``None`` for an empty or unreadable file; raises
    :class:`BadHeadersError` for a malformed header block.
    """
    data = read_mapping(path)
    if not data:
        return None
    return data_to_rfc822(data, MsgSource(os.fspath(path)))