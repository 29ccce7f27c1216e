"""Content transfer encodings and RFC 2047 encoded words in header values.

Header text is handled as ``str`` in which each character stands for one
byte (latin-1), so bytes produced by decoding appear as characters with the
same code point.
"""

from __future__ import annotations

import logging
import string
from enum import Enum
from typing import Iterable

__all__ = [
    "Encoding",
    "hex_to_val",
    "decode_encoding_type",
    "decode_header_value",
    "unencode_data",
]

logger = logging.getLogger(__name__)

_B64_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"
# '=' decodes as zero; it is also counted to know how many bytes to keep.
_B64_VALUES = {ord(ch): value for value, ch in enumerate(_B64_ALPHABET)}
_B64_VALUES[ord("=")] = 0

_EQUALS = ord("=")
_NEWLINE = ord("\n")
_C_SPACE = frozenset(b" \t\n\v\f\r")
# Bytes read beyond the end of a uuencoded body decode as zero.
_UU_PAD = ord(" ")


class Encoding(Enum):
    UNKNOWN = "unknown"
    NONE = "none"
    BINARY = "binary"
    SEVEN_BIT = "7bit"
    EIGHT_BIT = "8bit"
    QUOTED_PRINTABLE = "quoted-printable"
    BASE64 = "base64"
    UUENCODE = "x-uuencode"


_PREFIXES: tuple[tuple[tuple[str, ...], Encoding], ...] = (
    (("7bit", "7-bit", "7 bit"), Encoding.SEVEN_BIT),
    (("8bit", "8-bit", "8 bit"), Encoding.EIGHT_BIT),
    (("quoted-printable",), Encoding.QUOTED_PRINTABLE),
    (("base64",), Encoding.BASE64),
    (("binary",), Encoding.BINARY),
    (("x-uuencode",), Encoding.UUENCODE),
)


def hex_to_val(ch: str | int) -> int:
    """Value of one hexadecimal digit; anything else counts as 0."""
    if isinstance(ch, int):
        ch = chr(ch)
    if len(ch) == 1 and ch in string.hexdigits:
        return int(ch, 16)
    return 0


def decode_encoding_type(value: str | None) -> Encoding:
    """Classify a Content-Transfer-Encoding value by its leading word."""
    if value is None:
        return Encoding.NONE
    text = value.lstrip(" \t\n\v\f\r").lower()
    for prefixes, encoding in _PREFIXES:
        if text.startswith(prefixes):
            return encoding
    logger.warning("Warning: unknown encoding type: '%s'", value)
    return Encoding.UNKNOWN


def _decode_base64(values: Iterable[int]) -> bytes:
    out = bytearray()
    reg = count = equals = 0
    for code in values:
        if code == _EQUALS:
            equals += 1
        digit = _B64_VALUES.get(code, -1)
        if digit < 0:
            continue
        reg = (reg << 6) + digit
        count += 1
        if count == 4:
            out.append((reg >> 16) & 0xFF)
            if equals < 2:
                out.append((reg >> 8) & 0xFF)
            if equals < 1:
                out.append(reg & 0xFF)
            reg = count = 0
            if equals:
                break
    return bytes(out)


def _decode_q_word(text: str, start: int, end: int) -> str:
    def char_at(i: int) -> str:
        return text[i] if i < len(text) else ""

    out: list[str] = []
    pos = start
    while pos < end:
        ch = text[pos]
        if ch == "_":
            out.append(" ")
            pos += 1
        elif ch == "=":
            value = (hex_to_val(char_at(pos + 1)) << 4) + hex_to_val(char_at(pos + 2))
            out.append(chr(value))
            pos += 3
        else:
            out.append(ch)
            pos += 1
    return "".join(out)


def decode_header_value(text: str) -> str:
    """Decode RFC 2047 ``=?charset?q|b?...?=`` words in a header value.

    Words with an unknown encoding are left as they are; the text between
    words, including whitespace, is kept.
    """
    pieces: list[str] = []
    consumed = 0
    search = 0
    while True:
        start = text.find("=?", search)
        if start < 0:
            break
        a = text.find("?", start + 2)
        if a < 0:
            break
        a += 1
        b = text.find("?", a)
        if b < 0:
            break
        b += 1
        end = text.find("?=", b)
        if end < 0:
            break
        search = end + 2
        if b - a != 2:
            continue
        kind = text[a]
        if kind in "qQ":
            decoded = _decode_q_word(text, b, end)
        elif kind in "bB":
            decoded = _decode_base64(ord(ch) for ch in text[b:end]).decode("latin-1")
        else:
            continue
        pieces.append(text[consumed:start])
        pieces.append(decoded)
        consumed = end + 2
    if not pieces:
        return text
    pieces.append(text[consumed:])
    return "".join(pieces)


def _soft_break_end(data: bytes, pos: int) -> int | None:
    """Position of the newline if only whitespace precedes it from ``pos``."""
    while pos < len(data):
        code = data[pos]
        if code == _NEWLINE:
            return pos
        if code not in _C_SPACE:
            return None
        pos += 1
    return None


def _decode_quoted_printable(data: bytes) -> bytes:
    out = bytearray()
    pos = 0
    size = len(data)
    while pos < size:
        code = data[pos]
        if code != _EQUALS:
            out.append(code)
            pos += 1
            continue
        pos += 1
        newline = _soft_break_end(data, pos)
        if newline is not None:
            pos = newline + 1
            continue
        high = hex_to_val(data[pos]) if pos < size else 0
        low = hex_to_val(data[pos + 1]) if pos + 1 < size else 0
        out.append((high << 4) + low)
        pos += 2
    return bytes(out)


def _uu_value(code: int) -> int:
    return (code - 0x20) & 0o77


def _decode_uuencode(data: bytes) -> bytes:
    size = len(data)

    def at(i: int) -> int:
        return data[i] if i < size else _UU_PAD

    pos = 0
    while pos < size - 6 and data[pos:pos + 6] != b"begin ":
        pos += 1
    pos += 6
    while pos < size and data[pos] != _NEWLINE:
        pos += 1

    out = bytearray()
    while pos < size:
        length = _uu_value(data[pos])
        pos += 1
        if length == 0:
            break
        while length > 0:
            c0, c1, c2, c3 = (_uu_value(at(pos + k)) for k in range(4))
            if length >= 3:
                out.append(((c0 << 2) | (c1 >> 4)) & 0xFF)
                out.append(((c1 << 4) | (c2 >> 2)) & 0xFF)
                out.append(((c2 << 6) | c3) & 0xFF)
            else:
                out.append(((c0 << 2) | (c1 >> 4)) & 0xFF)
                if length >= 2:
                    out.append(((c1 << 4) | (c2 >> 2)) & 0xFF)
            pos += 4
            length -= 3
        while pos < size and data[pos] != _NEWLINE:
            pos += 1
    return bytes(out)


def _describe(source: object) -> str:
    if source is None:
        return "<unknown>"
    if isinstance(source, str):
        return source
    formatter = getattr(source, "format", None)
    if callable(formatter):
        return str(formatter())
    return str(source)


def unencode_data(
    data: bytes | bytearray | memoryview,
    encoding: str | Encoding | None = None,
    source: object = None,
) -> bytes:
    """Decode a body according to its Content-Transfer-Encoding.

    ``encoding`` is the header value (or an :class:`Encoding`); ``None``
    means the data is not encoded.  Data in an unknown encoding is dropped
    and a warning naming ``source`` is logged.
    """
    raw = bytes(data)
    kind = encoding if isinstance(encoding, Encoding) else decode_encoding_type(encoding)
    if kind in (Encoding.SEVEN_BIT, Encoding.EIGHT_BIT, Encoding.BINARY, Encoding.NONE):
        return raw
    if kind is Encoding.QUOTED_PRINTABLE:
        return _decode_quoted_printable(raw)
    if kind is Encoding.BASE64:
        return _decode_base64(raw)
    if kind is Encoding.UUENCODE:
        return _decode_uuencode(raw)
    logger.warning("Unknown encoding type in %s", _describe(source))
    return b""