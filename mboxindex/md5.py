"""MD5 message digest (RFC 1321) used for mbox message checksums."""

from __future__ import annotations

import struct

__all__ = ["MD5", "md5_digest"]

_MASK = 0xFFFFFFFF

_INITIAL_STATE = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476)

_SINE_TABLE = (
    0xD76AA478, 0xE8C7B756, 0x242070DB, 0xC1BDCEEE,
    0xF57C0FAF, 0x4787C62A, 0xA8304613, 0xFD469501,
    0x698098D8, 0x8B44F7AF, 0xFFFF5BB1, 0x895CD7BE,
    0x6B901122, 0xFD987193, 0xA679438E, 0x49B40821,
    0xF61E2562, 0xC040B340, 0x265E5A51, 0xE9B6C7AA,
    0xD62F105D, 0x02441453, 0xD8A1E681, 0xE7D3FBC8,
    0x21E1CDE6, 0xC33707D6, 0xF4D50D87, 0x455A14ED,
    0xA9E3E905, 0xFCEFA3F8, 0x676F02D9, 0x8D2A4C8A,
    0xFFFA3942, 0x8771F681, 0x6D9D6122, 0xFDE5380C,
    0xA4BEEA44, 0x4BDECFA9, 0xF6BB4B60, 0xBEBFBC70,
    0x289B7EC6, 0xEAA127FA, 0xD4EF3085, 0x04881D05,
    0xD9D4D039, 0xE6DB99E5, 0x1FA27CF8, 0xC4AC5665,
    0xF4292244, 0x432AFF97, 0xAB9423A7, 0xFC93A039,
    0x655B59C3, 0x8F0CCC92, 0xFFEFF47D, 0x85845DD1,
    0x6FA87E4F, 0xFE2CE6E0, 0xA3014314, 0x4E0811A1,
    0xF7537E82, 0xBD3AF235, 0x2AD7D2BB, 0xEB86D391,
)

_SHIFTS = (
    (7, 12, 17, 22),
    (5, 9, 14, 20),
    (4, 11, 16, 23),
    (6, 10, 15, 21),
)

_BLOCK = struct.Struct("<16I")
_DIGEST = struct.Struct("<4I")
_LENGTH = struct.Struct("<Q")


def _rotate_left(x: int, n: int) -> int:
    x &= _MASK
    return ((x << n) | (x >> (32 - n))) & _MASK


def _round_function(step: int, b: int, c: int, d: int) -> tuple[int, int]:
    """Return the boolean function value and word index for a step."""
    if step < 16:
        return (b & c) | (~b & d), step
    if step < 32:
        return (b & d) | (c & ~d), (5 * step + 1) % 16
    if step < 48:
        return b ^ c ^ d, (3 * step + 5) % 16
    return c ^ (b | (~d & _MASK)), (7 * step) % 16


def _transform(state: tuple[int, int, int, int], block: bytes) -> tuple[int, int, int, int]:
    words = _BLOCK.unpack(block)
    a, b, c, d = state
    for step, constant in enumerate(_SINE_TABLE):
        f, index = _round_function(step, b, c, d)
        shift = _SHIFTS[step // 16][step % 4]
        rotated = _rotate_left(a + (f & _MASK) + words[index] + constant, shift)
        a, b, c, d = d, (b + rotated) & _MASK, b, c
    return (
        (state[0] + a) & _MASK,
        (state[1] + b) & _MASK,
        (state[2] + c) & _MASK,
        (state[3] + d) & _MASK,
    )


def _as_bytes(data: object) -> bytes:
    if isinstance(data, str):
        raise TypeError("MD5 input must be bytes-like, not str")
    return bytes(memoryview(data))  # type: ignore[arg-type]


class MD5:
    """Incremental MD5 hasher with a hashlib-like interface."""

    digest_size = 16
    block_size = 64

    def __init__(self, data: bytes | bytearray | memoryview = b"") -> None:
        self._state = _INITIAL_STATE
        self._length = 0
        self._pending = b""
        if data:
            self.update(data)

    def update(self, data: bytes | bytearray | memoryview) -> None:
        """Feed more bytes into the digest."""
        chunk = _as_bytes(data)
        self._length += len(chunk)
        buffer = self._pending + chunk
        full = len(buffer) - len(buffer) % self.block_size
        state = self._state
        for offset in range(0, full, self.block_size):
            state = _transform(state, buffer[offset:offset + self.block_size])
        self._state = state
        self._pending = buffer[full:]

    def copy(self) -> "MD5":
        """Return an independent hasher with the same state."""
        clone = MD5()
        clone._state = self._state
        clone._length = self._length
        clone._pending = self._pending
        return clone

    def digest(self) -> bytes:
        """Return the 16-byte digest of everything fed so far."""
        pending_len = len(self._pending)
        pad_len = (56 - pending_len) if pending_len < 56 else (120 - pending_len)
        bit_length = (self._length * 8) & 0xFFFFFFFFFFFFFFFF
        tail = self._pending + b"\x80" + b"\x00" * (pad_len - 1) + _LENGTH.pack(bit_length)
        state = self._state
        for offset in range(0, len(tail), self.block_size):
            state = _transform(state, tail[offset:offset + self.block_size])
        return _DIGEST.pack(*state)

    def hexdigest(self) -> str:
        """Return the digest as a lower-case hexadecimal string."""
        return self.digest().hex()


def md5_digest(data: bytes | bytearray | memoryview) -> bytes:
    """Return the MD5 digest of ``data``."""
    return MD5(data).digest()