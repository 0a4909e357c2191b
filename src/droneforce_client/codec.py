"""
Primitive serializers for Anchor instruction payloads.

Each encoder returns the little-endian byte layout the on-chain programs
expect. Encoders never validate ranges: integers wider than the target are
masked (they wrap), so callers must clamp first. Fixed-size byte arrays are
passed through untouched; the caller guarantees their length.

``PayloadReader`` is the inverse, used to decode instruction payloads and
program accounts.
"""

from __future__ import annotations

import struct

from solders.pubkey import Pubkey

DISCRIMINATOR_SIZE = 8
PUBKEY_SIZE = 32


def _encode_uint(value: int, width: int) -> bytes:
    mask = (1 << (8 * width)) - 1
    return (int(value) & mask).to_bytes(width, "little")


def encode_u8(value: int) -> bytes:
    return _encode_uint(value, 1)


def encode_u16(value: int) -> bytes:
    return _encode_uint(value, 2)


def encode_u32(value: int) -> bytes:
    return _encode_uint(value, 4)


def encode_u64(value: int) -> bytes:
    return _encode_uint(value, 8)


def encode_f64(value: float) -> bytes:
    return struct.pack("<d", value)


def encode_bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def encode_string(value: str) -> bytes:
    """Encode a string as u32 length prefix followed by its UTF-8 bytes."""
    data = value.encode("utf-8")
    return encode_u32(len(data)) + data


def encode_fixed_bytes(value: bytes) -> bytes:
    """Pass a fixed-size byte array through unchanged."""
    return bytes(value)


def encode_pubkey(value: Pubkey) -> bytes:
    return bytes(value)


class PayloadReader:
    """Sequential decoder over a payload buffer.

    Raises ValueError when a read runs past the end of the buffer.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, size: int) -> bytes:
        if size > self.remaining:
            msg = f"Payload too short: need {size} bytes at offset {self._offset}, have {self.remaining}"
            raise ValueError(msg)
        chunk = self._data[self._offset : self._offset + size]
        self._offset += size
        return chunk

    def read_discriminator(self) -> bytes:
        return self._take(DISCRIMINATOR_SIZE)

    def read_u8(self) -> int:
        return int.from_bytes(self._take(1), "little")

    def read_u16(self) -> int:
        return int.from_bytes(self._take(2), "little")

    def read_u32(self) -> int:
        return int.from_bytes(self._take(4), "little")

    def read_u64(self) -> int:
        return int.from_bytes(self._take(8), "little")

    def read_f64(self) -> float:
        value: float = struct.unpack("<d", self._take(8))[0]
        return value

    def read_bool(self) -> bool:
        raw = self.read_u8()
        if raw not in (0, 1):
            msg = f"Invalid bool byte: {raw}"
            raise ValueError(msg)
        return raw == 1

    def read_string(self) -> str:
        length = self.read_u32()
        return self._take(length).decode("utf-8")

    def read_fixed_bytes(self, size: int) -> bytes:
        return self._take(size)

    def read_pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self._take(PUBKEY_SIZE))
