"""Unit tests for the primitive serializers."""

from __future__ import annotations

import struct

import pytest
from solders.pubkey import Pubkey

from droneforce_client.codec import (
    PayloadReader,
    encode_bool,
    encode_f64,
    encode_fixed_bytes,
    encode_pubkey,
    encode_string,
    encode_u8,
    encode_u16,
    encode_u32,
    encode_u64,
)


@pytest.mark.unit
class TestEncoders:
    """Tests for the encode_* functions."""

    def test_string_has_u32_length_prefix(self) -> None:
        assert encode_string("abc") == b"\x03\x00\x00\x00abc"

    def test_string_length_counts_utf8_bytes(self) -> None:
        encoded = encode_string("é")
        assert encoded[:4] == (2).to_bytes(4, "little")
        assert encoded[4:] == "é".encode()

    def test_empty_string(self) -> None:
        assert encode_string("") == b"\x00\x00\x00\x00"

    def test_integers_are_little_endian(self) -> None:
        assert encode_u8(0xAB) == b"\xab"
        assert encode_u16(0x1234) == b"\x34\x12"
        assert encode_u32(0x01020304) == b"\x04\x03\x02\x01"
        assert encode_u64(1) == b"\x01" + b"\x00" * 7

    def test_out_of_range_integers_wrap(self) -> None:
        assert encode_u8(256) == b"\x00"
        assert encode_u8(300) == bytes([300 - 256])
        assert encode_u16(0x1_0001) == b"\x01\x00"
        assert encode_u32(2**32 + 5) == (5).to_bytes(4, "little")

    def test_f64_is_ieee754_little_endian(self) -> None:
        assert encode_f64(37.7749) == struct.pack("<d", 37.7749)
        assert len(encode_f64(-122.4194)) == 8

    def test_bool(self) -> None:
        assert encode_bool(True) == b"\x01"
        assert encode_bool(False) == b"\x00"

    def test_fixed_bytes_pass_through(self) -> None:
        assert encode_fixed_bytes(b"\x01\x02") == b"\x01\x02"

    def test_pubkey_is_raw_32_bytes(self) -> None:
        key = Pubkey.new_unique()
        assert encode_pubkey(key) == bytes(key)
        assert len(encode_pubkey(key)) == 32


@pytest.mark.unit
class TestPayloadReader:
    """Tests for PayloadReader."""

    def test_reads_fields_in_order(self) -> None:
        key = Pubkey.new_unique()
        data = (
            b"12345678"
            + encode_string("task-1")
            + encode_f64(1.5)
            + encode_u32(7)
            + encode_u16(9)
            + encode_u8(3)
            + encode_bool(True)
            + encode_u64(2**40)
            + encode_pubkey(key)
        )
        reader = PayloadReader(data)

        assert reader.read_discriminator() == b"12345678"
        assert reader.read_string() == "task-1"
        assert reader.read_f64() == 1.5
        assert reader.read_u32() == 7
        assert reader.read_u16() == 9
        assert reader.read_u8() == 3
        assert reader.read_bool() is True
        assert reader.read_u64() == 2**40
        assert reader.read_pubkey() == key
        assert reader.remaining == 0

    def test_read_past_end_raises(self) -> None:
        reader = PayloadReader(b"\x01\x02")
        with pytest.raises(ValueError, match="Payload too short"):
            reader.read_u32()

    def test_truncated_string_raises(self) -> None:
        reader = PayloadReader(encode_u32(10) + b"abc")
        with pytest.raises(ValueError):
            reader.read_string()

    def test_invalid_bool_byte_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid bool"):
            PayloadReader(b"\x02").read_bool()

    def test_fixed_bytes(self) -> None:
        reader = PayloadReader(b"\xaa" * 32 + b"\xbb")
        assert reader.read_fixed_bytes(32) == b"\xaa" * 32
        assert reader.remaining == 1
