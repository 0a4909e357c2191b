"""Unit tests for TaskInstructionBuilder."""

from __future__ import annotations

import pytest
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from droneforce_client.codec import PayloadReader
from droneforce_client.config import NetworkConfig, NormalizationPolicy
from droneforce_client.exceptions import InputValidationError
from droneforce_client.task_instructions import (
    ACCEPT_TASK_DISCRIMINATOR,
    COMPLETE_TASK_DISCRIMINATOR,
    CREATE_TASK_DISCRIMINATOR,
    RECORD_VERIFICATION_DISCRIMINATOR,
    TaskInstructionBuilder,
)


def _flags(instruction) -> list[tuple[Pubkey, bool, bool]]:
    return [(meta.pubkey, meta.is_signer, meta.is_writable) for meta in instruction.accounts]


@pytest.fixture()
def builder(network_config: NetworkConfig) -> TaskInstructionBuilder:
    return TaskInstructionBuilder(network_config, NormalizationPolicy.CLAMP)


@pytest.mark.unit
class TestCreateTask:
    """Tests for create_task."""

    def test_example_layout(self, builder: TaskInstructionBuilder, network_config: NetworkConfig) -> None:
        creator = Pubkey.new_unique()
        built = builder.create_task(creator, "abc", "37.7749,-122.4194", 100, 50, 1, True, "survey")

        expected_address, _ = Pubkey.find_program_address([b"task", b"abc"], network_config.task_program_id)
        assert built.task_address == expected_address
        assert built.task_id == "abc"
        assert built.instruction.program_id == network_config.task_program_id

        data = bytes(built.instruction.data)
        assert data[:8] == CREATE_TASK_DISCRIMINATOR
        assert data[8:15] == b"\x03\x00\x00\x00abc"

        reader = PayloadReader(data)
        reader.read_discriminator()
        assert reader.read_string() == "abc"
        assert reader.read_f64() == 37.7749
        assert reader.read_f64() == -122.4194
        assert reader.read_u32() == 100
        assert reader.read_u16() == 50
        assert reader.read_u8() == 1
        assert reader.read_bool() is True
        assert reader.read_string() == "survey"
        assert reader.remaining == 0

    def test_account_order_and_flags(self, builder: TaskInstructionBuilder) -> None:
        creator = Pubkey.new_unique()
        built = builder.create_task(creator, "abc", "1,2", 1, 1, 1, False, "d")

        assert _flags(built.instruction) == [
            (built.task_address, False, True),
            (creator, True, True),
            (SYSTEM_PROGRAM_ID, False, False),
        ]

    def test_clamps_numeric_fields(self, builder: TaskInstructionBuilder) -> None:
        built = builder.create_task(
            Pubkey.new_unique(), "abc", "1,2", 5_000_000_000, 70_000, 300, False, "d"
        )
        reader = PayloadReader(bytes(built.instruction.data))
        reader.read_discriminator()
        reader.read_string()
        reader.read_f64()
        reader.read_f64()
        assert reader.read_u32() == 4294967295
        assert reader.read_u16() == 65535
        assert reader.read_u8() == 255

    def test_sanitized_id_drives_address(self, builder: TaskInstructionBuilder) -> None:
        built = builder.create_task(Pubkey.new_unique(), "a b/c", "1,2", 1, 1, 1, False, "d")
        assert built.task_id == "abc"
        assert built.task_address == builder.task_address("abc")

    def test_empty_description_defaults(self, builder: TaskInstructionBuilder) -> None:
        built = builder.create_task(Pubkey.new_unique(), "abc", "1,2", 1, 1, 1, False, "")
        assert bytes(built.instruction.data).endswith(b"\x0a\x00\x00\x00Drone task")

    def test_malformed_location_rejected(self, builder: TaskInstructionBuilder) -> None:
        with pytest.raises(InputValidationError):
            builder.create_task(Pubkey.new_unique(), "abc", "37.7749", 1, 1, 1, False, "d")

    def test_strict_policy_rejects_clampable_input(self, network_config: NetworkConfig) -> None:
        strict = TaskInstructionBuilder(network_config, NormalizationPolicy.STRICT)
        with pytest.raises(InputValidationError):
            strict.create_task(Pubkey.new_unique(), "abc", "1,2", 1, 1, 300, False, "d")

    def test_policy_defaults_to_config(self, network_config: NetworkConfig) -> None:
        assert TaskInstructionBuilder(network_config).policy is network_config.normalization


@pytest.mark.unit
class TestAcceptTask:
    """Tests for accept_task."""

    def test_discriminator_only(self, builder: TaskInstructionBuilder) -> None:
        built = builder.accept_task(Pubkey.new_unique(), "abc")
        assert bytes(built.instruction.data) == ACCEPT_TASK_DISCRIMINATOR

    def test_operator_signs_but_is_readonly(self, builder: TaskInstructionBuilder) -> None:
        operator = Pubkey.new_unique()
        built = builder.accept_task(operator, "abc")
        assert _flags(built.instruction) == [
            (built.task_address, False, True),
            (operator, True, False),
        ]


@pytest.mark.unit
class TestCompleteTask:
    """Tests for complete_task."""

    def test_fixed_width_hash_and_signature(self, builder: TaskInstructionBuilder) -> None:
        built = builder.complete_task(Pubkey.new_unique(), "abc", "ar-tx", "0xab", "0x" + "cd" * 80)

        reader = PayloadReader(bytes(built.instruction.data))
        assert reader.read_discriminator() == COMPLETE_TASK_DISCRIMINATOR
        assert reader.read_string() == "ar-tx"
        assert reader.read_fixed_bytes(32) == b"\xab" + b"\x00" * 31
        assert reader.read_fixed_bytes(64) == b"\xcd" * 64
        assert reader.remaining == 0

    def test_operator_signs_and_is_writable(self, builder: TaskInstructionBuilder) -> None:
        operator = Pubkey.new_unique()
        built = builder.complete_task(operator, "abc", "ar", "00", "00")
        assert _flags(built.instruction) == [
            (built.task_address, False, True),
            (operator, True, True),
        ]

    def test_non_hex_hash_rejected(self, builder: TaskInstructionBuilder) -> None:
        with pytest.raises(InputValidationError):
            builder.complete_task(Pubkey.new_unique(), "abc", "ar", "0xnothex", "00")


@pytest.mark.unit
class TestRecordVerification:
    """Tests for record_verification."""

    def test_layout(self, builder: TaskInstructionBuilder) -> None:
        validator = Pubkey.new_unique()
        built = builder.record_verification(validator, "abc", True, "11" * 40)

        reader = PayloadReader(bytes(built.instruction.data))
        assert reader.read_discriminator() == RECORD_VERIFICATION_DISCRIMINATOR
        assert reader.read_string() == "abc"
        assert reader.read_bool() is True
        assert reader.read_fixed_bytes(32) == b"\x11" * 32
        assert reader.remaining == 0

        assert _flags(built.instruction) == [
            (built.task_address, False, True),
            (validator, True, False),
        ]
