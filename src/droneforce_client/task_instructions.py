"""
Task program instruction builder.

Builds the create, accept, complete and record-verification instructions of
the DroneForce task program. Account order and signer/writable flags must
match the program's account structs exactly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from solders.instruction import AccountMeta, Instruction
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from droneforce_client import normalize
from droneforce_client.addresses import task_address
from droneforce_client.codec import (
    encode_bool,
    encode_f64,
    encode_fixed_bytes,
    encode_string,
    encode_u8,
    encode_u16,
    encode_u32,
)
from droneforce_client.config import NormalizationPolicy
from droneforce_client.logging import get_logger
from droneforce_client.models import BuiltInstruction

if TYPE_CHECKING:
    from solders.pubkey import Pubkey

    from droneforce_client.config import NetworkConfig

logger = get_logger(__name__)

CREATE_TASK_DISCRIMINATOR = bytes([232, 30, 109, 170, 165, 253, 106, 171])
ACCEPT_TASK_DISCRIMINATOR = bytes([55, 122, 245, 187, 115, 148, 27, 42])
COMPLETE_TASK_DISCRIMINATOR = bytes([77, 150, 118, 98, 137, 89, 115, 213])
RECORD_VERIFICATION_DISCRIMINATOR = bytes([124, 242, 93, 218, 125, 148, 45, 9])


class TaskInstructionBuilder:
    """Builds task program instructions for one deployment."""

    def __init__(
        self,
        config: NetworkConfig,
        policy: NormalizationPolicy | None = None,
    ) -> None:
        self._program_id = config.task_program_id
        self._policy = policy if policy is not None else config.normalization

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    @property
    def policy(self) -> NormalizationPolicy:
        return self._policy

    def sanitize_task_id(self, task_id: str) -> str:
        return normalize.sanitize_task_id(task_id, self._policy)

    def task_address(self, task_id: str) -> Pubkey:
        address, _ = task_address(self._program_id, task_id)
        return address

    def create_task(
        self,
        creator: Pubkey,
        task_id: str,
        location: str,
        area_size: float,
        altitude: float,
        task_type: float,
        geofencing_enabled: bool,
        description: str,
    ) -> BuiltInstruction:
        """Build ``create_task``.

        The task id is sanitized first and the effective id is returned on
        the result, since a too-short id is replaced by a generated one.
        """
        effective_id = self.sanitize_task_id(task_id)
        latitude, longitude = normalize.parse_location(location, self._policy)
        area = normalize.normalize_area_size(area_size, self._policy)
        alt = normalize.normalize_altitude(altitude, self._policy)
        kind = normalize.normalize_task_type(task_type, self._policy)
        text = normalize.normalize_description(description, self._policy)

        address = self.task_address(effective_id)
        data = b"".join(
            [
                CREATE_TASK_DISCRIMINATOR,
                encode_string(effective_id),
                encode_f64(latitude),
                encode_f64(longitude),
                encode_u32(area),
                encode_u16(alt),
                encode_u8(kind),
                encode_bool(geofencing_enabled),
                encode_string(text),
            ]
        )
        accounts = [
            AccountMeta(pubkey=address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=creator, is_signer=True, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]

        logger.info(
            "Built create_task instruction",
            extra={
                "task_id": effective_id,
                "task_address": str(address),
                "creator": str(creator),
            },
        )
        return BuiltInstruction(
            instruction=Instruction(self._program_id, data, accounts),
            task_address=address,
            task_id=effective_id,
        )

    def accept_task(self, operator: Pubkey, task_id: str) -> BuiltInstruction:
        address = self.task_address(task_id)
        accounts = [
            AccountMeta(pubkey=address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=operator, is_signer=True, is_writable=False),
        ]
        logger.info(
            "Built accept_task instruction",
            extra={"task_id": task_id, "task_address": str(address), "operator": str(operator)},
        )
        return BuiltInstruction(
            instruction=Instruction(self._program_id, ACCEPT_TASK_DISCRIMINATOR, accounts),
            task_address=address,
            task_id=task_id,
        )

    def complete_task(
        self,
        operator: Pubkey,
        task_id: str,
        arweave_tx_id: str,
        log_hash: str,
        signature: str,
    ) -> BuiltInstruction:
        """Build ``complete_task``.

        ``log_hash`` and ``signature`` are hex text coerced to exactly 32 and
        64 bytes.
        """
        hash_bytes = normalize.coerce_hex_bytes(
            log_hash, normalize.HASH_SIZE, "log_hash", self._policy
        )
        signature_bytes = normalize.coerce_hex_bytes(
            signature, normalize.SIGNATURE_SIZE, "signature", self._policy
        )

        address = self.task_address(task_id)
        data = b"".join(
            [
                COMPLETE_TASK_DISCRIMINATOR,
                encode_string(arweave_tx_id),
                encode_fixed_bytes(hash_bytes),
                encode_fixed_bytes(signature_bytes),
            ]
        )
        accounts = [
            AccountMeta(pubkey=address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=operator, is_signer=True, is_writable=True),
        ]
        logger.info(
            "Built complete_task instruction",
            extra={"task_id": task_id, "task_address": str(address), "arweave_tx_id": arweave_tx_id},
        )
        return BuiltInstruction(
            instruction=Instruction(self._program_id, data, accounts),
            task_address=address,
            task_id=task_id,
        )

    def record_verification(
        self,
        validator: Pubkey,
        task_id: str,
        result: bool,
        report_hash: str,
    ) -> BuiltInstruction:
        hash_bytes = normalize.coerce_hex_bytes(
            report_hash, normalize.HASH_SIZE, "verification_report_hash", self._policy
        )

        address = self.task_address(task_id)
        data = b"".join(
            [
                RECORD_VERIFICATION_DISCRIMINATOR,
                encode_string(task_id),
                encode_bool(result),
                encode_fixed_bytes(hash_bytes),
            ]
        )
        accounts = [
            AccountMeta(pubkey=address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=validator, is_signer=True, is_writable=False),
        ]
        logger.info(
            "Built record_verification instruction",
            extra={"task_id": task_id, "task_address": str(address), "result": result},
        )
        return BuiltInstruction(
            instruction=Instruction(self._program_id, data, accounts),
            task_address=address,
            task_id=task_id,
        )
