"""
Escrow program instruction builder.

Builds the ``initialize``, ``accept`` and ``cancel`` instructions of the
drone-service escrow program, together with the token-account setup each
one needs. Only reads the chain (token account existence); never sends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from solders.instruction import AccountMeta, Instruction
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer
from solders.sysvar import RENT
from spl.token.constants import TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from spl.token.instructions import (
    approve,
    create_associated_token_account,
    sync_native,
)
from spl.token.models import ApproveParams, SyncNativeParams

from droneforce_client.addresses import (
    associated_token_address,
    escrow_address,
    escrowed_tokens_address,
)
from droneforce_client.codec import encode_string, encode_u64
from droneforce_client.logging import get_logger
from droneforce_client.models import EscrowInitPlan
from droneforce_client.normalize import validate_payment_amount

if TYPE_CHECKING:
    from solders.pubkey import Pubkey

    from droneforce_client.config import NetworkConfig
    from droneforce_client.rpc import RpcConnection

logger = get_logger(__name__)

INITIALIZE_DISCRIMINATOR = bytes([175, 175, 109, 31, 13, 152, 155, 237])
ACCEPT_DISCRIMINATOR = bytes([65, 150, 70, 216, 133, 6, 107, 4])
CANCEL_DISCRIMINATOR = bytes([232, 219, 223, 41, 219, 236, 220, 190])


class EscrowInstructionBuilder:
    """Builds escrow program instructions for one deployment."""

    def __init__(self, config: NetworkConfig, connection: RpcConnection) -> None:
        self._program_id = config.escrow_program_id
        self._connection = connection

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def escrow_addresses(self, client: Pubkey, nonce: str) -> tuple[Pubkey, Pubkey]:
        """Return (escrow state PDA, escrowed tokens PDA) for ``client`` and ``nonce``."""
        escrow, _ = escrow_address(self._program_id, client, nonce)
        vault, _ = escrowed_tokens_address(self._program_id, client, nonce)
        return escrow, vault

    async def _ensure_token_account(
        self,
        owner: Pubkey,
        mint: Pubkey,
    ) -> tuple[Pubkey, list[Instruction]]:
        token_account = associated_token_address(owner, mint)
        if await self._connection.account_exists(token_account):
            return token_account, []

        logger.info(
            "Token account missing, adding create instruction",
            extra={"owner": str(owner), "mint": str(mint), "token_account": str(token_account)},
        )
        return token_account, [create_associated_token_account(payer=owner, owner=owner, mint=mint)]

    async def initialize_escrow(
        self,
        client: Pubkey,
        payment_mint: Pubkey,
        payment_amount: int,
        service_type: str,
        nonce: str,
    ) -> EscrowInitPlan:
        """Build the instruction list for one escrow-initialization transaction.

        Order: [create client ATA] [transfer lamports, sync native] approve,
        initialize. The bracketed steps appear only when the token account is
        missing and when the mint is wrapped SOL respectively.
        """
        amount = validate_payment_amount(payment_amount)
        client_token_account, instructions = await self._ensure_token_account(client, payment_mint)

        is_wrapped_sol = payment_mint == WRAPPED_SOL_MINT
        if is_wrapped_sol:
            instructions.append(
                transfer(
                    TransferParams(
                        from_pubkey=client,
                        to_pubkey=client_token_account,
                        lamports=amount,
                    )
                )
            )
            instructions.append(
                sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=client_token_account))
            )

        escrow, vault = self.escrow_addresses(client, nonce)

        instructions.append(
            approve(
                ApproveParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=client_token_account,
                    delegate=vault,
                    owner=client,
                    amount=amount,
                )
            )
        )

        data = INITIALIZE_DISCRIMINATOR + encode_u64(amount) + encode_string(service_type) + encode_string(nonce)
        accounts = [
            AccountMeta(pubkey=client, is_signer=True, is_writable=True),
            AccountMeta(pubkey=payment_mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=client_token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=escrow, is_signer=False, is_writable=True),
            AccountMeta(pubkey=vault, is_signer=False, is_writable=True),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=RENT, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        instructions.append(Instruction(self._program_id, data, accounts))

        logger.info(
            "Built escrow initialization",
            extra={
                "nonce": nonce,
                "escrow_address": str(escrow),
                "escrowed_tokens_address": str(vault),
                "instruction_count": len(instructions),
                "wrapped_sol": is_wrapped_sol,
            },
        )
        return EscrowInitPlan(
            instructions=instructions,
            escrow_address=escrow,
            escrowed_tokens_address=vault,
            client_token_account=client_token_account,
        )

    async def accept_escrow(
        self,
        operator: Pubkey,
        client: Pubkey,
        nonce: str,
        payment_mint: Pubkey,
    ) -> list[Instruction]:
        """Build the operator's claim: [create operator ATA] accept."""
        escrow, vault = self.escrow_addresses(client, nonce)
        operator_token_account, instructions = await self._ensure_token_account(operator, payment_mint)

        accounts = [
            AccountMeta(pubkey=operator, is_signer=True, is_writable=False),
            AccountMeta(pubkey=escrow, is_signer=False, is_writable=True),
            AccountMeta(pubkey=client, is_signer=False, is_writable=True),
            AccountMeta(pubkey=vault, is_signer=False, is_writable=True),
            AccountMeta(pubkey=operator_token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        instructions.append(Instruction(self._program_id, ACCEPT_DISCRIMINATOR, accounts))

        logger.info(
            "Built escrow accept",
            extra={
                "nonce": nonce,
                "escrow_address": str(escrow),
                "operator_token_account": str(operator_token_account),
                "instruction_count": len(instructions),
            },
        )
        return instructions

    def cancel_escrow(self, client: Pubkey, nonce: str, payment_mint: Pubkey) -> list[Instruction]:
        escrow, vault = self.escrow_addresses(client, nonce)
        client_token_account = associated_token_address(client, payment_mint)

        accounts = [
            AccountMeta(pubkey=client, is_signer=True, is_writable=False),
            AccountMeta(pubkey=escrow, is_signer=False, is_writable=True),
            AccountMeta(pubkey=vault, is_signer=False, is_writable=True),
            AccountMeta(pubkey=client_token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]

        logger.info(
            "Built escrow cancel",
            extra={"nonce": nonce, "escrow_address": str(escrow)},
        )
        return [Instruction(self._program_id, CANCEL_DISCRIMINATOR, accounts)]
