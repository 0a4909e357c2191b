"""Readers for on-chain task and escrow accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from droneforce_client.addresses import escrow_address, task_address
from droneforce_client.codec import PayloadReader
from droneforce_client.exceptions import SettlementError

if TYPE_CHECKING:
    from solders.pubkey import Pubkey

    from droneforce_client.config import NetworkConfig
    from droneforce_client.rpc import RpcConnection

ESCROW_ACCOUNT_DISCRIMINATOR = bytes([31, 213, 123, 187, 186, 22, 218, 155])


@dataclass(frozen=True)
class EscrowAccount:
    """Decoded ``Escrow`` state account of the escrow program."""

    address: Pubkey
    bump: int
    client: Pubkey
    escrowed_payment_tokens: Pubkey
    service_type: str
    nonce: str

    @classmethod
    def decode(cls, address: Pubkey, data: bytes) -> EscrowAccount:
        """Decode raw account data.

        Raises:
            SettlementError: ACCOUNT_DECODE_FAILED if the discriminator does not
                match or the data is truncated.
        """
        reader = PayloadReader(data)
        try:
            discriminator = reader.read_discriminator()
            if discriminator != ESCROW_ACCOUNT_DISCRIMINATOR:
                msg = f"Unexpected account discriminator {list(discriminator)}"
                raise ValueError(msg)
            return cls(
                address=address,
                bump=reader.read_u8(),
                client=reader.read_pubkey(),
                escrowed_payment_tokens=reader.read_pubkey(),
                service_type=reader.read_string(),
                nonce=reader.read_string(),
            )
        except ValueError as exc:
            raise SettlementError(
                f"Account {address} is not a valid escrow account: {exc}",
                error="ACCOUNT_DECODE_FAILED",
                details={"address": str(address)},
            ) from exc


@dataclass(frozen=True)
class TaskAccountInfo:
    """Raw task account as stored by the task program."""

    address: Pubkey
    owner: Pubkey
    lamports: int
    data: bytes


async def fetch_escrow_account(
    connection: RpcConnection,
    config: NetworkConfig,
    client: Pubkey,
    nonce: str,
) -> EscrowAccount | None:
    """Fetch and decode the escrow for (client, nonce). None if it does not exist."""
    address, _ = escrow_address(config.escrow_program_id, client, nonce)
    account = await connection.get_account_info(address)
    if account is None:
        return None
    return EscrowAccount.decode(address, bytes(account.data))


async def fetch_task_account(
    connection: RpcConnection,
    config: NetworkConfig,
    task_id: str,
) -> TaskAccountInfo | None:
    address, _ = task_address(config.task_program_id, task_id)
    account = await connection.get_account_info(address)
    if account is None:
        return None
    return TaskAccountInfo(
        address=address,
        owner=account.owner,
        lamports=account.lamports,
        data=bytes(account.data),
    )
