"""
Wallet signing capability and a local keypair wallet.

Any object offering ``public_key``, ``sign_transaction``,
``sign_all_transactions`` and ``send_transaction`` can drive the settlement
flows. ``require_wallet_capability`` checks that up front so a deficient
signer fails before a transaction is built.

Key files use the Solana CLI format: a JSON array of 64 integers holding the
32-byte secret seed followed by the 32-byte public key.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from solders.keypair import Keypair

from droneforce_client.exceptions import PreconditionError
from droneforce_client.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

    from solana.rpc.models import TxOpts
    from solders.pubkey import Pubkey
    from solders.transaction import Transaction

    from droneforce_client.rpc import RpcConnection

logger = get_logger(__name__)

REQUIRED_WALLET_METHODS = ("sign_transaction", "sign_all_transactions", "send_transaction")


@runtime_checkable
class WalletCapability(Protocol):
    """Signer collaborator used by the submitter and orchestrator."""

    @property
    def public_key(self) -> Pubkey: ...

    async def sign_transaction(self, transaction: Transaction) -> Transaction: ...

    async def sign_all_transactions(self, transactions: list[Transaction]) -> list[Transaction]: ...

    async def send_transaction(
        self,
        transaction: Transaction,
        connection: RpcConnection,
        options: TxOpts,
    ) -> str: ...


def require_wallet_capability(wallet: object) -> WalletCapability:
    """Return ``wallet`` typed as a capability, or raise PreconditionError."""
    missing = [name for name in REQUIRED_WALLET_METHODS if not callable(getattr(wallet, name, None))]
    if getattr(wallet, "public_key", None) is None:
        missing.insert(0, "public_key")

    if missing:
        logger.warning(
            "Wallet lacks required capabilities",
            extra={"missing": missing, "wallet_type": type(wallet).__name__},
        )
        raise PreconditionError(
            "Wallet does not provide the required signing capability",
            error="WALLET_CAPABILITY_MISSING",
            details={"missing": missing},
        )
    return wallet  # type: ignore[return-value]


class KeypairWallet:
    """Local signer backed by a ``solders`` keypair."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_file(cls, path: Path) -> KeypairWallet:
        return cls(load_keypair_file(path))

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        transaction.sign([self._keypair], transaction.message.recent_blockhash)
        return transaction

    async def sign_all_transactions(self, transactions: list[Transaction]) -> list[Transaction]:
        return [await self.sign_transaction(transaction) for transaction in transactions]

    async def send_transaction(
        self,
        transaction: Transaction,
        connection: RpcConnection,
        options: TxOpts,
    ) -> str:
        signed = await self.sign_transaction(transaction)
        return await connection.send_raw_transaction(bytes(signed), options)

    def ed25519_private_key(self) -> Ed25519PrivateKey:
        """The same secret as a ``cryptography`` key, for off-chain signatures."""
        return Ed25519PrivateKey.from_private_bytes(bytes(self._keypair)[:32])


def generate_keypair_file(path: Path) -> Keypair:
    """Generate a new Ed25519 key and write it in Solana CLI JSON format.

    Args:
        path: Destination file. Parent directories are created.

    Returns:
        The generated keypair.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    private_key = Ed25519PrivateKey.generate()
    secret = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )

    path.write_text(json.dumps(list(secret + public)))
    keypair = Keypair.from_bytes(secret + public)
    logger.info("Generated keypair file", extra={"path": str(path), "pubkey": str(keypair.pubkey())})
    return keypair


def load_keypair_file(path: Path) -> Keypair:
    """Load a Solana CLI JSON keypair file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a 64-byte JSON array.
    """
    raw = json.loads(path.read_text())
    if not isinstance(raw, list) or len(raw) != 64:
        msg = f"Expected a JSON array of 64 integers in {path}"
        raise ValueError(msg)
    return Keypair.from_bytes(bytes(raw))
