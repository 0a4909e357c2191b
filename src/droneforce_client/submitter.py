"""
Transaction assembly and submission.

Instructions are packed into one legacy transaction with the wallet as fee
payer and the latest ``confirmed`` blockhash, handed to the wallet to sign
and send, then confirmed at ``confirmed`` commitment.

Preflight simulation is skipped. The RPC node rebroadcasts up to three
times; confirmation is not retried here. A caller that abandons ``submit``
after the send leaves the transaction's outcome undetermined on chain.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from solana.rpc.commitment import Confirmed
from solana.rpc.models import TxOpts
from solders.message import Message
from solders.transaction import Transaction

from droneforce_client.exceptions import InputValidationError, SettlementError, TransportError
from droneforce_client.logging import get_logger
from droneforce_client.wallet import require_wallet_capability

if TYPE_CHECKING:
    from collections.abc import Sequence

    from solders.instruction import Instruction
    from solders.pubkey import Pubkey

    from droneforce_client.rpc import RpcConnection

logger = get_logger(__name__)

SEND_OPTIONS = TxOpts(
    skip_confirmation=True,
    skip_preflight=True,
    preflight_commitment=Confirmed,
    max_retries=3,
)


class TransactionSubmitter:
    """Assembles, sends and confirms transactions through a wallet."""

    def __init__(self, connection: RpcConnection) -> None:
        self._connection = connection

    @property
    def connection(self) -> RpcConnection:
        return self._connection

    async def assemble(self, instructions: Sequence[Instruction], fee_payer: Pubkey) -> Transaction:
        """Build an unsigned transaction over ``instructions``."""
        if not instructions:
            raise InputValidationError("Cannot assemble a transaction without instructions")

        blockhash = await self._connection.get_latest_blockhash(Confirmed)
        message = Message.new_with_blockhash(list(instructions), fee_payer, blockhash)
        return Transaction.new_unsigned(message)

    async def submit(self, instructions: Sequence[Instruction], wallet: object) -> str:
        """Send ``instructions`` as one transaction and wait for confirmation.

        Returns:
            The confirmed transaction signature.

        Raises:
            PreconditionError: If the wallet lacks the signing capability.
            TransportError: If submission or confirmation fails. The signature
                is attached whenever the transaction was sent.
        """
        signer = require_wallet_capability(wallet)
        fee_payer = signer.public_key
        transaction = await self.assemble(instructions, fee_payer)

        try:
            signature = await signer.send_transaction(transaction, self._connection, SEND_OPTIONS)
        except SettlementError:
            raise
        except Exception as exc:
            logger.warning(
                "Wallet failed to send transaction",
                extra={"fee_payer": str(fee_payer), "error": str(exc)},
            )
            raise TransportError(
                f"Wallet failed to send transaction: {exc}",
                error="SUBMISSION_FAILED",
                details={"fee_payer": str(fee_payer)},
            ) from exc

        logger.info(
            "Transaction sent",
            extra={
                "signature": signature,
                "fee_payer": str(fee_payer),
                "instruction_count": len(instructions),
            },
        )

        await self._connection.confirm_transaction(signature, Confirmed)

        logger.info("Transaction confirmed", extra={"signature": signature})
        return signature
