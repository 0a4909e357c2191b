"""Async Solana RPC connection with transport errors mapped to TransportError."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solders.signature import Signature

from droneforce_client.exceptions import TransportError
from droneforce_client.logging import get_logger

if TYPE_CHECKING:
    from solana.rpc.models import TxOpts
    from solders.account import Account
    from solders.hash import Hash
    from solders.pubkey import Pubkey

logger = get_logger(__name__)

_TRANSPORT_ERRORS = (httpx.HTTPError, SolanaRpcException, OSError)


class RpcConnection:
    """
    Shared RPC handle for all settlement operations.

    Wraps ``solana.rpc.async_api.AsyncClient``. Holds no per-operation state,
    so independent operations may use one instance concurrently.
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = Confirmed,
        client: AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._commitment = Commitment(commitment)
        self._client = client if client is not None else AsyncClient(rpc_url, commitment=self._commitment)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    @property
    def client(self) -> AsyncClient:
        return self._client

    def _unavailable(self, operation: str, exc: Exception) -> TransportError:
        logger.warning(
            "RPC request failed",
            extra={"operation": operation, "error": str(exc), "rpc_url": self._rpc_url},
        )
        return TransportError(
            f"RPC {operation} failed: {exc}",
            details={"operation": operation, "rpc_url": self._rpc_url},
        )

    async def get_latest_blockhash(self, commitment: str = Confirmed) -> Hash:
        try:
            response = await self._client.get_latest_blockhash(Commitment(commitment))
        except (*_TRANSPORT_ERRORS, RPCException) as exc:
            raise self._unavailable("get_latest_blockhash", exc) from exc
        return response.value.blockhash

    async def get_account_info(self, address: Pubkey) -> Account | None:
        """Return the account at ``address`` or None when it does not exist."""
        try:
            response = await self._client.get_account_info(address, commitment=self._commitment)
        except (*_TRANSPORT_ERRORS, RPCException) as exc:
            raise self._unavailable("get_account_info", exc) from exc
        return response.value

    async def account_exists(self, address: Pubkey) -> bool:
        return await self.get_account_info(address) is not None

    async def send_raw_transaction(self, payload: bytes, opts: TxOpts) -> str:
        """Submit a signed, serialized transaction and return its signature."""
        try:
            response = await self._client.send_raw_transaction(payload, opts=opts)
        except RPCException as exc:
            logger.warning(
                "Transaction rejected by RPC node",
                extra={"error": str(exc), "rpc_url": self._rpc_url},
            )
            raise TransportError(
                f"Transaction submission rejected: {exc}",
                error="SUBMISSION_FAILED",
                details={"rpc_url": self._rpc_url},
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise self._unavailable("send_raw_transaction", exc) from exc
        return str(response.value)

    async def confirm_transaction(self, signature: str, commitment: str = Confirmed) -> None:
        """Wait for ``signature`` to reach ``commitment``.

        Raises TransportError (CONFIRMATION_FAILED) carrying the signature when
        confirmation times out or the transaction failed on chain.
        """
        try:
            response = await self._client.confirm_transaction(
                Signature.from_string(signature), Commitment(commitment)
            )
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as exc:
            logger.warning(
                "Transaction not confirmed",
                extra={"signature": signature, "error": str(exc)},
            )
            raise TransportError(
                f"Transaction {signature} was not confirmed: {exc}",
                error="CONFIRMATION_FAILED",
                signature=signature,
            ) from exc
        except (*_TRANSPORT_ERRORS, RPCException) as exc:
            error = self._unavailable("confirm_transaction", exc)
            raise TransportError(
                error.message, error="CONFIRMATION_FAILED", details=error.details, signature=signature
            ) from exc

        statuses: list[Any] = list(response.value)
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            logger.warning(
                "Transaction failed on chain",
                extra={"signature": signature, "error": str(status.err)},
            )
            raise TransportError(
                f"Transaction {signature} failed: {status.err}",
                error="CONFIRMATION_FAILED",
                details={"transaction_error": str(status.err)},
                signature=signature,
            )

    async def close(self) -> None:
        await self._client.close()
