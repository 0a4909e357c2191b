"""Unit test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from droneforce_client.config import (
    DEBUG_ESCROW_PROGRAM_ID,
    DEBUG_TASK_PROGRAM_ID,
    DEBUG_VALIDATOR_PUBKEY,
    NetworkConfig,
    NormalizationPolicy,
    SameWalletPolicy,
    clear_settings_cache,
)


class FakeConnection:
    """In-process stand-in for RpcConnection that records every call."""

    def __init__(self) -> None:
        self.existing_accounts: set[Pubkey] = set()
        self.accounts: dict[Pubkey, Any] = {}
        self.calls: list[tuple[str, Any]] = []
        self.sent: list[tuple[bytes, Any]] = []
        self.blockhash = Hash.default()

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> Hash:
        self.calls.append(("get_latest_blockhash", commitment))
        return self.blockhash

    async def get_account_info(self, address: Pubkey) -> Any:
        self.calls.append(("get_account_info", address))
        return self.accounts.get(address)

    async def account_exists(self, address: Pubkey) -> bool:
        self.calls.append(("account_exists", address))
        return address in self.existing_accounts or address in self.accounts

    async def send_raw_transaction(self, payload: bytes, opts: Any) -> str:
        self.calls.append(("send_raw_transaction", len(payload)))
        self.sent.append((payload, opts))
        return f"sig-{len(self.sent)}"

    async def confirm_transaction(self, signature: str, commitment: str = "confirmed") -> None:
        self.calls.append(("confirm_transaction", signature))

    async def close(self) -> None:
        self.calls.append(("close", None))


class RecordingWallet:
    """Wallet capability that records transactions instead of signing them."""

    def __init__(self, keypair: Keypair | None = None) -> None:
        self._keypair = keypair or Keypair()
        self.sent: list[Any] = []
        self.options: list[Any] = []

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign_transaction(self, transaction: Any) -> Any:
        return transaction

    async def sign_all_transactions(self, transactions: list[Any]) -> list[Any]:
        return transactions

    async def send_transaction(self, transaction: Any, connection: Any, options: Any) -> str:
        self.sent.append(transaction)
        self.options.append(options)
        return f"wallet-sig-{len(self.sent)}"


@pytest.fixture()
def network_config() -> NetworkConfig:
    """Debug deployment with clamping and same-wallet bypass."""
    return NetworkConfig(
        rpc_url="https://api.devnet.solana.com",
        commitment="confirmed",
        task_program_id=Pubkey.from_string(DEBUG_TASK_PROGRAM_ID),
        escrow_program_id=Pubkey.from_string(DEBUG_ESCROW_PROGRAM_ID),
        validator_pubkey=Pubkey.from_string(DEBUG_VALIDATOR_PUBKEY),
        debug_mode=True,
        normalization=NormalizationPolicy.CLAMP,
        same_wallet_policy=SameWalletPolicy.BYPASS,
    )


@pytest.fixture()
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture()
def wallet() -> RecordingWallet:
    return RecordingWallet()


@pytest.fixture()
def make_wallet() -> type[RecordingWallet]:
    return RecordingWallet


@pytest.fixture()
def config_data() -> dict[str, Any]:
    """A complete, valid configuration mapping."""
    return {
        "service": {"name": "droneforce-settlement", "version": "0.1.0"},
        "logging": {"level": "INFO", "directory": None},
        "network": {"rpc_url": "https://api.devnet.solana.com", "commitment": "confirmed"},
        "programs": {
            "task_program_id": None,
            "escrow_program_id": None,
            "validator_pubkey": None,
        },
        "settlement": {
            "debug_mode": True,
            "normalization": "clamp",
            "same_wallet_policy": None,
        },
    }


@pytest.fixture()
def config_file(tmp_path: Path, config_data: dict[str, Any]) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config_data))
    return path


@pytest.fixture(autouse=True)
def _clear_config_cache() -> None:
    """Clear config cache between tests."""
    clear_settings_cache()
