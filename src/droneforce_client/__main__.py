"""Command-line entry point.

Usage::

    python -m droneforce_client task-address <task_id>
    python -m droneforce_client task-status <task_id>
    python -m droneforce_client escrow-address <client> <nonce>
    python -m droneforce_client escrow-status <client> <nonce>
    python -m droneforce_client keygen <path>
    python -m droneforce_client hash-log <path> [--keypair FILE]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from solders.pubkey import Pubkey

from droneforce_client.accounts import fetch_escrow_account, fetch_task_account
from droneforce_client.addresses import escrow_address, escrowed_tokens_address, task_address
from droneforce_client.attestation import hash_flight_log, sign_log_hash
from droneforce_client.config import build_network_config, load_settings
from droneforce_client.exceptions import SettlementError
from droneforce_client.logging import setup_logging
from droneforce_client.normalize import sanitize_task_id
from droneforce_client.rpc import RpcConnection
from droneforce_client.wallet import KeypairWallet, generate_keypair_file

if TYPE_CHECKING:
    from collections.abc import Sequence

    from droneforce_client.config import NetworkConfig


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="droneforce",
        description="Derive DroneForce task and escrow addresses and inspect escrows.",
    )
    parser.add_argument(
        "--config",
        type=str,
        metavar="FILE",
        help="Path to config.yaml (default: $DRONEFORCE_CONFIG_PATH or ./config.yaml).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    task = commands.add_parser("task-address", help="Derive the task account address.")
    task.add_argument("task_id")

    task_status = commands.add_parser("task-status", help="Read a task account from chain.")
    task_status.add_argument("task_id")

    escrow = commands.add_parser("escrow-address", help="Derive escrow and vault addresses.")
    escrow.add_argument("client")
    escrow.add_argument("nonce")

    status = commands.add_parser("escrow-status", help="Read an escrow account from chain.")
    status.add_argument("client")
    status.add_argument("nonce")

    keygen = commands.add_parser("keygen", help="Write a new keypair in Solana CLI format.")
    keygen.add_argument("path")

    hash_log = commands.add_parser("hash-log", help="Hash a flight log and optionally sign the hash.")
    hash_log.add_argument("path")
    hash_log.add_argument("--keypair", metavar="FILE", help="Operator keypair used to sign the hash.")

    return parser


def _load_config(config_path: str | None) -> NetworkConfig:
    settings = load_settings(Path(config_path) if config_path else None)
    setup_logging(settings.logging.level, log_directory=settings.logging.directory)
    return build_network_config(settings)


def _client_pubkey(parser: argparse.ArgumentParser, value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError:
        parser.error(f"Invalid client public key: {value}")
        raise


async def _task_status(config: NetworkConfig, task_id: str) -> dict[str, Any]:
    connection = RpcConnection(config.rpc_url, config.commitment)
    try:
        account = await fetch_task_account(connection, config, task_id)
    finally:
        await connection.close()

    if account is None:
        address, _ = task_address(config.task_program_id, task_id)
        return {"task_id": task_id, "address": str(address), "exists": False}
    return {
        "task_id": task_id,
        "address": str(account.address),
        "exists": True,
        "owner": str(account.owner),
        "lamports": account.lamports,
        "data_length": len(account.data),
    }


def _hash_log(path: Path, keypair_path: str | None) -> dict[str, Any]:
    log_hash = hash_flight_log(path.read_bytes())
    result: dict[str, Any] = {"path": str(path), "log_hash": log_hash}
    if keypair_path is not None:
        wallet = KeypairWallet.from_file(Path(keypair_path))
        result["signature"] = sign_log_hash(log_hash, wallet.ed25519_private_key())
        result["signer"] = str(wallet.public_key)
    return result


async def _escrow_status(config: NetworkConfig, client: Pubkey, nonce: str) -> dict[str, Any]:
    connection = RpcConnection(config.rpc_url, config.commitment)
    try:
        account = await fetch_escrow_account(connection, config, client, nonce)
    finally:
        await connection.close()

    if account is None:
        address, _ = escrow_address(config.escrow_program_id, client, nonce)
        return {"escrow_address": str(address), "exists": False}
    return {
        "escrow_address": str(account.address),
        "exists": True,
        "bump": account.bump,
        "client": str(account.client),
        "escrowed_payment_tokens": str(account.escrowed_payment_tokens),
        "service_type": account.service_type,
        "nonce": account.nonce,
    }


def _run(parser: argparse.ArgumentParser, args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "keygen":
        keypair = generate_keypair_file(Path(args.path))
        return {"path": args.path, "pubkey": str(keypair.pubkey())}
    if args.command == "hash-log":
        return _hash_log(Path(args.path), args.keypair)

    config = _load_config(args.config)

    if args.command in {"task-address", "task-status"}:
        task_id = sanitize_task_id(args.task_id, config.normalization)
        if args.command == "task-status":
            return asyncio.run(_task_status(config, task_id))
        address, bump = task_address(config.task_program_id, task_id)
        return {"requested_task_id": args.task_id, "task_id": task_id, "address": str(address), "bump": bump}

    client = _client_pubkey(parser, args.client)
    if args.command == "escrow-address":
        escrow, escrow_bump = escrow_address(config.escrow_program_id, client, args.nonce)
        vault, vault_bump = escrowed_tokens_address(config.escrow_program_id, client, args.nonce)
        return {
            "escrow_address": str(escrow),
            "escrow_bump": escrow_bump,
            "escrowed_tokens_address": str(vault),
            "escrowed_tokens_bump": vault_bump,
        }

    return asyncio.run(_escrow_status(config, client, args.nonce))


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        result = _run(parser, args)
    except SettlementError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 1
    except (OSError, ValueError, yaml.YAMLError) as exc:
        # Unreadable or invalid config and key files; pydantic errors are ValueErrors.
        error = {"error": "COMMAND_FAILED", "message": str(exc), "details": {"type": type(exc).__name__}}
        print(json.dumps(error), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
