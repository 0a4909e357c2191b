"""Unit tests for the droneforce command line."""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock

import pytest
import yaml
from solders.pubkey import Pubkey

from droneforce_client import __main__ as cli
from droneforce_client.accounts import TaskAccountInfo
from droneforce_client.addresses import escrow_address, task_address
from droneforce_client.attestation import hash_flight_log, verify_log_signature
from droneforce_client.config import DEBUG_ESCROW_PROGRAM_ID, DEBUG_TASK_PROGRAM_ID
from droneforce_client.exceptions import TransportError
from droneforce_client.logging import ROOT_LOGGER_NAME
from droneforce_client.wallet import generate_keypair_file, load_keypair_file


@pytest.fixture(autouse=True)
def _restore_root_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.propagate = propagate


def _stdout_json(capsys) -> dict:
    captured = capsys.readouterr()
    return json.loads(captured.out[captured.out.rindex("{\n") :])


@pytest.mark.unit
class TestCli:
    """Tests for the droneforce subcommands."""

    def test_task_address(self, config_file, capsys) -> None:
        assert cli.main(["--config", str(config_file), "task-address", "task-1"]) == 0

        expected, bump = task_address(Pubkey.from_string(DEBUG_TASK_PROGRAM_ID), "task-1")
        result = _stdout_json(capsys)
        assert result == {
            "requested_task_id": "task-1",
            "task_id": "task-1",
            "address": str(expected),
            "bump": bump,
        }

    def test_escrow_address(self, config_file, capsys) -> None:
        client = Pubkey.new_unique()

        assert cli.main(["--config", str(config_file), "escrow-address", str(client), "task-1"]) == 0

        expected, _ = escrow_address(Pubkey.from_string(DEBUG_ESCROW_PROGRAM_ID), client, "task-1")
        result = _stdout_json(capsys)
        assert result["escrow_address"] == str(expected)
        assert "escrowed_tokens_address" in result

    def test_invalid_client_key_exits(self, config_file) -> None:
        with pytest.raises(SystemExit) as exc:
            cli.main(["--config", str(config_file), "escrow-address", "not-a-key", "task-1"])
        assert exc.value.code == 2

    def test_missing_command_exits(self) -> None:
        with pytest.raises(SystemExit):
            cli.main([])

    def test_keygen(self, tmp_path, capsys) -> None:
        path = tmp_path / "id.json"

        assert cli.main(["keygen", str(path)]) == 0

        result = _stdout_json(capsys)
        assert result["pubkey"] == str(load_keypair_file(path).pubkey())

    def test_escrow_status_missing(self, config_file, capsys, monkeypatch) -> None:
        monkeypatch.setattr(cli, "fetch_escrow_account", AsyncMock(return_value=None))
        client = Pubkey.new_unique()

        assert cli.main(["--config", str(config_file), "escrow-status", str(client), "task-1"]) == 0

        result = _stdout_json(capsys)
        assert result["exists"] is False

    def test_settlement_error_reported(self, config_file, capsys, monkeypatch) -> None:
        monkeypatch.setattr(
            cli, "fetch_escrow_account", AsyncMock(side_effect=TransportError("rpc down"))
        )

        code = cli.main(["--config", str(config_file), "escrow-status", str(Pubkey.new_unique()), "x-1"])

        assert code == 1
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["error"] == "RPC_UNAVAILABLE"

    def test_task_address_sanitizes_id(self, config_file, capsys) -> None:
        assert cli.main(["--config", str(config_file), "task-address", "my task!"]) == 0

        expected, _ = task_address(Pubkey.from_string(DEBUG_TASK_PROGRAM_ID), "mytask")
        result = _stdout_json(capsys)
        assert result["requested_task_id"] == "my task!"
        assert result["task_id"] == "mytask"
        assert result["address"] == str(expected)

    def test_task_status_missing(self, config_file, capsys, monkeypatch) -> None:
        fetch = AsyncMock(return_value=None)
        monkeypatch.setattr(cli, "fetch_task_account", fetch)

        assert cli.main(["--config", str(config_file), "task-status", "task 1"]) == 0

        expected, _ = task_address(Pubkey.from_string(DEBUG_TASK_PROGRAM_ID), "task1")
        result = _stdout_json(capsys)
        assert result == {"task_id": "task1", "address": str(expected), "exists": False}
        assert fetch.await_args.args[2] == "task1"

    def test_task_status_found(self, config_file, capsys, monkeypatch) -> None:
        address = Pubkey.new_unique()
        owner = Pubkey.from_string(DEBUG_TASK_PROGRAM_ID)
        account = TaskAccountInfo(address=address, owner=owner, lamports=2_000_000, data=bytes(120))
        monkeypatch.setattr(cli, "fetch_task_account", AsyncMock(return_value=account))

        assert cli.main(["--config", str(config_file), "task-status", "task-1"]) == 0

        result = _stdout_json(capsys)
        assert result["exists"] is True
        assert result["address"] == str(address)
        assert result["owner"] == str(owner)
        assert result["lamports"] == 2_000_000
        assert result["data_length"] == 120

    def test_hash_log(self, tmp_path, capsys) -> None:
        log = tmp_path / "flight.log"
        log.write_bytes(b"lat=37.77,lon=-122.41,alt=50\n")

        assert cli.main(["hash-log", str(log)]) == 0

        result = _stdout_json(capsys)
        assert result["log_hash"] == hash_flight_log(log.read_bytes())
        assert "signature" not in result

    def test_hash_log_signed(self, tmp_path, capsys) -> None:
        log = tmp_path / "flight.log"
        log.write_bytes(b"lat=37.77,lon=-122.41,alt=50\n")
        keypair = generate_keypair_file(tmp_path / "operator.json")

        assert cli.main(["hash-log", str(log), "--keypair", str(tmp_path / "operator.json")]) == 0

        result = _stdout_json(capsys)
        assert result["signer"] == str(keypair.pubkey())
        assert verify_log_signature(result["log_hash"], result["signature"], bytes(keypair.pubkey()))

    def test_missing_config_reported(self, tmp_path, capsys) -> None:
        code = cli.main(["--config", str(tmp_path / "absent.yaml"), "task-address", "task-1"])

        assert code == 1
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["error"] == "COMMAND_FAILED"
        assert error["details"]["type"] == "FileNotFoundError"

    def test_invalid_config_reported(self, tmp_path, config_data, capsys) -> None:
        config_data["network"]["commitment"] = 42
        config_data["settlement"]["normalization"] = "sometimes"
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump(config_data))

        code = cli.main(["--config", str(path), "task-address", "task-1"])

        assert code == 1
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["error"] == "COMMAND_FAILED"
        assert error["details"]["type"] == "ValidationError"

    def test_missing_log_file_reported(self, tmp_path, capsys) -> None:
        assert cli.main(["hash-log", str(tmp_path / "absent.log")]) == 1

        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["error"] == "COMMAND_FAILED"
