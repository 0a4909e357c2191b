"""
Configuration management for the settlement client.

Settings are loaded from YAML with no implicit values: every section must be
present in the file. Program ids may be left null only when debug mode is on,
in which case the development deployment ids are used. A small set of
environment variables overrides the file and is resolved once at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict
from solders.pubkey import Pubkey

if TYPE_CHECKING:
    from collections.abc import Mapping

CONFIG_PATH_ENV_VAR = "DRONEFORCE_CONFIG_PATH"

DEBUG_TASK_PROGRAM_ID = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
DEBUG_ESCROW_PROGRAM_ID = "DupsqrqSRGsHJ4sq6XRzsRMoaCGHL71S9f3ngEGEmonN"
DEBUG_VALIDATOR_PUBKEY = "Ah9K7dQ8EHaZqcAsgBW8w37yN2eAy3koFmUn4x3CJtod"
DEBUG_RPC_URL = "https://api.devnet.solana.com"


class NormalizationPolicy(StrEnum):
    """How out-of-range instruction arguments are handled."""

    CLAMP = "clamp"
    STRICT = "strict"


class SameWalletPolicy(StrEnum):
    """What to do when a task's creator and operator are the same wallet."""

    BYPASS = "bypass"
    REJECT = "reject"


class ServiceConfig(BaseModel):
    """Client identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str | None


class NetworkSettings(BaseModel):
    """Solana RPC connection configuration."""

    model_config = ConfigDict(extra="forbid")
    rpc_url: str
    commitment: str


class ProgramsConfig(BaseModel):
    """On-chain program and validator identifiers."""

    model_config = ConfigDict(extra="forbid")
    task_program_id: str | None
    escrow_program_id: str | None
    validator_pubkey: str | None


class SettlementConfig(BaseModel):
    """Behavioural switches for instruction building and escrow guards."""

    model_config = ConfigDict(extra="forbid")
    debug_mode: bool
    normalization: NormalizationPolicy
    same_wallet_policy: SameWalletPolicy | None


class Settings(BaseModel):
    """
    Root configuration container.

    All sections are REQUIRED. Missing sections cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    logging: LoggingConfig
    network: NetworkSettings
    programs: ProgramsConfig
    settlement: SettlementConfig


@dataclass(frozen=True)
class NetworkConfig:
    """Immutable runtime configuration shared by every component."""

    rpc_url: str
    commitment: str
    task_program_id: Pubkey
    escrow_program_id: Pubkey
    validator_pubkey: Pubkey | None
    debug_mode: bool
    normalization: NormalizationPolicy
    same_wallet_policy: SameWalletPolicy


_ENV_OVERRIDES: tuple[tuple[str, str, str], ...] = (
    ("SOLANA_RPC_URL", "network", "rpc_url"),
    ("SOLANA_PROGRAM_ID", "programs", "task_program_id"),
    ("ESCROW_PROGRAM_ID", "programs", "escrow_program_id"),
    ("VALIDATOR_PUBKEY", "programs", "validator_pubkey"),
)


def get_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Determine configuration file path."""
    env = os.environ if environ is None else environ
    configured = env.get(CONFIG_PATH_ENV_VAR)
    if configured:
        return Path(configured)
    return Path.cwd() / "config.yaml"


def _apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for env_name, section, key in _ENV_OVERRIDES:
        value = environ.get(env_name)
        if value:
            raw.setdefault(section, {})[key] = value

    debug_value = environ.get("DRONEFORCE_DEBUG_MODE")
    if debug_value:
        raw.setdefault("settlement", {})["debug_mode"] = debug_value.strip().lower() in {
            "1",
            "true",
            "yes",
        }
    return raw


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load Settings from YAML, then apply environment overrides."""
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = get_config_path(env)

    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)

    return Settings(**_apply_env_overrides(raw, env))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()


def clear_settings_cache() -> None:
    """Forget cached settings. Used in testing."""
    get_settings.cache_clear()


def _parse_pubkey(value: str, field_name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        msg = f"Invalid public key for {field_name}: {value!r}"
        raise ValueError(msg) from exc


def _resolve_program_id(value: str | None, debug_default: str, field_name: str, debug: bool) -> str:
    if value:
        return value
    if debug:
        return debug_default
    msg = f"programs.{field_name} must be set when debug_mode is off"
    raise ValueError(msg)


def build_network_config(settings: Settings) -> NetworkConfig:
    """Resolve Settings into the immutable NetworkConfig.

    Debug mode substitutes the development deployment ids for missing
    values and defaults the same-wallet policy to BYPASS. Outside debug mode
    the program ids are mandatory and the policy defaults to REJECT.
    """
    debug = settings.settlement.debug_mode
    programs = settings.programs

    task_program = _resolve_program_id(
        programs.task_program_id, DEBUG_TASK_PROGRAM_ID, "task_program_id", debug
    )
    escrow_program = _resolve_program_id(
        programs.escrow_program_id, DEBUG_ESCROW_PROGRAM_ID, "escrow_program_id", debug
    )
    validator = programs.validator_pubkey or (DEBUG_VALIDATOR_PUBKEY if debug else None)

    same_wallet_policy = settings.settlement.same_wallet_policy
    if same_wallet_policy is None:
        same_wallet_policy = SameWalletPolicy.BYPASS if debug else SameWalletPolicy.REJECT

    return NetworkConfig(
        rpc_url=settings.network.rpc_url or DEBUG_RPC_URL,
        commitment=settings.network.commitment,
        task_program_id=_parse_pubkey(task_program, "task_program_id"),
        escrow_program_id=_parse_pubkey(escrow_program, "escrow_program_id"),
        validator_pubkey=(
            _parse_pubkey(validator, "validator_pubkey") if validator is not None else None
        ),
        debug_mode=debug,
        normalization=settings.settlement.normalization,
        same_wallet_policy=same_wallet_policy,
    )
