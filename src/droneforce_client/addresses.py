"""
Program-derived address derivation.

Delegates the bump search to ``Pubkey.find_program_address`` (bump seeds
from 255 down to 0, first off-curve address wins). Seed limits are checked
up front so they surface as AddressDerivationError instead of a runtime
panic inside the library.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from droneforce_client.exceptions import AddressDerivationError

if TYPE_CHECKING:
    from collections.abc import Sequence

MAX_SEED_LENGTH = 32
MAX_SEEDS = 16

TASK_SEED = b"task"
ESCROW_SEED = b"escrow"
ESCROWED_TOKENS_SEED = b"escrowed_tokens"


def _check_seeds(seeds: Sequence[bytes]) -> None:
    # The bump byte occupies one of the runtime's seed slots.
    if len(seeds) >= MAX_SEEDS:
        raise AddressDerivationError(
            f"Too many seeds: {len(seeds)} (maximum {MAX_SEEDS - 1} plus bump)",
            error="MAX_SEED_LENGTH_EXCEEDED",
            details={"seed_count": len(seeds)},
        )
    for index, seed in enumerate(seeds):
        if len(seed) > MAX_SEED_LENGTH:
            raise AddressDerivationError(
                f"Seed {index} is {len(seed)} bytes (maximum {MAX_SEED_LENGTH})",
                error="MAX_SEED_LENGTH_EXCEEDED",
                details={"seed_index": index, "seed_length": len(seed)},
            )


def find_program_address(program_id: Pubkey, seeds: Sequence[bytes]) -> tuple[Pubkey, int]:
    """Derive the program address and bump for ``seeds`` under ``program_id``.

    Args:
        program_id: Owning program.
        seeds: Ordered seed byte strings, each at most 32 bytes.

    Returns:
        Tuple of (address, bump).

    Raises:
        AddressDerivationError: If the seeds exceed runtime limits.
    """
    _check_seeds(seeds)
    return Pubkey.find_program_address([bytes(seed) for seed in seeds], program_id)


def task_address(program_id: Pubkey, task_id: str) -> tuple[Pubkey, int]:
    """Task account PDA: seeds ("task", task_id)."""
    return find_program_address(program_id, [TASK_SEED, task_id.encode("utf-8")])


def escrow_address(program_id: Pubkey, client: Pubkey, nonce: str) -> tuple[Pubkey, int]:
    """Escrow state PDA: seeds ("escrow", client, nonce)."""
    return find_program_address(program_id, [ESCROW_SEED, bytes(client), nonce.encode("utf-8")])


def escrowed_tokens_address(program_id: Pubkey, client: Pubkey, nonce: str) -> tuple[Pubkey, int]:
    """Escrow vault PDA: seeds ("escrowed_tokens", client, nonce)."""
    return find_program_address(
        program_id, [ESCROWED_TOKENS_SEED, bytes(client), nonce.encode("utf-8")]
    )


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Canonical token account of ``owner`` for ``mint``."""
    return get_associated_token_address(owner, mint)
