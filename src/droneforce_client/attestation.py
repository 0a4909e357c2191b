"""
Flight-log attestation.

An operator completing a task submits the SHA-256 of the flight log and an
Ed25519 signature of that digest made with the operator key. Both travel as
0x-prefixed hex, the form ``complete_task`` accepts.
"""

from __future__ import annotations

import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from droneforce_client.exceptions import InputValidationError
from droneforce_client.normalize import HASH_SIZE, SIGNATURE_SIZE


def _decode_exact_hex(value: str, size: int, field: str) -> bytes:
    text = value[2:] if value[:2] in ("0x", "0X") else value
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise InputValidationError(f"{field} is not valid hex", details={"field": field}) from exc
    if len(raw) != size:
        raise InputValidationError(
            f"{field} must be {size} bytes, got {len(raw)}",
            details={"field": field, "size": len(raw), "expected": size},
        )
    return raw


def hash_flight_log(data: bytes) -> str:
    return "0x" + hashlib.sha256(data).hexdigest()


def sign_log_hash(log_hash: str, private_key: Ed25519PrivateKey) -> str:
    """Sign the raw 32-byte digest and return the 64-byte signature as hex."""
    digest = _decode_exact_hex(log_hash, HASH_SIZE, "log_hash")
    return "0x" + private_key.sign(digest).hex()


def verify_log_signature(log_hash: str, signature: str, public_key_bytes: bytes) -> bool:
    """Check an operator's signature over a flight-log digest.

    Returns False for a signature that does not verify. Malformed hex raises
    InputValidationError.
    """
    digest = _decode_exact_hex(log_hash, HASH_SIZE, "log_hash")
    raw_signature = _decode_exact_hex(signature, SIGNATURE_SIZE, "signature")
    public_key = Ed25519PublicKey.from_public_bytes(public_key_bytes)
    try:
        public_key.verify(raw_signature, digest)
    except InvalidSignature:
        return False
    return True
