"""
Field normalization for task instruction arguments.

One function per field. Under ``NormalizationPolicy.CLAMP`` out-of-range
input is coerced into the on-chain type's range (the behaviour the task
program's clients have always relied on). Under ``STRICT`` the same input
raises ``InputValidationError`` instead. Structural problems, such as a
location without exactly two parts or hash text that is not hex, are errors
under either policy.
"""

from __future__ import annotations

import math
import re
import time

from droneforce_client.config import NormalizationPolicy
from droneforce_client.exceptions import InputValidationError
from droneforce_client.logging import get_logger

logger = get_logger(__name__)

TASK_ID_MIN_LENGTH = 3
TASK_ID_MAX_LENGTH = 30
DESCRIPTION_MAX_BYTES = 200
DEFAULT_DESCRIPTION = "Drone task"

DEFAULT_LATITUDE = 37.7749
DEFAULT_LONGITUDE = -122.4194

U8_MAX = 0xFF
U16_MAX = 0xFFFF
U32_MAX = 0xFFFF_FFFF
U64_MAX = 0xFFFF_FFFF_FFFF_FFFF

DEFAULT_AREA_SIZE = 100
DEFAULT_TASK_TYPE = 1
DEFAULT_ALTITUDE = 50

HASH_SIZE = 32
SIGNATURE_SIZE = 64

_TASK_ID_DISALLOWED = re.compile(r"[^A-Za-z0-9\-_]")
_HEX_PATTERN = re.compile(r"^[0-9A-Fa-f]*$")


def sanitize_task_id(
    raw: str,
    policy: NormalizationPolicy = NormalizationPolicy.CLAMP,
    now_ms: int | None = None,
) -> str:
    """Reduce ``raw`` to ``[A-Za-z0-9-_]`` with length in [3, 30].

    Ids that are too short after filtering are replaced by
    ``task-<epoch milliseconds>``; ids that are too long are truncated.
    """
    cleaned = _TASK_ID_DISALLOWED.sub("", raw)

    if policy is NormalizationPolicy.STRICT:
        if cleaned != raw or not TASK_ID_MIN_LENGTH <= len(cleaned) <= TASK_ID_MAX_LENGTH:
            raise InputValidationError(
                "Task id must be 3-30 characters of [A-Za-z0-9-_]",
                details={"field": "task_id", "value": raw},
            )
        return cleaned

    if len(cleaned) < TASK_ID_MIN_LENGTH:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        generated = f"task-{now_ms}"
        logger.warning(
            "Task id too short, generated replacement",
            extra={"requested_task_id": raw, "task_id": generated},
        )
        cleaned = generated

    return cleaned[:TASK_ID_MAX_LENGTH]


def _parse_coordinate(text: str) -> float | None:
    try:
        value = float(text.strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_location(
    location: str,
    policy: NormalizationPolicy = NormalizationPolicy.CLAMP,
) -> tuple[float, float]:
    """Parse ``"lat,lng"`` into a coordinate pair.

    A string that does not split into exactly two parts is always rejected.
    A coordinate that does not parse, or lies outside [-90, 90] / [-180, 180],
    is replaced by its default under CLAMP and rejected under STRICT.
    """
    parts = location.split(",")
    if len(parts) != 2:
        raise InputValidationError(
            "Location must contain exactly two comma-separated numbers",
            details={"field": "location", "value": location},
        )

    latitude = _parse_coordinate(parts[0])
    longitude = _parse_coordinate(parts[1])
    lat_ok = latitude is not None and -90.0 <= latitude <= 90.0
    lng_ok = longitude is not None and -180.0 <= longitude <= 180.0

    if lat_ok and lng_ok:
        return latitude, longitude  # type: ignore[return-value]

    if policy is NormalizationPolicy.STRICT:
        raise InputValidationError(
            "Location coordinates are not valid latitude/longitude values",
            details={"field": "location", "value": location},
        )

    resolved = (
        latitude if lat_ok else DEFAULT_LATITUDE,
        longitude if lng_ok else DEFAULT_LONGITUDE,
    )
    logger.warning(
        "Location fallback applied",
        extra={
            "location": location,
            "latitude_replaced": not lat_ok,
            "longitude_replaced": not lng_ok,
            "latitude": resolved[0],
            "longitude": resolved[1],
        },
    )
    return resolved  # type: ignore[return-value]


def _normalize_uint(
    value: float,
    maximum: int,
    default: int,
    field: str,
    policy: NormalizationPolicy,
) -> int:
    if isinstance(value, float) and math.isnan(value):
        if policy is NormalizationPolicy.STRICT:
            raise InputValidationError(f"{field} is not a number", details={"field": field})
        return default

    if policy is NormalizationPolicy.STRICT and not 0 <= value <= maximum:
        raise InputValidationError(
            f"{field} must be between 0 and {maximum}",
            details={"field": field, "value": value, "maximum": maximum},
        )

    if value <= 0:
        return 0
    if value >= maximum:
        return maximum
    return int(value)


def normalize_area_size(
    value: float, policy: NormalizationPolicy = NormalizationPolicy.CLAMP
) -> int:
    return _normalize_uint(value, U32_MAX, DEFAULT_AREA_SIZE, "area_size", policy)


def normalize_task_type(
    value: float, policy: NormalizationPolicy = NormalizationPolicy.CLAMP
) -> int:
    return _normalize_uint(value, U8_MAX, DEFAULT_TASK_TYPE, "task_type", policy)


def normalize_altitude(
    value: float, policy: NormalizationPolicy = NormalizationPolicy.CLAMP
) -> int:
    return _normalize_uint(value, U16_MAX, DEFAULT_ALTITUDE, "altitude", policy)


def _truncate_utf8(text: str, max_bytes: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    # Drop any partial trailing character.
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def normalize_description(
    text: str | None,
    policy: NormalizationPolicy = NormalizationPolicy.CLAMP,
) -> str:
    """Empty descriptions become "Drone task"; long ones are cut to 200 UTF-8 bytes."""
    if not text:
        return DEFAULT_DESCRIPTION

    size = len(text.encode("utf-8"))
    if size <= DESCRIPTION_MAX_BYTES:
        return text

    if policy is NormalizationPolicy.STRICT:
        raise InputValidationError(
            f"Description exceeds {DESCRIPTION_MAX_BYTES} bytes",
            details={"field": "description", "size": size},
        )
    return _truncate_utf8(text, DESCRIPTION_MAX_BYTES)


def coerce_hex_bytes(
    value: str,
    size: int,
    field: str,
    policy: NormalizationPolicy = NormalizationPolicy.CLAMP,
) -> bytes:
    """Decode hex text (optional ``0x`` prefix) into exactly ``size`` bytes.

    Shorter input is right-padded with zero bytes. Longer input is truncated
    under CLAMP and rejected under STRICT.
    """
    text = value.strip()
    if text[:2] in ("0x", "0X"):
        text = text[2:]

    if len(text) % 2 != 0 or not _HEX_PATTERN.match(text):
        raise InputValidationError(
            f"{field} is not valid hex",
            details={"field": field, "value": value},
        )

    raw = bytes.fromhex(text)
    if len(raw) > size:
        if policy is NormalizationPolicy.STRICT:
            raise InputValidationError(
                f"{field} is {len(raw)} bytes, expected at most {size}",
                details={"field": field, "size": len(raw), "expected": size},
            )
        return raw[:size]
    return raw.ljust(size, b"\x00")


def validate_payment_amount(amount: int) -> int:
    """Escrow amounts are base units in (0, 2^64-1]. Never clamped."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InputValidationError(
            "Payment amount must be an integer number of base units",
            details={"field": "payment_amount", "value": repr(amount)},
        )
    if not 0 < amount <= U64_MAX:
        raise InputValidationError(
            "Payment amount must be positive and fit in u64",
            details={"field": "payment_amount", "value": amount},
        )
    return amount
