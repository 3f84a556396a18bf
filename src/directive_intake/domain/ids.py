"""Canonical ID generation and validation for directive intake entities."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_ULID_MAX_VALUE: Final[int] = (1 << 128) - 1
_PREFIX_SEPARATOR: Final[str] = "-"

# Stable entity ID prefixes.
DIRECTIVE_ID_PREFIX: Final[str] = "dir"
TASK_ID_PREFIX: Final[str] = "task"
DECISION_ID_PREFIX: Final[str] = "dec"

# Planner task ids are display references only, never part of a fingerprint.
PLANNER_TASK_ID_PREFIX: Final[str] = "T-GPT"
PLANNER_TASK_SUFFIX_LENGTH: Final[int] = 4
_PLANNER_TASK_SUFFIX_BYTES: Final[int] = 3

_PLANNER_TASK_ID_RE: Final[re.Pattern[str]] = re.compile(
    r"^T-GPT-(\d{1,15})-([0-9A-HJKMNP-TV-Z]{4})$"
)

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]

__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "DECISION_ID_PREFIX",
    "DIRECTIVE_ID_PREFIX",
    "PLANNER_TASK_ID_PREFIX",
    "TASK_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_decision_id",
    "generate_directive_id",
    "generate_planner_task_id",
    "generate_prefixed_id",
    "generate_task_id",
    "generate_ulid",
    "is_planner_task_id",
    "parse_ulid_timestamp_ms",
    "validate_directive_id",
    "validate_prefixed_id",
    "validate_task_id",
    "validate_ulid",
]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = _resolve_timestamp_ms(timestamp_ms)
    random_bytes = _resolve_random_bytes(randbytes, ULID_RANDOM_BYTES)
    ulid_value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    return _encode_crockford_base32(ulid_value, ULID_LENGTH)


def validate_ulid(s: str) -> None:
    """Validate a ULID and raise ``ValueError`` with precise context on failure."""
    _ = _decode_validated_ulid(s)


def parse_ulid_timestamp_ms(s: str) -> int:
    """Extract the 48-bit millisecond timestamp from a validated ULID."""
    return _decode_validated_ulid(s) >> 80


def generate_prefixed_id(
    prefix: str,
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a stable prefixed ID in the form ``<prefix>-<ulid>``."""
    _validate_prefix(prefix)
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{prefix}{_PREFIX_SEPARATOR}{ulid}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    """Validate ``<prefix>-<ulid>`` format and enforce ``expected_prefix``."""
    _validate_prefix(expected_prefix)
    if not isinstance(id_str, str):
        raise ValueError(f"prefixed id must be a string, got {type(id_str).__name__}")

    expected_lead = f"{expected_prefix}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")

    ulid_part = id_str[len(expected_lead) :]
    try:
        validate_ulid(ulid_part)
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_directive_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(DIRECTIVE_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_directive_id(id_str: str) -> None:
    validate_prefixed_id(id_str, DIRECTIVE_ID_PREFIX)


def generate_decision_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(DECISION_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_task_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(TASK_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_task_id(id_str: str) -> None:
    validate_prefixed_id(id_str, TASK_ID_PREFIX)


def generate_planner_task_id(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate ``T-GPT-<epoch ms>-<4 char suffix>`` for proposals that lack a task id.

    The value is unique per call, not per content: the same payload validated twice
    receives two different ids.
    """
    ts_ms = _resolve_timestamp_ms(timestamp_ms)
    raw = _resolve_random_bytes(randbytes, _PLANNER_TASK_SUFFIX_BYTES)
    suffix_value = int.from_bytes(raw, "big") >> (
        _PLANNER_TASK_SUFFIX_BYTES * 8 - PLANNER_TASK_SUFFIX_LENGTH * 5
    )
    suffix = _encode_crockford_base32(suffix_value, PLANNER_TASK_SUFFIX_LENGTH)
    return f"{PLANNER_TASK_ID_PREFIX}{_PREFIX_SEPARATOR}{ts_ms}{_PREFIX_SEPARATOR}{suffix}"


def is_planner_task_id(value: object) -> bool:
    """Return ``True`` when ``value`` has the generated planner task id shape."""
    return isinstance(value, str) and _PLANNER_TASK_ID_RE.fullmatch(value) is not None


# ------------------------
# Internal helper routines
# ------------------------


def _resolve_timestamp_ms(timestamp_ms: int | None) -> int:
    resolved = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(resolved, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(resolved).__name__}")
    if not 0 <= resolved <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {resolved}"
        )
    return resolved


def _resolve_random_bytes(randbytes: _RandBytes | None, size: int) -> bytes:
    provider = secrets.token_bytes if randbytes is None else randbytes
    raw = provider(size)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != size:
        raise ValueError(f"randbytes must return exactly {size} bytes")
    return as_bytes


def _decode_validated_ulid(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")

    decoded = 0
    for index, char in enumerate(value):
        digit = _DECODE_TABLE.get(char.upper())
        if digit is None:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
        decoded = (decoded << 5) | digit

    if decoded > _ULID_MAX_VALUE:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")
    return decoded


def _encode_crockford_base32(value: int, length: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")

    mask = 0b11111
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & mask]
        working >>= 5

    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


def _validate_prefix(prefix: str) -> None:
    if not isinstance(prefix, str):
        raise ValueError(f"prefix must be a string, got {type(prefix).__name__}")
    if not prefix:
        raise ValueError("prefix must be non-empty")
    if _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"prefix must not contain '{_PREFIX_SEPARATOR}'")
