"""
nexus-directive-intake — hashing utilities

File: src/directive_intake/utils/hashing.py
Last updated: 2026-10-18

Purpose
- Provide deterministic SHA-256 helpers used by content fingerprints and
  migration checksums.

Non-functional requirements
- Standard library only; output is lowercase 64-char hex on every platform.
"""

from __future__ import annotations

import hashlib
import string

_SHA256_HEX_LENGTH = 64
_HEX_DIGITS = frozenset(string.hexdigits.lower())

__all__ = [
    "is_sha256_hex",
    "sha256_bytes",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def is_sha256_hex(value: object) -> bool:
    """Return ``True`` for a lowercase 64-character hex digest."""

    if not isinstance(value, str) or len(value) != _SHA256_HEX_LENGTH:
        return False
    return all(char in _HEX_DIGITS for char in value)
