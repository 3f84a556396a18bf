"""Shared low-level utilities."""

from directive_intake.utils.hashing import sha256_bytes, sha256_text

__all__ = ["sha256_bytes", "sha256_text"]
