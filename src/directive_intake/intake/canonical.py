"""
nexus-directive-intake — canonical encoder

File: src/directive_intake/intake/canonical.py
Last updated: 2026-10-18

Purpose
- Deterministic text encoding of JSON-like values, used as the input to every
  content fingerprint.

Functional requirements
- Mapping keys are emitted in ascending codepoint order at every depth, so the
  output never depends on construction or parse order.
- Sequences keep their order; scalars use their JSON text form.
- Floats render in ECMAScript ``Number#toString`` form: integral values drop
  the fraction (``1.0`` -> ``1``) and exponents appear only outside
  ``[1e-7, 1e21)`` (``1e-07`` -> ``1e-7``).
- Total over JSON-like input: never raises.

Non-functional requirements
- Compact output (no insignificant whitespace), UTF-8 text kept verbatim.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from typing import Final

_NULL: Final[str] = "null"


def encode(value: object) -> str:
    """Return the canonical text encoding of ``value``."""

    if value is None:
        return _NULL
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return encode(value.value)
    if isinstance(value, int):
        return str(int(value))
    if isinstance(value, float):
        # Non-finite numbers have no JSON form; they encode as null.
        if not math.isfinite(value):
            return _NULL
        return _encode_float(value)
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, Mapping):
        items = sorted(((str(key), item) for key, item in value.items()), key=_first)
        return "{" + ",".join(f"{_encode_string(key)}:{encode(item)}" for key, item in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(encode(item) for item in value) + "]"
    if isinstance(value, (set, frozenset)):
        return "[" + ",".join(sorted(encode(item) for item in value)) + "]"
    return _encode_string(str(value))


def _first(pair: tuple[str, object]) -> str:
    return pair[0]


def _encode_float(value: float) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    # repr() yields the shortest round-tripping digits, as ECMAScript does.
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(digit) for digit in digit_tuple).rstrip("0")
    point = int(exponent) + len(digit_tuple)
    count = len(digits)

    if count <= point <= 21:
        text = digits + "0" * (point - count)
    elif 0 < point <= 21:
        text = f"{digits[:point]}.{digits[point:]}"
    elif -6 < point <= 0:
        text = "0." + "0" * -point + digits
    else:
        mantissa = digits if count == 1 else f"{digits[0]}.{digits[1:]}"
        shift = point - 1
        text = f"{mantissa}e{'+' if shift > 0 else '-'}{abs(shift)}"
    return sign + text


def _encode_string(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


__all__ = ["encode"]
