"""
Fixed-point conversion between ledger base units and display units.

The ledger stores amounts as integers with 10^8 base units per major unit.
Conversions go through Decimal so 250000000 -> 2.5 -> 250000000 holds exactly.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Union

BASE_UNITS_PER_MAJOR = 10**8
DECIMALS = 8
U64_MAX = 2**64 - 1

_SCALE = Decimal(BASE_UNITS_PER_MAJOR)
_QUANTUM = Decimal(1).scaleb(-DECIMALS)

Amount = Union[Decimal, int, float, str]


def to_int_safe(val: Any) -> int:
    """Coerce a ledger integer (u64 values arrive as JSON strings) to int."""
    if isinstance(val, bool):
        raise ValueError(f"not an integer amount: {val!r}")
    if isinstance(val, int):
        return val
    if isinstance(val, str) and val.strip().lstrip("-").isdigit():
        return int(val.strip())
    raise ValueError(f"not an integer amount: {val!r}")


def to_major(base: Any) -> Decimal:
    """Base units -> Decimal major units."""
    units = to_int_safe(base)
    if units < 0:
        raise ValueError(f"negative amount: {units}")
    return Decimal(units) / _SCALE


def to_base(major: Amount) -> int:
    """
    Major units -> integer base units.

    Floats are routed through str() so 2.5 becomes Decimal("2.5") rather than
    its binary approximation. Digits beyond 8 decimals are truncated.
    """
    if isinstance(major, bool):
        raise ValueError(f"invalid amount: {major!r}")
    try:
        dec = major if isinstance(major, Decimal) else Decimal(str(major))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {major!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"invalid amount: {major!r}")
    if dec < 0:
        raise ValueError(f"negative amount: {major!r}")
    try:
        base = int((dec.quantize(_QUANTUM, rounding=ROUND_DOWN) * _SCALE).to_integral_value())
    except InvalidOperation as exc:
        # quantize needs more digits than the context precision allows
        raise ValueError(f"amount out of range: {major!r}") from exc
    if base > U64_MAX:
        raise ValueError(f"amount exceeds u64: {major!r}")
    return base
