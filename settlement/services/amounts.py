from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

# 1 XMR = 10^12 atomic units (piconero)
ATOMIC_EXPONENT = 12
ATOMIC_UNITS_PER_XMR = 10 ** ATOMIC_EXPONENT

_QUANTUM = Decimal(1).scaleb(-ATOMIC_EXPONENT)

AmountLike = Union[Decimal, str, int, float]

def _as_decimal(amount: AmountLike) -> Decimal:
    # floats go through str() so 0.05 stays 0.05 instead of its binary expansion
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Invalid XMR amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid XMR amount: {amount!r}")
    return value

def to_atomic(amount: AmountLike) -> int:
    """Convert an XMR amount to atomic units, rounding half-up to the nearest unit"""
    value = _as_decimal(amount) * ATOMIC_UNITS_PER_XMR
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))

def from_atomic(atomic: Union[int, str]) -> Decimal:
    """Convert atomic units to XMR (display only, never compare the result)"""
    try:
        atomic = int(atomic)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid atomic amount: {atomic!r}")
    return (Decimal(atomic) / ATOMIC_UNITS_PER_XMR).quantize(_QUANTUM)

def format_xmr(atomic: Union[int, str]) -> str:
    """Human-readable XMR string without trailing zeros, e.g. '0.05'"""
    return format(from_atomic(atomic).normalize(), "f")
