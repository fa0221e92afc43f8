"""Fixed-point helpers shared by the ledger.

All amounts are plain Python ints scaled by a power of ten:
- quantities (outcome tokens) by `QUANTITY_SCALE`
- prices (collateral per token) by `PRICE_SCALE`
- collateral amounts (P&L, fees, volume) by `COLLATERAL_SCALE`

`trunc_div` is the only way a scale is reduced. It truncates toward zero, which
differs from Python's floor division for negative operands.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_DOWN
from typing import Union

QUANTITY_DECIMALS = 6
PRICE_DECIMALS = 6
COLLATERAL_DECIMALS = 6

QUANTITY_SCALE = 10 ** QUANTITY_DECIMALS
PRICE_SCALE = 10 ** PRICE_DECIMALS
COLLATERAL_SCALE = 10 ** COLLATERAL_DECIMALS

Number = Union[int, str, Decimal]


def trunc_div(numerator: int, denominator: int) -> int:
    """Integer division truncating toward zero."""
    if denominator == 0:
        raise ZeroDivisionError("trunc_div by zero")
    q = abs(numerator) // abs(denominator)
    return -q if (numerator < 0) != (denominator < 0) else q


def to_fixed(value: Number, decimals: int) -> int:
    """Scale a human value ("0.55", Decimal, int) into a fixed-point int.

    Digits beyond `decimals` are truncated. Floats are refused since their
    binary representation would leak into the result.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"unsupported fixed-point input: {value!r}")
    if isinstance(value, int):
        return value * 10 ** decimals
    d = Decimal(value) * (Decimal(10) ** decimals)
    return int(d.to_integral_value(rounding=ROUND_DOWN))


def to_decimal(value: int, decimals: int) -> Decimal:
    """Scaled int -> Decimal, exact."""
    return Decimal(value).scaleb(-decimals)


def price_from_legs(collateral_amount: int, token_amount: int) -> int:
    """Fill price at PRICE_SCALE from the two legs of a matched order.

    Both legs are raw base units (collateral and outcome tokens share 6 decimals).
    """
    if token_amount <= 0:
        raise ValueError("token leg must be positive")
    return trunc_div(collateral_amount * PRICE_SCALE, token_amount)
