"""
Single source of truth for fixed-point price and amount conversions.

Conversion policy:
- Amounts: int in token base units (e.g. wei for 18-decimal tokens)
- Prices: sqrtPriceX96 int, sqrt(token B per token A) scaled by 2**96
- Human-facing values: Decimal with 50 digits precision
- No inline 2**96 or /10000 elsewhere - use the helpers below
"""

import logging
import math
from decimal import Decimal, ROUND_FLOOR, getcontext
from typing import Union

from .constants import BASIS_POINTS_DENOMINATOR

# Set high precision for all decimal operations
getcontext().prec = 50

logger = logging.getLogger(__name__)

Q96 = 1 << 96
Q192 = 1 << 192

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    """Convert at the edge. Floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


# ============================================================================
# Amounts
# ============================================================================


def to_base_units(amount: Number, decimals: int = 18) -> int:
    """Convert a human token amount to integer base units (floored)."""
    scaled = to_decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_base_units(amount: int, decimals: int = 18) -> Decimal:
    """Convert integer base units to a human Decimal amount."""
    return Decimal(int(amount)) / (Decimal(10) ** decimals)


def apply_bps(amount: int, bps: int) -> int:
    """amount * bps / 10000, floored. Negative amounts yield 0."""
    if amount <= 0 or bps <= 0:
        return 0
    return amount * bps // BASIS_POINTS_DENOMINATOR


# ============================================================================
# Prices
# ============================================================================


def price_to_sqrt_price_x96(price: Number) -> int:
    """Encode a human price (token B per token A) as sqrtPriceX96."""
    p = to_decimal(price)
    if p <= 0:
        return 0
    num, den = p.as_integer_ratio()
    return math.isqrt(num * Q192 // den)


def sqrt_price_x96_to_price(sqrt_price_x96: int) -> Decimal:
    """Decode sqrtPriceX96 back to a human Decimal price."""
    if sqrt_price_x96 <= 0:
        return Decimal(0)
    return Decimal(price_x192(sqrt_price_x96)) / Decimal(Q192)


def price_x192(sqrt_price_x96: int) -> int:
    """Square a sqrtPriceX96, giving the price scaled by 2**192."""
    if sqrt_price_x96 <= 0:
        return 0
    return sqrt_price_x96 * sqrt_price_x96


def price_delta_to_x192(delta: Number) -> int:
    """Scale a human price difference into the X192 domain (floored)."""
    d = to_decimal(delta)
    if d <= 0:
        return 0
    num, den = d.as_integer_ratio()
    return num * Q192 // den


def pool_price(balance_a: int, balance_b: int) -> Decimal:
    """Spot price of the pool in token B per token A. 1.0 for an empty A side."""
    if balance_a <= 0:
        return Decimal(1)
    return Decimal(balance_b) / Decimal(balance_a)


def imbalance_ratio(balance_a: int, balance_b: int) -> Decimal:
    """Fraction of the pool held in token A. 0.5 for an empty pool."""
    total = balance_a + balance_b
    if total <= 0:
        return Decimal("0.5")
    return Decimal(balance_a) / Decimal(total)
