"""
Constant-product quote engine.

Prices are sqrtPriceX96 values (token B per token A). Integer math only, so
two quotes of the same trade at two prices can be diffed exactly.
"""

from .constants import Direction
from .fixed_point import Q192, price_x192


def quote(amount_in: int, sqrt_price_x96: int, direction: Direction) -> int:
    """
    Output amount for `amount_in` at a fixed price.

    A_TO_B: amount_in * price
    B_TO_A: amount_in / price

    Zero or negative amount or price quotes 0.
    """
    if amount_in <= 0 or sqrt_price_x96 <= 0:
        return 0

    p192 = price_x192(sqrt_price_x96)
    if direction is Direction.A_TO_B:
        return (amount_in * p192) >> 192
    return (amount_in * Q192) // p192
