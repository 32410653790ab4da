"""
Rolling pool price history and the volatility heuristic.

Volatility is the coefficient of variation (population sigma over mean) of
the last N observed pool prices. It is a float heuristic used only to gate
protective withdrawals; no amount is ever derived from it.
"""

from collections import deque
from typing import Iterable, List, Optional


class PriceHistory:
    """
    Fixed-size ring buffer of pool prices (token B per token A).

    Oldest samples are evicted once `capacity` is reached.
    """

    def __init__(self, capacity: int = 20, prices: Optional[Iterable[float]] = None):
        if capacity < 2:
            raise ValueError("PriceHistory capacity must be at least 2")
        self.capacity = capacity
        self._prices: deque = deque(maxlen=capacity)
        for price in prices or ():
            self.add(price)

    def add(self, price: float) -> None:
        """Record a pool price observation."""
        self._prices.append(float(price))

    @property
    def count(self) -> int:
        return len(self._prices)

    @property
    def is_ready(self) -> bool:
        """Whether the window is fully populated."""
        return len(self._prices) >= self.capacity

    def prices(self) -> List[float]:
        """Stored prices, oldest first."""
        return list(self._prices)

    def latest(self) -> Optional[float]:
        return self._prices[-1] if self._prices else None

    def get_mean(self) -> Optional[float]:
        """Mean of the window, or None if fewer than 2 observations."""
        if len(self._prices) < 2:
            return None
        return sum(self._prices) / len(self._prices)

    def get_sigma(self) -> Optional[float]:
        """Population standard deviation, or None if fewer than 2 observations."""
        return _sigma(list(self._prices))

    def volatility(self) -> float:
        """sigma / mean of the window. 0.0 with fewer than 2 samples or a zero mean."""
        return _coefficient_of_variation(list(self._prices))

    def volatility_history(self) -> List[float]:
        """
        Volatility over each growing prefix of the window.

        Element i is the volatility of the first i+1 samples, so the series
        has one entry per stored price and starts at 0.0.
        """
        samples = list(self._prices)
        return [_coefficient_of_variation(samples[: i + 1]) for i in range(len(samples))]

    def clear(self) -> None:
        self._prices.clear()


def _sigma(samples: List[float]) -> Optional[float]:
    n = len(samples)
    if n < 2:
        return None
    mean = sum(samples) / n
    variance = sum((x - mean) ** 2 for x in samples) / n
    return variance ** 0.5


def _coefficient_of_variation(samples: List[float]) -> float:
    sigma = _sigma(samples)
    if sigma is None:
        return 0.0
    mean = sum(samples) / len(samples)
    if mean == 0:
        return 0.0
    return sigma / mean
