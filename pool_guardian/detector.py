"""
Sandwich attack detection and oracle-free loss measurement.

A sandwich is an attacker trade, a victim trade in the same direction, and an
attacker trade in the opposite direction. The victim's loss is the difference
between quoting its input at the price before the attacker's front-run and at
the price it actually executed against.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .config_loader import DetectorConfig
from .constants import Direction
from .exceptions import InvalidInputError
from .fixed_point import price_delta_to_x192, price_x192
from .quote import quote
from .types import LossAssessment, SandwichCandidate, TradeRecord
from .utils import short_address

logger = logging.getLogger(__name__)


def is_sandwich(candidate: SandwichCandidate) -> bool:
    """
    Pattern predicate. All four must hold:

    - first and third trades come from the same trader (the attacker)
    - the middle trade comes from someone else (self-trades never qualify)
    - attacker front-run and victim trade share a direction
    - the attacker's back-run reverses it
    """
    first, second, third = candidate.first, candidate.second, candidate.third
    return (
        first.trader == third.trader
        and first.trader != second.trader
        and first.direction == second.direction
        and third.direction is first.direction.opposite
    )


class SandwichDetector:
    """
    Stateless sandwich detector.

    Every method is a pure function of its arguments and the configuration;
    the only counter kept is `rejected_candidates`, for diagnostics.
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        if self.config.lookback_window < 1:
            raise ValueError("lookback_window must be at least 1")
        self._min_move_x192 = price_delta_to_x192(self.config.min_price_move)
        self.rejected_candidates = 0

    def compute_loss(
        self,
        fair_price: int,
        exec_price: int,
        amount_in: int,
        direction: Direction,
    ) -> int:
        """
        Loss in output-token base units for a trade of `amount_in`.

        fair_price is the sqrtPriceX96 before the attacker's first trade,
        exec_price the sqrtPriceX96 before the victim's trade. Moves smaller
        than min_price_move, zero amounts and zero prices all yield 0.
        """
        if amount_in <= 0 or fair_price <= 0 or exec_price <= 0:
            return 0

        move = abs(price_x192(fair_price) - price_x192(exec_price))
        if move < self._min_move_x192:
            return 0

        expected_out = quote(amount_in, fair_price, direction)
        actual_out = quote(amount_in, exec_price, direction)
        return max(0, expected_out - actual_out)

    def assess(self, candidate: SandwichCandidate) -> Optional[LossAssessment]:
        """LossAssessment for a matching candidate, None otherwise."""
        if not is_sandwich(candidate):
            return None

        victim_trade = candidate.second
        fair_price = candidate.first.price_before
        exec_price = victim_trade.price_before
        direction = victim_trade.direction

        expected_out = quote(victim_trade.amount_in, fair_price, direction)
        actual_out = quote(victim_trade.amount_in, exec_price, direction)
        loss = self.compute_loss(
            fair_price, exec_price, victim_trade.amount_in, direction
        )

        return LossAssessment(
            victim=candidate.victim,
            attacker=candidate.attacker,
            expected_out=expected_out,
            actual_out=actual_out,
            loss=loss,
            pool_id=victim_trade.pool_id,
            victim_seq=victim_trade.seq,
            direction=direction,
        )

    def iter_candidates(
        self, trades: Iterable[TradeRecord]
    ) -> Iterator[SandwichCandidate]:
        """
        Yield every candidate triple inside the lookback window.

        Trades are grouped per pool and kept in arrival order. For each
        middle trade the nearest neighbours are tried first. Triples with
        non-monotonic sequence numbers are rejected and skipped.
        """
        window = self.config.lookback_window

        for pool_trades in _group_by_pool(trades).values():
            n = len(pool_trades)
            for i in range(1, n - 1):
                second = pool_trades[i]
                for j in range(i - 1, max(-1, i - window - 1), -1):
                    for k in range(i + 1, min(n, i + window + 1)):
                        try:
                            yield SandwichCandidate.create(
                                pool_trades[j], second, pool_trades[k]
                            )
                        except InvalidInputError as e:
                            self.rejected_candidates += 1
                            logger.debug(f"Rejected candidate: {e}")

    def scan(
        self,
        trades: Iterable[TradeRecord],
        skip_victims: Optional[Set[Tuple[str, int]]] = None,
    ) -> List[LossAssessment]:
        """
        Detect sandwiches in a batch of trades.

        At most one assessment is produced per victim trade (the nearest
        matching attacker pair). Victims listed in `skip_victims` as
        (pool_id, seq) are ignored, so overlapping batches never double count.
        """
        skip_victims = skip_victims or set()
        assessed: Dict[Tuple[str, int], LossAssessment] = {}

        for candidate in self.iter_candidates(trades):
            key = (candidate.second.pool_id, candidate.second.seq)
            if key in assessed or key in skip_victims:
                continue

            assessment = self.assess(candidate)
            if assessment is None:
                continue

            assessed[key] = assessment
            logger.info(
                f"Sandwich detected: attacker={short_address(assessment.attacker)} "
                f"victim={short_address(assessment.victim)} "
                f"seq={assessment.victim_seq} loss={assessment.loss}"
            )

        return list(assessed.values())


def _group_by_pool(trades: Iterable[TradeRecord]) -> "OrderedDict[str, List[TradeRecord]]":
    grouped: "OrderedDict[str, List[TradeRecord]]" = OrderedDict()
    for trade in trades:
        grouped.setdefault(trade.pool_id, []).append(trade)
    return grouped
