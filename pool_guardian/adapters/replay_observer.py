"""
Replay observer

Feeds recorded pool activity from a JSON-lines file. Each line is an event:

    {"type": "snapshot", "balance_a": "...", "balance_b": "...", "timestamp": 1700000000}
    {"type": "trade", "trader": "0x..", "direction": "AtoB", "seq": 7,
     "price_before": "1.0", "price_after": "1.01", "amount": "10"}

Trade prices are human prices (token B per token A) unless given as
`sqrt_price_before` / `sqrt_price_after` sqrtPriceX96 integers. Trade amounts
are human `amount` or base-unit `amount_in`. Snapshot balances are human
unless given as `balance_a_raw` / `balance_b_raw`.

Every fetch_snapshot call advances to the next snapshot and releases the
trades recorded before it to fetch_trades.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..constants import Direction
from ..exceptions import DataError
from ..fixed_point import price_to_sqrt_price_x96, to_base_units
from ..types import PoolSnapshot, TradeRecord

logger = logging.getLogger(__name__)


class ReplayObserver:
    """ChainObserver backed by an in-memory event list."""

    def __init__(
        self,
        events: List[Dict[str, Any]],
        pool_id: str = "default",
        token_decimals: int = 18,
        source: str = "<memory>",
    ):
        self.pool_id = pool_id
        self.token_decimals = token_decimals
        self.source = source
        self._events = events
        self._cursor = 0
        self._released: List[TradeRecord] = []
        self._last_snapshot: Optional[PoolSnapshot] = None

    @classmethod
    def from_file(
        cls, path: Union[str, Path], pool_id: str = "default", token_decimals: int = 18
    ) -> "ReplayObserver":
        path = Path(path)
        if not path.exists():
            raise DataError(f"Replay file not found: {path}", source=str(path))

        events = []
        with open(path, "r") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError as e:
                    raise DataError(
                        f"Invalid JSON on line {line_no}: {e}",
                        source=f"{path}:{line_no}",
                    )

        logger.info(f"Loaded {len(events)} replay events from {path}")
        return cls(events, pool_id=pool_id, token_decimals=token_decimals, source=str(path))

    @property
    def exhausted(self) -> bool:
        return self._cursor >= len(self._events)

    async def fetch_snapshot(self, pool_id: str) -> PoolSnapshot:
        """
        Advance to the next snapshot event.

        Once the file is exhausted any trailing trades are released and the
        last snapshot is returned again with its original timestamp.
        """
        while self._cursor < len(self._events):
            event = self._events[self._cursor]
            self._cursor += 1
            kind = event.get("type")

            if kind == "trade":
                self._released.append(self._parse_trade(event))
            elif kind == "snapshot":
                self._last_snapshot = self._parse_snapshot(event)
                return self._last_snapshot
            else:
                raise DataError(
                    f"Unknown replay event type: {kind!r}",
                    source=f"{self.source}#{self._cursor}",
                )

        if self._last_snapshot is None:
            raise DataError("Replay contains no snapshot events", source=self.source)
        return self._last_snapshot

    async def fetch_trades(self, pool_id: str, after_seq: int) -> List[TradeRecord]:
        return [
            t for t in self._released if t.pool_id == pool_id and t.seq > after_seq
        ]

    def all_trades(self) -> List[TradeRecord]:
        """Every trade event in the file, regardless of cursor position."""
        return [self._parse_trade(e) for e in self._events if e.get("type") == "trade"]

    def _parse_snapshot(self, event: Dict[str, Any]) -> PoolSnapshot:
        try:
            return PoolSnapshot(
                balance_a=self._amount(event, "balance_a"),
                balance_b=self._amount(event, "balance_b"),
                timestamp=float(event["timestamp"]),
                pool_id=event.get("pool_id", self.pool_id),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise DataError(
                f"Malformed snapshot event: {e}",
                source=f"{self.source}#{self._cursor}",
            )

    def _parse_trade(self, event: Dict[str, Any]) -> TradeRecord:
        try:
            if "amount_in" in event:
                amount_in = int(event["amount_in"])
            else:
                amount_in = to_base_units(event.get("amount", "0"), self.token_decimals)
            return TradeRecord(
                trader=str(event["trader"]),
                direction=Direction(event["direction"]),
                price_before=_sqrt_price(event, "before"),
                price_after=_sqrt_price(event, "after"),
                seq=int(event["seq"]),
                amount_in=amount_in,
                pool_id=event.get("pool_id", self.pool_id),
                tx_hash=event.get("tx_hash"),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise DataError(
                f"Malformed trade event: {e}",
                source=f"{self.source}#{self._cursor}",
            )

    def _amount(self, event: Dict[str, Any], name: str) -> int:
        raw_key = f"{name}_raw"
        if raw_key in event:
            return int(event[raw_key])
        return to_base_units(event[name], self.token_decimals)


def _sqrt_price(event: Dict[str, Any], which: str) -> int:
    sqrt_key = f"sqrt_price_{which}"
    if sqrt_key in event:
        return int(event[sqrt_key])
    return price_to_sqrt_price_x96(str(event[f"price_{which}"]))
