"""
Collaborator boundary protocols.

The guardian core never talks to a chain directly. A ChainObserver supplies
trades and snapshots, an ActionExecutor turns Actions and Compensations into
transactions, and a TimeProvider supplies the clock so tests can run without
real time passing.
"""

import time
from typing import List, Protocol, runtime_checkable

from .types import Action, Compensation, ExecutionResult, PoolSnapshot, TradeRecord


@runtime_checkable
class ChainObserver(Protocol):
    """Source of ordered trades and periodic pool snapshots."""

    async def fetch_snapshot(self, pool_id: str) -> PoolSnapshot:
        """Current pool balances."""
        ...

    async def fetch_trades(self, pool_id: str, after_seq: int) -> List[TradeRecord]:
        """Trades with seq > after_seq, in sequence order."""
        ...


@runtime_checkable
class ActionExecutor(Protocol):
    """Sink for proposed actions and compensations."""

    async def execute(self, action: Action) -> ExecutionResult:
        ...

    async def pay_compensation(self, compensation: Compensation) -> ExecutionResult:
        ...


@runtime_checkable
class TimeProvider(Protocol):
    """Wall clock for timeline entries and ledger timestamps."""

    def current_timestamp(self) -> float:
        ...


class SystemTimeProvider:
    def current_timestamp(self) -> float:
        return time.time()


class DeterministicTimeProvider:
    """
    Manually driven clock for replays and tests.

    Starts at 2022-01-01 UTC and only moves when told to.
    """

    def __init__(self, start_time: float = 1640995200.0):
        self.now = start_time

    def current_timestamp(self) -> float:
        return self.now

    def advance_time(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self.now += seconds

    def set_time(self, timestamp: float) -> None:
        self.now = timestamp
