"""
Guardian agent: the observe -> decide -> act -> compensate loop.

The agent owns the risk policy state, the detector's carry-over buffer and the
treasury for one pool. Collaborators are injected; the agent only commits a
cooldown start or a treasury debit after the executor confirms success.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from .compensation import CompensationLedger, Treasury
from .config_loader import GuardianRuntimeConfig
from .constants import AGENT_CONSTANTS, BALANCED_RATIO, ActionType, TimelinePhase
from .detector import SandwichDetector
from .exceptions import PoolGuardianError
from .fixed_point import from_base_units, imbalance_ratio
from .interfaces import ActionExecutor, ChainObserver, SystemTimeProvider, TimeProvider
from .metrics import GuardianMetrics
from .risk_policy import RiskPolicy, classify_pool
from .types import Action, Compensation, LossAssessment, PoolSnapshot, TradeRecord
from .utils import format_pct, short_address, timestamp_to_iso

logger = logging.getLogger(__name__)


@dataclass
class TimelineEntry:
    phase: TimelinePhase
    message: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "message": self.message,
            "timestamp": timestamp_to_iso(self.timestamp),
        }


@dataclass
class TickReport:
    """What happened during one agent tick."""

    snapshot: PoolSnapshot
    action: Action
    executed: bool = False
    assessments: List[LossAssessment] = field(default_factory=list)
    paid: List[Compensation] = field(default_factory=list)


class GuardianAgent:
    """
    Polling guardian for a single pool.

    Ticks are serialized with an asyncio lock, so one decision is in flight
    at a time and treasury funding never interleaves with a payout.
    """

    def __init__(
        self,
        config: GuardianRuntimeConfig,
        observer: ChainObserver,
        executor: ActionExecutor,
        treasury: Optional[Treasury] = None,
        metrics: Optional[GuardianMetrics] = None,
        time_provider: Optional[TimeProvider] = None,
    ):
        self.config = config
        self.pool_id = config.agent.pool_id
        self.observer = observer
        self.executor = executor
        self.treasury = treasury or Treasury()
        self.metrics = metrics
        self.time_provider = time_provider or SystemTimeProvider()

        self.detector = SandwichDetector(config.detector)
        self.policy = RiskPolicy(config.risk, state_file=config.agent.state_file)
        if config.agent.state_file:
            self.policy.load_state()
        self.ledger = CompensationLedger(
            max_recent=AGENT_CONSTANTS["MAX_RECENT_ATTACKS"],
            log_dir=config.agent.ledger_dir,
        )

        self.timeline: Deque[TimelineEntry] = deque(
            maxlen=AGENT_CONSTANTS["MAX_TIMELINE_ENTRIES"]
        )
        self.last_snapshot: Optional[PoolSnapshot] = None
        self.tick_count = 0
        self.error_count = 0

        self._trade_buffer: List[TradeRecord] = []
        self._last_seq = -1
        self._processed_victims: Set[Tuple[str, int]] = set()
        self._lock = asyncio.Lock()

        if self.metrics:
            self.metrics.update_treasury(self.treasury.balance)

    async def tick(self) -> TickReport:
        """
        Run one observe -> decide -> act -> compensate pass.

        A snapshot no newer than the last one decided on skips decide and act;
        trades are still pulled and compensated.
        """
        async with self._lock:
            snapshot = await self.observer.fetch_snapshot(self.pool_id)

            if self._is_stale(snapshot):
                # Same pool state as the last decision: only new trades are handled
                self._record(
                    TimelinePhase.OBSERVE,
                    f"No new snapshot since {timestamp_to_iso(snapshot.timestamp)}",
                )
                report = TickReport(
                    snapshot=snapshot,
                    action=Action(ActionType.NONE, "Snapshot unchanged since last decision"),
                )
            else:
                self.last_snapshot = snapshot
                self._record(
                    TimelinePhase.OBSERVE,
                    f"A={snapshot.balance_a} B={snapshot.balance_b}",
                )

                action = self.policy.evaluate(snapshot)
                self._record(
                    TimelinePhase.DECIDE, f"{action.action_type.value}: {action.reason}"
                )
                if self.metrics:
                    self.metrics.record_decision(action.action_type.value)

                report = TickReport(snapshot=snapshot, action=action)
                if not action.is_none:
                    report.executed = await self._act(action, snapshot)

                self._update_risk_gauges(snapshot)

            new_trades = await self.observer.fetch_trades(self.pool_id, self._last_seq)
            if new_trades:
                await self._process_trades(new_trades, report)

            self.tick_count += 1
            return report

    async def fund_treasury(self, amount: int) -> int:
        """Credit the treasury. Serialized with payouts."""
        async with self._lock:
            balance = self.treasury.fund(amount)
        if self.metrics:
            self.metrics.update_treasury(balance)
        return balance

    async def run(
        self, stop_event: Optional[asyncio.Event] = None, max_ticks: Optional[int] = None
    ) -> None:
        """
        Poll at `poll_interval_seconds` until stop_event is set or max_ticks
        ticks have run. A failing tick is logged and counted; the next tick
        starts from unchanged state.
        """
        stop_event = stop_event or asyncio.Event()
        interval = self.config.agent.poll_interval_seconds
        mode = "DRY RUN" if self.config.agent.dry_run else "LIVE"
        logger.info(
            f"Guardian started for pool {self.pool_id} ({mode}), polling every {interval}s"
        )

        ticks = 0
        while not stop_event.is_set():
            try:
                await self.tick()
            except (PoolGuardianError, OSError) as e:
                self.error_count += 1
                logger.error(f"Tick failed: {e}")

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        if self.config.agent.state_file:
            self.policy.save_state()
        logger.info(f"Guardian stopped after {ticks} ticks ({self.error_count} errors)")

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of pool health, the last decision and MEV protection stats."""
        snapshot = self.last_snapshot
        state = self.policy.current_state()
        decimals = self.config.agent.token_decimals
        now = snapshot.timestamp if snapshot else self.time_provider.current_timestamp()

        pool: Dict[str, Any] = {"pool_id": self.pool_id}
        if snapshot:
            pool.update(
                {
                    "balance_a": str(from_base_units(snapshot.balance_a, decimals)),
                    "balance_b": str(from_base_units(snapshot.balance_b, decimals)),
                    "imbalance_ratio": state.imbalance_ratio,
                    "deviation": abs(state.imbalance_ratio - 0.5),
                    "updated_at": timestamp_to_iso(snapshot.timestamp),
                }
            )

        last_action = self.policy.last_action
        return {
            "pool": pool,
            "health": self._health(snapshot, state.volatility),
            "risk": {
                "volatility": state.volatility,
                "volatility_history": self.policy.history.volatility_history(),
                "price_history": self.policy.history.prices(),
                "cooldown_remaining_seconds": self.policy.cooldown_remaining(now),
                "last_protective_action_at": state.last_protective_action_at,
            },
            "last_action": last_action.to_dict() if last_action else None,
            "mev": self.ledger.get_stats(treasury_balance=self.treasury.balance),
            "timeline": [e.to_dict() for e in self.timeline],
            "ticks": self.tick_count,
            "errors": self.error_count,
        }

    def _health(self, snapshot: Optional[PoolSnapshot], volatility: float) -> Dict[str, Any]:
        """Condition of the pool under the configured thresholds, ignoring cooldown."""
        if snapshot is None:
            return {"status": None, "is_healthy": None}
        ratio = imbalance_ratio(snapshot.balance_a, snapshot.balance_b)
        deviation = abs(ratio - Decimal(BALANCED_RATIO))
        condition = classify_pool(deviation, volatility, self.config.risk)
        return {
            "status": condition.value,
            "is_healthy": condition is ActionType.NONE,
        }

    async def _act(self, action: Action, snapshot: PoolSnapshot) -> bool:
        result = await self.executor.execute(action)

        if not result.success:
            logger.warning(
                f"{action.action_type.value} not executed: {result.error}; state unchanged"
            )
            self._record(
                TimelinePhase.ACT, f"{action.action_type.value} failed: {result.error}"
            )
            if self.metrics:
                self.metrics.record_execution_failure(action.action_type.value)
            return False

        if action.action_type is ActionType.PROTECTIVE_WITHDRAW:
            self.policy.confirm_protective_withdraw(snapshot.timestamp)

        self._record(
            TimelinePhase.ACT,
            f"{action.action_type.value} amount={action.amount} tx={result.tx_hash}",
        )
        return True

    async def _process_trades(self, new_trades: List[TradeRecord], report: TickReport):
        new_trades = sorted(new_trades, key=lambda t: t.seq)
        batch = self._trade_buffer + new_trades
        assessments = self.detector.scan(batch, skip_victims=self._processed_victims)

        for assessment in assessments:
            self._processed_victims.add((assessment.pool_id, assessment.victim_seq))
            report.assessments.append(assessment)
            paid = await self._compensate(assessment)
            if paid is not None:
                report.paid.append(paid)

        self._last_seq = max(self._last_seq, new_trades[-1].seq)

        # Victims near the end of this batch may still be sandwiched by the next one
        keep = 2 * self.config.detector.lookback_window
        self._trade_buffer = batch[-keep:]
        oldest = self._trade_buffer[0].seq
        self._processed_victims = {
            key for key in self._processed_victims if key[1] >= oldest
        }

    async def _compensate(self, assessment: LossAssessment) -> Optional[Compensation]:
        compensation = self.treasury.propose(assessment, self.config.detector)
        self.ledger.record_detection(
            assessment, compensation, timestamp=self.time_provider.current_timestamp()
        )
        if self.metrics:
            self.metrics.record_sandwich(assessment.pool_id or self.pool_id)

        if compensation.amount <= 0:
            self._record(
                TimelinePhase.COMPENSATE,
                f"No refund for {short_address(assessment.victim)} "
                f"(loss={assessment.loss}, treasury={self.treasury.balance})",
            )
            return None

        result = await self.executor.pay_compensation(compensation)
        if not result.success:
            logger.warning(
                f"Refund to {short_address(compensation.recipient)} failed: "
                f"{result.error}; treasury unchanged"
            )
            self._record(
                TimelinePhase.COMPENSATE,
                f"Refund to {short_address(compensation.recipient)} failed",
            )
            if self.metrics:
                self.metrics.record_execution_failure("COMPENSATION")
            return None

        balance = self.treasury.debit(compensation)
        self.ledger.record_refund(compensation, tx_hash=result.tx_hash)
        self._record(
            TimelinePhase.COMPENSATE,
            f"Refunded {compensation.amount} to {short_address(compensation.recipient)} "
            f"tx={result.tx_hash}",
        )
        if self.metrics:
            self.metrics.record_compensation(
                assessment.pool_id or self.pool_id, compensation.amount
            )
            self.metrics.update_treasury(balance)
        return compensation

    def _is_stale(self, snapshot: PoolSnapshot) -> bool:
        last = self.last_snapshot
        return last is not None and snapshot.timestamp <= last.timestamp

    def _update_risk_gauges(self, snapshot: PoolSnapshot):
        state = self.policy.current_state()
        remaining = self.policy.cooldown_remaining(snapshot.timestamp)
        logger.debug(
            f"ratio={format_pct(state.imbalance_ratio)} "
            f"vol={format_pct(state.volatility)} cooldown={remaining:.0f}s"
        )
        if self.metrics:
            self.metrics.update_risk_state(
                self.pool_id, state.imbalance_ratio, state.volatility, remaining
            )

    def _record(self, phase: TimelinePhase, message: str):
        self.timeline.append(
            TimelineEntry(phase, message, self.time_provider.current_timestamp())
        )
