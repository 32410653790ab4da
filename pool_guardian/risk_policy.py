"""
Deterministic pool risk policy.

`decide` maps (RiskState, PoolSnapshot, RiskPolicyConfig) to exactly one
Action, evaluated in strict priority order:

1. PROTECTIVE_WITHDRAW when volatility and imbalance are both elevated,
   suppressed while the cooldown from the previous withdrawal is active
2. CROSS_CHAIN_EVACUATE when the deviation reaches the severe threshold
3. LOCAL_REBALANCE when the deviation reaches the imbalance threshold
4. NONE otherwise, or when the sized amount is below the minimum trade

Deviation tests and sizing use Decimal arithmetic on the snapshot balances;
only volatility is a float. `RiskPolicy` owns the mutable part (price history
and the cooldown timestamp) behind a lock.
"""

import json
import logging
import threading
from decimal import Decimal, ROUND_FLOOR
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .config_loader import RiskPolicyConfig
from .constants import BALANCED_RATIO, ActionType, Direction, Token
from .fixed_point import imbalance_ratio, pool_price, to_decimal
from .price_history import PriceHistory
from .types import Action, PoolSnapshot, RiskState
from .utils import atomic_write_json, get_current_timestamp, timestamp_to_iso

logger = logging.getLogger(__name__)

_HALF = Decimal(BALANCED_RATIO)


def cooldown_remaining(
    last_action_at: Optional[float], now: float, cooldown_seconds: float
) -> float:
    """Seconds left in the protective-withdraw cooldown, 0.0 when inactive."""
    if last_action_at is None:
        return 0.0
    return max(0.0, (last_action_at + cooldown_seconds) - now)


def overweight_token(balance_a: int, balance_b: int) -> Tuple[Token, Direction]:
    """Overweight side and the swap direction that sells it. Ties count as A."""
    if balance_a >= balance_b:
        return Token.A, Direction.A_TO_B
    return Token.B, Direction.B_TO_A


def removal_amount(balance_a: int, balance_b: int, target_deviation: Decimal) -> int:
    """
    Amount of the overweight token to remove so the deviation becomes
    `target_deviation`, solved from the current balances.

    A overweight, target ratio r:  x = A - r*B / (1 - r)
    B overweight, target ratio r:  y = B - A*(1 - r) / r
    """
    target_deviation = max(Decimal(0), target_deviation)
    a = Decimal(balance_a)
    b = Decimal(balance_b)

    if balance_a >= balance_b:
        target_ratio = _HALF + target_deviation
        amount = a - target_ratio * b / (1 - target_ratio)
    else:
        target_ratio = _HALF - target_deviation
        amount = b - a * (1 - target_ratio) / target_ratio

    return max(0, int(amount.to_integral_value(rounding=ROUND_FLOOR)))


def rebalance_amount(balance_a: int, balance_b: int, target_deviation: Decimal) -> int:
    """
    Same-pool swap size, in the overweight token, that moves the ratio to
    the target deviation with total value unchanged.
    """
    total = balance_a + balance_b
    ratio = imbalance_ratio(balance_a, balance_b)
    deviation = abs(ratio - _HALF)
    shift = max(Decimal(0), deviation - max(Decimal(0), target_deviation))
    amount = shift * Decimal(total)
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def classify_pool(
    deviation: Decimal, volatility: float, config: RiskPolicyConfig
) -> ActionType:
    """
    Which action class the pool's condition calls for, before cooldown and
    trade-size checks. Priority: protective withdraw, evacuation, rebalance.
    """
    imbalance_threshold = to_decimal(config.imbalance_threshold)
    if volatility > config.mev_volatility_threshold and deviation > imbalance_threshold:
        return ActionType.PROTECTIVE_WITHDRAW
    if deviation >= to_decimal(config.severe_threshold):
        return ActionType.CROSS_CHAIN_EVACUATE
    if deviation >= imbalance_threshold:
        return ActionType.LOCAL_REBALANCE
    return ActionType.NONE


def decide(
    state: RiskState, snapshot: PoolSnapshot, config: RiskPolicyConfig
) -> Action:
    """
    Propose one action for a pool snapshot. Pure and deterministic.

    The cooldown clock is `snapshot.timestamp`. A proposed
    PROTECTIVE_WITHDRAW does not start the cooldown; the caller commits
    `last_protective_action_at` once execution is confirmed.
    """
    balance_a, balance_b = snapshot.balance_a, snapshot.balance_b
    if balance_a + balance_b <= 0:
        return Action(ActionType.NONE, "Pool has no liquidity")

    ratio = imbalance_ratio(balance_a, balance_b)
    deviation = abs(ratio - _HALF)
    imbalance_threshold = to_decimal(config.imbalance_threshold)
    severe_threshold = to_decimal(config.severe_threshold)
    target_residual = to_decimal(config.target_residual_deviation)
    remaining = cooldown_remaining(
        state.last_protective_action_at, snapshot.timestamp, config.cooldown_seconds
    )
    token, direction = overweight_token(balance_a, balance_b)

    metrics = {
        "imbalance_ratio": float(ratio),
        "deviation": float(deviation),
        "volatility": state.volatility,
        "price": float(pool_price(balance_a, balance_b)),
        "cooldown_remaining_seconds": remaining,
    }

    condition = classify_pool(deviation, state.volatility, config)

    if condition is ActionType.PROTECTIVE_WITHDRAW:
        if remaining > 0:
            return Action(
                ActionType.NONE,
                f"Protective withdraw suppressed by cooldown ({remaining:.0f}s remaining)",
                metrics=metrics,
            )
        target = deviation - to_decimal(config.removal_step)
        amount = removal_amount(balance_a, balance_b, target)
        return _sized_action(
            ActionType.PROTECTIVE_WITHDRAW,
            f"MEV volatility {state.volatility:.2%} with deviation {deviation:.2%}",
            amount,
            config,
            token=token,
            metrics=metrics,
        )

    if condition is ActionType.CROSS_CHAIN_EVACUATE:
        amount = removal_amount(balance_a, balance_b, target_residual)
        return _sized_action(
            ActionType.CROSS_CHAIN_EVACUATE,
            f"Severe imbalance: deviation {deviation:.2%} >= {severe_threshold:.2%}",
            amount,
            config,
            token=token,
            metrics=metrics,
        )

    if condition is ActionType.LOCAL_REBALANCE:
        amount = rebalance_amount(balance_a, balance_b, target_residual)
        return _sized_action(
            ActionType.LOCAL_REBALANCE,
            f"Imbalance: deviation {deviation:.2%} >= {imbalance_threshold:.2%}",
            amount,
            config,
            direction=direction,
            token=token,
            metrics=metrics,
        )

    return Action(
        ActionType.NONE,
        f"Pool balanced: deviation {deviation:.2%} < {imbalance_threshold:.2%}",
        metrics=metrics,
    )


def _sized_action(
    action_type: ActionType,
    reason: str,
    amount: int,
    config: RiskPolicyConfig,
    direction: Optional[Direction] = None,
    token: Optional[Token] = None,
    metrics: Optional[Dict[str, float]] = None,
) -> Action:
    metrics = dict(metrics or {})
    metrics["sized_amount"] = float(amount)
    if amount < config.min_trade_amount or amount <= 0:
        return Action(
            ActionType.NONE,
            f"{action_type.value} amount {amount} below minimum trade "
            f"{config.min_trade_amount} ({reason})",
            metrics=metrics,
        )
    return Action(
        action_type,
        reason,
        amount=amount,
        direction=direction,
        token=token,
        metrics=metrics,
    )


def format_decision_log(action: Action, timestamp: Optional[float] = None) -> str:
    """Format a decision as a single-line log entry."""
    m = action.metrics
    parts = [
        f"Decision {action.action_type.value}",
        f"reason=[{action.reason}]",
    ]
    if not action.is_none:
        parts.append(f"amount={action.amount}")
        if action.token is not None:
            parts.append(f"token={action.token.value}")
        if action.direction is not None:
            parts.append(f"direction={action.direction.value}")

    parts.append("metrics:")
    parts.append(f"ratio={m.get('imbalance_ratio', 0.5):.4f}")
    parts.append(f"dev={m.get('deviation', 0):.4f}")
    parts.append(f"vol={m.get('volatility', 0):.4f}")
    if m.get("cooldown_remaining_seconds"):
        parts.append(f"cooldown={m['cooldown_remaining_seconds']:.0f}s")
    if timestamp is not None:
        parts.append(f"at={timestamp_to_iso(timestamp)}")

    return " ".join(parts)


class RiskPolicy:
    """
    Owner of the mutable risk state for one pool.

    Keeps the price history and the protective-withdraw cooldown timestamp.
    Every read-modify-write goes through one lock, so two decisions are never
    in flight against the same state.
    """

    def __init__(
        self,
        config: Optional[RiskPolicyConfig] = None,
        state_file: Optional[Union[str, Path]] = None,
    ):
        self.config = config or RiskPolicyConfig()
        self.history = PriceHistory(self.config.price_history_size)
        self.state_file = Path(state_file) if state_file else None
        self.last_protective_action_at: Optional[float] = None
        self.last_action: Optional[Action] = None
        self._last_ratio = 0.5
        self._lock = threading.Lock()

    def observe(self, snapshot: PoolSnapshot) -> RiskState:
        """Record the snapshot's pool price and return the current RiskState."""
        with self._lock:
            return self._observe(snapshot)

    def evaluate(self, snapshot: PoolSnapshot) -> Action:
        """Observe the snapshot and propose an action. Does not start a cooldown."""
        with self._lock:
            state = self._observe(snapshot)
            action = decide(state, snapshot, self.config)
            self.last_action = action

        if action.reason.startswith("Protective withdraw suppressed"):
            logger.info(action.reason)
        logger.info(format_decision_log(action, snapshot.timestamp))
        return action

    def current_state(self) -> RiskState:
        with self._lock:
            return self._state(self._last_ratio)

    def confirm_protective_withdraw(self, executed_at: float) -> None:
        """Commit the cooldown start after the executor confirmed the withdrawal."""
        with self._lock:
            self.last_protective_action_at = executed_at
        logger.info(
            f"Protective withdraw confirmed at {timestamp_to_iso(executed_at)}, "
            f"cooldown {self.config.cooldown_seconds:.0f}s"
        )
        if self.state_file:
            self.save_state()

    def cooldown_remaining(self, now: Optional[float] = None) -> float:
        now = get_current_timestamp() if now is None else now
        with self._lock:
            return cooldown_remaining(
                self.last_protective_action_at, now, self.config.cooldown_seconds
            )

    def clear_cooldown(self) -> bool:
        """Drop any active cooldown. Returns True if one was set."""
        with self._lock:
            was_set = self.last_protective_action_at is not None
            self.last_protective_action_at = None
        if was_set:
            logger.info("Protective withdraw cooldown cleared")
            if self.state_file:
                self.save_state()
        return was_set

    def save_state(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Persist cooldown and price history atomically."""
        target = Path(path) if path else self.state_file
        if target is None:
            raise ValueError("No state file configured")

        with self._lock:
            data = {
                "last_protective_action_at": self.last_protective_action_at,
                "cooldown_seconds": self.config.cooldown_seconds,
                "prices": self.history.prices(),
            }
        saved = atomic_write_json(target, data)
        logger.debug(f"Saved risk policy state to {saved}")
        return saved

    def load_state(self, path: Optional[Union[str, Path]] = None) -> bool:
        """
        Restore state written by save_state.

        Returns False when the file is missing, unreadable or not shaped like
        save_state output; the file is then logged and ignored and the
        in-memory state is left as it was.
        """
        target = Path(path) if path else self.state_file
        if target is None or not target.exists():
            logger.info(f"No risk policy state file found at {target}")
            return False

        try:
            with open(target, "r") as f:
                data: Dict[str, Any] = json.load(f)
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")

            last = data.get("last_protective_action_at")
            last = float(last) if last is not None else None
            prices = data.get("prices", [])
            if not isinstance(prices, list):
                raise TypeError(f"prices must be a list, got {type(prices).__name__}")
            prices = [float(p) for p in prices]
        except (TypeError, ValueError, OSError) as e:
            # JSONDecodeError is a ValueError
            logger.error(f"Ignoring unreadable risk policy state file {target}: {e}")
            return False

        with self._lock:
            self.last_protective_action_at = last
            self.history.clear()
            for price in prices:
                self.history.add(price)

        logger.info(
            f"Loaded risk policy state from {target} "
            f"(cooldown_start={self.last_protective_action_at}, "
            f"prices={self.history.count})"
        )
        return True

    def _observe(self, snapshot: PoolSnapshot) -> RiskState:
        if snapshot.balance_a + snapshot.balance_b > 0:
            self.history.add(float(pool_price(snapshot.balance_a, snapshot.balance_b)))
        self._last_ratio = float(imbalance_ratio(snapshot.balance_a, snapshot.balance_b))
        return self._state(self._last_ratio)

    def _state(self, ratio: float) -> RiskState:
        return RiskState(
            imbalance_ratio=ratio,
            volatility=self.history.volatility(),
            last_protective_action_at=self.last_protective_action_at,
        )
