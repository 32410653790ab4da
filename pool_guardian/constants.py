"""
Constants and enums for the pool guardian.

Centralizes string literals and the default values of every operator-tunable
threshold so the detection and decision code never hardcodes them.
"""

from enum import Enum


class Direction(Enum):
    """Swap direction on a two-asset pool."""

    A_TO_B = "AtoB"
    B_TO_A = "BtoA"

    @property
    def opposite(self) -> "Direction":
        return Direction.B_TO_A if self is Direction.A_TO_B else Direction.A_TO_B


class Token(Enum):
    """Pool side."""

    A = "A"
    B = "B"


class ActionType(Enum):
    """Closed set of actions the risk policy can propose."""

    NONE = "NONE"
    LOCAL_REBALANCE = "LOCAL_REBALANCE"
    CROSS_CHAIN_EVACUATE = "CROSS_CHAIN_EVACUATE"
    PROTECTIVE_WITHDRAW = "PROTECTIVE_WITHDRAW"


class TimelinePhase(Enum):
    """Agent loop phases recorded in the timeline."""

    OBSERVE = "OBSERVE"
    DECIDE = "DECIDE"
    ACT = "ACT"
    COMPENSATE = "COMPENSATE"


# Balanced pool holds half of its value in each asset
BALANCED_RATIO = "0.5"

BASIS_POINTS_DENOMINATOR = 10000

# Default configuration constants (human units; amounts in whole tokens)
DEFAULT_CONFIG = {
    "IMBALANCE_THRESHOLD": 0.10,
    "SEVERE_THRESHOLD": 0.25,
    "TARGET_RESIDUAL_DEVIATION": 0.09,
    "MEV_VOLATILITY_THRESHOLD": 0.15,
    "REMOVAL_STEP": 0.05,
    "COOLDOWN_DURATION": 300,
    "REFUND_BPS": 3000,
    "MAX_PER_EVENT": "0.1",
    "MIN_PRICE_MOVE": "0.02",
    "MIN_TRADE_AMOUNT": "0.01",
    "LOOKBACK_WINDOW": 1,
    "PRICE_HISTORY_SIZE": 20,
    "POLL_INTERVAL_SECONDS": 5.0,
    "TOKEN_DECIMALS": 18,
}

# Agent bookkeeping limits
AGENT_CONSTANTS = {
    "MAX_TIMELINE_ENTRIES": 50,
    "MAX_RECENT_ATTACKS": 10,
    "DEFAULT_STATE_FILE": "logs/guardian/policy_state.json",
}

METRICS_CONSTANTS = {
    "METRIC_PREFIX": "pool_guardian",
    "DEFAULT_PORT": 8000,
    "DEFAULT_PATH": "/metrics",
}
