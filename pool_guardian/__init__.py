"""
Pool Guardian.

Liquidity pool protection for a two-asset AMM: detects sandwich attacks from
price displacement alone, refunds victims within bounded caps from an
insurance treasury, and proposes deterministic rebalance, evacuation or
protective-withdraw actions from the pool's imbalance and volatility.
"""

from pool_guardian.version import __version__

PROJECT_NAME = "pool-guardian"
VERSION = __version__

# Export main components for easier imports
from pool_guardian.agent import GuardianAgent, TickReport
from pool_guardian.compensation import (
    CompensationLedger,
    Treasury,
    compute_compensation,
)
from pool_guardian.config_loader import (
    GuardianRuntimeConfig,
    get_default_config,
    load_guardian_config,
)
from pool_guardian.constants import ActionType, Direction, Token
from pool_guardian.detector import SandwichDetector, is_sandwich
from pool_guardian.quote import quote
from pool_guardian.risk_policy import RiskPolicy, decide
from pool_guardian.types import (
    Action,
    Compensation,
    LossAssessment,
    PoolSnapshot,
    RiskState,
    SandwichCandidate,
    TradeRecord,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "GuardianAgent",
    "TickReport",
    "CompensationLedger",
    "Treasury",
    "compute_compensation",
    "GuardianRuntimeConfig",
    "get_default_config",
    "load_guardian_config",
    "ActionType",
    "Direction",
    "Token",
    "SandwichDetector",
    "is_sandwich",
    "quote",
    "RiskPolicy",
    "decide",
    "Action",
    "Compensation",
    "LossAssessment",
    "PoolSnapshot",
    "RiskState",
    "SandwichCandidate",
    "TradeRecord",
]
