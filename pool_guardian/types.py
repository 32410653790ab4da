"""
Core data types for sandwich detection and pool risk decisions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .constants import ActionType, Direction, Token
from .exceptions import InvalidInputError


@dataclass(frozen=True)
class TradeRecord:
    """
    One observed swap on a two-asset pool.

    Attributes:
        trader: Address of the account that submitted the swap
        direction: A_TO_B sells token A for token B, B_TO_A the reverse
        price_before: Pool sqrtPriceX96 immediately before the swap
        price_after: Pool sqrtPriceX96 immediately after the swap
        seq: Block number or global sequence number, strictly ordered
        amount_in: Input amount in base units of the sold token
        pool_id: Identifier of the pool the swap executed on
        tx_hash: Transaction hash, if known
    """

    trader: str
    direction: Direction
    price_before: int
    price_after: int
    seq: int
    amount_in: int = 0
    pool_id: str = ""
    tx_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trader": self.trader,
            "direction": self.direction.value,
            "price_before": str(self.price_before),
            "price_after": str(self.price_after),
            "seq": self.seq,
            "amount_in": str(self.amount_in),
            "pool_id": self.pool_id,
            "tx_hash": self.tx_hash,
        }


@dataclass(frozen=True)
class SandwichCandidate:
    """Ordered triple (attacker front-run, victim, attacker back-run)."""

    first: TradeRecord
    second: TradeRecord
    third: TradeRecord

    @classmethod
    def create(
        cls, first: TradeRecord, second: TradeRecord, third: TradeRecord
    ) -> "SandwichCandidate":
        """Build a candidate, raising InvalidInputError on bad ordering or mixed pools."""
        sequence = (first.seq, second.seq, third.seq)
        if not first.seq < second.seq < third.seq:
            raise InvalidInputError(
                f"non-monotonic trade sequence {sequence}", sequence=sequence
            )
        if not first.pool_id == second.pool_id == third.pool_id:
            raise InvalidInputError(
                "candidate trades reference different pools",
                sequence=sequence,
                details={
                    "pools": [first.pool_id, second.pool_id, third.pool_id]
                },
            )
        return cls(first, second, third)

    @property
    def attacker(self) -> str:
        return self.first.trader

    @property
    def victim(self) -> str:
        return self.second.trader


@dataclass(frozen=True)
class LossAssessment:
    """Victim loss measured from price displacement, in output-token base units."""

    victim: str
    attacker: str
    expected_out: int
    actual_out: int
    loss: int
    pool_id: str = ""
    victim_seq: int = 0
    direction: Direction = Direction.A_TO_B

    def to_dict(self) -> Dict[str, Any]:
        return {
            "victim": self.victim,
            "attacker": self.attacker,
            "expected_out": str(self.expected_out),
            "actual_out": str(self.actual_out),
            "loss": str(self.loss),
            "pool_id": self.pool_id,
            "victim_seq": self.victim_seq,
            "direction": self.direction.value,
        }


@dataclass(frozen=True)
class Compensation:
    """Bounded payout owed to a sandwich victim."""

    recipient: str
    amount: int
    loss: int = 0
    victim_seq: int = 0


@dataclass(frozen=True)
class PoolSnapshot:
    """Pool reserves at a point in time, as read by the chain observer."""

    balance_a: int
    balance_b: int
    timestamp: float
    pool_id: str = ""


@dataclass(frozen=True)
class RiskState:
    """
    Observed risk inputs for one decision.

    imbalance_ratio and volatility are floating-point heuristics; the sizing
    math in the policy never reads them back.
    """

    imbalance_ratio: float = 0.5
    volatility: float = 0.0
    last_protective_action_at: Optional[float] = None


@dataclass(frozen=True)
class Action:
    """
    Action proposed by the risk policy.

    amount is in base units of `token`. direction is set only for
    LOCAL_REBALANCE (overweight token -> underweight token).
    """

    action_type: ActionType
    reason: str
    amount: int = 0
    direction: Optional[Direction] = None
    token: Optional[Token] = None
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def is_none(self) -> bool:
        return self.action_type is ActionType.NONE

    def to_dict(self) -> Dict[str, Any]:
        """Convert action to dictionary for JSON serialization"""
        return {
            "action": self.action_type.value,
            "reason": self.reason,
            "amount": str(self.amount),
            "direction": self.direction.value if self.direction else None,
            "token": self.token.value if self.token else None,
            "metrics": self.metrics,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome reported by the executor collaborator."""

    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
