"""
Bounded victim compensation and the insurance treasury.

Compensation is the minimum of three caps applied jointly: an insurance rate
on the measured loss, the treasury balance, and an absolute per-event
ceiling. The treasury is the only mutable state here and every mutation goes
through its lock.
"""

import json
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from .config_loader import DetectorConfig
from .exceptions import TreasuryError
from .fixed_point import apply_bps
from .types import Compensation, LossAssessment
from .utils import short_address, timestamp_to_iso

logger = logging.getLogger(__name__)


def compute_compensation(
    loss: int, treasury: int, refund_bps: int, max_per_event: int
) -> int:
    """
    min(loss * refund_bps / 10000, treasury, max_per_event), never negative.

    An underfunded treasury simply caps the payout; it is not an error.
    """
    insurance_cap = apply_bps(loss, refund_bps)
    return max(0, min(insurance_cap, treasury, max_per_event))


class Treasury:
    """
    Insurance treasury balance in base units.

    Funding credits and compensation debits are serialized by a lock so the
    balance can never go negative.
    """

    def __init__(self, initial_balance: int = 0):
        if initial_balance < 0:
            raise TreasuryError(
                "Treasury cannot start with a negative balance",
                requested=initial_balance,
                balance=0,
            )
        self._balance = int(initial_balance)
        self._lock = threading.Lock()

    @property
    def balance(self) -> int:
        with self._lock:
            return self._balance

    def fund(self, amount: int) -> int:
        """Credit the treasury, returning the new balance."""
        if amount <= 0:
            raise TreasuryError(
                f"Funding amount must be positive: {amount}", requested=amount
            )
        with self._lock:
            self._balance += int(amount)
            new_balance = self._balance
        logger.info(f"Treasury funded with {amount}, balance={new_balance}")
        return new_balance

    def propose(
        self, assessment: LossAssessment, config: DetectorConfig
    ) -> Compensation:
        """Compensation for an assessment against the current balance. Does not debit."""
        with self._lock:
            amount = compute_compensation(
                assessment.loss,
                self._balance,
                config.refund_bps,
                config.max_per_event,
            )
        return Compensation(
            recipient=assessment.victim,
            amount=amount,
            loss=assessment.loss,
            victim_seq=assessment.victim_seq,
        )

    def debit(self, compensation: Compensation) -> int:
        """
        Debit a paid compensation, returning the new balance.

        Call only after the payout is confirmed. A debit larger than the
        balance means the caller skipped propose() or raced another payout.
        """
        amount = compensation.amount
        with self._lock:
            if amount < 0 or amount > self._balance:
                raise TreasuryError(
                    f"Cannot debit {amount} from treasury balance {self._balance}",
                    requested=amount,
                    balance=self._balance,
                )
            self._balance -= amount
            return self._balance


@dataclass
class AttackRecord:
    attacker: str
    victim: str
    loss: int
    refund: int
    timestamp: float
    pool_id: str = ""
    victim_seq: int = 0
    tx_hash: Optional[str] = None


class CompensationLedger:
    """
    Running MEV protection statistics.

    Counts detected sandwiches and paid refunds, keeps the most recent
    attacks, and optionally appends every event to a JSON-lines audit file.
    """

    def __init__(self, max_recent: int = 10, log_dir: Optional[str] = None):
        self.detected = 0
        self.refunded = 0
        self.total_loss = 0
        self.total_paid = 0
        self.recent_attacks: Deque[AttackRecord] = deque(maxlen=max_recent)
        self._lock = threading.Lock()

        self.log_file: Optional[Path] = None
        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            self.log_file = log_path / "compensations.jsonl"

    def record_detection(
        self,
        assessment: LossAssessment,
        compensation: Compensation,
        timestamp: Optional[float] = None,
    ) -> AttackRecord:
        record = AttackRecord(
            attacker=assessment.attacker,
            victim=assessment.victim,
            loss=assessment.loss,
            refund=compensation.amount,
            timestamp=timestamp if timestamp is not None else time.time(),
            pool_id=assessment.pool_id,
            victim_seq=assessment.victim_seq,
        )
        with self._lock:
            self.detected += 1
            self.total_loss += assessment.loss
            self.recent_attacks.appendleft(record)

        self._append("SANDWICH_DETECTED", asdict(record))
        return record

    def record_refund(
        self, compensation: Compensation, tx_hash: Optional[str] = None
    ) -> None:
        with self._lock:
            self.refunded += 1
            self.total_paid += compensation.amount
            for record in self.recent_attacks:
                if (
                    record.victim == compensation.recipient
                    and record.victim_seq == compensation.victim_seq
                ):
                    record.tx_hash = tx_hash
                    break

        logger.info(
            f"Refund paid: victim={short_address(compensation.recipient)} "
            f"amount={compensation.amount}"
        )
        self._append(
            "REFUND_PAID",
            {
                "recipient": compensation.recipient,
                "amount": compensation.amount,
                "victim_seq": compensation.victim_seq,
                "tx_hash": tx_hash,
            },
        )

    @property
    def average_refund_rate(self) -> float:
        """Paid refunds as a fraction of total measured loss."""
        with self._lock:
            if self.total_loss == 0:
                return 0.0
            return self.total_paid / self.total_loss

    def get_stats(self, treasury_balance: Optional[int] = None) -> Dict[str, Any]:
        rate = self.average_refund_rate
        with self._lock:
            stats = {
                "detected": self.detected,
                "refunded": self.refunded,
                "total_loss": str(self.total_loss),
                "total_paid": str(self.total_paid),
                "avg_refund_rate": round(rate, 4),
                "recent_attacks": [
                    {
                        **asdict(r),
                        "loss": str(r.loss),
                        "refund": str(r.refund),
                        "timestamp": timestamp_to_iso(r.timestamp),
                    }
                    for r in self.recent_attacks
                ],
            }
        if treasury_balance is not None:
            stats["treasury"] = str(treasury_balance)
        return stats

    def read_log(self) -> List[Dict[str, Any]]:
        """All audit entries, skipping unparseable lines."""
        if self.log_file is None or not self.log_file.exists():
            return []

        entries = []
        with open(self.log_file, "r") as f:
            for line in f:
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries

    def _append(self, event: str, payload: Dict[str, Any]) -> None:
        if self.log_file is None:
            return
        entry = {"event": event, "logged_at": time.time(), **payload}
        with open(self.log_file, "a") as f:
            json.dump(entry, f, default=str)
            f.write("\n")
