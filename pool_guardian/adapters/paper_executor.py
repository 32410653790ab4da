"""
Paper executor

Accepts every action and compensation without touching a chain and returns
DRY_RUN_<n> transaction hashes. Failures can be injected per action type to
exercise the commit-after-confirm path.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Union

from ..constants import ActionType
from ..exceptions import ExecutionError
from ..types import Action, Compensation, ExecutionResult
from ..utils import short_address

logger = logging.getLogger(__name__)


@dataclass
class ExecutionRecord:
    """One request seen by the paper executor"""

    kind: str  # "action" or "compensation"
    request: Union[Action, Compensation]
    result: ExecutionResult


class PaperExecutor:
    """
    Dry-run ActionExecutor

    Args:
        fail_actions: Action types that report success=False
        fail_compensations: Report success=False for every payout
        raise_on: Action types that raise ExecutionError instead of returning
        latency_seconds: Simulated confirmation delay
    """

    def __init__(
        self,
        fail_actions: Optional[Iterable[ActionType]] = None,
        fail_compensations: bool = False,
        raise_on: Optional[Iterable[ActionType]] = None,
        latency_seconds: float = 0.0,
    ):
        self.fail_actions: Set[ActionType] = set(fail_actions or ())
        self.fail_compensations = fail_compensations
        self.raise_on: Set[ActionType] = set(raise_on or ())
        self.latency_seconds = latency_seconds
        self.history: List[ExecutionRecord] = []
        self._counter = 0

    @property
    def actions(self) -> List[Action]:
        return [r.request for r in self.history if r.kind == "action"]

    @property
    def compensations(self) -> List[Compensation]:
        return [r.request for r in self.history if r.kind == "compensation"]

    async def execute(self, action: Action) -> ExecutionResult:
        if action.action_type in self.raise_on:
            raise ExecutionError(
                f"Simulated executor crash for {action.action_type.value}",
                action_type=action.action_type.value,
            )

        await self._simulate_latency()

        if action.action_type in self.fail_actions:
            result = ExecutionResult(
                success=False,
                error=f"Simulated failure for {action.action_type.value}",
            )
        else:
            result = ExecutionResult(success=True, tx_hash=self._next_hash())

        self.history.append(ExecutionRecord("action", action, result))
        logger.info(
            f"[DRY RUN] {action.action_type.value} amount={action.amount} "
            f"-> {'ok ' + result.tx_hash if result.success else result.error}"
        )
        return result

    async def pay_compensation(self, compensation: Compensation) -> ExecutionResult:
        await self._simulate_latency()

        if self.fail_compensations:
            result = ExecutionResult(success=False, error="Simulated payout failure")
        else:
            result = ExecutionResult(success=True, tx_hash=self._next_hash())

        self.history.append(ExecutionRecord("compensation", compensation, result))
        logger.info(
            f"[DRY RUN] refund {compensation.amount} to "
            f"{short_address(compensation.recipient)}"
        )
        return result

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def _next_hash(self) -> str:
        self._counter += 1
        return f"DRY_RUN_{self._counter}"
