import asyncio
import json

import pytest
from prometheus_client import CollectorRegistry

from pool_guardian.adapters import PaperExecutor, ReplayObserver
from pool_guardian.agent import GuardianAgent
from pool_guardian.compensation import Treasury
from pool_guardian.config_loader import build_runtime_config
from pool_guardian.constants import ActionType, TimelinePhase
from pool_guardian.exceptions import TreasuryError
from pool_guardian.interfaces import DeterministicTimeProvider
from pool_guardian.metrics import GuardianMetrics

TOKEN = 10**18
ATTACKER = "0xattacker00000000000000000000000000000001"
VICTIM = "0xvictim0000000000000000000000000000000002"


def make_config(**agent):
    return build_runtime_config(
        {
            "pool": {"pool_id": "pool"},
            "detection": {"min_price_move": "0.005"},
            "agent": {"poll_interval_seconds": 0.01, **agent},
        }
    )


def snapshot(ts, a="1000", b="1000"):
    return {"type": "snapshot", "balance_a": a, "balance_b": b, "timestamp": ts}


def trade(trader, direction, seq, before, after, amount="10"):
    return {
        "type": "trade",
        "trader": trader,
        "direction": direction,
        "seq": seq,
        "price_before": before,
        "price_after": after,
        "amount": amount,
    }


FRONT = trade(ATTACKER, "AtoB", 1, "1.0", "0.95", amount="5")
VICTIM_SWAP = trade(VICTIM, "AtoB", 2, "0.95", "0.93")
BACK = trade(ATTACKER, "BtoA", 3, "0.93", "0.98", amount="5")


def sandwich_events():
    return [snapshot(1), FRONT, VICTIM_SWAP, BACK, snapshot(2)]


def volatile_events():
    return [
        snapshot(0),
        snapshot(10, "1400", "600"),
        snapshot(20, "600", "1400"),
        snapshot(30, "1400", "600"),
    ]


def make_agent(events, executor=None, treasury=None, metrics=None, **agent):
    return GuardianAgent(
        make_config(**agent),
        ReplayObserver(events, pool_id="pool"),
        executor or PaperExecutor(),
        treasury=treasury,
        metrics=metrics,
        time_provider=DeterministicTimeProvider(),
    )


async def run_ticks(agent, count):
    return [await agent.tick() for _ in range(count)]


class TestCompensationFlow:
    @pytest.mark.asyncio
    async def test_sandwich_refunded(self):
        executor = PaperExecutor()
        agent = make_agent(sandwich_events(), executor, Treasury(TOKEN))

        first, second = await run_ticks(agent, 2)

        assert first.assessments == []
        assert len(second.assessments) == 1
        assert second.assessments[0].victim == VICTIM
        # min(30% of 0.5, 1.0, 0.1)
        assert second.paid[0].amount == TOKEN // 10
        assert agent.treasury.balance == 9 * TOKEN // 10
        assert executor.compensations[0].recipient == VICTIM
        assert agent.ledger.refunded == 1

    @pytest.mark.asyncio
    async def test_sandwich_split_across_polls(self):
        events = [
            snapshot(1),
            FRONT,
            snapshot(2),
            VICTIM_SWAP,
            snapshot(3),
            BACK,
            snapshot(4),
            trade("0xother", "AtoB", 4, "0.98", "0.98"),
            snapshot(5),
        ]
        agent = make_agent(events, treasury=Treasury(TOKEN))
        reports = await run_ticks(agent, 5)

        found = [len(r.assessments) for r in reports]
        assert found == [0, 0, 0, 1, 0]
        assert agent.ledger.detected == 1
        assert agent.treasury.balance == 9 * TOKEN // 10

    @pytest.mark.asyncio
    async def test_repeated_polls_do_not_double_count(self):
        agent = make_agent(sandwich_events(), treasury=Treasury(TOKEN))
        await run_ticks(agent, 4)

        assert agent.ledger.detected == 1
        assert agent.ledger.refunded == 1

    @pytest.mark.asyncio
    async def test_failed_payout_leaves_treasury_unchanged(self):
        executor = PaperExecutor(fail_compensations=True)
        agent = make_agent(sandwich_events(), executor, Treasury(TOKEN))

        _, report = await run_ticks(agent, 2)

        assert len(report.assessments) == 1
        assert report.paid == []
        assert agent.treasury.balance == TOKEN
        assert agent.ledger.detected == 1
        assert agent.ledger.refunded == 0

    @pytest.mark.asyncio
    async def test_empty_treasury_records_detection_only(self):
        executor = PaperExecutor()
        agent = make_agent(sandwich_events(), executor)

        await run_ticks(agent, 2)

        assert agent.ledger.detected == 1
        assert executor.compensations == []
        phases = [e.phase for e in agent.timeline]
        assert TimelinePhase.COMPENSATE in phases

    @pytest.mark.asyncio
    async def test_fund_treasury(self):
        agent = make_agent(sandwich_events())
        assert await agent.fund_treasury(TOKEN) == TOKEN
        with pytest.raises(TreasuryError):
            await agent.fund_treasury(0)

    @pytest.mark.asyncio
    async def test_ledger_dir_audit_log(self, tmp_path):
        agent = make_agent(
            sandwich_events(), treasury=Treasury(TOKEN), ledger_dir=str(tmp_path)
        )
        await run_ticks(agent, 2)

        lines = (tmp_path / "compensations.jsonl").read_text().splitlines()
        events = [json.loads(line)["event"] for line in lines]
        assert events == ["SANDWICH_DETECTED", "REFUND_PAID"]


class TestRiskActions:
    @pytest.mark.asyncio
    async def test_protective_withdraw_starts_cooldown(self):
        executor = PaperExecutor()
        agent = make_agent(volatile_events(), executor)

        reports = await run_ticks(agent, 4)
        kinds = [r.action.action_type for r in reports]

        assert kinds[1] is ActionType.PROTECTIVE_WITHDRAW
        assert reports[1].executed is True
        # ts=20 and ts=30 are inside the 300s cooldown
        assert kinds[2:] == [ActionType.NONE, ActionType.NONE]
        assert len(executor.actions) == 1
        assert agent.policy.last_protective_action_at == 10.0

    @pytest.mark.asyncio
    async def test_failed_withdraw_does_not_start_cooldown(self):
        executor = PaperExecutor(fail_actions=[ActionType.PROTECTIVE_WITHDRAW])
        agent = make_agent(volatile_events(), executor)

        reports = await run_ticks(agent, 4)

        assert [r.executed for r in reports[1:]] == [False, False, False]
        assert len(executor.actions) == 3
        assert agent.policy.last_protective_action_at is None

    @pytest.mark.asyncio
    async def test_local_rebalance_executed(self):
        executor = PaperExecutor()
        agent = make_agent([snapshot(1, "800", "1200")], executor)

        report = await agent.tick()

        assert report.action.action_type is ActionType.LOCAL_REBALANCE
        assert report.executed is True
        assert executor.actions[0].amount == 20 * TOKEN

    @pytest.mark.asyncio
    async def test_state_file_persisted(self, tmp_path):
        path = tmp_path / "policy_state.json"
        agent = make_agent(volatile_events(), state_file=str(path))
        await run_ticks(agent, 2)

        assert json.loads(path.read_text())["last_protective_action_at"] == 10.0

        restored = make_agent(volatile_events(), state_file=str(path))
        assert restored.policy.last_protective_action_at == 10.0

    @pytest.mark.asyncio
    async def test_starts_with_malformed_state_file(self, tmp_path):
        path = tmp_path / "policy_state.json"
        path.write_text("[1, 2, 3]")

        agent = make_agent(volatile_events(), state_file=str(path))
        await run_ticks(agent, 2)

        assert agent.policy.last_protective_action_at == 10.0


class TestUnchangedSnapshots:
    @pytest.mark.asyncio
    async def test_trailing_trades_do_not_repeat_decision(self):
        executor = PaperExecutor()
        observer = ReplayObserver(
            [snapshot(1, "800", "1200"), FRONT, VICTIM_SWAP, BACK], pool_id="pool"
        )
        agent = GuardianAgent(
            make_config(), observer, executor, treasury=Treasury(TOKEN),
            time_provider=DeterministicTimeProvider(),
        )

        reports = []
        while not observer.exhausted:
            reports.append(await agent.tick())

        assert len(reports) == 2
        assert len(executor.actions) == 1
        assert agent.policy.history.count == 1
        assert reports[1].action.action_type is ActionType.NONE
        assert len(reports[1].assessments) == 1
        assert len(executor.compensations) == 1

    @pytest.mark.asyncio
    async def test_repeated_snapshot_skips_decision(self):
        metrics = GuardianMetrics(registry=CollectorRegistry())
        agent = make_agent([snapshot(1, "800", "1200")], metrics=metrics)

        await run_ticks(agent, 3)

        assert metrics.get_metrics_summary()["decisions"] == 1
        assert agent.policy.history.count == 1
        assert agent.tick_count == 3
        messages = [e.message for e in agent.timeline]
        assert sum(m.startswith("No new snapshot") for m in messages) == 2


class TestHealth:
    @pytest.mark.parametrize(
        "balances, volatile, status, healthy",
        [
            (("1000", "1000"), False, "NONE", True),
            (("800", "1200"), False, "LOCAL_REBALANCE", False),
            (("400", "1600"), False, "CROSS_CHAIN_EVACUATE", False),
            (("1400", "600"), True, "PROTECTIVE_WITHDRAW", False),
        ],
    )
    @pytest.mark.asyncio
    async def test_health_follows_thresholds(self, balances, volatile, status, healthy):
        events = [snapshot(0)] if volatile else []
        events.append(snapshot(10, *balances))
        agent = make_agent(events)
        await run_ticks(agent, len(events))

        assert agent.get_status()["health"] == {"status": status, "is_healthy": healthy}

    @pytest.mark.asyncio
    async def test_health_ignores_cooldown(self):
        agent = make_agent(volatile_events())
        reports = await run_ticks(agent, 3)

        assert reports[2].action.action_type is ActionType.NONE
        assert agent.get_status()["health"]["status"] == "PROTECTIVE_WITHDRAW"


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_failing_ticks_are_counted(self):
        agent = make_agent([])
        await agent.run(max_ticks=2)

        assert agent.error_count == 2
        assert agent.tick_count == 0

    @pytest.mark.asyncio
    async def test_stop_event(self):
        agent = make_agent([snapshot(1)])
        stop = asyncio.Event()

        async def stopper():
            await asyncio.sleep(0.05)
            stop.set()

        await asyncio.gather(agent.run(stop_event=stop), stopper())

        assert agent.tick_count >= 1
        assert agent.error_count == 0

    @pytest.mark.asyncio
    async def test_executor_exception_counted(self):
        executor = PaperExecutor(raise_on=[ActionType.LOCAL_REBALANCE])
        events = [snapshot(ts, "800", "1200") for ts in (1, 2, 3)]
        agent = make_agent(events, executor)
        await agent.run(max_ticks=3)

        assert agent.error_count == 3
        assert agent.policy.last_protective_action_at is None


class TestStatus:
    @pytest.mark.asyncio
    async def test_timeline_is_bounded(self):
        agent = make_agent([snapshot(ts) for ts in range(30)])
        await run_ticks(agent, 30)

        assert len(agent.timeline) == 50
        assert agent.tick_count == 30

    @pytest.mark.asyncio
    async def test_get_status(self):
        agent = make_agent(sandwich_events(), treasury=Treasury(TOKEN))
        await run_ticks(agent, 2)
        status = agent.get_status()

        assert set(status) == {
            "pool", "health", "risk", "last_action", "mev", "timeline", "ticks", "errors"
        }
        assert status["health"] == {"status": "NONE", "is_healthy": True}
        assert status["pool"]["pool_id"] == "pool"
        assert status["pool"]["imbalance_ratio"] == pytest.approx(0.5)
        assert status["last_action"]["action"] == "NONE"
        assert status["mev"]["detected"] == 1
        assert status["mev"]["treasury"] == str(9 * TOKEN // 10)
        assert status["timeline"][0]["phase"] == "OBSERVE"
        assert status["ticks"] == 2
        json.dumps(status)

    def test_status_before_first_tick(self):
        status = make_agent([]).get_status()
        assert status["pool"] == {"pool_id": "pool"}
        assert status["health"]["status"] is None
        assert status["last_action"] is None

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        metrics = GuardianMetrics(registry=CollectorRegistry())
        agent = make_agent(sandwich_events(), treasury=Treasury(TOKEN), metrics=metrics)
        await run_ticks(agent, 2)

        summary = metrics.get_metrics_summary()
        assert summary["sandwiches_detected"] == 1
        assert summary["compensations_paid"] == 1
        assert summary["decisions"] == 2
        assert summary["compensation_amount"] == pytest.approx(0.1)
