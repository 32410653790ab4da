#!/usr/bin/env python3
"""
Pool Guardian operator CLI

Usage:
    python guardian_cli.py detect events.jsonl [--min-price-move 0.005]
    python guardian_cli.py decide --balance-a 800 --balance-b 1200 [--volatility 0.2]
    python guardian_cli.py cooldown [--state-file PATH] [--clear]
    python guardian_cli.py replay events.jsonl [--treasury 1.0]
    python guardian_cli.py validate-config config.yaml [...]
"""

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from tabulate import tabulate

import logging_config
from pool_guardian.adapters import PaperExecutor, ReplayObserver
from pool_guardian.agent import GuardianAgent
from pool_guardian.compensation import Treasury, compute_compensation
from pool_guardian.config_loader import (
    GuardianRuntimeConfig,
    ObservabilityConfig,
    load_guardian_config,
)
from pool_guardian.config_schema import validate_config_file
from pool_guardian.constants import AGENT_CONSTANTS
from pool_guardian.detector import SandwichDetector
from pool_guardian.exceptions import PoolGuardianError
from pool_guardian.fixed_point import from_base_units, to_base_units
from pool_guardian.metrics import GuardianMetrics
from pool_guardian.risk_policy import RiskPolicy, decide
from pool_guardian.types import PoolSnapshot, RiskState
from pool_guardian.utils import format_duration, format_pct, safe_json_dump, short_address

logger = logging.getLogger(__name__)


def load_config(args) -> GuardianRuntimeConfig:
    config = load_guardian_config(args.config, env_prefix=args.env_prefix)
    if getattr(args, "min_price_move", None) is not None:
        config = replace(
            config,
            detector=replace(config.detector, min_price_move=args.min_price_move),
        )
    logging_config.setup_from_config(
        config.observability, debug=args.debug, quiet=args.quiet
    )
    return config


def fmt_amount(amount: int, decimals: int) -> str:
    return f"{from_base_units(amount, decimals):.6f}"


def cmd_detect(args) -> int:
    """Scan a recorded trade stream for sandwiches"""
    config = load_config(args)
    decimals = config.agent.token_decimals
    observer = ReplayObserver.from_file(args.events, config.agent.pool_id, decimals)
    detector = SandwichDetector(config.detector)

    assessments = detector.scan(observer.all_trades())
    treasury = to_base_units(args.treasury, decimals)

    if args.json:
        print(safe_json_dump([a.to_dict() for a in assessments]))
        return 0

    if not assessments:
        print("No sandwich attacks detected")
        return 0

    rows = []
    for a in assessments:
        refund = compute_compensation(
            a.loss, treasury, config.detector.refund_bps, config.detector.max_per_event
        )
        rows.append(
            [
                a.victim_seq,
                short_address(a.attacker),
                short_address(a.victim),
                a.direction.value,
                fmt_amount(a.loss, decimals),
                fmt_amount(refund, decimals),
            ]
        )

    print(
        tabulate(
            rows,
            headers=["Seq", "Attacker", "Victim", "Dir", "Loss", "Refund"],
            tablefmt="grid",
            disable_numparse=True,
        )
    )
    print(f"\n{len(assessments)} sandwich(es), {detector.rejected_candidates} rejected candidates")
    return 0


def cmd_decide(args) -> int:
    """Evaluate the risk policy for one snapshot"""
    config = load_config(args)
    decimals = config.agent.token_decimals
    now = args.now if args.now is not None else time.time()

    snapshot = PoolSnapshot(
        balance_a=to_base_units(args.balance_a, decimals),
        balance_b=to_base_units(args.balance_b, decimals),
        timestamp=now,
        pool_id=config.agent.pool_id,
    )
    state = RiskState(
        volatility=args.volatility,
        last_protective_action_at=args.last_action_at,
    )
    action = decide(state, snapshot, config.risk)

    if args.json:
        print(safe_json_dump(action.to_dict()))
        return 0

    m = action.metrics
    rows = [
        ["Action", action.action_type.value],
        ["Reason", action.reason],
        ["Amount", fmt_amount(action.amount, decimals) if not action.is_none else "-"],
        ["Token", action.token.value if action.token else "-"],
        ["Direction", action.direction.value if action.direction else "-"],
        ["Imbalance ratio", format_pct(m.get("imbalance_ratio", 0.5))],
        ["Deviation", format_pct(m.get("deviation", 0.0))],
        ["Volatility", format_pct(args.volatility)],
    ]
    print(tabulate(rows, tablefmt="grid", disable_numparse=True))
    return 0


def cmd_cooldown(args) -> int:
    """Show or clear the protective withdraw cooldown"""
    config = load_config(args)
    state_file = args.state_file or config.agent.state_file or AGENT_CONSTANTS["DEFAULT_STATE_FILE"]
    policy = RiskPolicy(config.risk, state_file=state_file)
    policy.load_state()

    if args.clear:
        if policy.last_protective_action_at is None:
            print("No active cooldown")
            return 0
        if not args.yes:
            answer = input("Clear protective withdraw cooldown? [y/N] ")
            if answer.strip().lower() not in ("y", "yes"):
                print("Cancelled")
                return 1
        policy.clear_cooldown()
        print(f"Cooldown cleared ({state_file})")
        return 0

    remaining = policy.cooldown_remaining()
    if remaining <= 0:
        print("No active cooldown")
    else:
        print(
            tabulate(
                [["PROTECTIVE_WITHDRAW", format_duration(remaining)]],
                headers=["Action", "Remaining"],
                tablefmt="grid",
                disable_numparse=True,
            )
        )
    return 0


async def _replay(config: GuardianRuntimeConfig, observer: ReplayObserver, treasury: int):
    metrics = None
    obs = config.observability
    if obs.metrics_enabled:
        metrics = GuardianMetrics(token_decimals=config.agent.token_decimals)
        await metrics.start_server(port=obs.metrics_port, path=obs.metrics_path)

    agent = GuardianAgent(config, observer, PaperExecutor(), Treasury(treasury), metrics)
    try:
        while not observer.exhausted:
            await agent.tick()
    finally:
        if metrics:
            await metrics.stop_server()
    return agent


def cmd_replay(args) -> int:
    """Run the agent over a recorded event file with the paper executor"""
    config = load_config(args)
    decimals = config.agent.token_decimals
    observer = ReplayObserver.from_file(args.events, config.agent.pool_id, decimals)

    agent = asyncio.run(_replay(config, observer, to_base_units(args.treasury, decimals)))
    status = agent.get_status()

    if args.json:
        print(safe_json_dump(status))
        return 0

    print(
        tabulate(
            [[e["phase"], e["message"]] for e in status["timeline"]],
            headers=["Phase", "Event"],
            tablefmt="grid",
            disable_numparse=True,
        )
    )
    mev = status["mev"]
    print(
        f"\nTicks: {status['ticks']}  Sandwiches: {mev['detected']}  "
        f"Refunds: {mev['refunded']}  Paid: {fmt_amount(int(mev['total_paid']), decimals)}  "
        f"Treasury: {fmt_amount(int(mev['treasury']), decimals)}"
    )
    return 0


def cmd_validate_config(args) -> int:
    """Validate one or more YAML configuration files"""
    rows = []
    failures = 0
    for path in args.files:
        try:
            validate_config_file(path)
            rows.append([path, "OK", ""])
        except FileNotFoundError as e:
            failures += 1
            rows.append([path, "MISSING", str(e)])
        except ValueError as e:
            # pydantic.ValidationError subclasses ValueError
            failures += 1
            rows.append([path, "INVALID", str(e).splitlines()[0]])
        except Exception as e:
            failures += 1
            rows.append([path, "ERROR", str(e)])

    print(
        tabulate(
            rows,
            headers=["File", "Status", "Detail"],
            tablefmt="grid",
            disable_numparse=True,
        )
    )
    return 1 if failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Pool Guardian: sandwich detection, compensation and pool risk policy"
    )
    parser.add_argument("--config", type=str, help="YAML configuration file")
    parser.add_argument(
        "--env-prefix", type=str, default="", help="Prefix for override variables"
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--quiet", action="store_true", help="Warnings and errors only")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("detect", help="Detect sandwiches in a JSONL event file")
    p.add_argument("events", type=str)
    p.add_argument("--min-price-move", type=Decimal, default=None, help="Dust threshold override")
    p.add_argument("--treasury", type=str, default="0", help="Treasury balance for refund preview")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_detect)

    p = sub.add_parser("decide", help="Evaluate the risk policy for given balances")
    p.add_argument("--balance-a", type=str, required=True)
    p.add_argument("--balance-b", type=str, required=True)
    p.add_argument("--volatility", type=float, default=0.0)
    p.add_argument("--last-action-at", type=float, default=None)
    p.add_argument("--now", type=float, default=None)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_decide)

    p = sub.add_parser("cooldown", help="Show or clear the protective withdraw cooldown")
    p.add_argument("--state-file", type=str, default=None)
    p.add_argument("--clear", action="store_true")
    p.add_argument("--yes", action="store_true", help="Skip confirmation")
    p.set_defaults(func=cmd_cooldown)

    p = sub.add_parser("replay", help="Run the guardian over a JSONL event file (dry run)")
    p.add_argument("events", type=str)
    p.add_argument("--treasury", type=str, default="0")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_replay)

    p = sub.add_parser("validate-config", help="Validate YAML configuration files")
    p.add_argument("files", nargs="+")
    p.set_defaults(func=cmd_validate_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    # Config-file level is applied once the command loads its config
    logging_config.setup_from_config(
        ObservabilityConfig(), debug=args.debug, quiet=args.quiet
    )

    try:
        return args.func(args)
    except PoolGuardianError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
