from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .backtest import load_signal_log, replay_backtest, run_scenario_suite
from .config import load_config
from .engine import TradingEngine


def _default_config_path() -> str | None:
    candidate = Path("config.json")
    return str(candidate) if candidate.exists() else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sentiment-driven spot trading bot")
    parser.add_argument("--config", default=_default_config_path(), help="Path to JSON config")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one trading cycle (or loop)")
    run_parser.add_argument("--loop", action="store_true", help="Run on the cycle schedule")
    run_parser.add_argument("--max-cycles", type=int, default=None)
    run_parser.add_argument(
        "--execute-live",
        action="store_true",
        help="Allow live swaps (requires mode=live + SENTIBOT_ENABLE_LIVE=true)",
    )

    lots_parser = subparsers.add_parser("lots", help="List open (or closed) lots")
    lots_parser.add_argument("--closed", action="store_true")

    reset_parser = subparsers.add_parser("reset", help="Start a new position at current balances")
    reset_parser.add_argument("--execute-live", action="store_true")

    backtest_parser = subparsers.add_parser("backtest", help="Replay recorded or synthetic sentiment")
    source = backtest_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--csv", help="CSV of timestamp, price, index rows")
    source.add_argument("--scenarios", action="store_true", help="Run synthetic scenario suite")
    backtest_parser.add_argument("--scenario-length", type=int, default=200)

    subparsers.add_parser("status", help="Show balances, lot statistics and streak state")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args.config)

        if args.command == "backtest":
            if args.csv:
                output = replay_backtest(load_signal_log(args.csv), config)
            else:
                output = run_scenario_suite(config, scenario_length=int(args.scenario_length))
            print(json.dumps(output, indent=2))
            return

        engine = TradingEngine(config, execute_live=bool(getattr(args, "execute_live", False)))

        if args.command == "run":
            if args.loop:
                engine.run_loop(max_cycles=args.max_cycles)
                return
            result = engine.run_cycle()
            print(engine.format_cycle_result(result))
            return

        if args.command == "status":
            print(json.dumps(engine.status(), indent=2))
            return

        if args.command == "lots":
            lots = engine.get_closed_lots() if args.closed else engine.get_open_lots()
            print(json.dumps(lots, indent=2))
            return

        if args.command == "reset":
            position = engine.reset_position()
            print(json.dumps(position.to_dict(), indent=2))
            return

        raise RuntimeError(f"Unsupported command: {args.command}")
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        raise SystemExit(130)
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
