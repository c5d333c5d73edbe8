from __future__ import annotations

import copy
import csv
import logging
import math
from decimal import Decimal
from pathlib import Path
from typing import Any

from .config import BotConfig
from .engine import TradingEngine

logger = logging.getLogger(__name__)

_VALUE_COLUMNS = ("index", "index value", "value", "fgi", "sentiment")


class _ReplayFeed:
    def __init__(self) -> None:
        self.value: float | None = None
        self.price: Decimal = Decimal("0")

    def fetch_value(self) -> float:
        if self.value is None:
            raise ValueError("no recorded signal for this step")
        return self.value

    def fetch_price(self, mint: str) -> Decimal:
        return self.price


def load_signal_log(path: str | Path) -> list[tuple[float | None, float]]:
    rows: list[tuple[float | None, float]] = []
    with Path(path).open(newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        for row in reader:
            lowered = {str(k).strip().lower(): v for k, v in row.items() if k is not None}
            try:
                price = float(lowered.get("price", ""))
            except ValueError:
                continue
            value: float | None = None
            for column in _VALUE_COLUMNS:
                if lowered.get(column) not in (None, ""):
                    try:
                        value = float(lowered[column])
                    except ValueError:
                        value = None
                    break
            rows.append((value, price))
    return rows


def replay_backtest(readings: list[tuple[float | None, float]], config: BotConfig) -> dict[str, Any]:
    if not readings:
        raise ValueError("replay needs at least one (signal, price) reading")
    cfg = copy.deepcopy(config)
    cfg.mode = "paper"
    cfg.scheduler.monitor_mode = False
    cfg.guardrails.cooldown_seconds = 0
    cfg.execution.poll_interval_seconds = 0.0
    cfg.execution.quote_retry_seconds = 0.0
    cfg.execution.bundle_retry_seconds = 0.0

    feed = _ReplayFeed()
    engine = TradingEngine(cfg, persist=False, signal_client=feed, price_client=feed)
    actions: dict[str, int] = {}
    peak = Decimal("0")
    max_drawdown = Decimal("0")
    last_price = Decimal("0")
    for value, price in readings:
        if price <= 0:
            continue
        feed.value = value
        feed.price = Decimal(str(price))
        last_price = feed.price
        result = engine.run_cycle()
        actions[result.action] = actions.get(result.action, 0) + 1
        if engine.position is None:
            continue
        portfolio = engine.position.current_value(last_price)
        peak = max(peak, portfolio)
        max_drawdown = max(max_drawdown, peak - portfolio)

    if engine.position is None:
        raise ValueError("replay had no usable price readings")
    stats = engine.lots.statistics()
    position = engine.position
    initial_value = position.initial_value
    final_value = position.current_value(last_price)
    return {
        "summary": {
            "steps": sum(actions.values()),
            "actions": actions,
            "trades": position.buy_count + position.sell_count,
            "buys": position.buy_count,
            "sells": position.sell_count,
            "initial_value": float(initial_value),
            "final_value": float(final_value),
            "net_profit": float(final_value - initial_value),
            "net_change": float(position.net_change(last_price)),
            "realized_pnl": float(stats["total_realized_pnl"]),
            "unrealized_pnl": float(stats["total_unrealized_pnl"]),
            "win_rate_pct": float(stats["win_rate"]),
            "open_lots": stats["open_count"],
            "closed_lots": stats["closed_count"],
            "max_drawdown": float(max_drawdown),
        },
        "streak": engine.get_statistics()["streak"],
    }


def _scenario_readings(name: str, length: int, start_price: float = 100.0) -> list[tuple[float, float]]:
    if length < 20:
        raise ValueError("scenario length must be >= 20")
    price = float(start_price)
    readings: list[tuple[float, float]] = []
    for idx in range(length):
        phase = idx / float(length)
        if name == "fear_capitulation":
            value = max(2.0, 45.0 - 60.0 * phase) if phase < 0.6 else 20.0 + 80.0 * (phase - 0.6)
            change = -0.01 if phase < 0.6 else 0.012
        elif name == "greed_mania":
            value = min(98.0, 55.0 + 60.0 * phase) if phase < 0.7 else 90.0 - 150.0 * (phase - 0.7)
            change = 0.01 if phase < 0.7 else -0.015
        elif name == "sideways_chop":
            value = 50.0 + 20.0 * math.sin(idx / 2.0)
            change = 0.004 * math.sin(idx / 2.0 + 1.0)
        elif name == "cycle_swing":
            value = 50.0 + 45.0 * math.sin(2 * math.pi * idx / 40.0)
            change = -0.008 * math.sin(2 * math.pi * idx / 40.0)
        else:
            raise ValueError(f"unknown scenario: {name}")
        price = max(1e-6, price * (1.0 + change))
        readings.append((max(0.0, min(100.0, value)), price))
    return readings


def run_scenario_suite(config: BotConfig, scenario_length: int = 200) -> dict[str, Any]:
    scenario_names = ["fear_capitulation", "greed_mania", "sideways_chop", "cycle_swing"]
    per_scenario: list[dict[str, Any]] = []
    for name in scenario_names:
        result = replay_backtest(_scenario_readings(name, scenario_length), config)
        summary = result["summary"]
        per_scenario.append(
            {
                "scenario": name,
                "trades": summary["trades"],
                "net_profit": summary["net_profit"],
                "realized_pnl": summary["realized_pnl"],
                "max_drawdown": summary["max_drawdown"],
                "win_rate_pct": summary["win_rate_pct"],
                "summary": summary,
            }
        )
    profitable = [row for row in per_scenario if row["net_profit"] > 0]
    with_trades = [row for row in per_scenario if row["trades"] > 0]
    return {
        "scenario_count": len(per_scenario),
        "with_trades_count": len(with_trades),
        "profitable_count": len(profitable),
        "scenarios": per_scenario,
    }
