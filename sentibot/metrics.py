from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


def default_metrics() -> dict[str, Any]:
    return {
        "version": 1,
        "created_at": _now_iso(),
        "updated_at": _now_iso(),
        "summary": {
            "realized_pnl": "0",
            "unrealized_pnl": "0",
            "portfolio_value": "0",
            "peak_portfolio_value": "0",
            "max_drawdown": "0",
            "winning_trades": 0,
            "losing_trades": 0,
            "trade_count": 0,
            "last_trade_ts": None,
        },
        "trades": [],
        "equity_curve": [],
    }


def load_metrics(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return default_metrics()
    raw = p.read_text(encoding="utf-8").strip()
    if not raw:
        return default_metrics()
    data = json.loads(raw)
    data.setdefault("summary", {})
    for key, value in default_metrics()["summary"].items():
        data["summary"].setdefault(key, value)
    data.setdefault("trades", [])
    data.setdefault("equity_curve", [])
    return data


def save_metrics(
    path: str | Path,
    metrics: dict[str, Any],
    trade_limit: int,
    equity_limit: int,
) -> None:
    p = Path(path)
    metrics["updated_at"] = _now_iso()
    metrics["trades"] = metrics.get("trades", [])[-trade_limit:]
    metrics["equity_curve"] = metrics.get("equity_curve", [])[-equity_limit:]
    tmp = p.with_name(f"{p.name}.tmp")
    tmp.write_text(json.dumps(metrics, indent=2), encoding="utf-8")
    os.replace(tmp, p)


def append_trade(metrics: dict[str, Any], event: dict[str, Any]) -> None:
    metrics.setdefault("trades", []).append(event)
    summary = metrics.setdefault("summary", {})
    summary["trade_count"] = int(summary.get("trade_count", 0)) + 1
    summary["last_trade_ts"] = event.get("ts")
    realized = event.get("realized_pnl")
    if realized is not None:
        if _d(realized) > 0:
            summary["winning_trades"] = int(summary.get("winning_trades", 0)) + 1
        elif _d(realized) < 0:
            summary["losing_trades"] = int(summary.get("losing_trades", 0)) + 1


def append_equity_point(metrics: dict[str, Any], point: dict[str, Any]) -> None:
    metrics.setdefault("equity_curve", []).append(point)
    summary = metrics.setdefault("summary", {})
    value = _d(point.get("portfolio_value", "0"))
    peak = max(_d(summary.get("peak_portfolio_value", "0")), value)
    drawdown = peak - value
    summary["portfolio_value"] = str(value)
    summary["peak_portfolio_value"] = str(peak)
    summary["max_drawdown"] = str(max(_d(summary.get("max_drawdown", "0")), drawdown))
    if "realized_pnl" in point:
        summary["realized_pnl"] = str(point["realized_pnl"])
    if "unrealized_pnl" in point:
        summary["unrealized_pnl"] = str(point["unrealized_pnl"])
