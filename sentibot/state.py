from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .order_book import LotLedger
from .position import PositionLedger
from .strategy import StrategyState

_STATE_VERSION = 1


def default_state() -> dict[str, Any]:
    return {
        "version": _STATE_VERSION,
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "position": None,
        "lots": [],
        "strategy": {},
        "risk": {"last_trade_ts": None},
        "trade_log": [],
    }


def load_state(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return default_state()
    raw = p.read_text(encoding="utf-8").strip()
    if not raw:
        return default_state()
    data = json.loads(raw)
    data.setdefault("version", _STATE_VERSION)
    data.setdefault("position", None)
    data.setdefault("lots", [])
    data.setdefault("strategy", {})
    data.setdefault("risk", {})
    data["risk"].setdefault("last_trade_ts", None)
    data.setdefault("trade_log", [])
    return data


def save_state(path: str | Path, state: dict[str, Any], trade_log_limit: int) -> None:
    p = Path(path)
    state["updated_at"] = datetime.now(timezone.utc).isoformat()
    state["trade_log"] = state.get("trade_log", [])[-trade_log_limit:]
    tmp = p.with_name(f"{p.name}.tmp")
    tmp.write_text(json.dumps(state, indent=2), encoding="utf-8")
    os.replace(tmp, p)


def get_position(state: dict[str, Any]) -> PositionLedger | None:
    raw = state.get("position")
    if not isinstance(raw, dict):
        return None
    return PositionLedger.from_dict(raw)


def set_position(state: dict[str, Any], position: PositionLedger) -> None:
    state["position"] = position.to_dict()


def get_lots(state: dict[str, Any]) -> LotLedger:
    return LotLedger.from_dict(state.get("lots", []))


def set_lots(state: dict[str, Any], lots: LotLedger) -> None:
    state["lots"] = lots.to_dict()


def get_strategy_state(state: dict[str, Any], streak_threshold: int) -> StrategyState:
    return StrategyState.from_dict(state.get("strategy"), streak_threshold)


def set_strategy_state(state: dict[str, Any], strategy_state: StrategyState) -> None:
    state["strategy"] = strategy_state.to_dict()


def append_trade_log(state: dict[str, Any], event: dict[str, Any]) -> None:
    state.setdefault("trade_log", []).append(
        {
            "ts": datetime.now(timezone.utc).isoformat(),
            **event,
        }
    )


def set_last_trade_ts(state: dict[str, Any], ts: datetime) -> None:
    state.setdefault("risk", {})["last_trade_ts"] = ts.isoformat()


def get_last_trade_ts(state: dict[str, Any]) -> datetime | None:
    raw = state.get("risk", {}).get("last_trade_ts")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None
