import json
import tempfile
import unittest
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from sentibot.metrics import append_equity_point, append_trade, default_metrics, load_metrics, save_metrics
from sentibot.order_book import LotLedger
from sentibot.position import PositionLedger
from sentibot.sentiment import Sentiment
from sentibot.state import (
    append_trade_log,
    default_state,
    get_last_trade_ts,
    get_lots,
    get_position,
    get_strategy_state,
    load_state,
    save_state,
    set_last_trade_ts,
    set_lots,
    set_position,
    set_strategy_state,
)
from sentibot.strategy import StrategyState


class StateFileTests(unittest.TestCase):
    def test_missing_file_gives_default_state(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            state = load_state(Path(tmp) / "none.json")
        self.assertIsNone(state["position"])
        self.assertEqual(state["lots"], [])
        self.assertIsNone(get_last_trade_ts(state))

    def test_old_file_is_backfilled(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state.json"
            path.write_text(json.dumps({"position": None}), encoding="utf-8")
            state = load_state(path)
        self.assertEqual(state["trade_log"], [])
        self.assertIn("last_trade_ts", state["risk"])
        self.assertEqual(state["strategy"], {})

    def test_round_trip(self) -> None:
        state = default_state()
        position = PositionLedger.start("1", "500", "100")
        lots = LotLedger()
        lots.open("buy", Decimal("0.5"), Decimal("50"), Decimal("100"), "L1")
        strategy_state = StrategyState()
        strategy_state.streak.readings.append((Sentiment.FEAR, 25.0))
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        set_position(state, position)
        set_lots(state, lots)
        set_strategy_state(state, strategy_state)
        set_last_trade_ts(state, ts)
        for idx in range(5):
            append_trade_log(state, {"event": "trade_confirmed", "n": idx})

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state.json"
            save_state(path, state, trade_log_limit=3)
            self.assertFalse(path.with_name("state.json.tmp").exists())
            loaded = load_state(path)

        self.assertEqual(get_position(loaded).to_dict(), position.to_dict())
        self.assertEqual(get_lots(loaded).to_dict(), lots.to_dict())
        self.assertEqual(get_strategy_state(loaded, 5).streak.readings, [(Sentiment.FEAR, 25.0)])
        self.assertEqual(get_last_trade_ts(loaded), ts)
        self.assertEqual([row["n"] for row in loaded["trade_log"]], [2, 3, 4])


class MetricsTests(unittest.TestCase):
    def test_trades_count_wins_and_losses(self) -> None:
        metrics = default_metrics()
        append_trade(metrics, {"ts": "t1", "realized_pnl": "2.5"})
        append_trade(metrics, {"ts": "t2", "realized_pnl": "-1"})
        append_trade(metrics, {"ts": "t3"})
        summary = metrics["summary"]
        self.assertEqual(summary["trade_count"], 3)
        self.assertEqual(summary["winning_trades"], 1)
        self.assertEqual(summary["losing_trades"], 1)
        self.assertEqual(summary["last_trade_ts"], "t3")

    def test_equity_points_track_drawdown(self) -> None:
        metrics = default_metrics()
        for value in ("1000", "1100", "990", "1050"):
            append_equity_point(metrics, {"portfolio_value": value, "realized_pnl": "0"})
        summary = metrics["summary"]
        self.assertEqual(Decimal(summary["peak_portfolio_value"]), Decimal("1100"))
        self.assertEqual(Decimal(summary["max_drawdown"]), Decimal("110"))
        self.assertEqual(Decimal(summary["portfolio_value"]), Decimal("1050"))

    def test_save_trims_and_reloads(self) -> None:
        metrics = default_metrics()
        for idx in range(4):
            append_trade(metrics, {"ts": str(idx)})
            append_equity_point(metrics, {"portfolio_value": "1"})
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metrics.json"
            save_metrics(path, metrics, trade_limit=2, equity_limit=1)
            loaded = load_metrics(path)
        self.assertEqual([row["ts"] for row in loaded["trades"]], ["2", "3"])
        self.assertEqual(len(loaded["equity_curve"]), 1)
        self.assertEqual(loaded["summary"]["trade_count"], 4)


if __name__ == "__main__":
    unittest.main()
