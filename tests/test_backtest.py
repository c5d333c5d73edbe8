import tempfile
import unittest
from pathlib import Path

from sentibot.backtest import _scenario_readings, load_signal_log, replay_backtest, run_scenario_suite
from sentibot.config import BotConfig


def _config() -> BotConfig:
    config = BotConfig()
    config.use_color_output = False
    return config


class ReplayBacktestTests(unittest.TestCase):
    def test_replay_opens_and_closes_lots(self) -> None:
        readings = [(25.0, 100.0), (25.0, 95.0), (70.0, 110.0), (50.0, 100.0)]
        result = replay_backtest(readings, _config())
        summary = result["summary"]
        self.assertEqual(summary["steps"], 4)
        self.assertEqual(summary["actions"], {"BUY": 2, "CLOSE": 1, "HOLD": 1})
        self.assertEqual(summary["buys"], 2)
        self.assertEqual(summary["sells"], 1)
        self.assertEqual(summary["closed_lots"], 1)
        self.assertEqual(summary["open_lots"], 1)
        self.assertGreater(summary["realized_pnl"], 0)
        self.assertEqual(summary["initial_value"], 1000.0)

    def test_missing_signal_holds(self) -> None:
        result = replay_backtest([(None, 100.0), (None, 101.0)], _config())
        self.assertEqual(result["summary"]["actions"], {"HOLD": 2})
        self.assertEqual(result["summary"]["trades"], 0)

    def test_replay_does_not_mutate_config(self) -> None:
        config = _config()
        config.mode = "live"
        config.scheduler.monitor_mode = True
        replay_backtest([(10.0, 100.0)], config)
        self.assertEqual(config.mode, "live")
        self.assertTrue(config.scheduler.monitor_mode)

    def test_replay_requires_readings(self) -> None:
        with self.assertRaises(ValueError):
            replay_backtest([], _config())
        with self.assertRaises(ValueError):
            replay_backtest([(50.0, 0.0)], _config())

    def test_streak_variant_reports_streak_stats(self) -> None:
        config = _config()
        config.strategy.variant = "streak"
        config.strategy.streak_threshold = 2
        readings = [(20.0, 100.0), (10.0, 90.0), (20.0, 85.0), (50.0, 88.0)]
        result = replay_backtest(readings, config)
        self.assertEqual(result["summary"]["buys"], 1)
        self.assertEqual(result["streak"]["total_streaks"], 1)
        self.assertEqual(result["streak"]["longest"], 3)


class SignalLogTests(unittest.TestCase):
    def test_load_signal_log_accepts_known_columns(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "signals.csv"
            path.write_text(
                "Timestamp,Price,Index Value\n"
                "2024-01-01T00:00:00Z,100.5,23\n"
                "2024-01-01T00:15:00Z,bad,40\n"
                "2024-01-01T00:30:00Z,101,\n",
                encoding="utf-8",
            )
            rows = load_signal_log(path)
        self.assertEqual(rows, [(23.0, 100.5), (None, 101.0)])


class ScenarioSuiteTests(unittest.TestCase):
    def test_scenario_suite_runs_all_scenarios(self) -> None:
        output = run_scenario_suite(_config(), scenario_length=40)
        self.assertEqual(output["scenario_count"], 4)
        names = [row["scenario"] for row in output["scenarios"]]
        self.assertEqual(names, ["fear_capitulation", "greed_mania", "sideways_chop", "cycle_swing"])
        self.assertGreaterEqual(output["with_trades_count"], 1)

    def test_scenario_values_stay_in_range(self) -> None:
        for name in ("fear_capitulation", "greed_mania", "sideways_chop", "cycle_swing"):
            for value, price in _scenario_readings(name, 60):
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 100.0)
                self.assertGreater(price, 0.0)

    def test_scenario_rejects_short_or_unknown(self) -> None:
        with self.assertRaises(ValueError):
            _scenario_readings("cycle_swing", 10)
        with self.assertRaises(ValueError):
            _scenario_readings("unknown", 40)


if __name__ == "__main__":
    unittest.main()
