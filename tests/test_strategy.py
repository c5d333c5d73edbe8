import unittest
from decimal import Decimal

from sentibot.config import BotConfig
from sentibot.order_book import LotLedger
from sentibot.position import PositionLedger
from sentibot.sentiment import Sentiment, classify
from sentibot.strategy import (
    Decision,
    DirectStrategy,
    StrategyState,
    StreakStrategy,
    ThresholdStrategy,
    build_strategy,
)

_VALUES = {
    Sentiment.EXTREME_FEAR: 10,
    Sentiment.FEAR: 25,
    Sentiment.NEUTRAL: 50,
    Sentiment.GREED: 70,
    Sentiment.EXTREME_GREED: 90,
}


def _config(variant: str = "direct") -> BotConfig:
    config = BotConfig()
    config.strategy.variant = variant
    config.strategy.streak_threshold = 3
    return config


def _step(strategy, state: StrategyState, sentiment: Sentiment, position: PositionLedger, lots: LotLedger) -> Decision:
    classification = classify(_VALUES[sentiment], strategy.config.sentiment)
    return strategy.decide(state, classification, Decimal("100"), position, lots)


class StreakStrategyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = StreakStrategy(_config("streak"))
        self.state = StrategyState()
        self.position = PositionLedger.start("10", "1000", "100")
        self.lots = LotLedger()

    def _feed(self, *sentiments: Sentiment) -> Decision:
        decision = None
        for sentiment in sentiments:
            decision = _step(self.strategy, self.state, sentiment, self.position, self.lots)
        return decision

    def test_exhausted_fear_streak_buys_at_neutral(self) -> None:
        decision = self._feed(Sentiment.FEAR, Sentiment.EXTREME_FEAR, Sentiment.FEAR)
        self.assertIsNone(decision.intent)
        self.assertEqual(len(self.state.streak), 3)

        decision = self._feed(Sentiment.NEUTRAL)
        self.assertIsNotNone(decision.intent)
        self.assertEqual(decision.intent.direction, "buy")
        self.assertEqual(decision.intent.sentiment, Sentiment.FEAR)
        self.assertEqual(decision.intent.amount, Decimal("20.00"))
        self.assertEqual(decision.details["fired_streak_length"], 3)
        self.assertEqual(len(self.state.streak), 0)
        self.assertEqual(self.state.streak.total_streaks, 1)
        self.assertEqual(self.state.streak.longest, 3)

    def test_greed_streak_sells(self) -> None:
        decision = self._feed(
            Sentiment.GREED,
            Sentiment.EXTREME_GREED,
            Sentiment.EXTREME_GREED,
            Sentiment.GREED,
            Sentiment.NEUTRAL,
        )
        self.assertEqual(decision.intent.direction, "sell")
        self.assertEqual(decision.intent.amount, Decimal("0.20"))

    def test_opposite_reading_restarts_streak(self) -> None:
        self._feed(Sentiment.FEAR, Sentiment.FEAR, Sentiment.GREED)
        self.assertEqual(len(self.state.streak), 1)
        self.assertEqual(self.state.streak.first, Sentiment.GREED)
        self.assertEqual(self.state.streak.total_streaks, 1)

    def test_neutral_before_threshold_clears_without_trade(self) -> None:
        decision = self._feed(Sentiment.FEAR, Sentiment.FEAR, Sentiment.NEUTRAL)
        self.assertIsNone(decision.intent)
        self.assertEqual(len(self.state.streak), 0)

    def test_neutral_does_not_start_streak(self) -> None:
        self._feed(Sentiment.NEUTRAL, Sentiment.NEUTRAL)
        self.assertEqual(len(self.state.streak), 0)

    def test_invalid_reading_leaves_streak_untouched(self) -> None:
        self._feed(Sentiment.FEAR, Sentiment.FEAR)
        with self.assertLogs("sentibot.sentiment", level="WARNING"):
            classification = classify("bad", self.strategy.config.sentiment)
        decision = self.strategy.decide(self.state, classification, Decimal("100"), self.position, self.lots)
        self.assertIsNone(decision.intent)
        self.assertEqual(len(self.state.streak), 2)

    def test_streak_clears_even_when_size_is_zero(self) -> None:
        self.position = PositionLedger.start("10", "0", "100")
        with self.assertLogs("sentibot.sizing", level="WARNING"):
            decision = self._feed(Sentiment.FEAR, Sentiment.FEAR, Sentiment.FEAR, Sentiment.NEUTRAL)
        self.assertIsNone(decision.intent)
        self.assertEqual(len(self.state.streak), 0)

    def test_streak_state_round_trip(self) -> None:
        self._feed(Sentiment.GREED, Sentiment.GREED)
        restored = StrategyState.from_dict(self.state.to_dict(), 3)
        self.assertEqual(restored.streak.readings, self.state.streak.readings)
        self.assertEqual(restored.streak.threshold, 3)

    def test_malformed_saved_readings_are_dropped(self) -> None:
        raw = {"streak": {"readings": [["FEAR"], ["FEAR", None], ["GREED", "70"], ["NEUTRAL", 50], "FEAR", ["FEAR", 24]]}}
        with self.assertLogs("sentibot.strategy", level="WARNING") as logs:
            restored = StrategyState.from_dict(raw, 3)
        self.assertEqual(restored.streak.readings, [(Sentiment.FEAR, 24.0)])
        self.assertEqual(len(logs.output), 5)


class DirectStrategyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = DirectStrategy(_config())
        self.state = StrategyState()
        self.position = PositionLedger.start("10", "1000", "100")
        self.lots = LotLedger()

    def test_fear_without_lots_opens_buy(self) -> None:
        decision = _step(self.strategy, self.state, Sentiment.FEAR, self.position, self.lots)
        self.assertEqual(decision.intent.direction, "buy")
        self.assertEqual(decision.intent.swap_mode, "ExactIn")
        self.assertEqual(decision.intent.amount, Decimal("20.00"))
        self.assertFalse(decision.intent.is_close)

    def test_fear_closes_oldest_sell_lot_first(self) -> None:
        first = self.lots.open("sell", Decimal("0.5"), Decimal("50"), Decimal("100"), "S1")
        self.lots.open("sell", Decimal("0.7"), Decimal("70"), Decimal("100"), "S2")
        decision = _step(self.strategy, self.state, Sentiment.EXTREME_FEAR, self.position, self.lots)
        self.assertEqual(decision.intent.closing_lot_id, first.id)
        self.assertEqual(decision.intent.direction, "buy")
        self.assertEqual(decision.intent.swap_mode, "ExactOut")
        self.assertEqual(decision.intent.amount, Decimal("0.5"))

    def test_greed_closes_buy_lot_with_exact_in(self) -> None:
        lot = self.lots.open("buy", Decimal("0.3"), Decimal("30"), Decimal("100"), "B1")
        decision = _step(self.strategy, self.state, Sentiment.GREED, self.position, self.lots)
        self.assertEqual(decision.intent.closing_lot_id, lot.id)
        self.assertEqual(decision.intent.direction, "sell")
        self.assertEqual(decision.intent.swap_mode, "ExactIn")

    def test_neutral_holds(self) -> None:
        self.lots.open("buy", Decimal("0.3"), Decimal("30"), Decimal("100"), "B1")
        decision = _step(self.strategy, self.state, Sentiment.NEUTRAL, self.position, self.lots)
        self.assertIsNone(decision.intent)

    def test_min_close_profit_skips_losing_lot(self) -> None:
        self.strategy.config.strategy.min_close_profit_pct = 5.0
        self.lots.open("buy", Decimal("0.3"), Decimal("30"), Decimal("100"), "B1")
        decision = _step(self.strategy, self.state, Sentiment.GREED, self.position, self.lots)
        self.assertFalse(decision.intent.is_close)
        self.assertEqual(decision.intent.amount, Decimal("0.20"))

    def test_strategic_sizing_uses_trading_period(self) -> None:
        self.strategy.config.sizing.method = "STRATEGIC"
        self.strategy.config.sizing.strategic_percentage = 10
        decision = _step(self.strategy, self.state, Sentiment.FEAR, self.position, self.lots)
        self.assertEqual(decision.intent.amount, Decimal("100.0"))
        self.assertIsNotNone(self.state.trading_period)


class ThresholdStrategyTests(unittest.TestCase):
    def setUp(self) -> None:
        config = _config("threshold")
        config.threshold.switch_delay = 2
        self.strategy = ThresholdStrategy(config)
        self.state = StrategyState()
        self.position = PositionLedger.start("10", "0", "100")
        self.lots = LotLedger()

    def _decide(self, value: float) -> Decision:
        classification = classify(value, self.strategy.config.sentiment)
        return self.strategy.decide(self.state, classification, Decimal("100"), self.position, self.lots)

    def test_first_reading_sets_allocation_and_waits_for_delay(self) -> None:
        decision = self._decide(30)
        self.assertEqual(decision.intent.direction, "sell")
        self.assertEqual(decision.intent.amount, Decimal("10"))
        self.assertFalse(decision.allocation_target)

        self.strategy.commit(self.state, decision, landed=False)
        self.assertIsNone(self.state.threshold.in_high_allocation)
        self.strategy.commit(self.state, decision, landed=True)
        self.assertFalse(self.state.threshold.in_high_allocation)
        self.position.apply_fill("sell", Decimal("10"), Decimal("1000"), Decimal("100"))

        decision = self._decide(60)
        self.assertIsNone(decision.intent)
        self.assertEqual(self.state.threshold.days_above, 1)

        decision = self._decide(40)
        self.assertIsNone(decision.intent)
        self.assertEqual(self.state.threshold.days_above, 0)
        self.assertEqual(self.state.threshold.days_below, 1)

        self._decide(60)
        decision = self._decide(60)
        self.assertEqual(decision.intent.direction, "buy")
        self.assertEqual(decision.intent.amount, Decimal("995.0"))
        self.assertTrue(decision.allocation_target)

    def test_value_at_threshold_counts_as_above(self) -> None:
        self._decide(50)
        self.assertEqual(self.state.threshold.days_above, 1)

    def test_flip_without_trade_commits_immediately(self) -> None:
        decision = self._decide(80)
        self.assertIsNone(decision.intent)
        self.assertTrue(self.state.threshold.in_high_allocation)

    def test_invalid_reading_is_ignored(self) -> None:
        with self.assertLogs("sentibot.sentiment", level="WARNING"):
            decision = self._decide(150)
        self.assertIsNone(decision.intent)
        self.assertEqual(self.state.threshold.days_above, 0)
        self.assertEqual(self.state.threshold.days_below, 0)


class BuildStrategyTests(unittest.TestCase):
    def test_variant_selection(self) -> None:
        self.assertIsInstance(build_strategy(_config("direct")), DirectStrategy)
        self.assertIsInstance(build_strategy(_config("streak")), StreakStrategy)
        self.assertIsInstance(build_strategy(_config("threshold")), ThresholdStrategy)


if __name__ == "__main__":
    unittest.main()
