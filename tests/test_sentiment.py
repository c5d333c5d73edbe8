import unittest

from sentibot.config import SentimentBoundaries
from sentibot.sentiment import Sentiment, classify, is_buy_side, is_sell_side


class SentimentClassifierTests(unittest.TestCase):
    def test_default_boundaries_map_edges(self) -> None:
        boundaries = SentimentBoundaries()
        expected = {
            0: Sentiment.EXTREME_FEAR,
            14.99: Sentiment.EXTREME_FEAR,
            15: Sentiment.FEAR,
            34: Sentiment.FEAR,
            35: Sentiment.NEUTRAL,
            64.9: Sentiment.NEUTRAL,
            65: Sentiment.GREED,
            84: Sentiment.GREED,
            85: Sentiment.EXTREME_GREED,
            100: Sentiment.EXTREME_GREED,
        }
        for value, sentiment in expected.items():
            result = classify(value, boundaries)
            self.assertEqual(result.sentiment, sentiment, msg=f"value={value}")
            self.assertTrue(result.valid)

    def test_every_value_in_range_maps_to_one_category(self) -> None:
        boundary_sets = [
            SentimentBoundaries(),
            SentimentBoundaries(10, 20, 30, 40),
            SentimentBoundaries(1, 2, 98, 99),
            SentimentBoundaries(0.5, 50, 50.5, 100),
        ]
        for boundaries in boundary_sets:
            for step in range(0, 201):
                value = step / 2
                result = classify(value, boundaries)
                self.assertIn(result.sentiment, list(Sentiment))
                self.assertTrue(result.valid)

    def test_numeric_strings_are_accepted(self) -> None:
        result = classify("23", SentimentBoundaries())
        self.assertEqual(result.sentiment, Sentiment.FEAR)
        self.assertEqual(result.value, 23.0)

    def test_non_ascending_boundaries_yield_neutral(self) -> None:
        for boundaries in (
            SentimentBoundaries(15, 15, 65, 85),
            SentimentBoundaries(85, 65, 35, 15),
            SentimentBoundaries(15, 35, 90, 85),
        ):
            with self.assertLogs("sentibot.sentiment", level="WARNING"):
                result = classify(5, boundaries)
            self.assertEqual(result.sentiment, Sentiment.NEUTRAL)
            self.assertFalse(result.valid)

    def test_bad_values_yield_flagged_neutral(self) -> None:
        for value in ("abc", None, True, float("nan"), float("inf"), -1, 100.5, [], {}):
            with self.assertLogs("sentibot.sentiment", level="WARNING"):
                result = classify(value, SentimentBoundaries())
            self.assertEqual(result.sentiment, Sentiment.NEUTRAL, msg=f"value={value!r}")
            self.assertFalse(result.valid)

    def test_sides(self) -> None:
        self.assertTrue(is_buy_side(Sentiment.FEAR))
        self.assertTrue(is_buy_side(Sentiment.EXTREME_FEAR))
        self.assertTrue(is_sell_side(Sentiment.GREED))
        self.assertTrue(is_sell_side(Sentiment.EXTREME_GREED))
        self.assertFalse(is_buy_side(Sentiment.NEUTRAL))
        self.assertFalse(is_sell_side(Sentiment.NEUTRAL))


if __name__ == "__main__":
    unittest.main()
