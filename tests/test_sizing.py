import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sentibot.config import FeeSettings, SizingSettings
from sentibot.sentiment import Sentiment
from sentibot.sizing import (
    TradingPeriod,
    calculate_trade_amount,
    ensure_trading_period,
    from_raw_units,
    profit_fee_bps,
    tip_lamports,
    to_raw_units,
)


class TradeSizingTests(unittest.TestCase):
    def test_variable_sizing_uses_multiplier(self) -> None:
        settings = SizingSettings()
        buy = calculate_trade_amount("buy", Sentiment.EXTREME_FEAR, "2", "1000", settings)
        sell = calculate_trade_amount("sell", "GREED", "2", "1000", settings)
        self.assertEqual(buy, Decimal("40.00"))
        self.assertEqual(sell, Decimal("0.04"))

    def test_invalid_inputs_size_to_zero(self) -> None:
        settings = SizingSettings()
        cases = [
            ("buy", Sentiment.NEUTRAL, "1", "1000", settings),
            ("buy", "UNKNOWN", "1", "1000", settings),
            ("buy", Sentiment.FEAR, "1", "0", settings),
            ("sell", Sentiment.GREED, "-1", "1000", settings),
            ("buy", Sentiment.FEAR, "1", "abc", settings),
            ("hold", Sentiment.FEAR, "1", "1000", settings),
            ("buy", Sentiment.FEAR, "1", "1000", None),
            ("buy", Sentiment.FEAR, "1", "1000", SizingSettings(method="OTHER")),
            ("buy", Sentiment.FEAR, "1", "1000", SizingSettings(method="STRATEGIC")),
        ]
        for direction, sentiment, base, quote, sizing in cases:
            with self.assertLogs("sentibot.sizing", level="WARNING"):
                amount = calculate_trade_amount(direction, sentiment, base, quote, sizing)
            self.assertEqual(amount, Decimal("0"), msg=f"{direction} {sentiment} {base} {quote}")

    def test_strategic_sizing_is_capped_by_balance(self) -> None:
        settings = SizingSettings(method="STRATEGIC")
        period = TradingPeriod(datetime.now(timezone.utc), Decimal("25"), Decimal("0.5"))
        self.assertEqual(
            calculate_trade_amount("buy", Sentiment.FEAR, "1", "1000", settings, period),
            Decimal("25"),
        )
        self.assertEqual(
            calculate_trade_amount("sell", Sentiment.GREED, "0.2", "1000", settings, period),
            Decimal("0.2"),
        )

    def test_trading_period_refreshes_after_expiry(self) -> None:
        settings = SizingSettings(method="STRATEGIC", strategic_percentage=10, trading_period_hours=24)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        period = ensure_trading_period(None, start, Decimal("2"), Decimal("1000"), settings)
        self.assertEqual(period.base_buy_amount, Decimal("100"))
        self.assertEqual(period.base_sell_amount, Decimal("0.2"))

        same = ensure_trading_period(period, start + timedelta(hours=23), Decimal("5"), Decimal("5"), settings)
        self.assertIs(same, period)

        fresh = ensure_trading_period(period, start + timedelta(hours=24), Decimal("4"), Decimal("500"), settings)
        self.assertEqual(fresh.base_buy_amount, Decimal("50"))
        self.assertEqual(fresh.base_sell_amount, Decimal("0.4"))

    def test_trading_period_round_trip_and_malformed(self) -> None:
        period = TradingPeriod(datetime(2024, 1, 1, tzinfo=timezone.utc), Decimal("1"), Decimal("2"))
        self.assertEqual(TradingPeriod.from_dict(period.to_dict()), period)
        self.assertIsNone(TradingPeriod.from_dict(None))
        with self.assertLogs("sentibot.sizing", level="WARNING"):
            self.assertIsNone(TradingPeriod.from_dict({"started_at": "nope"}))


class FeeTests(unittest.TestCase):
    def test_profit_fee_is_floored_and_capped(self) -> None:
        fees = FeeSettings(profit_fee_pct=10)
        self.assertEqual(profit_fee_bps(Decimal("10"), Decimal("1000"), fees), 50)
        fees = FeeSettings(profit_fee_pct=50)
        self.assertEqual(profit_fee_bps(Decimal("1000"), Decimal("1000"), fees), 255)

    def test_profit_fee_only_on_gain(self) -> None:
        fees = FeeSettings(base_fee_bps=20, profit_fee_pct=50)
        self.assertEqual(profit_fee_bps(Decimal("-5"), Decimal("100"), fees), 20)
        self.assertEqual(profit_fee_bps(Decimal("0"), Decimal("100"), fees), 20)
        self.assertEqual(profit_fee_bps(Decimal("5"), Decimal("100"), FeeSettings(base_fee_bps=20)), 20)

    def test_base_fee_is_capped(self) -> None:
        self.assertEqual(profit_fee_bps(Decimal("0"), Decimal("100"), FeeSettings(base_fee_bps=900)), 255)

    def test_tip_uses_multiplier_cap_and_fallback(self) -> None:
        fees = FeeSettings()
        self.assertEqual(tip_lamports(0.0001, fees), 110_000)
        self.assertEqual(tip_lamports(0.01, fees), 400_000)
        self.assertEqual(tip_lamports(None, fees), 100_000)
        self.assertEqual(tip_lamports("garbage", fees), 100_000)
        self.assertEqual(tip_lamports(-1, fees), 100_000)

    def test_raw_unit_conversion(self) -> None:
        self.assertEqual(to_raw_units(Decimal("1.5"), 6), 1_500_000)
        self.assertEqual(to_raw_units(Decimal("0.0000009"), 6), 0)
        self.assertEqual(from_raw_units(1_500_000, 6), Decimal("1.5"))


if __name__ == "__main__":
    unittest.main()
