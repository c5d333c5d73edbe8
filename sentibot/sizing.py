from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from .config import FeeSettings, SizingSettings
from .sentiment import Sentiment, parse_sentiment

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


def _safe_d(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = _d(value)
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


def to_raw_units(amount: Decimal, decimals: int) -> int:
    scaled = (_d(amount) * (Decimal(10) ** int(decimals))).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_raw_units(raw: Any, decimals: int) -> Decimal:
    return _d(raw) / (Decimal(10) ** int(decimals))


@dataclass(slots=True)
class TradingPeriod:
    started_at: datetime
    base_buy_amount: Decimal
    base_sell_amount: Decimal

    def expired(self, now: datetime, hours: float) -> bool:
        return now - self.started_at >= timedelta(hours=float(hours))

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "base_buy_amount": str(self.base_buy_amount),
            "base_sell_amount": str(self.base_sell_amount),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> TradingPeriod | None:
        if not raw:
            return None
        try:
            return cls(
                started_at=datetime.fromisoformat(raw["started_at"]),
                base_buy_amount=_d(raw["base_buy_amount"]),
                base_sell_amount=_d(raw["base_sell_amount"]),
            )
        except (KeyError, ValueError, InvalidOperation):
            logger.warning("discarding malformed trading period %r", raw)
            return None


def ensure_trading_period(
    period: TradingPeriod | None,
    now: datetime,
    base_balance: Decimal,
    quote_balance: Decimal,
    settings: SizingSettings,
) -> TradingPeriod:
    if period is not None and not period.expired(now, settings.trading_period_hours):
        return period
    pct = _d(settings.strategic_percentage) / Decimal("100")
    fresh = TradingPeriod(
        started_at=now,
        base_buy_amount=max(_ZERO, _d(quote_balance) * pct),
        base_sell_amount=max(_ZERO, _d(base_balance) * pct),
    )
    logger.info(
        "new trading period: buy %s quote, sell %s base",
        fresh.base_buy_amount,
        fresh.base_sell_amount,
    )
    return fresh


def calculate_trade_amount(
    direction: str,
    sentiment: Any,
    base_balance: Any,
    quote_balance: Any,
    settings: SizingSettings | None,
    period: TradingPeriod | None = None,
) -> Decimal:
    """Size of a new trade: quote units for a buy, base units for a sell.

    Invalid input never raises; it yields zero and the cycle holds.
    """
    if settings is None:
        logger.warning("sizing settings missing; no trade")
        return _ZERO
    category = parse_sentiment(sentiment)
    if category is None or category == Sentiment.NEUTRAL:
        logger.warning("cannot size a trade for sentiment %r", sentiment)
        return _ZERO
    if direction not in {"buy", "sell"}:
        logger.warning("cannot size a trade for direction %r", direction)
        return _ZERO
    balance = _safe_d(quote_balance if direction == "buy" else base_balance)
    if balance is None or balance <= 0:
        logger.warning("invalid %s balance %r; no trade", direction, balance)
        return _ZERO

    method = str(settings.method).upper()
    if method == "STRATEGIC":
        if period is None:
            logger.warning("strategic sizing without a trading period; no trade")
            return _ZERO
        amount = period.base_buy_amount if direction == "buy" else period.base_sell_amount
        return min(amount, balance)
    if method == "VARIABLE":
        raw = settings.multipliers.get(category.value)
        multiplier = _safe_d(raw)
        if multiplier is None or multiplier <= 0:
            logger.warning("no sizing multiplier for %s", category.value)
            return _ZERO
        return balance * multiplier
    logger.warning("unknown sizing method %r", settings.method)
    return _ZERO


def estimated_close_pnl(direction: str, entry_price: Decimal, exit_price: Decimal, base_amount: Decimal) -> Decimal:
    if direction == "buy":
        return (exit_price - entry_price) * base_amount
    return (entry_price - exit_price) * base_amount


def profit_fee_bps(estimated_pnl: Decimal, notional: Decimal, fees: FeeSettings) -> int:
    base = int(fees.base_fee_bps)
    if estimated_pnl <= 0 or notional <= 0 or float(fees.profit_fee_pct) <= 0:
        return min(base, int(fees.max_fee_bps))
    fee_quote = estimated_pnl * _d(fees.profit_fee_pct) / Decimal("100")
    profit_bps = int((fee_quote / notional * Decimal("10000")).to_integral_value(rounding=ROUND_DOWN))
    total = max(base + profit_bps, int(fees.min_fee_bps))
    return min(total, int(fees.max_fee_bps))


def tip_lamports(suggested_sol: Any, fees: FeeSettings) -> int:
    suggested = _safe_d(suggested_sol)
    if suggested is None or suggested <= 0:
        return int(fees.fallback_tip_lamports)
    lamports = suggested * Decimal("1000000000") * _d(fees.tip_multiplier)
    return min(int(lamports.to_integral_value(rounding=ROUND_DOWN)), int(fees.max_tip_lamports))


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
