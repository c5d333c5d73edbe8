from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from .config import BotConfig
from .order_book import LotLedger
from .position import PositionLedger
from .sentiment import Classification, Sentiment, is_buy_side, is_sell_side, parse_sentiment
from .sizing import TradingPeriod, calculate_trade_amount, ensure_trading_period, now_utc

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

_ADJACENT = {
    Sentiment.FEAR: {Sentiment.FEAR, Sentiment.EXTREME_FEAR},
    Sentiment.EXTREME_FEAR: {Sentiment.EXTREME_FEAR, Sentiment.FEAR},
    Sentiment.GREED: {Sentiment.GREED, Sentiment.EXTREME_GREED},
    Sentiment.EXTREME_GREED: {Sentiment.EXTREME_GREED, Sentiment.GREED},
}


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


@dataclass(slots=True)
class TradeIntent:
    direction: str
    amount: Decimal
    swap_mode: str
    sentiment: Sentiment
    closing_lot_id: str | None = None
    reason: str = ""

    @property
    def is_close(self) -> bool:
        return self.closing_lot_id is not None


@dataclass(slots=True)
class Decision:
    intent: TradeIntent | None
    reason: str
    details: dict[str, Any] = field(default_factory=dict)
    allocation_target: bool | None = None


@dataclass(slots=True)
class StreakState:
    readings: list[tuple[Sentiment, float]] = field(default_factory=list)
    threshold: int = 5
    total_streaks: int = 0
    total_length: int = 0
    longest: int = 0

    def __len__(self) -> int:
        return len(self.readings)

    @property
    def last(self) -> Sentiment | None:
        return self.readings[-1][0] if self.readings else None

    @property
    def first(self) -> Sentiment | None:
        return self.readings[0][0] if self.readings else None

    def follows(self, sentiment: Sentiment) -> bool:
        last = self.last
        if last is None:
            return False
        return sentiment in _ADJACENT.get(last, set())

    def clear(self) -> None:
        length = len(self.readings)
        if length >= 2:
            self.total_streaks += 1
            self.total_length += length
            self.longest = max(self.longest, length)
        self.readings = []

    def average_length(self) -> float:
        if self.total_streaks == 0:
            return 0.0
        return self.total_length / self.total_streaks

    def to_dict(self) -> dict[str, Any]:
        return {
            "readings": [[sentiment.value, value] for sentiment, value in self.readings],
            "threshold": self.threshold,
            "total_streaks": self.total_streaks,
            "total_length": self.total_length,
            "longest": self.longest,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None, threshold: int) -> StreakState:
        raw = raw or {}
        readings: list[tuple[Sentiment, float]] = []
        for item in raw.get("readings", []):
            if not isinstance(item, (list, tuple)) or len(item) < 2:
                logger.warning("dropping malformed streak reading %r", item)
                continue
            sentiment = parse_sentiment(item[0])
            value = item[1]
            if (
                sentiment is None
                or sentiment == Sentiment.NEUTRAL
                or isinstance(value, bool)
                or not isinstance(value, (int, float))
            ):
                logger.warning("dropping malformed streak reading %r", item)
                continue
            readings.append((sentiment, float(value)))
        return cls(
            readings=readings,
            threshold=int(threshold),
            total_streaks=int(raw.get("total_streaks", 0)),
            total_length=int(raw.get("total_length", 0)),
            longest=int(raw.get("longest", 0)),
        )


@dataclass(slots=True)
class ThresholdState:
    days_above: int = 0
    days_below: int = 0
    in_high_allocation: bool | None = None
    last_value: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "days_above": self.days_above,
            "days_below": self.days_below,
            "in_high_allocation": self.in_high_allocation,
            "last_value": self.last_value,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> ThresholdState:
        raw = raw or {}
        flag = raw.get("in_high_allocation")
        return cls(
            days_above=int(raw.get("days_above", 0)),
            days_below=int(raw.get("days_below", 0)),
            in_high_allocation=None if flag is None else bool(flag),
            last_value=raw.get("last_value"),
        )


@dataclass(slots=True)
class StrategyState:
    streak: StreakState = field(default_factory=StreakState)
    threshold: ThresholdState = field(default_factory=ThresholdState)
    trading_period: TradingPeriod | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "streak": self.streak.to_dict(),
            "threshold": self.threshold.to_dict(),
            "trading_period": None if self.trading_period is None else self.trading_period.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None, streak_threshold: int) -> StrategyState:
        raw = raw or {}
        return cls(
            streak=StreakState.from_dict(raw.get("streak"), streak_threshold),
            threshold=ThresholdState.from_dict(raw.get("threshold")),
            trading_period=TradingPeriod.from_dict(raw.get("trading_period")),
        )


def _direction_for(sentiment: Sentiment) -> str | None:
    if is_buy_side(sentiment):
        return "buy"
    if is_sell_side(sentiment):
        return "sell"
    return None


def _open_intent(
    direction: str,
    sentiment: Sentiment,
    state: StrategyState,
    position: PositionLedger,
    config: BotConfig,
    now: datetime,
    reason: str,
) -> Decision:
    period = None
    if config.sizing.method == "STRATEGIC":
        state.trading_period = ensure_trading_period(
            state.trading_period,
            now,
            position.base_balance,
            position.quote_balance,
            config.sizing,
        )
        period = state.trading_period
    amount = calculate_trade_amount(
        direction,
        sentiment,
        position.base_balance,
        position.quote_balance,
        config.sizing,
        period,
    )
    if amount <= 0:
        return Decision(None, f"{sentiment.value}: trade size is zero")
    intent = TradeIntent(
        direction=direction,
        amount=amount,
        swap_mode="ExactIn",
        sentiment=sentiment,
        reason=reason,
    )
    return Decision(intent, reason)


class DirectStrategy:
    name = "direct"

    def __init__(self, config: BotConfig):
        self.config = config

    def decide(
        self,
        state: StrategyState,
        classification: Classification,
        price: Decimal,
        position: PositionLedger,
        lots: LotLedger,
        now: datetime | None = None,
    ) -> Decision:
        sentiment = classification.sentiment
        direction = _direction_for(sentiment)
        if direction is None:
            return Decision(None, "neutral sentiment; holding")

        min_profit = self.config.strategy.min_close_profit_pct
        lot = lots.find_oldest_opposite(direction, price, min_profit)
        if lot is not None:
            # ExactIn on base when selling a long lot, ExactOut on base when buying back a short.
            intent = TradeIntent(
                direction=direction,
                amount=lot.base_amount,
                swap_mode="ExactIn" if direction == "sell" else "ExactOut",
                sentiment=sentiment,
                closing_lot_id=lot.id,
                reason=f"{sentiment.value}: closing {lot.direction} lot {lot.id}",
            )
            return Decision(intent, intent.reason, {"closing_lot": lot.id})
        return _open_intent(
            direction,
            sentiment,
            state,
            position,
            self.config,
            now or now_utc(),
            f"{sentiment.value}: opening {direction}",
        )

    def commit(self, state: StrategyState, decision: Decision, landed: bool) -> None:
        return None


class StreakStrategy:
    name = "streak"

    def __init__(self, config: BotConfig):
        self.config = config

    def decide(
        self,
        state: StrategyState,
        classification: Classification,
        price: Decimal,
        position: PositionLedger,
        lots: LotLedger,
        now: datetime | None = None,
    ) -> Decision:
        streak = state.streak
        streak.threshold = int(self.config.strategy.streak_threshold)
        sentiment = classification.sentiment
        value = classification.value if classification.value is not None else 50.0
        if not classification.valid:
            return Decision(None, "invalid signal; streak unchanged", self._details(streak))

        if not streak.readings:
            if sentiment == Sentiment.NEUTRAL:
                return Decision(None, "neutral sentiment; no streak", self._details(streak))
            streak.readings.append((sentiment, value))
            return Decision(None, f"streak started on {sentiment.value}", self._details(streak))

        if sentiment == Sentiment.NEUTRAL:
            length = len(streak)
            first = streak.first
            streak.clear()
            if length < streak.threshold or first is None:
                return Decision(
                    None,
                    f"streak of {length} broken by NEUTRAL before threshold {streak.threshold}",
                    self._details(streak),
                )
            direction = _direction_for(first)
            logger.info("streak of %s %s readings exhausted; trading %s", length, first.value, direction)
            decision = _open_intent(
                direction or "buy",
                first,
                state,
                position,
                self.config,
                now or now_utc(),
                f"{first.value} streak of {length} exhausted",
            )
            decision.details.update(self._details(streak))
            decision.details["fired_streak_length"] = length
            return decision

        if streak.follows(sentiment):
            streak.readings.append((sentiment, value))
            return Decision(
                None,
                f"streak extended to {len(streak)}/{streak.threshold}",
                self._details(streak),
            )

        broken = len(streak)
        streak.clear()
        streak.readings.append((sentiment, value))
        return Decision(
            None,
            f"streak of {broken} broken; restarted on {sentiment.value}",
            self._details(streak),
        )

    @staticmethod
    def _details(streak: StreakState) -> dict[str, Any]:
        return {
            "streak_length": len(streak),
            "streak_threshold": streak.threshold,
            "streak_side": streak.first.value if streak.first else None,
        }

    def commit(self, state: StrategyState, decision: Decision, landed: bool) -> None:
        return None


class ThresholdStrategy:
    name = "threshold"

    def __init__(self, config: BotConfig):
        self.config = config

    def decide(
        self,
        state: StrategyState,
        classification: Classification,
        price: Decimal,
        position: PositionLedger,
        lots: LotLedger,
        now: datetime | None = None,
    ) -> Decision:
        settings = self.config.threshold
        tracker = state.threshold
        if not classification.valid or classification.value is None:
            return Decision(None, "invalid signal; allocation unchanged", tracker.to_dict())

        value = float(classification.value)
        tracker.last_value = value
        if value >= float(settings.threshold):
            tracker.days_above += 1
            tracker.days_below = 0
        else:
            tracker.days_below += 1
            tracker.days_above = 0

        target: bool | None = None
        if tracker.in_high_allocation is None:
            target = value >= float(settings.threshold)
        elif not tracker.in_high_allocation and tracker.days_above >= int(settings.switch_delay):
            target = True
        elif tracker.in_high_allocation and tracker.days_below >= int(settings.switch_delay):
            target = False

        details = tracker.to_dict()
        if target is None:
            return Decision(None, "allocation unchanged", details)

        intent = self._rebalance_intent(target, price, position, classification.sentiment)
        label = "high" if target else "low"
        if intent is None:
            tracker.in_high_allocation = target
            return Decision(None, f"already at {label} allocation", details)
        return Decision(intent, intent.reason, details, allocation_target=target)

    def _rebalance_intent(
        self,
        high: bool,
        price: Decimal,
        position: PositionLedger,
        sentiment: Sentiment,
    ) -> TradeIntent | None:
        settings = self.config.threshold
        price = _d(price)
        if price <= 0:
            return None
        pct = _d(settings.high_allocation_pct if high else settings.low_allocation_pct)
        total_value = position.current_value(price)
        target_base_value = total_value * pct / Decimal("100")
        diff_value = target_base_value - position.base_balance * price
        base_amount = abs(diff_value) / price
        if base_amount < _d(settings.min_trade_amount):
            return None
        label = "high" if high else "low"
        if diff_value > 0:
            spend = min(
                diff_value,
                position.quote_balance - _d(self.config.guardrails.min_usd_reserve),
            )
            if spend <= 0:
                return None
            return TradeIntent(
                direction="buy",
                amount=spend,
                swap_mode="ExactIn",
                sentiment=sentiment,
                reason=f"switching to {label} allocation ({pct}% base)",
            )
        sell = min(base_amount, position.base_balance)
        if sell <= 0:
            return None
        return TradeIntent(
            direction="sell",
            amount=sell,
            swap_mode="ExactIn",
            sentiment=sentiment,
            reason=f"switching to {label} allocation ({pct}% base)",
        )

    def commit(self, state: StrategyState, decision: Decision, landed: bool) -> None:
        if landed and decision.allocation_target is not None:
            state.threshold.in_high_allocation = decision.allocation_target
            logger.info("allocation now %s", "high" if decision.allocation_target else "low")


def build_strategy(config: BotConfig) -> DirectStrategy | StreakStrategy | ThresholdStrategy:
    variant = config.strategy.variant
    if variant == "streak":
        return StreakStrategy(config)
    if variant == "threshold":
        return ThresholdStrategy(config)
    return DirectStrategy(config)
