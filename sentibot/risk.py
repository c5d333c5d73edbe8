from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .config import GuardrailSettings
from .state import get_last_trade_ts
from .strategy import TradeIntent

_CLOSE_QUOTE_BUFFER = Decimal("1.01")


def _d(value: object) -> Decimal:
    return Decimal(str(value))


@dataclass(slots=True)
class RiskContext:
    now: datetime
    base_available: Decimal
    quote_available: Decimal
    price: Decimal

    @property
    def portfolio_value(self) -> Decimal:
        return self.base_available * self.price + self.quote_available


def _seconds_since(older: datetime, newer: datetime) -> float:
    return (newer - older).total_seconds()


def open_checks(
    state: dict,
    guardrails: GuardrailSettings,
    context: RiskContext,
    intent: TradeIntent,
) -> list[str]:
    reasons: list[str] = []
    if intent.amount <= 0:
        reasons.append("order size is zero")
        return reasons

    if context.portfolio_value < _d(guardrails.min_usd_reserve):
        reasons.append("portfolio below min_usd_reserve")

    if intent.direction == "buy":
        if intent.amount > context.quote_available:
            reasons.append("insufficient quote balance")
        elif context.quote_available - intent.amount < _d(guardrails.min_usd_reserve):
            reasons.append("would violate min_usd_reserve")
    elif intent.amount > context.base_available:
        reasons.append("insufficient base balance")
    elif (context.base_available - intent.amount) * context.price < _d(guardrails.min_usd_reserve):
        reasons.append("would violate min_usd_reserve")

    last_trade = get_last_trade_ts(state)
    if last_trade is not None and guardrails.cooldown_seconds > 0:
        if _seconds_since(last_trade, context.now) < guardrails.cooldown_seconds:
            reasons.append("cooldown active")
    return reasons


def close_checks(context: RiskContext, intent: TradeIntent) -> list[str]:
    reasons: list[str] = []
    if intent.amount <= 0:
        reasons.append("close size is zero")
        return reasons
    if intent.direction == "sell":
        if intent.amount > context.base_available:
            reasons.append("insufficient base balance to close lot")
    else:
        needed = intent.amount * context.price * _CLOSE_QUOTE_BUFFER
        if needed > context.quote_available:
            reasons.append("insufficient quote balance to close lot")
    return reasons
