from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


def _weighted_average(old_avg: Decimal, old_qty: Decimal, price: Decimal, qty: Decimal) -> Decimal:
    total = old_qty + qty
    if total <= 0:
        return _ZERO
    return (old_avg * old_qty + price * qty) / total


def _pct_change(initial: Decimal, current: Decimal) -> Decimal:
    if initial == 0:
        return _ZERO
    return (current - initial) / initial * _HUNDRED


@dataclass(slots=True)
class PositionLedger:
    base_balance: Decimal = _ZERO
    quote_balance: Decimal = _ZERO
    initial_base_balance: Decimal = _ZERO
    initial_quote_balance: Decimal = _ZERO
    initial_price: Decimal = _ZERO
    cycle_count: int = 0
    total_base_bought: Decimal = _ZERO
    total_quote_spent: Decimal = _ZERO
    total_base_sold: Decimal = _ZERO
    total_quote_received: Decimal = _ZERO
    avg_entry_price: Decimal = _ZERO
    avg_exit_price: Decimal = _ZERO
    buy_count: int = 0
    sell_count: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def start(cls, base_balance: Any, quote_balance: Any, price: Any) -> PositionLedger:
        base = _d(base_balance)
        quote = _d(quote_balance)
        return cls(
            base_balance=base,
            quote_balance=quote,
            initial_base_balance=base,
            initial_quote_balance=quote,
            initial_price=_d(price),
        )

    @property
    def net_base_traded(self) -> Decimal:
        return self.total_base_bought - self.total_base_sold

    @property
    def initial_value(self) -> Decimal:
        return self.initial_base_balance * self.initial_price + self.initial_quote_balance

    def apply_fill(self, direction: str, base_amount: Any, quote_amount: Any, price: Any) -> None:
        base = _d(base_amount)
        quote = _d(quote_amount)
        fill_price = _d(price)
        if base <= 0 or quote < 0:
            raise ValueError(f"fill amounts must be positive (base={base}, quote={quote})")
        if direction == "buy":
            self.avg_entry_price = _weighted_average(
                self.avg_entry_price, self.total_base_bought, fill_price, base
            )
            self.total_base_bought += base
            self.total_quote_spent += quote
            self.base_balance += base
            self.quote_balance -= quote
            self.buy_count += 1
        elif direction == "sell":
            self.avg_exit_price = _weighted_average(
                self.avg_exit_price, self.total_base_sold, fill_price, base
            )
            self.total_base_sold += base
            self.total_quote_received += quote
            self.base_balance -= base
            self.quote_balance += quote
            self.sell_count += 1
        else:
            raise ValueError(f"unknown direction {direction!r}")
        logger.debug(
            "applied %s fill base=%s quote=%s -> balances base=%s quote=%s",
            direction,
            base,
            quote,
            self.base_balance,
            self.quote_balance,
        )

    def sync_balances(self, base_balance: Any, quote_balance: Any) -> None:
        self.base_balance = _d(base_balance)
        self.quote_balance = _d(quote_balance)

    def increment_cycle(self) -> int:
        self.cycle_count += 1
        return self.cycle_count

    def current_value(self, price: Any) -> Decimal:
        return self.base_balance * _d(price) + self.quote_balance

    def net_change(self, price: Any) -> Decimal:
        return self.net_base_traded * _d(price) + (self.total_quote_received - self.total_quote_spent)

    def enhanced_statistics(self, price: Any, now: datetime | None = None) -> dict[str, Any]:
        current_price = _d(price)
        current_time = now or datetime.now(timezone.utc)
        runtime_hours = Decimal(str((current_time - self.start_time).total_seconds())) / Decimal("3600")
        initial_value = self.initial_value
        current_value = self.current_value(current_price)
        return {
            "runtime_hours": runtime_hours,
            "total_cycles": self.cycle_count,
            "portfolio_value": {
                "initial": initial_value,
                "current": current_value,
                "change": current_value - initial_value,
                "percentage_change": _pct_change(initial_value, current_value),
            },
            "token_price": {
                "initial": self.initial_price,
                "current": current_price,
                "percentage_change": _pct_change(self.initial_price, current_price),
            },
            "net_change": self.net_change(current_price),
            "total_volume": {
                "base": self.total_base_bought + self.total_base_sold,
                "quote": self.total_quote_spent + self.total_quote_received,
            },
            "balances": {
                "base": {
                    "initial": self.initial_base_balance,
                    "current": self.base_balance,
                    "net_change": self.base_balance - self.initial_base_balance,
                },
                "quote": {
                    "initial": self.initial_quote_balance,
                    "current": self.quote_balance,
                    "net_change": self.quote_balance - self.initial_quote_balance,
                },
            },
            "average_prices": {
                "entry": self.avg_entry_price,
                "exit": self.avg_exit_price,
            },
            "trades_count": self.buy_count + self.sell_count,
            "buys": self.buy_count,
            "sells": self.sell_count,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_balance": str(self.base_balance),
            "quote_balance": str(self.quote_balance),
            "initial_base_balance": str(self.initial_base_balance),
            "initial_quote_balance": str(self.initial_quote_balance),
            "initial_price": str(self.initial_price),
            "cycle_count": self.cycle_count,
            "total_base_bought": str(self.total_base_bought),
            "total_quote_spent": str(self.total_quote_spent),
            "total_base_sold": str(self.total_base_sold),
            "total_quote_received": str(self.total_quote_received),
            "avg_entry_price": str(self.avg_entry_price),
            "avg_exit_price": str(self.avg_exit_price),
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "start_time": self.start_time.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PositionLedger:
        ledger = cls()
        for name in (
            "base_balance",
            "quote_balance",
            "initial_base_balance",
            "initial_quote_balance",
            "initial_price",
            "total_base_bought",
            "total_quote_spent",
            "total_base_sold",
            "total_quote_received",
            "avg_entry_price",
            "avg_exit_price",
        ):
            if name in raw:
                setattr(ledger, name, _d(raw[name]))
        ledger.cycle_count = int(raw.get("cycle_count", 0))
        ledger.buy_count = int(raw.get("buy_count", 0))
        ledger.sell_count = int(raw.get("sell_count", 0))
        if raw.get("start_time"):
            ledger.start_time = datetime.fromisoformat(raw["start_time"])
        return ledger
