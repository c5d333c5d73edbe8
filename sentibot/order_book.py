from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


def _opposite(direction: str) -> str:
    return "sell" if direction == "buy" else "buy"


@dataclass(slots=True)
class Lot:
    id: str
    direction: str
    opened_at: datetime
    entry_price: Decimal
    base_amount: Decimal
    quote_value: Decimal
    status: str = "open"
    unrealized_pnl: Decimal | None = _ZERO
    realized_pnl: Decimal | None = None
    closed_at: datetime | None = None
    close_price: Decimal | None = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def pnl_at(self, price: Decimal) -> Decimal:
        if self.direction == "buy":
            return (price - self.entry_price) * self.base_amount
        return (self.entry_price - price) * self.base_amount

    def profit_pct_at(self, price: Decimal) -> Decimal:
        if self.entry_price <= 0:
            return _ZERO
        if self.direction == "buy":
            return (price - self.entry_price) / self.entry_price * Decimal("100")
        return (self.entry_price - price) / self.entry_price * Decimal("100")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "opened_at": self.opened_at.isoformat(),
            "entry_price": str(self.entry_price),
            "base_amount": str(self.base_amount),
            "quote_value": str(self.quote_value),
            "status": self.status,
            "unrealized_pnl": None if self.unrealized_pnl is None else str(self.unrealized_pnl),
            "realized_pnl": None if self.realized_pnl is None else str(self.realized_pnl),
            "closed_at": None if self.closed_at is None else self.closed_at.isoformat(),
            "close_price": None if self.close_price is None else str(self.close_price),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Lot:
        status = str(raw.get("status", "open"))
        if status not in {"open", "closed"}:
            raise ValueError(f"lot {raw.get('id')} has unknown status {status!r}")
        direction = str(raw.get("direction", ""))
        if direction not in {"buy", "sell"}:
            raise ValueError(f"lot {raw.get('id')} has unknown direction {direction!r}")
        closed_at = raw.get("closed_at")
        close_price = raw.get("close_price")
        if status == "closed" and (closed_at is None or close_price is None):
            raise ValueError(f"closed lot {raw.get('id')} is missing close data")
        if status == "open" and (closed_at is not None or close_price is not None):
            raise ValueError(f"open lot {raw.get('id')} carries close data")
        realized = raw.get("realized_pnl")
        unrealized = raw.get("unrealized_pnl")
        return cls(
            id=str(raw["id"]),
            direction=direction,
            opened_at=datetime.fromisoformat(raw["opened_at"]),
            entry_price=_d(raw["entry_price"]),
            base_amount=_d(raw["base_amount"]),
            quote_value=_d(raw["quote_value"]),
            status=status,
            unrealized_pnl=None if status == "closed" else _d(unrealized or "0"),
            realized_pnl=_d(realized) if status == "closed" and realized is not None else None,
            closed_at=None if closed_at is None else datetime.fromisoformat(closed_at),
            close_price=None if close_price is None else _d(close_price),
        )


class LotLedger:
    """Insertion-ordered collection of trade lots, matched FIFO on close."""

    def __init__(self, lots: list[Lot] | None = None):
        self._lots: list[Lot] = []
        self._index: dict[str, Lot] = {}
        for lot in lots or []:
            if lot.id in self._index:
                raise ValueError(f"duplicate lot id {lot.id}")
            self._lots.append(lot)
            self._index[lot.id] = lot

    def __len__(self) -> int:
        return len(self._lots)

    def get(self, lot_id: str) -> Lot | None:
        return self._index.get(lot_id)

    def open(
        self,
        direction: str,
        base_amount: Decimal,
        quote_value: Decimal,
        price: Decimal,
        ref: str,
        opened_at: datetime | None = None,
    ) -> Lot:
        if direction not in {"buy", "sell"}:
            raise ValueError(f"unknown direction {direction!r}")
        existing = self._index.get(ref)
        if existing is not None:
            logger.info("lot %s already recorded; ignoring duplicate fill", ref)
            return existing
        lot = Lot(
            id=str(ref),
            direction=direction,
            opened_at=opened_at or datetime.now(timezone.utc),
            entry_price=_d(price),
            base_amount=_d(base_amount),
            quote_value=_d(quote_value),
        )
        self._lots.append(lot)
        self._index[lot.id] = lot
        logger.info(
            "opened %s lot %s: %s base @ %s", direction, lot.id, lot.base_amount, lot.entry_price
        )
        return lot

    def find_oldest_opposite(
        self,
        direction: str,
        current_price: Decimal,
        min_profit_pct: Decimal | float | None = None,
    ) -> Lot | None:
        wanted = _opposite(direction)
        for lot in self._lots:
            if not lot.is_open or lot.direction != wanted:
                continue
            if min_profit_pct is not None and lot.profit_pct_at(_d(current_price)) < _d(min_profit_pct):
                continue
            return lot
        return None

    def close(self, lot_id: str, close_price: Decimal, closed_at: datetime | None = None) -> Decimal:
        lot = self._index.get(lot_id)
        if lot is None:
            raise KeyError(f"unknown lot {lot_id}")
        if not lot.is_open:
            return lot.realized_pnl if lot.realized_pnl is not None else _ZERO
        price = _d(close_price)
        lot.realized_pnl = lot.pnl_at(price)
        lot.close_price = price
        lot.closed_at = closed_at or datetime.now(timezone.utc)
        lot.unrealized_pnl = None
        lot.status = "closed"
        logger.info("closed lot %s @ %s realized=%s", lot.id, price, lot.realized_pnl)
        return lot.realized_pnl

    def partial_close(
        self,
        lot_id: str,
        closed_base: Decimal,
        close_price: Decimal,
        ref: str,
        closed_at: datetime | None = None,
    ) -> Lot:
        """Split the unwound portion of an open lot into its own closed lot.

        The parent keeps its place in FIFO order with the remaining base amount.
        """
        parent = self._index.get(lot_id)
        if parent is None:
            raise KeyError(f"unknown lot {lot_id}")
        child_id = f"{lot_id}/{ref}"
        existing = self._index.get(child_id)
        if existing is not None:
            return existing
        if not parent.is_open:
            raise ValueError(f"lot {lot_id} is already closed")
        closed_base = _d(closed_base)
        if closed_base <= 0 or closed_base >= parent.base_amount:
            raise ValueError(f"partial close of {closed_base} is outside lot {lot_id} size")

        share = closed_base / parent.base_amount
        child_quote = parent.quote_value * share
        child = Lot(
            id=child_id,
            direction=parent.direction,
            opened_at=parent.opened_at,
            entry_price=parent.entry_price,
            base_amount=closed_base,
            quote_value=child_quote,
        )
        parent.base_amount -= closed_base
        parent.quote_value -= child_quote
        parent.unrealized_pnl = parent.pnl_at(_d(close_price))
        self._lots.append(child)
        self._index[child.id] = child
        self.close(child.id, close_price, closed_at=closed_at)
        logger.warning(
            "partial close of lot %s: %s base closed, %s remaining",
            lot_id,
            closed_base,
            parent.base_amount,
        )
        return child

    def mark_to_market(self, current_price: Decimal) -> None:
        price = _d(current_price)
        for lot in self._lots:
            if lot.is_open:
                lot.unrealized_pnl = lot.pnl_at(price)

    def open_lots(self) -> list[Lot]:
        return [lot for lot in self._lots if lot.is_open]

    def closed_lots(self) -> list[Lot]:
        return [lot for lot in self._lots if not lot.is_open]

    def statistics(self) -> dict[str, Any]:
        open_lots = self.open_lots()
        closed_lots = self.closed_lots()
        winning = [lot for lot in closed_lots if (lot.realized_pnl or _ZERO) > 0]
        total_volume = sum((lot.quote_value for lot in self._lots), _ZERO)
        total_trades = len(self._lots)
        win_rate = (
            Decimal(len(winning)) / Decimal(len(closed_lots)) * Decimal("100")
            if closed_lots
            else _ZERO
        )
        return {
            "total_trades": total_trades,
            "open_count": len(open_lots),
            "closed_count": len(closed_lots),
            "winning_trades": len(winning),
            "win_rate": win_rate,
            "total_realized_pnl": sum((lot.realized_pnl or _ZERO for lot in closed_lots), _ZERO),
            "total_unrealized_pnl": sum((lot.unrealized_pnl or _ZERO for lot in open_lots), _ZERO),
            "total_volume": total_volume,
            "avg_trade_size": total_volume / Decimal(total_trades) if total_trades else _ZERO,
        }

    def to_dict(self) -> list[dict[str, Any]]:
        return [lot.to_dict() for lot in self._lots]

    @classmethod
    def from_dict(cls, rows: list[dict[str, Any]] | None) -> LotLedger:
        return cls([Lot.from_dict(row) for row in rows or []])
