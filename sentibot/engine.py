from __future__ import annotations

import logging
import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

from .clients import PriceClient, QuoteClient, RelayClient, RpcClient, SignalClient, TipFeeOracle
from .config import BotConfig
from .execution import BundleRelayBackend, CancellationToken, ExecutionController, PaperVenue
from .metrics import append_equity_point, append_trade, default_metrics, load_metrics, save_metrics
from .position import PositionLedger
from .risk import RiskContext, close_checks, open_checks
from .sentiment import classify
from .signing import KeypairSigner, PaperSigner
from .state import (
    append_trade_log,
    default_state,
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
from .strategy import build_strategy

logger = logging.getLogger(__name__)

TradeCallback = Callable[[str, dict[str, Any]], None]


def _d(value: object) -> Decimal:
    return Decimal(str(value))


def _q4(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.0001")))


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_cycle(now: datetime, interval_minutes: int, delay_after_seconds: int) -> float:
    interval = timedelta(minutes=int(interval_minutes))
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = now - midnight
    boundary = midnight + interval * (elapsed // interval)
    target = boundary + timedelta(seconds=int(delay_after_seconds))
    while target <= now:
        target += interval
    return (target - now).total_seconds()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


class _Ansi:
    RESET = "\033[0m"
    DIM = "\033[2m"
    BOLD = "\033[1m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"


@dataclass(slots=True)
class CycleResult:
    action: str
    reason: str
    mode: str
    pair: str
    price: Decimal
    details: dict[str, Any]


class TradingEngine:
    def __init__(
        self,
        config: BotConfig,
        *,
        execute_live: bool = False,
        persist: bool = True,
        signal_client: Any = None,
        price_client: Any = None,
        rpc_client: Any = None,
        quote_source: Any = None,
        backend: Any = None,
        signer: Any = None,
        fee_oracle: Any = None,
    ):
        self.config = config
        self.persist = persist
        self.live = self._live_orders_allowed(execute_live)
        self.pair = f"{config.tokens.base_symbol}/{config.tokens.quote_symbol}"
        timeout = float(config.execution.timeout_seconds)
        endpoints = config.endpoints

        self.signal_client = signal_client or SignalClient(
            endpoints.signal_url, endpoints.signal_value_path, timeout
        )
        self.price_client = price_client or PriceClient(endpoints.price_url, timeout)
        self.paper_venue: PaperVenue | None = None
        self.rpc_client = rpc_client
        if self.live:
            self.signer = signer or KeypairSigner(os.getenv("SENTIBOT_PRIVATE_KEY", ""))
            quote_source = quote_source or QuoteClient(
                endpoints.quote_url, float(config.execution.quote_timeout_seconds)
            )
            backend = backend or BundleRelayBackend(RelayClient(endpoints.relay_url, timeout))
            fee_oracle = fee_oracle or TipFeeOracle(
                endpoints.tip_stream_url, float(config.fees.oracle_timeout_seconds)
            )
            if self.rpc_client is None:
                self.rpc_client = RpcClient(
                    [endpoints.primary_rpc_url, endpoints.secondary_rpc_url], timeout
                )
        else:
            self.signer = signer or PaperSigner()
            if quote_source is None or backend is None:
                self.paper_venue = PaperVenue(config)
                quote_source = quote_source or self.paper_venue
                backend = backend or self.paper_venue
        self.wallet = os.getenv("SENTIBOT_WALLET") or self.signer.public_key

        self.token = CancellationToken()
        self.controller = ExecutionController(
            config,
            quote_source=quote_source,
            backend=backend,
            signer=self.signer,
            fee_oracle=fee_oracle,
            token=self.token,
        )
        self.strategy = build_strategy(config)

        self.state = load_state(config.state_file) if persist else default_state()
        self.metrics = load_metrics(config.metrics_file) if persist else default_metrics()
        self.position: PositionLedger | None = get_position(self.state)
        self.lots = get_lots(self.state)
        self.strategy_state = get_strategy_state(self.state, config.strategy.streak_threshold)
        self._callbacks: list[TradeCallback] = []
        self._stop = threading.Event()
        self._last_price: Decimal | None = None
        self._last_printed_line: str | None = None

    def on_trade_confirmed(self, callback: TradeCallback) -> None:
        self._callbacks.append(callback)

    def cancel_in_flight(self) -> None:
        logger.info("cancellation requested")
        self.token.cancel()

    def stop(self) -> None:
        self._stop.set()
        self.token.cancel()

    def get_open_lots(self) -> list[dict[str, Any]]:
        return [lot.to_dict() for lot in self.lots.open_lots()]

    def get_closed_lots(self) -> list[dict[str, Any]]:
        return [lot.to_dict() for lot in self.lots.closed_lots()]

    def get_statistics(self) -> dict[str, Any]:
        streak = self.strategy_state.streak
        out: dict[str, Any] = {
            "mode": self.config.mode,
            "live": self.live,
            "strategy": self.strategy.name,
            "lots": self.lots.statistics(),
            "streak": {
                "length": len(streak),
                "threshold": streak.threshold,
                "total_streaks": streak.total_streaks,
                "average_length": round(streak.average_length(), 2),
                "longest": streak.longest,
            },
            "allocation": self.strategy_state.threshold.to_dict(),
        }
        if self.position is not None:
            price = self._last_price or self.position.initial_price
            out["position"] = self.position.enhanced_statistics(price)
        return _jsonable(out)

    def status(self) -> dict[str, Any]:
        price = self._last_price
        if price is None:
            try:
                price = self.price_client.fetch_price(self.config.tokens.base_mint)
                self._last_price = price
            except Exception as exc:
                logger.warning("price unavailable for status: %s", exc)
        out = self.get_statistics()
        out.update(
            {
                "pair": self.pair,
                "price": None if price is None else str(price),
                "wallet": self.wallet,
                "open_lots": self.get_open_lots(),
                "state_file": self.config.state_file,
                "metrics_file": self.config.metrics_file,
            }
        )
        return out

    def reset_position(self) -> PositionLedger:
        self.cancel_in_flight()
        price = self.price_client.fetch_price(self.config.tokens.base_mint)
        base, quote = self._read_balances()
        self.position = PositionLedger.start(base, quote, price)
        self._last_price = price
        logger.info("position reset: base=%s quote=%s price=%s", base, quote, price)
        self._persist()
        return self.position

    def run_loop(self, max_cycles: int | None = None) -> None:
        self._stop.clear()
        completed = 0
        while not self._stop.is_set():
            try:
                result = self.run_cycle()
                line = self.format_cycle_result(result)
                if line != self._last_printed_line:
                    print(line)
                    self._last_printed_line = line
            except Exception as exc:
                logger.exception("cycle failed: %s", exc)
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            delay = seconds_until_next_cycle(
                _now_utc(),
                self.config.scheduler.interval_minutes,
                self.config.scheduler.delay_after_seconds,
            )
            logger.info("next cycle in %.0fs", delay)
            if self._stop.wait(delay):
                break

    def run_cycle(self) -> CycleResult:
        self.token.reset()
        now = _now_utc()
        tokens = self.config.tokens
        price = _d(self.price_client.fetch_price(tokens.base_mint))
        self._last_price = price
        classification = classify(self._fetch_signal(), self.config.sentiment)

        position = self._ensure_position(price)
        position.increment_cycle()
        if self.live:
            base, quote = self._read_balances()
            position.sync_balances(base, quote)
        if self.paper_venue is not None:
            self.paper_venue.set_price(price)
        self.lots.mark_to_market(price)

        decision = self.strategy.decide(
            self.strategy_state, classification, price, position, self.lots, now
        )
        details: dict[str, Any] = {
            "signal": classification.value,
            "sentiment": classification.sentiment.value,
            "strategy": self.strategy.name,
            **decision.details,
        }
        if not classification.valid:
            details["signal_flag"] = classification.reason

        action = "HOLD"
        reason = decision.reason
        intent = decision.intent
        if intent is not None and self.config.scheduler.monitor_mode:
            reason = f"monitor mode: {decision.reason}"
        elif intent is not None:
            context = RiskContext(
                now=now,
                base_available=position.base_balance,
                quote_available=position.quote_balance,
                price=price,
            )
            if intent.is_close:
                blocked = close_checks(context, intent)
            else:
                blocked = open_checks(self.state, self.config.guardrails, context, intent)
            if blocked:
                reason = f"{decision.reason} | blocked: {', '.join(blocked)}"
            else:
                result = self.controller.execute(intent, price, position, self.lots)
                self.strategy.commit(self.strategy_state, decision, result.landed)
                details.update(result.summary())
                if result.landed:
                    action = "CLOSE" if intent.is_close else intent.direction.upper()
                    self._record_trade(now, result.summary())
                else:
                    action = result.status.upper()
                reason = f"{decision.reason} | {result.reason}"

        stats = self.lots.statistics()
        details.update(
            {
                "base_balance": _q4(position.base_balance),
                "quote_balance": _q4(position.quote_balance),
                "open_lots": stats["open_count"],
                "realized_pnl": _q4(stats["total_realized_pnl"]),
                "unrealized_pnl": _q4(stats["total_unrealized_pnl"]),
            }
        )
        result_row = CycleResult(
            action=action,
            reason=reason,
            mode="live" if self.live else "paper",
            pair=self.pair,
            price=price,
            details=details,
        )
        self._record_cycle_point(result_row, position, stats)
        self._persist()
        return result_row

    def _fetch_signal(self) -> float | None:
        try:
            return self.signal_client.fetch_value()
        except Exception as exc:
            logger.warning("signal unavailable: %s", exc)
            return None

    def _read_balances(self) -> tuple[Decimal, Decimal]:
        tokens = self.config.tokens
        if self.live and self.rpc_client is not None:
            return self.rpc_client.balances(self.wallet, tokens.base_mint, tokens.quote_mint)
        if self.position is not None:
            return self.position.base_balance, self.position.quote_balance
        paper = self.config.paper
        return _d(paper.starting_base), _d(paper.starting_quote)

    def _ensure_position(self, price: Decimal) -> PositionLedger:
        if self.position is None:
            base, quote = self._read_balances()
            start_price = _d(self.config.paper.starting_price) if not self.live else _d("0")
            self.position = PositionLedger.start(base, quote, start_price if start_price > 0 else price)
            logger.info("new position: base=%s quote=%s price=%s", base, quote, price)
        return self.position

    def _record_trade(self, now: datetime, summary: dict[str, Any]) -> None:
        event = {"ts": now.isoformat(), "event": "trade_confirmed", **summary}
        append_trade_log(self.state, event)
        append_trade(self.metrics, event)
        set_last_trade_ts(self.state, now)
        for callback in list(self._callbacks):
            try:
                callback("trade_confirmed", dict(summary))
            except Exception:
                logger.exception("trade notification callback failed")

    def _record_cycle_point(self, result: CycleResult, position: PositionLedger, stats: dict[str, Any]) -> None:
        append_equity_point(
            self.metrics,
            {
                "ts": _now_utc().isoformat(),
                "mode": result.mode,
                "action": result.action,
                "reason": result.reason,
                "price": str(result.price),
                "signal": result.details.get("signal"),
                "sentiment": result.details.get("sentiment"),
                "portfolio_value": str(position.current_value(result.price)),
                "realized_pnl": str(stats["total_realized_pnl"]),
                "unrealized_pnl": str(stats["total_unrealized_pnl"]),
            },
        )

    def _persist(self) -> None:
        if self.position is not None:
            set_position(self.state, self.position)
        set_lots(self.state, self.lots)
        set_strategy_state(self.state, self.strategy_state)
        if not self.persist:
            return
        save_state(self.config.state_file, self.state, self.config.trade_log_limit)
        save_metrics(
            self.config.metrics_file,
            self.metrics,
            trade_limit=self.config.metrics_trade_limit,
            equity_limit=self.config.metrics_equity_limit,
        )

    @staticmethod
    def _live_env_enabled() -> bool:
        raw = os.getenv("SENTIBOT_ENABLE_LIVE")
        if raw is None:
            return False
        normalized = str(raw).strip().lower()
        return normalized in {"true", "1", "yes", "y", "on"}

    def _live_orders_allowed(self, execute_live: bool) -> bool:
        if self.config.mode != "live":
            return False
        if not execute_live:
            return False
        return self._live_env_enabled()

    def _supports_color(self) -> bool:
        if not bool(self.config.use_color_output):
            return False
        if os.getenv("NO_COLOR"):
            return False
        if not sys.stdout.isatty():
            return False
        return True

    def _paint(self, value: object, color: str, enabled: bool) -> str:
        text = str(value)
        if not enabled:
            return text
        return f"{color}{text}{_Ansi.RESET}"

    def _action_color(self, action: str) -> str:
        upper = action.upper()
        if upper == "BUY":
            return _Ansi.GREEN
        if upper == "SELL":
            return _Ansi.RED
        if upper == "CLOSE":
            return _Ansi.CYAN
        if upper in {"FAILED", "REJECTED", "TIMEOUT"}:
            return _Ansi.RED
        if upper == "CANCELLED":
            return _Ansi.MAGENTA
        return _Ansi.YELLOW

    def _reason_color(self, reason: str) -> str:
        text = str(reason).lower()
        if any(token in text for token in ("failed", "rejected", "error", "not confirmed")):
            return _Ansi.RED
        if any(token in text for token in ("blocked", "partial", "cancelled", "monitor")):
            return _Ansi.YELLOW
        if any(token in text for token in ("landed", "closed lot", "opened lot")):
            return _Ansi.GREEN
        return _Ansi.DIM

    def _detail_color(self, key: str, value: object) -> str | None:
        if key == "sentiment":
            text = str(value)
            if "FEAR" in text:
                return _Ansi.GREEN
            if "GREED" in text:
                return _Ansi.RED
            return _Ansi.DIM
        if key.endswith("pnl"):
            try:
                number = _d(value)
            except Exception:
                return None
            if number > 0:
                return _Ansi.GREEN
            if number < 0:
                return _Ansi.RED
            return _Ansi.DIM
        if key.startswith("streak"):
            return _Ansi.MAGENTA
        return None

    def format_cycle_result(self, result: CycleResult) -> str:
        use_color = self._supports_color()
        mode_color = _Ansi.CYAN if result.mode == "live" else _Ansi.MAGENTA
        mode_text = self._paint(f"[{result.mode}]", mode_color, use_color)
        pair_text = self._paint(result.pair, _Ansi.BLUE, use_color)
        price_text = self._paint(result.price, _Ansi.CYAN, use_color)
        action_text = self._paint(result.action, self._action_color(result.action), use_color)
        reason_text = self._paint(result.reason, self._reason_color(result.reason), use_color)

        detail_parts: list[str] = []
        for key, value in result.details.items():
            if value is None:
                continue
            color = self._detail_color(key, value)
            painted = self._paint(value, color, use_color) if color else str(value)
            detail_parts.append(f"{key}={painted}")
        details = ", ".join(detail_parts)
        return (
            f"{mode_text} {pair_text} price={price_text} "
            f"action={action_text} reason=\"{reason_text}\" {details}"
        )
