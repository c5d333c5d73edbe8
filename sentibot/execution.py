from __future__ import annotations

import base64
import json
import logging
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from .clients import Quote, RelayClient
from .config import BotConfig
from .errors import FatalVenueError, TransientVenueError, classify_exception
from .order_book import Lot, LotLedger
from .position import PositionLedger
from .signing import SignedBundle
from .sizing import estimated_close_pnl, from_raw_units, profit_fee_bps, tip_lamports, to_raw_units
from .strategy import TradeIntent

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


def backoff_delay(
    attempt: int,
    base_seconds: float,
    cap_seconds: float,
    jitter: float = 0.0,
    rng: random.Random | None = None,
) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2**attempt, jittered, capped."""
    delay = float(base_seconds) * (2 ** max(0, int(attempt)))
    if jitter > 0:
        source = rng or random
        delay *= 1.0 + source.uniform(-float(jitter), float(jitter))
    return max(0.0, min(float(cap_seconds), delay))


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(timeout=seconds)


@dataclass(slots=True)
class Fill:
    input_amount: Decimal
    output_amount: Decimal
    base_amount: Decimal
    quote_amount: Decimal
    price: Decimal
    source: str


@dataclass(slots=True)
class ExecutionResult:
    status: str
    reason: str
    intent: TradeIntent
    bundle_id: str | None = None
    signature: str | None = None
    fill: Fill | None = None
    lot_id: str | None = None
    realized_pnl: Decimal | None = None
    partial: bool = False
    remaining_amount: Decimal | None = None
    completeness: Decimal | None = None
    fee_bps: int = 0
    tip_lamports: int = 0
    attempts: int = 0

    @property
    def landed(self) -> bool:
        return self.status == "landed"

    def summary(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "status": self.status,
            "reason": self.reason,
            "direction": self.intent.direction,
            "swap_mode": self.intent.swap_mode,
            "sentiment": self.intent.sentiment.value,
            "requested_amount": str(self.intent.amount),
            "closing_lot_id": self.intent.closing_lot_id,
            "bundle_id": self.bundle_id,
            "signature": self.signature,
            "attempts": self.attempts,
        }
        if self.fill is not None:
            out.update(
                {
                    "base_amount": str(self.fill.base_amount),
                    "quote_amount": str(self.fill.quote_amount),
                    "fill_price": str(self.fill.price),
                    "fill_source": self.fill.source,
                }
            )
        if self.lot_id is not None:
            out["lot_id"] = self.lot_id
        if self.realized_pnl is not None:
            out["realized_pnl"] = str(self.realized_pnl)
        if self.intent.is_close:
            out["partial"] = self.partial
            if self.remaining_amount is not None:
                out["remaining_amount"] = str(self.remaining_amount)
            if self.completeness is not None:
                out["completeness"] = str(self.completeness)
        return out


class SubmissionBackend:
    """Submit+confirm strategy for one venue generation."""

    name = "abstract"

    def submit(self, bundle: SignedBundle) -> str:
        raise NotImplementedError

    def status(self, bundle_id: str) -> dict[str, Any] | None:
        raise NotImplementedError


class BundleRelayBackend(SubmissionBackend):
    name = "relay"

    def __init__(self, relay: RelayClient):
        self.relay = relay

    def submit(self, bundle: SignedBundle) -> str:
        return self.relay.send_bundle(bundle.transactions)

    def status(self, bundle_id: str) -> dict[str, Any] | None:
        return self.relay.bundle_status(bundle_id)


class PaperVenue(SubmissionBackend):
    """Quotes from the last observed price and lands every bundle immediately."""

    name = "paper"

    def __init__(self, config: BotConfig, fill_ratio: Decimal | float = 1):
        self.tokens = config.tokens
        self.price: Decimal = _ZERO
        self.fill_ratio = _d(fill_ratio)
        self._bundles: dict[str, dict[str, Any]] = {}
        self._counter = 0

    def set_price(self, price: Any) -> None:
        self.price = _d(price)

    def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        fee_bps: int,
        swap_mode: str,
        user_public_key: str,
    ) -> Quote:
        if self.price <= 0:
            raise TransientVenueError("paper venue has no price yet")
        buying = input_mint == self.tokens.quote_mint
        in_decimals = self.tokens.quote_decimals if buying else self.tokens.base_decimals
        out_decimals = self.tokens.base_decimals if buying else self.tokens.quote_decimals
        keep = Decimal("1") - _d(fee_bps) / Decimal("10000")

        if swap_mode == "ExactOut":
            out_ui = from_raw_units(amount, out_decimals)
            in_ui = (out_ui * self.price if buying else out_ui / self.price) / keep
            in_raw = to_raw_units(in_ui, in_decimals)
            out_raw = int(amount)
        else:
            in_ui = from_raw_units(amount, in_decimals)
            out_ui = (in_ui / self.price if buying else in_ui * self.price) * keep
            in_raw = int(amount)
            out_raw = to_raw_units(out_ui, out_decimals)
        ticket = {"in": in_raw, "out": out_raw, "input_mint": input_mint, "output_mint": output_mint}
        encoded = base64.b64encode(json.dumps(ticket).encode("utf-8")).decode("ascii")
        route = [{"inputMint": input_mint, "outputMint": output_mint, "inAmount": str(in_raw), "outAmount": str(out_raw)}]
        return Quote(
            unsigned_transaction=encoded,
            in_amount=in_raw,
            out_amount=out_raw,
            route=route,
            fee_bps=int(fee_bps),
        )

    def submit(self, bundle: SignedBundle) -> str:
        ticket = json.loads(base64.b64decode(bundle.transactions[0]))
        self._counter += 1
        bundle_id = f"paper-bundle-{self._counter}"
        self._bundles[bundle_id] = ticket
        return bundle_id

    def status(self, bundle_id: str) -> dict[str, Any] | None:
        ticket = self._bundles.get(bundle_id)
        if ticket is None:
            return None
        return {
            "bundle_id": bundle_id,
            "status": "Landed",
            "totalInputAmount": str(int(_d(ticket["in"]) * self.fill_ratio)),
            "totalOutputAmount": str(int(_d(ticket["out"]) * self.fill_ratio)),
        }


class _Cancelled(Exception):
    pass


class _StepFailed(Exception):
    def __init__(self, status: str, reason: str):
        super().__init__(reason)
        self.status = status
        self.reason = reason


class ExecutionController:
    def __init__(
        self,
        config: BotConfig,
        *,
        quote_source: Any,
        backend: SubmissionBackend,
        signer: Any,
        fee_oracle: Any = None,
        token: CancellationToken | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.settings = config.execution
        self.fees = config.fees
        self.tokens = config.tokens
        self.quote_source = quote_source
        self.backend = backend
        self.signer = signer
        self.fee_oracle = fee_oracle
        self.token = token or CancellationToken()
        self.rng = rng or random.Random()

    def execute(
        self,
        intent: TradeIntent,
        market_price: Decimal,
        position: PositionLedger,
        lots: LotLedger,
    ) -> ExecutionResult:
        market_price = _d(market_price)
        result = ExecutionResult(status="failed", reason="", intent=intent)
        if self.token.is_cancelled:
            return self._finish(result, "cancelled", "cancelled before quote")

        lot: Lot | None = None
        if intent.is_close:
            lot = lots.get(intent.closing_lot_id or "")
            if lot is None or not lot.is_open:
                return self._finish(result, "rejected", f"lot {intent.closing_lot_id} is not open")
        result.fee_bps = self._fee_bps(intent, lot, market_price)

        raw_amount = to_raw_units(intent.amount, self._amount_decimals(intent))
        if raw_amount <= 0:
            return self._finish(result, "rejected", "trade amount rounds to zero")

        attempts = int(self.settings.bundle_attempts)
        try:
            for attempt in range(1, attempts + 1):
                result.attempts = attempt
                quote = self._quote(intent, raw_amount, result.fee_bps)
                result.tip_lamports = self._tip_lamports()
                if self.token.is_cancelled:
                    raise _Cancelled()
                bundle = self._sign(quote, result.tip_lamports)
                result.signature = bundle.signature
                bundle_id = self._submit(bundle)
                result.bundle_id = bundle_id
                outcome, payload = self._confirm(bundle_id)
                if outcome == "Landed":
                    return self._reconcile(result, quote, payload, market_price, position, lots, lot)
                if outcome == "timeout":
                    return self._finish(
                        result,
                        "timeout",
                        f"bundle {bundle_id} not confirmed after {self.settings.max_polls} polls",
                    )
                logger.warning("bundle %s failed (attempt %s/%s)", bundle_id, attempt, attempts)
                if attempt < attempts and self.token.wait(float(self.settings.bundle_retry_seconds)):
                    raise _Cancelled()
        except _Cancelled:
            logger.info("execution cancelled (%s)", intent.reason)
            return self._finish(result, "cancelled", "cancelled in flight")
        except _StepFailed as exc:
            return self._finish(result, exc.status, exc.reason)
        return self._finish(result, "failed", f"bundle failed after {attempts} attempts")

    def _finish(self, result: ExecutionResult, status: str, reason: str) -> ExecutionResult:
        result.status = status
        result.reason = reason
        if status != "landed":
            log = logger.info if status == "cancelled" else logger.warning
            log("%s %s not executed: %s", result.intent.direction, result.intent.amount, reason)
        return result

    def _direction_mints(self, direction: str) -> tuple[str, str]:
        if direction == "buy":
            return self.tokens.quote_mint, self.tokens.base_mint
        return self.tokens.base_mint, self.tokens.quote_mint

    def _direction_decimals(self, direction: str) -> tuple[int, int]:
        if direction == "buy":
            return self.tokens.quote_decimals, self.tokens.base_decimals
        return self.tokens.base_decimals, self.tokens.quote_decimals

    def _amount_decimals(self, intent: TradeIntent) -> int:
        in_decimals, out_decimals = self._direction_decimals(intent.direction)
        return out_decimals if intent.swap_mode == "ExactOut" else in_decimals

    def _fee_bps(self, intent: TradeIntent, lot: Lot | None, market_price: Decimal) -> int:
        if lot is None:
            return min(int(self.fees.base_fee_bps), int(self.fees.max_fee_bps))
        pnl = estimated_close_pnl(lot.direction, lot.entry_price, market_price, lot.base_amount)
        notional = lot.base_amount * market_price
        return profit_fee_bps(pnl, notional, self.fees)

    def _quote(self, intent: TradeIntent, raw_amount: int, fee_bps: int) -> Quote:
        input_mint, output_mint = self._direction_mints(intent.direction)
        attempts = int(self.settings.quote_attempts)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            if self.token.is_cancelled:
                raise _Cancelled()
            try:
                return self.quote_source.quote(
                    input_mint=input_mint,
                    output_mint=output_mint,
                    amount=raw_amount,
                    slippage_bps=int(self.settings.slippage_bps),
                    fee_bps=fee_bps,
                    swap_mode=intent.swap_mode,
                    user_public_key=self.signer.public_key,
                )
            except FatalVenueError as exc:
                raise _StepFailed("rejected", f"quote rejected: {exc}") from exc
            except Exception as exc:
                last_error = exc
                logger.warning("quote attempt %s/%s failed: %s", attempt, attempts, exc)
                if attempt < attempts and self.token.wait(float(self.settings.quote_retry_seconds)):
                    raise _Cancelled() from exc
        raise _StepFailed("failed", f"quote failed after {attempts} attempts: {last_error}")

    def _tip_lamports(self) -> int:
        if self.fee_oracle is None:
            return int(self.fees.fallback_tip_lamports)
        try:
            suggested = self.fee_oracle.suggested_fee()
        except Exception as exc:
            logger.warning("fee oracle unavailable, using fallback tip: %s", exc)
            return int(self.fees.fallback_tip_lamports)
        return tip_lamports(suggested, self.fees)

    def _sign(self, quote: Quote, tip: int) -> SignedBundle:
        tip_account = self.rng.choice(list(self.config.endpoints.tip_accounts))
        try:
            return self.signer.build_bundle(quote.unsigned_transaction, tip, tip_account)
        except Exception as exc:
            raise _StepFailed("failed", f"could not build bundle: {exc}") from exc

    def _submit(self, bundle: SignedBundle) -> str:
        attempts = int(self.settings.submit_attempts)
        last_error: Exception | None = None
        for attempt in range(attempts):
            if self.token.is_cancelled:
                raise _Cancelled()
            try:
                return self.backend.submit(bundle)
            except Exception as exc:
                if classify_exception(exc) == "fatal":
                    raise _StepFailed("rejected", f"bundle rejected: {exc}") from exc
                last_error = exc
                if attempt + 1 >= attempts:
                    break
                delay = backoff_delay(
                    attempt,
                    self.settings.submit_backoff_base_seconds,
                    self.settings.submit_backoff_cap_seconds,
                    self.settings.submit_backoff_jitter,
                    self.rng,
                )
                logger.warning("submit attempt %s/%s failed (%s); retrying in %.2fs", attempt + 1, attempts, exc, delay)
                if self.token.wait(delay):
                    raise _Cancelled() from exc
        raise _StepFailed("failed", f"submission failed after {attempts} attempts: {last_error}")

    def _confirm(self, bundle_id: str) -> tuple[str, dict[str, Any] | None]:
        max_polls = int(self.settings.max_polls)
        for poll in range(max_polls):
            if self.token.is_cancelled:
                raise _Cancelled()
            payload: dict[str, Any] | None = None
            try:
                payload = self.backend.status(bundle_id)
            except Exception as exc:
                logger.warning("status poll %s for %s failed: %s", poll + 1, bundle_id, exc)
            status = str(payload.get("status", "")) if isinstance(payload, dict) else ""
            if status in {"Landed", "Failed"}:
                return status, payload
            if poll + 1 < max_polls and self.token.wait(float(self.settings.poll_interval_seconds)):
                raise _Cancelled()
        return "timeout", None

    def _fill_amounts(
        self,
        intent: TradeIntent,
        quote: Quote,
        payload: dict[str, Any] | None,
    ) -> tuple[Decimal, Decimal, str]:
        input_mint, output_mint = self._direction_mints(intent.direction)
        payload = payload or {}
        total_in = payload.get("totalInputAmount")
        total_out = payload.get("totalOutputAmount")
        if total_in is not None and total_out is not None and _d(total_in) > 0 and _d(total_out) > 0:
            return _d(total_in), _d(total_out), "venue"

        route_in = sum(
            (_d(leg.get("inAmount", 0)) for leg in quote.route if leg.get("inputMint") == input_mint),
            _ZERO,
        )
        route_out = sum(
            (_d(leg.get("outAmount", 0)) for leg in quote.route if leg.get("outputMint") == output_mint),
            _ZERO,
        )
        if route_in > 0 and route_out > 0:
            return route_in, route_out, "route"
        logger.warning("no venue or route fill totals; using requested quote amounts")
        return _d(quote.in_amount), _d(quote.out_amount), "requested"

    def _reconcile(
        self,
        result: ExecutionResult,
        quote: Quote,
        payload: dict[str, Any] | None,
        market_price: Decimal,
        position: PositionLedger,
        lots: LotLedger,
        lot: Lot | None,
    ) -> ExecutionResult:
        intent = result.intent
        raw_in, raw_out, source = self._fill_amounts(intent, quote, payload)
        in_decimals, out_decimals = self._direction_decimals(intent.direction)
        input_amount = from_raw_units(raw_in, in_decimals)
        output_amount = from_raw_units(raw_out, out_decimals)
        if intent.direction == "buy":
            base_amount, quote_amount = output_amount, input_amount
        else:
            base_amount, quote_amount = input_amount, output_amount
        price = quote_amount / base_amount if base_amount > 0 else market_price
        result.fill = Fill(
            input_amount=input_amount,
            output_amount=output_amount,
            base_amount=base_amount,
            quote_amount=quote_amount,
            price=price,
            source=source,
        )
        position.apply_fill(intent.direction, base_amount, quote_amount, price)
        now = datetime.now(timezone.utc)
        ref = result.signature or result.bundle_id or f"fill-{now.timestamp()}"

        if lot is None:
            opened = lots.open(intent.direction, base_amount, quote_amount, price, ref, opened_at=now)
            result.lot_id = opened.id
            result.status = "landed"
            result.reason = f"{intent.direction} landed; opened lot {opened.id}"
            logger.info("%s", result.reason)
            return result

        completeness = base_amount / lot.base_amount if lot.base_amount > 0 else _ZERO
        result.completeness = completeness
        result.status = "landed"
        if completeness >= _d(self.settings.completeness_threshold):
            result.realized_pnl = lots.close(lot.id, price, closed_at=now)
            result.lot_id = lot.id
            result.remaining_amount = _ZERO
            result.reason = f"closed lot {lot.id}"
        else:
            child = lots.partial_close(lot.id, base_amount, price, ref, closed_at=now)
            result.realized_pnl = child.realized_pnl
            result.lot_id = child.id
            result.partial = True
            result.remaining_amount = lot.base_amount
            result.reason = (
                f"partial close of lot {lot.id}: {completeness:.2%} filled, "
                f"{lot.base_amount} remaining"
            )
        logger.info("%s", result.reason)
        return result
