from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import FatalVenueError, HttpStatusError, QuoteError, TransientVenueError, is_fatal_message

logger = logging.getLogger(__name__)

_NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"
_LAMPORTS_PER_SOL = Decimal("1000000000")


def _d(value: Any) -> Decimal:
    return Decimal(str(value))


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        parsed = _d(value)
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _path_get(data: Any, path: tuple[Any, ...] | list[Any]) -> Any:
    current = data
    for part in path:
        if isinstance(part, int):
            if not isinstance(current, list) or part >= len(current):
                return None
            current = current[part]
            continue
        if not isinstance(current, dict):
            return None
        if part not in current:
            return None
        current = current[part]
    return current


class JsonHttpClient:
    _MAX_REQUEST_ATTEMPTS = 4
    _USER_AGENT = "sentibot/1.0"

    def __init__(self, timeout_seconds: float = 30.0, max_attempts: int | None = None):
        self.timeout_seconds = float(timeout_seconds)
        self.max_attempts = int(max_attempts or self._MAX_REQUEST_ATTEMPTS)

    def _request(
        self,
        method: str,
        url: str,
        query: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        if query:
            encoded = urllib.parse.urlencode(
                {k: v for k, v in query.items() if v is not None},
                doseq=True,
            )
            separator = "&" if "?" in url else "?"
            full_url = f"{url}{separator}{encoded}"
        else:
            full_url = url
        payload = None if body is None else json.dumps(body).encode("utf-8")
        return self._request_once(method=method, full_url=full_url, payload=payload)

    def _request_once(self, method: str, full_url: str, payload: bytes | None) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            req = urllib.request.Request(url=full_url, data=payload, method=method.upper())
            req.add_header("Content-Type", "application/json")
            req.add_header("Accept", "application/json")
            req.add_header("User-Agent", self._USER_AGENT)
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as response:
                    raw = response.read().decode("utf-8")
                break
            except urllib.error.HTTPError as exc:
                error_text = exc.read().decode("utf-8", errors="replace")
                if attempt < self.max_attempts and self._is_retryable_http_error(exc.code, error_text):
                    delay = self._retry_delay_seconds(attempt)
                    logger.debug("HTTP %s on %s %s; retrying in %.1fs", exc.code, method, full_url, delay)
                    time.sleep(delay)
                    continue
                raise HttpStatusError(exc.code, error_text, f"{method.upper()} {full_url}") from exc
            except (urllib.error.URLError, TimeoutError) as exc:
                if attempt < self.max_attempts:
                    delay = self._retry_delay_seconds(attempt)
                    time.sleep(delay)
                    continue
                reason = getattr(exc, "reason", exc)
                raise TransientVenueError(
                    f"network error on {method.upper()} {full_url}: {reason}"
                ) from exc

        if not raw.strip():
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TransientVenueError(f"non-JSON response from {full_url}: {raw[:200]}") from exc

    @staticmethod
    def _is_retryable_http_error(code: int, error_text: str) -> bool:
        return code in {408, 425, 429, 500, 502, 503, 504}

    @staticmethod
    def _retry_delay_seconds(attempt_number: int) -> float:
        return min(6.0, 0.5 * (2 ** max(0, attempt_number - 1)))


class SignalClient(JsonHttpClient):
    def __init__(self, url: str, value_path: list[Any], timeout_seconds: float = 30.0):
        super().__init__(timeout_seconds)
        self.url = url
        self.value_path = list(value_path)

    def fetch_value(self) -> float:
        payload = self._request("GET", self.url)
        raw = _path_get(payload, self.value_path) if self.value_path else payload
        if isinstance(raw, dict):
            raw = raw.get("value")
        value = _to_decimal(raw)
        if value is None:
            raise TransientVenueError(f"signal source returned no value: {str(payload)[:200]}")
        return float(value)


class PriceClient(JsonHttpClient):
    def __init__(self, url: str, timeout_seconds: float = 30.0):
        super().__init__(timeout_seconds)
        self.url = url

    def fetch_price(self, mint: str) -> Decimal:
        payload = self._request("GET", self.url, query={"ids": mint})
        raw = _path_get(payload, ("data", mint, "price"))
        if raw is None and isinstance(payload, dict):
            raw = payload.get("price")
        price = _to_decimal(raw)
        if price is None or price <= 0:
            raise TransientVenueError(f"price source returned no price for {mint}")
        return price


@dataclass(slots=True)
class Quote:
    unsigned_transaction: str
    in_amount: int
    out_amount: int
    route: list[dict[str, Any]] = field(default_factory=list)
    fee_bps: int = 0
    raw: dict[str, Any] = field(default_factory=dict)


class QuoteClient(JsonHttpClient):
    def __init__(self, base_url: str, timeout_seconds: float = 120.0):
        super().__init__(timeout_seconds, max_attempts=1)
        self.base_url = base_url.rstrip("/")

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
        query: dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": int(amount),
            "slippageBps": int(slippage_bps),
            "swapMode": swap_mode,
        }
        if fee_bps > 0:
            query["platformFeeBps"] = int(fee_bps)
        quote_response = self._request("GET", f"{self.base_url}/quote", query=query)
        if not isinstance(quote_response, dict) or "inAmount" not in quote_response:
            raise QuoteError(f"malformed quote response: {str(quote_response)[:200]}")
        swap = self._request(
            "POST",
            f"{self.base_url}/swap",
            body={
                "quoteResponse": quote_response,
                "userPublicKey": user_public_key,
                "wrapAndUnwrapSol": True,
                "dynamicComputeUnitLimit": True,
            },
        )
        transaction = swap.get("swapTransaction") if isinstance(swap, dict) else None
        if not transaction:
            raise QuoteError(f"swap response has no transaction: {str(swap)[:200]}")
        try:
            in_amount = int(quote_response["inAmount"])
            out_amount = int(quote_response["outAmount"])
        except (KeyError, TypeError, ValueError) as exc:
            raise QuoteError(f"quote amounts are not integers: {exc}") from exc
        route = [
            leg.get("swapInfo", leg)
            for leg in quote_response.get("routePlan", []) or []
            if isinstance(leg, dict)
        ]
        return Quote(
            unsigned_transaction=str(transaction),
            in_amount=in_amount,
            out_amount=out_amount,
            route=route,
            fee_bps=int(fee_bps),
            raw=quote_response,
        )


def _rpc_error(message: str) -> Exception:
    if is_fatal_message(message):
        return FatalVenueError(message)
    return TransientVenueError(message)


class RelayClient(JsonHttpClient):
    """JSON-RPC client for a bundle block engine."""

    def __init__(self, url: str, timeout_seconds: float = 30.0):
        super().__init__(timeout_seconds, max_attempts=1)
        self.url = url

    def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = self._request(
            "POST",
            self.url,
            body={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise _rpc_error(f"{method} failed: {message}")
        return payload.get("result") if isinstance(payload, dict) else None

    def send_bundle(self, transactions: list[str]) -> str:
        result = self._rpc("sendBundle", [transactions, {"encoding": "base64"}])
        if not result:
            raise TransientVenueError("sendBundle returned no bundle id")
        return str(result)

    def bundle_status(self, bundle_id: str) -> dict[str, Any] | None:
        result = self._rpc("getInflightBundleStatuses", [[bundle_id]])
        rows = result.get("value") if isinstance(result, dict) else None
        if not rows:
            return None
        row = rows[0]
        return row if isinstance(row, dict) else None


class RpcClient(JsonHttpClient):
    """Balance reads against a primary RPC node with a secondary failover."""

    def __init__(self, urls: list[str], timeout_seconds: float = 30.0):
        super().__init__(timeout_seconds)
        self.urls = [url for url in urls if url]
        if not self.urls:
            raise ValueError("RpcClient needs at least one RPC url")

    def _call(self, method: str, params: list[Any]) -> Any:
        last_error: Exception | None = None
        for url in self.urls:
            try:
                payload = self._request(
                    "POST",
                    url,
                    body={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
                )
            except (HttpStatusError, TransientVenueError) as exc:
                logger.warning("RPC %s failed on %s: %s", method, url, exc)
                last_error = exc
                continue
            if isinstance(payload, dict) and payload.get("error"):
                last_error = TransientVenueError(f"RPC {method} error: {payload['error']}")
                logger.warning("%s", last_error)
                continue
            return payload.get("result") if isinstance(payload, dict) else None
        raise TransientVenueError(f"all RPC endpoints failed for {method}") from last_error

    def native_balance(self, owner: str) -> Decimal:
        result = self._call("getBalance", [owner, {"commitment": "confirmed"}])
        lamports = _path_get(result, ("value",))
        if lamports is None:
            raise TransientVenueError("getBalance returned no value")
        return _d(lamports) / _LAMPORTS_PER_SOL

    def token_balance(self, owner: str, mint: str) -> Decimal:
        result = self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        total = Decimal("0")
        for account in _path_get(result, ("value",)) or []:
            amount = _path_get(
                account, ("account", "data", "parsed", "info", "tokenAmount", "uiAmountString")
            )
            parsed = _to_decimal(amount)
            if parsed is not None:
                total += parsed
        return total

    def balances(self, owner: str, base_mint: str, quote_mint: str) -> tuple[Decimal, Decimal]:
        if base_mint == _NATIVE_SOL_MINT:
            base = self.native_balance(owner)
        else:
            base = self.token_balance(owner, base_mint)
        if quote_mint == _NATIVE_SOL_MINT:
            quote = self.native_balance(owner)
        else:
            quote = self.token_balance(owner, quote_mint)
        return base, quote


class TipFeeOracle:
    """Reads the landed-tip percentile from the relay's tip stream websocket."""

    def __init__(self, url: str, timeout_seconds: float = 21.0, field_name: str = "ema_landed_tips_50th_percentile"):
        self.url = url
        self.timeout_seconds = float(timeout_seconds)
        self.field_name = field_name

    def suggested_fee(self) -> Decimal:
        try:
            import websocket as websocket_module
        except Exception as exc:
            raise RuntimeError(
                "websocket-client package is required for the tip fee oracle. "
                "Install with: pip install websocket-client"
            ) from exc
        ws = websocket_module.create_connection(self.url, timeout=self.timeout_seconds)
        try:
            message = ws.recv()
        finally:
            ws.close()
        return self.parse_message(message)

    def parse_message(self, message: str | bytes) -> Decimal:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        try:
            data = json.loads(message)
        except json.JSONDecodeError as exc:
            raise TransientVenueError(f"tip stream sent non-JSON message: {message[:200]}") from exc
        if isinstance(data, list):
            data = data[0] if data else {}
        value = _to_decimal(data.get(self.field_name)) if isinstance(data, dict) else None
        if value is None or value <= 0:
            raise TransientVenueError(f"tip stream message has no {self.field_name}")
        return value
