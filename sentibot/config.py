from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

from .sentiment import Sentiment, boundaries_valid


@dataclass(slots=True)
class SentimentBoundaries:
    extreme_fear: float = 15.0
    fear: float = 35.0
    greed: float = 65.0
    extreme_greed: float = 85.0


@dataclass(slots=True)
class SizingSettings:
    method: str = "VARIABLE"
    strategic_percentage: float = 2.5
    trading_period_hours: float = 24.0
    multipliers: dict[str, float] = field(
        default_factory=lambda: {
            "EXTREME_FEAR": 0.04,
            "FEAR": 0.02,
            "GREED": 0.02,
            "EXTREME_GREED": 0.04,
        }
    )


@dataclass(slots=True)
class StrategySettings:
    variant: str = "direct"
    streak_threshold: int = 5
    min_close_profit_pct: float | None = None


@dataclass(slots=True)
class ThresholdSettings:
    threshold: float = 50.0
    switch_delay: int = 3
    high_allocation_pct: float = 100.0
    low_allocation_pct: float = 0.0
    min_trade_amount: float = 0.00001


@dataclass(slots=True)
class ExecutionSettings:
    slippage_bps: int = 50
    quote_attempts: int = 3
    quote_retry_seconds: float = 2.0
    submit_attempts: int = 5
    submit_backoff_base_seconds: float = 0.5
    submit_backoff_cap_seconds: float = 5.0
    submit_backoff_jitter: float = 0.3
    poll_interval_seconds: float = 2.0
    max_polls: int = 45
    bundle_attempts: int = 5
    bundle_retry_seconds: float = 5.0
    completeness_threshold: float = 0.985
    timeout_seconds: float = 30.0
    quote_timeout_seconds: float = 120.0


@dataclass(slots=True)
class FeeSettings:
    base_fee_bps: int = 0
    profit_fee_pct: float = 0.0
    min_fee_bps: int = 50
    max_fee_bps: int = 255
    max_tip_lamports: int = 400_000
    fallback_tip_lamports: int = 100_000
    tip_multiplier: float = 1.1
    oracle_timeout_seconds: float = 21.0


@dataclass(slots=True)
class GuardrailSettings:
    min_usd_reserve: float = 5.0
    cooldown_seconds: int = 0


@dataclass(slots=True)
class TokenSettings:
    base_symbol: str = "SOL"
    base_mint: str = "So11111111111111111111111111111111111111112"
    base_decimals: int = 9
    quote_symbol: str = "USDC"
    quote_mint: str = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    quote_decimals: int = 6


@dataclass(slots=True)
class EndpointSettings:
    signal_url: str = "https://api.alternative.me/fng/?limit=1"
    signal_value_path: list[Any] = field(default_factory=lambda: ["data", 0, "value"])
    price_url: str = "https://api.jup.ag/price/v2"
    quote_url: str = "https://quote-api.jup.ag/v6"
    relay_url: str = "https://mainnet.block-engine.jito.wtf/api/v1/bundles"
    tip_stream_url: str = "ws://bundles-api-rest.jito.wtf/api/v1/bundles/tip_stream"
    primary_rpc_url: str = "https://api.mainnet-beta.solana.com"
    secondary_rpc_url: str = ""
    tip_accounts: list[str] = field(
        default_factory=lambda: [
            "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
            "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
            "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
            "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
            "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
            "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
            "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
            "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
        ]
    )


@dataclass(slots=True)
class SchedulerSettings:
    interval_minutes: int = 15
    delay_after_seconds: int = 45
    monitor_mode: bool = False


@dataclass(slots=True)
class PaperSettings:
    starting_base: float = 0.0
    starting_quote: float = 1_000.0
    starting_price: float = 0.0


@dataclass(slots=True)
class BotConfig:
    mode: str = "paper"
    use_color_output: bool = True
    state_file: str = "./sentibot_state.json"
    metrics_file: str = "./sentibot_metrics.json"
    trade_log_limit: int = 1000
    metrics_trade_limit: int = 5000
    metrics_equity_limit: int = 20000
    sentiment: SentimentBoundaries = field(default_factory=SentimentBoundaries)
    sizing: SizingSettings = field(default_factory=SizingSettings)
    strategy: StrategySettings = field(default_factory=StrategySettings)
    threshold: ThresholdSettings = field(default_factory=ThresholdSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    fees: FeeSettings = field(default_factory=FeeSettings)
    guardrails: GuardrailSettings = field(default_factory=GuardrailSettings)
    tokens: TokenSettings = field(default_factory=TokenSettings)
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    paper: PaperSettings = field(default_factory=PaperSettings)


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return {}
    return json.loads(raw)


def _apply_overrides(default_obj: Any, overrides: dict[str, Any]) -> Any:
    values: dict[str, Any] = {}
    for meta in fields(default_obj):
        name = meta.name
        value = getattr(default_obj, name)
        if name not in overrides:
            values[name] = value
            continue
        override = overrides[name]
        if is_dataclass(value) and isinstance(override, dict):
            values[name] = _apply_overrides(value, override)
        else:
            values[name] = override
    return type(default_obj)(**values)


def load_config(path: str | Path | None = None) -> BotConfig:
    cfg = BotConfig()
    if path is None:
        return _normalize_config(cfg)
    path_obj = Path(path)
    overrides = _read_json(path_obj)
    if not overrides:
        return _normalize_config(cfg)
    merged = _apply_overrides(cfg, overrides)
    return _normalize_config(merged)


def _normalize_config(config: BotConfig) -> BotConfig:
    mode = config.mode.lower().strip()
    if mode not in {"paper", "live"}:
        raise ValueError("config.mode must be 'paper' or 'live'")
    config.mode = mode
    if not boundaries_valid(config.sentiment):
        raise ValueError("sentiment boundaries must be strictly ascending")

    method = str(config.sizing.method).upper().strip()
    if method not in {"VARIABLE", "STRATEGIC"}:
        raise ValueError("sizing.method must be 'VARIABLE' or 'STRATEGIC'")
    config.sizing.method = method
    if not 0 < float(config.sizing.strategic_percentage) <= 100:
        raise ValueError("sizing.strategic_percentage must be in (0, 100]")
    if float(config.sizing.trading_period_hours) <= 0:
        raise ValueError("sizing.trading_period_hours must be > 0")
    multipliers: dict[str, float] = {}
    for key, value in dict(config.sizing.multipliers).items():
        name = str(key).upper().strip()
        if name not in Sentiment.__members__ or name == Sentiment.NEUTRAL.value:
            raise ValueError(f"sizing.multipliers has unknown category: {key}")
        if not 0 <= float(value) <= 1:
            raise ValueError(f"sizing.multipliers.{name} must be in [0, 1]")
        multipliers[name] = float(value)
    config.sizing.multipliers = multipliers

    variant = str(config.strategy.variant).lower().strip()
    if variant not in {"direct", "streak", "threshold"}:
        raise ValueError("strategy.variant must be one of: direct, streak, threshold")
    config.strategy.variant = variant
    if int(config.strategy.streak_threshold) < 1:
        raise ValueError("strategy.streak_threshold must be >= 1")

    if not 0 <= float(config.threshold.threshold) <= 100:
        raise ValueError("threshold.threshold must be in [0, 100]")
    if int(config.threshold.switch_delay) < 1:
        raise ValueError("threshold.switch_delay must be >= 1")
    for name in ("high_allocation_pct", "low_allocation_pct"):
        if not 0 <= float(getattr(config.threshold, name)) <= 100:
            raise ValueError(f"threshold.{name} must be in [0, 100]")

    execution = config.execution
    if int(execution.quote_attempts) < 1:
        raise ValueError("execution.quote_attempts must be >= 1")
    if int(execution.submit_attempts) < 1:
        raise ValueError("execution.submit_attempts must be >= 1")
    if int(execution.bundle_attempts) < 1:
        raise ValueError("execution.bundle_attempts must be >= 1")
    if int(execution.max_polls) < 1:
        raise ValueError("execution.max_polls must be >= 1")
    if float(execution.poll_interval_seconds) < 0:
        raise ValueError("execution.poll_interval_seconds must be >= 0")
    if not 0 <= float(execution.submit_backoff_jitter) < 1:
        raise ValueError("execution.submit_backoff_jitter must be in [0, 1)")
    if not 0 < float(execution.completeness_threshold) <= 1:
        raise ValueError("execution.completeness_threshold must be in (0, 1]")
    if not 0 <= int(execution.slippage_bps) <= 10_000:
        raise ValueError("execution.slippage_bps must be in [0, 10000]")
    if float(execution.timeout_seconds) <= 0 or float(execution.quote_timeout_seconds) <= 0:
        raise ValueError("execution timeouts must be > 0")

    fees = config.fees
    if not 0 <= int(fees.min_fee_bps) <= int(fees.max_fee_bps):
        raise ValueError("fees.min_fee_bps must be in [0, fees.max_fee_bps]")
    if float(fees.profit_fee_pct) < 0:
        raise ValueError("fees.profit_fee_pct must be >= 0")
    if int(fees.max_tip_lamports) <= 0 or int(fees.fallback_tip_lamports) <= 0:
        raise ValueError("fees tip lamports must be > 0")
    if int(fees.fallback_tip_lamports) > int(fees.max_tip_lamports):
        raise ValueError("fees.fallback_tip_lamports must be <= fees.max_tip_lamports")

    if float(config.guardrails.min_usd_reserve) < 0:
        raise ValueError("guardrails.min_usd_reserve must be >= 0")
    if int(config.guardrails.cooldown_seconds) < 0:
        raise ValueError("guardrails.cooldown_seconds must be >= 0")
    if config.tokens.base_mint == config.tokens.quote_mint:
        raise ValueError("tokens.base_mint and tokens.quote_mint must differ")
    if int(config.scheduler.interval_minutes) <= 0:
        raise ValueError("scheduler.interval_minutes must be > 0")
    if int(config.scheduler.delay_after_seconds) < 0:
        raise ValueError("scheduler.delay_after_seconds must be >= 0")
    if float(config.paper.starting_base) < 0 or float(config.paper.starting_quote) < 0:
        raise ValueError("paper starting balances must be >= 0")
    if not config.endpoints.tip_accounts:
        raise ValueError("endpoints.tip_accounts must be non-empty")
    return config
