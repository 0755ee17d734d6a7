from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from perpdesk.core.clock import timeframe_seconds
from perpdesk.core.errors import AuthError, ConfigError

DEFAULT_BASE_URL = "https://api.hyperliquid.xyz"


@dataclass
class Credentials:
    account_address: str
    secret_key: str
    base_url: str = DEFAULT_BASE_URL

    def build_hl_clients(self):
        """Build Hyperliquid (info, exchange, address) for this account.

        Raises AuthError when the secret key cannot produce a signing wallet.
        """
        import eth_account
        from hyperliquid.exchange import Exchange
        from hyperliquid.info import Info

        try:
            wallet = eth_account.Account.from_key(self.secret_key)
        except (ValueError, TypeError) as e:
            raise AuthError(f"invalid secret key: {e}") from e
        # API wallets sign on behalf of the main account address
        address = self.account_address or str(wallet.address)
        info = Info(self.base_url, skip_ws=True)
        exchange = Exchange(wallet, self.base_url, account_address=address)
        return info, exchange, address


@dataclass
class TelemetryParams:
    log_level: str = "INFO"
    metrics: bool = True
    log_file: str | None = None
    log_max_bytes: int | None = None
    log_backup_count: int | None = None
    disable_console_logging: bool | None = None


@dataclass
class MarketMakingParams:
    base_spread_bps: Decimal
    min_spread_bps: Decimal
    order_size_usd: Decimal
    max_inventory_usd: Decimal
    skew_per_100_usd: Decimal
    requote_interval_sec: float = 5.0
    levels: int = 1


@dataclass
class MMRiskParams:
    max_position_usd: Optional[Decimal] = None
    stop_loss_pct: Optional[Decimal] = None
    daily_loss_limit_usd: Optional[Decimal] = None


@dataclass
class MMExecutionParams:
    post_only: bool = True
    min_edge_bps: Decimal = Decimal("0")


@dataclass
class MMFlags:
    dry_run: bool = False
    log_quotes: bool = True


@dataclass
class MMConfig:
    name: str
    symbol: str
    market_making: MarketMakingParams
    risk: MMRiskParams = field(default_factory=MMRiskParams)
    execution: MMExecutionParams = field(default_factory=MMExecutionParams)
    flags: MMFlags = field(default_factory=MMFlags)
    telemetry: TelemetryParams = field(default_factory=TelemetryParams)


@dataclass
class SignalParams:
    period: int = 14
    long_entry: Decimal = Decimal("30")
    short_entry: Decimal = Decimal("70")


@dataclass
class PositionParams:
    size_pct: Decimal
    leverage: int = 1


@dataclass
class StrategyRiskParams:
    stop_loss_pct: Optional[Decimal] = None
    take_profit_pct: Optional[Decimal] = None
    max_positions: int = 1


@dataclass
class StrategyFlags:
    dry_run: bool = False
    allow_shorts: bool = False


@dataclass
class StrategyConfig:
    name: str
    timeframe: str
    signals: SignalParams
    position: PositionParams
    risk: StrategyRiskParams = field(default_factory=StrategyRiskParams)
    flags: StrategyFlags = field(default_factory=StrategyFlags)
    version: str = "1"
    symbol: Optional[str] = None
    long_assets: List[str] = field(default_factory=list)
    short_assets: List[str] = field(default_factory=list)
    telemetry: TelemetryParams = field(default_factory=TelemetryParams)

    @property
    def multi_asset(self) -> bool:
        return self.symbol is None

    def assets(self) -> List[str]:
        """Evaluation order: long assets, then short assets, or the single symbol."""
        if self.symbol is not None:
            return [self.symbol]
        return list(self.long_assets) + list(self.short_assets)

    def is_long_eligible(self, symbol: str) -> bool:
        if self.symbol is not None:
            return symbol == self.symbol
        return symbol in self.long_assets

    def is_short_eligible(self, symbol: str) -> bool:
        if self.symbol is not None:
            return symbol == self.symbol and self.flags.allow_shorts
        return symbol in self.short_assets

    @property
    def timeframe_seconds(self) -> int:
        return timeframe_seconds(self.timeframe)


def _to_decimal(value: Any, key: str = "value") -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ConfigError(f"{key} must be numeric, got {value!r}") from e


def _opt_decimal(value: Any, key: str) -> Optional[Decimal]:
    return None if value is None else _to_decimal(value, key)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _read_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file is not valid JSON: {path}: {e}") from e
    _require(isinstance(raw, dict), f"config root must be an object: {path}")
    return raw


def _section(raw: Dict[str, Any], key: str, required: bool = False) -> Dict[str, Any]:
    sec = raw.get(key)
    if sec is None:
        _require(not required, f"missing section: {key}")
        return {}
    _require(isinstance(sec, dict), f"section {key} must be an object")
    return sec


def _telemetry(raw: Dict[str, Any]) -> TelemetryParams:
    tel = _section(raw, "telemetry")
    return TelemetryParams(
        log_level=str(tel.get("log_level", "INFO")),
        metrics=bool(tel.get("metrics", True)),
        log_file=str(tel.get("log_file")) if tel.get("log_file") is not None else None,
        log_max_bytes=int(tel.get("log_max_bytes")) if tel.get("log_max_bytes") is not None else None,
        log_backup_count=int(tel.get("log_backup_count")) if tel.get("log_backup_count") is not None else None,
        disable_console_logging=bool(tel.get("disable_console_logging")) if tel.get("disable_console_logging") is not None else None,
    )


def parse_mm_config(raw: Dict[str, Any]) -> MMConfig:
    try:
        mm = _section(raw, "market_making", required=True)
        risk = _section(raw, "risk")
        exe = _section(raw, "execution")
        flags = _section(raw, "flags")
        cfg = MMConfig(
            name=str(raw.get("name", "market-maker")),
            symbol=str(raw["symbol"]),
            market_making=MarketMakingParams(
                base_spread_bps=_to_decimal(mm["base_spread_bps"], "base_spread_bps"),
                min_spread_bps=_to_decimal(mm["min_spread_bps"], "min_spread_bps"),
                order_size_usd=_to_decimal(mm["order_size_usd"], "order_size_usd"),
                max_inventory_usd=_to_decimal(mm["max_inventory_usd"], "max_inventory_usd"),
                skew_per_100_usd=_to_decimal(mm.get("skew_per_100_usd", 0), "skew_per_100_usd"),
                requote_interval_sec=float(mm.get("requote_interval_sec", 5)),
                levels=int(mm.get("levels", 1)),
            ),
            risk=MMRiskParams(
                max_position_usd=_opt_decimal(risk.get("max_position_usd"), "max_position_usd"),
                stop_loss_pct=_opt_decimal(risk.get("stop_loss_pct"), "stop_loss_pct"),
                daily_loss_limit_usd=_opt_decimal(risk.get("daily_loss_limit_usd"), "daily_loss_limit_usd"),
            ),
            execution=MMExecutionParams(
                post_only=bool(exe.get("post_only", True)),
                min_edge_bps=_to_decimal(exe.get("min_edge_bps", 0), "min_edge_bps"),
            ),
            flags=MMFlags(
                dry_run=bool(flags.get("dry_run", False)),
                log_quotes=bool(flags.get("log_quotes", True)),
            ),
            telemetry=_telemetry(raw),
        )
    except KeyError as e:
        raise ConfigError(f"missing required key: {e.args[0]}") from e
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from e
    _validate_mm(cfg)
    return cfg


def _validate_mm(cfg: MMConfig) -> None:
    mm = cfg.market_making
    _require(bool(cfg.symbol), "symbol required")
    _require(mm.base_spread_bps > 0, "base_spread_bps must be positive")
    _require(mm.min_spread_bps >= 0, "min_spread_bps must be non-negative")
    _require(mm.min_spread_bps <= mm.base_spread_bps, "min_spread_bps must not exceed base_spread_bps")
    _require(mm.order_size_usd > 0, "order_size_usd must be positive")
    _require(mm.max_inventory_usd > 0, "max_inventory_usd must be positive")
    _require(mm.skew_per_100_usd >= 0, "skew_per_100_usd must be non-negative")
    _require(mm.requote_interval_sec > 0, "requote_interval_sec must be positive")
    _require(mm.levels >= 1, "levels must be >= 1")
    _require(cfg.execution.min_edge_bps >= 0, "min_edge_bps must be non-negative")
    for key in ("max_position_usd", "stop_loss_pct", "daily_loss_limit_usd"):
        value = getattr(cfg.risk, key)
        _require(value is None or value > 0, f"{key} must be positive")


def load_mm_config(path: str) -> MMConfig:
    return parse_mm_config(_read_json(path))


def parse_strategy_config(raw: Dict[str, Any]) -> StrategyConfig:
    try:
        sig = _section(raw, "signals")
        pos = _section(raw, "position", required=True)
        risk = _section(raw, "risk")
        flags = _section(raw, "flags")
        symbol = raw.get("symbol")
        cfg = StrategyConfig(
            name=str(raw.get("name", "rsi-strategy")),
            version=str(raw.get("version", "1")),
            symbol=str(symbol) if symbol else None,
            long_assets=[str(s) for s in raw.get("long_assets") or []],
            short_assets=[str(s) for s in raw.get("short_assets") or []],
            timeframe=str(raw.get("timeframe", "1h")),
            signals=SignalParams(
                period=int(sig.get("period", 14)),
                long_entry=_to_decimal(sig.get("long_entry", 30), "long_entry"),
                short_entry=_to_decimal(sig.get("short_entry", 70), "short_entry"),
            ),
            position=PositionParams(
                size_pct=_to_decimal(pos["size_pct"], "size_pct"),
                leverage=int(pos.get("leverage", 1)),
            ),
            risk=StrategyRiskParams(
                stop_loss_pct=_opt_decimal(risk.get("stop_loss_pct"), "stop_loss_pct"),
                take_profit_pct=_opt_decimal(risk.get("take_profit_pct"), "take_profit_pct"),
                max_positions=int(risk.get("max_positions", 1)),
            ),
            flags=StrategyFlags(
                dry_run=bool(flags.get("dry_run", False)),
                allow_shorts=bool(flags.get("allow_shorts", False)),
            ),
            telemetry=_telemetry(raw),
        )
    except KeyError as e:
        raise ConfigError(f"missing required key: {e.args[0]}") from e
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from e
    _validate_strategy(cfg)
    return cfg


def _validate_strategy(cfg: StrategyConfig) -> None:
    _require(bool(cfg.assets()), "either symbol or long_assets/short_assets required")
    _require(
        cfg.symbol is None or not (cfg.long_assets or cfg.short_assets),
        "symbol and long_assets/short_assets are mutually exclusive",
    )
    for label, assets in (("long_assets", cfg.long_assets), ("short_assets", cfg.short_assets)):
        upper = [s.strip().upper() for s in assets]
        dupes = sorted({s for s in upper if upper.count(s) > 1})
        _require(not dupes, f"{label} has duplicate symbols: {dupes}")
    overlap = {s.strip().upper() for s in cfg.long_assets} & {s.strip().upper() for s in cfg.short_assets}
    _require(not overlap, f"long_assets and short_assets overlap: {sorted(overlap)}")
    try:
        timeframe_seconds(cfg.timeframe)
    except ValueError as e:
        raise ConfigError(str(e)) from e
    sig = cfg.signals
    _require(sig.period >= 2, "signals.period must be >= 2")
    _require(Decimal(0) <= sig.long_entry <= Decimal(100), "long_entry must be within [0, 100]")
    _require(Decimal(0) <= sig.short_entry <= Decimal(100), "short_entry must be within [0, 100]")
    _require(sig.long_entry < sig.short_entry, "long_entry must be below short_entry")
    _require(Decimal(0) < cfg.position.size_pct <= Decimal(100), "size_pct must be within (0, 100]")
    _require(cfg.position.leverage >= 1, "leverage must be >= 1")
    _require(cfg.risk.max_positions >= 1, "max_positions must be >= 1")
    for key in ("stop_loss_pct", "take_profit_pct"):
        value = getattr(cfg.risk, key)
        _require(value is None or value > 0, f"{key} must be positive")


def load_strategy_config(path: str) -> StrategyConfig:
    return parse_strategy_config(_read_json(path))


def load_credentials(path: str | None = None) -> Credentials:
    """Read credentials from a JSON file, with HL_* environment overrides."""
    raw: Dict[str, Any] = {}
    if path and os.path.exists(path):
        raw = _read_json(path)
    address = os.environ.get("HL_ACCOUNT_ADDRESS", str(raw.get("account_address", "")))
    secret = os.environ.get("HL_SECRET_KEY", str(raw.get("secret_key", "")))
    base_url = os.environ.get("HL_BASE_URL", str(raw.get("base_url") or DEFAULT_BASE_URL))
    if not secret:
        raise AuthError("secret_key missing: set HL_SECRET_KEY or provide a credentials file")
    if not base_url.startswith("http"):
        raise ConfigError("base_url must be http(s)")
    return Credentials(account_address=address, secret_key=secret, base_url=base_url)
