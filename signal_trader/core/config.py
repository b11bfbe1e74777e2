"""
Load configuration from config.yaml and .env. API keys only from env.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv


@dataclass(frozen=True)
class RuleConfig:
    """Thresholds and weights for one timeframe's rule evaluation."""
    # Trend crossover
    fast_ma_type: str = "ema"
    fast_period: int = 21
    slow_ma_type: str = "sma"
    slow_period: int = 200
    # Volume
    volume_ma_period: int = 20
    volume_multiplier: float = 1.5
    # Volatility regime
    hvp_window: int = 20
    hvp_lookback: int = 252
    hvp_threshold: float = 50.0
    hvp_ma_period: int = 5
    hvp_mode: str = "either"  # threshold | average | either
    # Optional confirmations
    use_stochastic: bool = True
    stoch_k_period: int = 14
    stoch_d_period: int = 3
    stoch_smooth_k: int = 1
    stoch_overbought: float = 80.0
    stoch_oversold: float = 20.0
    use_dmi: bool = True
    dmi_period: int = 14
    adx_threshold: float = 20.0
    # Risk
    atr_period: int = 14
    atr_stop_mult: float = 2.0
    atr_tp_mult: float = 3.0
    min_risk_reward: float = 1.5
    # Confidence
    base_confidence: float = 70.0
    max_confidence: float = 95.0
    volume_bonus_max: float = 10.0
    volume_bonus_scale: float = 20.0
    volatility_bonus_max: float = 10.0
    volatility_bonus_divisor: float = 2.0
    stochastic_bonus: float = 3.0
    dmi_bonus: float = 2.0
    # (grade, min confidence, min risk/reward), best first
    grade_tiers: Tuple[Tuple[str, float, float], ...] = (
        ("A+", 90.0, 1.4),
        ("A", 85.0, 1.3),
        ("B", 80.0, 1.0),
    )
    # Signal management
    cooldown_minutes: float = 120.0
    signal_ttl_bars: int = 4
    direction_priority: Tuple[str, ...] = ("LONG", "SHORT")
    # Diagnostics
    rsi_period: int = 14
    bb_period: int = 20
    bb_std: float = 2.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RuleConfig":
        return cls().merged(data)

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "RuleConfig":
        """Copy with `overrides` applied. Unknown keys raise ValueError."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown rule settings: {sorted(unknown)}")
        values = dict(overrides)
        if "grade_tiers" in values:
            values["grade_tiers"] = tuple(
                (str(t[0]), float(t[1]), float(t[2])) if not isinstance(t, dict)
                else (str(t["grade"]), float(t["min_confidence"]), float(t["min_risk_reward"]))
                for t in values["grade_tiers"]
            )
        if "direction_priority" in values:
            values["direction_priority"] = tuple(str(d).upper() for d in values["direction_priority"])
        cfg = replace(self, **values)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.hvp_mode not in ("threshold", "average", "either"):
            raise ValueError(f"hvp_mode must be threshold|average|either, got {self.hvp_mode!r}")
        for kind in (self.fast_ma_type, self.slow_ma_type):
            if kind not in ("ema", "sma"):
                raise ValueError(f"moving average type must be ema|sma, got {kind!r}")
        if set(self.direction_priority) - {"LONG", "SHORT"}:
            raise ValueError(f"direction_priority must contain LONG/SHORT only: {self.direction_priority}")
        if self.base_confidence > self.max_confidence:
            raise ValueError("base_confidence must not exceed max_confidence")


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value]


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Config":
    """Load config.yaml and overlay with env. Returns Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: Dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # Env overrides (for secrets and overrides)
    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_list(key: str, default: Any) -> List[str]:
        raw = os.getenv(key)
        return _as_list(raw) if raw is not None else _as_list(default)

    api = data.get("api", {}) or {}
    scan = data.get("scan", {}) or {}
    rules = data.get("rules", {}) or {}
    cooldown = data.get("cooldown", {}) or {}
    risk = data.get("risk", {}) or {}
    execution = data.get("execution", {}) or {}
    storage = data.get("storage", {}) or {}
    logging_cfg = data.get("logging", {}) or {}

    exchange = env("EXCHANGE", api.get("exchange", "bybit")).lower()
    use_testnet = env_bool("USE_TESTNET", api.get("use_testnet", True))
    # Prefer dedicated testnet/mainnet keys so both can live in .env
    prefix = exchange.upper()
    net = "TESTNET" if use_testnet else "MAINNET"
    api_key = env(f"{prefix}_{net}_API_KEY") or env(f"{prefix}_API_KEY")
    api_secret = env(f"{prefix}_{net}_API_SECRET") or env(f"{prefix}_API_SECRET")

    default_rules = RuleConfig.from_dict(rules.get("default"))
    if "COOLDOWN_MINUTES" in os.environ:
        default_rules = replace(default_rules, cooldown_minutes=env_float("COOLDOWN_MINUTES", default_rules.cooldown_minutes))
    elif cooldown.get("minutes") is not None:
        default_rules = replace(default_rules, cooldown_minutes=float(cooldown["minutes"]))
    timeframe_rules = {
        str(tf): default_rules.merged(overrides)
        for tf, overrides in (rules.get("timeframes", {}) or {}).items()
    }
    for tf, minutes in (cooldown.get("by_timeframe", {}) or {}).items():
        base = timeframe_rules.get(str(tf), default_rules)
        timeframe_rules[str(tf)] = replace(base, cooldown_minutes=float(minutes))

    return Config(
        # API (keys from env only; never put keys in config.yaml)
        exchange=exchange,
        api_key=api_key,
        api_secret=api_secret,
        use_testnet=use_testnet,
        recv_window_ms=env_int("RECV_WINDOW_MS", api.get("recv_window_ms", 5000)),
        request_timeout_s=env_float("REQUEST_TIMEOUT_S", api.get("request_timeout_s", 10.0)),
        instrument_cache_ttl_s=float(api.get("instrument_cache_ttl_s", 300.0)),
        # Scan
        symbols=[s.upper() for s in env_list("SYMBOLS", scan.get("symbols", ["BTCUSDT", "ETHUSDT"]))],
        timeframes=env_list("TIMEFRAMES", scan.get("timeframes", ["1h", "4h"])),
        symbol_allowlist=[s.upper() for s in _as_list(scan.get("allowlist"))],
        symbol_denylist=[s.upper() for s in _as_list(scan.get("denylist"))],
        candle_limit=env_int("CANDLE_LIMIT", scan.get("candle_limit", 300)),
        max_workers=env_int("MAX_WORKERS", scan.get("max_workers", 4)),
        batch_delay_s=env_float("BATCH_DELAY_S", scan.get("batch_delay_s", 0.2)),
        scan_interval_s=env_float("SCAN_INTERVAL_S", scan.get("interval_s", 60.0)),
        drop_forming_bar=scan.get("drop_forming_bar", True),
        # Rules
        default_rules=default_rules,
        timeframe_rules=timeframe_rules,
        # Risk
        sizing_mode=env("SIZING_MODE", risk.get("sizing_mode", "notional")),
        order_amount_usd=env_float("ORDER_AMOUNT_USD", risk.get("order_amount_usd", 100.0)),
        risk_percent=env_float("RISK_PERCENT", risk.get("risk_percent", 1.0)),
        account_balance_usd=env_float("ACCOUNT_BALANCE_USD", risk.get("account_balance_usd", 1000.0)),
        leverage=env_float("LEVERAGE", risk.get("leverage", 5)),
        max_leverage=env_float("MAX_LEVERAGE", risk.get("max_leverage", 10)),
        min_order_value_usd=env_float("MIN_ORDER_VALUE_USD", risk.get("min_order_value_usd", 5.0)),
        # Execution
        auto_execute=env_bool("AUTO_EXECUTE", execution.get("auto_execute", False)),
        execute_min_grade=str(execution.get("min_grade", "A")),
        order_type=str(execution.get("order_type", "Market")),
        idempotency_window_s=float(execution.get("idempotency_window_s", 300.0)),
        # Storage
        db_path=Path(env("DB_PATH", storage.get("db_path", "data/signals.db"))),
        durable_cooldown=bool(storage.get("durable_cooldown", False)),
        # Logging
        log_level=logging_cfg.get("level", "INFO"),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "signal_trader.log"),
    )


@dataclass(frozen=True)
class Config:
    """Unified configuration. Immutable after load."""
    exchange: str = "bybit"
    api_key: str = ""
    api_secret: str = ""
    use_testnet: bool = True
    recv_window_ms: int = 5000
    request_timeout_s: float = 10.0
    instrument_cache_ttl_s: float = 300.0
    symbols: List[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    timeframes: List[str] = field(default_factory=lambda: ["1h", "4h"])
    symbol_allowlist: List[str] = field(default_factory=list)
    symbol_denylist: List[str] = field(default_factory=list)
    candle_limit: int = 300
    max_workers: int = 4
    batch_delay_s: float = 0.2
    scan_interval_s: float = 60.0
    drop_forming_bar: bool = True
    default_rules: RuleConfig = field(default_factory=RuleConfig)
    timeframe_rules: Dict[str, RuleConfig] = field(default_factory=dict)
    sizing_mode: str = "notional"
    order_amount_usd: float = 100.0
    risk_percent: float = 1.0
    account_balance_usd: float = 1000.0
    leverage: float = 5.0
    max_leverage: float = 10.0
    min_order_value_usd: float = 5.0
    auto_execute: bool = False
    execute_min_grade: str = "A"
    order_type: str = "Market"
    idempotency_window_s: float = 300.0
    db_path: Path = Path("data/signals.db")
    durable_cooldown: bool = False
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_file: str = "signal_trader.log"

    def rule_config(self, timeframe: str) -> RuleConfig:
        """Rules for a timeframe: default block overlaid by the timeframe block."""
        return self.timeframe_rules.get(timeframe, self.default_rules)

    def scan_symbols(self) -> List[str]:
        """Configured symbols filtered through the allow/deny lists."""
        allow = set(self.symbol_allowlist)
        deny = set(self.symbol_denylist)
        return [s for s in self.symbols if (not allow or s in allow) and s not in deny]
