"""
Configuration module for the Polymarket anomaly scanner.
Loads settings from environment variables with validation.
"""

import os
from dataclasses import dataclass, field, fields, replace, is_dataclass
from typing import Any, Optional
from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class ExchangeConfig:
    """Polymarket API endpoints and request timeouts."""
    gamma_url: str = "https://gamma-api.polymarket.com"
    clob_url: str = "https://clob.polymarket.com"
    ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    user_agent: str = "polyscan/1.0"

    catalog_timeout_seconds: float = 15.0
    book_timeout_seconds: float = 5.0


@dataclass
class ScanConfig:
    """Periodic scan pipeline parameters."""
    page_size: int = 500
    page_delay_seconds: float = 0.1
    max_retries: int = 3
    retry_base_delay: float = 0.5
    book_batch_size: int = 50
    scan_interval_seconds: float = 60.0
    dispatch_cooldown_seconds: float = 60.0


@dataclass
class DispatchConfig:
    """Dispatch queue parameters."""
    inter_task_delay_seconds: float = 1.0
    execution_timeout_seconds: float = 60.0
    executor_url: Optional[str] = None  # HTTP execution endpoint, if any


@dataclass
class MonitorConfig:
    """Realtime monitor parameters."""
    heartbeat_interval_seconds: float = 30.0
    reconnect_base_delay: float = 5.0
    max_reconnect_attempts: int = 10
    connect_timeout_seconds: float = 10.0
    alert_min_spread_pct: float = 0.1
    max_markets: int = 500


@dataclass(frozen=True)
class MintSplitConfig:
    """Mint/split strategy thresholds."""
    enabled: bool = True
    min_price_sum: float = 1.005  # bid sum must exceed 1 + margin
    min_profit: float = 0.02
    mint_amount: float = 10.0
    min_outcomes: int = 3


@dataclass(frozen=True)
class ArbitrageConfig:
    """Two-outcome long/short arbitrage thresholds."""
    enabled: bool = True
    min_spread: float = 1.0  # percent
    trade_amount: float = 10.0
    long_enabled: bool = True
    short_enabled: bool = True


@dataclass(frozen=True)
class MarketMakingConfig:
    """Market making signal thresholds."""
    enabled: bool = False
    spread_percent: float = 2.0
    max_position_per_side: float = 100.0
    min_liquidity: float = 1000.0
    min_volume: float = 5000.0


@dataclass(frozen=True)
class FeeConfig:
    """Fee and confidence policy values."""
    taker_fee_pct: float = 1.0
    gas_estimate_usd: float = 0.01
    high_depth_multiple: float = 2.0
    medium_depth_multiple: float = 1.0


@dataclass(frozen=True)
class StrategyConfig:
    """Complete strategy configuration snapshot."""
    enabled: bool = True
    auto_execute: bool = False
    mint_split: MintSplitConfig = field(default_factory=MintSplitConfig)
    arbitrage: ArbitrageConfig = field(default_factory=ArbitrageConfig)
    market_making: MarketMakingConfig = field(default_factory=MarketMakingConfig)
    fees: FeeConfig = field(default_factory=FeeConfig)


@dataclass
class RiskConfig:
    """Risk control settings."""
    simulation_mode: bool  # Detect but don't execute


@dataclass
class LogConfig:
    """Logging configuration."""
    log_level: str
    json_logging: bool
    alert_log_path: Optional[str] = None


@dataclass
class Config:
    """Main configuration container."""
    exchange: ExchangeConfig
    scan: ScanConfig
    dispatch: DispatchConfig
    monitor: MonitorConfig
    strategy: StrategyConfig
    risk: RiskConfig
    logging: LogConfig


def merge_config(config: Any, overrides: dict) -> Any:
    """
    Return a copy of a frozen config dataclass with nested overrides applied.

    Args:
        config: Dataclass instance to start from
        overrides: Partial mapping; nested dataclass fields take nested dicts

    Returns:
        New dataclass instance

    Raises:
        ValueError: If a key does not name a field
    """
    known = {f.name: f for f in fields(config)}
    changes = {}

    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"Unknown config key '{key}' for {type(config).__name__}")

        current = getattr(config, key)
        if is_dataclass(current) and isinstance(value, dict):
            changes[key] = merge_config(current, value)
        else:
            changes[key] = value

    return replace(config, **changes)


class StrategySettings:
    """
    Holder for the live strategy configuration.

    Readers take `current` once per decision; `update` swaps in a new
    immutable snapshot so a reader never sees a half-applied change.
    """

    def __init__(self, initial: Optional[StrategyConfig] = None):
        self._current = initial or StrategyConfig()

    @property
    def current(self) -> StrategyConfig:
        return self._current

    def update(self, partial: dict) -> StrategyConfig:
        self._current = merge_config(self._current, partial)
        return self._current


def get_env(key: str, default: Optional[str] = None, required: bool = True) -> str:
    """Get environment variable with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value or ""


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes")


def get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    value = os.getenv(key, str(default))
    return int(value)


def get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    value = os.getenv(key, str(default))
    return float(value)


def load_config() -> Config:
    """Load and validate configuration from environment."""
    return Config(
        exchange=ExchangeConfig(
            gamma_url=get_env("GAMMA_URL", ExchangeConfig.gamma_url, required=False),
            clob_url=get_env("CLOB_URL", ExchangeConfig.clob_url, required=False),
            ws_url=get_env("WS_URL", ExchangeConfig.ws_url, required=False),
            catalog_timeout_seconds=get_env_float("CATALOG_TIMEOUT_SECONDS", 15.0),
            book_timeout_seconds=get_env_float("BOOK_TIMEOUT_SECONDS", 5.0),
        ),
        scan=ScanConfig(
            page_size=get_env_int("SCAN_PAGE_SIZE", 500),
            page_delay_seconds=get_env_float("SCAN_PAGE_DELAY_SECONDS", 0.1),
            max_retries=get_env_int("SCAN_MAX_RETRIES", 3),
            book_batch_size=get_env_int("BOOK_BATCH_SIZE", 50),
            scan_interval_seconds=get_env_float("SCAN_INTERVAL_SECONDS", 60.0),
            dispatch_cooldown_seconds=get_env_float("DISPATCH_COOLDOWN_SECONDS", 60.0),
        ),
        dispatch=DispatchConfig(
            inter_task_delay_seconds=get_env_float("DISPATCH_DELAY_SECONDS", 1.0),
            execution_timeout_seconds=get_env_float("EXECUTION_TIMEOUT_SECONDS", 60.0),
            executor_url=os.getenv("EXECUTOR_URL") or None,
        ),
        monitor=MonitorConfig(
            heartbeat_interval_seconds=get_env_float("WS_HEARTBEAT_SECONDS", 30.0),
            reconnect_base_delay=get_env_float("WS_RECONNECT_DELAY_SECONDS", 5.0),
            max_reconnect_attempts=get_env_int("WS_MAX_RECONNECT_ATTEMPTS", 10),
            alert_min_spread_pct=get_env_float("MONITOR_MIN_SPREAD_PCT", 0.1),
            max_markets=get_env_int("MONITOR_MAX_MARKETS", 500),
        ),
        strategy=StrategyConfig(
            auto_execute=get_env_bool("AUTO_EXECUTE", False),
            mint_split=MintSplitConfig(
                min_price_sum=get_env_float("MINT_SPLIT_MIN_PRICE_SUM", 1.005),
                min_profit=get_env_float("MINT_SPLIT_MIN_PROFIT", 0.02),
                mint_amount=get_env_float("MINT_SPLIT_AMOUNT", 10.0),
                min_outcomes=get_env_int("MINT_SPLIT_MIN_OUTCOMES", 3),
            ),
            arbitrage=ArbitrageConfig(
                min_spread=get_env_float("ARBITRAGE_MIN_SPREAD_PCT", 1.0),
                trade_amount=get_env_float("ARBITRAGE_TRADE_AMOUNT", 10.0),
            ),
            market_making=MarketMakingConfig(
                enabled=get_env_bool("MARKET_MAKING_ENABLED", False),
            ),
            fees=FeeConfig(
                taker_fee_pct=get_env_float("TAKER_FEE_PCT", 1.0),
                gas_estimate_usd=get_env_float("GAS_ESTIMATE_USD", 0.01),
            ),
        ),
        risk=RiskConfig(
            simulation_mode=get_env_bool("SIMULATION_MODE", True),  # Default to simulation
        ),
        logging=LogConfig(
            log_level=get_env("LOG_LEVEL", "INFO", required=False),
            json_logging=get_env_bool("JSON_LOGGING", True),
            alert_log_path=os.getenv("ALERT_LOG_PATH") or None,
        ),
    )
