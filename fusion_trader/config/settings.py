"""
Centralized configuration management for the Fusion Trader decision engine.

Configuration follows a 2-tier layout:

Tier 1: Code Defaults (settings.py)
- Default values for all risk limits, fusion thresholds and feature flags
- Version controlled, visible in PRs

Tier 2: Environment Variables (.env)
- Secrets (advisory API key) and local overrides
- Never committed to git

Example Override Pattern:
- Default in code: RiskSettings.MAX_POSITION_USD = 5000
- Override in .env: RISK_MAX_POSITION_USD=2500

Every settings group is frozen. Components receive the group they need at
construction time and never read the module-level ``settings`` object
themselves, so a decision cycle is a pure function of its inputs plus the
configuration value it was built with.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class RiskSettings(BaseSettings):
    """
    Configuration for position sizing, stops and halt predicates.
    """
    model_config = SettingsConfigDict(env_prefix='RISK_', frozen=True)

    MAX_POSITION_USD: float = 5000.0
    MAX_DAILY_LOSS_USD: float = 1000.0
    STOP_LOSS_BPS: float = 100.0
    TAKE_PROFIT_BPS: float = 200.0
    MAX_RISK_PCT_PER_TRADE: float = 0.02

    # Halt when drawdown from peak reaches this many percent
    DRAWDOWN_HALT_PCT: float = 10.0

    # ATR stop multipliers
    ATR_STOP_MULTIPLIER: float = 1.2
    ATR_TARGET_MULTIPLIER: float = 2.0

    # Sizing
    KELLY_CAP: float = 0.25
    KELLY_WIN_LOSS_RATIO: float = 1.5
    NOTIONAL_MULTIPLIER: float = 5.0
    VOL_ADJ_FLOOR: float = 0.25
    VOL_ADJ_ATR_PCT_CEILING: float = 0.04

    # Regime classification
    HIGH_VOL_ATR_PCT: float = 0.02
    TRENDING_SLOPE_THRESHOLD: float = 0.0005
    DEFAULT_LIQUIDITY_SCORE: float = 0.5

    # Market circuit breaker (percent units)
    MAX_CHANGE_1H_PCT: float = 8.0
    MAX_CHANGE_5M_PCT: float = 3.5
    MAX_ORDERBOOK_IMBALANCE: float = 0.8

    # Portfolio checks
    CORRELATION_WINDOW: int = 20
    MIN_CORRELATION_HISTORY: int = 10
    CORRELATION_BREAKDOWN_THRESHOLD: float = 0.8
    CONCENTRATION_THRESHOLD: float = 0.6
    VOLATILITY_SPIKE_MULTIPLE: float = 2.0
    DRAWDOWN_LIMIT: float = 0.08  # fraction, not percent


class FusionSettings(BaseSettings):
    """
    Configuration for the decision fusion stage of the orchestrator.
    """
    model_config = SettingsConfigDict(env_prefix='FUSION_', frozen=True)

    ACTION_THRESHOLD: float = 0.1
    MAX_CONFIDENCE: float = 0.99

    # Regime-aware base weights for the technical signal
    TRENDING_TECH_WEIGHT: float = 0.65
    RANGING_TECH_WEIGHT: float = 0.45
    MIN_STRATEGY_WEIGHT: float = 0.2
    MAX_STRATEGY_WEIGHT: float = 0.8

    # Conflict resolution
    CONFLICT_THRESHOLD: float = 0.25
    CONFLICT_MIN_CONFIDENCE: float = 0.25

    # Advisory gating
    ADVISORY_ALIGN_TOLERANCE: float = 0.1
    ADVISORY_OVERRIDE_MARGIN: float = 0.2

    DEFAULT_EQUITY_USD: float = 10000.0  # Used when the account snapshot reports no equity


class AdvisorySettings(BaseSettings):
    """
    Configuration for the optional advisory oracle (OpenAI-compatible endpoint).
    """
    model_config = SettingsConfigDict(env_prefix='ADVISORY_', frozen=True)

    ENABLED: bool = False
    API_KEY: Optional[str] = None
    BASE_URL: str = "https://api.deepseek.com/v1"
    MODEL: str = "deepseek-chat"
    TIMEOUT_SECONDS: float = 10.0
    TEMPERATURE: float = 0.1
    TOP_P: float = 0.9
    MAX_TOKENS: int = 256


class TradingSettings(BaseSettings):
    """
    Configuration for the polling decision loop.
    """
    model_config = SettingsConfigDict(env_prefix='TRADING_', frozen=True)

    SYMBOLS: List[str] = ["BTC-USD", "ETH-USD"]
    POLL_INTERVAL_SECONDS: float = 10.0


class LoggingSettings(BaseSettings):
    """
    Configuration for structured logging.
    """
    model_config = SettingsConfigDict(env_prefix='LOG_', frozen=True)

    LEVEL: str = "INFO"
    JSON: Optional[bool] = None  # None: console renderer on a TTY, JSON otherwise


class Settings(BaseSettings):
    """
    Main settings object that aggregates all other settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore', frozen=True)

    risk: RiskSettings = RiskSettings()
    fusion: FusionSettings = FusionSettings()
    advisory: AdvisorySettings = AdvisorySettings()
    trading: TradingSettings = TradingSettings()
    logging: LoggingSettings = LoggingSettings()


settings = Settings()
