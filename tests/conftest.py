"""
Pytest configuration and shared fixtures for the Fusion Trader test suite.

This module provides common fixtures and configuration for all test categories,
ensuring consistent test data and setup across the entire test suite.
"""

from typing import Callable, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from fusion_trader.agents.data_structures import (
    AccountState,
    Candle,
    DecisionSnapshot,
    MarketStructureInputs,
    OnChainInputs,
    OrderBookSnapshot,
    SentimentInputs,
    SocialInputs,
)
from fusion_trader.agents.risk import RiskManager
from fusion_trader.agents.sentiment import SentimentFusionEngine
from fusion_trader.agents.technical import TechnicalAnalyzer
from fusion_trader.communication.orchestrator import DecisionOrchestrator
from fusion_trader.config.settings import FusionSettings, RiskSettings
from fusion_trader.llm.client import AdvisoryClient
from fusion_trader.signal_generation.components import (
    AdvisoryOverlay,
    ConflictDetector,
    PerformanceWeighter,
)

HOUR_MS = 3_600_000
START_MS = 1_700_000_000_000


# ==============================
# Pytest Configuration
# ==============================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests for individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests for component interactions"
    )


# ==============================
# Market Data Fixtures
# ==============================

def build_candles(
    closes: Sequence[float],
    spread: float = 0.5,
    volume: float = 100.0,
    start_ms: int = START_MS,
    step_ms: int = HOUR_MS,
):
    """Candles whose open is the previous close, padded by ``spread`` on both sides."""
    candles = []
    previous = closes[0] if closes else 0.0
    for index, close in enumerate(closes):
        open_time = start_ms + index * step_ms
        candles.append(Candle(
            open_time=open_time,
            open=previous,
            high=max(previous, close) + spread,
            low=min(previous, close) - spread,
            close=close,
            volume=volume,
            close_time=open_time + step_ms - 1,
        ))
        previous = close
    return tuple(candles)


@pytest.fixture
def candle_factory() -> Callable:
    """Expose the candle builder to tests."""
    return build_candles


@pytest.fixture
def rising_closes():
    """Geometric uptrend: 80 bars growing 1% each."""
    return [100 * 1.01 ** i for i in range(80)]


@pytest.fixture
def rising_candles(rising_closes):
    return build_candles(rising_closes)


@pytest.fixture
def bullish_sentiment() -> SentimentInputs:
    """Bullish readings on every sentiment channel."""
    return SentimentInputs(
        social=SocialInputs(twitter_score=1, telegram_score=1, trends_score=1, news_score=1),
        onchain=OnChainInputs(
            whale_inflow_usd=5_000_000,
            exchange_netflow=-1,
            gas_price_gwei=100,
            active_addrs_delta=1,
        ),
        market_structure=MarketStructureInputs(
            orderbook=OrderBookSnapshot(bid_depth=900, ask_depth=100, imbalance=0.5),
        ),
    )


@pytest.fixture
def snapshot_factory(candle_factory) -> Callable:
    """Build a DecisionSnapshot around a close series."""
    def _build(
        symbol: str = "BTC-USD",
        closes: Optional[Sequence[float]] = None,
        sentiment: Optional[SentimentInputs] = None,
        account: Optional[AccountState] = None,
        **kwargs,
    ) -> DecisionSnapshot:
        candles = candle_factory(closes if closes is not None else [100.0] * 60)
        return DecisionSnapshot(
            symbol=symbol,
            candles_5m=candles,
            candles_1h=candles,
            candles_4h=candles,
            sentiment=sentiment or SentimentInputs(),
            account=account or AccountState(equity_usd=10000.0),
            **kwargs,
        )

    return _build


# ==============================
# Configuration Fixtures
# ==============================

@pytest.fixture
def risk_settings() -> RiskSettings:
    return RiskSettings()


@pytest.fixture
def fusion_settings() -> FusionSettings:
    return FusionSettings()


@pytest.fixture
def risk_manager(risk_settings) -> RiskManager:
    return RiskManager(risk_settings)


# ==============================
# Mock Dependencies Fixtures
# ==============================

@pytest.fixture
def mock_advisory_client():
    """Advisory client whose consult() returns None unless a test overrides it."""
    client = MagicMock(spec=AdvisoryClient)
    client.consult = AsyncMock(return_value=None)
    return client


@pytest.fixture
def mock_technical_analyzer():
    """Technical analyzer stub; tests set ``analyze.return_value``."""
    return MagicMock(spec=TechnicalAnalyzer)


@pytest.fixture
def mock_sentiment_engine():
    """Sentiment engine stub; tests set ``fuse.return_value``."""
    return MagicMock(spec=SentimentFusionEngine)


# ==============================
# Orchestrator Fixtures
# ==============================

@pytest.fixture
def orchestrator_factory(risk_settings, fusion_settings) -> Callable:
    """Build a DecisionOrchestrator, substituting any collaborator."""
    def _build(
        technical_analyzer=None,
        sentiment_engine=None,
        advisory_client=None,
    ) -> DecisionOrchestrator:
        return DecisionOrchestrator(
            risk_manager=RiskManager(risk_settings),
            technical_analyzer=technical_analyzer or TechnicalAnalyzer(),
            sentiment_engine=sentiment_engine or SentimentFusionEngine(),
            weighter=PerformanceWeighter(fusion_settings),
            conflict_detector=ConflictDetector(fusion_settings),
            overlay=AdvisoryOverlay(fusion_settings),
            config=fusion_settings,
            advisory_client=advisory_client,
        )

    return _build


@pytest.fixture
def orchestrator(orchestrator_factory) -> DecisionOrchestrator:
    return orchestrator_factory()
