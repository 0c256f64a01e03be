"""
Integration tests for the DecisionOrchestrator decision cycle.
"""
import pytest

from fusion_trader.agents.data_structures import (
    AccountState,
    AdvisoryResponse,
    DecisionSnapshot,
    MarketConditions,
    PerformanceRecord,
    Position,
    SentimentResult,
    SignalType,
    TechnicalSignal,
    TradeDecision,
    VolatilityMetrics,
)
from fusion_trader.communication.orchestrator import DecisionOrchestrator, create_orchestrator
from fusion_trader.config.settings import AdvisorySettings, Settings


def stub_signal(action, confidence, ema9=100.0, ema21=100.0, atr_1h=1.0):
    return TechnicalSignal(
        action=action,
        confidence=confidence,
        context={
            "ema": {"1h": {"ema9": ema9, "ema21": ema21, "ema50": 100.0}},
            "atr": {"1h": atr_1h},
        },
    )


@pytest.fixture
def stubbed(orchestrator_factory, mock_technical_analyzer, mock_sentiment_engine):
    """Orchestrator with stubbed analyzers; sentiment defaults to neutral."""
    mock_sentiment_engine.fuse.return_value = SentimentResult(score=50)

    def _build(signal, sentiment_score=50, advisory_client=None):
        mock_technical_analyzer.analyze.return_value = signal
        mock_sentiment_engine.fuse.return_value = SentimentResult(score=sentiment_score)
        return orchestrator_factory(
            technical_analyzer=mock_technical_analyzer,
            sentiment_engine=mock_sentiment_engine,
            advisory_client=advisory_client,
        )

    return _build


@pytest.fixture
def flat_snapshot(snapshot_factory):
    """Flat 100.0 closes so the last price is exactly 100."""
    return snapshot_factory(closes=[100.0] * 60)


# ==============================
# Synchronous cycle
# ==============================

@pytest.mark.integration
def test_uptrend_with_bullish_sentiment_buys(orchestrator, snapshot_factory, rising_closes, bullish_sentiment):
    snapshot = snapshot_factory(closes=rising_closes, sentiment=bullish_sentiment)
    decision = orchestrator.decide_sync(snapshot)

    assert isinstance(decision, TradeDecision)
    assert decision.action == "buy"
    assert 0.1 < decision.confidence <= 0.99
    assert 0 < decision.size_usd <= 5000
    assert decision.regime.trending is True
    assert decision.regime.liquid is True
    assert decision.stops.stop_loss < snapshot.last_price < decision.stops.take_profit
    assert decision.halted is False


@pytest.mark.integration
def test_fusion_math_with_stubbed_signals(stubbed, flat_snapshot):
    decision = stubbed(stub_signal(SignalType.SELL, 0.8)).decide_sync(flat_snapshot)

    # ranging: tech weight 0.475, sentiment 0.525, fused = -0.8 * 0.475
    assert decision.action == "sell"
    assert decision.confidence == pytest.approx(0.38)
    assert decision.weights == pytest.approx({"tech": 0.475, "sentiment": 0.525})
    assert decision.size_usd == 0.0  # Kelly edge is zero below 40% confidence
    assert decision.stops.stop_loss == pytest.approx(101.2)
    assert decision.stops.take_profit == pytest.approx(98.0)


@pytest.mark.integration
def test_confident_signal_is_sized(stubbed, flat_snapshot):
    decision = stubbed(stub_signal(SignalType.SELL, 1.0)).decide_sync(flat_snapshot)

    assert decision.confidence == pytest.approx(0.475)
    # 10000 * 0.02 * 5 with a 0.75 volatility haircut (atr_pct 0.01)
    assert decision.size_usd == pytest.approx(750.0)


@pytest.mark.integration
def test_equity_falls_back_to_default(stubbed, snapshot_factory):
    snapshot = snapshot_factory(closes=[100.0] * 60, account=AccountState(equity_usd=0.0))
    decision = stubbed(stub_signal(SignalType.SELL, 1.0)).decide_sync(snapshot)
    assert decision.size_usd == pytest.approx(750.0)


@pytest.mark.integration
def test_weak_fusion_holds(stubbed, flat_snapshot):
    decision = stubbed(stub_signal(SignalType.BUY, 0.1), sentiment_score=52).decide_sync(flat_snapshot)
    assert decision.action == "hold"
    assert decision.stops.stop_loss < 100 < decision.stops.take_profit


@pytest.mark.integration
def test_low_confidence_conflict_forces_hold(stubbed, flat_snapshot):
    # fused = 0.5 * 0.475 - 0.4 * 0.525 = 0.0275
    decision = stubbed(stub_signal(SignalType.BUY, 0.5), sentiment_score=30).decide_sync(flat_snapshot)
    assert decision.action == "hold"


@pytest.mark.integration
def test_ranging_conflict_follows_sentiment(stubbed, flat_snapshot):
    # fused = 1.0 * 0.475 - 0.3 * 0.525 = 0.3175 -> buy, overridden by sentiment
    decision = stubbed(stub_signal(SignalType.BUY, 1.0), sentiment_score=35).decide_sync(flat_snapshot)
    assert decision.action == "sell"
    assert decision.stops.stop_loss > 100


@pytest.mark.integration
def test_trending_conflict_follows_technical(stubbed, flat_snapshot):
    # slope 0.01 -> trending; fused = 0.2 * 0.575 - 1.0 * 0.425 = -0.31 -> sell, overridden by technical
    signal = stub_signal(SignalType.BUY, 0.2, ema9=101.0, ema21=100.0)
    decision = stubbed(signal, sentiment_score=0).decide_sync(flat_snapshot)
    assert decision.regime.trending is True
    assert decision.action == "buy"
    assert decision.confidence == pytest.approx(0.31)


@pytest.mark.integration
def test_performance_history_shifts_weights(stubbed, snapshot_factory):
    history = tuple(PerformanceRecord("tech", success=True, rr=2.0) for _ in range(5))
    snapshot = snapshot_factory(closes=[100.0] * 60, performance_history=history)
    decision = stubbed(stub_signal(SignalType.SELL, 0.8)).decide_sync(snapshot)
    assert decision.weights["tech"] > 0.475


@pytest.mark.integration
def test_analyzer_failure_degrades_to_neutral(stubbed, flat_snapshot, mock_technical_analyzer):
    orchestrator = stubbed(stub_signal(SignalType.BUY, 0.9))
    mock_technical_analyzer.analyze.side_effect = RuntimeError("bad candles")

    decision = orchestrator.decide_sync(flat_snapshot)

    assert decision.action == "hold"
    assert decision.halted is False
    assert decision.context["technical"].confidence == 0.5
    # bps stops without an ATR
    assert decision.stops.stop_loss == pytest.approx(99.0)


@pytest.mark.integration
def test_sentiment_failure_degrades_to_neutral(stubbed, flat_snapshot, mock_sentiment_engine):
    orchestrator = stubbed(stub_signal(SignalType.SELL, 1.0))
    mock_sentiment_engine.fuse.side_effect = ValueError("feed down")

    decision = orchestrator.decide_sync(flat_snapshot)

    assert decision.action == "sell"
    assert decision.context["sentiment"].score == 50


@pytest.mark.integration
def test_empty_snapshot_is_total(orchestrator, snapshot_factory):
    decision = orchestrator.decide_sync(snapshot_factory(closes=[]))
    assert decision.action in {"buy", "sell", "hold"}
    assert 0.0 <= decision.confidence <= 1.0
    assert decision.size_usd >= 0.0


@pytest.mark.integration
def test_snapshot_without_price_holds_with_zero_stops(stubbed):
    decision = stubbed(stub_signal(SignalType.SELL, 1.0)).decide_sync(DecisionSnapshot(symbol="XRP-USD"))

    assert decision.halted is False
    assert decision.action == "hold"
    assert decision.size_usd == 0.0
    assert (decision.stops.stop_loss, decision.stops.take_profit) == (0.0, 0.0)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_snapshot_without_price_skips_advisory(stubbed, mock_advisory_client):
    mock_advisory_client.consult.return_value = AdvisoryResponse(action=SignalType.BUY, confidence=0.95)
    orchestrator = stubbed(stub_signal(SignalType.SELL, 1.0), advisory_client=mock_advisory_client)

    decision = await orchestrator.decide(DecisionSnapshot(symbol="XRP-USD"))

    assert decision.action == "hold"
    assert decision.size_usd == 0.0
    mock_advisory_client.consult.assert_not_awaited()


# ==============================
# Risk gate
# ==============================

@pytest.mark.integration
def test_daily_loss_limit_halts(stubbed, snapshot_factory, mock_technical_analyzer):
    snapshot = snapshot_factory(account=AccountState(equity_usd=10000, realized_pnl_today_usd=-1000))
    decision = stubbed(stub_signal(SignalType.BUY, 0.9)).decide_sync(snapshot)

    assert decision.halted is True
    assert decision.action == "hold"
    assert decision.size_usd == 0.0
    assert decision.rationale == "risk_halt"
    assert decision.halt_reasons == ("daily_loss_limit",)
    mock_technical_analyzer.analyze.assert_not_called()


@pytest.mark.integration
def test_market_circuit_breaker_halts(orchestrator, snapshot_factory):
    snapshot = snapshot_factory(market=MarketConditions(change_1h_pct=9.0))
    decision = orchestrator.decide_sync(snapshot)
    assert decision.halted is True
    assert "market_circuit_breaker" in decision.halt_reasons


@pytest.mark.integration
def test_correlated_book_halts(orchestrator, snapshot_factory):
    returns = (0.01, -0.02, 0.015, 0.003, -0.007, 0.02, -0.01, 0.005, 0.012, -0.004, 0.008, -0.015)
    snapshot = snapshot_factory(
        account=AccountState(
            equity_usd=10000,
            positions={"BTC-USD": Position(0.1, 1000), "ETH-USD": Position(1, 1000)},
        ),
        price_history={"BTC-USD": returns, "ETH-USD": returns},
    )
    decision = orchestrator.decide_sync(snapshot)

    assert decision.halted is True
    assert "correlation_breakdown" in decision.halt_reasons
    assert decision.risk_assessment.correlation.max_correlation == pytest.approx(1.0)


@pytest.mark.integration
def test_volatility_spike_halts(orchestrator, snapshot_factory):
    snapshot = snapshot_factory(volatility=VolatilityMetrics(current_vol=0.1, avg_vol=0.02))
    decision = orchestrator.decide_sync(snapshot)
    assert decision.halted is True
    assert "volatility_spike" in decision.halt_reasons


@pytest.mark.integration
def test_concentration_alone_does_not_halt(stubbed, snapshot_factory):
    snapshot = snapshot_factory(
        account=AccountState(equity_usd=10000, positions={"BTC-USD": Position(1, 5000)}),
    )
    decision = stubbed(stub_signal(SignalType.SELL, 1.0)).decide_sync(snapshot)
    assert decision.halted is False
    assert decision.action == "sell"


@pytest.mark.integration
def test_drawdown_halts(orchestrator, snapshot_factory):
    snapshot = snapshot_factory(account=AccountState(equity_usd=9000, drawdown_from_peak_pct=12))
    decision = orchestrator.decide_sync(snapshot)
    assert decision.halted is True
    assert "drawdown_halt" in decision.halt_reasons


# ==============================
# Advisory overlay
# ==============================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_decide_without_advisory_matches_decide_sync(stubbed, flat_snapshot):
    orchestrator = stubbed(stub_signal(SignalType.SELL, 1.0))
    asynchronous = await orchestrator.decide(flat_snapshot)
    synchronous = orchestrator.decide_sync(flat_snapshot)
    assert (asynchronous.action, asynchronous.confidence, asynchronous.size_usd) == (
        synchronous.action, synchronous.confidence, synchronous.size_usd,
    )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_aligned_advisory_is_accepted(stubbed, flat_snapshot, mock_advisory_client):
    mock_advisory_client.consult.return_value = AdvisoryResponse(
        action=SignalType.SELL, confidence=0.6, position_size=5.0, rationale="breakdown",
    )
    decision = await stubbed(stub_signal(SignalType.SELL, 1.0), advisory_client=mock_advisory_client).decide(flat_snapshot)

    assert decision.action == "sell"
    assert decision.confidence == pytest.approx(0.6)
    assert decision.size_usd == pytest.approx(500.0)
    assert decision.advisory.rationale == "breakdown"
    assert decision.context["advisory_status"] == "advisory_accepted"
    prompt = mock_advisory_client.consult.await_args.args[0]
    assert "DECISION: [BUY/SELL/HOLD] BTC-USD" in prompt


@pytest.mark.integration
@pytest.mark.asyncio
async def test_opposing_advisory_without_margin_is_rejected(stubbed, flat_snapshot, mock_advisory_client):
    mock_advisory_client.consult.return_value = AdvisoryResponse(action=SignalType.BUY, confidence=0.5)
    decision = await stubbed(stub_signal(SignalType.SELL, 1.0), advisory_client=mock_advisory_client).decide(flat_snapshot)

    assert decision.action == "sell"
    assert decision.confidence == pytest.approx(0.475)
    assert decision.size_usd == pytest.approx(750.0)
    assert decision.context["advisory_status"] == "advisory_rejected"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_confident_advisory_overrides_and_moves_stops(stubbed, flat_snapshot, mock_advisory_client):
    mock_advisory_client.consult.return_value = AdvisoryResponse(action=SignalType.BUY, confidence=0.9)
    decision = await stubbed(stub_signal(SignalType.SELL, 1.0), advisory_client=mock_advisory_client).decide(flat_snapshot)

    assert decision.action == "buy"
    assert decision.confidence == pytest.approx(0.9)
    assert decision.size_usd == pytest.approx(750.0)
    assert decision.stops.stop_loss == pytest.approx(98.8)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_missing_advisory_keeps_local_decision(stubbed, flat_snapshot, mock_advisory_client):
    decision = await stubbed(stub_signal(SignalType.SELL, 1.0), advisory_client=mock_advisory_client).decide(flat_snapshot)

    mock_advisory_client.consult.assert_awaited_once()
    assert decision.action == "sell"
    assert decision.advisory is None
    assert decision.context["advisory_status"] == "no_advisory"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_halted_cycle_skips_advisory(orchestrator_factory, snapshot_factory, mock_advisory_client):
    orchestrator = orchestrator_factory(advisory_client=mock_advisory_client)
    snapshot = snapshot_factory(account=AccountState(circuit_breaker=True))

    decision = await orchestrator.decide(snapshot)

    assert decision.halted is True
    assert decision.halt_reasons == ("circuit_breaker",)
    mock_advisory_client.consult.assert_not_awaited()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_decide_many_preserves_order(orchestrator, snapshot_factory, rising_closes):
    snapshots = [
        snapshot_factory(symbol="BTC-USD", closes=rising_closes),
        snapshot_factory(symbol="ETH-USD"),
        snapshot_factory(symbol="SOL-USD", market=MarketConditions(change_5m_pct=-4.0)),
    ]
    decisions = await orchestrator.decide_many(snapshots)

    assert [decision.symbol for decision in decisions] == ["BTC-USD", "ETH-USD", "SOL-USD"]
    assert decisions[2].halted is True


# ==============================
# Factory
# ==============================

@pytest.mark.integration
def test_create_orchestrator_from_settings():
    orchestrator = create_orchestrator(Settings(advisory=AdvisorySettings(ENABLED=False)))
    assert isinstance(orchestrator, DecisionOrchestrator)
    assert orchestrator.advisory_client is None
    assert orchestrator.risk_manager.config.MAX_POSITION_USD == 5000.0


@pytest.mark.integration
def test_create_orchestrator_with_advisory_enabled():
    orchestrator = create_orchestrator(Settings(advisory=AdvisorySettings(ENABLED=True, API_KEY="test-key")))
    assert orchestrator.advisory_client is not None
    assert orchestrator.advisory_client.enabled is True
