"""
Orchestrates one decision cycle per symbol.

A cycle runs strictly in order: risk gate, technical and sentiment analysis,
regime detection, adaptive weighting, fusion, conflict resolution, sizing,
and finally the optional advisory overlay. Everything up to sizing is a pure
synchronous computation (``evaluate``); only the advisory call is async.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from fusion_trader.agents.data_structures import (
    AdvisoryResponse,
    DecisionSnapshot,
    Regime,
    RiskAssessment,
    SentimentResult,
    SignalType,
    TechnicalSignal,
    TradeDecision,
)
from fusion_trader.agents.risk import RiskManager
from fusion_trader.agents.sentiment import SentimentFusionEngine
from fusion_trader.agents.technical import TechnicalAnalyzer
from fusion_trader.config.settings import FusionSettings, Settings, settings
from fusion_trader.llm.client import AdvisoryClient
from fusion_trader.llm.prompts import build_trading_prompt
from fusion_trader.signal_generation.components import (
    AdvisoryOverlay,
    ConflictDetector,
    ConflictInfo,
    PerformanceWeighter,
)
from fusion_trader.utils.logging import configure_logging, get_logger
from fusion_trader.utils.performance import time_function

logger = get_logger(__name__)

ORDERBOOK_LIQUIDITY_SCORE = 0.6


@dataclass
class CycleEvaluation:
    """
    Local (pre-advisory) result of a decision cycle.

    Attributes:
        snapshot: Input the cycle ran on.
        action: Action after fusion and conflict resolution.
        confidence: Fused confidence in [0, 0.99].
        size_usd: Capped notional.
        regime: Detected regime.
        halted: True when the risk gate tripped.
        halt_reasons: Gates that tripped.
        fused: Signed fused score.
        weights: Final technical/sentiment weights.
        technical: Technical signal (neutral on failure).
        sentiment: Sentiment result (neutral on failure).
        conflict: Conflict resolution details, if a conflict was found.
        risk_assessment: Portfolio risk audit.
        last_price: Reference price for stops.
        atr_1h: 1h ATR, if available.
        atr_pct: 1h ATR as a fraction of price.
        equity_usd: Equity used for sizing.
        priced: False when the snapshot carried no usable price.
    """
    snapshot: DecisionSnapshot
    action: SignalType
    confidence: float
    size_usd: float
    regime: Regime
    halted: bool = False
    halt_reasons: Tuple[str, ...] = ()
    fused: float = 0.0
    weights: Dict[str, float] = field(default_factory=dict)
    technical: Optional[TechnicalSignal] = None
    sentiment: Optional[SentimentResult] = None
    conflict: Optional[ConflictInfo] = None
    risk_assessment: Optional[RiskAssessment] = None
    last_price: float = 0.0
    atr_1h: Optional[float] = None
    atr_pct: float = 0.0
    equity_usd: float = 0.0
    priced: bool = True


class DecisionOrchestrator:
    """
    Fuses technical and sentiment signals into a risk-bounded TradeDecision.

    The orchestrator holds no mutable state; cycles for different symbols can
    run concurrently.
    """

    def __init__(
        self,
        risk_manager: RiskManager,
        technical_analyzer: TechnicalAnalyzer,
        sentiment_engine: SentimentFusionEngine,
        weighter: PerformanceWeighter,
        conflict_detector: ConflictDetector,
        overlay: AdvisoryOverlay,
        config: FusionSettings,
        advisory_client: Optional[AdvisoryClient] = None,
    ):
        self.risk_manager = risk_manager
        self.technical_analyzer = technical_analyzer
        self.sentiment_engine = sentiment_engine
        self.weighter = weighter
        self.conflict_detector = conflict_detector
        self.overlay = overlay
        self.config = config
        self.advisory_client = advisory_client

    # ------------------------------------------------------------------
    # Risk gate
    # ------------------------------------------------------------------

    def _risk_gate(self, snapshot: DecisionSnapshot) -> Tuple[RiskAssessment, List[str]]:
        account = snapshot.account
        market = snapshot.market
        risk = self.risk_manager

        assessment = risk.advanced_risk_check(
            account.positions,
            snapshot.price_history,
            current_drawdown=account.drawdown_from_peak_pct / 100,
            volatility=snapshot.volatility,
        )
        volatility_spike = market.volatility_spike or assessment.risk_flags.volatility_spike
        correlation_breakdown = market.correlation_breakdown or assessment.risk_flags.correlation_breakdown

        reasons = []
        if risk.market_circuit_breaker(market.change_1h_pct, market.change_5m_pct, market.orderbook_imbalance):
            reasons.append("market_circuit_breaker")
        if volatility_spike:
            reasons.append("volatility_spike")
        if correlation_breakdown:
            reasons.append("correlation_breakdown")
        if account.circuit_breaker:
            reasons.append("circuit_breaker")
        if risk.should_halt_trading(account.realized_pnl_today_usd):
            reasons.append("daily_loss_limit")
        if risk.should_halt_trading(0.0, drawdown_from_peak_pct=account.drawdown_from_peak_pct):
            reasons.append("drawdown_halt")

        market_tripped = risk.market_circuit_breaker(
            change_1h_pct=market.change_1h_pct,
            change_5m_pct=market.change_5m_pct,
            orderbook_imbalance=market.orderbook_imbalance,
            volatility_spike=volatility_spike,
            correlation_breakdown=correlation_breakdown,
        )
        halted = risk.should_halt_trading(
            account.realized_pnl_today_usd,
            drawdown_from_peak_pct=account.drawdown_from_peak_pct,
            circuit_breaker=account.circuit_breaker or market_tripped,
        )
        return assessment, reasons if halted else []

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def _run_technical(self, snapshot: DecisionSnapshot) -> TechnicalSignal:
        try:
            return self.technical_analyzer.analyze(snapshot.candles_5m, snapshot.candles_1h, snapshot.candles_4h)
        except Exception as e:
            logger.warning("technical_analysis_failed", symbol=snapshot.symbol, error=str(e))
            return TechnicalAnalyzer.neutral(f"technical analysis failed: {e}")

    def _run_sentiment(self, snapshot: DecisionSnapshot) -> SentimentResult:
        try:
            return self.sentiment_engine.fuse(snapshot.sentiment, snapshot.last_price)
        except Exception as e:
            logger.warning("sentiment_analysis_failed", symbol=snapshot.symbol, error=str(e))
            return SentimentFusionEngine.neutral()

    @staticmethod
    def _liquidity_score(snapshot: DecisionSnapshot) -> Optional[float]:
        if snapshot.liquidity_score is not None:
            return snapshot.liquidity_score
        orderbook = snapshot.sentiment.market_structure.orderbook
        if orderbook.bid_depth + orderbook.ask_depth > 0:
            return ORDERBOOK_LIQUIDITY_SCORE
        return None

    def _equity(self, snapshot: DecisionSnapshot) -> float:
        return snapshot.account.equity_usd or self.config.DEFAULT_EQUITY_USD

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    @time_function(operation_name="decision_evaluate")
    def evaluate(self, snapshot: DecisionSnapshot) -> CycleEvaluation:
        """
        Run the synchronous part of a cycle: gate, analysis, fusion, sizing.

        Args:
            snapshot: Fully materialized cycle input.

        Returns:
            CycleEvaluation with the local decision.
        """
        last_price = snapshot.last_price
        equity = self._equity(snapshot)

        assessment, halt_reasons = self._risk_gate(snapshot)
        if halt_reasons:
            logger.warning("trading_halted", symbol=snapshot.symbol, reasons=halt_reasons)
            return CycleEvaluation(
                snapshot=snapshot,
                action=SignalType.HOLD,
                confidence=0.0,
                size_usd=0.0,
                regime=Regime(),
                halted=True,
                halt_reasons=tuple(halt_reasons),
                risk_assessment=assessment,
                last_price=last_price,
                equity_usd=equity,
            )

        technical = self._run_technical(snapshot)
        sentiment = self._run_sentiment(snapshot)

        ema_1h = technical.context.get("ema", {}).get("1h", {})
        atr_1h = technical.context.get("atr", {}).get("1h")
        atr_pct = atr_1h / last_price if atr_1h and last_price else 0.0
        ema9 = ema_1h.get("ema9") or last_price
        ema21 = ema_1h.get("ema21") or last_price
        ema_slope = (ema9 - ema21) / max(1.0, last_price)
        regime = self.risk_manager.detect_regime(atr_pct, ema_slope, self._liquidity_score(snapshot))

        weights = self.weighter.compute_weights(regime, snapshot.performance_history)
        norm = weights["tech"] + weights["sentiment"] or 1.0

        tech_bias = technical.action.bias
        tech_strength = technical.confidence or 0.5
        sentiment_bias = sentiment.bias
        fused = tech_bias * tech_strength * (weights["tech"] / norm) + sentiment_bias * (weights["sentiment"] / norm)

        if fused > self.config.ACTION_THRESHOLD:
            action = SignalType.BUY
        elif fused < -self.config.ACTION_THRESHOLD:
            action = SignalType.SELL
        else:
            action = SignalType.HOLD
        confidence = min(self.config.MAX_CONFIDENCE, abs(fused))

        conflict = self.conflict_detector.resolve(confidence, tech_bias, sentiment_bias, regime)
        if conflict is not None:
            logger.info("signal_conflict", symbol=snapshot.symbol, description=conflict.description)
            action = conflict.resolved_action

        size_usd = self.risk_manager.cap_order_size_usd(
            self.risk_manager.position_size_usd(equity, confidence, atr_pct)
        )

        priced = last_price > 0
        if not priced:
            logger.warning("no_price", symbol=snapshot.symbol)
            action = SignalType.HOLD
            size_usd = 0.0

        return CycleEvaluation(
            snapshot=snapshot,
            action=action,
            confidence=confidence,
            size_usd=size_usd,
            regime=regime,
            fused=fused,
            weights=weights,
            technical=technical,
            sentiment=sentiment,
            conflict=conflict,
            risk_assessment=assessment,
            last_price=last_price,
            atr_1h=atr_1h,
            atr_pct=atr_pct,
            equity_usd=equity,
            priced=priced,
        )

    def _finalize(
        self,
        evaluation: CycleEvaluation,
        action: SignalType,
        confidence: float,
        size_usd: float,
        advisory: Optional[AdvisoryResponse] = None,
        advisory_status: str = "not_consulted",
    ) -> TradeDecision:
        side = "sell" if action is SignalType.SELL else "buy"
        stops = self.risk_manager.compute_stops(evaluation.last_price, side, evaluation.atr_1h)

        if evaluation.halted:
            rationale = "risk_halt"
        else:
            parts = []
            if evaluation.technical is not None and evaluation.technical.rationale:
                parts.append(evaluation.technical.rationale)
            if evaluation.sentiment is not None:
                parts.append(f"sentiment {evaluation.sentiment.score} ({evaluation.sentiment.label})")
            if evaluation.conflict is not None:
                parts.append(evaluation.conflict.description)
            if advisory is not None and advisory_status == "advisory_accepted" and advisory.rationale:
                parts.append(f"advisory: {advisory.rationale}")
            rationale = " | ".join(parts)

        context = {
            "fused": evaluation.fused,
            "atr_pct": evaluation.atr_pct,
            "equity_usd": evaluation.equity_usd,
            "advisory_status": advisory_status,
        }
        if evaluation.technical is not None:
            context["technical"] = evaluation.technical
        if evaluation.sentiment is not None:
            context["sentiment"] = evaluation.sentiment

        decision = TradeDecision(
            symbol=evaluation.snapshot.symbol,
            action=action.value.lower(),
            confidence=confidence,
            size_usd=size_usd,
            stops=stops,
            regime=evaluation.regime,
            rationale=rationale,
            advisory=advisory,
            halted=evaluation.halted,
            halt_reasons=evaluation.halt_reasons,
            weights=dict(evaluation.weights),
            risk_assessment=evaluation.risk_assessment,
            context=context,
        )
        logger.info(
            "trade_decision",
            symbol=decision.symbol,
            action=decision.action,
            confidence=round(decision.confidence, 4),
            size_usd=round(decision.size_usd, 2),
            halted=decision.halted,
            advisory_status=advisory_status,
        )
        return decision

    def decide_sync(self, snapshot: DecisionSnapshot) -> TradeDecision:
        """Full cycle without the advisory overlay."""
        evaluation = self.evaluate(snapshot)
        return self._finalize(evaluation, evaluation.action, evaluation.confidence, evaluation.size_usd)

    def build_prompt(self, evaluation: CycleEvaluation) -> str:
        snapshot = evaluation.snapshot
        return build_trading_prompt(
            symbol=snapshot.symbol,
            technical=evaluation.technical,
            sentiment=evaluation.sentiment or SentimentFusionEngine.neutral(),
            regime=evaluation.regime,
            atr_pct=evaluation.atr_pct,
            account=snapshot.account,
            equity_usd=evaluation.equity_usd,
            history=snapshot.performance_history,
        )

    @time_function(operation_name="decision_cycle")
    async def decide(self, snapshot: DecisionSnapshot) -> TradeDecision:
        """
        Full cycle including the advisory overlay.

        Halted cycles, cycles without a price and orchestrators without an
        advisory client skip the oracle entirely.
        """
        evaluation = self.evaluate(snapshot)
        if evaluation.halted or not evaluation.priced or self.advisory_client is None:
            return self._finalize(evaluation, evaluation.action, evaluation.confidence, evaluation.size_usd)

        advisory = await self.advisory_client.consult(self.build_prompt(evaluation))
        outcome = self.overlay.apply(
            local_action=evaluation.action,
            local_confidence=evaluation.confidence,
            local_size_usd=evaluation.size_usd,
            equity_usd=evaluation.equity_usd,
            advisory=advisory,
            cap_size=self.risk_manager.cap_order_size_usd,
        )
        if advisory is not None:
            logger.info(
                outcome.reason,
                symbol=snapshot.symbol,
                local_action=evaluation.action.value,
                advisory_action=advisory.action.value,
                advisory_confidence=advisory.confidence,
            )
        return self._finalize(evaluation, outcome.action, outcome.confidence, outcome.size_usd, advisory, outcome.reason)

    async def decide_many(self, snapshots: Sequence[DecisionSnapshot]) -> List[TradeDecision]:
        """Run independent cycles concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.decide(snapshot) for snapshot in snapshots)))


def create_orchestrator(app_settings: Optional[Settings] = None) -> DecisionOrchestrator:
    """
    Build the orchestrator object graph from configuration.

    Args:
        app_settings: Settings to use; defaults to the module-level settings.
    """
    app_settings = app_settings or settings
    configure_logging(app_settings.logging)
    advisory_client = AdvisoryClient(app_settings.advisory) if app_settings.advisory.ENABLED else None
    return DecisionOrchestrator(
        risk_manager=RiskManager(app_settings.risk),
        technical_analyzer=TechnicalAnalyzer(),
        sentiment_engine=SentimentFusionEngine(),
        weighter=PerformanceWeighter(app_settings.fusion),
        conflict_detector=ConflictDetector(app_settings.fusion),
        overlay=AdvisoryOverlay(app_settings.fusion),
        config=app_settings.fusion,
        advisory_client=advisory_client,
    )
