"""
Core data structures for the Fusion Trader decision engine.

This module defines the records that flow through a decision cycle: the
inbound market, sentiment and account snapshots, the intermediate analyzer
outputs, and the terminal ``TradeDecision`` handed to the execution and
telemetry collaborators.

Inbound records are frozen dataclasses with explicit defaults. Loosely typed
collector payloads (plain dicts and kline lists) are coerced through the
``from_dict`` / ``from_raw`` classmethods, which are the only place where
missing or malformed fields are defaulted and bounded fields are clamped.
"""
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from fusion_trader.utils.numeric import clamp, to_float


class SignalType(str, Enum):
    """Directional signal produced by an analyzer or the advisory oracle."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def bias(self) -> int:
        """+1 for BUY, -1 for SELL, 0 for HOLD."""
        if self is SignalType.BUY:
            return 1
        if self is SignalType.SELL:
            return -1
        return 0


def _pick(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


# ==============================
# Market data
# ==============================

@dataclass(frozen=True)
class Candle:
    """
    One OHLCV bar.

    Attributes:
        open_time: Bar open timestamp in epoch milliseconds.
        open: Opening price.
        high: Highest traded price.
        low: Lowest traded price.
        close: Closing price.
        volume: Traded volume.
        close_time: Bar close timestamp in epoch milliseconds.
    """
    open_time: int = 0
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: float = 0.0
    close_time: int = 0

    @classmethod
    def from_raw(cls, raw: Any) -> "Candle":
        """
        Build a candle from a collector payload.

        Accepts an existing ``Candle``, a mapping using either long
        (``close``) or short (``c``) keys, a kline list
        ``[openTime, open, high, low, close, volume, closeTime]``, or a bare
        number which is taken as the close price.
        """
        if isinstance(raw, Candle):
            return raw
        if isinstance(raw, Mapping):
            close = to_float(_pick(raw, "close", "c"))
            return cls(
                open_time=int(to_float(_pick(raw, "open_time", "openTime", "t"))),
                open=to_float(_pick(raw, "open", "o"), close),
                high=to_float(_pick(raw, "high", "h"), close),
                low=to_float(_pick(raw, "low", "l"), close),
                close=close,
                volume=to_float(_pick(raw, "volume", "v")),
                close_time=int(to_float(_pick(raw, "close_time", "closeTime", "T"))),
            )
        if isinstance(raw, (list, tuple)):
            values = list(raw) + [None] * (7 - len(raw))
            close = to_float(values[4])
            return cls(
                open_time=int(to_float(values[0])),
                open=to_float(values[1], close),
                high=to_float(values[2], close),
                low=to_float(values[3], close),
                close=close,
                volume=to_float(values[5]),
                close_time=int(to_float(values[6])),
            )
        price = to_float(raw)
        return cls(open=price, high=price, low=price, close=price)


def coerce_candles(raw_candles: Optional[Sequence[Any]]) -> Tuple[Candle, ...]:
    """Coerce a candle sequence, keeping chronological (insertion) order."""
    if not raw_candles:
        return ()
    return tuple(Candle.from_raw(raw) for raw in raw_candles)


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Aggregated order book depth and the venue-reported imbalance."""
    bid_depth: float = 0.0
    ask_depth: float = 0.0
    imbalance: float = 0.0

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "OrderBookSnapshot":
        raw = raw or {}
        return cls(
            bid_depth=to_float(_pick(raw, "bid_depth", "bidDepth")),
            ask_depth=to_float(_pick(raw, "ask_depth", "askDepth")),
            imbalance=clamp(to_float(raw.get("imbalance")), -1.0, 1.0),
        )


# ==============================
# Sentiment inputs
# ==============================

@dataclass(frozen=True)
class SocialInputs:
    """Social sentiment readings, each in [-1, 1]."""
    twitter_score: float = 0.0
    telegram_score: float = 0.0
    trends_score: float = 0.0
    news_score: float = 0.0

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "SocialInputs":
        raw = raw or {}

        def unit(*keys: str) -> float:
            return clamp(to_float(_pick(raw, *keys)), -1.0, 1.0)

        return cls(
            twitter_score=unit("twitter_score", "twitterScore"),
            telegram_score=unit("telegram_score", "telegramScore"),
            trends_score=unit("trends_score", "trendsScore"),
            news_score=unit("news_score", "newsScore"),
        )


@dataclass(frozen=True)
class OnChainInputs:
    """On-chain flow readings."""
    whale_inflow_usd: float = 0.0
    whale_outflow_usd: float = 0.0
    exchange_netflow: float = 0.0
    gas_price_gwei: float = 0.0
    active_addrs_delta: float = 0.0

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "OnChainInputs":
        raw = raw or {}
        return cls(
            whale_inflow_usd=to_float(_pick(raw, "whale_inflow_usd", "whaleInflowUsd")),
            whale_outflow_usd=to_float(_pick(raw, "whale_outflow_usd", "whaleOutflowUsd")),
            exchange_netflow=clamp(to_float(_pick(raw, "exchange_netflow", "exchangeNetflow")), -1.0, 1.0),
            gas_price_gwei=to_float(_pick(raw, "gas_price_gwei", "gasPriceGwei")),
            active_addrs_delta=clamp(to_float(_pick(raw, "active_addrs_delta", "activeAddrsDelta")), -1.0, 1.0),
        )


@dataclass(frozen=True)
class LiquidationCluster:
    price: float
    size: float


@dataclass(frozen=True)
class MarketStructureInputs:
    """Support/resistance levels, liquidation clusters and the order book."""
    supports: Tuple[float, ...] = ()
    resistances: Tuple[float, ...] = ()
    liquidation_clusters: Tuple[LiquidationCluster, ...] = ()
    orderbook: OrderBookSnapshot = field(default_factory=OrderBookSnapshot)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "MarketStructureInputs":
        raw = raw or {}
        clusters = []
        for cluster in _pick(raw, "liquidation_clusters", "liquidationClusters", default=[]) or []:
            if isinstance(cluster, LiquidationCluster):
                clusters.append(cluster)
            elif isinstance(cluster, Mapping):
                clusters.append(LiquidationCluster(
                    price=to_float(cluster.get("price")),
                    size=to_float(cluster.get("size")),
                ))
        orderbook = raw.get("orderbook")
        return cls(
            supports=tuple(to_float(p) for p in raw.get("supports") or []),
            resistances=tuple(to_float(p) for p in raw.get("resistances") or []),
            liquidation_clusters=tuple(clusters),
            orderbook=orderbook if isinstance(orderbook, OrderBookSnapshot) else OrderBookSnapshot.from_dict(orderbook),
        )


@dataclass(frozen=True)
class SentimentInputs:
    """Everything the sentiment fusion engine consumes for one cycle."""
    social: SocialInputs = field(default_factory=SocialInputs)
    onchain: OnChainInputs = field(default_factory=OnChainInputs)
    market_structure: MarketStructureInputs = field(default_factory=MarketStructureInputs)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "SentimentInputs":
        raw = raw or {}
        return cls(
            social=SocialInputs.from_dict(raw.get("social")),
            onchain=OnChainInputs.from_dict(_pick(raw, "onchain", "onChain")),
            market_structure=MarketStructureInputs.from_dict(_pick(raw, "market_structure", "marketStructure", "market")),
        )


# ==============================
# Analyzer outputs
# ==============================

@dataclass(frozen=True)
class TechnicalSignal:
    """
    Output of the multi-timeframe technical analyzer.

    Attributes:
        action: BUY, SELL or HOLD.
        confidence: Strength of the blended bias, in [0, 1].
        size: Notional scale factor, in [0.05, 0.5].
        rationale: Human readable reasons that fired.
        context: Snapshot of every indicator used, for audit.
    """
    action: SignalType = SignalType.HOLD
    confidence: float = 0.5
    size: float = 0.05
    rationale: str = ""
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SentimentBreakdown:
    social_score: int = 50
    onchain_score: int = 50
    structure_score: int = 50


@dataclass(frozen=True)
class SentimentResult:
    """Blended sentiment score in [0, 100] with its label and sub-scores."""
    score: int = 50
    label: str = "neutral"
    breakdown: SentimentBreakdown = field(default_factory=SentimentBreakdown)

    @property
    def bias(self) -> float:
        """Score mapped onto [-1, 1]."""
        return (self.score - 50) / 50


@dataclass(frozen=True)
class Regime:
    """Qualitative market state, derived per cycle."""
    high_vol: bool = False
    trending: bool = False
    liquid: bool = False


# ==============================
# Account and risk
# ==============================

@dataclass(frozen=True)
class Position:
    size: float = 0.0
    notional_value: float = 0.0


@dataclass(frozen=True)
class AccountState:
    """
    Account-level snapshot supplied by the execution collaborator.

    Attributes:
        equity_usd: Current account equity; 0 means unknown.
        positions: Open positions keyed by symbol.
        realized_pnl_today_usd: Realized PnL for the current trading day.
        drawdown_from_peak_pct: Drawdown from the equity peak, in percent.
        circuit_breaker: Explicit operator halt flag.
    """
    equity_usd: float = 0.0
    positions: Dict[str, Position] = field(default_factory=dict)
    realized_pnl_today_usd: float = 0.0
    drawdown_from_peak_pct: float = 0.0
    circuit_breaker: bool = False

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "AccountState":
        raw = raw or {}
        positions = {}
        for symbol, position in (raw.get("positions") or {}).items():
            if isinstance(position, Position):
                positions[symbol] = position
            elif isinstance(position, Mapping):
                positions[symbol] = Position(
                    size=to_float(position.get("size")),
                    notional_value=to_float(_pick(position, "notional_value", "notionalValue")),
                )
        return cls(
            equity_usd=max(0.0, to_float(_pick(raw, "equity_usd", "equityUsd"))),
            positions=positions,
            realized_pnl_today_usd=to_float(_pick(raw, "realized_pnl_today_usd", "realizedPnlTodayUsd")),
            drawdown_from_peak_pct=to_float(_pick(raw, "drawdown_from_peak_pct", "drawdownFromPeakPct")),
            circuit_breaker=bool(_pick(raw, "circuit_breaker", "circuitBreaker", default=False)),
        )


@dataclass(frozen=True)
class MarketConditions:
    """Short-horizon market readings used by the market circuit breaker (percent units)."""
    change_1h_pct: float = 0.0
    change_5m_pct: float = 0.0
    orderbook_imbalance: float = 0.0
    volatility_spike: bool = False
    correlation_breakdown: bool = False

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "MarketConditions":
        raw = raw or {}
        return cls(
            change_1h_pct=to_float(_pick(raw, "change_1h_pct", "change1hPct")),
            change_5m_pct=to_float(_pick(raw, "change_5m_pct", "change5mPct")),
            orderbook_imbalance=to_float(_pick(raw, "orderbook_imbalance", "orderbookImbalance")),
            volatility_spike=bool(_pick(raw, "volatility_spike", "volatilitySpike", default=False)),
            correlation_breakdown=bool(_pick(raw, "correlation_breakdown", "correlationBreakdown", default=False)),
        )


@dataclass(frozen=True)
class VolatilityMetrics:
    current_vol: float = 0.0
    avg_vol: float = 0.0


@dataclass(frozen=True)
class PerformanceRecord:
    """One historical trade outcome tagged by the strategy that produced it."""
    strategy: str
    success: bool = False
    rr: float = 0.0
    pnl_usd: float = 0.0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PerformanceRecord":
        strategy = str(raw.get("strategy") or "").lower()
        if strategy == "technical":
            strategy = "tech"
        return cls(
            strategy=strategy,
            success=raw.get("success") is True,
            rr=to_float(raw.get("rr")),
            pnl_usd=to_float(_pick(raw, "pnl_usd", "pnlUsd")),
        )


@dataclass(frozen=True)
class CorrelationSummary:
    avg_correlation: float = 0.0
    max_correlation: float = 0.0
    risk_concentration: float = 0.0
    pairs: Dict[Tuple[str, str], float] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskFlags:
    correlation_breakdown: bool = False
    concentration_risk: bool = False
    volatility_spike: bool = False
    drawdown_limit: bool = False

    def active(self) -> List[str]:
        """Names of the flags that are set."""
        return [name for name, value in asdict(self).items() if value]


@dataclass(frozen=True)
class RiskAssessment:
    correlation: CorrelationSummary = field(default_factory=CorrelationSummary)
    risk_flags: RiskFlags = field(default_factory=RiskFlags)
    should_halt: bool = False


@dataclass(frozen=True)
class Stops:
    stop_loss: float
    take_profit: float


# ==============================
# Advisory overlay
# ==============================

def _finite(value: Any) -> float:
    try:
        number = float(value or 0)
    except TypeError as e:
        raise ValueError(f"expected a number, got {type(value).__name__}") from e
    if math.isnan(number) or math.isinf(number):
        raise ValueError("expected a finite number")
    return number


class AdvisoryResponse(BaseModel):
    """
    Structured reply from the advisory oracle.

    Keys are matched case-insensitively and ``DECISION`` / ``position_size_pct``
    are accepted as aliases. Confidence and position size are clamped into
    range; a missing or unknown action is a schema violation.
    """
    model_config = ConfigDict(frozen=True)

    action: SignalType
    confidence: float = 0.0
    position_size: float = 0.0  # percent of equity
    stop_loss: float = 0.0
    take_profit: float = 0.0
    rationale: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        normalized = {str(key).lower(): value for key, value in data.items()}
        if "action" not in normalized and "decision" in normalized:
            normalized["action"] = normalized["decision"]
        if "position_size" not in normalized and "position_size_pct" in normalized:
            normalized["position_size"] = normalized["position_size_pct"]
        return normalized

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value: Any) -> Any:
        if isinstance(value, SignalType):
            return value
        return str(value or "").strip().upper()

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp(_finite(value), 0.0, 1.0)

    @field_validator("position_size", mode="before")
    @classmethod
    def _clamp_position_size(cls, value: Any) -> float:
        return clamp(_finite(value), 0.0, 100.0)

    @field_validator("stop_loss", "take_profit", mode="before")
    @classmethod
    def _price_or_zero(cls, value: Any) -> float:
        return to_float(value)

    @field_validator("rationale", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return "" if value is None else str(value)


# ==============================
# Cycle input and output
# ==============================

@dataclass(frozen=True)
class DecisionSnapshot:
    """
    Fully materialized input for one decision cycle of one symbol.

    Attributes:
        symbol: Trading symbol.
        candles_5m: Short timeframe candles, oldest first.
        candles_1h: Medium timeframe candles, oldest first.
        candles_4h: Long timeframe candles, oldest first.
        sentiment: Social, on-chain and market-structure inputs.
        account: Equity, positions and daily PnL.
        market: Short-horizon readings for the market circuit breaker.
        performance_history: Past trade outcomes for adaptive weighting.
        price_history: Per-symbol return histories for correlation checks.
        volatility: Current vs average volatility for the spike check.
        liquidity_score: Optional venue liquidity score in [0, 1].
    """
    symbol: str
    candles_5m: Tuple[Candle, ...] = ()
    candles_1h: Tuple[Candle, ...] = ()
    candles_4h: Tuple[Candle, ...] = ()
    sentiment: SentimentInputs = field(default_factory=SentimentInputs)
    account: AccountState = field(default_factory=AccountState)
    market: MarketConditions = field(default_factory=MarketConditions)
    performance_history: Tuple[PerformanceRecord, ...] = ()
    price_history: Dict[str, Tuple[float, ...]] = field(default_factory=dict)
    volatility: Optional[VolatilityMetrics] = None
    liquidity_score: Optional[float] = None

    @property
    def last_price(self) -> float:
        """Latest 1h close, falling back to the 5m series."""
        for candles in (self.candles_1h, self.candles_5m):
            if candles:
                return candles[-1].close
        return 0.0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DecisionSnapshot":
        volatility = _pick(raw, "volatility", "volatilityMetrics")
        if isinstance(volatility, Mapping):
            volatility = VolatilityMetrics(
                current_vol=to_float(_pick(volatility, "current_vol", "currentVol")),
                avg_vol=to_float(_pick(volatility, "avg_vol", "avgVol")),
            )
        liquidity = _pick(raw, "liquidity_score", "liquidityScore")
        return cls(
            symbol=str(raw.get("symbol") or ""),
            candles_5m=coerce_candles(_pick(raw, "candles_5m", "candles5m")),
            candles_1h=coerce_candles(_pick(raw, "candles_1h", "candles1h")),
            candles_4h=coerce_candles(_pick(raw, "candles_4h", "candles4h")),
            sentiment=SentimentInputs.from_dict(raw.get("sentiment") or raw.get("events")),
            account=AccountState.from_dict(_pick(raw, "account", "positions")),
            market=MarketConditions.from_dict(raw.get("market")),
            performance_history=tuple(
                record if isinstance(record, PerformanceRecord) else PerformanceRecord.from_dict(record)
                for record in _pick(raw, "performance_history", "recentTrades", default=[]) or []
            ),
            price_history={
                symbol: tuple(to_float(p) for p in series)
                for symbol, series in (_pick(raw, "price_history", "priceHistory", default={}) or {}).items()
            },
            volatility=volatility if isinstance(volatility, VolatilityMetrics) else None,
            liquidity_score=None if liquidity is None else clamp(to_float(liquidity), 0.0, 1.0),
        )


@dataclass(frozen=True)
class TradeDecision:
    """
    Terminal artifact of a decision cycle.

    Attributes:
        symbol: Trading symbol.
        action: 'buy', 'sell' or 'hold'.
        confidence: Final confidence in [0, 1].
        size_usd: Notional size in USD, never above the configured maximum.
        stops: Stop-loss and take-profit for the final action. Both are 0.0
            when the snapshot carried no price; such decisions are always
            HOLD with size 0.
        regime: Regime the decision was made in.
        rationale: Human readable explanation.
        advisory: Advisory response, when one was received.
        halted: True when a risk gate forced the decision.
        halt_reasons: Names of the gates that tripped.
        weights: Final technical/sentiment weights.
        risk_assessment: Portfolio risk audit for the cycle.
        context: Technical and sentiment outputs for audit trails.
        timestamp: When the decision was produced.
    """
    symbol: str
    action: str
    confidence: float
    size_usd: float
    stops: Stops
    regime: Regime
    rationale: str = ""
    advisory: Optional[AdvisoryResponse] = None
    halted: bool = False
    halt_reasons: Tuple[str, ...] = ()
    weights: Dict[str, float] = field(default_factory=dict)
    risk_assessment: Optional[RiskAssessment] = None
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Render the decision as plain data for logging and telemetry."""
        return {
            "symbol": self.symbol,
            "action": self.action,
            "confidence": self.confidence,
            "size_usd": self.size_usd,
            "stops": asdict(self.stops),
            "regime": asdict(self.regime),
            "rationale": self.rationale,
            "advisory": self.advisory.model_dump(mode="json") if self.advisory else None,
            "halted": self.halted,
            "halt_reasons": list(self.halt_reasons),
            "weights": dict(self.weights),
            "timestamp": self.timestamp.isoformat(),
        }
