"""
Implements the Risk Manager.

Stateless position sizing, stop placement, regime classification and halt
predicates over account and market snapshots. Nothing here looks at the
technical or sentiment signals; every method is a pure function of its
arguments plus the ``RiskSettings`` the manager was built with.
"""
import math
from itertools import combinations
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from fusion_trader.config.settings import RiskSettings
from fusion_trader.utils.logging import get_logger
from fusion_trader.utils.numeric import clamp, to_float

from .data_structures import (
    CorrelationSummary,
    Position,
    Regime,
    RiskAssessment,
    RiskFlags,
    Stops,
    VolatilityMetrics,
)

logger = get_logger(__name__)


class RiskManager:
    """
    Position sizing and risk gating.
    """

    def __init__(self, config: RiskSettings):
        """
        Initializes the RiskManager.

        Args:
            config: Risk limits and thresholds.
        """
        self.config = config

    # ------------------------------------------------------------------
    # Sizing and stops
    # ------------------------------------------------------------------

    def cap_order_size_usd(self, desired_usd: float) -> float:
        """Clamp a desired notional into ``[0, MAX_POSITION_USD]``."""
        return clamp(to_float(desired_usd), 0.0, self.config.MAX_POSITION_USD)

    def compute_stops(self, entry_price: float, side: str, atr_value: Optional[float] = None) -> Stops:
        """
        Protective stop and target for an entry.

        With an ATR the stop sits ``ATR_STOP_MULTIPLIER`` ATRs away and the
        target ``ATR_TARGET_MULTIPLIER`` ATRs away; otherwise the configured
        basis-point distances are used. ``side`` is 'buy' or 'sell'.
        An entry price of 0 yields ``Stops(0, 0)``.
        """
        entry_price = to_float(entry_price)
        is_sell = str(side).lower() == "sell"
        if atr_value and entry_price:
            stop_distance = atr_value * self.config.ATR_STOP_MULTIPLIER
            target_distance = atr_value * self.config.ATR_TARGET_MULTIPLIER
            if is_sell:
                return Stops(stop_loss=entry_price + stop_distance, take_profit=entry_price - target_distance)
            return Stops(stop_loss=entry_price - stop_distance, take_profit=entry_price + target_distance)

        stop_fraction = self.config.STOP_LOSS_BPS / 10000
        target_fraction = self.config.TAKE_PROFIT_BPS / 10000
        if is_sell:
            return Stops(stop_loss=entry_price * (1 + stop_fraction), take_profit=entry_price * (1 - target_fraction))
        return Stops(stop_loss=entry_price * (1 - stop_fraction), take_profit=entry_price * (1 + target_fraction))

    def kelly_fraction(self, win_prob: float, win_loss_ratio: float) -> float:
        """
        Kelly fraction ``f* = p - (1 - p) / R``, clamped to ``[0, KELLY_CAP]``.
        """
        p = clamp(to_float(win_prob), 0.0, 1.0)
        ratio = max(0.01, to_float(win_loss_ratio, 0.01))
        fraction = p - (1 - p) / ratio
        return clamp(fraction, 0.0, self.config.KELLY_CAP)

    def position_size_usd(
        self,
        account_equity_usd: float,
        confidence: float,
        atr_pct: float,
        max_risk_pct_per_trade: Optional[float] = None,
    ) -> float:
        """
        Volatility-adjusted Kelly notional.

        Args:
            account_equity_usd: Account equity.
            confidence: Signal confidence, used as the win probability.
            atr_pct: ATR as a fraction of price.
            max_risk_pct_per_trade: Per-trade risk cap; defaults to MAX_RISK_PCT_PER_TRADE.

        Returns:
            Uncapped notional in USD (apply ``cap_order_size_usd`` afterwards).
        """
        if max_risk_pct_per_trade is None:
            max_risk_pct_per_trade = self.config.MAX_RISK_PCT_PER_TRADE
        vol_adj = max(self.config.VOL_ADJ_FLOOR, 1 - to_float(atr_pct) / self.config.VOL_ADJ_ATR_PCT_CEILING)
        kelly = self.kelly_fraction(confidence, self.config.KELLY_WIN_LOSS_RATIO)
        raw = max(0.0, to_float(account_equity_usd)) * min(max_risk_pct_per_trade, kelly) * self.config.NOTIONAL_MULTIPLIER
        return raw * vol_adj

    # ------------------------------------------------------------------
    # Regime and halts
    # ------------------------------------------------------------------

    def detect_regime(self, atr_pct: float, ema_slope: float, liquidity_score: Optional[float] = None) -> Regime:
        if liquidity_score is None:
            liquidity_score = self.config.DEFAULT_LIQUIDITY_SCORE
        return Regime(
            high_vol=to_float(atr_pct) > self.config.HIGH_VOL_ATR_PCT,
            trending=abs(to_float(ema_slope)) > self.config.TRENDING_SLOPE_THRESHOLD,
            liquid=liquidity_score > 0.5,
        )

    def should_halt_trading(
        self,
        realized_pnl_today_usd: float,
        drawdown_from_peak_pct: float = 0.0,
        circuit_breaker: bool = False,
    ) -> bool:
        """
        Account-level halt.

        True on an explicit breaker, when today's realized loss reaches the
        daily limit (inclusive), or when drawdown from peak reaches
        ``DRAWDOWN_HALT_PCT`` percent.
        """
        if circuit_breaker:
            return True
        if to_float(realized_pnl_today_usd) <= -abs(self.config.MAX_DAILY_LOSS_USD):
            return True
        if to_float(drawdown_from_peak_pct) >= self.config.DRAWDOWN_HALT_PCT:
            return True
        return False

    def market_circuit_breaker(
        self,
        change_1h_pct: float = 0.0,
        change_5m_pct: float = 0.0,
        orderbook_imbalance: float = 0.0,
        volatility_spike: bool = False,
        correlation_breakdown: bool = False,
    ) -> bool:
        """Market-level halt on violent moves, a lopsided book, or explicit flags."""
        if abs(to_float(change_1h_pct)) > self.config.MAX_CHANGE_1H_PCT:
            return True
        if abs(to_float(change_5m_pct)) > self.config.MAX_CHANGE_5M_PCT:
            return True
        if abs(to_float(orderbook_imbalance)) > self.config.MAX_ORDERBOOK_IMBALANCE:
            return True
        return bool(volatility_spike or correlation_breakdown)

    # ------------------------------------------------------------------
    # Portfolio analysis
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_correlation(returns_a: Sequence[float], returns_b: Sequence[float]) -> float:
        """
        Pearson correlation over the matched trailing window of two series.

        Returns 0 when fewer than two points overlap, when either series has
        zero variance, or when the input is not numeric.
        """
        window = min(len(returns_a), len(returns_b))
        if window < 2:
            return 0.0
        try:
            a = np.asarray(returns_a[len(returns_a) - window:], dtype=float)
            b = np.asarray(returns_b[len(returns_b) - window:], dtype=float)
        except (TypeError, ValueError):
            return 0.0
        if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
            return 0.0
        a = a - a.mean()
        b = b - b.mean()
        denominator = math.sqrt(float((a * a).sum()) * float((b * b).sum()))
        if denominator == 0:
            return 0.0
        return clamp(float((a * b).sum()) / denominator, -1.0, 1.0)

    def analyze_portfolio_correlation(
        self,
        positions: Mapping[str, Position],
        price_history: Mapping[str, Sequence[float]],
    ) -> CorrelationSummary:
        """
        Pairwise absolute correlation and Herfindahl concentration of open positions.

        Only symbol pairs where both histories hold at least
        ``MIN_CORRELATION_HISTORY`` points are correlated, over their last
        ``CORRELATION_WINDOW`` points. Pairs are stored once per unordered
        pair; the diagonal is never included.
        """
        symbols = list(positions.keys())
        if len(symbols) < 2:
            return CorrelationSummary()

        window = self.config.CORRELATION_WINDOW
        pairs: Dict[tuple, float] = {}
        for first, second in combinations(symbols, 2):
            history_a = list(price_history.get(first) or [])
            history_b = list(price_history.get(second) or [])
            if len(history_a) >= self.config.MIN_CORRELATION_HISTORY and len(history_b) >= self.config.MIN_CORRELATION_HISTORY:
                pairs[(first, second)] = abs(self.calculate_correlation(history_a[-window:], history_b[-window:]))

        correlations = list(pairs.values())
        avg_correlation = sum(correlations) / len(correlations) if correlations else 0.0
        max_correlation = max(correlations) if correlations else 0.0

        notionals = [abs(position.notional_value) for position in positions.values()]
        total = sum(notionals)
        risk_concentration = sum((value / total) ** 2 for value in notionals) if total > 0 else 0.0

        return CorrelationSummary(
            avg_correlation=avg_correlation,
            max_correlation=max_correlation,
            risk_concentration=risk_concentration,
            pairs=pairs,
        )

    def advanced_risk_check(
        self,
        positions: Mapping[str, Position],
        price_history: Mapping[str, Sequence[float]],
        current_drawdown: float = 0.0,
        volatility: Optional[VolatilityMetrics] = None,
    ) -> RiskAssessment:
        """
        Compose portfolio correlation, concentration, volatility and drawdown checks.

        Args:
            positions: Open positions keyed by symbol.
            price_history: Return histories keyed by symbol.
            current_drawdown: Drawdown from peak as a fraction (0.08 == 8%).
            volatility: Current and average volatility, if known.

        Returns:
            A RiskAssessment whose ``should_halt`` is true when any flag is set.
        """
        correlation = self.analyze_portfolio_correlation(positions, price_history)
        volatility = volatility or VolatilityMetrics()

        flags = RiskFlags(
            correlation_breakdown=correlation.max_correlation > self.config.CORRELATION_BREAKDOWN_THRESHOLD,
            concentration_risk=correlation.risk_concentration > self.config.CONCENTRATION_THRESHOLD,
            volatility_spike=volatility.current_vol > volatility.avg_vol * self.config.VOLATILITY_SPIKE_MULTIPLE,
            drawdown_limit=to_float(current_drawdown) > self.config.DRAWDOWN_LIMIT,
        )
        should_halt = bool(flags.active())
        if should_halt:
            logger.info("risk_flags_raised", flags=flags.active(), max_correlation=correlation.max_correlation)

        return RiskAssessment(correlation=correlation, risk_flags=flags, should_halt=should_halt)
