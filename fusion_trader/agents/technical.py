"""
Implements the multi-timeframe Technical Signal Analyzer.

The analyzer derives a mean-reversion bias from the short (5m) timeframe and
a trend bias from the medium (1h) timeframe, then blends them by a
volatility regime read from the 1h ATR: calm markets lean on mean reversion,
volatile markets lean on the trend.
"""
from typing import Any, Optional, Sequence

from fusion_trader.analysis.indicators import (
    atr,
    bollinger,
    closes,
    ema,
    macd,
    normalize,
    rsi,
    volume_profile,
)
from fusion_trader.utils.logging import get_logger
from fusion_trader.utils.numeric import clamp

from .data_structures import SignalType, TechnicalSignal

logger = get_logger(__name__)

# Blend weights and thresholds
MEAN_REVERSION_WEIGHT = 0.45
TREND_WEIGHT = 0.55
ACTION_THRESHOLD = 0.1
ATR_REFERENCE_PCT = 0.03
OVERBOUGHT = 70
OVERSOLD = 30
VOLUME_PROFILE_BINS = 16


class TechnicalAnalyzer:
    """
    Stateless analyzer turning three candle sequences into one TechnicalSignal.
    """

    def analyze(
        self,
        candles_5m: Optional[Sequence[Any]],
        candles_1h: Optional[Sequence[Any]],
        candles_4h: Optional[Sequence[Any]],
    ) -> TechnicalSignal:
        """
        Analyze the short, medium and long timeframes.

        Args:
            candles_5m: Short timeframe candles, oldest first.
            candles_1h: Medium timeframe candles, oldest first.
            candles_4h: Long timeframe candles, oldest first.

        Returns:
            A TechnicalSignal with the indicator snapshot in ``context``.
        """
        closes_5m = closes(candles_5m)
        closes_1h = closes(candles_1h)
        closes_4h = closes(candles_4h)

        rsi_5m = rsi(closes_5m, 14)
        rsi_1h = rsi(closes_1h, 14)
        rsi_4h = rsi(closes_4h, 14)

        macd_1h = macd(closes_1h)
        macd_4h = macd(closes_4h)

        bb_5m = bollinger(closes_5m, 20, 2)
        bb_1h = bollinger(closes_1h, 20, 2)

        ema_1h = {"ema9": ema(closes_1h, 9), "ema21": ema(closes_1h, 21), "ema50": ema(closes_1h, 50)}
        ema_4h = {"ema9": ema(closes_4h, 9), "ema21": ema(closes_4h, 21), "ema50": ema(closes_4h, 50)}

        atr_1h = atr(candles_1h or [], 14)
        profile_1h = volume_profile(candles_1h or [], VOLUME_PROFILE_BINS)

        last_5m = closes_5m[-1] if closes_5m else None
        last_1h = closes_1h[-1] if closes_1h else None

        mr_bias, mr_reason = self._mean_reversion_bias(last_5m, bb_5m, rsi_5m)
        reversion_target = bb_5m.middle if bb_5m else last_5m

        histogram_1h = macd_1h.histogram if macd_1h else 0.0
        trend_bias, trend_reason = self._trend_bias(ema_1h["ema9"], ema_1h["ema21"], ema_1h["ema50"], histogram_1h)

        vol_norm = normalize(atr_1h or 0.0, 0.0, last_1h * ATR_REFERENCE_PCT if last_1h else 1.0)
        mr_weight = MEAN_REVERSION_WEIGHT * (1 - vol_norm)
        trend_weight = TREND_WEIGHT * (0.5 + vol_norm / 2)
        bias = mr_bias * mr_weight + trend_bias * trend_weight

        if bias > ACTION_THRESHOLD:
            action = SignalType.BUY
        elif bias < -ACTION_THRESHOLD:
            action = SignalType.SELL
        else:
            action = SignalType.HOLD

        confidence = round(min(0.99, abs(bias)), 2)
        size = round(clamp(0.25 * (0.5 + vol_norm / 2), 0.05, 0.5), 2)
        rationale = " | ".join(reason for reason in (mr_reason, trend_reason) if reason)

        logger.debug(
            "technical_signal",
            action=action.value,
            bias=bias,
            mean_reversion_bias=mr_bias,
            trend_bias=trend_bias,
            vol_norm=vol_norm,
        )

        return TechnicalSignal(
            action=action,
            confidence=confidence,
            size=size,
            rationale=rationale,
            context={
                "rsi": {"5m": rsi_5m, "1h": rsi_1h, "4h": rsi_4h},
                "macd": {"1h": macd_1h, "4h": macd_4h},
                "bb": {"5m": bb_5m, "1h": bb_1h},
                "ema": {"1h": ema_1h, "4h": ema_4h},
                "atr": {"1h": atr_1h},
                "volume_profile_1h": profile_1h,
                "reversion_target": reversion_target,
                "bias": {"mean_reversion": mr_bias, "trend": trend_bias, "combined": bias},
                "vol_norm": vol_norm,
            },
        )

    @staticmethod
    def _mean_reversion_bias(last_price, bands, rsi_value):
        if bands is None or last_price is None or rsi_value is None:
            return 0, ""
        if last_price > bands.upper and rsi_value > OVERBOUGHT:
            return -1, "Price outside upper band with overbought RSI on 5m"
        if last_price < bands.lower and rsi_value < OVERSOLD:
            return 1, "Price outside lower band with oversold RSI on 5m"
        return 0, ""

    @staticmethod
    def trend_bias(ema9: Optional[float], ema21: Optional[float], ema50: Optional[float], histogram: Optional[float]) -> int:
        """+1 for a bullish EMA stack with positive MACD histogram, -1 for the mirror, else 0."""
        bias, _ = TechnicalAnalyzer._trend_bias(ema9, ema21, ema50, histogram or 0.0)
        return bias

    @staticmethod
    def _trend_bias(ema9, ema21, ema50, histogram):
        if ema9 is None or ema21 is None or ema50 is None:
            return 0, ""
        if ema9 > ema21 > ema50 and histogram > 0:
            return 1, "EMA 9>21>50 and positive MACD on 1h"
        if ema9 < ema21 < ema50 and histogram < 0:
            return -1, "EMA 9<21<50 and negative MACD on 1h"
        return 0, ""

    @staticmethod
    def neutral(reason: str = "technical signal unavailable") -> TechnicalSignal:
        """Neutral default used when the analyzer cannot produce a signal."""
        return TechnicalSignal(action=SignalType.HOLD, confidence=0.5, size=0.05, rationale=reason)
