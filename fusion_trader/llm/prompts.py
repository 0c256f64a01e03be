"""
Prompt rendering for the advisory oracle.
"""
import json
from typing import Any, Mapping, Optional, Sequence

from fusion_trader.agents.data_structures import (
    AccountState,
    PerformanceRecord,
    Regime,
    SentimentResult,
    TechnicalSignal,
)

ADVISORY_SYSTEM_PROMPT = (
    "You must respond ONLY with a valid JSON object matching the schema: "
    '{"action":"BUY|SELL|HOLD","rationale":"string","confidence":0..1,'
    '"position_size":0..100,"stop_loss":number,"take_profit":number}. No prose.'
)


def _fmt(value: Optional[float], digits: int) -> str:
    if value is None:
        return "n/a"
    return f"{value:.{digits}f}"


def summarize_technical(signal: Optional[TechnicalSignal]) -> str:
    """One-line summary of the 1h indicator snapshot."""
    if signal is None:
        return "No technical data"
    context: Mapping[str, Any] = signal.context or {}
    ema_1h = context.get("ema", {}).get("1h", {})
    rsi_1h = context.get("rsi", {}).get("1h")
    macd_1h = context.get("macd", {}).get("1h")
    atr_1h = context.get("atr", {}).get("1h")
    emas = "/".join(_fmt(ema_1h.get(key), 2) for key in ("ema9", "ema21", "ema50"))
    histogram = macd_1h.histogram if macd_1h is not None else None
    return (
        f"Action: {signal.action.value}, Conf: {signal.confidence}, RSI(1h): {_fmt(rsi_1h, 1)}, "
        f"EMA(9/21/50): {emas}, MACD(1h) hist: {_fmt(histogram, 4)}, ATR(1h): {_fmt(atr_1h, 2)}"
    )


def summarize_risk(regime: Regime, atr_pct: float, equity_usd: float) -> str:
    return f"regime: {'trend' if regime.trending else 'range'} | vol:{atr_pct * 100:.2f}% | equity:${equity_usd:g}"


def summarize_positions(account: AccountState) -> str:
    return json.dumps({
        "equity_usd": account.equity_usd,
        "positions": {
            symbol: {"size": position.size, "notional_value": position.notional_value}
            for symbol, position in account.positions.items()
        },
        "realized_pnl_today_usd": account.realized_pnl_today_usd,
    })


def format_recent_trades(history: Sequence[PerformanceRecord]) -> str:
    if not history:
        return "N/A"
    return "\n".join(
        f"#{index} {record.strategy or 'n/a'} rr:{record.rr:g} pnl:{record.pnl_usd:g} "
        f"{'win' if record.success else 'loss'}"
        for index, record in enumerate(history, start=1)
    )


def build_trading_prompt(
    symbol: str,
    technical: Optional[TechnicalSignal],
    sentiment: SentimentResult,
    regime: Regime,
    atr_pct: float,
    account: AccountState,
    equity_usd: float,
    history: Sequence[PerformanceRecord] = (),
) -> str:
    """
    Render the user prompt sent to the advisory oracle.

    Args:
        symbol: Symbol being decided.
        technical: Technical signal for the cycle.
        sentiment: Fused sentiment result.
        regime: Detected regime.
        atr_pct: 1h ATR as a fraction of price.
        account: Account state, rendered as the portfolio line.
        equity_usd: Equity used for sizing.
        history: Recent trade outcomes.

    Returns:
        The prompt text.
    """
    return f"""
You are an algorithmic trading advisor.

CURRENT MARKET CONTEXT:
- Technical Signals: {summarize_technical(technical)}
- Sentiment Score: {sentiment.score}/100 ({sentiment.label})
- Risk Assessment: {summarize_risk(regime, atr_pct, equity_usd)}
- Portfolio: {summarize_positions(account)}

RECENT PERFORMANCE:
{format_recent_trades(history)}

TRADING RULES:
- Risk-managed opportunities only
- Multi-timeframe confirmation required
- Maximum 2% portfolio risk per trade

DECISION: [BUY/SELL/HOLD] {symbol}
RATIONALE: [Detailed reasoning with probability estimates]
CONFIDENCE: 0.XX
POSITION_SIZE: X.X% of portfolio
STOP_LOSS: X.XX
TAKE_PROFIT: X.XX

Respond in exact JSON format."""
