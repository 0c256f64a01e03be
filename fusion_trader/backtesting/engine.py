"""
Backtesting engine that replays candle histories through the orchestrator.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from fusion_trader.agents.data_structures import (
    AccountState,
    Candle,
    DecisionSnapshot,
    Position,
    SentimentInputs,
    TradeDecision,
    coerce_candles,
)
from fusion_trader.communication.orchestrator import DecisionOrchestrator
from fusion_trader.utils.logging import get_logger

logger = get_logger(__name__)

TRADING_DAYS = 252
DEFAULT_LOOKBACK = 200

TimeBound = Union[str, datetime, pd.Timestamp, None]


@dataclass
class SimulatedTrade:
    timestamp: pd.Timestamp
    symbol: str
    side: str
    quantity: float
    price: float
    value: float
    fee: float
    confidence: float
    rationale: str = ""
    pnl: Optional[float] = None


@dataclass
class SimulatedPosition:
    quantity: float = 0.0
    avg_entry: float = 0.0


@dataclass
class BacktestResult:
    """
    Output of a backtest run.

    Attributes:
        trades: Executed trades in time order.
        equity_curve: Equity and drawdown per replayed bar, indexed by timestamp.
        performance: Summary metrics from ``calculate_performance``.
    """
    trades: List[SimulatedTrade] = field(default_factory=list)
    equity_curve: pd.DataFrame = field(default_factory=pd.DataFrame)
    performance: Dict[str, float] = field(default_factory=dict)


class BacktestingEngine:
    """
    Bar-by-bar simulator filling at the bar close.

    Each bar feeds the trailing window of its own symbol's history to
    ``decide_sync``; the same window is used for all three timeframes.
    """

    def __init__(
        self,
        orchestrator: DecisionOrchestrator,
        initial_balance: float = 10000.0,
        fees: float = 0.001,
        warmup: int = 60,
        lookback: int = DEFAULT_LOOKBACK,
    ):
        """
        Args:
            orchestrator: Orchestrator producing the decisions.
            initial_balance: Starting cash in USD.
            fees: Fee rate charged on each fill's notional.
            warmup: Bars of history required before the first decision.
            lookback: Maximum bars handed to the orchestrator per decision.
        """
        self.orchestrator = orchestrator
        self.initial_balance = initial_balance
        self.fees = fees
        self.warmup = warmup
        self.lookback = max(lookback, warmup)
        self.reset()

    def reset(self) -> None:
        """Restore the initial account state."""
        self.balance = self.initial_balance
        self.positions: Dict[str, SimulatedPosition] = {}
        self.trades: List[SimulatedTrade] = []
        self.last_prices: Dict[str, float] = {}
        self.equity = self.initial_balance
        self.peak_equity = self.initial_balance
        self.max_drawdown = 0.0

    # ------------------------------------------------------------------
    # Data preparation
    # ------------------------------------------------------------------

    @staticmethod
    def _to_candles(data: Any) -> List[Candle]:
        if isinstance(data, pd.DataFrame):
            return list(coerce_candles(data.to_dict("records")))
        return list(coerce_candles(data))

    def prepare_timeline(
        self,
        histories: Mapping[str, Sequence[Candle]],
        start: TimeBound = None,
        end: TimeBound = None,
    ) -> pd.DataFrame:
        """
        Merge per-symbol histories into one time-ordered frame.

        Returns:
            DataFrame with ``timestamp``, ``symbol`` and ``bar`` (position in
            that symbol's history), filtered to ``[start, end]``.
        """
        frames = [
            pd.DataFrame({
                "timestamp": pd.to_datetime([candle.open_time for candle in candles], unit="ms"),
                "symbol": symbol,
                "bar": np.arange(len(candles)),
            })
            for symbol, candles in histories.items()
            if candles
        ]
        if not frames:
            return pd.DataFrame(columns=["timestamp", "symbol", "bar"])

        timeline = pd.concat(frames, ignore_index=True)
        if start is not None:
            timeline = timeline[timeline["timestamp"] >= pd.Timestamp(start)]
        if end is not None:
            timeline = timeline[timeline["timestamp"] <= pd.Timestamp(end)]
        return timeline.sort_values(["timestamp", "symbol", "bar"]).reset_index(drop=True)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def _snapshot(self, symbol: str, window: Sequence[Candle], sentiment: SentimentInputs) -> DecisionSnapshot:
        price = window[-1].close
        held = self.positions.get(symbol, SimulatedPosition())
        drawdown_pct = (self.peak_equity - self.equity) / self.peak_equity * 100 if self.peak_equity > 0 else 0.0
        account = AccountState(
            equity_usd=self.equity,
            positions={symbol: Position(size=held.quantity, notional_value=held.quantity * price)},
            drawdown_from_peak_pct=drawdown_pct,
        )
        candles = tuple(window)
        return DecisionSnapshot(
            symbol=symbol,
            candles_5m=candles,
            candles_1h=candles,
            candles_4h=candles,
            sentiment=sentiment,
            account=account,
        )

    def execute_trade(self, decision: TradeDecision, price: float, timestamp: pd.Timestamp) -> Optional[SimulatedTrade]:
        """
        Fill a decision at ``price``.

        Buys need cash for size plus fee. Sells close up to the held quantity
        and realize PnL against the average entry, which includes buy fees.
        Returns None when nothing was filled.
        """
        if price <= 0 or decision.size_usd <= 0:
            return None

        symbol = decision.symbol

        if decision.action == "buy":
            fee = decision.size_usd * self.fees
            if self.balance < decision.size_usd + fee:
                return None
            position = self.positions.setdefault(symbol, SimulatedPosition())
            quantity = decision.size_usd / price
            cost_basis = position.avg_entry * position.quantity + decision.size_usd + fee
            position.quantity += quantity
            position.avg_entry = cost_basis / position.quantity
            self.balance -= decision.size_usd + fee
            trade = SimulatedTrade(timestamp, symbol, "BUY", quantity, price, decision.size_usd, fee, decision.confidence, decision.rationale)

        elif decision.action == "sell":
            position = self.positions.get(symbol)
            if position is None or position.quantity <= 0:
                return None
            quantity = min(decision.size_usd / price, position.quantity)
            value = quantity * price
            fee = value * self.fees
            pnl = value - fee - position.avg_entry * quantity
            self.balance += value - fee
            position.quantity -= quantity
            if position.quantity <= 1e-12:
                del self.positions[symbol]
            trade = SimulatedTrade(timestamp, symbol, "SELL", quantity, price, value, fee, decision.confidence, decision.rationale, pnl)

        else:
            return None

        self.trades.append(trade)
        return trade

    def mark_to_market(self) -> float:
        """Recompute equity from cash plus open positions at their last prices."""
        holdings = sum(
            position.quantity * self.last_prices.get(symbol, position.avg_entry)
            for symbol, position in self.positions.items()
        )
        self.equity = self.balance + holdings
        self.peak_equity = max(self.peak_equity, self.equity)
        if self.peak_equity > 0:
            self.max_drawdown = max(self.max_drawdown, (self.peak_equity - self.equity) / self.peak_equity)
        return self.equity

    def run(
        self,
        historical_data: Mapping[str, Any],
        symbols: Optional[Sequence[str]] = None,
        start: TimeBound = None,
        end: TimeBound = None,
        sentiment: Optional[SentimentInputs] = None,
    ) -> BacktestResult:
        """
        Replay candle histories through the orchestrator.

        Args:
            historical_data: Candles per symbol, as candle sequences or OHLCV DataFrames.
            symbols: Symbols to replay; defaults to every key of ``historical_data``.
            start: Earliest bar open time to replay.
            end: Latest bar open time to replay.
            sentiment: Fixed sentiment inputs for every bar; neutral when omitted.

        Returns:
            BacktestResult with trades, the equity curve and performance metrics.
        """
        symbols = list(symbols) if symbols is not None else list(historical_data)
        histories = {symbol: self._to_candles(historical_data.get(symbol)) for symbol in symbols}
        sentiment = sentiment or SentimentInputs()
        timeline = self.prepare_timeline(histories, start, end)

        logger.info("backtest_started", symbols=symbols, bars=len(timeline))

        executed: List[SimulatedTrade] = []
        curve: List[Dict[str, Any]] = []
        for row in timeline.itertuples(index=False):
            candles = histories[row.symbol]
            bar = int(row.bar)
            price = candles[bar].close
            self.last_prices[row.symbol] = price

            if bar + 1 >= self.warmup:
                window = candles[max(0, bar + 1 - self.lookback):bar + 1]
                try:
                    decision = self.orchestrator.decide_sync(self._snapshot(row.symbol, window, sentiment))
                except Exception as e:
                    logger.error("backtest_decision_failed", symbol=row.symbol, timestamp=str(row.timestamp), error=str(e))
                    decision = None
                if decision is not None and decision.action != "hold" and decision.size_usd > 0:
                    trade = self.execute_trade(decision, price, row.timestamp)
                    if trade is not None:
                        executed.append(trade)

            equity = self.mark_to_market()
            curve.append({
                "timestamp": row.timestamp,
                "symbol": row.symbol,
                "equity": equity,
                "drawdown": (self.peak_equity - equity) / self.peak_equity if self.peak_equity > 0 else 0.0,
            })

        equity_curve = pd.DataFrame(curve, columns=["timestamp", "symbol", "equity", "drawdown"])
        if not equity_curve.empty:
            equity_curve = equity_curve.set_index("timestamp")

        performance = self.calculate_performance()
        logger.info("backtest_finished", trades=len(executed), **performance)
        return BacktestResult(trades=executed, equity_curve=equity_curve, performance=performance)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def calculate_performance(self) -> Dict[str, float]:
        """
        Summary metrics for the trades executed since the last reset.

        Sharpe is the mean over the population standard deviation of realized
        per-trade PnL, annualized by sqrt(252); 0 with fewer than two closing
        trades or zero dispersion.
        """
        realized = np.array([trade.pnl for trade in self.trades if trade.pnl is not None], dtype=float)
        win_rate = float((realized > 0).mean()) if realized.size else 0.0

        sharpe = 0.0
        if realized.size >= 2:
            std = float(realized.std())
            if std > 0:
                sharpe = float(realized.mean()) / std * math.sqrt(TRADING_DAYS)

        return {
            "total_return": (self.equity - self.initial_balance) / self.initial_balance if self.initial_balance else 0.0,
            "sharpe_ratio": sharpe,
            "max_drawdown": self.max_drawdown,
            "win_rate": win_rate,
            "total_trades": len(self.trades),
            "final_equity": self.equity,
            "total_pnl": self.equity - self.initial_balance,
        }
