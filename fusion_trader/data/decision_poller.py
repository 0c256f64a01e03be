"""
Polling decision loop.

Pulls a ``DecisionSnapshot`` per configured symbol from a provider, runs the
orchestrator on all of them concurrently, and hands each ``TradeDecision`` to
a sink. A failing symbol is logged and skipped; it never stops the round.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from fusion_trader.agents.data_structures import DecisionSnapshot, TradeDecision
from fusion_trader.communication.orchestrator import DecisionOrchestrator
from fusion_trader.config.settings import TradingSettings
from fusion_trader.utils.logging import cycle_context, get_logger

logger = get_logger(__name__)


class SnapshotProvider(Protocol):
    """Source of fully materialized cycle inputs."""

    async def fetch_snapshot(self, symbol: str) -> DecisionSnapshot:
        ...


class DecisionSink(Protocol):
    """Consumer of emitted decisions (execution, persistence, dashboards)."""

    async def handle(self, decision: TradeDecision) -> None:
        ...


class DecisionPoller:
    """
    Runs decision cycles for a fixed symbol list on an interval.
    """

    def __init__(
        self,
        orchestrator: DecisionOrchestrator,
        provider: SnapshotProvider,
        sink: Optional[DecisionSink] = None,
        config: Optional[TradingSettings] = None,
        symbols: Optional[Sequence[str]] = None,
    ):
        """
        Initialize the poller.

        Args:
            orchestrator: Orchestrator running each cycle.
            provider: Snapshot source.
            sink: Optional decision consumer.
            config: Symbols and interval; defaults to ``TradingSettings()``.
            symbols: Overrides the configured symbol list.
        """
        self.orchestrator = orchestrator
        self.provider = provider
        self.sink = sink
        self.config = config or TradingSettings()
        self.symbols: List[str] = list(symbols if symbols is not None else self.config.SYMBOLS)
        self.is_running = False
        self._stop_event = asyncio.Event()

        self.stats: Dict[str, Any] = {
            "rounds": 0,
            "decisions": 0,
            "failures": 0,
            "last_poll_time": None,
        }

    async def _cycle(self, symbol: str) -> Optional[TradeDecision]:
        with cycle_context(symbol=symbol, round=self.stats["rounds"] + 1):
            try:
                snapshot = await self.provider.fetch_snapshot(symbol)
                decision = await self.orchestrator.decide(snapshot)
                if self.sink is not None:
                    await self.sink.handle(decision)
            except Exception as e:
                logger.error("decision_cycle_failed", error=str(e), error_type=type(e).__name__)
                self.stats["failures"] += 1
                return None
        self.stats["decisions"] += 1
        return decision

    async def poll_once(self) -> List[TradeDecision]:
        """
        Run one round over every symbol concurrently.

        Returns:
            Decisions for the symbols that succeeded, in symbol order.
        """
        results = await asyncio.gather(*(self._cycle(symbol) for symbol in self.symbols))
        self.stats["rounds"] += 1
        self.stats["last_poll_time"] = datetime.now()
        return [decision for decision in results if decision is not None]

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Poll until ``stop()`` is called or ``max_cycles`` rounds have run.

        Sleeps ``POLL_INTERVAL_SECONDS`` between rounds; a stop request wakes
        the sleep immediately.
        """
        self.is_running = True
        self._stop_event.clear()
        logger.info("decision_poller_started", symbols=self.symbols, interval=self.config.POLL_INTERVAL_SECONDS)

        rounds = 0
        try:
            while not self._stop_event.is_set():
                await self.poll_once()
                rounds += 1
                if max_cycles is not None and rounds >= max_cycles:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.POLL_INTERVAL_SECONDS)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            logger.info("decision_poller_stopped", rounds=rounds)

    def stop(self) -> None:
        self._stop_event.set()

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
