"""
Performance Weighter component for the decision fusion stage.

Turns the externally supplied trade-outcome history into technical/sentiment
weights and blends them with the regime-based base weights.
"""
import math
from collections import defaultdict
from typing import Dict, List, Sequence

from fusion_trader.agents.data_structures import PerformanceRecord, Regime
from fusion_trader.config.settings import FusionSettings
from fusion_trader.utils.numeric import clamp

STRATEGIES = ("tech", "sentiment")


class PerformanceWeighter:
    """
    Computes regime-aware, performance-adaptive strategy weights.
    """

    def __init__(self, config: FusionSettings):
        self.config = config

    @staticmethod
    def score_strategy(records: Sequence[PerformanceRecord]) -> float:
        """
        ``0.6 * win_rate + 0.4 * tanh(mean rr)`` clamped to [0, 1]; 0.5 with no history.
        """
        if not records:
            return 0.5
        win_rate = sum(1 for record in records if record.success) / len(records)
        mean_rr = sum(record.rr for record in records) / len(records)
        return clamp(0.6 * win_rate + 0.4 * math.tanh(mean_rr), 0.0, 1.0)

    def performance_weights(self, history: Sequence[PerformanceRecord]) -> Dict[str, float]:
        """Per-strategy scores normalized to sum to 1."""
        buckets: Dict[str, List[PerformanceRecord]] = defaultdict(list)
        for record in history:
            strategy = str(record.strategy or "").strip().lower()
            if strategy == "technical":
                strategy = "tech"
            if strategy in STRATEGIES:
                buckets[strategy].append(record)

        tech_score = self.score_strategy(buckets["tech"])
        sentiment_score = self.score_strategy(buckets["sentiment"])
        total = tech_score + sentiment_score or 1.0
        return {"tech": tech_score / total, "sentiment": sentiment_score / total}

    def base_weights(self, regime: Regime) -> Dict[str, float]:
        tech = self.config.TRENDING_TECH_WEIGHT if regime.trending else self.config.RANGING_TECH_WEIGHT
        return {"tech": tech, "sentiment": 1 - tech}

    def compute_weights(self, regime: Regime, history: Sequence[PerformanceRecord]) -> Dict[str, float]:
        """
        Average the regime base weights with the performance weights 50/50 and
        clamp each into ``[MIN_STRATEGY_WEIGHT, MAX_STRATEGY_WEIGHT]``.

        The two results are not renormalized here; the fusion step divides by
        their sum.
        """
        base = self.base_weights(regime)
        performance = self.performance_weights(history)
        return {
            strategy: clamp(
                0.5 * base[strategy] + 0.5 * performance[strategy],
                self.config.MIN_STRATEGY_WEIGHT,
                self.config.MAX_STRATEGY_WEIGHT,
            )
            for strategy in STRATEGIES
        }
