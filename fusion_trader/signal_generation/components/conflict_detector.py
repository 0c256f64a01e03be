"""
Conflict Detector component for the decision fusion stage.

A conflict exists when the technical signal points one way and sentiment
leans the other way by more than ``CONFLICT_THRESHOLD``. Low-confidence
conflicts are forced to HOLD; confident ones defer to the technical side in a
trending regime and to the sentiment side otherwise.
"""
from dataclasses import dataclass
from typing import Optional

from fusion_trader.agents.data_structures import Regime, SignalType
from fusion_trader.config.settings import FusionSettings


@dataclass(frozen=True)
class ConflictInfo:
    """
    Details of a detected technical/sentiment conflict.

    Attributes:
        technical_bias: +1, 0 or -1 from the technical action.
        sentiment_bias: Sentiment score mapped onto [-1, 1].
        resolution_strategy: 'force_hold', 'prefer_technical' or 'prefer_sentiment'.
        resolved_action: Action after resolution.
    """
    technical_bias: int
    sentiment_bias: float
    resolution_strategy: str
    resolved_action: SignalType

    @property
    def description(self) -> str:
        return (
            f"technical bias {self.technical_bias:+d} conflicts with sentiment bias "
            f"{self.sentiment_bias:+.2f}; {self.resolution_strategy} -> {self.resolved_action.value}"
        )


class ConflictDetector:
    """
    Detects and resolves disagreements between the technical and sentiment signals.
    """

    def __init__(self, config: FusionSettings):
        self.config = config

    def has_conflict(self, technical_bias: int, sentiment_bias: float) -> bool:
        threshold = self.config.CONFLICT_THRESHOLD
        return (technical_bias > 0 and sentiment_bias < -threshold) or (technical_bias < 0 and sentiment_bias > threshold)

    def resolve(
        self,
        confidence: float,
        technical_bias: int,
        sentiment_bias: float,
        regime: Regime,
    ) -> Optional[ConflictInfo]:
        """
        Resolve a conflict, if there is one.

        Args:
            confidence: Fused confidence.
            technical_bias: Direction of the technical action.
            sentiment_bias: Sentiment score mapped onto [-1, 1].
            regime: Current regime.

        Returns:
            ConflictInfo with the resolved action, or None when the signals agree.
        """
        if not self.has_conflict(technical_bias, sentiment_bias):
            return None

        if confidence < self.config.CONFLICT_MIN_CONFIDENCE:
            strategy, resolved = "force_hold", SignalType.HOLD
        elif regime.trending:
            strategy = "prefer_technical"
            resolved = SignalType.BUY if technical_bias > 0 else SignalType.SELL
        else:
            strategy = "prefer_sentiment"
            resolved = SignalType.BUY if sentiment_bias > 0 else SignalType.SELL

        return ConflictInfo(
            technical_bias=technical_bias,
            sentiment_bias=sentiment_bias,
            resolution_strategy=strategy,
            resolved_action=resolved,
        )
