"""
Decision fusion framework.

Rule-based components that combine the technical and sentiment signals into
one action: regime and performance adaptive weighting, conflict resolution,
and the gate that lets an advisory oracle override the result.
"""

from .components import (
    AdvisoryOverlay,
    ConflictDetector,
    ConflictInfo,
    OverlayOutcome,
    PerformanceWeighter,
)

__all__ = [
    "AdvisoryOverlay",
    "ConflictDetector",
    "ConflictInfo",
    "OverlayOutcome",
    "PerformanceWeighter",
]
