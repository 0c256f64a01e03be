"""
Components for the decision fusion stage.

This module contains the individual pieces the orchestrator composes:
performance-adaptive weighting, conflict resolution and advisory gating.
"""

from .performance_weighter import PerformanceWeighter
from .conflict_detector import ConflictDetector, ConflictInfo
from .advisory_overlay import AdvisoryOverlay, OverlayOutcome

__all__ = [
    "PerformanceWeighter",
    "ConflictDetector",
    "ConflictInfo",
    "AdvisoryOverlay",
    "OverlayOutcome",
]
