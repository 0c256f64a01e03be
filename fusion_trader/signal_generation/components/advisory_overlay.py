"""
Advisory Overlay component for the decision fusion stage.

Decides whether an advisory response may override the locally fused action.
Acceptance never increases size: the final notional is the smaller of the
local size and the (capped) size implied by the advisory percentage.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from fusion_trader.agents.data_structures import AdvisoryResponse, SignalType
from fusion_trader.config.settings import FusionSettings


@dataclass(frozen=True)
class OverlayOutcome:
    """Result of applying the advisory overlay."""
    action: SignalType
    confidence: float
    size_usd: float
    accepted: bool
    reason: str


class AdvisoryOverlay:
    """
    Gating rules for the advisory oracle.
    """

    def __init__(self, config: FusionSettings):
        self.config = config

    def should_accept(self, local_action: SignalType, local_confidence: float, advisory: AdvisoryResponse) -> bool:
        """
        Accept when the advisory agrees and is not materially less confident,
        or when it is much more confident regardless of direction.
        """
        aligns = advisory.action is local_action
        confidence_ok = advisory.confidence >= local_confidence - self.config.ADVISORY_ALIGN_TOLERANCE
        much_more_confident = advisory.confidence > local_confidence + self.config.ADVISORY_OVERRIDE_MARGIN
        return (aligns and confidence_ok) or much_more_confident

    def apply(
        self,
        local_action: SignalType,
        local_confidence: float,
        local_size_usd: float,
        equity_usd: float,
        advisory: Optional[AdvisoryResponse],
        cap_size: Callable[[float], float],
    ) -> OverlayOutcome:
        """
        Apply the advisory response to the local decision.

        Args:
            local_action: Action chosen by fusion and conflict resolution.
            local_confidence: Fused confidence.
            local_size_usd: Capped local notional.
            equity_usd: Account equity used to convert the advisory percentage.
            advisory: Parsed advisory response, or None.
            cap_size: The risk manager's order size cap.
        """
        if advisory is None:
            return OverlayOutcome(local_action, local_confidence, local_size_usd, False, "no_advisory")

        if not self.should_accept(local_action, local_confidence, advisory):
            return OverlayOutcome(local_action, local_confidence, local_size_usd, False, "advisory_rejected")

        size_usd = local_size_usd
        if advisory.position_size:
            advisory_size = cap_size(equity_usd * advisory.position_size / 100)
            if advisory_size > 0:
                size_usd = min(local_size_usd, advisory_size)

        return OverlayOutcome(
            action=advisory.action,
            confidence=min(1.0, max(local_confidence, advisory.confidence)),
            size_usd=size_usd,
            accepted=True,
            reason="advisory_accepted",
        )
