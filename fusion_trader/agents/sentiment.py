"""
Implements the Sentiment Fusion Engine.

Three independent sub-scorers (social, on-chain, market structure) each map
a weighted value in roughly [-1, 1] onto a 0-100 score; the blended score is
labelled bullish, neutral or bearish.
"""
import math
from typing import Optional

from fusion_trader.utils.logging import get_logger
from fusion_trader.utils.numeric import clamp, round_half_up

from .data_structures import (
    MarketStructureInputs,
    OnChainInputs,
    SentimentBreakdown,
    SentimentInputs,
    SentimentResult,
    SocialInputs,
)

logger = get_logger(__name__)

SOCIAL_WEIGHTS = {"twitter": 0.35, "telegram": 0.2, "news": 0.25, "trends": 0.2}
ONCHAIN_WEIGHTS = {"whale_net": 0.45, "exchange_flow": -0.25, "gas": 0.15, "addr_delta": 0.15}
# Sums to 1.3; not renormalized.
STRUCTURE_WEIGHTS = {"depth": 0.5, "support_resistance": 0.5, "liquidation": 0.3}
BLEND_WEIGHTS = {"social": 0.45, "onchain": 0.35, "structure": 0.2}

WHALE_FLOW_SCALE_USD = 1_000_000
LIQUIDATION_SCALE_USD = 1_000_000
GAS_BASELINE_GWEI = 20
GAS_SCALE_GWEI = 50

BULLISH_ABOVE = 60
BEARISH_BELOW = 40


def to_score(weighted: float) -> int:
    """Map a [-1, 1] weighted value onto an integer 0-100 score."""
    return int(clamp(round_half_up(weighted * 50 + 50), 0, 100))


def label_for(score: int) -> str:
    if score > BULLISH_ABOVE:
        return "bullish"
    if score < BEARISH_BELOW:
        return "bearish"
    return "neutral"


class SentimentFusionEngine:
    """
    Fuses social, on-chain and market-structure readings into one score.
    """

    def score_social(self, social: Optional[SocialInputs] = None) -> int:
        social = social or SocialInputs()
        weighted = (
            SOCIAL_WEIGHTS["twitter"] * social.twitter_score
            + SOCIAL_WEIGHTS["telegram"] * social.telegram_score
            + SOCIAL_WEIGHTS["news"] * social.news_score
            + SOCIAL_WEIGHTS["trends"] * social.trends_score
        )
        return to_score(weighted)

    def score_onchain(self, onchain: Optional[OnChainInputs] = None) -> int:
        """
        Score on-chain flows.

        Whale accumulation (inflow minus outflow) and rising gas/active
        addresses are bullish; net flow into exchanges is bearish.
        """
        onchain = onchain or OnChainInputs()
        whale_term = math.tanh((onchain.whale_inflow_usd - onchain.whale_outflow_usd) / WHALE_FLOW_SCALE_USD)
        flow_term = clamp(onchain.exchange_netflow, -1.0, 1.0)
        gas_term = math.tanh((onchain.gas_price_gwei - GAS_BASELINE_GWEI) / GAS_SCALE_GWEI)
        addr_term = clamp(onchain.active_addrs_delta, -1.0, 1.0)
        weighted = (
            ONCHAIN_WEIGHTS["whale_net"] * whale_term
            + ONCHAIN_WEIGHTS["exchange_flow"] * flow_term
            + ONCHAIN_WEIGHTS["gas"] * gas_term
            + ONCHAIN_WEIGHTS["addr_delta"] * addr_term
        )
        return to_score(weighted)

    def score_market_structure(self, market: Optional[MarketStructureInputs] = None, last_price: Optional[float] = None) -> int:
        """
        Score order book depth, support/resistance proximity and liquidation clusters.

        The cluster and support/resistance terms need a positive last price.
        """
        market = market or MarketStructureInputs()
        has_price = bool(last_price) and last_price > 0

        cluster_bias = 0.0
        if market.liquidation_clusters and has_price:
            nearest = None
            nearest_distance = None
            for cluster in market.liquidation_clusters:
                distance = abs(cluster.price - last_price)
                if nearest_distance is None or distance < nearest_distance:
                    nearest, nearest_distance = cluster, distance
            # A cluster above price is bearish, below it bullish.
            signed_size = -nearest.size if nearest.price > last_price else nearest.size
            cluster_bias = math.tanh(signed_size / LIQUIDATION_SCALE_USD)

        book = market.orderbook
        depth_ratio = (book.bid_depth - book.ask_depth) / max(1.0, book.bid_depth + book.ask_depth)
        depth_bias = math.tanh(depth_ratio * 3) + clamp(book.imbalance, -1.0, 1.0) * 0.5

        sr_bias = 0.0
        if has_price and (market.supports or market.resistances):
            nearest_support = min((abs(s - last_price) for s in market.supports), default=math.inf)
            nearest_resistance = min((abs(r - last_price) for r in market.resistances), default=math.inf)
            # Closer to support than resistance is bullish; a missing side saturates.
            sr_bias = math.tanh((nearest_resistance / last_price - nearest_support / last_price) * 5)

        weighted = (
            STRUCTURE_WEIGHTS["depth"] * depth_bias
            + STRUCTURE_WEIGHTS["support_resistance"] * sr_bias
            + STRUCTURE_WEIGHTS["liquidation"] * cluster_bias
        )
        return to_score(weighted)

    def fuse(self, inputs: Optional[SentimentInputs] = None, last_price: Optional[float] = None) -> SentimentResult:
        """
        Blend the three sub-scores into one SentimentResult.

        Args:
            inputs: Social, on-chain and market-structure snapshot.
            last_price: Latest traded price, used by the market-structure scorer.
        """
        inputs = inputs or SentimentInputs()
        social_score = self.score_social(inputs.social)
        onchain_score = self.score_onchain(inputs.onchain)
        structure_score = self.score_market_structure(inputs.market_structure, last_price)
        score = int(clamp(round_half_up(
            BLEND_WEIGHTS["social"] * social_score
            + BLEND_WEIGHTS["onchain"] * onchain_score
            + BLEND_WEIGHTS["structure"] * structure_score
        ), 0, 100))

        logger.debug(
            "sentiment_fused",
            score=score,
            social=social_score,
            onchain=onchain_score,
            structure=structure_score,
        )

        return SentimentResult(
            score=score,
            label=label_for(score),
            breakdown=SentimentBreakdown(
                social_score=social_score,
                onchain_score=onchain_score,
                structure_score=structure_score,
            ),
        )

    @staticmethod
    def neutral() -> SentimentResult:
        """Neutral default used when sentiment cannot be computed."""
        return SentimentResult()

