"""
Advisory oracle access: prompt rendering and the async client.
"""

from .client import AdvisoryClient, AdvisoryError, extract_json, parse_advisory
from .prompts import ADVISORY_SYSTEM_PROMPT, build_trading_prompt, summarize_technical

__all__ = [
    "ADVISORY_SYSTEM_PROMPT",
    "AdvisoryClient",
    "AdvisoryError",
    "build_trading_prompt",
    "extract_json",
    "parse_advisory",
    "summarize_technical",
]
