"""
Advisory oracle client.

Talks to an OpenAI-compatible chat completion endpoint and turns its reply
into an ``AdvisoryResponse``. Every failure mode (disabled, missing key,
timeout, transport error, malformed reply) ends in ``None``; nothing raised
here escapes ``consult``.
"""
import asyncio
import json
import re
from typing import Any, Dict, Optional

import httpx
from openai import AsyncOpenAI
from pydantic import ValidationError

from fusion_trader.agents.data_structures import AdvisoryResponse
from fusion_trader.config.settings import AdvisorySettings
from fusion_trader.utils.logging import get_logger
from fusion_trader.utils.performance import time_function

from .prompts import ADVISORY_SYSTEM_PROMPT

logger = get_logger(__name__)


class AdvisoryError(Exception):
    """Raised when the advisory reply cannot be turned into a decision."""


def extract_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse the span from the first '{' to the last '}' of a reply.

    Markdown fences and surrounding prose are ignored. Returns None when there
    is no object or it does not parse.
    """
    if not text:
        return None
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_advisory(text: Optional[str]) -> AdvisoryResponse:
    """
    Validate a raw reply.

    Raises:
        AdvisoryError: If the reply holds no JSON object or fails validation.
    """
    payload = extract_json(text)
    if payload is None:
        raise AdvisoryError("advisory reply contained no JSON object")
    try:
        return AdvisoryResponse.model_validate(payload)
    except ValidationError as e:
        raise AdvisoryError(f"advisory reply failed validation: {e.error_count()} errors") from e


class AdvisoryClient:
    """
    Async client for the advisory oracle.

    The underlying client is built with ``max_retries=0``; a slow or failing
    oracle costs one bounded attempt per cycle.
    """

    def __init__(self, config: AdvisorySettings, client: Optional[AsyncOpenAI] = None):
        """
        Initializes the AdvisoryClient.

        Args:
            config: Advisory endpoint settings.
            client: Pre-built OpenAI-compatible client, mainly for tests.
        """
        self.config = config
        self._http_client: Optional[httpx.AsyncClient] = None
        self.client = client
        if self.client is None and self.enabled:
            self._http_client = httpx.AsyncClient(
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=20,
                    keepalive_expiry=30.0,
                )
            )
            self.client = AsyncOpenAI(
                base_url=config.BASE_URL,
                api_key=config.API_KEY,
                http_client=self._http_client,
                max_retries=0,
            )

    @property
    def enabled(self) -> bool:
        return bool(self.config.ENABLED and self.config.API_KEY)

    async def _complete(self, prompt: str) -> Optional[str]:
        completion = await self.client.chat.completions.create(
            model=self.config.MODEL,
            messages=[
                {"role": "system", "content": ADVISORY_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.config.TEMPERATURE,
            top_p=self.config.TOP_P,
            max_tokens=self.config.MAX_TOKENS,
        )
        if not completion.choices:
            return None
        content = completion.choices[0].message.content
        return content.strip() if content else None

    @time_function(operation_name="advisory_consult")
    async def consult(self, prompt: str) -> Optional[AdvisoryResponse]:
        """
        Ask the oracle for a decision.

        Args:
            prompt: Rendered trading prompt.

        Returns:
            The validated response, or None when the oracle is disabled or
            anything goes wrong.
        """
        if not self.enabled or self.client is None:
            return None

        try:
            text = await asyncio.wait_for(self._complete(prompt), timeout=self.config.TIMEOUT_SECONDS)
            response = parse_advisory(text)
        except asyncio.TimeoutError:
            logger.warning("advisory_timeout", timeout_seconds=self.config.TIMEOUT_SECONDS)
            return None
        except AdvisoryError as e:
            logger.warning("advisory_malformed", error=str(e))
            return None
        except Exception as e:
            logger.warning("advisory_failed", error=str(e), error_type=type(e).__name__)
            return None

        logger.debug("advisory_received", action=response.action.value, confidence=response.confidence)
        return response

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
