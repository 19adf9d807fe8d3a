"""
Decision Engine - Language Model Client.

One call, prompt in, free text out. No retries; any provider
failure surfaces as ModelCallError and aborts the cycle.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from .config import LLMConfig


logger = logging.getLogger(__name__)


class DecisionEngineError(Exception):
    """Base exception for Decision Engine."""
    pass


class ModelCallError(DecisionEngineError):
    """The model provider call failed."""
    pass


class LanguageModelClient(ABC):
    """Chat-completion style model client."""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        """
        Raises:
            ModelCallError: If the provider call fails
        """
        pass


class OpenAICompatibleClient(LanguageModelClient):
    """
    Client for any OpenAI-compatible chat endpoint (DeepSeek by default).
    """

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[AsyncOpenAI] = None):
        self._config = config or LLMConfig.from_env()
        self._client = client or AsyncOpenAI(
            api_key=self._config.api_key or "missing",
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            max_retries=0,
        )

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._config.temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"Model call to {self._config.model} failed: {type(e).__name__}: {e}")
            raise ModelCallError(f"Model call failed: {e}") from e

        if not response.choices:
            raise ModelCallError("Model returned no choices")
        content = response.choices[0].message.content or ""
        logger.debug(f"Model reply ({len(content)} chars)")
        return content
